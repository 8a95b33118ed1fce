"""The pomodoro phase state machine.

The engine owns the live :class:`TimerState` and is only ever mutated through
:meth:`TimerEngine.tick` and :meth:`TimerEngine.apply`.  It keeps no clock of
its own: callers feed it elapsed seconds, which keeps it deterministic and
trivially testable.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

from pomodeck.core.errors import ConfigError

if TYPE_CHECKING:
    from pomodeck.core.store import PersistenceStore

logger = logging.getLogger(__name__)

ITERATIONS_PER_SESSION = 4
_LAST_ITERATION = ITERATIONS_PER_SESSION - 1


class Phase(Enum):
    """The segment of the pomodoro cycle the timer is in."""

    WORK = "work"
    SHORT_BREAK = "short_break"
    LONG_BREAK = "long_break"

    @property
    def is_break(self) -> bool:
        return self is not Phase.WORK

    @classmethod
    def parse(cls, value: str) -> Phase:
        """Parse ``work``, ``short-break``, ``SHORT_BREAK`` and friends."""
        normalised = str(value).strip().lower().replace("-", "_")
        try:
            return cls(normalised)
        except ValueError:
            names = ", ".join(p.value for p in cls)
            raise ValueError(f"unknown phase {value!r}, expected one of: {names}") from None


class Cause(Enum):
    """Why a phase change happened."""

    NATURAL = "natural"
    SKIPPED = "skipped"


def _check_seconds(name: str, seconds: Any) -> None:
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise ConfigError(f"{name} duration must be a number, got {type(seconds).__name__}")
    if not math.isfinite(seconds) or seconds <= 0:
        raise ConfigError(f"{name} duration must be greater than zero, got {seconds}")


@dataclass(frozen=True)
class Durations:
    """Phase lengths in seconds."""

    work: float = 25 * 60
    short_break: float = 5 * 60
    long_break: float = 15 * 60

    def __post_init__(self) -> None:
        for phase in Phase:
            _check_seconds(phase.value, self.for_phase(phase))

    @classmethod
    def from_minutes(cls, work: int, short_break: int, long_break: int) -> Durations:
        return cls(work=work * 60, short_break=short_break * 60, long_break=long_break * 60)

    def for_phase(self, phase: Phase) -> float:
        return getattr(self, phase.value)

    def with_phase(self, phase: Phase, seconds: float) -> Durations:
        return replace(self, **{phase.value: seconds})


def _format_clock(seconds: float) -> str:
    """Format *seconds* as ``MM:SS``, or ``H:MM:SS`` from one hour up."""
    total = math.ceil(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


@dataclass(frozen=True)
class TimerState:
    """Immutable snapshot of the timer.

    ``elapsed_seconds`` never exceeds the current phase's duration, and
    ``iteration`` counts completed work segments of the current session (0-3).
    """

    phase: Phase = Phase.WORK
    elapsed_seconds: float = 0.0
    durations: Durations = field(default_factory=Durations)
    iteration: int = 0
    sessions_completed: int = 0
    running: bool = False

    @property
    def duration(self) -> float:
        return self.durations.for_phase(self.phase)

    @property
    def remaining_seconds(self) -> float:
        return max(self.duration - self.elapsed_seconds, 0.0)

    @property
    def progress(self) -> float:
        """Elapsed fraction of the current phase, clamped to ``[0, 1]``."""
        return min(max(self.elapsed_seconds / self.duration, 0.0), 1.0)

    @property
    def at_boundary(self) -> bool:
        return self.elapsed_seconds >= self.duration

    @property
    def awaiting_start(self) -> bool:
        """Stopped at the start of a phase, or pinned at its end by a transition."""
        return not self.running and (self.elapsed_seconds == 0 or self.at_boundary)

    @property
    def remaining_formatted(self) -> str:
        return _format_clock(self.remaining_seconds)

    def with_durations(self, durations: Durations) -> TimerState:
        """Swap in new durations, keeping ``elapsed_seconds`` within the phase.

        A stopped state pinned at its boundary stays pinned at the new end.
        """
        duration = durations.for_phase(self.phase)
        if self.at_boundary and not self.running:
            elapsed = duration
        else:
            elapsed = min(self.elapsed_seconds, duration)
        return replace(self, durations=durations, elapsed_seconds=elapsed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "elapsed_seconds": self.elapsed_seconds,
            "durations": {p.value: self.durations.for_phase(p) for p in Phase},
            "iteration": self.iteration,
            "sessions_completed": self.sessions_completed,
            "running": self.running,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimerState:
        """Rebuild a state from :meth:`to_dict` output.

        Raises ``ValueError`` when a field is missing, mistyped, or the record
        breaks one of the state invariants.
        """
        try:
            raw_durations = data["durations"]
            durations = Durations(**{p.value: raw_durations[p.value] for p in Phase})
            state = cls(
                phase=Phase(data["phase"]),
                elapsed_seconds=data["elapsed_seconds"],
                durations=durations,
                iteration=data["iteration"],
                sessions_completed=data["sessions_completed"],
                running=data["running"],
            )
        except (KeyError, TypeError, ConfigError) as exc:
            raise ValueError(f"invalid timer state record: {exc}") from exc

        if isinstance(state.elapsed_seconds, bool) or not isinstance(
            state.elapsed_seconds, (int, float)
        ):
            raise ValueError("elapsed_seconds must be a number")
        if not 0 <= state.elapsed_seconds <= state.duration:
            raise ValueError(
                f"elapsed_seconds {state.elapsed_seconds} outside 0..{state.duration}"
            )
        if not isinstance(state.iteration, int) or not 0 <= state.iteration <= _LAST_ITERATION:
            raise ValueError(f"iteration must be 0..{_LAST_ITERATION}, got {state.iteration!r}")
        if not isinstance(state.sessions_completed, int) or state.sessions_completed < 0:
            raise ValueError(f"sessions_completed must be >= 0, got {state.sessions_completed!r}")
        if not isinstance(state.running, bool):
            raise ValueError("running must be a boolean")
        return state


@dataclass(frozen=True)
class TransitionEvent:
    """A single phase change, emitted once per change."""

    from_phase: Phase
    to_phase: Phase
    cause: Cause

    def to_dict(self) -> dict[str, str]:
        return {
            "from": self.from_phase.value,
            "to": self.to_phase.value,
            "cause": self.cause.value,
        }


class CommandKind(Enum):
    """The closed set of control commands."""

    TOGGLE = "toggle"
    START = "start"
    STOP = "stop"
    RESET = "reset"
    SKIP = "skip"
    SET_TIME = "set-time"


@dataclass(frozen=True)
class Command:
    """A control command.  ``phase`` and ``seconds`` are only used by SET_TIME."""

    kind: CommandKind
    phase: Phase | None = None
    seconds: float | None = None

    def __post_init__(self) -> None:
        if self.kind == CommandKind.SET_TIME and (self.phase is None or self.seconds is None):
            raise ValueError("set-time requires a phase and a number of seconds")

    @classmethod
    def toggle(cls) -> Command:
        return cls(CommandKind.TOGGLE)

    @classmethod
    def start(cls) -> Command:
        return cls(CommandKind.START)

    @classmethod
    def stop(cls) -> Command:
        return cls(CommandKind.STOP)

    @classmethod
    def reset(cls) -> Command:
        return cls(CommandKind.RESET)

    @classmethod
    def skip(cls) -> Command:
        return cls(CommandKind.SKIP)

    @classmethod
    def set_time(cls, phase: Phase, seconds: float) -> Command:
        return cls(CommandKind.SET_TIME, phase=phase, seconds=seconds)


def next_phase(phase: Phase, iteration: int, sessions_completed: int) -> tuple[Phase, int, int]:
    """Apply one step of the transition table.

    Returns ``(phase, iteration, sessions_completed)`` after the step.
    """
    if phase == Phase.WORK:
        if iteration < _LAST_ITERATION:
            return Phase.SHORT_BREAK, iteration + 1, sessions_completed
        return Phase.LONG_BREAK, iteration, sessions_completed
    if phase == Phase.SHORT_BREAK:
        return Phase.WORK, iteration, sessions_completed
    return Phase.WORK, 0, sessions_completed + 1


class TimerEngine:
    """The pomodoro state machine.

    A single instance owns the live state for the lifetime of the process.
    Both the periodic tick and the control channel reach it through
    :meth:`tick` and :meth:`apply` from the same thread of control.  Every
    phase change is queued as a :class:`TransitionEvent`; the caller collects
    them with :meth:`take_events`.
    """

    def __init__(
        self,
        durations: Durations | None = None,
        *,
        auto_start_work: bool = False,
        auto_start_break: bool = False,
        store: PersistenceStore | None = None,
        state: TimerState | None = None,
    ) -> None:
        if state is None:
            state = TimerState(durations=durations if durations is not None else Durations())
        self._state: TimerState = state
        self._auto_start_work = auto_start_work
        self._auto_start_break = auto_start_break
        self._store = store
        self._events: list[TransitionEvent] = []

    # -- public API ----------------------------------------------------------

    @property
    def state(self) -> TimerState:
        return self._state

    def tick(self, delta_seconds: float) -> TransitionEvent | None:
        """Advance a running timer by *delta_seconds*.

        Crosses as many phase boundaries as the delta covers, carrying the
        remainder into the next phase.  When the next phase is not set to
        auto-start the timer stops with that phase pinned at its boundary and
        the remainder is dropped.  Returns the last event produced, if any.
        """
        if delta_seconds < 0:
            raise ValueError(f"delta_seconds must be non-negative, got {delta_seconds}")
        state = self._state
        if not state.running:
            return None

        durations = state.durations
        phase = state.phase
        iteration = state.iteration
        sessions = state.sessions_completed
        running = True
        elapsed = state.elapsed_seconds + delta_seconds
        last: TransitionEvent | None = None

        while elapsed >= durations.for_phase(phase):
            remainder = elapsed - durations.for_phase(phase)
            to_phase, iteration, sessions = next_phase(phase, iteration, sessions)
            last = self._emit(TransitionEvent(phase, to_phase, Cause.NATURAL))
            phase = to_phase
            if not self._auto_starts(phase):
                elapsed = durations.for_phase(phase)
                running = False
                break
            elapsed = remainder

        self._state = replace(
            state,
            phase=phase,
            elapsed_seconds=elapsed,
            iteration=iteration,
            sessions_completed=sessions,
            running=running,
        )
        if last is not None:
            self._persist()
        return last

    def apply(self, command: Command) -> TimerState:
        """Apply *command* and return the resulting state.

        Raises :class:`ConfigError` for a non-positive SET_TIME duration;
        the state is left untouched in that case.
        """
        state = self._state
        kind = command.kind

        if kind == CommandKind.TOGGLE:
            state = self._set_running(state, not state.running)
        elif kind == CommandKind.START:
            state = self._set_running(state, True)
        elif kind == CommandKind.STOP:
            state = replace(state, running=False)
        elif kind == CommandKind.RESET:
            state = replace(state, phase=Phase.WORK, elapsed_seconds=0.0, iteration=0, running=False)
        elif kind == CommandKind.SKIP:
            to_phase, iteration, sessions = next_phase(
                state.phase, state.iteration, state.sessions_completed
            )
            self._emit(TransitionEvent(state.phase, to_phase, Cause.SKIPPED))
            state = replace(
                state,
                phase=to_phase,
                elapsed_seconds=0.0,
                iteration=iteration,
                sessions_completed=sessions,
            )
        elif kind == CommandKind.SET_TIME:
            if command.phase is None or command.seconds is None:
                raise ValueError("set_time needs a phase and a number of seconds")
            _check_seconds(command.phase.value, command.seconds)
            state = state.with_durations(state.durations.with_phase(command.phase, command.seconds))
        else:  # pragma: no cover - closed enum
            raise ValueError(f"unsupported command {kind}")

        logger.debug(f"Applied {kind.value}: {state.phase.value} running={state.running}")
        self._state = state
        self._persist()
        return state

    def take_events(self) -> list[TransitionEvent]:
        """Return and clear the queued transition events, oldest first."""
        events, self._events = self._events, []
        return events

    def catch_up(self, seconds: float) -> TransitionEvent | None:
        """Account for wall-clock time that passed while the process was down."""
        if seconds <= 0 or not self._state.running:
            return None
        logger.info(f"Catching up {seconds:.0f}s elapsed since the last snapshot")
        return self.tick(seconds)

    def flush(self) -> None:
        """Persist the current state (used at shutdown)."""
        self._persist()

    # -- private helpers -----------------------------------------------------

    def _auto_starts(self, phase: Phase) -> bool:
        return self._auto_start_break if phase.is_break else self._auto_start_work

    @staticmethod
    def _set_running(state: TimerState, running: bool) -> TimerState:
        # A phase pinned at its boundary begins from zero once started.
        if running and not state.running and state.at_boundary:
            return replace(state, running=True, elapsed_seconds=0.0)
        return replace(state, running=running)

    def _emit(self, event: TransitionEvent) -> TransitionEvent:
        logger.info(
            f"Phase {event.from_phase.value} -> {event.to_phase.value} ({event.cause.value})"
        )
        self._events.append(event)
        return event

    def _persist(self) -> None:
        if self._store is not None:
            self._store.save(self._state)
