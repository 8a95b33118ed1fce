"""Hands engine transition events to sound/notification hooks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Protocol

from pomodeck.core.timer import Cause, Phase, TransitionEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionNotice:
    """What a notifier receives for one transition.

    ``sound`` is the configured sound name for the kind of phase that just
    ended (``work`` or ``break``), passed through untouched.  Whether to play
    it, for instance only on natural completions, is the notifier's call.
    """

    event: TransitionEvent
    sound: str | None

    @property
    def phase(self) -> Phase:
        return self.event.to_phase

    @property
    def cause(self) -> Cause:
        return self.event.cause


class Notifier(Protocol):
    def notify(self, notice: TransitionNotice) -> None: ...


class LogNotifier:
    """Default notifier: records each transition in the log."""

    def notify(self, notice: TransitionNotice) -> None:
        event = notice.event
        logger.info(
            f"Transition {event.from_phase.value} -> {event.to_phase.value} "
            f"cause={event.cause.value} sound={notice.sound or '-'}"
        )


class TransitionDispatcher:
    """Forwards events, in order, to every registered notifier."""

    def __init__(
        self,
        notifiers: Iterable[Notifier] = (),
        sounds: Mapping[str, str] | None = None,
    ) -> None:
        self._notifiers: list[Notifier] = list(notifiers)
        self._sounds: dict[str, str] = dict(sounds or {})

    def add_notifier(self, notifier: Notifier) -> None:
        self._notifiers.append(notifier)

    def dispatch(self, events: Iterable[TransitionEvent]) -> list[TransitionNotice]:
        """Deliver *events* and return the notices that were sent.

        A notifier that raises is logged and skipped; later notifiers and
        later events are still delivered.
        """
        notices = []
        for event in events:
            notice = TransitionNotice(event=event, sound=self._sound_for(event))
            for notifier in self._notifiers:
                try:
                    notifier.notify(notice)
                except Exception:
                    logger.exception(f"Notifier {notifier!r} failed on {event}")
            notices.append(notice)
        return notices

    def _sound_for(self, event: TransitionEvent) -> str | None:
        return self._sounds.get("break" if event.from_phase.is_break else "work")
