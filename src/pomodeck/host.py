"""The poll driver that owns the engine for the life of the process.

Each :meth:`TimerHost.poll` ticks the engine by the time since the previous
poll, applies queued control requests, forwards transition events and
renders a fresh frame, all on the caller's thread.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterable

import numpy as np

from pomodeck.control.channel import ControlChannel
from pomodeck.core.config import Config
from pomodeck.core.errors import RenderError
from pomodeck.core.store import PersistenceStore
from pomodeck.core.timer import TimerEngine, TimerState
from pomodeck.dispatch import LogNotifier, Notifier, TransitionDispatcher
from pomodeck.render.renderer import RenderConfig, Renderer, pulse_level

logger = logging.getLogger(__name__)


class TimerHost:
    """Wires the engine to its renderer, dispatcher and control channel."""

    def __init__(
        self,
        engine: TimerEngine,
        render_config: RenderConfig,
        *,
        renderer: Renderer | None = None,
        dispatcher: TransitionDispatcher | None = None,
        channel: ControlChannel | None = None,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._render_config = render_config
        self._renderer = renderer if renderer is not None else Renderer()
        self._dispatcher = dispatcher if dispatcher is not None else TransitionDispatcher()
        self._channel = channel
        self._interval = interval
        self._clock = clock
        self._last_poll: float | None = None
        self._frame: np.ndarray | None = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        notifiers: Iterable[Notifier] | None = None,
        with_channel: bool = True,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> TimerHost:
        """Build a host from *config*, restoring the persisted snapshot.

        The snapshot keeps its phase, elapsed time and counters; the
        durations always come from *config*.  A snapshot saved while running
        is caught up by the wall-clock time that has passed since it was
        written.
        """
        store = PersistenceStore(config.state_dir)
        snapshot = store.load_snapshot()
        if snapshot is not None:
            state = snapshot.state.with_durations(config.durations())
        else:
            state = TimerState(durations=config.durations())
        engine = TimerEngine(
            config.durations(),
            auto_start_work=config.auto_start_work,
            auto_start_break=config.auto_start_break,
            store=store,
            state=state,
        )
        if snapshot is not None:
            engine.catch_up(wall_clock() - snapshot.saved_at)

        dispatcher = TransitionDispatcher(
            notifiers if notifiers is not None else [LogNotifier()], sounds=config.sounds
        )
        host = cls(
            engine,
            config.render_config(),
            dispatcher=dispatcher,
            channel=ControlChannel(config.socket_path) if with_channel else None,
            interval=config.interval_ms / 1000.0,
            clock=clock,
        )
        host._forward_events()
        logger.info(
            f"Timer ready: work={config.work}m short_break={config.short_break}m "
            f"long_break={config.long_break}m mode={config.render_mode}"
        )
        return host

    @property
    def engine(self) -> TimerEngine:
        return self._engine

    @property
    def channel(self) -> ControlChannel | None:
        return self._channel

    @property
    def frame(self) -> np.ndarray | None:
        """The most recent successfully rendered frame."""
        return self._frame

    def poll(self) -> np.ndarray | None:
        """Advance the timer, apply pending commands and render."""
        now = self._clock()
        if self._last_poll is not None:
            self._engine.tick(max(now - self._last_poll, 0.0))
        self._last_poll = now
        if self._channel is not None:
            self._channel.process_pending(self._engine)
        self._forward_events()
        return self._render()

    def run(self, stop: threading.Event) -> None:
        """Poll every interval until *stop* is set, then flush and close."""
        if self._channel is not None:
            self._channel.start()
        try:
            while not stop.is_set():
                self.poll()
                stop.wait(self._interval)
        finally:
            self._engine.flush()
            if self._channel is not None:
                self._channel.close()
            logger.info("Timer host stopped")

    def _forward_events(self) -> None:
        events = self._engine.take_events()
        if events:
            self._dispatcher.dispatch(events)

    def _render(self) -> np.ndarray | None:
        try:
            frame = self._renderer.render(
                self._engine.state, self._render_config, pulse=pulse_level(self._clock())
            )
        except RenderError as exc:
            logger.warning(f"Render failed, keeping previous frame: {exc}")
            return self._frame
        self._frame = frame
        return frame
