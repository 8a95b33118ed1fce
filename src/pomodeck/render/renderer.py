"""Maps a timer snapshot and render settings to an RGB pixel buffer.

Rendering is deterministic: the same state, config, icons and pulse level
always give the same bytes.  Frames are ``uint8`` arrays of shape
``(height, width, 3)``.

A phase that is waiting for an explicit start (stopped at elapsed zero, or
pinned at its end by a transition) is shown the same way in every mode: the
phase icon with its dots, or the phase's boundary label on the paused colour.
Otherwise the selected mode draws the frame.  The fill and ripen modes then
get an overlay that marks a paused timer.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Mapping

import numpy as np

from pomodeck.core.errors import ConfigError, RenderError
from pomodeck.core.timer import ITERATIONS_PER_SESSION, Phase, TimerState
from pomodeck.render.colour import Rgb, parse_colour, shift_hue_towards_green, to_greyscale
from pomodeck.render.glyphs import GLYPH_HEIGHT, BitmapFont, TextPainter

logger = logging.getLogger(__name__)

IconLoader = Callable[[str], np.ndarray]

_PHASE_LETTERS = {Phase.WORK: "W", Phase.SHORT_BREAK: "S", Phase.LONG_BREAK: "L"}

PULSE_PERIOD = 2.0
PULSE_DEPTH = 0.5


class RenderMode(Enum):
    """How the button face shows progress."""

    TEXT = "text"
    FILL_BG = "fill_bg"
    FILL_ICON = "fill_icon"
    RIPEN = "ripen"

    @classmethod
    def parse(cls, value: str) -> RenderMode:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            names = ", ".join(m.value for m in cls)
            raise ConfigError(f"unknown render mode {value!r}, expected one of: {names}") from None


class FillDirection(Enum):
    """``empty_to_full`` fills upwards; ``full_to_empty`` drains downwards."""

    EMPTY_TO_FULL = "empty_to_full"
    FULL_TO_EMPTY = "full_to_empty"

    @classmethod
    def parse(cls, value: str) -> FillDirection:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            names = ", ".join(d.value for d in cls)
            raise ConfigError(f"unknown fill direction {value!r}, expected one of: {names}") from None


class PhaseIndicatorDisplay(Enum):
    """When the phase label (``WORK``, ``SHORT BRK``...) is drawn."""

    NONE = "none"
    RUNNING = "running"
    PAUSED = "paused"
    BOTH = "both"

    @classmethod
    def parse(cls, value: str) -> PhaseIndicatorDisplay:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            names = ", ".join(d.value for d in cls)
            raise ConfigError(
                f"unknown phase indicator display {value!r}, expected one of: {names}"
            ) from None

    def shows(self, running: bool) -> bool:
        if self is PhaseIndicatorDisplay.BOTH:
            return True
        if self is PhaseIndicatorDisplay.RUNNING:
            return running
        if self is PhaseIndicatorDisplay.PAUSED:
            return not running
        return False


def _default_phase_colors() -> dict[Phase, Rgb]:
    return {
        Phase.WORK: parse_colour("#c0392b"),
        Phase.SHORT_BREAK: parse_colour("#27ae60"),
        Phase.LONG_BREAK: parse_colour("#27ae60"),
    }


def _default_phase_labels() -> dict[Phase, str]:
    return {Phase.WORK: "WORK", Phase.SHORT_BREAK: "SHORT BRK", Phase.LONG_BREAK: "LONG BRK"}


def _default_boundary_labels() -> dict[Phase, str]:
    return {Phase.WORK: "WORK", Phase.SHORT_BREAK: "SHORT\nBREAK", Phase.LONG_BREAK: "LONG\nBREAK"}


@dataclass(frozen=True)
class RenderConfig:
    """Everything the renderer needs besides the timer state.

    ``icons`` maps a phase to an opaque handle that the renderer's icon
    loader resolves.  ``ripen_strength`` is the fraction of the arc to green
    applied at the very start of a phase.  ``phase_labels`` are the short
    indicator texts; ``boundary_labels`` stand in for a missing icon while a
    phase waits to be started and may span lines with ``\\n``.
    """

    phase_colors: Mapping[Phase, Rgb] = field(default_factory=_default_phase_colors)
    paused_color: Rgb = (0x7F, 0x8C, 0x8D)
    empty_color: Rgb = (0x2C, 0x3E, 0x50)
    fg_color: Rgb = (0xFF, 0xFF, 0xFF)
    dot_running: Rgb = (0xFF, 0xFF, 0xFF)
    dot_paused: Rgb = (0xBD, 0xC3, 0xC7)
    mode: RenderMode = RenderMode.TEXT
    fill_direction: FillDirection = FillDirection.EMPTY_TO_FULL
    icons: Mapping[Phase, str] = field(default_factory=dict)
    ripen_strength: float = 1.0
    padding: float = 0.1
    show_dots: bool = True
    phase_indicator: PhaseIndicatorDisplay = PhaseIndicatorDisplay.PAUSED
    phase_labels: Mapping[Phase, str] = field(default_factory=_default_phase_labels)
    boundary_labels: Mapping[Phase, str] = field(default_factory=_default_boundary_labels)
    paused_label: str = "PAUSED"
    pulse_on_pause: bool = False
    width: int = 72
    height: int = 72

    def phase_color(self, phase: Phase) -> Rgb:
        return self.phase_colors[phase]

    def dot_color(self, running: bool) -> Rgb:
        return self.dot_running if running else self.dot_paused


def pulse_level(seconds: float, period: float = PULSE_PERIOD, depth: float = PULSE_DEPTH) -> float:
    """Brightness factor for a paused frame at time *seconds*, in ``[1 - depth, 1]``."""
    return 1.0 - depth * (1.0 - math.cos(2.0 * math.pi * seconds / period)) / 2.0


def load_npy_icon(handle: str) -> np.ndarray:
    """Default icon loader: a ``.npy`` file holding an RGB or RGBA ``uint8`` image."""
    icon = np.load(handle, allow_pickle=False)
    if icon.ndim != 3 or icon.shape[2] not in (3, 4) or icon.dtype != np.uint8:
        raise ValueError(f"{handle}: expected a (h, w, 3|4) uint8 array, got {icon.shape} {icon.dtype}")
    return np.ascontiguousarray(icon[..., :3])


def fit_icon(icon: np.ndarray, width: int, height: int) -> np.ndarray:
    """Nearest-neighbour resize of *icon* to ``(height, width)``."""
    src_h, src_w = icon.shape[:2]
    if (src_h, src_w) == (height, width):
        return icon.copy()
    rows = (np.arange(height) * src_h) // height
    cols = (np.arange(width) * src_w) // width
    return icon[rows[:, np.newaxis], cols[np.newaxis, :]]


def filled_rows(height: int, progress: float, direction: FillDirection) -> np.ndarray:
    """Boolean mask over rows marking the filled side of the fill line."""
    rows = np.zeros(height, dtype=bool)
    if direction == FillDirection.EMPTY_TO_FULL:
        fill = int(height * progress)
        if fill > 0:
            rows[height - fill :] = True
    else:
        fill = int(height * (1.0 - progress))
        rows[:fill] = True
    return rows


def dim(frame: np.ndarray, level: float) -> np.ndarray:
    """Scale brightness by *level* (``0..1``)."""
    level = min(max(level, 0.0), 1.0)
    return np.rint(frame.astype(np.float64) * level).astype(np.uint8)


class Renderer:
    """Renders button faces for each :class:`RenderMode`.

    Icons are resolved through *icon_loader* once per handle and cached, so a
    given handle always renders from the same pixels.
    """

    def __init__(
        self,
        icon_loader: IconLoader | None = load_npy_icon,
        painter: TextPainter | None = None,
    ) -> None:
        self._icon_loader = icon_loader
        self._painter: TextPainter = painter if painter is not None else BitmapFont()
        self._icons: dict[str, np.ndarray] = {}

    def render(
        self,
        state: TimerState,
        config: RenderConfig,
        mode: RenderMode | str | None = None,
        *,
        pulse: float = 1.0,
    ) -> np.ndarray:
        """Render *state*; *mode* overrides ``config.mode`` when given.

        *pulse* is the brightness applied to a paused fill or ripen frame
        when ``config.pulse_on_pause`` is set; see :func:`pulse_level`.

        Raises :class:`RenderError` when ``ripen`` has no icon for a phase
        that has begun.  ``fill_icon`` without an icon renders exactly as
        ``fill_bg``.
        """
        if mode is None:
            mode = config.mode
        elif isinstance(mode, str):
            mode = RenderMode.parse(mode)

        if state.awaiting_start:
            return self._render_boundary(state, config)
        if mode == RenderMode.TEXT:
            return self._render_text(state, config)

        if mode == RenderMode.FILL_BG:
            frame = self._render_fill_bg(state, config)
        elif mode == RenderMode.FILL_ICON:
            icon = self._icon_for(state.phase, config)
            if icon is None:
                logger.debug("fill_icon has no icon for this phase, rendering fill_bg")
                frame = self._render_fill_bg(state, config)
            else:
                frame = self._render_fill_icon(state, config, icon)
        else:
            icon = self._icon_for(state.phase, config)
            if icon is None:
                raise RenderError(f"ripen mode requires an icon for the {state.phase.value} phase")
            frame = shift_hue_towards_green(
                icon, config.ripen_strength * (1.0 - state.progress)
            )

        if not state.running and config.pulse_on_pause:
            frame = dim(frame, pulse)
        self._draw_overlay(frame, state, config)
        return frame

    # -- modes ---------------------------------------------------------------

    def _render_boundary(self, state: TimerState, config: RenderConfig) -> np.ndarray:
        icon = self._icon_for(state.phase, config)
        if icon is not None:
            if config.show_dots:
                self._draw_dots(icon, state, config.dot_paused)
            return icon

        frame = _blank(config.width, config.height, config.paused_color)
        lines = config.boundary_labels[state.phase].split("\n")
        unit_w = max(self._painter.measure(line, 1)[0] for line in lines)
        unit_h = len(lines) * (GLYPH_HEIGHT + 1) - 1
        content = 1.0 - 2.0 * config.padding
        if unit_w == 0:
            return frame
        scale = max(
            1,
            min(int(config.width * content) // unit_w, int(config.height * content) // unit_h),
        )
        y = (config.height - unit_h * scale) // 2
        for line in lines:
            line_w, _ = self._painter.measure(line, scale)
            self._painter.draw(frame, line, (config.width - line_w) // 2, y, scale, config.fg_color)
            y += (GLYPH_HEIGHT + 1) * scale
        return frame

    def _render_text(self, state: TimerState, config: RenderConfig) -> np.ndarray:
        width, height = config.width, config.height
        bg = config.phase_color(state.phase) if state.running else config.paused_color
        frame = _blank(width, height, bg)
        margin = _margin(height)

        if config.phase_indicator.shows(state.running):
            self._draw_line(frame, config.phase_labels[state.phase], margin, config)
        else:
            self._draw_line(frame, _PHASE_LETTERS[state.phase], margin, config)

        text = state.remaining_formatted
        scale = self._fit_scale(
            text, int(width * (1.0 - 2.0 * config.padding)), int(height * 0.4)
        )
        text_w, text_h = self._painter.measure(text, scale)
        self._painter.draw(
            frame, text, (width - text_w) // 2, (height - text_h) // 2, scale, config.fg_color
        )
        if config.show_dots:
            self._draw_dots(frame, state, config.dot_color(state.running))
        return frame

    def _render_fill_bg(self, state: TimerState, config: RenderConfig) -> np.ndarray:
        frame = _blank(config.width, config.height, config.empty_color)
        rows = filled_rows(config.height, state.progress, config.fill_direction)
        frame[rows] = config.phase_color(state.phase)
        return frame

    def _render_fill_icon(
        self, state: TimerState, config: RenderConfig, icon: np.ndarray
    ) -> np.ndarray:
        frame = icon.copy()
        unfilled = ~filled_rows(config.height, state.progress, config.fill_direction)
        frame[unfilled] = to_greyscale(frame[unfilled])
        return frame

    # -- overlay -------------------------------------------------------------

    def _draw_overlay(self, frame: np.ndarray, state: TimerState, config: RenderConfig) -> None:
        """Top line, paused label and bottom indicator for the fill and ripen modes.

        Paused mid-phase: remaining time on top, the paused label centred, and
        the phase label at the bottom in place of the dots when the indicator
        is shown while paused.  Running: the phase label on top when the
        indicator is shown while running, dots at the bottom.
        """
        height, width = frame.shape[:2]
        margin = _margin(height)
        label = config.phase_labels[state.phase]

        if not state.running:
            self._draw_line(frame, state.remaining_formatted, margin, config)
        elif config.phase_indicator.shows(True):
            self._draw_line(frame, label, margin, config)

        if not state.running and config.paused_label:
            text = config.paused_label
            scale = self._fit_scale(
                text, int(width * (1.0 - 2.0 * config.padding)), int(height * 0.4)
            )
            text_w, text_h = self._painter.measure(text, scale)
            self._painter.draw(
                frame, text, (width - text_w) // 2, (height - text_h) // 2, scale, config.fg_color
            )

        if not state.running and config.phase_indicator.shows(False):
            scale = self._line_scale(label, config)
            _, text_h = self._painter.measure(label, scale)
            self._draw_line(frame, label, height - margin - text_h, config, scale)
        elif config.show_dots:
            self._draw_dots(frame, state, config.dot_color(state.running))

    # -- helpers -------------------------------------------------------------

    def _icon_for(self, phase: Phase, config: RenderConfig) -> np.ndarray | None:
        handle = config.icons.get(phase)
        if handle is None or self._icon_loader is None:
            return None
        if handle not in self._icons:
            try:
                self._icons[handle] = self._icon_loader(handle)
            except (OSError, ValueError) as exc:
                raise RenderError(f"cannot load icon {handle!r}: {exc}") from exc
        return fit_icon(self._icons[handle], config.width, config.height)

    def _fit_scale(self, text: str, max_width: int, max_height: int) -> int:
        unit_w, unit_h = self._painter.measure(text, 1)
        if unit_w == 0 or unit_h == 0:
            return 1
        return max(1, min(max_width // unit_w, max_height // unit_h))

    def _line_scale(self, text: str, config: RenderConfig) -> int:
        # Small text: at most the phase-letter scale, shrunk to fit the width.
        top_scale = max(1, config.height // 36)
        width = config.width - 2 * _margin(config.height)
        return min(top_scale, self._fit_scale(text, width, top_scale * GLYPH_HEIGHT))

    def _draw_line(
        self,
        frame: np.ndarray,
        text: str,
        y: int,
        config: RenderConfig,
        scale: int | None = None,
    ) -> None:
        """Draw one small centred line of text with its top edge at *y*."""
        if scale is None:
            scale = self._line_scale(text, config)
        text_w, _ = self._painter.measure(text, scale)
        self._painter.draw(frame, text, (frame.shape[1] - text_w) // 2, y, scale, config.fg_color)

    def _draw_dots(self, frame: np.ndarray, state: TimerState, color: Rgb) -> None:
        """Four iteration dots along the bottom edge; all filled in a long break."""
        height, width = frame.shape[:2]
        filled = ITERATIONS_PER_SESSION if state.phase == Phase.LONG_BREAK else state.iteration
        size = max(2, width // 18)
        total = ITERATIONS_PER_SESSION * size + (ITERATIONS_PER_SESSION - 1) * size
        x = (width - total) // 2
        y = height - _margin(height) - size
        if x < 0 or y < 0:
            return
        for i in range(ITERATIONS_PER_SESSION):
            left = x + i * 2 * size
            dot = frame[y : y + size, left : left + size]
            if i < filled:
                dot[:] = color
            else:
                dot[0, :] = color
                dot[-1, :] = color
                dot[:, 0] = color
                dot[:, -1] = color


def _blank(width: int, height: int, color: Rgb) -> np.ndarray:
    frame = np.empty((height, width, 3), dtype=np.uint8)
    frame[:] = color
    return frame


def _margin(height: int) -> int:
    return max(1, height // 24)


def render(
    state: TimerState,
    config: RenderConfig,
    mode: RenderMode | str | None = None,
    icon_loader: IconLoader | None = load_npy_icon,
    *,
    pulse: float = 1.0,
) -> np.ndarray:
    """One-shot convenience wrapper around :meth:`Renderer.render`."""
    return Renderer(icon_loader=icon_loader).render(state, config, mode, pulse=pulse)
