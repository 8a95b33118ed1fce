"""Tests for the button renderer."""

from pathlib import Path

import numpy as np
import pytest

from pomodeck.core.errors import ConfigError, RenderError
from pomodeck.core.timer import Durations, Phase, TimerState
from pomodeck.render.renderer import (
    FillDirection,
    PhaseIndicatorDisplay,
    RenderConfig,
    Renderer,
    RenderMode,
    fit_icon,
    load_npy_icon,
    pulse_level,
    render,
)

WORK_RGB = (200, 40, 40)
BREAK_RGB = (40, 160, 80)
PAUSED_RGB = (120, 120, 120)
EMPTY_RGB = (10, 20, 30)
FG_RGB = (255, 255, 255)

# 72x72 button: 4px dots every 8px from (x=22, y=65); these pixels sit inside each dot.
_DOT_Y = 66
_DOT_XS = [23, 31, 39, 47]


def _config(**overrides) -> RenderConfig:
    values = dict(
        phase_colors={Phase.WORK: WORK_RGB, Phase.SHORT_BREAK: BREAK_RGB, Phase.LONG_BREAK: BREAK_RGB},
        paused_color=PAUSED_RGB,
        empty_color=EMPTY_RGB,
        fg_color=FG_RGB,
    )
    values.update(overrides)
    return RenderConfig(**values)


def _state(progress: float = 0.0, **overrides) -> TimerState:
    """A running state unless told otherwise; 1000 s phases."""
    overrides.setdefault("running", True)
    durations = Durations(1000, 1000, 1000)
    return TimerState(durations=durations, elapsed_seconds=1000 * progress, **overrides)


def _gradient_icon(size: int = 72) -> np.ndarray:
    """A colourful test icon: red/blue ramps with a fixed green channel."""
    ramp = np.linspace(0, 255, size).astype(np.uint8)
    icon = np.zeros((size, size, 3), dtype=np.uint8)
    icon[..., 0] = ramp[np.newaxis, :]
    icon[..., 1] = 60
    icon[..., 2] = ramp[::-1][:, np.newaxis]
    return icon


def _renderer(icons: dict[str, np.ndarray] | None = None) -> Renderer:
    icons = icons or {}
    return Renderer(icon_loader=lambda handle: icons[handle])


# ---------------------------------------------------------------------------
# General properties
# ---------------------------------------------------------------------------


class TestFrames:
    def test_shape_and_dtype(self) -> None:
        frame = _renderer().render(_state(), _config(width=96, height=48))
        assert frame.shape == (48, 96, 3)
        assert frame.dtype == np.uint8

    @pytest.mark.parametrize("mode", ["text", "fill_bg", "fill_icon", "ripen"])
    def test_deterministic(self, mode: str) -> None:
        icons = {"tomato": _gradient_icon()}
        config = _config(icons={Phase.WORK: "tomato"})
        state = _state(0.37, running=True, iteration=2)
        first = _renderer(icons).render(state, config, mode)
        second = _renderer(icons).render(state, config, mode)
        assert first.tobytes() == second.tobytes()

    def test_mode_argument_overrides_config(self) -> None:
        config = _config(mode=RenderMode.TEXT)
        frame = _renderer().render(_state(0.5), config, RenderMode.FILL_BG)
        assert frame[0, 0].tolist() == list(EMPTY_RGB)

    def test_unknown_mode_name(self) -> None:
        with pytest.raises(ConfigError):
            _renderer().render(_state(), _config(), "sparkle")

    def test_module_level_render(self) -> None:
        frame = render(_state(0.5), _config(show_dots=False), "fill_bg")
        assert frame[-1, 0].tolist() == list(WORK_RGB)


# ---------------------------------------------------------------------------
# text mode
# ---------------------------------------------------------------------------


class TestTextMode:
    def test_running_uses_phase_colour(self) -> None:
        frame = _renderer().render(_state(running=True), _config())
        assert frame[0, 0].tolist() == list(WORK_RGB)

    def test_break_colour(self) -> None:
        frame = _renderer().render(_state(running=True, phase=Phase.SHORT_BREAK), _config())
        assert frame[0, 0].tolist() == list(BREAK_RGB)

    def test_paused_colour(self) -> None:
        frame = _renderer().render(_state(0.5, running=False), _config())
        assert frame[0, 0].tolist() == list(PAUSED_RGB)

    def test_countdown_is_drawn(self) -> None:
        frame = _renderer().render(_state(running=True), _config(show_dots=False))
        middle = frame[28:44]
        assert (middle == FG_RGB).all(axis=-1).any()

    def test_countdown_changes_with_time(self) -> None:
        renderer = _renderer()
        a = renderer.render(_state(0.1, running=True), _config())
        b = renderer.render(_state(0.6, running=True), _config())
        assert a.tobytes() != b.tobytes()

    def test_iteration_dots(self) -> None:
        frame = _renderer().render(_state(running=True, iteration=2), _config())
        centres = [frame[_DOT_Y, x].tolist() for x in _DOT_XS]
        assert centres == [list(FG_RGB), list(FG_RGB), list(WORK_RGB), list(WORK_RGB)]

    def test_long_break_shows_all_dots(self) -> None:
        state = _state(running=True, phase=Phase.LONG_BREAK, iteration=3)
        frame = _renderer().render(state, _config())
        centres = [frame[_DOT_Y, x].tolist() for x in _DOT_XS]
        assert centres == [list(FG_RGB)] * 4

    def test_dots_can_be_hidden(self) -> None:
        frame = _renderer().render(_state(running=True, iteration=3), _config(show_dots=False))
        assert frame[_DOT_Y, _DOT_XS[0]].tolist() == list(WORK_RGB)


# ---------------------------------------------------------------------------
# fill_bg mode
# ---------------------------------------------------------------------------


class TestFillBg:
    def test_empty_to_full_half(self) -> None:
        frame = _renderer().render(_state(0.5), _config(show_dots=False), "fill_bg")
        assert (frame[:36] == EMPTY_RGB).all()
        assert (frame[36:] == WORK_RGB).all()

    def test_empty_to_full_start_and_end(self) -> None:
        renderer = _renderer()
        start = renderer.render(_state(0.0), _config(show_dots=False), "fill_bg")
        end = renderer.render(_state(1.0), _config(show_dots=False), "fill_bg")
        assert (start == EMPTY_RGB).all()
        assert (end == WORK_RGB).all()

    def test_full_to_empty(self) -> None:
        config = _config(show_dots=False, fill_direction=FillDirection.FULL_TO_EMPTY)
        renderer = _renderer()
        assert (renderer.render(_state(0.0), config, "fill_bg") == WORK_RGB).all()
        quarter = renderer.render(_state(0.25), config, "fill_bg")
        assert (quarter[:54] == WORK_RGB).all()
        assert (quarter[54:] == EMPTY_RGB).all()
        assert (renderer.render(_state(1.0), config, "fill_bg") == EMPTY_RGB).all()

    def test_uses_phase_colour_even_when_paused(self) -> None:
        state = _state(0.5, phase=Phase.SHORT_BREAK, running=False)
        frame = _renderer().render(state, _config(show_dots=False), "fill_bg")
        assert frame[50, 0].tolist() == list(BREAK_RGB)
        assert frame[10, 0].tolist() == list(EMPTY_RGB)


# ---------------------------------------------------------------------------
# fill_icon mode
# ---------------------------------------------------------------------------


class TestFillIcon:
    @pytest.mark.parametrize("progress", [0.0, 0.13, 0.5, 0.77, 1.0])
    @pytest.mark.parametrize("direction", list(FillDirection))
    def test_without_icon_matches_fill_bg(self, progress: float, direction: FillDirection) -> None:
        config = _config(fill_direction=direction)
        state = _state(progress, iteration=1)
        renderer = _renderer()
        fill_icon = renderer.render(state, config, "fill_icon")
        fill_bg = renderer.render(state, config, "fill_bg")
        assert fill_icon.tobytes() == fill_bg.tobytes()

    @pytest.mark.parametrize("indicator", list(PhaseIndicatorDisplay))
    def test_without_icon_matches_fill_bg_when_paused(
        self, indicator: PhaseIndicatorDisplay
    ) -> None:
        config = _config(phase_indicator=indicator, pulse_on_pause=True)
        state = _state(0.4, running=False, iteration=2)
        renderer = _renderer()
        fill_icon = renderer.render(state, config, "fill_icon", pulse=0.7)
        fill_bg = renderer.render(state, config, "fill_bg", pulse=0.7)
        assert fill_icon.tobytes() == fill_bg.tobytes()

    def test_unfilled_side_is_greyscale(self) -> None:
        icon = _gradient_icon()
        config = _config(show_dots=False, icons={Phase.WORK: "tomato"})
        frame = _renderer({"tomato": icon}).render(_state(0.5), config, "fill_icon")
        top, bottom = frame[:36], frame[36:]
        assert (top[..., 0] == top[..., 1]).all()
        assert (top[..., 1] == top[..., 2]).all()
        assert np.array_equal(bottom, icon[36:])

    def test_full_to_empty_greys_the_bottom(self) -> None:
        icon = _gradient_icon()
        config = _config(
            show_dots=False,
            icons={Phase.WORK: "tomato"},
            fill_direction=FillDirection.FULL_TO_EMPTY,
        )
        frame = _renderer({"tomato": icon}).render(_state(0.25), config, "fill_icon")
        assert np.array_equal(frame[:54], icon[:54])
        assert (frame[54:, :, 0] == frame[54:, :, 2]).all()

    def test_icon_only_for_its_phase(self) -> None:
        config = _config(icons={Phase.WORK: "tomato"})
        state = _state(0.5, phase=Phase.LONG_BREAK)
        renderer = _renderer({"tomato": _gradient_icon()})
        assert renderer.render(state, config, "fill_icon").tobytes() == renderer.render(
            state, config, "fill_bg"
        ).tobytes()


# ---------------------------------------------------------------------------
# ripen mode
# ---------------------------------------------------------------------------


class TestRipen:
    def test_requires_icon(self) -> None:
        with pytest.raises(RenderError):
            _renderer().render(_state(0.5), _config(), "ripen")

    def test_complete_phase_shows_original_icon(self) -> None:
        icon = _gradient_icon()
        config = _config(show_dots=False, icons={Phase.WORK: "tomato"})
        frame = _renderer({"tomato": icon}).render(_state(1.0), config, "ripen")
        assert np.array_equal(frame, icon)

    def test_fresh_phase_is_fully_green(self) -> None:
        icon = np.zeros((72, 72, 3), dtype=np.uint8)
        icon[...] = (255, 0, 0)
        config = _config(show_dots=False, icons={Phase.WORK: "tomato"})
        frame = _renderer({"tomato": icon}).render(_state(0.0), config, "ripen")
        assert (frame == (0, 255, 0)).all()

    def test_strength_limits_the_shift(self) -> None:
        icon = np.zeros((72, 72, 3), dtype=np.uint8)
        icon[...] = (255, 0, 0)
        config = _config(show_dots=False, icons={Phase.WORK: "tomato"}, ripen_strength=0.5)
        frame = _renderer({"tomato": icon}).render(_state(0.0), config, "ripen")
        assert (frame == (255, 255, 0)).all()

    def test_shift_shrinks_with_progress(self) -> None:
        icon = np.zeros((72, 72, 3), dtype=np.uint8)
        icon[...] = (255, 0, 0)
        config = _config(show_dots=False, icons={Phase.WORK: "tomato"})
        renderer = _renderer({"tomato": icon})
        greens = [
            int(renderer.render(_state(p), config, "ripen")[0, 0, 1]) for p in (0.0, 0.25, 0.5, 0.75, 1.0)
        ]
        assert greens == sorted(greens, reverse=True)
        assert greens[-1] == 0


# ---------------------------------------------------------------------------
# Waiting for a start
# ---------------------------------------------------------------------------

DOT_RUNNING = (1, 2, 3)
DOT_PAUSED = (4, 5, 6)


def _has_colour(region: np.ndarray, colour: tuple[int, int, int]) -> bool:
    return bool((region == colour).all(axis=-1).any())


class TestBoundaryView:
    def test_pinned_phase_without_icon_shows_label(self) -> None:
        state = _state(1.0, phase=Phase.SHORT_BREAK, running=False, iteration=1)
        frame = _renderer().render(state, _config(), "fill_bg")
        assert frame[0, 0].tolist() == list(PAUSED_RGB)
        assert _has_colour(frame[19:53], FG_RGB)
        # No dots under a label.
        assert frame[_DOT_Y, _DOT_XS[0]].tolist() == list(PAUSED_RGB)

    @pytest.mark.parametrize("progress", [0.0, 1.0])
    def test_same_face_in_every_mode(self, progress: float) -> None:
        state = _state(progress, running=False)
        renderer = _renderer()
        frames = {renderer.render(state, _config(), mode).tobytes() for mode in RenderMode}
        assert len(frames) == 1

    def test_ripen_without_icon_does_not_fail_before_start(self) -> None:
        frame = _renderer().render(_state(0.0, running=False), _config(), "ripen")
        assert frame[0, 0].tolist() == list(PAUSED_RGB)

    def test_labels_differ_per_phase(self) -> None:
        renderer = _renderer()
        faces = {
            renderer.render(_state(1.0, phase=phase, running=False), _config()).tobytes()
            for phase in Phase
        }
        assert len(faces) == 3

    def test_custom_label(self) -> None:
        renderer = _renderer()
        state = _state(0.0, running=False)
        default = renderer.render(state, _config())
        custom = renderer.render(state, _config(boundary_labels={Phase.WORK: "GO"}))
        assert default.tobytes() != custom.tobytes()

    def test_icon_with_paused_dots(self) -> None:
        icon = _gradient_icon()
        config = _config(icons={Phase.WORK: "tomato"}, dot_paused=DOT_PAUSED)
        state = _state(0.0, running=False, iteration=2)
        frame = _renderer({"tomato": icon}).render(state, config, "fill_bg")
        assert np.array_equal(frame[:60], icon[:60])
        centres = [frame[_DOT_Y, x].tolist() for x in _DOT_XS]
        assert centres[:2] == [list(DOT_PAUSED)] * 2
        assert centres[2:] == [icon[_DOT_Y, x].tolist() for x in _DOT_XS[2:]]

    def test_icon_cache_is_not_drawn_on(self) -> None:
        icon = _gradient_icon()
        config = _config(icons={Phase.WORK: "tomato"}, dot_paused=DOT_PAUSED)
        renderer = _renderer({"tomato": icon})
        renderer.render(_state(0.0, running=False, iteration=3), config)
        frame = renderer.render(
            _state(0.5, iteration=0), _config(icons={Phase.WORK: "tomato"}), "ripen"
        )
        assert not _has_colour(frame, DOT_PAUSED)

    def test_running_from_zero_is_not_a_boundary(self) -> None:
        frame = _renderer().render(_state(0.0), _config(show_dots=False), "fill_bg")
        assert (frame == EMPTY_RGB).all()


# ---------------------------------------------------------------------------
# Paused overlay
# ---------------------------------------------------------------------------


class TestPausedOverlay:
    def test_paused_label_in_the_middle(self) -> None:
        renderer = _renderer()
        state = _state(0.5, running=False)
        frame = renderer.render(state, _config(), "fill_bg")
        plain = renderer.render(state, _config(paused_label=""), "fill_bg")
        assert _has_colour(frame[31:41], FG_RGB)
        assert not _has_colour(plain[31:41], FG_RGB)

    def test_remaining_time_on_top_when_paused(self) -> None:
        renderer = _renderer()
        paused = renderer.render(_state(0.5, running=False), _config(), "fill_bg")
        running = renderer.render(_state(0.5), _config(), "fill_bg")
        assert _has_colour(paused[3:13], FG_RGB)
        assert not _has_colour(running[3:13], FG_RGB)

    def test_remaining_time_tracks_progress(self) -> None:
        renderer = _renderer()
        config = _config(paused_label="", phase_indicator=PhaseIndicatorDisplay.NONE)
        a = renderer.render(_state(0.2, running=False), config, "fill_bg")
        b = renderer.render(_state(0.3, running=False), config, "fill_bg")
        assert not np.array_equal(a[3:13], b[3:13])

    def test_phase_label_replaces_dots_when_paused(self) -> None:
        config = _config(dot_paused=DOT_PAUSED)
        frame = _renderer().render(_state(0.5, running=False, iteration=2), config, "fill_bg")
        assert not _has_colour(frame, DOT_PAUSED)
        assert _has_colour(frame[59:69], FG_RGB)

    def test_paused_dots_without_indicator(self) -> None:
        config = _config(dot_paused=DOT_PAUSED, phase_indicator=PhaseIndicatorDisplay.NONE)
        frame = _renderer().render(_state(0.5, running=False, iteration=2), config, "fill_bg")
        centres = [frame[_DOT_Y, x].tolist() for x in _DOT_XS]
        assert centres == [list(DOT_PAUSED)] * 2 + [list(WORK_RGB)] * 2

    def test_running_dots_colour(self) -> None:
        config = _config(dot_running=DOT_RUNNING, dot_paused=DOT_PAUSED)
        frame = _renderer().render(_state(0.5, iteration=1), config, "fill_bg")
        assert frame[_DOT_Y, _DOT_XS[0]].tolist() == list(DOT_RUNNING)
        assert not _has_colour(frame, DOT_PAUSED)

    @pytest.mark.parametrize(
        "indicator, shown",
        [
            (PhaseIndicatorDisplay.NONE, False),
            (PhaseIndicatorDisplay.RUNNING, True),
            (PhaseIndicatorDisplay.PAUSED, False),
            (PhaseIndicatorDisplay.BOTH, True),
        ],
    )
    def test_indicator_on_top_while_running(
        self, indicator: PhaseIndicatorDisplay, shown: bool
    ) -> None:
        frame = _renderer().render(_state(0.5), _config(phase_indicator=indicator), "fill_bg")
        assert _has_colour(frame[3:13], FG_RGB) is shown

    def test_ripen_paused_mid_phase_gets_overlay(self) -> None:
        icon = np.zeros((72, 72, 3), dtype=np.uint8)
        icon[...] = (255, 0, 0)
        config = _config(show_dots=False, icons={Phase.WORK: "tomato"})
        renderer = _renderer({"tomato": icon})
        paused = renderer.render(_state(0.5, running=False), config, "ripen")
        running = renderer.render(_state(0.5), config, "ripen")
        assert _has_colour(paused, FG_RGB)
        assert not _has_colour(running, FG_RGB)
        assert paused[50, 0].tolist() == running[50, 0].tolist()

    def test_text_mode_paused_dots_colour(self) -> None:
        config = _config(dot_paused=DOT_PAUSED)
        frame = _renderer().render(_state(0.5, running=False, iteration=1), config)
        assert frame[_DOT_Y, _DOT_XS[0]].tolist() == list(DOT_PAUSED)

    def test_text_mode_indicator_replaces_letter(self) -> None:
        renderer = _renderer()
        letter = renderer.render(_state(0.5), _config(phase_indicator=PhaseIndicatorDisplay.NONE))
        label = renderer.render(_state(0.5), _config(phase_indicator=PhaseIndicatorDisplay.BOTH))
        assert not np.array_equal(letter[:15], label[:15])
        assert np.array_equal(letter[15:], label[15:])


class TestPulse:
    def test_pulse_level_range(self) -> None:
        assert pulse_level(0.0) == pytest.approx(1.0)
        assert pulse_level(1.0) == pytest.approx(0.5)
        assert pulse_level(2.0) == pytest.approx(1.0)
        assert all(0.5 <= pulse_level(t / 10) <= 1.0 for t in range(40))

    def test_dims_paused_frame(self) -> None:
        config = _config(pulse_on_pause=True)
        frame = _renderer().render(_state(0.5, running=False), config, "fill_bg", pulse=0.5)
        assert frame[50, 0].tolist() == [100, 20, 20]

    def test_overlay_is_not_dimmed(self) -> None:
        config = _config(pulse_on_pause=True)
        frame = _renderer().render(_state(0.5, running=False), config, "fill_bg", pulse=0.5)
        assert _has_colour(frame, FG_RGB)

    def test_running_frame_ignores_pulse(self) -> None:
        renderer = _renderer()
        config = _config(pulse_on_pause=True)
        full = renderer.render(_state(0.5), config, "fill_bg", pulse=1.0)
        dimmed = renderer.render(_state(0.5), config, "fill_bg", pulse=0.5)
        assert np.array_equal(full, dimmed)

    def test_pulse_off_by_default(self) -> None:
        renderer = _renderer()
        state = _state(0.5, running=False)
        assert np.array_equal(
            renderer.render(state, _config(), "fill_bg", pulse=0.5),
            renderer.render(state, _config(), "fill_bg", pulse=1.0),
        )

    def test_module_level_render_passes_pulse(self) -> None:
        config = _config(pulse_on_pause=True, show_dots=False)
        frame = render(_state(0.5, running=False), config, "fill_bg", pulse=0.5)
        assert frame[50, 0].tolist() == [100, 20, 20]


class TestPhaseIndicatorDisplay:
    def test_parse(self) -> None:
        assert PhaseIndicatorDisplay.parse(" Both ") == PhaseIndicatorDisplay.BOTH

    def test_parse_unknown(self) -> None:
        with pytest.raises(ConfigError, match="phase indicator"):
            PhaseIndicatorDisplay.parse("blinking")


# ---------------------------------------------------------------------------
# Icons
# ---------------------------------------------------------------------------


class TestIcons:
    def test_fit_icon_nearest_neighbour(self) -> None:
        icon = np.array([[[1, 1, 1], [2, 2, 2]], [[3, 3, 3], [4, 4, 4]]], dtype=np.uint8)
        fitted = fit_icon(icon, 4, 4)
        assert fitted[..., 0].tolist() == [[1, 1, 2, 2], [1, 1, 2, 2], [3, 3, 4, 4], [3, 3, 4, 4]]

    def test_loader_failure_is_render_error(self) -> None:
        def broken(handle: str) -> np.ndarray:
            raise OSError(f"{handle} not found")

        config = _config(icons={Phase.WORK: "missing"})
        with pytest.raises(RenderError):
            Renderer(icon_loader=broken).render(_state(), config, "fill_icon")

    def test_icons_are_loaded_once(self) -> None:
        calls: list[str] = []

        def loader(handle: str) -> np.ndarray:
            calls.append(handle)
            return _gradient_icon()

        renderer = Renderer(icon_loader=loader)
        config = _config(icons={Phase.WORK: "tomato"})
        renderer.render(_state(0.2), config, "ripen")
        renderer.render(_state(0.4), config, "ripen")
        assert calls == ["tomato"]

    def test_load_npy_icon(self, tmp_path: Path) -> None:
        rgba = np.zeros((4, 4, 4), dtype=np.uint8)
        rgba[..., 0] = 9
        path = tmp_path / "icon.npy"
        np.save(path, rgba)
        icon = load_npy_icon(str(path))
        assert icon.shape == (4, 4, 3)
        assert (icon[..., 0] == 9).all()

    def test_load_npy_icon_rejects_wrong_shape(self, tmp_path: Path) -> None:
        path = tmp_path / "icon.npy"
        np.save(path, np.zeros((4, 4), dtype=np.uint8))
        with pytest.raises(ValueError):
            load_npy_icon(str(path))
