"""Validated settings for the engine, renderer and control socket."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from pomodeck.core.errors import ConfigError
from pomodeck.core.store import DEFAULT_STATE_DIR
from pomodeck.core.timer import Durations, Phase
from pomodeck.render.colour import parse_colour
from pomodeck.render.renderer import (
    FillDirection,
    PhaseIndicatorDisplay,
    RenderConfig,
    RenderMode,
)

DEFAULT_CONFIG_PATH = DEFAULT_STATE_DIR / "config.json"

_SOCKET_DIR = "pomodeck"
_SOCKET_NAME = "pomodeck.socket"

_MAX_PADDING = 0.4
_SOUND_KEYS = frozenset({"work", "break"})
_LABEL_EXTRA_KEYS = frozenset({"paused"})


def default_socket_path() -> Path:
    """``$XDG_RUNTIME_DIR/pomodeck/pomodeck.socket``, or under the temp dir."""
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR") or tempfile.gettempdir()
    return Path(runtime_dir) / _SOCKET_DIR / _SOCKET_NAME


def _is_number(value: Any) -> bool:
    return not isinstance(value, bool) and isinstance(value, (int, float))


def _check_texts(name: str, texts: Any, extra_keys: frozenset[str] = frozenset()) -> None:
    """Texts keyed by phase name, plus any of *extra_keys*."""
    if not isinstance(texts, dict):
        raise ConfigError(f"Invalid config for '{name}': expected an object")
    for key, text in texts.items():
        if key not in extra_keys:
            try:
                Phase.parse(key)
            except ValueError as exc:
                raise ConfigError(f"Invalid config for '{name}': {exc}") from None
        if not isinstance(text, str):
            raise ConfigError(f"Invalid config for '{name}.{key}': expected a string, got {text!r}")


def _require_positive_int(name: str, value: Any, unit: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"Invalid config for '{name}': expected {unit} > 0, got {value!r}")


@dataclass
class Config:
    """Settings as supplied by the user.  Durations are in minutes."""

    work: int = 25
    short_break: int = 5
    long_break: int = 15
    auto_start_work: bool = False
    auto_start_break: bool = False
    interval_ms: int = 1000
    work_bg: str = "#c0392b"
    short_break_bg: str = "#27ae60"
    long_break_bg: str = "#27ae60"
    paused_bg: str = "#7f8c8d"
    empty_bg: str = "#2c3e50"
    fg_color: str = "#ffffff"
    dot_running: str = "#ffffff"
    dot_paused: str = "#bdc3c7"
    render_mode: str = "text"
    fill_direction: str = "empty_to_full"
    ripen_strength: float = 1.0
    padding: float = 0.1
    show_dots: bool = True
    phase_indicator: str = "paused"
    pulse_on_pause: bool = False
    labels: dict[str, str] = field(default_factory=dict)
    phases: dict[str, str] = field(default_factory=dict)
    width: int = 72
    height: int = 72
    icons: dict[str, str] = field(default_factory=dict)
    sounds: dict[str, str] = field(default_factory=dict)
    state_dir: Path = DEFAULT_STATE_DIR
    socket_path: Path = field(default_factory=default_socket_path)

    def __post_init__(self) -> None:
        for name in ("work", "short_break", "long_break"):
            _require_positive_int(name, getattr(self, name), "minutes")
        for name in ("width", "height"):
            _require_positive_int(name, getattr(self, name), "pixels")
        _require_positive_int("interval_ms", self.interval_ms, "milliseconds")
        for name in ("auto_start_work", "auto_start_break", "show_dots", "pulse_on_pause"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"Invalid config for '{name}': expected a boolean")
        if not _is_number(self.ripen_strength) or not 0.0 <= self.ripen_strength <= 1.0:
            raise ConfigError(
                f"Invalid config for 'ripen_strength': expected 0..1, got {self.ripen_strength!r}"
            )
        if not _is_number(self.padding):
            raise ConfigError(f"Invalid config for 'padding': expected a number, got {self.padding!r}")
        self.padding = min(max(float(self.padding), 0.0), _MAX_PADDING)
        self.state_dir = Path(self.state_dir).expanduser()
        self.socket_path = Path(self.socket_path).expanduser()

        for key in self.icons:
            try:
                Phase.parse(key)
            except ValueError as exc:
                raise ConfigError(f"Invalid config for 'icons': {exc}") from None
        unknown = set(self.sounds) - _SOUND_KEYS
        if unknown:
            raise ConfigError(f"Invalid config for 'sounds': unknown keys {sorted(unknown)}")
        _check_texts("labels", self.labels, _LABEL_EXTRA_KEYS)
        _check_texts("phases", self.phases)
        # Fail early on colours and mode names rather than at first render.
        self.render_config()

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> Config:
        """Build a config from a parsed mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        try:
            return cls(**data)
        except TypeError as exc:
            raise ConfigError(str(exc)) from exc

    def durations(self) -> Durations:
        return Durations.from_minutes(self.work, self.short_break, self.long_break)

    def render_config(self) -> RenderConfig:
        defaults = RenderConfig()
        boundary_labels = dict(defaults.boundary_labels)
        boundary_labels.update({Phase.parse(k): v for k, v in self.labels.items() if k != "paused"})
        phase_labels = dict(defaults.phase_labels)
        phase_labels.update({Phase.parse(k): v for k, v in self.phases.items()})
        return RenderConfig(
            phase_colors={
                Phase.WORK: parse_colour(self.work_bg),
                Phase.SHORT_BREAK: parse_colour(self.short_break_bg),
                Phase.LONG_BREAK: parse_colour(self.long_break_bg),
            },
            paused_color=parse_colour(self.paused_bg),
            empty_color=parse_colour(self.empty_bg),
            fg_color=parse_colour(self.fg_color),
            dot_running=parse_colour(self.dot_running),
            dot_paused=parse_colour(self.dot_paused),
            mode=RenderMode.parse(self.render_mode),
            fill_direction=FillDirection.parse(self.fill_direction),
            icons={Phase.parse(key): handle for key, handle in self.icons.items()},
            ripen_strength=self.ripen_strength,
            padding=self.padding,
            show_dots=self.show_dots,
            phase_indicator=PhaseIndicatorDisplay.parse(self.phase_indicator),
            phase_labels=phase_labels,
            boundary_labels=boundary_labels,
            paused_label=self.labels.get("paused", defaults.paused_label),
            pulse_on_pause=self.pulse_on_pause,
            width=self.width,
            height=self.height,
        )


def load_config(path: Path | None = None) -> Config:
    """Load a JSON config file; a missing file yields the defaults."""
    path = path if path is not None else DEFAULT_CONFIG_PATH
    if not path.exists():
        return Config()
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return Config.from_mapping(data)
