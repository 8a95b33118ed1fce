"""Exception taxonomy shared by the engine, persistence, control and render layers."""


class PomodeckError(Exception):
    """Base class for every error raised by pomodeck."""


class ConfigError(PomodeckError):
    """Raised for invalid configuration values (durations, colours, modes)."""


class PersistenceError(PomodeckError):
    """Raised when a snapshot cannot be read or written.

    Never fatal: the store reports it and falls back to default state.
    """


class ProtocolError(PomodeckError):
    """Raised for a malformed or unknown control request."""


class RenderError(PomodeckError):
    """Raised when a render mode's asset requirement is not met."""


class ChannelUnavailableError(PomodeckError):
    """Raised by the control client when no running engine answers."""
