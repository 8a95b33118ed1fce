"""pomodeck: a pomodoro timer engine for button-grid displays."""

__version__ = "0.1.0"
