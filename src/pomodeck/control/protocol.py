"""Control protocol: one request line in, one response line out.

Requests are either JSON objects::

    {"command": "set-time", "phase": "work", "seconds": 900}

or the equivalent plain text, handy from a shell::

    set-time work 900

Responses are always JSON: ``{"ok": true, "state": {...}}`` or
``{"ok": false, "error": "..."}``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from pomodeck.core.errors import ProtocolError
from pomodeck.core.timer import Command, CommandKind, Phase, TimerState

STATUS = "status"
MAX_REQUEST_BYTES = 4096


@dataclass(frozen=True)
class Request:
    """A parsed request: a command to apply, or ``None`` for a status query."""

    command: Command | None = None

    @property
    def name(self) -> str:
        return STATUS if self.command is None else self.command.kind.value

    def encode(self) -> bytes:
        payload: dict[str, Any] = {"command": self.name}
        command = self.command
        if command is not None and command.kind == CommandKind.SET_TIME:
            if command.phase is not None:
                payload["phase"] = command.phase.value
            payload["seconds"] = command.seconds
        return (json.dumps(payload) + "\n").encode()


@dataclass(frozen=True)
class Response:
    """``ack(state)`` when ``ok`` is true, ``error(message)`` otherwise."""

    ok: bool
    state: TimerState | None = None
    error: str | None = None

    @classmethod
    def ack(cls, state: TimerState) -> Response:
        return cls(ok=True, state=state)

    @classmethod
    def failure(cls, message: str) -> Response:
        return cls(ok=False, error=message)

    def encode(self) -> bytes:
        if self.ok:
            if self.state is None:
                raise ProtocolError("an ok response needs a state")
            payload: dict[str, Any] = {"ok": True, "state": self.state.to_dict()}
        else:
            payload = {"ok": False, "error": self.error}
        return (json.dumps(payload) + "\n").encode()

    @classmethod
    def decode(cls, raw: bytes) -> Response:
        try:
            data = json.loads(raw.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ProtocolError(f"malformed response: {exc}") from exc
        if not isinstance(data, dict) or not isinstance(data.get("ok"), bool):
            raise ProtocolError("malformed response: missing 'ok' flag")
        if not data["ok"]:
            return cls.failure(str(data.get("error") or "unknown error"))
        try:
            return cls.ack(TimerState.from_dict(data.get("state") or {}))
        except ValueError as exc:
            raise ProtocolError(f"malformed response: {exc}") from exc


def parse_request(raw: str | bytes) -> Request:
    """Parse one request line.  Raises :class:`ProtocolError` when malformed."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode()
        except UnicodeDecodeError:
            raise ProtocolError("request is not valid UTF-8") from None
    text = raw.strip()
    if not text:
        raise ProtocolError("empty request")

    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"malformed JSON request: {exc.msg}") from None
        if not isinstance(data, dict):
            raise ProtocolError("JSON request must be an object")
        return build_request(data.get("command"), data.get("phase"), data.get("seconds"))

    name, *args = text.split()
    if not args:
        return build_request(name)
    if len(args) != 2:
        raise ProtocolError(f"wrong number of arguments for {name!r}")
    try:
        seconds: float = int(args[1])
    except ValueError:
        try:
            seconds = float(args[1])
        except ValueError:
            raise ProtocolError(f"seconds must be a number, got {args[1]!r}") from None
    return build_request(name, args[0], seconds)


def build_request(name: Any, phase: Any = None, seconds: Any = None) -> Request:
    """Validate request fields and build the :class:`Request`."""
    if not isinstance(name, str) or not name.strip():
        raise ProtocolError("request has no command")
    key = name.strip().lower().replace("_", "-")
    if key == STATUS:
        return Request()
    try:
        kind = CommandKind(key)
    except ValueError:
        raise ProtocolError(f"unknown command {name!r}") from None

    if kind != CommandKind.SET_TIME:
        if phase is not None or seconds is not None:
            raise ProtocolError(f"{kind.value} takes no arguments")
        return Request(Command(kind))

    if phase is None or seconds is None:
        raise ProtocolError("set-time requires a phase and a number of seconds")
    try:
        parsed_phase = Phase.parse(phase)
    except ValueError as exc:
        raise ProtocolError(str(exc)) from None
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise ProtocolError(f"seconds must be a number, got {seconds!r}")
    return Request(Command.set_time(parsed_phase, seconds))
