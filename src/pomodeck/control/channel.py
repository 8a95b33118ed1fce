"""Control channel: a Unix socket feeding commands to the engine's owner.

The listener thread never touches the engine.  It parses each request and
hands it, together with a one-slot reply queue, to the owner through an
inbox queue; the owner applies queued requests between ticks with
:meth:`ControlChannel.process_pending` and the listener writes the reply
back to the client.
"""

from __future__ import annotations

import logging
import os
import queue
import socket
import threading
from dataclasses import dataclass, field
from pathlib import Path

from pomodeck.core.config import default_socket_path
from pomodeck.core.errors import ChannelUnavailableError, ConfigError, PomodeckError, ProtocolError
from pomodeck.core.timer import TimerEngine
from pomodeck.control.protocol import MAX_REQUEST_BYTES, Request, Response, parse_request

logger = logging.getLogger(__name__)

_ACCEPT_TIMEOUT = 0.1
_REPLY_TIMEOUT = 5.0


@dataclass
class PendingRequest:
    """A parsed request waiting for the engine's owner.

    Exactly one of :meth:`claim` (owner) and :meth:`cancel` (listener, on
    timeout) succeeds, so a request the client gave up on is never applied.
    """

    request: Request
    reply: queue.Queue[Response] = field(default_factory=lambda: queue.Queue(maxsize=1))
    cancelled: threading.Event = field(default_factory=threading.Event)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    _claimed: bool = field(default=False, repr=False, compare=False)

    def claim(self) -> bool:
        """Take the request for execution; False if it was cancelled."""
        with self._lock:
            if self.cancelled.is_set():
                return False
            self._claimed = True
            return True

    def cancel(self) -> bool:
        """Give up on the request; False if the owner already claimed it."""
        with self._lock:
            if self._claimed:
                return False
            self.cancelled.set()
            return True


def execute(engine: TimerEngine, request: Request) -> Response:
    """Apply *request* to *engine* and build the reply."""
    if request.command is None:
        return Response.ack(engine.state)
    try:
        state = engine.apply(request.command)
    except ConfigError as exc:
        return Response.failure(str(exc))
    return Response.ack(state)


class ControlChannel:
    """Listens on a Unix socket and queues requests for the engine's owner."""

    def __init__(
        self,
        socket_path: Path | None = None,
        *,
        accept_timeout: float = _ACCEPT_TIMEOUT,
        reply_timeout: float = _REPLY_TIMEOUT,
    ) -> None:
        self._socket_path: Path = socket_path if socket_path is not None else default_socket_path()
        self._accept_timeout = accept_timeout
        self._reply_timeout = reply_timeout
        self._inbox: queue.Queue[PendingRequest] = queue.Queue()
        self._shutdown = threading.Event()
        self._listener: socket.socket | None = None
        self._thread: threading.Thread | None = None

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Bind the socket and start the listener thread.

        Refuses to start if another instance answers on the socket; a stale
        socket file left by a crashed process is removed.
        """
        path = self._socket_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PomodeckError(f"Cannot open control socket {path}: {exc}") from exc
        if path.exists():
            if _is_listening(path):
                raise PomodeckError(f"Another pomodeck instance is already listening on {path}")
            logger.info(f"Removing stale socket {path}")
            path.unlink()

        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            listener.bind(str(path))
            os.chmod(path, 0o600)
            listener.listen()
            listener.settimeout(self._accept_timeout)
        except OSError as exc:
            listener.close()
            raise PomodeckError(f"Cannot open control socket {path}: {exc}") from exc
        self._listener = listener
        self._shutdown.clear()
        self._thread = threading.Thread(target=self._serve, name="pomodeck-control", daemon=True)
        self._thread.start()
        logger.info(f"Control socket listening on {path}")

    def close(self) -> None:
        """Stop the listener, fail anything still queued and remove the socket."""
        self._shutdown.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self._listener is not None:
            self._listener.close()
            self._listener = None
            self._socket_path.unlink(missing_ok=True)
            logger.info("Control socket closed")
        while True:
            try:
                pending = self._inbox.get_nowait()
            except queue.Empty:
                break
            if pending.claim():
                pending.reply.put(Response.failure("engine is shutting down"))

    def __enter__(self) -> ControlChannel:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- owner side ----------------------------------------------------------

    def submit(self, request: Request) -> PendingRequest:
        """Queue *request* for the owner; returns the pending entry to wait on."""
        pending = PendingRequest(request)
        self._inbox.put(pending)
        return pending

    def process_pending(self, engine: TimerEngine) -> int:
        """Apply every queued request to *engine*.  Returns how many ran.

        Requests whose client already timed out are dropped unapplied.
        """
        handled = 0
        while True:
            try:
                pending = self._inbox.get_nowait()
            except queue.Empty:
                return handled
            if not pending.claim():
                logger.debug(f"Dropping cancelled {pending.request.name} request")
                continue
            logger.debug(f"Processing {pending.request.name} request")
            pending.reply.put(execute(engine, pending.request))
            handled += 1

    # -- listener thread -----------------------------------------------------

    def _serve(self) -> None:
        listener = self._listener
        if listener is None:
            return
        while not self._shutdown.is_set():
            try:
                conn, _ = listener.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self._shutdown.is_set():
                    break
                logger.warning(f"Control socket accept failed: {exc}")
                continue
            with conn:
                self._handle_connection(conn)

    def _handle_connection(self, conn: socket.socket) -> None:
        conn.settimeout(self._reply_timeout)
        try:
            with conn.makefile("rb") as stream:
                line = stream.readline(MAX_REQUEST_BYTES)
            response = self._respond(line)
            conn.sendall(response.encode())
        except OSError as exc:
            logger.warning(f"Control connection failed: {exc}")

    def _respond(self, line: bytes) -> Response:
        try:
            request = parse_request(line)
        except ProtocolError as exc:
            logger.warning(f"Rejected control request: {exc}")
            return Response.failure(str(exc))
        logger.debug(f"Received {request.name} request")
        pending = self.submit(request)
        try:
            return pending.reply.get(timeout=self._reply_timeout)
        except queue.Empty:
            pass
        if pending.cancel():
            logger.warning(f"Timed out waiting for the engine, cancelled {request.name} request")
            return Response.failure("engine did not respond in time")
        # Claimed just as the wait ran out: the reply is on its way.
        try:
            return pending.reply.get(timeout=self._reply_timeout)
        except queue.Empty:
            return Response.failure("engine did not respond in time")


def _is_listening(path: Path) -> bool:
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as probe:
        try:
            probe.connect(str(path))
        except OSError:
            return False
    return True


def send_request(
    request: Request, socket_path: Path | None = None, timeout: float = _REPLY_TIMEOUT + 1.0
) -> Response:
    """Send one request to a running instance and return its response.

    Raises :class:`ChannelUnavailableError` if nothing is listening.
    """
    path = socket_path if socket_path is not None else default_socket_path()
    chunks: list[bytes] = []
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            sock.connect(str(path))
            sock.sendall(request.encode())
            sock.shutdown(socket.SHUT_WR)
            while chunk := sock.recv(4096):
                chunks.append(chunk)
    except OSError as exc:
        raise ChannelUnavailableError(f"No running pomodeck instance at {path}: {exc}") from exc
    return Response.decode(b"".join(chunks))
