"""Durable JSON snapshots of the timer state."""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from pomodeck.core.errors import PersistenceError
from pomodeck.core.timer import TimerState

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path.home() / ".config" / "pomodeck"
_STATE_FILE = "state.json"
_SNAPSHOT_VERSION = 1


@dataclass(frozen=True)
class PersistedSnapshot:
    """A saved timer state and the wall-clock time it was written."""

    state: TimerState
    saved_at: float


class PersistenceStore:
    """Reads and writes ``<state_dir>/state.json``.

    Writes land in a temporary sibling file which is fsynced under an
    exclusive lock and then renamed over the snapshot, so a reader sees either
    the old snapshot or the new one, never a torn write.  Only the engine's
    owning process writes here; it is a recovery path, not a channel.
    """

    def __init__(self, state_dir: Path | None = None) -> None:
        self._state_dir: Path = state_dir if state_dir is not None else DEFAULT_STATE_DIR

    @property
    def path(self) -> Path:
        return self._state_dir / _STATE_FILE

    # -- public API ----------------------------------------------------------

    def load(self, default: TimerState | None = None) -> TimerState:
        """Return the persisted state, or *default* when none can be read."""
        snapshot = self.load_snapshot()
        if snapshot is None:
            return default if default is not None else TimerState()
        return snapshot.state

    def load_snapshot(self) -> PersistedSnapshot | None:
        """Return the full snapshot, or ``None`` if it is missing or corrupt."""
        if not self.path.exists():
            return None
        try:
            return self._read()
        except PersistenceError as exc:
            logger.warning(f"Ignoring unusable snapshot at {self.path}: {exc}")
            return None

    def save(self, state: TimerState) -> bool:
        """Write *state*; returns ``False`` (after logging) if the write failed."""
        try:
            self._write(state)
        except PersistenceError as exc:
            logger.error(f"Failed to persist timer state: {exc}")
            return False
        return True

    # -- private helpers -----------------------------------------------------

    def _read(self) -> PersistedSnapshot:
        try:
            with open(self.path) as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"cannot read {self.path}: {exc}") from exc

        if not isinstance(data, dict):
            raise PersistenceError("snapshot is not a JSON object")
        if data.get("version") != _SNAPSHOT_VERSION:
            raise PersistenceError(f"unsupported snapshot version {data.get('version')!r}")
        saved_at = data.get("saved_at")
        if isinstance(saved_at, bool) or not isinstance(saved_at, (int, float)):
            raise PersistenceError("snapshot has no save timestamp")
        try:
            state = TimerState.from_dict(data.get("state") or {})
        except ValueError as exc:
            raise PersistenceError(str(exc)) from exc
        return PersistedSnapshot(state=state, saved_at=float(saved_at))

    def _write(self, state: TimerState) -> None:
        record = {
            "version": _SNAPSHOT_VERSION,
            "saved_at": time.time(),
            "state": state.to_dict(),
        }
        tmp_name: str | None = None
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{_STATE_FILE}.", suffix=".tmp", dir=self._state_dir
            )
            with os.fdopen(fd, "w") as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                json.dump(record, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise PersistenceError(f"cannot write {self.path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
