# Copyright 2026. Locked JSON documents with atomic writes.

import fcntl
import json
import os
import tempfile
from pathlib import Path
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class LockedStateManager(Generic[T]):
    """JSON document on disk guarded by an fcntl lock file.

    A missing document loads as `default()`; writes go through a temp file
    and rename so readers never observe a partial document.
    """

    def __init__(
        self,
        state_file: Path,
        serialize: Callable[[T], dict],
        deserialize: Callable[[dict], T],
        default: Callable[[], T],
    ):
        self.state_file = Path(state_file)
        self._lock_file = self.state_file.with_name(self.state_file.name + ".lock")
        self._serialize = serialize
        self._deserialize = deserialize
        self._default = default

    def exists(self) -> bool:
        return self.state_file.is_file()

    def load(self) -> T:
        lock_fd = self._open_lock()
        try:
            fcntl.flock(lock_fd, fcntl.LOCK_SH)
            return self._read()
        finally:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
            os.close(lock_fd)

    def save(self, state: T) -> None:
        lock_fd = self._open_lock()
        try:
            fcntl.flock(lock_fd, fcntl.LOCK_EX)
            self._atomic_write(self._serialize(state))
        finally:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
            os.close(lock_fd)

    def update(self, mutator: Callable[[T], None]) -> T:
        """Read-modify-write under an exclusive lock."""
        lock_fd = self._open_lock()
        try:
            fcntl.flock(lock_fd, fcntl.LOCK_EX)
            state = self._read()
            mutator(state)
            self._atomic_write(self._serialize(state))
            return state
        finally:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
            os.close(lock_fd)

    def _open_lock(self) -> int:
        self._lock_file.parent.mkdir(parents=True, exist_ok=True)
        return os.open(str(self._lock_file), os.O_RDWR | os.O_CREAT)

    def _read(self) -> T:
        try:
            data = self.state_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self._default()
        return self._deserialize(json.loads(data))

    def _atomic_write(self, d: dict) -> None:
        parent = self.state_file.parent
        parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(parent), suffix=".tmp")
        closed = False
        try:
            os.write(fd, json.dumps(d, indent=2).encode("utf-8"))
            os.write(fd, b"\n")
            os.close(fd)
            closed = True
            os.rename(tmp_path, str(self.state_file))
        except BaseException:
            if not closed:
                try:
                    os.close(fd)
                except OSError:
                    pass
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
