"""Exclusive upload locks backed by lock files on the local file system.

Each lock file holds the PID of the process that owns it, so a lock left
behind by a process that no longer runs is taken over automatically.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass

from .upload import FileLockedError, StoreComposer


def _process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    if os.name == "nt":
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


@dataclass(frozen=True)
class FileLock:
    """A lock on one upload, represented by the file at ``path``."""

    path: str

    def lock(self) -> None:
        """Acquire the lock or raise :class:`FileLockedError`."""
        while True:
            try:
                self._create()
                return
            except FileExistsError:
                pass
            try:
                owner = self._owner()
            except FileNotFoundError:
                continue
            if owner is not None and _process_alive(owner):
                raise FileLockedError()
            try:
                os.remove(self.path)
            except FileNotFoundError:
                pass

    def unlock(self) -> None:
        """Release the lock; a lock that was never taken is ignored."""
        try:
            owner = self._owner()
        except FileNotFoundError:
            return
        if owner != os.getpid():
            raise RuntimeError("lock file is owned by another process")
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass

    def __enter__(self) -> FileLock:
        self.lock()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unlock()

    def _create(self) -> None:
        directory, name = os.path.split(self.path)
        fd, tmp = tempfile.mkstemp(dir=directory or None, prefix=name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(f"{os.getpid()}\n")
            os.link(tmp, self.path)
        finally:
            os.remove(tmp)

    def _owner(self) -> int | None:
        with open(self.path, encoding="ascii", errors="replace") as fh:
            content = fh.read().strip()
        try:
            return int(content)
        except ValueError:
            return None


@dataclass(frozen=True)
class FileLocker:
    """Creates lock files named ``<id>.lock`` inside ``path``."""

    path: str

    def use_in(self, composer: StoreComposer) -> None:
        composer.use_locker(self)

    def new_lock(self, id: str) -> FileLock:
        return FileLock(os.path.abspath(os.path.join(os.fspath(self.path), id + ".lock")))