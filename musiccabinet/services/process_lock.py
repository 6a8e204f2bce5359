from __future__ import annotations

import errno
import logging
from pathlib import Path
from typing import IO

LOGGER = logging.getLogger("musiccabinet.process_lock")

try:
    import fcntl
except ImportError:  # pragma: no cover - non-POSIX fallback
    fcntl = None


class ProcessLock:
    """
    Non-blocking exclusive `flock` on a file.

    `acquire` returns False only when another holder has the lock. A platform
    without `fcntl`, or a lock file that cannot be opened, does not block the
    caller.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._handle: IO[str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> bool:
        if self._handle is not None:
            return True
        if fcntl is None:
            LOGGER.warning("process lock unavailable on this platform path=%s", self._path)
            return True

        handle: IO[str] | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            handle = self._path.open("a", encoding="utf-8")
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            if handle is not None:
                handle.close()
            if exc.errno in (errno.EACCES, errno.EAGAIN):
                LOGGER.info("process lock held elsewhere path=%s", self._path)
                return False
            LOGGER.warning("process lock failed path=%s; continuing", self._path, exc_info=True)
            return True

        self._handle = handle
        return True

    def release(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        try:
            if fcntl is not None:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        except OSError:
            LOGGER.debug("process lock release failed path=%s", self._path, exc_info=True)
        finally:
            handle.close()
