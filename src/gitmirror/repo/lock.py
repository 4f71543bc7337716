"""Advisory file lock guarding a cached checkout.

The lock is held for as long as a repository is open. Acquisition polls
until the lock is free; there is no timeout.
"""

from __future__ import annotations

import fcntl
import logging
import time
from pathlib import Path
from typing import IO

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0  # seconds

# Log a waiting message every this many polls
LOG_EVERY = 30


class FileLock:
    """Exclusive POSIX flock on a lock file."""

    def __init__(self, path: Path, poll_interval: float = DEFAULT_POLL_INTERVAL) -> None:
        self._path = Path(path)
        self._poll_interval = poll_interval
        self._file: IO[str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def locked(self) -> bool:
        return self._file is not None

    def acquire(self) -> None:
        """Block until the lock is held by this process."""
        if self._file is not None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = open(self._path, "a")
        attempts = 0
        try:
            while True:
                try:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if attempts % LOG_EVERY == 0:
                        logger.info(f"waiting for lock {self._path}")
                    attempts += 1
                    time.sleep(self._poll_interval)
        except BaseException:
            lock_file.close()
            raise
        self._file = lock_file
        logger.debug(f"acquired lock {self._path}")

    def release(self) -> None:
        """Release the lock. Releasing an unheld lock does nothing."""
        if self._file is None:
            return
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None
        logger.debug(f"released lock {self._path}")

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
