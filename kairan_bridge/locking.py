"""
Cross-process lock for the Discord sync tick.

The CLI ``sync`` command, ``reset-cursor`` and ``run-scheduler`` each build
their own bridge, so the tick is serialized with an advisory ``flock`` on a
shared lock file rather than an in-memory lock. ``flock`` locks belong to
the open file, so two bridges in one process also exclude each other.
"""

from __future__ import annotations

import fcntl
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Callable, Iterator, Optional

from kairan_bridge.observability import get_logger

logger = get_logger(__name__)


class FileLock:
    """
    Exclusive advisory lock on a file, acquired with a timeout.

    Usage:
        lock = FileLock("kairan_bridge.sync.lock")
        with lock.hold(timeout=5.0) as acquired:
            if acquired:
                ...
    """

    def __init__(
        self,
        path: str | Path,
        poll_seconds: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.path = Path(path)
        self.poll_seconds = poll_seconds
        self._sleep = sleep

    def _try_acquire(self, timeout: float) -> Optional[IO[str]]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a", encoding="utf-8")
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return handle
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    handle.close()
                    return None
                self._sleep(self.poll_seconds)

    @contextmanager
    def hold(self, timeout: float) -> Iterator[bool]:
        """Yield True while the lock is held, or False if ``timeout`` ran out."""
        handle = self._try_acquire(timeout)
        try:
            yield handle is not None
        finally:
            if handle is not None:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                handle.close()
