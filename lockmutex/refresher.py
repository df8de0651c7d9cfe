"""Background refresh of a held lockfile's modification time."""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Callable

from lockmutex.log import get_logger

_LOGGER = get_logger()


def touch_lockfile(path: Path) -> None:
    """Truncate an existing lockfile and reset its mtime to now.

    Never creates the file: a lockfile removed by unlock() stays removed.
    """
    fd = os.open(path, os.O_WRONLY | os.O_TRUNC)
    os.close(fd)
    now = time.time_ns()
    os.utime(path, ns=(now, now))


class RefreshTask:
    """Rewrite ``path`` every ``period_sec`` until stopped.

    ``stop()`` only sets the stop event; a write already in flight finishes
    in the background. Errors raised after ``stop()`` are treated as
    cancellation and dropped. Any other error ends the task, is kept on
    ``error`` and handed to ``on_error``.
    """

    def __init__(
        self,
        path: Path,
        period_sec: float,
        on_error: Callable[[Exception], None] | None = None,
    ):
        self.path = path
        self.period_sec = period_sec
        self.error: Exception | None = None
        self._on_error = on_error
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"lockmutex-refresh:{path.name}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    @property
    def active(self) -> bool:
        return not self._stop_event.is_set() and self.error is None

    def _run(self) -> None:
        _LOGGER.debug("refresh loop started: %s (every %.4fs)", self.path, self.period_sec)
        while not self._stop_event.wait(self.period_sec):
            try:
                touch_lockfile(self.path)
            except Exception as exc:
                if self._stop_event.is_set():
                    _LOGGER.debug("refresh cancelled during write: %s (%s)", self.path, exc)
                    return
                self.error = exc
                _LOGGER.error("lockfile refresh failed, lock will go stale: %s", self.path, exc_info=exc)
                if self._on_error is not None:
                    self._on_error(exc)
                return
        _LOGGER.debug("refresh loop stopped: %s", self.path)
