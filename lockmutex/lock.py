from __future__ import annotations

import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from lockmutex.config import default_timeout_ms, default_unlock_on_exit, handle_exit_signals, refresh_fraction
from lockmutex.exit_hooks import AtexitHooks, ExitHooks, NoExitHooks
from lockmutex.log import get_logger
from lockmutex.refresher import RefreshTask

_LOGGER = get_logger()
_shared_hooks: AtexitHooks | None = None


class LockMutexError(RuntimeError):
    pass


class LockAcquireError(LockMutexError):
    pass


class LockUsageError(LockMutexError):
    pass


class LockConsistencyError(LockMutexError):
    pass


class LockRefreshError(LockMutexError):
    pass


def _default_exit_hooks() -> AtexitHooks:
    global _shared_hooks
    if _shared_hooks is None:
        _shared_hooks = AtexitHooks(handle_signals=handle_exit_signals())
    return _shared_hooks


def lockfile_age(path: Path | str) -> float:
    """Milliseconds since the lockfile was last written.

    Raises FileNotFoundError when the lockfile does not exist.
    """
    return (time.time_ns() - os.stat(path).st_mtime_ns) / 1_000_000


def _create_exclusive(path: Path) -> None:
    fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    os.close(fd)
    now = time.time_ns()
    os.utime(path, ns=(now, now))


def _overwrite(path: Path) -> None:
    path.write_bytes(b"")
    now = time.time_ns()
    os.utime(path, ns=(now, now))


@dataclass(frozen=True)
class LockResult:
    mutex: LockfileMutex
    success: bool


class LockfileMutex:
    """Cross-process mutex backed by an empty lockfile.

    Two instances (in one process or in different processes) using the same
    path cannot hold the lock at the same time. While held, a background
    thread keeps resetting the lockfile's mtime; a lockfile older than
    ``timeout_ms`` is considered abandoned and is taken over by the next
    ``lock()`` call.

        mutex = LockfileMutex("/var/lock/backup/.lockfile")
        if not mutex.lock():
            return  # another backup is still running
        try:
            run_backup()
        finally:
            mutex.unlock()

    Parent directories of the lockfile are created as needed and are never
    removed afterwards.

    Takeover is best effort: two contenders that both find the same stale
    lockfile can both take it over. There is no arbitration beyond the
    filesystem's exclusive create.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        timeout_ms: int | None = None,
        unlock_on_exit: bool | None = None,
        exit_hooks: ExitHooks | None = None,
    ):
        self.path = Path(path)
        self.timeout_ms = default_timeout_ms() if timeout_ms is None else timeout_ms
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        self.unlock_on_exit = default_unlock_on_exit() if unlock_on_exit is None else unlock_on_exit
        if not self.unlock_on_exit:
            self._exit_hooks: ExitHooks = NoExitHooks()
        else:
            self._exit_hooks = exit_hooks if exit_hooks is not None else _default_exit_hooks()
        self._refresh_period_sec = self.timeout_ms * refresh_fraction() / 1000
        self._refresher: RefreshTask | None = None
        self.refresh_error: Exception | None = None

    def __repr__(self) -> str:
        return (
            f"LockfileMutex(path={str(self.path)!r}, timeout_ms={self.timeout_ms}, "
            f"held={self.held_by_this_instance})"
        )

    def __enter__(self) -> LockfileMutex:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unlock()

    @classmethod
    def new_locked(
        cls,
        path: Path | str,
        *,
        timeout_ms: int | None = None,
        unlock_on_exit: bool | None = None,
        error_on_lock_failure: bool = True,
        exit_hooks: ExitHooks | None = None,
    ) -> LockResult:
        """Construct and lock in one call.

        With ``error_on_lock_failure`` (the default) a lock that cannot be
        acquired raises LockAcquireError, so a plain call either holds the
        lock for the rest of the program or fails loudly.
        """
        mutex = cls(path, timeout_ms=timeout_ms, unlock_on_exit=unlock_on_exit, exit_hooks=exit_hooks)
        lock_succeeded = mutex.lock()
        held = mutex.held_by_this_instance
        if lock_succeeded != held:
            _LOGGER.error("inconsistent locking state: lock()=%s held=%s path=%s", lock_succeeded, held, mutex.path)
            raise LockConsistencyError(
                f"inconsistent locking state for {mutex.path}: lock() returned {lock_succeeded}, held is {held}"
            )
        if not held and error_on_lock_failure:
            raise LockAcquireError(f"could not acquire lock: {mutex.path}")
        return LockResult(mutex=mutex, success=held)

    @property
    def held_by_this_instance(self) -> bool:
        return self._refresher is not None and self._refresher.active

    def lock(self, *, idempotent: bool = True) -> bool:
        """Return whether this instance holds the lock when the call returns.

        If the lock is already held by this instance, the result is
        ``idempotent``: ``True`` by default, ``False`` when the caller asked
        for a fresh acquisition.
        """
        if self.held_by_this_instance:
            return idempotent
        # a refresh task that died is dropped; its lockfile may already be taken over
        self._refresher = None

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LockAcquireError(f"could not create lockfile directory: {self.path.parent}") from exc

        try:
            _create_exclusive(self.path)
        except FileExistsError:
            if not self._take_over_if_stale():
                return False
        except OSError as exc:
            raise LockAcquireError(f"could not acquire lockfile mutex: {self.path}") from exc

        self._set_to_locked()
        return True

    def unlock(self, *, idempotent: bool = True) -> None:
        """Release the lock and stop refreshing it.

        Calling this while not holding the lock is a no-op, or raises
        LockUsageError with ``idempotent=False``.
        """
        if not self.held_by_this_instance:
            if not idempotent:
                raise LockUsageError(f"tried to unlock a lockfile mutex that is not held: {self.path}")
            return

        # stop refreshing first so an in-flight refresh cannot hit the removed file
        self._set_to_unlocked()
        try:
            self.path.unlink()
        except FileNotFoundError:
            _LOGGER.warning("lockfile already removed on unlock: %s", self.path)
            return
        except OSError:
            # the lockfile is still there: keep holding and refreshing it
            self._set_to_locked()
            _LOGGER.error("could not remove lockfile, lock is still held: %s", self.path)
            raise
        _LOGGER.debug("lock released: %s", self.path)

    def raise_for_refresh_error(self) -> None:
        if self.refresh_error is not None:
            raise LockRefreshError(f"lockfile refresh failed: {self.path}") from self.refresh_error

    def _take_over_if_stale(self) -> bool:
        # the age is read after the failed create; another contender may do the same
        try:
            age = lockfile_age(self.path)
        except FileNotFoundError:
            # released by its holder in between
            return False
        except OSError as exc:
            raise LockAcquireError(f"could not read lockfile age: {self.path}") from exc

        if age <= self.timeout_ms:
            return False

        try:
            _overwrite(self.path)
        except OSError as exc:
            raise LockAcquireError(f"could not take over stale lockfile: {self.path}") from exc
        _LOGGER.warning(
            "took over stale lockfile %s (age %.0fms > timeout %dms)", self.path, age, self.timeout_ms
        )
        return True

    def _set_to_locked(self) -> None:
        task = RefreshTask(self.path, self._refresh_period_sec, on_error=self._on_refresh_error)
        self.refresh_error = None
        self._refresher = task
        task.start()
        self._exit_hooks.register(self._release_on_exit)
        _LOGGER.debug("lock acquired: %s", self.path)

    def _set_to_unlocked(self) -> None:
        task, self._refresher = self._refresher, None
        if task is not None:
            task.stop()
        self._exit_hooks.unregister(self._release_on_exit)

    def _on_refresh_error(self, exc: Exception) -> None:
        self.refresh_error = exc

    def _release_on_exit(self) -> None:
        # runs from atexit: stay synchronous and never raise
        if not self.held_by_this_instance:
            return
        task, self._refresher = self._refresher, None
        if task is not None:
            task.stop()
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            _LOGGER.error("could not remove lockfile on exit: %s", self.path, exc_info=True)


@contextmanager
def file_lock(
    path: Path | str,
    *,
    wait_sec: float = 0.0,
    timeout_ms: int | None = None,
    poll_sec: float = 0.1,
) -> Iterator[LockfileMutex]:
    """Hold the lock for the duration of a ``with`` block.

    This is the only entry point that retries: it polls ``lock()`` every
    ``poll_sec`` for up to ``wait_sec`` seconds, then raises
    LockAcquireError. The default ``wait_sec=0`` makes a single attempt.
    ``LockfileMutex.lock()`` and ``new_locked()`` never retry.
    """
    mutex = LockfileMutex(path, timeout_ms=timeout_ms, unlock_on_exit=False)
    deadline = time.monotonic() + wait_sec

    while not mutex.lock():
        if time.monotonic() >= deadline:
            raise LockAcquireError(f"lock busy: {mutex.path}")
        time.sleep(poll_sec)

    try:
        yield mutex
    finally:
        mutex.unlock()
