from .exit_hooks import AtexitHooks, ExitHooks, NoExitHooks
from .lock import (
    LockAcquireError,
    LockConsistencyError,
    LockfileMutex,
    LockMutexError,
    LockRefreshError,
    LockResult,
    LockUsageError,
    file_lock,
    lockfile_age,
)
from .refresher import RefreshTask

__all__ = [
    "AtexitHooks",
    "ExitHooks",
    "LockAcquireError",
    "LockConsistencyError",
    "LockMutexError",
    "LockRefreshError",
    "LockResult",
    "LockUsageError",
    "LockfileMutex",
    "NoExitHooks",
    "RefreshTask",
    "file_lock",
    "lockfile_age",
]
