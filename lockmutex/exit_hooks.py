"""Process-exit cleanup registration.

The mutex only needs ``register(callback)`` and ``unregister(callback)``;
anything with those two methods can be passed as ``exit_hooks``.
"""

from __future__ import annotations

import atexit
import signal
import sys
import threading
from typing import Callable, Protocol

_EXIT_SIGNALS = tuple(
    sig for sig in (getattr(signal, "SIGTERM", None), getattr(signal, "SIGHUP", None)) if sig is not None
)


class ExitHooks(Protocol):
    def register(self, callback: Callable[[], None]) -> None: ...

    def unregister(self, callback: Callable[[], None]) -> None: ...


class NoExitHooks:
    def register(self, callback: Callable[[], None]) -> None:
        pass

    def unregister(self, callback: Callable[[], None]) -> None:
        pass


def run_once(callback: Callable[[], None]) -> Callable[[], None]:
    done = False

    def wrapper() -> None:
        nonlocal done
        if done:
            return
        done = True
        callback()

    return wrapper


def _exit_on_signal(signum, frame) -> None:
    sys.exit(128 + signum)


class AtexitHooks:
    """Run cleanup callbacks from ``atexit``.

    With ``handle_signals`` the default SIGTERM/SIGHUP dispositions are
    replaced by ``SystemExit`` so atexit handlers get a chance to run.
    Handlers installed by the application are left alone. SIGKILL cannot be
    intercepted.
    """

    def __init__(self, handle_signals: bool = True):
        self.handle_signals = handle_signals
        self._wrapped: dict[Callable[[], None], Callable[[], None]] = {}

    def register(self, callback: Callable[[], None]) -> None:
        if callback in self._wrapped:
            return
        wrapper = run_once(callback)
        self._wrapped[callback] = wrapper
        atexit.register(wrapper)
        if self.handle_signals:
            install_signal_handlers()

    def unregister(self, callback: Callable[[], None]) -> None:
        wrapper = self._wrapped.pop(callback, None)
        if wrapper is not None:
            atexit.unregister(wrapper)


def install_signal_handlers() -> list[int]:
    """Route default-handled exit signals through SystemExit. Returns the signals changed."""
    if threading.current_thread() is not threading.main_thread():
        return []
    changed = []
    for sig in _EXIT_SIGNALS:
        if signal.getsignal(sig) is signal.SIG_DFL:
            signal.signal(sig, _exit_on_signal)
            changed.append(sig)
    return changed
