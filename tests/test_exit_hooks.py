from __future__ import annotations

import os
import signal
import subprocess
import sys
from pathlib import Path

import pytest

from lockmutex import exit_hooks as hooks_module
from lockmutex.exit_hooks import AtexitHooks, NoExitHooks, install_signal_handlers, run_once
from lockmutex.lock import LockfileMutex


def test_run_once() -> None:
    calls = []
    wrapped = run_once(lambda: calls.append(1))
    wrapped()
    wrapped()
    assert calls == [1]


def test_mutex_registers_cleanup_while_held(lock_path: Path, exit_hooks) -> None:
    mutex = LockfileMutex(lock_path)
    assert exit_hooks.callbacks == []

    mutex.lock()
    assert len(exit_hooks.callbacks) == 1

    mutex.unlock()
    assert exit_hooks.callbacks == []


def test_exit_cleanup_removes_held_lockfile(lock_path: Path, exit_hooks) -> None:
    mutex = LockfileMutex(lock_path)
    mutex.lock()

    exit_hooks.fire()
    assert not lock_path.exists()
    assert mutex.held_by_this_instance is False

    exit_hooks.fire()
    assert not lock_path.exists()


def test_exit_cleanup_leaves_foreign_lockfile(lock_path: Path, exit_hooks) -> None:
    holder = LockfileMutex(lock_path, exit_hooks=NoExitHooks())
    holder.lock()

    loser = LockfileMutex(lock_path)
    assert loser.lock() is False

    exit_hooks.fire()
    assert lock_path.exists()
    holder.unlock()


def test_unlock_on_exit_disabled(lock_path: Path, exit_hooks) -> None:
    mutex = LockfileMutex(lock_path, unlock_on_exit=False)
    mutex.lock()
    assert exit_hooks.callbacks == []
    mutex.unlock()


def test_unlock_on_exit_disabled_from_env(lock_path: Path, exit_hooks, monkeypatch) -> None:
    monkeypatch.setenv("LOCKMUTEX_UNLOCK_ON_EXIT", "off")
    mutex = LockfileMutex(lock_path)
    assert mutex.unlock_on_exit is False
    mutex.lock()
    assert exit_hooks.callbacks == []
    mutex.unlock()


def test_atexit_hooks_register_and_unregister(monkeypatch) -> None:
    registered = []
    monkeypatch.setattr(hooks_module.atexit, "register", registered.append)
    monkeypatch.setattr(hooks_module.atexit, "unregister", registered.remove)

    calls = []
    callback = lambda: calls.append(1)  # noqa: E731
    hooks = AtexitHooks(handle_signals=False)
    hooks.register(callback)
    hooks.register(callback)
    assert len(registered) == 1

    registered[0]()
    registered[0]()
    assert calls == [1]

    hooks.unregister(callback)
    hooks.unregister(callback)
    assert registered == []


def test_install_signal_handlers_keeps_custom_handlers(monkeypatch) -> None:
    handlers = {sig: signal.SIG_DFL for sig in hooks_module._EXIT_SIGNALS}
    custom = hooks_module._EXIT_SIGNALS[0]
    handlers[custom] = lambda signum, frame: None

    monkeypatch.setattr(hooks_module.signal, "getsignal", handlers.__getitem__)
    monkeypatch.setattr(hooks_module.signal, "signal", handlers.__setitem__)

    changed = install_signal_handlers()
    assert custom not in changed
    assert handlers[custom] is not hooks_module._exit_on_signal
    for sig in changed:
        assert handlers[sig] is hooks_module._exit_on_signal


_HOLDER_SCRIPT = """
import sys, time
from lockmutex.lock import LockfileMutex

LockfileMutex.new_locked(sys.argv[1])
print("locked", flush=True)
while True:
    time.sleep(0.05)
"""


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
def test_sigterm_removes_lockfile_of_holder_process(lock_path: Path) -> None:
    project_root = Path(__file__).resolve().parent.parent
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(project_root), env.get("PYTHONPATH", "")]))
    for name in ("LOCKMUTEX_UNLOCK_ON_EXIT", "LOCKMUTEX_HANDLE_SIGNALS", "LOCKMUTEX_LOG_FILE"):
        env.pop(name, None)

    proc = subprocess.Popen(
        [sys.executable, "-c", _HOLDER_SCRIPT, str(lock_path)],
        stdout=subprocess.PIPE,
        env=env,
        text=True,
    )
    try:
        assert proc.stdout.readline().strip() == "locked"
        assert lock_path.exists()
        assert LockfileMutex(lock_path, unlock_on_exit=False).lock() is False

        proc.send_signal(signal.SIGTERM)
        assert proc.wait(timeout=10) == 128 + signal.SIGTERM
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        proc.stdout.close()

    assert not lock_path.exists()
