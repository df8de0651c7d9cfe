"""测试共享 fixtures。"""

import pytest

from lockmutex import lock as lock_module


class RecordingExitHooks:
    """记录注册的退出回调，不碰真实的 atexit / signal。"""

    def __init__(self):
        self.callbacks = []

    def register(self, callback):
        if callback not in self.callbacks:
            self.callbacks.append(callback)

    def unregister(self, callback):
        if callback in self.callbacks:
            self.callbacks.remove(callback)

    def fire(self):
        for callback in list(self.callbacks):
            callback()


@pytest.fixture(autouse=True)
def env_override(monkeypatch):
    """清掉宿主环境里的 LOCKMUTEX_* 变量，测试只看默认值。"""
    for name in (
        "LOCKMUTEX_TIMEOUT_MS",
        "LOCKMUTEX_UNLOCK_ON_EXIT",
        "LOCKMUTEX_REFRESH_FRACTION",
        "LOCKMUTEX_HANDLE_SIGNALS",
        "LOCKMUTEX_LOG_FILE",
        "LOCKMUTEX_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def exit_hooks(monkeypatch):
    """默认的 AtexitHooks 换成记录器，避免测试进程装上 SIGTERM 处理器。"""
    hooks = RecordingExitHooks()
    monkeypatch.setattr(lock_module, "_shared_hooks", hooks)
    return hooks


@pytest.fixture
def lock_path(tmp_path):
    return tmp_path / "state" / "lockfile"
