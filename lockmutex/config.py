"""
lockmutex.config
──────────────────
统一配置入口。锁的默认参数全部从这里读取，不在调用处散落 os.getenv。

读取优先级：构造参数 > 环境变量 > .env 文件 > 默认值
"""

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

# ── .env 加载（仅执行一次）─────────────────────────────────────────
# 从当前工作目录向上查找，宿主进程的 .env 不会覆盖已有环境变量
load_dotenv(find_dotenv(usecwd=True), override=False)

_FALSE_VALUES = {"0", "false", "off"}


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() not in _FALSE_VALUES


# ── 锁参数 ────────────────────────────────────────────────────────

def default_timeout_ms() -> int:
    """锁文件多久未刷新即视为遗弃（毫秒）。"""
    return int(os.getenv("LOCKMUTEX_TIMEOUT_MS", "60000"))


def default_unlock_on_exit() -> bool:
    """进程退出时是否尽力删除仍持有的锁文件。"""
    return _flag("LOCKMUTEX_UNLOCK_ON_EXIT", "true")


def refresh_fraction() -> float:
    """刷新周期 = timeout × fraction。0.45 可以容忍错过一次刷新。"""
    value = float(os.getenv("LOCKMUTEX_REFRESH_FRACTION", "0.45"))
    if not 0.0 < value < 1.0:
        raise ValueError(f"LOCKMUTEX_REFRESH_FRACTION must be in (0, 1), got {value}")
    return value


def handle_exit_signals() -> bool:
    """SIGTERM/SIGHUP 是否转换为 SystemExit，以便 atexit 清理能执行。"""
    return _flag("LOCKMUTEX_HANDLE_SIGNALS", "true")


# ── 日志 ──────────────────────────────────────────────────────────

def log_file() -> Path | None:
    """日志文件路径；未配置时日志交给宿主应用的 logging 配置。"""
    custom_path = os.getenv("LOCKMUTEX_LOG_FILE", "").strip()
    if custom_path:
        return Path(custom_path)
    return None


def log_level() -> str:
    level = os.getenv("LOCKMUTEX_LOG_LEVEL", "INFO").strip().upper()
    return level or "INFO"
