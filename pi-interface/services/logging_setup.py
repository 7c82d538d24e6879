"""Centralized logging setup for pi-interface.

Design goals
- Logging must never be required for functionality.
- Logs are split by purpose (core/access/transfers) and rotate by size to
  protect the SD card of the device hosting the UI.
- Runtime toggles are driven by env vars.

Environment variables
- PIFACE_LOG_DIR: directory for all logs (default: ~/.local/state/pi-interface/log)
- PIFACE_LOG_CORE_ENABLE: 0/1 (default: 1)
- PIFACE_LOG_CORE_LEVEL: ERROR|WARNING|INFO|DEBUG (default: INFO)
- PIFACE_LOG_ACCESS_ENABLE: 0/1 (default: 0)
- PIFACE_LOG_TRANSFERS_ENABLE: 0/1 (default: 1)
- PIFACE_LOG_ROTATE_MAX_MB: max size in MB for each log file before rotation (default: 2)
- PIFACE_LOG_ROTATE_BACKUPS: number of rotated files to keep (default: 3)

Notes
- Setup is idempotent to avoid duplicating handlers on reload/import.
- Runtime updates (level/enable/rotate params) are applied via refresh_runtime_from_env().
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional, Tuple


DEFAULT_LOG_DIR = os.path.join(os.path.expanduser("~"), ".local", "state", "pi-interface", "log")
DEFAULT_CORE_LEVEL = "INFO"
DEFAULT_ROTATE_MAX_MB = 2
DEFAULT_ROTATE_BACKUPS = 3

CORE_LOGGER = "piface"
ACCESS_LOGGER = "piface.access"
TRANSFERS_LOGGER = "piface.transfers"


_STATE: Dict[str, object] = {
    "configured": False,
    "log_dir": None,
    "handlers": {},  # type: ignore
}


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.environ.get(name)
    if v is None:
        return default
    s = str(v).strip().lower()
    if s in ("1", "true", "yes", "on", "y"):
        return True
    if s in ("0", "false", "no", "off", "n"):
        return False
    return default


def _env_int(name: str, default: int) -> int:
    v = os.environ.get(name)
    if v is None:
        return default
    try:
        return int(str(v).strip())
    except ValueError:
        return default


def _parse_level(level_name: str) -> int:
    s = (level_name or "").strip().upper()
    if s in ("CRITICAL", "FATAL"):
        return logging.CRITICAL
    if s == "ERROR":
        return logging.ERROR
    if s in ("WARN", "WARNING"):
        return logging.WARNING
    if s == "DEBUG":
        return logging.DEBUG
    return logging.INFO


def get_log_dir(default_dir: Optional[str] = None) -> str:
    """Resolve log directory from env, with a conservative fallback."""
    p = (os.environ.get("PIFACE_LOG_DIR") or "").strip()
    if p:
        return p
    return default_dir or DEFAULT_LOG_DIR


def _mk_rotating_handler(path: str) -> RotatingFileHandler:
    max_mb = max(1, _env_int("PIFACE_LOG_ROTATE_MAX_MB", DEFAULT_ROTATE_MAX_MB))
    backups = max(1, _env_int("PIFACE_LOG_ROTATE_BACKUPS", DEFAULT_ROTATE_BACKUPS))
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    h = RotatingFileHandler(
        path,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backups,
        encoding="utf-8",
        delay=True,
    )
    h.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    return h


def setup_logging(log_dir: Optional[str] = None) -> None:
    """Configure core/access/transfers loggers with rotating file handlers."""
    if _STATE.get("configured"):
        refresh_runtime_from_env()
        return

    log_dir = log_dir or get_log_dir()
    os.makedirs(log_dir, exist_ok=True)

    handlers: Dict[str, RotatingFileHandler] = {
        "core": _mk_rotating_handler(os.path.join(log_dir, "core.log")),
        "access": _mk_rotating_handler(os.path.join(log_dir, "access.log")),
        "transfers": _mk_rotating_handler(os.path.join(log_dir, "transfers.log")),
    }

    core = logging.getLogger(CORE_LOGGER)
    core.propagate = False
    core.addHandler(handlers["core"])

    access = logging.getLogger(ACCESS_LOGGER)
    access.propagate = False
    access.addHandler(handlers["access"])

    transfers = logging.getLogger(TRANSFERS_LOGGER)
    transfers.propagate = False
    transfers.addHandler(handlers["transfers"])

    # paramiko is chatty at INFO; keep its warnings in core.log
    paramiko_logger = logging.getLogger("paramiko")
    paramiko_logger.setLevel(logging.WARNING)
    paramiko_logger.addHandler(handlers["core"])

    _STATE["configured"] = True
    _STATE["log_dir"] = log_dir
    _STATE["handlers"] = handlers

    refresh_runtime_from_env()


def core_enabled() -> bool:
    return _env_bool("PIFACE_LOG_CORE_ENABLE", default=True)


def access_enabled() -> bool:
    return _env_bool("PIFACE_LOG_ACCESS_ENABLE", default=False)


def transfers_enabled() -> bool:
    return _env_bool("PIFACE_LOG_TRANSFERS_ENABLE", default=True)


def refresh_runtime_from_env() -> None:
    """Apply runtime settings (levels / rotation params) from env."""
    if not _STATE.get("configured"):
        return

    handlers: Dict[str, RotatingFileHandler] = _STATE.get("handlers") or {}  # type: ignore
    max_mb = max(1, _env_int("PIFACE_LOG_ROTATE_MAX_MB", DEFAULT_ROTATE_MAX_MB))
    backups = max(1, _env_int("PIFACE_LOG_ROTATE_BACKUPS", DEFAULT_ROTATE_BACKUPS))
    for h in handlers.values():
        h.maxBytes = max_mb * 1024 * 1024
        h.backupCount = backups

    core = logging.getLogger(CORE_LOGGER)
    if core_enabled():
        core.disabled = False
        core.setLevel(_parse_level(os.environ.get("PIFACE_LOG_CORE_LEVEL", DEFAULT_CORE_LEVEL)))
    else:
        core.disabled = True
        # drop everything even where .disabled isn't respected
        core.setLevel(100)

    logging.getLogger(ACCESS_LOGGER).setLevel(logging.INFO)
    transfers = logging.getLogger(TRANSFERS_LOGGER)
    transfers.disabled = not transfers_enabled()
    transfers.setLevel(logging.INFO)


def get_paths(log_dir: Optional[str] = None) -> Tuple[str, str, str]:
    """Return (core_path, access_path, transfers_path)."""
    d = str(log_dir or _STATE.get("log_dir") or get_log_dir())
    return (
        os.path.join(d, "core.log"),
        os.path.join(d, "access.log"),
        os.path.join(d, "transfers.log"),
    )


def core_logger() -> logging.Logger:
    return logging.getLogger(CORE_LOGGER)


def access_logger() -> logging.Logger:
    return logging.getLogger(ACCESS_LOGGER)


def transfers_logger() -> logging.Logger:
    return logging.getLogger(TRANSFERS_LOGGER)


def _format_event(msg: str, extra: Dict[str, Any]) -> str:
    if not extra:
        return msg
    tail = ", ".join(f"{k}={v}" for k, v in extra.items())
    return f"{msg} | {tail}"


def core_log(level: str, msg: str, **extra: Any) -> None:
    """Log an ``event.name | key=value`` line to core.log."""
    fn = getattr(core_logger(), str(level or "info").lower(), None)
    if not callable(fn):
        fn = core_logger().info
    fn(_format_event(msg, extra))


def transfer_log(level: str, msg: str, **extra: Any) -> None:
    fn = getattr(transfers_logger(), str(level or "info").lower(), None)
    if not callable(fn):
        fn = transfers_logger().info
    fn(_format_event(msg, extra))
