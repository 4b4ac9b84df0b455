from __future__ import annotations

import contextlib
import logging
import os
import sys
import threading
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable

import orjson

from .paths import ROOT

RUNTIME_LOG = ROOT / "logs" / "solhands.log"

DEFAULT_RUNTIME_MAX_BYTES = 5_000_000
DEFAULT_RUNTIME_BACKUP_COUNT = 3
DEFAULT_RUNTIME_FORMAT = (
    "%(asctime)sZ [%(levelname)s] %(name)s:%(lineno)d | %(message)s"
)
DEFAULT_RUNTIME_DATEFMT = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS: tuple[str, ...] = (
    "asyncio",
    "aiohttp",
    "httpx",
    "solana",
)

_warn_once_lock = threading.Lock()
_warn_once_last_emit: dict[str, float] = {}


class _UTCFormatter(logging.Formatter):
    """Formatter that renders timestamps in UTC."""

    converter = time.gmtime


_LOG_RECORD_RESERVED = set(logging.LogRecord(None, 0, "", 0, "", (), None).__dict__.keys())


class JsonFormatter(logging.Formatter):
    """Structured logging formatter producing JSON payloads."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - short summary sufficient
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts": ts.replace(tzinfo=None).isoformat(timespec="milliseconds") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "line": record.lineno,
            "msg": record.getMessage(),
            "process": record.process,
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info

        for key, value in record.__dict__.items():
            if key in payload or key.startswith("_") or key in _LOG_RECORD_RESERVED:
                continue
            payload[key] = value

        return orjson.dumps(payload, default=str).decode()


def warn_once_per(
    minutes: float,
    key: str,
    message: str,
    *args: Any,
    logger: logging.Logger | None = None,
    **kwargs: Any,
) -> bool:
    """Emit ``logger.warning`` for *message* at most once per *minutes* interval."""

    interval = max(0.0, minutes) * 60.0
    now = time.monotonic()

    with _warn_once_lock:
        last = _warn_once_last_emit.get(key)
        if last is not None and interval > 0 and now - last < interval:
            return False
        _warn_once_last_emit[key] = now

    target = logger or logging.getLogger()
    target.warning(message, *args, **kwargs)
    return True


def reset_warn_once_cache() -> None:
    """Clear cached emission timestamps for :func:`warn_once_per`."""

    with _warn_once_lock:
        _warn_once_last_emit.clear()


def _parse_log_level(value: str | int | None) -> int:
    if not value:
        return logging.INFO
    if isinstance(value, int):
        return value
    level = value.strip().upper()
    if level.isdigit():
        return int(level)
    return getattr(logging, level, logging.INFO)


def _env_flag(name: str) -> bool | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def configure_runtime_logging(
    *,
    level: str | int | None = None,
    console: bool | None = None,
    logfile: str | Path | None = None,
    fmt: str | None = None,
    datefmt: str | None = None,
    max_bytes: int | None = None,
    backup_count: int | None = None,
    json_logs: bool | None = None,
    propagate_off: Iterable[str] = _NOISY_LOGGERS,
    force: bool = False,
) -> Path:
    """Configure root logging handlers for the execution service.

    Settings fall back to ``LOG_LEVEL``, ``LOG_CONSOLE``, ``LOG_FORMAT``,
    ``LOG_DATEFMT``, ``LOG_MAX_BYTES``, ``LOG_BACKUP_COUNT``, ``LOG_JSON`` and
    ``LOG_FILE``.  A rotating file handler is always installed; a stdout
    handler is added when console output is enabled.  Returns the log path.
    """

    resolved_level = _parse_log_level(level or os.getenv("LOG_LEVEL"))

    if console is None:
        env_console = _env_flag("LOG_CONSOLE")
        console = True if env_console is None else env_console

    resolved_format = fmt or os.getenv("LOG_FORMAT") or DEFAULT_RUNTIME_FORMAT
    resolved_datefmt = datefmt or os.getenv("LOG_DATEFMT") or DEFAULT_RUNTIME_DATEFMT

    if max_bytes is None:
        try:
            max_bytes = int(os.getenv("LOG_MAX_BYTES") or DEFAULT_RUNTIME_MAX_BYTES)
        except ValueError:
            max_bytes = DEFAULT_RUNTIME_MAX_BYTES
    if backup_count is None:
        try:
            backup_count = int(os.getenv("LOG_BACKUP_COUNT") or DEFAULT_RUNTIME_BACKUP_COUNT)
        except ValueError:
            backup_count = DEFAULT_RUNTIME_BACKUP_COUNT

    if json_logs is None:
        json_logs = bool(_env_flag("LOG_JSON"))

    log_path = Path(logfile or os.getenv("LOG_FILE") or RUNTIME_LOG)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_path = log_path.resolve()

    root = logging.getLogger()
    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            with contextlib.suppress(Exception):
                handler.close()
    root.setLevel(resolved_level)

    if json_logs:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = _UTCFormatter(resolved_format, datefmt=resolved_datefmt)

    file_handler: logging.Handler | None = None
    for handler in list(root.handlers):
        base = getattr(handler, "baseFilename", None)
        if base is not None and Path(base) == log_path:
            file_handler = handler
            break
    if file_handler is None:
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        root.addHandler(file_handler)
    file_handler.setLevel(resolved_level)
    file_handler.setFormatter(formatter)

    if console:
        stream_handler: logging.StreamHandler | None = None
        for handler in root.handlers:
            if (
                isinstance(handler, logging.StreamHandler)
                and not isinstance(handler, logging.FileHandler)
                and getattr(handler, "stream", None) is sys.stdout
            ):
                stream_handler = handler
                break
        if stream_handler is None:
            stream_handler = logging.StreamHandler(sys.stdout)
            root.addHandler(stream_handler)
        stream_handler.setLevel(resolved_level)
        stream_handler.setFormatter(formatter)

    for name in propagate_off:
        logging.getLogger(name).setLevel(max(resolved_level, logging.WARNING))

    root.debug("Logging initialised", extra={"log_file": str(log_path)})
    return log_path


def _normalize_for_log(value: Any, *, max_string: int) -> Any:
    if isinstance(value, dict):
        return {
            str(k): _normalize_for_log(v, max_string=max_string)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_normalize_for_log(v, max_string=max_string) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_normalize_for_log(v, max_string=max_string) for v in value), key=str)
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    if isinstance(value, str):
        if len(value) <= max_string:
            return value
        return f"{value[:max_string]}...({len(value)} chars)"
    if isinstance(value, (int, float, bool)) or value is None:
        if isinstance(value, int) and not isinstance(value, bool) and abs(value) >= 2**63:
            return str(value)
        return value
    return str(value)


def serialize_for_log(value: Any, *, max_string: int = 256) -> str:
    """Return a JSON-formatted string safe for logging."""
    try:
        return orjson.dumps(_normalize_for_log(value, max_string=max_string)).decode()
    except (TypeError, orjson.JSONEncodeError):
        return repr(value)


__all__ = [
    "JsonFormatter",
    "configure_runtime_logging",
    "reset_warn_once_cache",
    "serialize_for_log",
    "warn_once_per",
]
