from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any

from role_keeper.config import get_log_path, load_config

# One id per incoming chat message, shared by every log line it causes.
_message_id: ContextVar[str] = ContextVar("message_id", default="")


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def get_correlation_id() -> str:
    return _message_id.get()


@contextmanager
def correlation_context(cid: str | None = None) -> Generator[str, None, None]:
    """Tag all logging inside the block with one correlation id."""
    token = _message_id.set(cid or _new_id())
    try:
        yield _message_id.get()
    finally:
        _message_id.reset(token)


class CorrelationFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """JSON log lines for machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra_data"):
            entry["data"] = record.extra_data
        return json.dumps(entry, default=str)


def configure_logging(config: dict[str, Any] | None = None, *, log_to_file: bool = True) -> None:
    cfg = config if config is not None else load_config()
    log_cfg = cfg.get("logging", {}) if isinstance(cfg.get("logging", {}), dict) else {}
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    if root.handlers:
        # Already configured (repeated imports under pytest).
        return

    if log_cfg.get("json_format", False):
        fmt: logging.Formatter = StructuredFormatter()
    else:
        fmt = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(correlation_id)s | %(name)s | %(message)s"
        )
    correlation_filter = CorrelationFilter()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_to_file:
        log_path = get_log_path(cfg)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        )
    for handler in handlers:
        handler.setFormatter(fmt)
        handler.addFilter(correlation_filter)
        root.addHandler(handler)


def log_with_context(logger: logging.Logger, level: int, message: str, **extra: Any) -> None:
    """Log ``message`` with structured key/value data attached."""
    if not logger.isEnabledFor(level):
        return
    record = logger.makeRecord(logger.name, level, "(unknown)", 0, message, (), None)
    record.extra_data = extra
    logger.handle(record)
