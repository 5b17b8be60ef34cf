"""
Logging setup and context-aware log calls.

LOG_FORMAT=json emits one JSON object per line for the log collector;
LOG_FORMAT=text is for local runs and renders context as key=value pairs.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "context"}

# context keys that never reach the logs in clear text
SENSITIVE_KEYS = frozenset({"password", "password_hash", "token", "access_token", "secret", "signature", "cnic"})

TEXT_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"


def redact(context: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("***" if k.lower() in SENSITIVE_KEYS else v) for k, v in context.items()}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            log_data["context"] = redact(context)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        extra = _extra_fields(record)
        if extra:
            log_data["extra"] = extra
        return json.dumps(log_data, ensure_ascii=False, default=str)


class ContextTextFormatter(logging.Formatter):
    """Plain text with the context appended as ` | key=value ...`"""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "context", None)
        if not context:
            return line
        pairs = " ".join(f"{k}={v}" for k, v in redact(context).items())
        head, sep, tail = line.partition("\n")
        return f"{head} | {pairs}{sep}{tail}"


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """
    Install a single stderr handler on the root logger.

    Args:
        level: log level name
        fmt: "json" or "text"
    """
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(ContextTextFormatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers = [handler]


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    **kwargs
) -> None:
    """
    Log a message with a context dict (consultation id, order id, ...).

    Extra keyword arguments become top-level extra fields.
    """
    extra = dict(kwargs)
    if context:
        extra["context"] = context
    logger.log(level, message, extra=extra)
