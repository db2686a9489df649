"""
Logging configuration for the Framtt admin backend.

Provides:
- One JSON object per line for log shipping, or a console format for development
- Categorized auth, impersonation and key-rotation events
- Request correlation IDs carried in a context variable
- Masking of passwords, bearer tokens, JWTs, bcrypt digests and signing secrets

Configure once at startup with ``configure_logging(LogConfig(...))`` and get
module loggers with ``get_logger(__name__)``.
"""

import contextvars
import json
import logging
import re
import sys
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "framtt_request_id", default=None
)


def get_correlation_id() -> str | None:
    """Correlation ID of the request being handled, if any."""
    return _request_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Bind a correlation ID to the current task."""
    _request_id.set(correlation_id)


class LogEventType(str, Enum):
    """Event categories for security-relevant log lines."""

    APP_START = "app.start"
    APP_STOP = "app.stop"

    AUTH_LOGIN = "auth.login"
    AUTH_LOGIN_FAILED = "auth.login_failed"
    TOKEN_ISSUED = "token.issued"

    IMPERSONATION_START = "impersonation.start"
    IMPERSONATION_STOP = "impersonation.stop"
    IMPERSONATION_DENIED = "impersonation.denied"
    IMPERSONATION_FORCE_END = "impersonation.force_end"

    SECRET_ROTATED = "security.secret_rotated"
    SECRET_FALLBACK = "security.previous_secret_used"

    AUDIT_DEGRADED = "audit.degraded"


class LogSchema(BaseModel):
    """Top-level keys of a JSON log line. Anything else goes under ``extra``."""

    timestamp: str
    level: str
    logger: str
    message: str

    event_type: str | None = None
    correlation_id: str | None = None

    # Identities involved in auth and impersonation events
    user_id: str | None = None
    impersonated_by: str | None = None
    target_id: str | None = None
    session_id: str | None = None

    error_type: str | None = None
    error_message: str | None = None
    stack_trace: str | None = None

    source_file: str | None = None
    source_line: int | None = None
    source_function: str | None = None

    extra: dict[str, Any] | None = None


_BEARER = re.compile(r"Bearer\s+[\w\-.]+", re.IGNORECASE)
_JWT = re.compile(r"eyJ[\w\-]+\.[\w\-]+\.[\w\-]*")
_BCRYPT = re.compile(r"\$2[aby]?\$\d\d\$[./A-Za-z0-9]{53}")


def _keyed(name: str) -> re.Pattern[str]:
    # name=value, name: value, "name": "value"; skips values that are already masked
    return re.compile(name + r"""["']?\s*[=:]\s*["']?(?!\*)[^"'\s,}]+""", re.IGNORECASE)


_MASKS: tuple[tuple[re.Pattern[str], str], ...] = (
    (_BEARER, "Bearer ***"),
    (_JWT, "***jwt***"),
    (_BCRYPT, "***hash***"),
    *((_keyed(name), f"{name}=***") for name in ("password", "secret", "token")),
)


def mask_sensitive_data(message: str) -> str:
    """Replace credentials in ``message`` with placeholders."""
    for pattern, placeholder in _MASKS:
        message = pattern.sub(placeholder, message)
    return message


# Attributes every LogRecord has; anything else was passed through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _custom_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}


class StructuredLogFormatter(logging.Formatter):
    """Renders records as JSON lines shaped by ``LogSchema``."""

    def __init__(self, include_source: bool = True, mask_sensitive: bool = True):
        super().__init__()
        self.include_source = include_source
        self.mask_sensitive = mask_sensitive

    def format(self, record: logging.LogRecord) -> str:
        text = record.getMessage()
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": mask_sensitive_data(text) if self.mask_sensitive else text,
        }
        if (correlation_id := get_correlation_id()) is not None:
            entry["correlation_id"] = correlation_id

        leftovers: dict[str, Any] = {}
        for key, value in _custom_fields(record).items():
            target = entry if key in LogSchema.model_fields else leftovers
            target[key] = value
        if leftovers:
            entry["extra"] = leftovers

        if self.include_source:
            entry.update(
                source_file=record.filename,
                source_line=record.lineno,
                source_function=record.funcName,
            )

        if record.exc_info and record.exc_info[1] is not None:
            error = record.exc_info[1]
            entry.update(
                error_type=type(error).__name__,
                error_message=str(error),
                stack_trace=self.formatException(record.exc_info),
            )

        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Single-line console output for development."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }

    def __init__(self, use_colors: bool = True, mask_sensitive: bool = True):
        super().__init__()
        self.use_colors = use_colors
        self.mask_sensitive = mask_sensitive

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        level = f"{record.levelname:<7}"
        if self.use_colors and record.levelno in self.LEVEL_COLORS:
            level = f"{self.LEVEL_COLORS[record.levelno]}{level}\033[0m"

        text = record.getMessage()
        if self.mask_sensitive:
            text = mask_sensitive_data(text)
        if event_type := getattr(record, "event_type", None):
            text = f"[{event_type}] {text}"

        parts = [when, level, record.name]
        if correlation_id := get_correlation_id():
            parts.append(f"({correlation_id[:8]})")
        line = " ".join(parts) + " - " + text

        if record.exc_info:
            line += "\n" + "".join(traceback.format_exception(*record.exc_info)).rstrip()
        return line


class StructuredLogger(logging.Logger):
    """Logger with helpers for categorized auth and impersonation events."""

    def event(
        self,
        event_type: LogEventType | str,
        msg: str,
        level: int = logging.INFO,
        user_id: str | None = None,
        impersonated_by: str | None = None,
        target_id: str | None = None,
        session_id: str | None = None,
        extra: dict[str, Any] | None = None,
        exc_info: bool = False,
    ) -> None:
        """Log ``msg`` tagged with ``event_type`` and whichever identities are known."""
        identities = {
            "user_id": user_id,
            "impersonated_by": impersonated_by,
            "target_id": target_id,
            "session_id": session_id,
        }
        fields = {**(extra or {}), **{k: v for k, v in identities.items() if v is not None}}
        fields["event_type"] = LogEventType(event_type).value
        self.log(level, msg, exc_info=exc_info, extra=fields, stacklevel=2)

    def auth_event(
        self,
        event_type: LogEventType,
        user_id: str | None = None,
        msg: str | None = None,
        **kwargs,
    ) -> None:
        self.event(event_type, msg or event_type.value, user_id=user_id, **kwargs)

    def impersonation_event(
        self,
        event_type: LogEventType,
        impersonator_id: str,
        target_id: str,
        msg: str | None = None,
        **kwargs,
    ) -> None:
        """The impersonator is logged as both ``user_id`` and ``impersonated_by``."""
        self.event(
            event_type,
            msg or f"{event_type.value}: {impersonator_id} as {target_id}",
            user_id=impersonator_id,
            impersonated_by=impersonator_id,
            target_id=target_id,
            **kwargs,
        )


class LogConfig(BaseModel):
    """Logging options, usually taken from ``Settings``."""

    level: str = Field(default="INFO", description="Minimum level written by the handler")
    format: str = Field(default="json", description="'json' or 'human'")
    include_source: bool = Field(default=True, description="Add file, line and function")
    mask_sensitive: bool = Field(default=True, description="Mask credentials in messages")
    use_colors: bool = Field(default=True, description="ANSI colors in 'human' format")
    module_levels: dict[str, str] = Field(
        default_factory=lambda: {
            "framtt_admin": "DEBUG",
            "uvicorn.access": "WARNING",
            "sqlalchemy.engine": "WARNING",
            "aiosqlite": "WARNING",
            "passlib": "ERROR",
        },
        description="Per-logger level overrides",
    )


def configure_logging(config: LogConfig | None = None) -> None:
    """Install a single stdout handler on the root logger."""
    config = config or LogConfig()
    logging.setLoggerClass(StructuredLogger)

    if config.format == "human":
        formatter: logging.Formatter = HumanReadableFormatter(
            use_colors=config.use_colors and sys.stdout.isatty(),
            mask_sensitive=config.mask_sensitive,
        )
    else:
        formatter = StructuredLogFormatter(
            include_source=config.include_source,
            mask_sensitive=config.mask_sensitive,
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(config.level.upper())
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)

    for name, level in config.module_levels.items():
        logging.getLogger(name).setLevel(level.upper())


def get_logger(name: str) -> StructuredLogger:
    """
    Structured logger for ``name``.

    Module loggers are usually created at import time, before
    ``configure_logging`` runs, so the logger class is registered here too.
    """
    logging.setLoggerClass(StructuredLogger)
    return logging.getLogger(name)  # type: ignore[return-value]
