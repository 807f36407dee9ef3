"""Structured logging for the API.

Everything goes through the root logger:
- ``request_id`` is bound per request in a context variable and stamped on
  every record emitted while the request is in flight
- ``extra`` fields whose key looks like a credential are replaced by
  ``[REDACTED]``, recursively through dicts and lists
- records render as one JSON object per line (or a plain text line)
- with ``LOG_QUEUE_ENABLED`` the root logger only enqueues; a listener thread
  formats and writes, so request handling never blocks on log I/O
"""

from __future__ import annotations

import json
import logging
import queue
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from app.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "token",
        "access_token",
        "password",
        "password_hash",
        "old_password",
        "new_password",
        "oldpassword",
        "newpassword",
        "secret",
        "jwt_secret",
        "auth_jwt_secret",
        "database_url",
    }
)

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

# State owned by configure_logging
_installed_handler: logging.Handler | None = None
_queue_listener: QueueListener | None = None


def bind_request_id(request_id: str) -> Token[str | None]:
    """Bind ``request_id`` to the current context; pass the token to ``reset_request_id``."""

    return _request_id_var.set(request_id)


def reset_request_id(token: Token[str | None]) -> None:
    _request_id_var.reset(token)


def get_request_id() -> str | None:
    return _request_id_var.get()


class Redactor:
    """Replaces values stored under sensitive keys (case-insensitive)."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        keys = SENSITIVE_KEYS_DEFAULT if sensitive_keys is None else sensitive_keys
        self.sensitive_keys = frozenset(key.lower() for key in keys)

    def is_sensitive(self, key: str) -> bool:
        return key.lower() in self.sensitive_keys

    def redact(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {
                key: REDACTED if self.is_sensitive(str(key)) else self.redact(item)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            return type(value)(self.redact(item) for item in value)
        return value

    def extras(self, record: LogRecord) -> dict[str, Any]:
        """Return the record's ``extra`` fields, redacted."""

        fields: dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            fields[key] = REDACTED if self.is_sensitive(key) else self.redact(value)
        return fields


class RequestIdFilter(logging.Filter):
    """Stamp the bound request id on records that do not carry one."""

    def filter(self, record: LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact ``extra`` fields in place so every downstream formatter is safe."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.redactor = Redactor(sensitive_keys)

    def filter(self, record: LogRecord) -> bool:
        for key, value in self.redactor.extras(record).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: fixed fields first, then redacted extras."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.redactor = Redactor(sensitive_keys)
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id
        payload.update(self.redactor.extras(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _output_handler(cfg: LogSettings) -> logging.Handler:
    if cfg.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    path = Path(cfg.file_path or "logs/app.log")
    path.parent.mkdir(parents=True, exist_ok=True)
    if cfg.max_bytes:
        return RotatingFileHandler(
            path, maxBytes=cfg.max_bytes, backupCount=cfg.backup_count, encoding="utf-8"
        )
    return logging.FileHandler(path, encoding="utf-8")


def _formatter(cfg: LogSettings) -> logging.Formatter:
    if cfg.format.lower() == "plain":
        return logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    return JsonFormatter()


def shutdown_logging() -> None:
    """Flush and stop the queue listener, then detach our root handler."""

    global _installed_handler, _queue_listener

    if _queue_listener is not None:
        _queue_listener.stop()
        for handler in _queue_listener.handlers:
            handler.close()
        _queue_listener = None
    if _installed_handler is not None:
        logging.getLogger().removeHandler(_installed_handler)
        _installed_handler.close()
        _installed_handler = None


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install the JSON/plain root handler described by ``log_settings``.

    Reconfiguring replaces only the handler installed here; handlers added by
    others (pytest, uvicorn) stay attached.

    Args:
        log_settings: Logging settings; the environment-loaded ones when omitted.
    """

    global _installed_handler, _queue_listener

    cfg = log_settings or settings.log
    shutdown_logging()

    output = _output_handler(cfg)
    output.addFilter(RequestIdFilter())
    output.addFilter(SensitiveDataFilter())
    output.setFormatter(_formatter(cfg))

    if cfg.queue_enabled:
        records: queue.SimpleQueue[LogRecord] = queue.SimpleQueue()
        handler: logging.Handler = QueueHandler(records)
        # The listener thread cannot see the request's context variable.
        handler.addFilter(RequestIdFilter())
        _queue_listener = QueueListener(records, output, respect_handler_level=True)
        _queue_listener.start()
    else:
        handler = output
    _installed_handler = handler

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
