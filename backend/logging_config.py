"""
Bank Reconciliation Service - Structured JSON Logging

One JSON object per line on stdout. Reconciliation audit events
(`log_reconciliation_event`) carry `event`, `tenant_id` and `transaction_id`
as extras; the formatter lifts those to the top level so log pipelines can
index them without digging into `extra`.

Request context (request id, tenant) lives in contextvars so that every
record emitted while a request is being served is stamped with it, including
records from concurrent requests on the same event loop.
"""

import logging
import json
import sys
import os
import traceback
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_tenant_id: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)

# Attributes every LogRecord carries; anything else came in through `extra=`
_RESERVED_ATTRS = frozenset([
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName"
])

# Extras promoted out of the nested `extra` object
_TOP_LEVEL_FIELDS = ("request_id", "tenant_id", "event", "transaction_id")


class JSONFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON line."""

    def __init__(self, service_name: str = "bank-reconciliation"):
        super().__init__()
        self.service_name = service_name
        self.environment = os.environ.get("ENVIRONMENT", "development")
        self.hostname = os.environ.get("HOSTNAME", "unknown")

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
            "hostname": self.hostname,
        }

        extras = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        for field in _TOP_LEVEL_FIELDS:
            value = extras.pop(field, None)
            if value is not None:
                payload[field] = value
        if extras:
            payload["extra"] = extras

        # Source location is noise on routine audit lines
        if record.levelno >= logging.WARNING:
            payload["location"] = f"{record.pathname}:{record.lineno} in {record.funcName}"

        if record.exc_info and record.exc_info[0]:
            exc_type, exc_value, exc_tb = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
            }

        return json.dumps(payload, default=str)


class RequestContextFilter(logging.Filter):
    """
    Stamps request_id and tenant_id from the current context onto records.
    A tenant_id passed explicitly through `extra=` wins over the context one.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = _request_id.get()
        if getattr(record, "tenant_id", None) is None:
            record.tenant_id = _tenant_id.get()
        return True


def bind_request_context(
    request_id: Optional[str] = None,
    tenant_id: Optional[str] = None
) -> Tuple[Token, Token]:
    """Bind request context for the current task; pass the result to clear_request_context."""
    return _request_id.set(request_id), _tenant_id.set(tenant_id)


def clear_request_context(tokens: Tuple[Token, Token]) -> None:
    request_token, tenant_token = tokens
    _request_id.reset(request_token)
    _tenant_id.reset(tenant_token)


def current_request_context() -> Dict[str, Optional[str]]:
    return {"request_id": _request_id.get(), "tenant_id": _tenant_id.get()}


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = "bank-reconciliation"
) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines when True, human readable text otherwise
        service_name: Value of the `service` field in JSON output

    Returns:
        The root logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(RequestContextFilter())

    if json_format:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(request_id)s tenant=%(tenant_id)s] %(name)s: %(message)s"
        ))

    root_logger.addHandler(handler)

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)
