"""
Bank Reconciliation Service - Sentry Integration

Only unexpected failures are reported. ReconciliationError subclasses are
part of the API contract (404/409/400 responses) and are dropped in
before_send. Events are tagged with the tenant and request id bound in the
logging context.
"""

import os
import logging
from typing import Optional, Dict, Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from config import Settings
from logging_config import current_request_context
from reconciliation.exceptions import ReconciliationError

logger = logging.getLogger(__name__)

# Substring match on lower-cased keys. Statement fingerprints identify
# customer files, so they are scrubbed alongside credentials.
SENSITIVE_KEYS = (
    "password", "token", "secret", "api_key", "api-key", "authorization",
    "cookie", "fingerprint", "raw_content"
)


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry from application settings.

    Returns:
        True if Sentry was initialized, False when no DSN is configured
        or the SDK refused the configuration
    """
    if not settings.SENTRY_DSN:
        logger.info("Sentry DSN not configured. Error tracking disabled.")
        return False

    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            release=os.environ.get("GIT_SHA") or settings.API_VERSION,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE if settings.is_production else 0.0,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            send_default_pii=False,
            before_send=filter_sensitive_data,
        )
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")
        return False

    logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")
    return True


def _redact(value: Any) -> Any:
    if isinstance(value, list):
        return [_redact(v) for v in value]
    if not isinstance(value, dict):
        return value
    return {
        key: "[REDACTED]" if any(s in str(key).lower() for s in SENSITIVE_KEYS) else _redact(item)
        for key, item in value.items()
    }


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """before_send hook: drop expected domain errors, scrub secrets from the rest."""
    exc_info = hint.get("exc_info") if hint else None
    if exc_info and isinstance(exc_info[1], ReconciliationError):
        return None

    request = event.get("request")
    if isinstance(request, dict):
        for section in ("headers", "data", "query_string"):
            if section in request:
                request[section] = _redact(request[section])

    if "extra" in event:
        event["extra"] = _redact(event["extra"])

    return event


def capture_exception(exception: Exception, **context) -> Optional[str]:
    """
    Report an exception with extra context.

    tenant_id (from kwargs or the bound request context) and request_id
    become searchable tags. Returns the event id, or None when Sentry is
    not initialized.
    """
    if not sentry_sdk.is_initialized():
        return None

    tags = {k: v for k, v in current_request_context().items() if v}
    if context.get("tenant_id"):
        tags["tenant_id"] = context["tenant_id"]

    with sentry_sdk.new_scope() as scope:
        for key, value in tags.items():
            scope.set_tag(key, str(value))
        for key, value in context.items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(exception)
