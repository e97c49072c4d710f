"""
Directory Core - Sentry Integration

Error tracking for the account lifecycle services. Deletion step failures are
reported here so operators can finish a partially failed cleanup by hand.
"""

import os
import logging
from typing import Optional, Dict, Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = (
    "password", "token", "secret", "api_key", "authorization",
    "jwt", "access_token", "refresh_token", "cookie", "email",
)


def init_sentry(
    dsn: Optional[str] = None,
    environment: str = "development",
    release: Optional[str] = None,
    sample_rate: float = 1.0,
    traces_sample_rate: float = 0.1,
) -> bool:
    """
    Initialize Sentry error tracking.

    Returns:
        True if Sentry was initialized, False otherwise
    """
    dsn = dsn or os.environ.get("SENTRY_DSN", "")

    if not dsn:
        logger.info("Sentry DSN not configured. Error tracking disabled.")
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release or os.environ.get("GIT_SHA", "unknown"),
        sample_rate=sample_rate,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        send_default_pii=False,
        before_send=filter_sensitive_data,
    )

    logger.info(f"Sentry initialized for environment: {environment}")
    return True


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: "[REDACTED]" if any(s in str(key).lower() for s in SENSITIVE_KEYS) else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Strip credentials and email addresses from Sentry events."""
    request = event.get("request")
    if isinstance(request, dict):
        for key in ("headers", "data", "cookies"):
            if key in request:
                request[key] = _redact(request[key])

    if "extra" in event:
        event["extra"] = _redact(event["extra"])

    user = event.get("user")
    if isinstance(user, dict):
        user.pop("email", None)

    return event


def capture_exception(exception: BaseException, tags: Optional[Dict[str, str]] = None, **extra) -> Optional[str]:
    """
    Capture an exception with tags and extra context.

    Returns:
        Event ID if captured, None when Sentry is not initialized
    """
    if not sentry_sdk.is_initialized():
        return None

    with sentry_sdk.new_scope() as scope:
        for key, value in (tags or {}).items():
            scope.set_tag(key, value)
        for key, value in extra.items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(exception)


def set_user(identity_id: str, role: Optional[str] = None):
    """Set the acting identity for Sentry (no email, PII is never sent)."""
    sentry_sdk.set_user({"id": identity_id, "role": role})
