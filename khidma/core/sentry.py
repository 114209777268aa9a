"""
Sentry Integration - Error Tracking

Captures unhandled exceptions, 5xx errors and failing Celery tasks.
"""
import sentry_sdk
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from khidma.core.config import settings
from khidma.core.logging import get_logger

logger = get_logger(__name__)

SENSITIVE_HEADERS = ("authorization", "cookie", "x-refresh-token")


def init_sentry() -> None:
    """Initialize Sentry SDK (no-op without a DSN)."""
    if not settings.sentry_dsn:
        logger.info("Sentry DSN not configured, skipping initialization")
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"khidma-backend@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            CeleryIntegration(),
        ],
        send_default_pii=False,
        before_send=_before_send,
    )

    logger.info("Sentry initialized", environment=settings.environment)


def _before_send(event, hint):
    """Drop client errors and scrub credentials."""
    exc_info = hint.get("exc_info")
    if exc_info:
        _, exc_value, _ = exc_info
        status_code = getattr(exc_value, "status_code", None)
        if status_code is not None and 400 <= status_code < 500:
            return None

    headers = event.get("request", {}).get("headers")
    if headers:
        for header in SENSITIVE_HEADERS:
            if header in headers:
                headers[header] = "[FILTERED]"

    return event


def set_user(user_id: str, user_type: str | None = None) -> None:
    """Attach the authenticated user to the current scope."""
    sentry_sdk.set_user({"id": user_id, "user_type": user_type})
