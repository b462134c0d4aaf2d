# =============================================================================
# Sentry Error Tracking Integration
# =============================================================================
#
# Setup:
#   Copy the project DSN to .env: SENTRY_DSN=https://...@sentry.io/...
#
# Usage:
#   init_sentry() is called at app startup (courier/api/app.py).
#   Ability compilation and evaluation failures are reported through
#   capture_exception() after being logged and converted to a deny.
#
# =============================================================================

from __future__ import annotations

import logging

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from courier.config import get_settings

logger = logging.getLogger(__name__)


def _is_active() -> bool:
    return sentry_sdk.get_client().is_active()


def init_sentry() -> bool:
    """
    Initialize Sentry error tracking.

    Returns True if initialized, False if skipped.
    """
    settings = get_settings()

    if not settings.sentry_dsn:
        logger.info("SENTRY_DSN not set - error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(transaction_style="endpoint"),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR,
            ),
        ],
        # Don't send PII by default
        send_default_pii=False,
        before_send=_filter_events,
    )

    logger.info(f"Sentry initialized for {settings.environment}")
    return True


def _filter_events(event: dict, hint: dict) -> dict | None:
    """Drop expected HTTP errors and scrub credentials."""
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]

        from fastapi import HTTPException
        if isinstance(exc_value, HTTPException) and exc_value.status_code in (401, 403, 404, 422):
            return None

    headers = event.get("request", {}).get("headers")
    if headers:
        for key in list(headers.keys()):
            if key.lower() in ("authorization", "cookie"):
                headers[key] = "[Filtered]"

    return event


def capture_exception(error: Exception, **context) -> str | None:
    """
    Capture an exception to Sentry.

    Callers log the failure themselves; this only forwards it.
    Returns the event ID if captured, None otherwise.
    """
    if not _is_active():
        return None

    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(error)


def set_user(user_id: str | None, email: str | None = None, **extra) -> None:
    """Set (or clear, with None) the current user for error reports."""
    if not _is_active():
        return
    if user_id is None:
        sentry_sdk.set_user(None)
        return
    sentry_sdk.set_user({"id": user_id, "email": email, **extra})


def set_tag(key: str, value: str) -> None:
    """Add a tag for filtering in Sentry."""
    if _is_active():
        sentry_sdk.set_tag(key, value)
