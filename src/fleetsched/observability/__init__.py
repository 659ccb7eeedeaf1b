"""Sentry error reporting for the scheduler daemon."""

import logging
from typing import TYPE_CHECKING, Any

import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from fleetsched.logging import get_redactor

if TYPE_CHECKING:
    from fleetsched.config import SentryConfig

logger = logging.getLogger(__name__)


def scrub_event(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any]:
    """Redact secrets from an outgoing Sentry event.

    Failed executions carry command text and stderr, which routinely contain
    credentials.
    """
    redactor = get_redactor()
    logentry = event.get("logentry")
    if isinstance(logentry, dict):
        for key in ("message", "formatted"):
            if isinstance(logentry.get(key), str):
                logentry[key] = redactor.redact(logentry[key])
    if isinstance(event.get("message"), str):
        event["message"] = redactor.redact(event["message"])
    for exc in (event.get("exception") or {}).get("values") or []:
        if isinstance(exc.get("value"), str):
            exc["value"] = redactor.redact(exc["value"])
    extra = event.get("extra")
    if isinstance(extra, dict):
        for key, value in extra.items():
            if isinstance(value, str):
                extra[key] = redactor.redact(value)
    return event


def init_sentry(config: "SentryConfig", server_mode: bool = False) -> bool:
    """Initialize Sentry if configured.

    Args:
        config: Sentry configuration.
        server_mode: Whether running the daemon (enables FastAPI integration).

    Returns:
        True if Sentry was initialized, False otherwise.
    """
    if not config.dsn:
        logger.debug("Sentry DSN not configured, skipping initialization")
        return False

    integrations = [
        AsyncioIntegration(),
        LoggingIntegration(
            level=logging.INFO,  # Capture INFO+ as breadcrumbs
            event_level=logging.ERROR,  # Create events for ERROR+
        ),
    ]

    if server_mode:
        from sentry_sdk.integrations.fastapi import FastApiIntegration

        integrations.append(FastApiIntegration())

    sentry_sdk.init(
        dsn=config.dsn.get_secret_value(),
        environment=config.environment,
        release=config.release,
        traces_sample_rate=config.traces_sample_rate,
        profiles_sample_rate=config.profiles_sample_rate,
        send_default_pii=config.send_default_pii,
        debug=config.debug,
        integrations=integrations,
        before_send=scrub_event,
    )

    logger.info(
        "sentry_initialized", extra={"sentry.environment": config.environment}
    )
    return True
