"""
Error reporting.

Errors that should reach a human (inconsistent team data, likely double
checkouts, failed fan-out items) are logged and, when SENTRY_DSN is set,
forwarded to Sentry. Reporting never raises.
"""

import logging

from infrastructure.config.settings import Settings

logger = logging.getLogger(__name__)

_sentry_enabled = False


def init_error_reporting(settings: Settings) -> bool:
    """Initialise Sentry if a DSN is configured. Returns whether it was enabled."""
    global _sentry_enabled

    dsn = settings.sentry_dsn
    if not dsn:
        return False

    # Validate DSN format before initializing to surface misconfiguration early
    if not dsn.startswith("https://") or "@" not in dsn:
        logger.warning("SENTRY_DSN appears malformed: %s. Sentry will not be initialized.", dsn[:30])
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.httpx import HttpxIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=dsn,
        environment=settings.environment,
        release=settings.app_version,
        integrations=[
            FastApiIntegration(transaction_style="url"),
            HttpxIntegration(),
            # Errors are reported explicitly below, so don't double-send log events
            LoggingIntegration(level=logging.INFO, event_level=None),
        ],
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        send_default_pii=False,
    )
    _sentry_enabled = True
    logger.info("Sentry error tracking initialised (env=%s)", settings.environment)
    return True


def report_error(error: BaseException | str) -> None:
    """Log an error and forward it to Sentry when enabled."""
    if isinstance(error, BaseException):
        logger.error("Reported error: %s", error, exc_info=error)
    else:
        logger.error("Reported error: %s", error)

    if not _sentry_enabled:
        return

    try:
        import sentry_sdk

        if isinstance(error, BaseException):
            sentry_sdk.capture_exception(error)
        else:
            sentry_sdk.capture_message(error, level="error")
    except Exception as e:
        logger.warning("Failed to forward error to Sentry: %s", e)
