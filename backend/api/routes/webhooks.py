"""
Payment provider webhook routes.

Both providers post form-encoded bodies. Every delivery is acknowledged with
200 once processed, or once recognized as something we deliberately ignore,
so the provider stops retrying. Other errors map to their status codes and
the provider redelivers later.
"""

import hmac
import logging
from typing import Annotated
from urllib.parse import parse_qsl

from fastapi import APIRouter, Query, Request

from adapters.payments import (
    PaymentNormalizer,
    create_paddle_normalizer,
    create_paypro_normalizer,
)
from api.dependencies import Deduplicator, Reconciler
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.account import WebhookResponse
from core.errors import AuthError, UnsupportedEventError, ValidationError
from infrastructure.config.settings import settings
from services.reconciler import SubscriptionReconciler
from services.webhook_dedup import WebhookDeduplicator, webhook_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

paddle_normalizer = create_paddle_normalizer()
paypro_normalizer = create_paypro_normalizer(settings.paypro_ipn_validation_key)


def _parse_form(body: bytes) -> dict[str, str]:
    try:
        return dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
    except UnicodeDecodeError as e:
        raise ValidationError(f"Invalid webhook body: {e}") from e


async def _process_webhook(
    normalizer: PaymentNormalizer,
    body: bytes,
    payload: dict[str, str],
    reconciler: SubscriptionReconciler,
    dedup: WebhookDeduplicator,
) -> WebhookResponse:
    provider = normalizer.provider.value
    key = webhook_key(provider, body)
    if await dedup.already_processed(key):
        logger.info("Duplicate %s webhook, skipping", provider)
        return WebhookResponse(status="ok", message="already processed")

    try:
        event = normalizer.normalize(payload)
    except UnsupportedEventError as e:
        logger.info("Ignoring %s webhook: %s", provider, e.message)
        return WebhookResponse(status="ignored", message=e.message)

    logger.info(
        "Received %s %s webhook for %s",
        provider, event.kind, event.email,
        extra={"provider": provider, "event_kind": event.kind.value},
    )
    await reconciler.handle_event(event)
    await dedup.mark_processed(key)
    return WebhookResponse(status="ok")


@router.post("/paddle", response_model=WebhookResponse, response_model_exclude_none=True)
@limiter.limit(get_rate_limit("webhook"))
async def paddle_webhook(
    request: Request,
    reconciler: Reconciler,
    dedup: Deduplicator,
    token: Annotated[str | None, Query()] = None,
):
    """
    Handle Paddle subscription alerts.

    The webhook URL registered with Paddle carries our shared secret as the
    ``token`` query parameter.
    """
    if settings.paddle_webhook_secret and not hmac.compare_digest(
        token or "", settings.paddle_webhook_secret
    ):
        logger.warning("Paddle webhook rejected: bad or missing token")
        raise AuthError("Invalid webhook token")

    body = await request.body()
    payload = _parse_form(body)
    return await _process_webhook(paddle_normalizer, body, payload, reconciler, dedup)


@router.post("/paypro", response_model=WebhookResponse, response_model_exclude_none=True)
@limiter.limit(get_rate_limit("webhook"))
async def paypro_webhook(
    request: Request,
    reconciler: Reconciler,
    dedup: Deduplicator,
):
    """Handle PayPro IPN notifications, checking the IPN signature first."""
    body = await request.body()
    payload = _parse_form(body)
    paypro_normalizer.verify_signature(payload)
    return await _process_webhook(paypro_normalizer, body, payload, reconciler, dedup)
