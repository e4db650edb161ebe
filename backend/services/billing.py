"""
Subscription cancellation.

Cancellation is requested from the payment provider that owns the
subscription. The provider then sends its cancellation webhook, and the
reconciler records the result like any other event.
"""

import logging
from collections.abc import Callable, Mapping

from core.domain.events import PaymentProvider, SubscriptionStatus
from core.domain.metadata import subscription_of
from core.errors import UpstreamError, ValidationError
from core.interfaces.metadata_store import MetadataStore
from core.interfaces.payment_provider import PaymentProviderClient
from infrastructure.error_reporting import report_error as default_report_error
from services.team_seats import MANUAL_PAYMENT_PROVIDER

logger = logging.getLogger(__name__)

# Only running subscriptions can be cancelled; deleted ones already are
CANCELLABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE)


class BillingService:
    """Cancels subscriptions through their payment provider."""

    def __init__(
        self,
        store: MetadataStore,
        providers: Mapping[PaymentProvider, PaymentProviderClient],
        report_error: Callable[[BaseException | str], None] = default_report_error,
    ):
        self.store = store
        self.providers = providers
        self.report_error = report_error

    async def cancel_subscription(self, user_id: str) -> None:
        """
        Cancel the user's own subscription.

        Team members have no subscription of their own to cancel; team owners
        cancel the whole team's subscription.

        Raises:
            ValidationError: If the user has no cancellable subscription, or it
                is managed manually
            UpstreamError: If the provider rejects the cancellation
        """
        user = await self.store.get_user(user_id)
        subscription = subscription_of(user.metadata)

        if subscription is None or not subscription.subscription_id:
            raise ValidationError(
                f"Cannot cancel subscription for {user.email} as there's no subscription id set"
            )
        if subscription.status not in CANCELLABLE_STATUSES:
            raise ValidationError(
                f"Cannot cancel {subscription.status} subscription for user {user.email}"
            )

        # Records from before PayPro support have no provider and are all Paddle
        provider_name = subscription.payment_provider or PaymentProvider.PADDLE
        if provider_name == MANUAL_PAYMENT_PROVIDER:
            raise ValidationError(
                "To cancel this manually managed subscription please contact billing"
            )

        try:
            provider = self.providers[PaymentProvider(provider_name)]
        except (KeyError, ValueError) as e:
            raise UpstreamError(f"No payment provider client for {provider_name}") from e

        logger.info(
            "Cancelling %s subscription %s for user %s",
            provider_name, subscription.subscription_id, user.id,
        )
        try:
            await provider.cancel_subscription(subscription.subscription_id)
        except UpstreamError as e:
            self.report_error(e)
            raise
