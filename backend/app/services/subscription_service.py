"""Lookup of active, non-cancelled paid subscriptions per attribution."""

import asyncio
from typing import Any, Protocol

import stripe
import structlog

from app.config import StripeConfig
from app.errors import UpstreamUnavailableError
from app.models.attribution import AttributionId, render

logger = structlog.get_logger(__name__)

ATTRIBUTION_ID_METADATA_KEY = "attributionId"


class SubscriptionLookup(Protocol):
    """Finds a running paid subscription for a user or team."""

    async def find_active_uncancelled_subscription(
        self, attribution_id: AttributionId
    ) -> str | None:
        """Return the subscription id, None if there is no active uncancelled subscription."""


class InMemorySubscriptionLookup:
    """In-memory subscription lookup used for tests and payment-less installs."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, str] = {}

    def add_subscription(self, attribution_id: AttributionId, subscription_id: str) -> None:
        self.subscriptions[render(attribution_id)] = subscription_id

    async def find_active_uncancelled_subscription(
        self, attribution_id: AttributionId
    ) -> str | None:
        return self.subscriptions.get(render(attribution_id))


def _field(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _is_uncancelled(subscription: Any) -> bool:
    return not _field(subscription, "canceled_at") and not _field(
        subscription, "cancel_at_period_end"
    )


class StripeSubscriptionLookup:
    """Resolves subscriptions through Stripe customers tagged with an attribution id."""

    def __init__(self, config: StripeConfig) -> None:
        if not config.secret_key:
            raise ValueError("Stripe secret key is required")

        self.config = config
        stripe.api_key = config.secret_key

    async def _find_customer_id(self, rendered: str) -> str | None:
        result = await asyncio.to_thread(
            stripe.Customer.search,
            query=f"metadata['{ATTRIBUTION_ID_METADATA_KEY}']:'{rendered}'",
        )
        customers = _field(result, "data") or []
        if not customers:
            return None
        if len(customers) > 1:
            logger.warning("stripe_multiple_customers_for_attribution", attribution_id=rendered)
        return str(_field(customers[0], "id"))

    async def find_active_uncancelled_subscription(
        self, attribution_id: AttributionId
    ) -> str | None:
        rendered = render(attribution_id)
        try:
            customer_id = await self._find_customer_id(rendered)
            if customer_id is None:
                return None
            subscriptions = await asyncio.to_thread(
                stripe.Subscription.list, customer=customer_id, status="active"
            )
        except stripe.StripeError as e:
            logger.warning("stripe_subscription_lookup_failed", attribution_id=rendered, error=str(e))
            raise UpstreamUnavailableError(
                f"Stripe subscription lookup failed for '{rendered}'", upstream="stripe"
            ) from e

        for subscription in _field(subscriptions, "data") or []:
            if _is_uncancelled(subscription):
                return str(_field(subscription, "id"))
        return None
