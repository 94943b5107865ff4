"""
Usage/billing backend client.

Reports the billing strategy of a cost center and its current credit balance,
and derives spending limit checks from that balance.

Usage:
    service = HttpUsageService(UsageApiConfig(base_url="http://usage:9001"))
    strategy = await service.get_current_billing_strategy(TeamAttributionId(team_id="t1"))
"""

from typing import Protocol
from urllib.parse import quote

import httpx
import structlog

from app.config import UsageApiConfig
from app.constants import USAGE_LIMIT_WARNING_RATIO
from app.errors import NotFoundError, UpstreamUnavailableError
from app.models.attribution import (
    AttributionId,
    TeamAttributionId,
    UserAttributionId,
    render,
)
from app.models.billing import BillingStrategy, CreditBalance, UsageLimitReachedResult
from app.models.workspace import User

logger = structlog.get_logger(__name__)


class UsageBackend(Protocol):
    """Contract of the usage/billing backend."""

    async def get_current_billing_strategy(
        self, attribution_id: AttributionId
    ) -> BillingStrategy | None:
        """Billing strategy of the cost center, None if the backend has no record."""

    async def check_usage_limit_reached(
        self, user: User, organization_id: str | None = None
    ) -> UsageLimitReachedResult:
        """Check the spending limit of the organization (or the user when no organization)."""


def usage_scope(user: User, organization_id: str | None) -> AttributionId:
    if organization_id:
        return TeamAttributionId(team_id=organization_id)
    return UserAttributionId(user_id=user.id)


def evaluate_usage_limit(
    attribution_id: AttributionId, balance: CreditBalance, *, user_id: str
) -> UsageLimitReachedResult:
    """Compare used credits against the spending limit of a cost center."""
    if balance.used_credits >= balance.usage_limit:
        logger.info(
            "usage_limit_reached",
            user_id=user_id,
            attribution_id=render(attribution_id),
            used_credits=balance.used_credits,
            usage_limit=balance.usage_limit,
        )
        return UsageLimitReachedResult(reached=True, attribution_id=attribution_id)
    if balance.used_credits > balance.usage_limit * USAGE_LIMIT_WARNING_RATIO:
        return UsageLimitReachedResult(
            reached=False, almost_reached=True, attribution_id=attribution_id
        )
    return UsageLimitReachedResult(reached=False, attribution_id=attribution_id)


class InMemoryUsageBackend:
    """In-memory usage backend used for tests and local fallback."""

    def __init__(self) -> None:
        self.billing_strategies: dict[AttributionId, BillingStrategy] = {}
        self.balances: dict[AttributionId, CreditBalance] = {}
        self.strategy_lookups: list[AttributionId] = []

    async def get_current_billing_strategy(
        self, attribution_id: AttributionId
    ) -> BillingStrategy | None:
        self.strategy_lookups.append(attribution_id)
        return self.billing_strategies.get(attribution_id)

    async def get_current_balance(self, attribution_id: AttributionId) -> CreditBalance:
        balance = self.balances.get(attribution_id)
        if balance is None:
            raise NotFoundError(f"No cost center for '{render(attribution_id)}'")
        return balance.model_copy()

    async def check_usage_limit_reached(
        self, user: User, organization_id: str | None = None
    ) -> UsageLimitReachedResult:
        attribution_id = usage_scope(user, organization_id)
        balance = await self.get_current_balance(attribution_id)
        return evaluate_usage_limit(attribution_id, balance, user_id=user.id)


class HttpUsageService:
    """Talks to the usage API over HTTP."""

    def __init__(
        self,
        config: UsageApiConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the usage client.

        Args:
            config: Base URL and timeout of the usage API.
            client: Pre-built client (tests pass one with a mock transport).
        """
        self.config = config or UsageApiConfig()
        self._client = client or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.request_timeout_seconds,
        )

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def _get(self, path: str) -> dict | None:
        try:
            response = await self._client.get(path)
        except httpx.HTTPError as e:
            logger.warning("usage_api_request_failed", path=path, error=str(e))
            raise UpstreamUnavailableError(f"Usage API request failed: {e}", upstream="usage") from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning("usage_api_error_status", path=path, status_code=response.status_code)
            raise UpstreamUnavailableError(
                f"Usage API returned {response.status_code} for {path}", upstream="usage"
            )
        try:
            payload = response.json()
        except ValueError as e:
            logger.warning("usage_api_invalid_body", path=path, error=str(e))
            raise UpstreamUnavailableError(
                f"Usage API returned a non-JSON body for {path}", upstream="usage"
            ) from e
        if not isinstance(payload, dict):
            logger.warning("usage_api_unexpected_payload", path=path, payload_type=type(payload).__name__)
            raise UpstreamUnavailableError(
                f"Usage API returned an unexpected payload for {path}", upstream="usage"
            )
        return payload

    async def get_current_billing_strategy(
        self, attribution_id: AttributionId
    ) -> BillingStrategy | None:
        payload = await self._get(f"/v1/cost-centers/{quote(render(attribution_id), safe='')}")
        if payload is None:
            return None

        raw_strategy = (payload.get("costCenter") or {}).get("billingStrategy")
        try:
            return BillingStrategy(raw_strategy)
        except ValueError:
            logger.debug(
                "usage_api_unknown_billing_strategy",
                attribution_id=render(attribution_id),
                billing_strategy=raw_strategy,
            )
            return None

    async def get_current_balance(self, attribution_id: AttributionId) -> CreditBalance:
        rendered = render(attribution_id)
        payload = await self._get(f"/v1/balances/{quote(rendered, safe='')}")
        if payload is None:
            raise NotFoundError(f"No cost center for '{rendered}'")
        return CreditBalance(
            used_credits=payload.get("usedCredits", 0.0),
            usage_limit=payload.get("usageLimit", 0.0),
        )

    async def check_usage_limit_reached(
        self, user: User, organization_id: str | None = None
    ) -> UsageLimitReachedResult:
        attribution_id = usage_scope(user, organization_id)
        balance = await self.get_current_balance(attribution_id)
        return evaluate_usage_limit(attribution_id, balance, user_id=user.id)
