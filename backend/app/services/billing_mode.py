"""Billing mode resolution for organizations (and, deprecated, for users)."""

from datetime import datetime

import structlog

from app.config import BillingConfig
from app.errors import InvalidArgumentError, NotFoundError
from app.models.attribution import AttributionId, TeamAttributionId, create_for_organization
from app.models.billing import BillingMode, BillingStrategy, NoneBillingMode, UsageBasedBillingMode
from app.models.workspace import Organization, User
from app.services.account_store import AccountStore
from app.services.usage_service import UsageBackend

logger = structlog.get_logger(__name__)


class BillingModeResolver:
    """Classifies an attribution into a billing mode.

    The payment switch always wins: with payment disabled the mode is "none" and
    the usage backend is never asked.
    """

    def __init__(
        self,
        account_store: AccountStore,
        usage_backend: UsageBackend,
        config: BillingConfig,
    ) -> None:
        self.account_store = account_store
        self.usage_backend = usage_backend
        self.config = config

    async def resolve(self, attribution_id: AttributionId, as_of: datetime) -> BillingMode:
        if not isinstance(attribution_id, TeamAttributionId):
            raise InvalidArgumentError(f"Unsupported attribution kind '{attribution_id.kind}'")

        organization = await self.account_store.find_organization_by_id(attribution_id.team_id)
        if organization is None:
            raise NotFoundError(f"Cannot find organization with id '{attribution_id.team_id}'")
        return await self.resolve_for_organization(organization, as_of)

    async def resolve_for_user(self, user: User, as_of: datetime) -> BillingMode:
        """Deprecated: users are always usage-based, paid or not.

        Kept until every user has moved to an organization.
        """
        if not self.config.enable_payment:
            return NoneBillingMode()
        return UsageBasedBillingMode()

    async def resolve_for_organization(
        self, organization: Organization, as_of: datetime
    ) -> BillingMode:
        if not self.config.enable_payment:
            return NoneBillingMode()

        strategy = await self.usage_backend.get_current_billing_strategy(
            create_for_organization(organization)
        )
        paid = strategy == BillingStrategy.STRIPE
        logger.debug(
            "billing_mode_resolved",
            organization_id=organization.id,
            billing_strategy=strategy.value if strategy else None,
            paid=paid,
        )
        return UsageBasedBillingMode(paid=paid)
