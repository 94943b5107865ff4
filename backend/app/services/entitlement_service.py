"""Workspace entitlements derived from a user's paid status and live usage."""

import asyncio
import inspect
from collections.abc import Awaitable, Iterable
from datetime import UTC, datetime

import structlog

from app.constants import (
    MAX_PARALLEL_WORKSPACES_FREE,
    MAX_PARALLEL_WORKSPACES_PAID,
    NON_COUNTING_PHASES,
)
from app.models.attribution import AttributionId, create_for_organization, create_for_user
from app.models.billing import (
    BillingStrategy,
    BillingTier,
    MayStartWorkspaceResult,
    ParallelWorkspaceLimit,
    WorkspaceTimeoutDuration,
)
from app.models.workspace import Organization, User, WorkspaceInstance
from app.services.account_store import AccountStore
from app.services.subscription_service import SubscriptionLookup
from app.services.usage_service import UsageBackend, usage_scope

logger = structlog.get_logger(__name__)

RunningInstances = Iterable[WorkspaceInstance] | Awaitable[Iterable[WorkspaceInstance]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


async def first_true(lookups: Iterable[Awaitable[bool]]) -> bool:
    """Run lookups concurrently and return True as soon as any of them does.

    False is only returned once every lookup has finished. A failed lookup never
    hides a True from another one; if nothing returned True, the first failure
    is raised. Outstanding lookups are cancelled once the answer is known.
    """
    tasks = [asyncio.ensure_future(lookup) for lookup in lookups]
    if not tasks:
        return False

    first_error: BaseException | None = None
    try:
        for next_done in asyncio.as_completed(tasks):
            try:
                if await next_done:
                    return True
            except Exception as e:
                if first_error is None:
                    first_error = e
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
            elif not task.cancelled():
                task.exception()  # mark as retrieved

    if first_error is not None:
        raise first_error
    return False


async def _collect_instances(running_instances: RunningInstances) -> list[WorkspaceInstance]:
    if inspect.isawaitable(running_instances):
        running_instances = await running_instances
    return list(running_instances)


class EntitlementService:
    """Answers entitlement questions asked before admitting or configuring a workspace.

    Nothing is cached: every answer is computed from the current subscription,
    membership and billing strategy state.
    """

    def __init__(
        self,
        account_store: AccountStore,
        usage_backend: UsageBackend,
        subscription_lookup: SubscriptionLookup,
        now_provider=_utcnow,
    ) -> None:
        self.account_store = account_store
        self.usage_backend = usage_backend
        self.subscription_lookup = subscription_lookup
        self.now_provider = now_provider

    async def _organization_is_paid(self, organization: Organization) -> bool:
        strategy = await self.usage_backend.get_current_billing_strategy(
            create_for_organization(organization)
        )
        return strategy == BillingStrategy.STRIPE

    async def has_paid_subscription(self, user: User, date: datetime) -> bool:
        subscription_id = await self.subscription_lookup.find_active_uncancelled_subscription(
            create_for_user(user)
        )
        if subscription_id:
            logger.debug("paid_via_personal_subscription", user_id=user.id)
            return True

        organizations = await self.account_store.list_organizations_for_user(user.id)
        return await first_true(self._organization_is_paid(org) for org in organizations)

    async def may_start_workspace(
        self,
        user: User,
        organization_id: str | None,
        date: datetime,
        running_instances: RunningInstances,
    ) -> MayStartWorkspaceResult:
        # Both checks always settle before we return or raise.
        usage_limit_reached, parallel_limit = await asyncio.gather(
            self._usage_limit_reached_on_cost_center(user, organization_id),
            self._hit_parallel_workspace_limit(user, date, running_instances),
            return_exceptions=True,
        )
        for outcome in (usage_limit_reached, parallel_limit):
            if isinstance(outcome, BaseException):
                raise outcome
        return MayStartWorkspaceResult(
            usage_limit_reached_on_cost_center=usage_limit_reached,
            hit_parallel_workspace_limit=parallel_limit,
        )

    async def _usage_limit_reached_on_cost_center(
        self, user: User, organization_id: str | None
    ) -> AttributionId | None:
        result = await self.usage_backend.check_usage_limit_reached(user, organization_id)
        if not result.reached:
            if result.almost_reached:
                logger.info(
                    "usage_limit_almost_reached",
                    user_id=user.id,
                    organization_id=organization_id,
                )
            return None
        return result.attribution_id or usage_scope(user, organization_id)

    async def _hit_parallel_workspace_limit(
        self, user: User, date: datetime, running_instances: RunningInstances
    ) -> ParallelWorkspaceLimit | None:
        instances = await _collect_instances(running_instances)
        current = sum(1 for i in instances if i.status.phase.value not in NON_COUNTING_PHASES)
        max_workspaces = await self.get_max_parallel_workspaces(user, date)
        if current >= max_workspaces:
            logger.info(
                "parallel_workspace_limit_hit",
                user_id=user.id,
                current=current,
                max=max_workspaces,
            )
            return ParallelWorkspaceLimit(current=current, max=max_workspaces)
        return None

    async def get_max_parallel_workspaces(self, user: User, date: datetime) -> int:
        if await self.has_paid_subscription(user, date):
            return MAX_PARALLEL_WORKSPACES_PAID
        return MAX_PARALLEL_WORKSPACES_FREE

    async def may_set_timeout(self, user: User, date: datetime) -> bool:
        return await self.has_paid_subscription(user, date)

    async def get_default_workspace_timeout(
        self, user: User, date: datetime
    ) -> WorkspaceTimeoutDuration:
        if await self.has_paid_subscription(user, date):
            return WorkspaceTimeoutDuration.LONG
        return WorkspaceTimeoutDuration.SHORT

    async def get_default_workspace_lifetime(
        self, user: User, date: datetime
    ) -> WorkspaceTimeoutDuration:
        if await self.has_paid_subscription(user, date):
            return WorkspaceTimeoutDuration.LONG
        return WorkspaceTimeoutDuration.SHORT

    async def resolve_workspace_timeout(
        self, user: User, date: datetime, requested: str | None = None
    ) -> WorkspaceTimeoutDuration:
        """Timeout for a new workspace: the requested duration when the user may
        set one, the tier default otherwise."""
        if requested and await self.may_set_timeout(user, date):
            return WorkspaceTimeoutDuration.from_duration(requested)
        return await self.get_default_workspace_timeout(user, date)

    async def user_gets_more_resources(self, user: User, date: datetime | None = None) -> bool:
        """Deprecated: larger workspace resources are no longer handed out."""
        return False

    async def limit_network_connections(self, user: User, date: datetime) -> bool:
        # Egress is restricted for every tier for now (abuse mitigation).
        return True

    async def get_billing_tier(self, user: User) -> BillingTier:
        if await self.has_paid_subscription(user, self.now_provider()):
            return BillingTier.PAID
        return BillingTier.FREE
