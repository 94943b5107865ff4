"""Turns entitlement facts into an allow/deny decision for workspace starts."""

from datetime import UTC, datetime

import structlog

from app.config import AdmissionConfig
from app.errors import (
    PaymentSpendingLimitReachedError,
    TooManyRunningWorkspacesError,
    UserBlockedError,
)
from app.models.billing import MayStartWorkspaceResult
from app.models.workspace import User
from app.services.entitlement_service import EntitlementService, RunningInstances

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class WorkspaceAdmission:
    """Raises when a user may not start another workspace."""

    def __init__(
        self,
        entitlements: EntitlementService,
        config: AdmissionConfig | None = None,
        now_provider=_utcnow,
    ) -> None:
        self.entitlements = entitlements
        self.config = config or AdmissionConfig()
        self.now_provider = now_provider

    async def check_may_start(
        self,
        user: User,
        organization_id: str | None,
        running_instances: RunningInstances,
    ) -> MayStartWorkspaceResult:
        """
        Check whether `user` may start a workspace in `organization_id`.

        Raises:
            UserBlockedError: The user is blocked.
            PaymentSpendingLimitReachedError: The cost center ran out of credits.
            TooManyRunningWorkspacesError: The parallel workspace cap is reached.
        """
        with structlog.contextvars.bound_contextvars(
            user_id=user.id, organization_id=organization_id
        ):
            if user.blocked:
                raise UserBlockedError(f"User {user.id} is blocked")

            try:
                result = await self.entitlements.may_start_workspace(
                    user, organization_id, self.now_provider(), running_instances
                )
            except Exception as e:
                logger.error("may_start_workspace_failed", error=str(e), exc_info=True)
                if self.config.fail_open_on_entitlement_error:
                    return MayStartWorkspaceResult()
                raise

            if result.usage_limit_reached_on_cost_center is not None:
                raise PaymentSpendingLimitReachedError(result.usage_limit_reached_on_cost_center)
            if result.hit_parallel_workspace_limit is not None:
                raise TooManyRunningWorkspacesError(result.hit_parallel_workspace_limit.max)

            logger.debug("workspace_admitted")
            return result
