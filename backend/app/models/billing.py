"""Billing mode and entitlement models."""

from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from app.constants import TIMEOUT_DURATION_LONG, TIMEOUT_DURATION_SHORT
from app.models.attribution import AttributionId


class BillingStrategy(str, Enum):
    """How the usage backend bills a cost center."""

    STRIPE = "BILLING_STRATEGY_STRIPE"
    OTHER = "BILLING_STRATEGY_OTHER"


class BillingTier(str, Enum):
    FREE = "free"
    PAID = "paid"


class WorkspaceTimeoutDuration(str, Enum):
    """Default timeout / lifetime classes handed out per tier."""

    SHORT = "short"
    LONG = "long"

    def to_duration(self) -> str:
        if self is WorkspaceTimeoutDuration.LONG:
            return TIMEOUT_DURATION_LONG
        return TIMEOUT_DURATION_SHORT

    @classmethod
    def from_duration(cls, duration: str) -> "WorkspaceTimeoutDuration":
        if duration == TIMEOUT_DURATION_LONG:
            return cls.LONG
        return cls.SHORT


class NoneBillingMode(BaseModel):
    """Payment is disabled for the whole installation."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["none"] = "none"


class UsageBasedBillingMode(BaseModel):
    """Usage-based billing.

    ``paid`` is only set for organizations; the legacy per-user path leaves it
    as None (dump with ``exclude_none=True`` to omit it).
    """

    model_config = ConfigDict(frozen=True)

    mode: Literal["usage-based"] = "usage-based"
    paid: bool | None = None


BillingMode = Annotated[NoneBillingMode | UsageBasedBillingMode, Field(discriminator="mode")]


class ParallelWorkspaceLimit(BaseModel):
    """Concurrent workspace count that reached the cap."""

    current: int = Field(ge=0)
    max: int = Field(ge=0)


class MayStartWorkspaceResult(BaseModel):
    """Facts about whether a new workspace may start. Callers decide what to deny."""

    usage_limit_reached_on_cost_center: AttributionId | None = None
    hit_parallel_workspace_limit: ParallelWorkspaceLimit | None = None


class CreditBalance(BaseModel):
    """Current invoice credits of a cost center."""

    used_credits: float = 0.0
    usage_limit: float = 0.0


class UsageLimitReachedResult(BaseModel):
    """Outcome of a spending limit check."""

    reached: bool
    almost_reached: bool = False
    attribution_id: AttributionId | None = None
