"""Error types raised by billing mode resolution, entitlement checks and admission."""

from app.models.attribution import AttributionId, render


class EntitlementError(Exception):
    """Base class for all errors raised by this service."""

    code = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(EntitlementError):
    """A referenced organization (or other record) does not exist."""

    code = "not_found"


class InvalidArgumentError(EntitlementError):
    """The caller passed an argument this service cannot handle."""

    code = "invalid_argument"


class UpstreamUnavailableError(EntitlementError):
    """An external collaborator (usage backend, Stripe, account store) failed."""

    code = "upstream_unavailable"

    def __init__(self, message: str, *, upstream: str) -> None:
        super().__init__(message)
        self.upstream = upstream


class UserBlockedError(EntitlementError):
    code = "user_blocked"


class PaymentSpendingLimitReachedError(EntitlementError):
    """The spending limit of a cost center has been exhausted."""

    code = "payment_spending_limit_reached"

    def __init__(self, attribution_id: AttributionId) -> None:
        super().__init__("Increase usage limit and try again.")
        self.attribution_id = attribution_id

    @property
    def details(self) -> dict[str, str]:
        return {"attribution_id": render(self.attribution_id)}


class TooManyRunningWorkspacesError(EntitlementError):
    code = "too_many_running_workspaces"

    def __init__(self, max_workspaces: int) -> None:
        plural = "" if max_workspaces == 1 else "s"
        super().__init__(
            f"You cannot run more than {max_workspaces} workspace{plural} at the same time "
            "as per your organization settings. Please stop a workspace before starting another one."
        )
        self.max = max_workspaces
