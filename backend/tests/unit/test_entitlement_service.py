"""Unit tests for entitlement checks."""

import asyncio

import pytest
from structlog.testing import capture_logs

from app.errors import UpstreamUnavailableError
from app.models.attribution import TeamAttributionId, UserAttributionId
from app.models.billing import (
    BillingStrategy,
    BillingTier,
    CreditBalance,
    ParallelWorkspaceLimit,
    UsageLimitReachedResult,
    WorkspaceTimeoutDuration,
)
from app.models.workspace import (
    Organization,
    WorkspaceInstance,
    WorkspaceInstanceStatus,
)
from app.services.account_store import InMemoryAccountStore
from app.services.entitlement_service import EntitlementService, first_true
from app.services.subscription_service import InMemorySubscriptionLookup


def _instances(*phases: str) -> list[WorkspaceInstance]:
    return [
        WorkspaceInstance(
            id=f"inst-{n}",
            workspace_id=f"ws-{n}",
            status=WorkspaceInstanceStatus(phase=phase),
        )
        for n, phase in enumerate(phases)
    ]


class ScriptedUsageBackend:
    """Usage backend whose per-team answers can be delayed or made to fail."""

    def __init__(self) -> None:
        self.strategies: dict[str, BillingStrategy] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.failing: set[str] = set()
        self.limit_result = UsageLimitReachedResult(reached=False)

    async def get_current_billing_strategy(self, attribution_id):
        gate = self.gates.get(attribution_id.team_id)
        if gate is not None:
            await gate.wait()
        if attribution_id.team_id in self.failing:
            raise UpstreamUnavailableError("usage down", upstream="usage")
        return self.strategies.get(attribution_id.team_id)

    async def check_usage_limit_reached(self, user, organization_id=None):
        return self.limit_result


def _scripted(*team_ids: str, subscriptions=None):
    store = InMemoryAccountStore()
    for team_id in team_ids:
        store.add_organization(Organization(id=team_id, name=team_id), "user-1")
    backend = ScriptedUsageBackend()
    service = EntitlementService(store, backend, subscriptions or InMemorySubscriptionLookup())
    return service, backend


class TestFirstTrue:
    async def test_empty_is_false(self):
        assert await first_true([]) is False

    async def test_all_false(self):
        async def no():
            return False

        assert await first_true([no(), no()]) is False

    async def test_error_without_true_is_raised(self):
        async def no():
            return False

        async def boom():
            raise UpstreamUnavailableError("down", upstream="usage")

        with pytest.raises(UpstreamUnavailableError):
            await first_true([no(), boom()])

    async def test_pending_lookups_are_cancelled_after_true(self):
        never = asyncio.Event()
        cancelled = asyncio.Event()

        async def slow():
            try:
                await never.wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return False

        async def yes():
            return True

        assert await first_true([slow(), yes()]) is True
        await asyncio.wait_for(cancelled.wait(), timeout=1)


class TestHasPaidSubscription:
    async def test_personal_subscription_short_circuits(self, user, now):
        subscriptions = InMemorySubscriptionLookup()
        subscriptions.add_subscription(UserAttributionId(user_id="user-1"), "sub_1")
        service, backend = _scripted("team-a", subscriptions=subscriptions)
        backend.failing.add("team-a")

        assert await service.has_paid_subscription(user, now) is True

    async def test_no_teams_and_no_subscription_is_unpaid(self, entitlements, user, now):
        assert await entitlements.has_paid_subscription(user, now) is False

    async def test_any_stripe_team_makes_user_paid(self, user, now):
        service, backend = _scripted("team-a", "team-b")
        backend.strategies["team-a"] = BillingStrategy.OTHER
        backend.strategies["team-b"] = BillingStrategy.STRIPE

        assert await service.has_paid_subscription(user, now) is True

    async def test_true_does_not_wait_for_slower_lookups(self, user, now):
        service, backend = _scripted("team-slow", "team-paid")
        backend.gates["team-slow"] = asyncio.Event()
        backend.strategies["team-paid"] = BillingStrategy.STRIPE

        result = await asyncio.wait_for(service.has_paid_subscription(user, now), timeout=1)

        assert result is True

    async def test_failing_team_does_not_mask_stripe_team(self, user, now):
        service, backend = _scripted("team-broken", "team-paid")
        backend.failing.add("team-broken")
        backend.strategies["team-paid"] = BillingStrategy.STRIPE

        assert await service.has_paid_subscription(user, now) is True

    async def test_false_only_after_every_lookup_settled(self, user, now):
        service, backend = _scripted("team-fast", "team-slow")
        backend.strategies["team-fast"] = BillingStrategy.OTHER
        gate = asyncio.Event()
        backend.gates["team-slow"] = gate

        task = asyncio.create_task(service.has_paid_subscription(user, now))
        for _ in range(5):
            await asyncio.sleep(0)
        assert not task.done()

        gate.set()
        assert await task is False

    async def test_slow_stripe_team_still_wins_over_fast_unpaid(self, user, now):
        service, backend = _scripted("team-fast", "team-slow")
        backend.strategies["team-fast"] = BillingStrategy.OTHER
        backend.strategies["team-slow"] = BillingStrategy.STRIPE
        gate = asyncio.Event()
        backend.gates["team-slow"] = gate

        task = asyncio.create_task(service.has_paid_subscription(user, now))
        await asyncio.sleep(0)
        gate.set()

        assert await task is True

    async def test_all_lookups_failing_propagates(self, user, now):
        service, backend = _scripted("team-a", "team-b")
        backend.failing.update({"team-a", "team-b"})

        with pytest.raises(UpstreamUnavailableError):
            await service.has_paid_subscription(user, now)


class TestTierEntitlements:
    async def test_free_user(self, entitlements, user, now):
        assert await entitlements.get_billing_tier(user) == BillingTier.FREE
        assert await entitlements.get_max_parallel_workspaces(user, now) == 4
        assert await entitlements.may_set_timeout(user, now) is False
        assert await entitlements.get_default_workspace_timeout(user, now) == (
            WorkspaceTimeoutDuration.SHORT
        )
        assert await entitlements.get_default_workspace_lifetime(user, now) == (
            WorkspaceTimeoutDuration.SHORT
        )

    async def test_member_of_stripe_team_is_paid(
        self, entitlements, usage_backend, sample_organization, user, now
    ):
        usage_backend.billing_strategies[TeamAttributionId(team_id="team-1")] = (
            BillingStrategy.STRIPE
        )

        assert await entitlements.get_billing_tier(user) == BillingTier.PAID
        assert await entitlements.get_max_parallel_workspaces(user, now) == 16
        assert await entitlements.may_set_timeout(user, now) is True
        assert await entitlements.get_default_workspace_timeout(user, now) == (
            WorkspaceTimeoutDuration.LONG
        )
        assert await entitlements.get_default_workspace_lifetime(user, now) == (
            WorkspaceTimeoutDuration.LONG
        )

    async def test_network_is_limited_for_both_tiers(
        self, entitlements, usage_backend, sample_organization, user, now
    ):
        assert await entitlements.limit_network_connections(user, now) is True

        usage_backend.billing_strategies[TeamAttributionId(team_id="team-1")] = (
            BillingStrategy.STRIPE
        )
        assert await entitlements.limit_network_connections(user, now) is True

    async def test_more_resources_is_always_false(self, entitlements, subscriptions, user, now):
        subscriptions.add_subscription(UserAttributionId(user_id="user-1"), "sub_1")

        assert await entitlements.user_gets_more_resources(user) is False
        assert await entitlements.user_gets_more_resources(user, now) is False

    async def test_free_user_gets_default_timeout_instead_of_requested(
        self, entitlements, user, now
    ):
        timeout = await entitlements.resolve_workspace_timeout(user, now, "60m")

        assert timeout == WorkspaceTimeoutDuration.SHORT

    async def test_paid_user_gets_requested_timeout(self, entitlements, subscriptions, user, now):
        subscriptions.add_subscription(UserAttributionId(user_id="user-1"), "sub_1")

        assert await entitlements.resolve_workspace_timeout(user, now, "30m") == (
            WorkspaceTimeoutDuration.SHORT
        )
        assert await entitlements.resolve_workspace_timeout(user, now) == (
            WorkspaceTimeoutDuration.LONG
        )

    async def test_repeated_calls_are_stable(
        self, entitlements, usage_backend, sample_organization, user, now
    ):
        usage_backend.billing_strategies[TeamAttributionId(team_id="team-1")] = (
            BillingStrategy.STRIPE
        )

        first = await entitlements.get_max_parallel_workspaces(user, now)
        second = await entitlements.get_max_parallel_workspaces(user, now)

        assert first == second == 16


class TestMayStartWorkspace:
    @pytest.fixture(autouse=True)
    def _balances(self, usage_backend):
        usage_backend.balances[UserAttributionId(user_id="user-1")] = CreditBalance(
            used_credits=0, usage_limit=100
        )
        usage_backend.balances[TeamAttributionId(team_id="team-1")] = CreditBalance(
            used_credits=0, usage_limit=100
        )

    async def test_under_all_limits(self, entitlements, user, now):
        result = await entitlements.may_start_workspace(user, None, now, _instances("running"))

        assert result.usage_limit_reached_on_cost_center is None
        assert result.hit_parallel_workspace_limit is None

    async def test_unpaid_user_with_four_running_hits_limit(self, entitlements, user, now):
        running = _instances("running", "running", "stopping", "initializing")

        result = await entitlements.may_start_workspace(user, None, now, running)

        assert result.hit_parallel_workspace_limit == ParallelWorkspaceLimit(current=4, max=4)

    async def test_preparing_instances_do_not_count(self, entitlements, user, now):
        running = _instances("running", "running", "running", "preparing")

        result = await entitlements.may_start_workspace(user, None, now, running)

        assert result.hit_parallel_workspace_limit is None

    async def test_accepts_awaitable_instances(self, entitlements, user, now):
        async def fetch():
            return _instances("running", "running", "running", "running", "running")

        result = await entitlements.may_start_workspace(user, None, now, fetch())

        assert result.hit_parallel_workspace_limit == ParallelWorkspaceLimit(current=5, max=4)

    async def test_paid_user_gets_higher_cap(
        self, entitlements, usage_backend, sample_organization, user, now
    ):
        usage_backend.billing_strategies[TeamAttributionId(team_id="team-1")] = (
            BillingStrategy.STRIPE
        )

        result = await entitlements.may_start_workspace(
            user, "team-1", now, _instances(*["running"] * 4)
        )

        assert result.hit_parallel_workspace_limit is None

    async def test_reports_organization_cost_center(
        self, entitlements, usage_backend, sample_organization, user, now
    ):
        usage_backend.balances[TeamAttributionId(team_id="team-1")] = CreditBalance(
            used_credits=100, usage_limit=100
        )

        result = await entitlements.may_start_workspace(user, "team-1", now, [])

        assert result.usage_limit_reached_on_cost_center == TeamAttributionId(team_id="team-1")
        assert result.hit_parallel_workspace_limit is None

    async def test_almost_reached_limit_is_logged_but_not_reported(
        self, entitlements, usage_backend, user, now
    ):
        usage_backend.balances[UserAttributionId(user_id="user-1")] = CreditBalance(
            used_credits=90, usage_limit=100
        )

        with capture_logs() as logs:
            result = await entitlements.may_start_workspace(user, None, now, [])

        assert result.usage_limit_reached_on_cost_center is None
        assert any(entry["event"] == "usage_limit_almost_reached" for entry in logs)

    async def test_failing_usage_check_waits_for_instance_check(self, user, now):
        service, backend = _scripted()
        gate = asyncio.Event()
        instances_done = asyncio.Event()

        async def check_usage_limit_reached(_user, _organization_id=None):
            raise UpstreamUnavailableError("usage down", upstream="usage")

        async def fetch_instances():
            await gate.wait()
            instances_done.set()
            return []

        backend.check_usage_limit_reached = check_usage_limit_reached
        task = asyncio.create_task(service.may_start_workspace(user, None, now, fetch_instances()))
        for _ in range(5):
            await asyncio.sleep(0)
        assert not task.done()

        gate.set()
        with pytest.raises(UpstreamUnavailableError):
            await task
        assert instances_done.is_set()

    async def test_both_checks_run_concurrently(self, user, now):
        service, backend = _scripted()
        instances_started = asyncio.Event()
        limit_started = asyncio.Event()

        async def check_usage_limit_reached(_user, _organization_id=None):
            limit_started.set()
            await instances_started.wait()
            return UsageLimitReachedResult(reached=False)

        async def fetch_instances():
            instances_started.set()
            await limit_started.wait()
            return []

        backend.check_usage_limit_reached = check_usage_limit_reached

        result = await asyncio.wait_for(
            service.may_start_workspace(user, None, now, fetch_instances()), timeout=1
        )

        assert result.usage_limit_reached_on_cost_center is None
