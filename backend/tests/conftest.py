"""
Shared test fixtures for the entitlement service test suite.
"""

from datetime import UTC, datetime

import pytest
import structlog

from app.config import BillingConfig
from app.models.workspace import Organization, User
from app.services.account_store import InMemoryAccountStore
from app.services.billing_mode import BillingModeResolver
from app.services.entitlement_service import EntitlementService
from app.services.subscription_service import InMemorySubscriptionLookup
from app.services.usage_service import InMemoryUsageBackend

NOW = datetime(2026, 2, 22, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep Settings independent from the developer's environment."""
    for name in (
        "BILLING__ENABLE_PAYMENT",
        "SUPABASE_URL",
        "SUPABASE_SECRET_KEY",
        "STRIPE__SECRET_KEY",
        "DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _configure_structlog_for_tests():
    """Configure structlog for tests using a simple, deterministic setup."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(0),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def user() -> User:
    return User(id="user-1", name="Ada")


@pytest.fixture
def account_store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def usage_backend() -> InMemoryUsageBackend:
    return InMemoryUsageBackend()


@pytest.fixture
def subscriptions() -> InMemorySubscriptionLookup:
    return InMemorySubscriptionLookup()


@pytest.fixture
def entitlements(account_store, usage_backend, subscriptions) -> EntitlementService:
    return EntitlementService(account_store, usage_backend, subscriptions, now_provider=lambda: NOW)


@pytest.fixture
def billing_modes(account_store, usage_backend) -> BillingModeResolver:
    return BillingModeResolver(account_store, usage_backend, BillingConfig(enable_payment=True))


@pytest.fixture
def sample_organization(account_store: InMemoryAccountStore) -> Organization:
    """Organization "team-1" with user-1 as its only member."""
    return account_store.add_organization(Organization(id="team-1", name="Acme"), "user-1")
