"""
Service wiring for the entitlement engine.

Builds the concrete collaborators from Settings and hands back the resolver,
the entitlement service and the admission guard. Callers own the returned
container and must `await services.close()` on shutdown.
"""

from dataclasses import dataclass

import structlog
from supabase import acreate_client
from supabase._async.client import AsyncClient as AsyncSupabaseClient

from app.config import Settings, get_settings
from app.logging_config import setup_logging
from app.services.account_store import AccountStore, InMemoryAccountStore, SupabaseAccountStore
from app.services.billing_mode import BillingModeResolver
from app.services.entitlement_service import EntitlementService
from app.services.subscription_service import (
    InMemorySubscriptionLookup,
    StripeSubscriptionLookup,
    SubscriptionLookup,
)
from app.services.usage_service import HttpUsageService
from app.services.workspace_admission import WorkspaceAdmission

logger = structlog.get_logger(__name__)


@dataclass
class EntitlementServices:
    billing_modes: BillingModeResolver
    entitlements: EntitlementService
    admission: WorkspaceAdmission
    usage_service: HttpUsageService

    async def close(self) -> None:
        await self.usage_service.close()
        logger.info("entitlement_services_closed")


async def _build_account_store(settings: Settings) -> AccountStore:
    if not (settings.supabase_url and settings.supabase_secret_key):
        logger.warning("supabase_not_configured", detail="Using empty in-memory account store")
        return InMemoryAccountStore()

    client: AsyncSupabaseClient = await acreate_client(
        settings.supabase_url,
        settings.supabase_secret_key,
    )
    logger.info("supabase_configured")
    return SupabaseAccountStore(client)


def _build_subscription_lookup(settings: Settings) -> SubscriptionLookup:
    if not settings.stripe.secret_key:
        logger.warning("stripe_not_configured", detail="No personal subscriptions will be found")
        return InMemorySubscriptionLookup()
    logger.info("stripe_configured")
    return StripeSubscriptionLookup(settings.stripe)


async def build_services(settings: Settings | None = None) -> EntitlementServices:
    """Create all services once, at process startup."""
    settings = settings or get_settings()
    setup_logging(settings.debug)

    account_store = await _build_account_store(settings)
    usage_service = HttpUsageService(settings.usage_api)
    subscription_lookup = _build_subscription_lookup(settings)

    billing_modes = BillingModeResolver(account_store, usage_service, settings.billing)
    entitlements = EntitlementService(account_store, usage_service, subscription_lookup)
    admission = WorkspaceAdmission(entitlements, settings.admission)

    logger.info(
        "entitlement_services_initialized",
        payment_enabled=settings.billing.enable_payment,
        usage_api=settings.usage_api.base_url,
    )
    return EntitlementServices(
        billing_modes=billing_modes,
        entitlements=entitlements,
        admission=admission,
        usage_service=usage_service,
    )
