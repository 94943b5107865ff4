"""Account store: organization lookup and organization memberships."""

from typing import Protocol

import httpx
import structlog
from postgrest.exceptions import APIError

from app.errors import UpstreamUnavailableError
from app.models.workspace import Organization

logger = structlog.get_logger(__name__)


class AccountStore(Protocol):
    """Read contract for organizations and memberships."""

    async def find_organization_by_id(self, organization_id: str) -> Organization | None:
        """Fetch an organization, None if it does not exist."""

    async def list_organizations_for_user(self, user_id: str) -> list[Organization]:
        """List every organization the user is a member of."""


class InMemoryAccountStore:
    """In-memory account store used for tests and local fallback."""

    def __init__(self) -> None:
        self.organizations: dict[str, Organization] = {}
        self.memberships: dict[str, list[str]] = {}

    def add_organization(self, organization: Organization, *member_ids: str) -> Organization:
        self.organizations[organization.id] = organization
        for user_id in member_ids:
            self.memberships.setdefault(user_id, []).append(organization.id)
        return organization

    async def find_organization_by_id(self, organization_id: str) -> Organization | None:
        organization = self.organizations.get(organization_id)
        if organization is None or organization.deleted:
            return None
        return organization.model_copy(deep=True)

    async def list_organizations_for_user(self, user_id: str) -> list[Organization]:
        return [
            self.organizations[org_id].model_copy(deep=True)
            for org_id in self.memberships.get(user_id, [])
            if org_id in self.organizations and not self.organizations[org_id].deleted
        ]


class SupabaseAccountStore:
    """Supabase-backed account store over the `teams` and `team_memberships` tables."""

    def __init__(
        self,
        client,
        teams_table: str = "teams",
        memberships_table: str = "team_memberships",
    ):
        self.client = client
        self.teams_table = teams_table
        self.memberships_table = memberships_table

    async def find_organization_by_id(self, organization_id: str) -> Organization | None:
        try:
            response = (
                await self.client.table(self.teams_table)
                .select("*")
                .eq("id", organization_id)
                .eq("deleted", False)
                .limit(1)
                .execute()
            )
        except (APIError, httpx.HTTPError) as e:
            logger.warning("account_store_lookup_failed", organization_id=organization_id, error=str(e))
            raise UpstreamUnavailableError(
                f"Failed to load organization '{organization_id}'", upstream="account_store"
            ) from e
        rows = response.data or []
        if not rows:
            return None
        return Organization.model_validate(rows[0])

    async def list_organizations_for_user(self, user_id: str) -> list[Organization]:
        try:
            memberships = (
                await self.client.table(self.memberships_table)
                .select("team_id")
                .eq("user_id", user_id)
                .eq("deleted", False)
                .execute()
            )
            team_ids = [row["team_id"] for row in memberships.data or []]
            if not team_ids:
                return []
            teams = (
                await self.client.table(self.teams_table)
                .select("*")
                .in_("id", team_ids)
                .eq("deleted", False)
                .execute()
            )
        except (APIError, httpx.HTTPError) as e:
            logger.warning("account_store_memberships_failed", user_id=user_id, error=str(e))
            raise UpstreamUnavailableError(
                f"Failed to list organizations for user '{user_id}'", upstream="account_store"
            ) from e
        return [Organization.model_validate(row) for row in teams.data or []]
