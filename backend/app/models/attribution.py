"""Attribution identifiers: the user or team that usage and billing are assigned to."""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from app.models.workspace import Organization, User


class UserAttributionId(BaseModel):
    """Usage attributed to an individual user."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    user_id: str


class TeamAttributionId(BaseModel):
    """Usage attributed to a team (organization)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["team"] = "team"
    team_id: str


AttributionId = Annotated[UserAttributionId | TeamAttributionId, Field(discriminator="kind")]


def create_for_user(user: User) -> UserAttributionId:
    return UserAttributionId(user_id=user.id)


def create_for_organization(organization: Organization) -> TeamAttributionId:
    return TeamAttributionId(team_id=organization.id)


def render(attribution_id: UserAttributionId | TeamAttributionId) -> str:
    """Render as the `<kind>:<id>` string used as the usage backend key."""
    if isinstance(attribution_id, TeamAttributionId):
        return f"team:{attribution_id.team_id}"
    return f"user:{attribution_id.user_id}"


def parse(value: str) -> UserAttributionId | TeamAttributionId | None:
    """Parse a rendered attribution id. Returns None for anything malformed."""
    parts = value.split(":")
    if len(parts) != 2:
        return None
    kind, identifier = parts
    if not identifier:
        return None
    if kind == "user":
        return UserAttributionId(user_id=identifier)
    if kind == "team":
        return TeamAttributionId(team_id=identifier)
    return None
