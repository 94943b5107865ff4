"""Account and workspace instance models consumed by entitlement checks."""

from enum import Enum

from pydantic import BaseModel, Field


class User(BaseModel):
    """A user as seen by entitlement checks."""

    id: str
    name: str | None = None
    blocked: bool = False


class Organization(BaseModel):
    """A team / organization that users can belong to."""

    id: str
    name: str
    deleted: bool = False


class WorkspaceInstancePhase(str, Enum):
    """Lifecycle phase reported for a workspace instance."""

    PREPARING = "preparing"
    BUILDING = "building"
    PENDING = "pending"
    CREATING = "creating"
    INITIALIZING = "initializing"
    RUNNING = "running"
    INTERRUPTED = "interrupted"
    STOPPING = "stopping"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


class WorkspaceInstanceStatus(BaseModel):
    phase: WorkspaceInstancePhase = WorkspaceInstancePhase.UNKNOWN


class WorkspaceInstance(BaseModel):
    """A (currently live) workspace instance."""

    id: str
    workspace_id: str
    status: WorkspaceInstanceStatus = Field(default_factory=WorkspaceInstanceStatus)
