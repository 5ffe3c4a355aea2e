"""Audit event models for job lifecycle events reported by Kubernetes."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from kubejobs_api.models.permission import AllowedScope, PermissionScheme


class TargetType(str, Enum):
    """Type of object an audit event is about."""

    JOB = "job"


class OwnerType(str, Enum):
    """Who caused an audit event."""

    USER = "user"
    TOKEN = "token"
    INTERNAL = "internal"


class EventTarget(BaseModel):
    """The object an audit event is attributed to."""

    model_config = ConfigDict(populate_by_name=True)

    type: TargetType = TargetType.JOB
    value: str


class EventOwner(BaseModel):
    """The actor recorded on an audit event."""

    model_config = ConfigDict(populate_by_name=True)

    type: OwnerType = OwnerType.INTERNAL
    name: str = "kubernetes"


class EventOpts(BaseModel):
    """Descriptor handed to the audit service to open an event.

    Attributes:
        kind: Permission scheme naming the action (job.run, job.create)
        target: Object the event is attributed to
        allowed: Permission scope required to read the event
        owner: Actor that caused the event
        cancelable: Whether the event may be cancelled while running
    """

    model_config = ConfigDict(populate_by_name=True)

    kind: PermissionScheme
    target: EventTarget
    allowed: AllowedScope | None = None
    owner: EventOwner = Field(default_factory=EventOwner)
    cancelable: bool = False


class JobAuditEvent(BaseModel):
    """A recorded job audit event.

    Attributes:
        id: Unique identifier
        kind: Action the event describes
        target: Object the event is attributed to (the real owner)
        allowed: Permission scope required to read the event
        owner: Actor that caused the event
        cancelable: Whether the event could be cancelled
        running: True until the event is marked done
        start_time: When the event was opened
        end_time: When the event was marked done
        success: Whether the action succeeded
        error: Error message for failed actions
        custom_data: Free-form string data attached on completion
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: PermissionScheme
    target: EventTarget
    allowed: AllowedScope
    owner: EventOwner = Field(default_factory=EventOwner)
    cancelable: bool = False
    running: bool = True
    start_time: datetime = Field(default_factory=datetime.utcnow, alias="startTime")
    end_time: datetime | None = Field(default=None, alias="endTime")
    success: bool = True
    error: str = ""
    custom_data: dict[str, str] = Field(default_factory=dict, alias="customData")


class JobAuditEventListResponse(BaseModel):
    """Response for listing job audit events with pagination."""

    events: list[JobAuditEvent]
    total: int
    limit: int
    offset: int
