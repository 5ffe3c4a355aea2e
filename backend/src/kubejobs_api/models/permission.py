"""Permission schemes and contexts used to scope job audit events."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PermissionScheme(str, Enum):
    """Permission names relevant to job events."""

    JOB_CREATE = "job.create"
    JOB_RUN = "job.run"
    JOB_READ_EVENTS = "job.read.events"


class ContextType(str, Enum):
    """Kind of object a permission context is bound to."""

    GLOBAL = "global"
    POOL = "pool"
    TEAM = "team"
    JOB = "job"


class PermissionContext(BaseModel):
    """A permission context, e.g. ``job:mailer``."""

    model_config = ConfigDict(populate_by_name=True)

    ctx_type: ContextType = Field(alias="ctxType")
    value: str = ""

    def __str__(self) -> str:
        return f"{self.ctx_type.value}:{self.value}"


class AllowedScope(BaseModel):
    """Who may read an event: a scheme paired with one or more contexts."""

    model_config = ConfigDict(populate_by_name=True)

    scheme: PermissionScheme
    contexts: list[PermissionContext] = Field(default_factory=list)


def job_context(job_name: str) -> PermissionContext:
    """Build the permission context bound to a single job."""
    return PermissionContext(ctx_type=ContextType.JOB, value=job_name)


def allowed(scheme: PermissionScheme, *contexts: PermissionContext) -> AllowedScope:
    """Build an allowed scope for ``scheme`` restricted to ``contexts``."""
    return AllowedScope(scheme=scheme, contexts=list(contexts))
