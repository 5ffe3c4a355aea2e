"""Pydantic models for jobs, units and audit events."""

from kubejobs_api.models.audit import (
    EventOpts,
    EventOwner,
    EventTarget,
    JobAuditEvent,
    OwnerType,
    TargetType,
)
from kubejobs_api.models.job import (
    ContainerInfo,
    EnvVar,
    Job,
    JobMetadata,
    JobPlan,
    JobSpec,
    MetadataItem,
)
from kubejobs_api.models.k8s import Unit, UnitStatus
from kubejobs_api.models.permission import (
    AllowedScope,
    ContextType,
    PermissionContext,
    PermissionScheme,
)

__all__ = [
    "AllowedScope",
    "ContainerInfo",
    "ContextType",
    "EnvVar",
    "EventOpts",
    "EventOwner",
    "EventTarget",
    "Job",
    "JobAuditEvent",
    "JobMetadata",
    "JobPlan",
    "JobSpec",
    "MetadataItem",
    "OwnerType",
    "PermissionContext",
    "PermissionScheme",
    "TargetType",
    "Unit",
    "UnitStatus",
]
