"""Projections of Kubernetes job executions returned to the platform."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class UnitStatus(str, Enum):
    """Aggregate status of one job execution."""

    STARTED = "started"  # Created, nothing finished yet
    SUCCEEDED = "succeeded"  # At least one pod succeeded and none failed
    ERROR = "error"  # At least one pod failed


class Unit(BaseModel):
    """One execution of a job as seen by the platform.

    Attributes:
        id: Execution identifier (the Kubernetes Job name)
        name: Display name (same as id)
        status: Aggregate status of the execution
        restarts: Container restarts summed across the execution's pods
        created_at: When the execution was created, in UTC
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    status: UnitStatus
    restarts: int = 0
    created_at: datetime | None = Field(default=None, alias="createdAt")


class UnitListResponse(BaseModel):
    """Response for listing a job's units."""

    units: list[Unit]
