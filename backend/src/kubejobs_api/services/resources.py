"""Resource requirement resolution for job containers."""

from __future__ import annotations

import logging
from collections.abc import Callable

from kubernetes import client

from kubejobs_api.core.config import Settings, get_settings
from kubejobs_api.models.job import Job

logger = logging.getLogger(__name__)

ResourceResolver = Callable[[Job], client.V1ResourceRequirements]


class ResourceRequirementsError(ValueError):
    """Raised when a job's plan cannot be turned into resource requirements."""

    def __init__(self, job_name: str, message: str) -> None:
        super().__init__(f"Invalid resource requirements for job {job_name}: {message}")
        self.job_name = job_name


class PlanResourceResolver:
    """Derives container requests and limits from a job's plan.

    Limits come from the plan (falling back to configured defaults when the
    plan leaves them at zero). Requests are the limits scaled by
    ``cpu_request_ratio``, so jobs can burst up to their plan.

    Example:
        ```python
        resolver = PlanResourceResolver()
        requirements = resolver(job)
        requirements.limits  # {"cpu": "500m", "memory": "256Mi"}
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def __call__(self, job: Job) -> client.V1ResourceRequirements:
        """Resolve resource requirements for ``job``.

        Raises:
            ResourceRequirementsError: If the plan or ratio is out of range
        """
        ratio = self.settings.cpu_request_ratio
        if not 0 < ratio <= 1:
            raise ResourceRequirementsError(job.name, f"request ratio {ratio} not in (0, 1]")

        memory_mb = job.plan.memory_mb or self.settings.default_memory_mb
        cpu_milli = job.plan.cpu_milli or self.settings.default_cpu_milli
        if memory_mb < 0:
            raise ResourceRequirementsError(job.name, f"negative memory {memory_mb}Mi")
        if cpu_milli < 0:
            raise ResourceRequirementsError(job.name, f"negative cpu {cpu_milli}m")

        requests = {
            "cpu": f"{max(int(cpu_milli * ratio), 1)}m",
            "memory": f"{max(int(memory_mb * ratio), 1)}Mi",
        }
        limits = {"cpu": f"{cpu_milli}m", "memory": f"{memory_mb}Mi"}
        logger.debug("Resolved resources for job %s: limits=%s", job.name, limits)
        return client.V1ResourceRequirements(requests=requests, limits=limits)
