"""Kubernetes CronJob lifecycle, manual triggers and unit reconciliation."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from kubejobs_api.core.config import Settings, get_settings
from kubejobs_api.core.telemetry import get_tracer
from kubejobs_api.models.job import Job
from kubejobs_api.models.k8s import Unit, UnitStatus
from kubejobs_api.services.cluster import (
    ClusterClient,
    ClusterService,
    get_cluster_service,
    is_already_exists,
    is_not_found,
)
from kubejobs_api.services.identity import (
    delete_service_account,
    ensure_service_account,
    service_account_name_for_job,
)
from kubejobs_api.services.job_spec import build_job_spec
from kubejobs_api.services.labels import (
    build_metadata,
    job_labels,
    label_selector,
    service_account_labels,
)
from kubejobs_api.services.resources import PlanResourceResolver, ResourceResolver

if TYPE_CHECKING:
    from kubernetes.client import V1CronJob, V1Job, V1Pod

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

MANUAL_INSTANTIATE_ANNOTATION = "cronjob.kubernetes.io/instantiate"
MANUAL_INSTANTIATE_VALUE = "manual"
POD_JOB_NAME_LABEL = "job-name"


class JobProvisionError(RuntimeError):
    """Raised when a Kubernetes call for a job fails.

    Attributes:
        step: Lifecycle step that failed (e.g. ``create_cronjob``)
        name: Name of the object the step acted on
        status: HTTP status reported by Kubernetes, if any
    """

    def __init__(self, message: str, step: str, name: str, status: int | None = None) -> None:
        super().__init__(message)
        self.step = step
        self.name = name
        self.status = status


class JobAlreadyExistsError(JobProvisionError):
    """Raised when the object being created already exists."""


class JobNotFoundError(JobProvisionError):
    """Raised when the object being read, replaced or deleted is missing."""


class TriggerAlreadyPendingError(JobAlreadyExistsError):
    """Raised when a manual execution was already created this minute."""


def _provision_error(e: ApiException, step: str, name: str) -> JobProvisionError:
    """Classify an ApiException into the matching JobProvisionError."""
    if is_already_exists(e):
        return JobAlreadyExistsError(f"{name} already exists ({step})", step, name, e.status)
    if is_not_found(e):
        return JobNotFoundError(f"{name} not found ({step})", step, name, e.status)
    return JobProvisionError(f"Failed to {step} {name}: {e.reason}", step, name, e.status)


def get_manual_job_name(cronjob_name: str, now: float) -> str:
    """Name a manually triggered execution.

    The suffix is the Unix minute, so triggers within the same wall-clock
    minute share a name and all but the first are rejected as duplicates.
    """
    return f"{cronjob_name}-manual-job-{int(now) // 60}"


def unit_status(k8s_job: V1Job) -> UnitStatus:
    """Aggregate status of an execution. Any failure outranks success."""
    status = k8s_job.status
    if status is not None and (status.failed or 0) > 0:
        return UnitStatus.ERROR
    if status is not None and (status.succeeded or 0) > 0:
        return UnitStatus.SUCCEEDED
    return UnitStatus.STARTED


def pod_restarts(pod: V1Pod) -> int:
    """Sum container restart counts for a pod."""
    if not pod.status or not pod.status.container_statuses:
        return 0
    return sum(cs.restart_count or 0 for cs in pod.status.container_statuses)


class K8sJobService:
    """Manages the CronJob backing each platform job.

    Each platform job owns one CronJob named after it in its pool's
    namespace. The CronJob is always rebuilt from the job definition (full
    replace on update), executions are listed back as platform units, and
    one-off executions can be spawned from the CronJob's template.

    No state is cached between calls and no call is retried: conflicts and
    missing objects reported by Kubernetes surface as exceptions.

    Example:
        ```python
        service = get_k8s_job_service()
        name = service.create_job(job)
        execution = service.trigger_cron(name, job.pool)
        units = service.job_units(job)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        cluster_service: ClusterService | None = None,
        resource_resolver: ResourceResolver | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the job service.

        Args:
            settings: Application settings (uses default if not provided)
            cluster_service: Pool resolver (uses the global one if not provided)
            resource_resolver: Resource resolver (plan based if not provided)
            clock: Source of Unix time for manual execution names
        """
        self.settings = settings or get_settings()
        self._cluster_service = cluster_service
        self.resource_resolver = resource_resolver or PlanResourceResolver(self.settings)
        self.clock = clock

    @property
    def cluster_service(self) -> ClusterService:
        """Get the cluster service instance."""
        if self._cluster_service is None:
            self._cluster_service = get_cluster_service()
        return self._cluster_service

    def _build_cronjob(
        self,
        job: Job,
        namespace: str,
        job_spec: client.V1JobSpec,
        labels: dict[str, str],
        annotations: dict[str, str],
    ) -> V1CronJob:
        """Build the full CronJob object for a job."""
        return client.V1CronJob(
            api_version="batch/v1",
            kind="CronJob",
            metadata=client.V1ObjectMeta(
                name=job.name,
                namespace=namespace,
                labels=labels,
                annotations=annotations,
            ),
            spec=client.V1CronJobSpec(
                schedule=job.spec.schedule,
                suspend=job.spec.manual,
                job_template=client.V1JobTemplateSpec(spec=job_spec),
            ),
        )

    def _prepare_cronjob(self, job: Job) -> tuple[ClusterClient, V1CronJob]:
        """Resolve the pool, provision identity and compile the CronJob.

        Nothing is written to the CronJob API until this returns, so a bad
        job definition never leaves a partial CronJob behind.
        """
        cluster = self.cluster_service.client_for_pool(job.pool)
        prefix = self.settings.label_prefix

        ensure_service_account(
            cluster,
            service_account_name_for_job(job),
            service_account_labels(job, prefix),
            cluster.namespace,
            job.metadata,
        )

        labels, annotations = build_metadata(job, prefix)
        job_spec = build_job_spec(job, self.resource_resolver, labels, annotations)
        return cluster, self._build_cronjob(job, cluster.namespace, job_spec, labels, annotations)

    def create_job(self, job: Job) -> str:
        """Create the CronJob for a new platform job.

        Args:
            job: Job to create

        Returns:
            Name of the created CronJob (the job name)

        Raises:
            PoolNotFoundError: If the job's pool cannot be resolved
            ServiceAccountError: If the job's service account cannot be provisioned
            ResourceRequirementsError: If the job's resources are invalid
            JobAlreadyExistsError: If a CronJob with this name already exists
            JobProvisionError: For any other Kubernetes failure
        """
        with tracer.start_as_current_span("kubejobs.create_job") as span:
            span.set_attribute("kubejobs.job", job.name)
            span.set_attribute("kubejobs.pool", job.pool)
            cluster, cronjob = self._prepare_cronjob(job)
            try:
                created = cluster.batch_api.create_namespaced_cron_job(
                    namespace=cluster.namespace, body=cronjob
                )
            except ApiException as e:
                logger.error("Failed to create cronjob %s: %s", job.name, e.reason)
                raise _provision_error(e, "create_cronjob", job.name) from e

        name = created.metadata.name if created and created.metadata else job.name
        logger.info("Created cronjob %s in namespace %s", name, cluster.namespace)
        return name

    def update_job(self, job: Job) -> None:
        """Replace the CronJob of an existing job with a fresh compilation.

        The CronJob must already exist; a missing CronJob is an error, not
        a create.

        Raises:
            PoolNotFoundError: If the job's pool cannot be resolved
            ServiceAccountError: If the job's service account cannot be provisioned
            ResourceRequirementsError: If the job's resources are invalid
            JobNotFoundError: If the CronJob does not exist
            JobProvisionError: For any other Kubernetes failure
        """
        with tracer.start_as_current_span("kubejobs.update_job") as span:
            span.set_attribute("kubejobs.job", job.name)
            span.set_attribute("kubejobs.pool", job.pool)
            cluster, cronjob = self._prepare_cronjob(job)
            try:
                cluster.batch_api.replace_namespaced_cron_job(
                    name=job.name, namespace=cluster.namespace, body=cronjob
                )
            except ApiException as e:
                logger.error("Failed to update cronjob %s: %s", job.name, e.reason)
                raise _provision_error(e, "update_cronjob", job.name) from e

        logger.info(
            "Updated cronjob %s in namespace %s (suspend=%s)",
            job.name,
            cluster.namespace,
            job.spec.manual,
        )

    def trigger_cron(self, name: str, pool: str) -> str:
        """Start a one-off execution from a CronJob's template.

        The execution copies the CronJob's namespace, labels, annotations
        and job template, and points back at the CronJob through an owner
        reference so its events are attributed to the CronJob.

        Args:
            name: Name of the CronJob
            pool: Pool the job belongs to

        Returns:
            Name of the created execution

        Raises:
            PoolNotFoundError: If the pool cannot be resolved
            JobNotFoundError: If the CronJob does not exist
            TriggerAlreadyPendingError: If an execution was already
                triggered in the current minute
            JobProvisionError: For any other Kubernetes failure
        """
        with tracer.start_as_current_span("kubejobs.trigger_cron") as span:
            span.set_attribute("kubejobs.job", name)
            span.set_attribute("kubejobs.pool", pool)
            cluster = self.cluster_service.client_for_pool(pool)
            try:
                cron = cluster.batch_api.read_namespaced_cron_job(
                    name=name, namespace=cluster.namespace
                )
            except ApiException as e:
                raise _provision_error(e, "read_cronjob", name) from e

            annotations = dict(cron.metadata.annotations or {})
            annotations[MANUAL_INSTANTIATE_ANNOTATION] = MANUAL_INSTANTIATE_VALUE
            execution_name = get_manual_job_name(cron.metadata.name, self.clock())
            namespace = cron.metadata.namespace or cluster.namespace
            span.set_attribute("kubejobs.execution", execution_name)

            execution = client.V1Job(
                api_version="batch/v1",
                kind="Job",
                metadata=client.V1ObjectMeta(
                    name=execution_name,
                    namespace=namespace,
                    labels=cron.metadata.labels,
                    annotations=annotations,
                    owner_references=[
                        client.V1OwnerReference(
                            api_version="batch/v1",
                            kind="CronJob",
                            name=cron.metadata.name,
                            uid=cron.metadata.uid,
                        )
                    ],
                ),
                spec=cron.spec.job_template.spec,
            )

            try:
                cluster.batch_api.create_namespaced_job(namespace=namespace, body=execution)
            except ApiException as e:
                if is_already_exists(e):
                    logger.warning(
                        "Manual execution %s already exists, trigger pending", execution_name
                    )
                    raise TriggerAlreadyPendingError(
                        f"A manual run of {name} was already triggered this minute",
                        "create_job",
                        execution_name,
                        e.status,
                    ) from e
                logger.error("Failed to trigger cronjob %s: %s", name, e.reason)
                raise _provision_error(e, "create_job", execution_name) from e

        logger.info("Triggered manual execution %s of cronjob %s", execution_name, name)
        return execution_name

    def job_units(self, job: Job) -> list[Unit]:
        """List a job's executions as platform units.

        Returns:
            One unit per execution, empty if the job has not run yet

        Raises:
            PoolNotFoundError: If the job's pool cannot be resolved
            JobProvisionError: If listing executions or pods fails
        """
        cluster = self.cluster_service.client_for_pool(job.pool)
        selector = label_selector(job_labels(job, self.settings.label_prefix))
        try:
            k8s_jobs = cluster.batch_api.list_namespaced_job(
                namespace=cluster.namespace, label_selector=selector
            )
        except ApiException as e:
            raise _provision_error(e, "list_jobs", job.name) from e

        return [self._job_to_unit(cluster, k8s_job) for k8s_job in k8s_jobs.items or []]

    def _job_to_unit(self, cluster: ClusterClient, k8s_job: V1Job) -> Unit:
        """Project one execution and its pods into a unit."""
        name = k8s_job.metadata.name
        namespace = k8s_job.metadata.namespace or cluster.namespace
        try:
            pods = cluster.core_api.list_namespaced_pod(
                namespace=namespace,
                label_selector=f"{POD_JOB_NAME_LABEL}={name}",
            )
        except ApiException as e:
            raise _provision_error(e, "list_pods", name) from e

        created_at = k8s_job.metadata.creation_timestamp
        if created_at is not None:
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=UTC)
            else:
                created_at = created_at.astimezone(UTC)

        return Unit(
            id=name,
            name=name,
            status=unit_status(k8s_job),
            restarts=sum(pod_restarts(pod) for pod in pods.items or []),
            created_at=created_at,
        )

    def destroy_job(self, job: Job) -> None:
        """Remove a job's service account and CronJob.

        A missing service account is ignored. Executions already running
        are left to Kubernetes garbage collection.

        Raises:
            PoolNotFoundError: If the job's pool cannot be resolved
            ServiceAccountError: If deleting the service account fails
            JobNotFoundError: If the CronJob does not exist
            JobProvisionError: For any other Kubernetes failure
        """
        cluster = self.cluster_service.client_for_pool(job.pool)
        with tracer.start_as_current_span("kubejobs.destroy_job") as span:
            span.set_attribute("kubejobs.job", job.name)
            delete_service_account(cluster, service_account_name_for_job(job), cluster.namespace)
            try:
                cluster.batch_api.delete_namespaced_cron_job(
                    name=job.name, namespace=cluster.namespace
                )
            except ApiException as e:
                logger.error("Failed to delete cronjob %s: %s", job.name, e.reason)
                raise _provision_error(e, "delete_cronjob", job.name) from e

        logger.info("Deleted cronjob %s from namespace %s", job.name, cluster.namespace)


# Global singleton instance
_k8s_job_service: K8sJobService | None = None


def get_k8s_job_service() -> K8sJobService:
    """Get the global K8sJobService instance."""
    global _k8s_job_service
    if _k8s_job_service is None:
        _k8s_job_service = K8sJobService()
    return _k8s_job_service


def reset_k8s_job_service() -> None:
    """Reset the global K8sJobService instance (for testing)."""
    global _k8s_job_service
    _k8s_job_service = None
