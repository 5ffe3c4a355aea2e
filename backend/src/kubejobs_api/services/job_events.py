"""Bridge from Kubernetes Job events to platform audit events."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections import OrderedDict
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from kubernetes import watch
from kubernetes.client.exceptions import ApiException

from kubejobs_api.core.config import Settings, get_settings
from kubejobs_api.models.audit import EventOpts, EventOwner, EventTarget, OwnerType, TargetType
from kubejobs_api.models.permission import PermissionScheme, allowed, job_context
from kubejobs_api.services.audit import AuditEventRejectedError, AuditService, get_audit_service
from kubejobs_api.services.cluster import (
    ClusterClient,
    ClusterService,
    PoolNotFoundError,
    get_cluster_service,
    is_not_found,
)

if TYPE_CHECKING:
    from kubernetes.client import CoreV1Event, V1Job

logger = logging.getLogger(__name__)

CRONJOB_OWNER_KIND = "CronJob"
SEEN_EVENTS_LIMIT = 4096  # Event UIDs remembered across watch restarts


class JobEventReason(str, Enum):
    """Kubernetes Job event reasons that produce audit events."""

    COMPLETED = "Completed"
    BACKOFF_LIMIT_EXCEEDED = "BackoffLimitExceeded"
    SUCCESSFUL_CREATE = "SuccessfulCreate"


EVENT_KINDS: dict[JobEventReason, PermissionScheme] = {
    JobEventReason.COMPLETED: PermissionScheme.JOB_RUN,
    JobEventReason.BACKOFF_LIMIT_EXCEEDED: PermissionScheme.JOB_RUN,
    JobEventReason.SUCCESSFUL_CREATE: PermissionScheme.JOB_CREATE,
}


class JobFailedError(Exception):
    """Outcome recorded on the audit event of a failed execution."""


def real_job_owner(k8s_job: V1Job) -> str:
    """Name of the object an execution is attributed to.

    Executions spawned by a CronJob, on schedule or by manual trigger, belong
    to the CronJob. Standalone executions belong to themselves.
    """
    owner = k8s_job.metadata.name
    for ref in k8s_job.metadata.owner_references or []:
        if ref.kind == CRONJOB_OWNER_KIND:
            owner = ref.name
    return owner


def create_job_event(
    k8s_job: V1Job,
    evt: CoreV1Event,
    audit_service: AuditService | None = None,
) -> None:
    """Record an audit event for one Kubernetes event about an execution.

    Events with other reasons are ignored. Failures to record are logged
    and dropped; nothing is raised to the caller.
    """
    try:
        reason = JobEventReason(evt.reason)
    except ValueError:
        return

    evt_err = None
    if reason is JobEventReason.BACKOFF_LIMIT_EXCEEDED:
        evt_err = JobFailedError(f"job failed: {evt.message}")

    owner = real_job_owner(k8s_job)
    opts = EventOpts(
        kind=EVENT_KINDS[reason],
        target=EventTarget(type=TargetType.JOB, value=owner),
        allowed=allowed(PermissionScheme.JOB_READ_EVENTS, job_context(owner)),
        owner=EventOwner(type=OwnerType.INTERNAL),
        cancelable=False,
    )

    service = audit_service or get_audit_service()
    try:
        event = service.new_event(opts)
    except AuditEventRejectedError as e:
        logger.warning("Dropping %s event for job %s: %s", evt.reason, owner, e)
        return
    except Exception as e:
        logger.error("Failed to record %s event for job %s: %s", evt.reason, owner, e)
        return

    created_at = evt.metadata.creation_timestamp if evt.metadata else None
    custom_data = {
        "job-name": k8s_job.metadata.name,
        "job-controller": owner,
        "event-type": evt.type or "",
        "event-reason": evt.reason,
        "message": evt.message or "",
        "cluster-start-time": str(created_at) if created_at else "",
    }
    try:
        service.done(event, evt_err, custom_data)
    except Exception as e:
        logger.error("Failed to complete %s event for job %s: %s", evt.reason, owner, e)


class JobEventWatcher:
    """Background controller streaming Job events into the audit trail.

    One watch runs per watched namespace, each in a worker thread since the
    Kubernetes watch API blocks. A broken stream is logged and restarted
    after a short pause; nothing is reported to request handlers.

    Example:
        ```python
        watcher = get_job_event_watcher()
        await watcher.start()
        # ... application runs ...
        await watcher.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        cluster_service: ClusterService | None = None,
        audit_service: AuditService | None = None,
    ) -> None:
        """Initialize the watcher.

        Args:
            settings: Application settings (uses default if not provided)
            cluster_service: Optional ClusterService instance
            audit_service: Optional AuditService instance
        """
        self.settings = settings or get_settings()
        self._cluster_service = cluster_service
        self._audit_service = audit_service
        self._tasks: list[asyncio.Task] = []
        self._watches: list[watch.Watch] = []
        self._running = False
        self._started_at = datetime.now(UTC)
        self._resource_versions: dict[tuple[str, str], str] = {}
        self._seen_events: OrderedDict[str, None] = OrderedDict()
        self._seen_lock = threading.Lock()

    @property
    def cluster_service(self) -> ClusterService:
        """Get the cluster service instance."""
        if self._cluster_service is None:
            self._cluster_service = get_cluster_service()
        return self._cluster_service

    @property
    def audit_service(self) -> AuditService:
        """Get the audit service instance."""
        if self._audit_service is None:
            self._audit_service = get_audit_service()
        return self._audit_service

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running and bool(self._tasks)

    def _first_sighting(self, evt: CoreV1Event) -> bool:
        """Remember an event UID, returning False if it was already audited."""
        uid = evt.metadata.uid if evt.metadata else None
        if not uid:
            return True
        with self._seen_lock:
            if uid in self._seen_events:
                self._seen_events.move_to_end(uid)
                return False
            self._seen_events[uid] = None
            if len(self._seen_events) > SEEN_EVENTS_LIMIT:
                self._seen_events.popitem(last=False)
        return True

    def handle_event(self, cluster: ClusterClient, event_type: str, evt: CoreV1Event) -> None:
        """Resolve the execution behind a watched event and audit it.

        A relisted stream replays stored events as ADDED, so events are
        audited at most once per UID in addition to the start-time cutoff.
        """
        if event_type != "ADDED" or evt.involved_object is None:
            return

        created_at = evt.metadata.creation_timestamp if evt.metadata else None
        if created_at is not None:
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=UTC)
            if created_at < self._started_at:
                return

        job_name = evt.involved_object.name
        namespace = evt.involved_object.namespace or cluster.namespace
        try:
            k8s_job = cluster.batch_api.read_namespaced_job(name=job_name, namespace=namespace)
        except ApiException as e:
            if is_not_found(e):
                logger.debug("Job %s gone before its %s event was audited", job_name, evt.reason)
            else:
                logger.warning("Failed to read job %s for event: %s", job_name, e.reason)
            return

        if not self._first_sighting(evt):
            logger.debug("Skipping replayed %s event for job %s", evt.reason, job_name)
            return

        create_job_event(k8s_job, evt, self.audit_service)

    def _watch_once(self, cluster: ClusterClient) -> None:
        """Consume one watch stream until it times out or is stopped.

        The stream resumes from the last resourceVersion seen for this
        target. When that version has expired (410 Gone) it is dropped and
        the next stream relists.
        """
        key = (cluster.pool, cluster.namespace)
        kwargs = {
            "namespace": cluster.namespace,
            "field_selector": "involvedObject.kind=Job",
            "timeout_seconds": self.settings.job_events_watch_timeout_seconds,
        }
        resource_version = self._resource_versions.get(key)
        if resource_version:
            kwargs["resource_version"] = resource_version

        w = watch.Watch()
        self._watches.append(w)
        try:
            for item in w.stream(cluster.core_api.list_namespaced_event, **kwargs):
                if not self._running:
                    break
                self.handle_event(cluster, item["type"], item["object"])
        except ApiException as e:
            if e.status != 410:
                raise
            logger.info("Job event watch in %s expired, relisting", cluster.namespace)
            self._resource_versions.pop(key, None)
            return
        finally:
            w.stop()
            self._watches.remove(w)

        if w.resource_version:
            self._resource_versions[key] = w.resource_version

    async def _run_loop(self, cluster: ClusterClient) -> None:
        """Keep a namespace watched until the watcher stops."""
        logger.info("Watching job events in namespace %s", cluster.namespace)
        while self._running:
            try:
                await asyncio.to_thread(self._watch_once, cluster)
                continue
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Job event watch failed in {cluster.namespace}: {e}")

            try:
                await asyncio.sleep(self.settings.job_events_retry_seconds)
            except asyncio.CancelledError:
                break

        logger.info("Stopped watching job events in namespace %s", cluster.namespace)

    async def start(self) -> None:
        """Start one watch task per namespace.

        Does nothing if disabled in settings, already running, or no
        cluster can be reached.
        """
        if not self.settings.job_events_enabled:
            logger.info("Job event watcher is disabled in settings")
            return

        if self._running:
            logger.warning("Job event watcher is already running")
            return

        try:
            targets = self.cluster_service.watch_targets()
        except PoolNotFoundError as e:
            logger.warning(f"Job event watcher not started: {e}")
            return

        self._running = True
        self._started_at = datetime.now(UTC)
        self._tasks = [asyncio.create_task(self._run_loop(target)) for target in targets]
        logger.info("Job event watcher started for %d namespace(s)", len(targets))

    async def stop(self) -> None:
        """Stop all watch tasks."""
        if not self._running:
            return

        self._running = False
        for w in list(self._watches):
            w.stop()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []

        logger.info("Job event watcher stopped")


_job_event_watcher: JobEventWatcher | None = None


def get_job_event_watcher() -> JobEventWatcher:
    """Get the global JobEventWatcher instance."""
    global _job_event_watcher
    if _job_event_watcher is None:
        _job_event_watcher = JobEventWatcher()
    return _job_event_watcher


def reset_job_event_watcher() -> None:
    """Reset the global JobEventWatcher instance (for testing)."""
    global _job_event_watcher
    _job_event_watcher = None
