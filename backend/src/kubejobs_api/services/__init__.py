"""Service layer for job orchestration."""

from kubejobs_api.services.audit import (
    AuditEventRejectedError,
    AuditService,
    get_audit_service,
    reset_audit_service,
)
from kubejobs_api.services.cluster import (
    ClusterClient,
    ClusterService,
    PoolNotFoundError,
    get_cluster_service,
)
from kubejobs_api.services.identity import ServiceAccountError
from kubejobs_api.services.job_events import (
    JobEventWatcher,
    create_job_event,
    get_job_event_watcher,
)
from kubejobs_api.services.k8s_jobs import (
    JobAlreadyExistsError,
    JobNotFoundError,
    JobProvisionError,
    K8sJobService,
    TriggerAlreadyPendingError,
    get_k8s_job_service,
    reset_k8s_job_service,
)
from kubejobs_api.services.resources import PlanResourceResolver, ResourceRequirementsError

__all__ = [
    # Audit service
    "AuditService",
    "get_audit_service",
    "reset_audit_service",
    "AuditEventRejectedError",
    # Cluster resolution
    "ClusterClient",
    "ClusterService",
    "get_cluster_service",
    "PoolNotFoundError",
    # Identity
    "ServiceAccountError",
    # Job events
    "JobEventWatcher",
    "create_job_event",
    "get_job_event_watcher",
    # Job lifecycle
    "K8sJobService",
    "get_k8s_job_service",
    "reset_k8s_job_service",
    "JobProvisionError",
    "JobAlreadyExistsError",
    "JobNotFoundError",
    "TriggerAlreadyPendingError",
    # Resources
    "PlanResourceResolver",
    "ResourceRequirementsError",
]
