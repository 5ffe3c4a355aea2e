"""Service account provisioning for job pods."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from kubejobs_api.models.job import Job, JobMetadata
from kubejobs_api.services.cluster import is_not_found

if TYPE_CHECKING:
    from kubejobs_api.services.cluster import ClusterClient

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_PREFIX = "job-"


class ServiceAccountError(RuntimeError):
    """Raised when a job's service account cannot be provisioned or removed."""

    def __init__(self, name: str, action: str, exc: ApiException) -> None:
        super().__init__(f"Failed to {action} service account {name}: {exc.reason}")
        self.name = name
        self.action = action
        self.status = exc.status


def valid_kube_name(name: str) -> str:
    """Normalize a platform name into a valid Kubernetes object name."""
    return name.lower().replace("_", "-")


def service_account_name_for_job(job: Job) -> str:
    """Get the service account name used by a job's pods."""
    return f"{SERVICE_ACCOUNT_PREFIX}{valid_kube_name(job.name)}"


def ensure_service_account(
    cluster: ClusterClient,
    name: str,
    labels: dict[str, str],
    namespace: str,
    metadata: JobMetadata | None = None,
) -> None:
    """Create the service account, or refresh its labels if it exists.

    Annotations from the job's custom metadata are copied onto the account.

    Raises:
        ServiceAccountError: If reading, creating or replacing fails
    """
    annotations = {}
    if metadata is not None:
        annotations = {a.name: a.value for a in metadata.annotations if not a.delete}

    try:
        existing = cluster.core_api.read_namespaced_service_account(
            name=name, namespace=namespace
        )
    except ApiException as e:
        if not is_not_found(e):
            raise ServiceAccountError(name, "read", e) from e
        existing = None

    if existing is None:
        body = client.V1ServiceAccount(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels=labels,
                annotations=annotations or None,
            )
        )
        try:
            cluster.core_api.create_namespaced_service_account(namespace=namespace, body=body)
        except ApiException as e:
            raise ServiceAccountError(name, "create", e) from e
        logger.info("Created service account %s in namespace %s", name, namespace)
        return

    current_annotations = existing.metadata.annotations or {}
    if existing.metadata.labels == labels and current_annotations == annotations:
        return

    existing.metadata.labels = labels
    existing.metadata.annotations = annotations or None
    try:
        cluster.core_api.replace_namespaced_service_account(
            name=name, namespace=namespace, body=existing
        )
    except ApiException as e:
        raise ServiceAccountError(name, "update", e) from e
    logger.info("Updated service account %s in namespace %s", name, namespace)


def delete_service_account(cluster: ClusterClient, name: str, namespace: str) -> None:
    """Delete a service account, treating a missing account as deleted.

    Raises:
        ServiceAccountError: For any failure other than not found
    """
    try:
        cluster.core_api.delete_namespaced_service_account(name=name, namespace=namespace)
        logger.info("Deleted service account %s from namespace %s", name, namespace)
    except ApiException as e:
        if is_not_found(e):
            logger.debug("Service account %s not found, already deleted?", name)
            return
        raise ServiceAccountError(name, "delete", e) from e
