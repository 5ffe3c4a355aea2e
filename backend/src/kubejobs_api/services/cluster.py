"""Resolution of platform pools to Kubernetes API clients and namespaces."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from kubejobs_api.core.config import Settings, get_settings

if TYPE_CHECKING:
    from kubernetes.client import ApiClient, BatchV1Api, CoreV1Api

logger = logging.getLogger(__name__)


class PoolNotFoundError(Exception):
    """Raised when a pool cannot be resolved to a reachable cluster."""

    def __init__(self, pool: str, reason: str) -> None:
        super().__init__(f"Cannot resolve cluster for pool {pool!r}: {reason}")
        self.pool = pool
        self.reason = reason


@dataclass
class ClusterClient:
    """API handles and target namespace for one pool."""

    pool: str
    namespace: str
    batch_api: BatchV1Api
    core_api: CoreV1Api


def is_not_found(exc: BaseException) -> bool:
    """Check whether an exception is a Kubernetes 404."""
    return isinstance(exc, ApiException) and exc.status == 404


def is_already_exists(exc: BaseException) -> bool:
    """Check whether an exception is a Kubernetes 409 conflict."""
    return isinstance(exc, ApiException) and exc.status == 409


class ClusterService:
    """Resolves pools to cluster clients.

    Every pool maps to exactly one kubeconfig context (``pool_clusters``
    setting) and one namespace. Pools without an explicit context share the
    default cluster: in-cluster config when running inside Kubernetes,
    otherwise the current kubeconfig context. API clients are created lazily
    and reused per context.

    Example:
        ```python
        cluster = get_cluster_service().client_for_pool("p1")
        cluster.batch_api.list_namespaced_cron_job(namespace=cluster.namespace)
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the cluster service.

        Args:
            settings: Application settings (uses default if not provided)
        """
        self.settings = settings or get_settings()
        self._api_clients: dict[str | None, ApiClient] = {}
        self._lock = threading.Lock()

    def _load_api_client(self, context: str | None) -> ApiClient:
        """Build an API client for a kubeconfig context (None = default)."""
        if context is None:
            try:
                configuration = client.Configuration()
                config.load_incluster_config(client_configuration=configuration)
                logger.info("Loaded in-cluster Kubernetes configuration")
                return client.ApiClient(configuration)
            except config.ConfigException:
                pass
        try:
            api_client = config.new_client_from_config(context=context)
        except config.ConfigException as e:
            logger.warning("Failed to load Kubernetes configuration: %s", e)
            raise
        logger.info("Loaded kubeconfig Kubernetes configuration (context=%s)", context)
        return api_client

    def _api_client_for(self, pool: str, context: str | None) -> ApiClient:
        with self._lock:
            if context not in self._api_clients:
                try:
                    self._api_clients[context] = self._load_api_client(context)
                except config.ConfigException as e:
                    raise PoolNotFoundError(
                        pool, "no Kubernetes configuration available"
                    ) from e
            return self._api_clients[context]

    def client_for_pool(self, pool: str) -> ClusterClient:
        """Resolve the cluster client and namespace for a pool.

        Raises:
            PoolNotFoundError: If the pool is empty, not allowed, or its
                cluster configuration cannot be loaded
        """
        if not pool:
            raise PoolNotFoundError(pool, "pool name is empty")
        allowed_pools = self.settings.allowed_pools
        if allowed_pools is not None and pool not in allowed_pools:
            raise PoolNotFoundError(pool, "pool is not registered")

        api_client = self._api_client_for(pool, self.settings.pool_clusters.get(pool))
        return ClusterClient(
            pool=pool,
            namespace=self.settings.pool_namespace(pool),
            batch_api=client.BatchV1Api(api_client),
            core_api=client.CoreV1Api(api_client),
        )

    def watch_targets(self) -> list[ClusterClient]:
        """Get one client per distinct (cluster, namespace) of the known pools.

        Used by the event watcher, which must observe every namespace a job
        may live in. Known pools come from the allow-list, or from the
        per-pool cluster mapping when there is no allow-list; with neither,
        only the shared namespace of the default cluster is watched.
        """
        pools = self.settings.allowed_pools or list(self.settings.pool_clusters)
        if not pools:
            return [self.client_for_pool("default")]
        targets: dict[tuple[str | None, str], ClusterClient] = {}
        for pool in pools:
            key = (self.settings.pool_clusters.get(pool), self.settings.pool_namespace(pool))
            if key not in targets:
                targets[key] = self.client_for_pool(pool)
        return list(targets.values())


_cluster_service: ClusterService | None = None


def get_cluster_service() -> ClusterService:
    """Get the global ClusterService instance."""
    global _cluster_service
    if _cluster_service is None:
        _cluster_service = ClusterService()
    return _cluster_service


def reset_cluster_service() -> None:
    """Reset the global ClusterService instance (for testing)."""
    global _cluster_service
    _cluster_service = None
