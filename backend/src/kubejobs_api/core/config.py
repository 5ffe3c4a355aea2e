"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="KUBEJOBS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "Kubejobs API"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Storage
    data_dir: Path = Path("data")

    # OpenTelemetry
    otel_enabled: bool = True
    otel_service_name: str = "kubejobs-api"
    otel_exporter_endpoint: str = "http://localhost:4317"

    # Kubernetes cluster
    namespace: str = "kubejobs"  # Namespace used when pools share one namespace
    pool_namespaces: bool = False  # Use "<namespace>-<pool>" per pool
    label_prefix: str = "kubejobs.io/"
    pool_clusters: dict[str, str] = Field(default_factory=dict)  # pool -> kubeconfig context
    allowed_pools: list[str] | None = None  # None allows any pool

    # Resource requirements
    default_memory_mb: int = 256
    default_cpu_milli: int = 500
    cpu_request_ratio: float = 0.5  # Requests are a fraction of limits

    # Job event watcher
    job_events_enabled: bool = True
    job_events_watch_timeout_seconds: int = 300  # Restart the watch stream periodically
    job_events_retry_seconds: int = 5  # Back off after a failed watch

    def pool_namespace(self, pool: str) -> str:
        """Get the Kubernetes namespace that hosts a pool's jobs."""
        if self.pool_namespaces and pool:
            return f"{self.namespace}-{pool}"
        return self.namespace

    def ensure_data_dirs(self) -> None:
        """Create data directory structure if it doesn't exist."""
        (self.data_dir / "metadata").mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
