"""Pytest configuration and shared fixtures for kubejobs tests."""

from collections.abc import Callable

import pytest

from kubejobs_api.models.job import ContainerInfo, EnvVar, Job, JobSpec


@pytest.fixture
def make_job() -> Callable[..., Job]:
    """Factory for platform jobs with sensible defaults."""

    def _make_job(
        name: str = "mailer",
        pool: str = "p1",
        schedule: str = "*/5 * * * *",
        manual: bool = False,
        **spec_fields,
    ) -> Job:
        spec_fields.setdefault(
            "container",
            ContainerInfo(originalImageSrc="busybox:1.36", command=["sh", "-c", "send"]),
        )
        spec_fields.setdefault("envs", [EnvVar(name="MODE", value="batch")])
        return Job(
            name=name,
            pool=pool,
            teamOwner="mail-team",
            spec=JobSpec(schedule=schedule, manual=manual, **spec_fields),
        )

    return _make_job


@pytest.fixture
def api_app(monkeypatch, tmp_path):
    """Create the application with fresh settings, services and data directory."""
    import kubejobs_api.services.audit as audit_module
    import kubejobs_api.services.cluster as cluster_module
    import kubejobs_api.services.job_events as job_events_module
    import kubejobs_api.services.k8s_jobs as k8s_jobs_module
    from kubejobs_api.core.config import get_settings

    def reset_state() -> None:
        get_settings.cache_clear()
        audit_module.reset_audit_service()
        cluster_module.reset_cluster_service()
        job_events_module.reset_job_event_watcher()
        k8s_jobs_module.reset_k8s_job_service()

    monkeypatch.setenv("KUBEJOBS_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("KUBEJOBS_JOB_EVENTS_ENABLED", "false")
    monkeypatch.setenv("KUBEJOBS_OTEL_ENABLED", "false")
    reset_state()

    from kubejobs_api.main import create_app

    try:
        yield create_app()
    finally:
        reset_state()
