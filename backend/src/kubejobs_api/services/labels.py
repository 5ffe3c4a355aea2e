"""Label and annotation sets attached to a job's Kubernetes objects."""

from kubejobs_api.models.job import Job

PROVISIONER_NAME = "kubernetes"


def job_labels(job: Job, prefix: str) -> dict[str, str]:
    """Platform-owned labels identifying a job's objects.

    These labels double as the selector for the job's executions, so they
    never vary with custom metadata.
    """
    labels = {
        f"{prefix}is-kubejobs": "true",
        f"{prefix}is-job": "true",
        f"{prefix}job-name": job.name,
        f"{prefix}job-pool": job.pool,
        f"{prefix}provisioner": PROVISIONER_NAME,
    }
    if job.team_owner:
        labels[f"{prefix}job-team"] = job.team_owner
    return labels


def service_account_labels(job: Job, prefix: str) -> dict[str, str]:
    """Labels for the service account a job's pods run as."""
    labels = job_labels(job, prefix)
    labels[f"{prefix}is-service-account"] = "true"
    return labels


def build_metadata(job: Job, prefix: str) -> tuple[dict[str, str], dict[str, str]]:
    """Merge platform labels with the job's custom labels and annotations.

    Custom labels never replace a platform-owned key. Annotations are copied
    as given since nothing selects on them.

    Returns:
        Tuple of (labels, annotations)
    """
    labels = job_labels(job, prefix)
    for label in job.metadata.labels:
        if label.delete or label.name in labels:
            continue
        labels[label.name] = label.value

    annotations = {a.name: a.value for a in job.metadata.annotations if not a.delete}
    return labels, annotations


def label_selector(labels: dict[str, str]) -> str:
    """Render labels as an equality selector with keys in sorted order."""
    return ",".join(f"{key}={labels[key]}" for key in sorted(labels))
