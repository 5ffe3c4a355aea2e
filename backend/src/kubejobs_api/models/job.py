"""Platform job models: the declarative description compiled into CronJobs."""

from pydantic import BaseModel, ConfigDict, Field


class EnvVar(BaseModel):
    """Environment variable set on the job container.

    Values are opaque literals; they are escaped before reaching Kubernetes
    so ``$(VAR)`` is never expanded by the kubelet.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    value: str = ""
    public: bool = True


class MetadataItem(BaseModel):
    """A single custom label or annotation supplied by the job owner."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    value: str = ""
    delete: bool = False  # Marked for removal, ignored when building metadata


class JobMetadata(BaseModel):
    """Custom labels and annotations attached to a job's Kubernetes objects."""

    model_config = ConfigDict(populate_by_name=True)

    labels: list[MetadataItem] = Field(default_factory=list)
    annotations: list[MetadataItem] = Field(default_factory=list)


class ContainerInfo(BaseModel):
    """Container image and command for a job.

    Attributes:
        internal_registry_image: Image mirrored into the platform registry
        original_image_src: Image reference as supplied by the user
        command: Command run inside the container
    """

    model_config = ConfigDict(populate_by_name=True)

    internal_registry_image: str = Field(default="", alias="internalRegistryImage")
    original_image_src: str = Field(default="", alias="originalImageSrc")
    command: list[str] = Field(default_factory=list)


class JobPlan(BaseModel):
    """Resource plan assigned to a job.

    Attributes:
        name: Plan name
        memory_mb: Memory limit in MiB (0 uses the configured default)
        cpu_milli: CPU limit in millicores (0 uses the configured default)
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = "default"
    memory_mb: int = Field(default=0, alias="memoryMb")
    cpu_milli: int = Field(default=0, alias="cpuMilli")


class JobSpec(BaseModel):
    """Execution settings of a job.

    Attributes:
        container: Image and command
        envs: User-defined environment variables
        service_envs: Variables injected by bound services
        parallelism: Pods allowed to run in parallel per execution
        completions: Successful pods needed to finish an execution
        backoff_limit: Retries before an execution is marked failed
        active_deadline_seconds: Execution time limit (None or 0 means default)
        schedule: Cron expression driving automatic executions
        manual: When True the schedule is suspended and runs only on trigger
    """

    model_config = ConfigDict(populate_by_name=True)

    container: ContainerInfo = Field(default_factory=ContainerInfo)
    envs: list[EnvVar] = Field(default_factory=list)
    service_envs: list[EnvVar] = Field(default_factory=list, alias="serviceEnvs")
    parallelism: int | None = None
    completions: int | None = None
    backoff_limit: int | None = Field(default=None, alias="backoffLimit")
    active_deadline_seconds: int | None = Field(default=None, alias="activeDeadlineSeconds")
    schedule: str = ""
    manual: bool = False


class Job(BaseModel):
    """A platform job as stored in the job registry.

    Example:
        ```python
        job = Job(
            name="mailer",
            pool="p1",
            spec=JobSpec(
                schedule="*/5 * * * *",
                container=ContainerInfo(originalImageSrc="busybox:1.36", command=["send"]),
            ),
        )
        ```
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    pool: str
    team_owner: str = Field(default="", alias="teamOwner")
    teams: list[str] = Field(default_factory=list)
    plan: JobPlan = Field(default_factory=JobPlan)
    spec: JobSpec = Field(default_factory=JobSpec)
    metadata: JobMetadata = Field(default_factory=JobMetadata)
