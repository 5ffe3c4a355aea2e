"""Job lifecycle routes backed by Kubernetes CronJobs."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from kubejobs_api.models.job import Job
from kubejobs_api.models.k8s import UnitListResponse
from kubejobs_api.services.cluster import PoolNotFoundError
from kubejobs_api.services.identity import ServiceAccountError
from kubejobs_api.services.k8s_jobs import (
    JobAlreadyExistsError,
    JobNotFoundError,
    JobProvisionError,
    K8sJobService,
    TriggerAlreadyPendingError,
    get_k8s_job_service,
)
from kubejobs_api.services.resources import ResourceRequirementsError

K8sJobServiceDep = Annotated[K8sJobService, Depends(get_k8s_job_service)]

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


class JobNameResponse(BaseModel):
    """Name of the Kubernetes object created by a request."""

    name: str


def _http_error(e: Exception) -> HTTPException:
    """Translate a service exception into an HTTP error."""
    if isinstance(e, PoolNotFoundError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    if isinstance(e, ResourceRequirementsError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    if isinstance(e, JobNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, TriggerAlreadyPendingError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{e} (trigger already pending, retry next minute)",
        )
    if isinstance(e, JobAlreadyExistsError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


LIFECYCLE_ERRORS = (
    PoolNotFoundError,
    ResourceRequirementsError,
    ServiceAccountError,
    JobProvisionError,
)


@router.post("", response_model=JobNameResponse, status_code=status.HTTP_201_CREATED)
async def create_job(job: Job, service: K8sJobServiceDep) -> JobNameResponse:
    """Create the CronJob for a job."""
    try:
        name = service.create_job(job)
    except LIFECYCLE_ERRORS as e:
        raise _http_error(e) from e
    return JobNameResponse(name=name)


@router.put("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def update_job(name: str, job: Job, service: K8sJobServiceDep) -> None:
    """Replace the CronJob of an existing job."""
    if job.name != name:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Job name {job.name!r} does not match path {name!r}",
        )
    try:
        service.update_job(job)
    except LIFECYCLE_ERRORS as e:
        raise _http_error(e) from e


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def destroy_job(
    name: str,
    service: K8sJobServiceDep,
    pool: str = Query(..., description="Pool the job belongs to"),
) -> None:
    """Delete a job's CronJob and service account."""
    try:
        service.destroy_job(Job(name=name, pool=pool))
    except LIFECYCLE_ERRORS as e:
        raise _http_error(e) from e


@router.post(
    "/{name}/trigger",
    response_model=JobNameResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_job(
    name: str,
    service: K8sJobServiceDep,
    pool: str = Query(..., description="Pool the job belongs to"),
) -> JobNameResponse:
    """Start a manual execution of a job."""
    try:
        execution = service.trigger_cron(name, pool)
    except LIFECYCLE_ERRORS as e:
        raise _http_error(e) from e
    return JobNameResponse(name=execution)


@router.post("/units", response_model=UnitListResponse)
async def list_job_units(job: Job, service: K8sJobServiceDep) -> UnitListResponse:
    """List a job's executions with their aggregate status.

    Takes the full job because executions are selected by the job's
    platform labels, which depend on more than its name.
    """
    try:
        units = service.job_units(job)
    except LIFECYCLE_ERRORS as e:
        raise _http_error(e) from e
    return UnitListResponse(units=units)
