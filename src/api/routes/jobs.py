"""Deployment job endpoints.

Jobs are created from a template, then planned and applied in two explicit
steps. Output can be followed live as newline-delimited JSON.
"""

from typing import AsyncIterator, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from src.api.dependencies import get_actor, get_tracker
from src.api.models import (
    ApplyRequest,
    ErrorResponse,
    JobCreate,
    JobDetail,
    JobListResponse,
    JobSummary,
)
from src.jobs.tracker import ActorContext, JobTracker
from src.models.schemas import JobState

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.post(
    "",
    response_model=JobDetail,
    status_code=201,
    summary="Create a deployment job",
    description="Validate variables against the template and prepare an isolated working directory.",
    responses={
        201: {"description": "Job created in Created state"},
        400: {"model": ErrorResponse, "description": "Unknown template, environment or variables"},
    },
)
async def create_job(
    request: JobCreate,
    tracker: JobTracker = Depends(get_tracker),
    actor: ActorContext = Depends(get_actor),
) -> JobDetail:
    job = await tracker.create_job(
        request.template_id,
        request.variables,
        request.environment,
        actor,
        name=request.name,
        destroy=request.destroy,
        timeout_seconds=request.timeout_seconds,
    )
    return JobDetail.from_job(job)


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
)
async def list_jobs(
    environment: Optional[str] = Query(None, description="Filter by environment tag"),
    state: Optional[JobState] = Query(None, description="Filter by state"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tracker: JobTracker = Depends(get_tracker),
) -> JobListResponse:
    jobs = await tracker.list_jobs(environment=environment, state=state, limit=limit, offset=offset)
    return JobListResponse(
        jobs=[JobSummary.from_job(j) for j in jobs],
        total=await tracker.count_jobs(environment=environment, state=state),
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{job_id}",
    response_model=JobDetail,
    summary="Get job status",
    responses={404: {"model": ErrorResponse, "description": "Job not found"}},
)
async def get_job(
    job_id: str,
    tracker: JobTracker = Depends(get_tracker),
) -> JobDetail:
    job = await tracker.get_status(job_id)
    return JobDetail.from_job(job, active=tracker.is_active(job.id))


@router.post(
    "/{job_id}/plan",
    response_model=JobDetail,
    status_code=202,
    summary="Start planning",
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
        409: {"model": ErrorResponse, "description": "Job not in Created state"},
        502: {"model": ErrorResponse, "description": "Provisioning tool could not be started"},
    },
)
async def start_plan(
    job_id: str,
    tracker: JobTracker = Depends(get_tracker),
    actor: ActorContext = Depends(get_actor),
) -> JobDetail:
    job = await tracker.start_plan(job_id, actor)
    return JobDetail.from_job(job, active=tracker.is_active(job.id))


@router.post(
    "/{job_id}/apply",
    response_model=JobDetail,
    status_code=202,
    summary="Apply the saved plan",
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
        409: {"model": ErrorResponse, "description": "Job not in Planned state"},
        412: {"model": ErrorResponse, "description": "Target instance not running"},
        502: {"model": ErrorResponse, "description": "Provisioning tool could not be started"},
    },
)
async def start_apply(
    job_id: str,
    request: Optional[ApplyRequest] = None,
    tracker: JobTracker = Depends(get_tracker),
    actor: ActorContext = Depends(get_actor),
) -> JobDetail:
    force = request.force if request else False
    job = await tracker.start_apply(job_id, actor, force=force)
    return JobDetail.from_job(job, active=tracker.is_active(job.id))


@router.post(
    "/{job_id}/cancel",
    response_model=JobDetail,
    summary="Cancel a job",
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
        409: {"model": ErrorResponse, "description": "Job already terminal"},
    },
)
async def cancel_job(
    job_id: str,
    tracker: JobTracker = Depends(get_tracker),
    actor: ActorContext = Depends(get_actor),
) -> JobDetail:
    job = await tracker.cancel_job(job_id, actor)
    return JobDetail.from_job(job, active=tracker.is_active(job.id))


@router.get(
    "/{job_id}/output",
    summary="Stream job output",
    description="Newline-delimited JSON, one captured line per row. Follows a running process.",
    responses={404: {"model": ErrorResponse, "description": "Job not found"}},
)
async def stream_output(
    job_id: str,
    offset: int = Query(0, ge=0, description="Skip this many captured lines"),
    tracker: JobTracker = Depends(get_tracker),
) -> StreamingResponse:
    # resolve before streaming so unknown ids get a proper 404
    await tracker.get_status(job_id)

    async def rows() -> AsyncIterator[str]:
        async for line in tracker.stream_output(job_id, offset=offset):
            yield line.model_dump_json() + "\n"

    return StreamingResponse(rows(), media_type="application/x-ndjson")
