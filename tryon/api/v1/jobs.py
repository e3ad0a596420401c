"""Queued try-on API: submit jobs, poll status, list, cancel."""

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, ConfigDict, Field, HttpUrl
from pydantic.alias_generators import to_camel

from tryon.api.errors import to_http_exception
from tryon.auth.supabase_auth import current_user_id
from tryon.jobs.errors import JobConflictError, JobNotFoundError, TryOnValidationError
from tryon.jobs.models import JobStatusResponse, JobSubmitResponse, TryOnJobStatus, TryOnRequest

router = APIRouter()

# Set by main.py during lifespan
_orchestrator = None


def set_orchestrator(orchestrator):
    global _orchestrator
    _orchestrator = orchestrator


def _require_orchestrator():
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Job orchestrator not initialized")
    return _orchestrator


class JobSubmitRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    model_image_url: Optional[HttpUrl] = None
    garment_urls: Optional[List[HttpUrl]] = None
    upper_garment_url: Optional[HttpUrl] = None
    lower_garment_url: Optional[HttpUrl] = None
    outfit_image_url: Optional[HttpUrl] = None
    category: Optional[Literal["auto", "tops", "bottoms", "one-pieces"]] = None
    seed: Optional[int] = Field(default=None, ge=0)
    mode: Optional[Literal["performance", "balanced", "quality"]] = None
    save_to_history: bool = False

    def to_request(self) -> TryOnRequest:
        def url(value):
            return str(value) if value is not None else None

        return TryOnRequest(
            model_image_url=url(self.model_image_url),
            garment_urls=[str(u) for u in self.garment_urls] if self.garment_urls else None,
            upper_garment_url=url(self.upper_garment_url),
            lower_garment_url=url(self.lower_garment_url),
            outfit_image_url=url(self.outfit_image_url),
            category=self.category,
            seed=self.seed,
            mode=self.mode,
            save_to_history=self.save_to_history,
        )


@router.post(
    "/tryon/queue",
    response_model=JobSubmitResponse,
    response_model_exclude_none=True,
    status_code=201,
)
async def submit_job(request: JobSubmitRequest, user_id: str = Depends(current_user_id)):
    """Queue a try-on job. Returns immediately; poll GET /jobs/{jobId} or
    subscribe on the WebSocket channel for progress."""
    orchestrator = _require_orchestrator()
    try:
        return await orchestrator.submit(user_id, request.to_request())
    except TryOnValidationError as exc:
        raise to_http_exception(exc)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse, response_model_exclude_none=True)
async def get_job_status(job_id: str, user_id: str = Depends(current_user_id)):
    """Current snapshot of one of the caller's jobs."""
    orchestrator = _require_orchestrator()
    try:
        return await orchestrator.get_status(user_id, job_id)
    except JobNotFoundError as exc:
        raise to_http_exception(exc)


@router.get("/jobs", response_model=List[JobStatusResponse], response_model_exclude_none=True)
async def list_jobs(
    status: Optional[TryOnJobStatus] = None,
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(current_user_id),
):
    """The caller's jobs, newest first."""
    orchestrator = _require_orchestrator()
    return await orchestrator.list_jobs(user_id, status=status, limit=limit)


@router.delete("/jobs/{job_id}", status_code=204)
async def cancel_job(job_id: str, user_id: str = Depends(current_user_id)):
    """Cancel a job that is still pending or processing."""
    orchestrator = _require_orchestrator()
    try:
        await orchestrator.cancel(user_id, job_id)
    except (JobNotFoundError, JobConflictError) as exc:
        raise to_http_exception(exc)
    return Response(status_code=204)
