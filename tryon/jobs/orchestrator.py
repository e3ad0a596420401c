"""Try-on job orchestrator: submit, poll, list, cancel, and startup recovery.

Submission only persists a PENDING job and hands its id to the dispatcher;
all network-bound work happens later in ``JobRunner.process`` on a worker.
"""

import logging
import random
from typing import List, Optional

from tryon.jobs.dispatcher import JobDispatcher
from tryon.jobs.errors import JobConflictError, JobNotFoundError, TryOnValidationError
from tryon.jobs.models import (
    JobStatusResponse,
    JobSubmitResponse,
    JobUpdatePayload,
    TryOnJob,
    TryOnJobStatus,
    TryOnRequest,
    is_terminal,
    utcnow,
)
from tryon.jobs.store import JobStore, ProfileImageStore
from tryon.jobs.strategies import JobRunner
from tryon.notify.notifier import JobNotifier, emit_job_update

logger = logging.getLogger(__name__)

MAX_SEED = 1_000_000
CANCELLED_MESSAGE = "Job cancelled by user"
INTERRUPTED_MESSAGE = "Job interrupted by service restart"
SUBMITTED_MESSAGE = (
    "Try-on job queued successfully. Use GET /api/v1/fashn/jobs/{jobId} to check status."
)


class TryOnOrchestrator:

    def __init__(
        self,
        store: JobStore,
        profile_images: ProfileImageStore,
        notifier: JobNotifier,
        runner: JobRunner,
        dispatcher: Optional[JobDispatcher] = None,
    ):
        self._store = store
        self._profile_images = profile_images
        self._notifier = notifier
        self._runner = runner
        self._dispatcher = dispatcher

    def set_dispatcher(self, dispatcher: JobDispatcher) -> None:
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> Optional[JobDispatcher]:
        return self._dispatcher

    async def process_job(self, job_id: str) -> None:
        """Worker entry point handed to the dispatcher."""
        await self._runner.process(job_id)

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit(self, user_id: str, request: TryOnRequest) -> JobSubmitResponse:
        """Validate, persist a PENDING job, schedule it, and return at once."""
        if self._dispatcher is None:
            raise RuntimeError("Job dispatcher not initialized")

        logger.info("Queuing try-on job for user %s", user_id)
        has_garment_urls = bool(request.garment_urls)
        has_upper_lower = bool(request.upper_garment_url and request.lower_garment_url)
        has_outfit = bool(request.outfit_image_url)
        if not (has_garment_urls or has_upper_lower or has_outfit):
            raise TryOnValidationError(
                "Must provide either garmentUrls array, upperGarmentUrl + lowerGarmentUrl, or outfitImageUrl"
            )

        model_image_url = request.model_image_url
        if not model_image_url:
            model_image_url = await self._profile_images.get_default_image_url(user_id)
            if not model_image_url:
                raise TryOnValidationError(
                    "No model image provided and user has no default image. "
                    "Please upload a selfie first or provide modelImageUrl."
                )
            logger.info("Using default profile image of user %s as model", user_id)

        job = TryOnJob(
            user_id=user_id,
            model_image_url=model_image_url,
            garment_urls=list(request.garment_urls) if request.garment_urls else None,
            upper_garment_url=request.upper_garment_url,
            lower_garment_url=request.lower_garment_url,
            outfit_image_url=request.outfit_image_url,
            category=request.category or "auto",
            seed=request.seed if request.seed is not None else random.randrange(MAX_SEED),
            mode=request.mode or "quality",
            save_to_history=bool(request.save_to_history),
        )
        job = await self._store.create(job)
        logger.info("Created job %s for user %s", job.id, user_id)

        await self._dispatcher.submit(job.id)

        return JobSubmitResponse(
            job_id=job.id,
            status=job.status,
            message=SUBMITTED_MESSAGE,
            created_at=job.created_at,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _get_owned(self, user_id: str, job_id: str) -> TryOnJob:
        job = await self._store.get(job_id, user_id=user_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def get_status(self, user_id: str, job_id: str) -> JobStatusResponse:
        return JobStatusResponse.from_job(await self._get_owned(user_id, job_id))

    async def list_jobs(
        self,
        user_id: str,
        status: Optional[TryOnJobStatus] = None,
        limit: int = 20,
    ) -> List[JobStatusResponse]:
        jobs = await self._store.list_for_user(user_id, status=status, limit=limit)
        return [JobStatusResponse.from_job(job) for job in jobs]

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    async def cancel(self, user_id: str, job_id: str) -> None:
        """Cooperatively cancel a job that has not reached a terminal state.

        The FAILED write is a compare-and-set, so exactly one of the
        cancellation and the background completion wins. An in-flight API
        call is not interrupted; the worker notices at its next write and
        drops its result.
        """
        job = await self._get_owned(user_id, job_id)
        for _ in range(3):
            if is_terminal(job.status):
                raise JobConflictError(f"Cannot cancel job with status: {job.status.value}")

            updated = await self._store.update(
                job.id,
                {
                    "status": TryOnJobStatus.FAILED,
                    "error_message": CANCELLED_MESSAGE,
                    "completed_at": utcnow(),
                },
                expected_status=job.status,
            )
            if updated is not None:
                emit_job_update(self._notifier, JobUpdatePayload.from_job(updated))
                logger.info("Job %s cancelled by user %s", job_id, user_id)
                return

            # Status moved underneath us; look again
            job = await self._get_owned(user_id, job_id)

        raise JobConflictError(f"Job {job_id} changed state during cancellation, please retry")

    # ------------------------------------------------------------------
    # Startup recovery
    # ------------------------------------------------------------------

    async def recover(self) -> int:
        """Re-enqueue PENDING jobs and fail jobs orphaned mid-processing.

        Returns the number of jobs re-enqueued.
        """
        if self._dispatcher is None:
            raise RuntimeError("Job dispatcher not initialized")

        orphaned = await self._store.list_by_status(
            [TryOnJobStatus.PROCESSING_UPPER, TryOnJobStatus.PROCESSING_LOWER]
        )
        for job in orphaned:
            await self._runner.fail(job.id, INTERRUPTED_MESSAGE)

        pending = await self._store.list_by_status([TryOnJobStatus.PENDING])
        for job in pending:
            await self._dispatcher.submit(job.id)
            logger.info("Recovered job %s from the job store", job.id)
        return len(pending)
