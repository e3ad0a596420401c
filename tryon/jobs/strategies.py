"""Background pipelines that drive one try-on job to a terminal state.

Three input shapes map to three strategies, chosen once per job:

    garment_urls      -> GARMENT_ARRAY  combine N images, one API call (auto)
    outfit_image_url  -> OUTFIT         one API call with the job category
    upper + lower     -> UPPER_LOWER    combine the pair, one API call (auto),
                                        passing through processing_lower

Every status write is a compare-and-set against the status the pipeline last
wrote. If it loses (the user cancelled in between), the pipeline stops
without touching the job again. Each successful status write is followed by
its notification before the next await.
"""

import logging
import time
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from tryon.clients.fashn_client import Prediction, TryOnClient, TryOnInputs
from tryon.jobs.models import (
    JobUpdatePayload,
    TryOnHistory,
    TryOnJob,
    TryOnJobStatus,
    can_transition,
    is_terminal,
    utcnow,
)
from tryon.jobs.store import HistoryStore, JobStore
from tryon.notify.notifier import JobNotifier, emit_job_update
from tryon.processing.garment_combiner import GarmentCombiner
from tryon.storage.image_store import ImageStore

logger = logging.getLogger(__name__)

COMBINED_GARMENTS_FOLDER = "tryon-combined-garments"
GARMENT_PAIRS_FOLDER = "garment-combinations"
RESULTS_FOLDER = "tryon-results"


class StrategyKind(str, Enum):
    GARMENT_ARRAY = "garment_array"
    OUTFIT = "outfit"
    UPPER_LOWER = "upper_lower"


def select_strategy(job: TryOnJob) -> StrategyKind:
    """Garment array beats outfit image, which beats the upper/lower pair."""
    if job.garment_urls:
        return StrategyKind.GARMENT_ARRAY
    if job.outfit_image_url:
        return StrategyKind.OUTFIT
    return StrategyKind.UPPER_LOWER


class JobSuperseded(Exception):
    """The job left the state this pipeline expected (e.g. user cancel)."""

    def __init__(self, job_id: str, expected: TryOnJobStatus):
        self.job_id = job_id
        self.expected = expected
        super().__init__(f"Job {job_id} is no longer {expected.value}")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _error_text(exc: BaseException) -> str:
    return str(exc) or "Unknown error"


class JobRunner:
    """Executes the selected strategy for a job, one step at a time."""

    def __init__(
        self,
        store: JobStore,
        history_store: HistoryStore,
        notifier: JobNotifier,
        client: TryOnClient,
        image_store: ImageStore,
        combiner: GarmentCombiner,
    ):
        self._store = store
        self._history = history_store
        self._notifier = notifier
        self._client = client
        self._images = image_store
        self._combiner = combiner
        self._strategies = {
            StrategyKind.GARMENT_ARRAY: self._run_garment_array,
            StrategyKind.OUTFIT: self._run_outfit,
            StrategyKind.UPPER_LOWER: self._run_upper_lower,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def process(self, job_id: str) -> None:
        """Run a pending job to completion or failure. Never raises."""
        started = time.monotonic()
        try:
            job = await self._store.get(job_id)
            if job is None:
                logger.error("Job %s not found", job_id)
                return
            if job.status != TryOnJobStatus.PENDING:
                logger.info("Job %s is %s, not pending; skipping", job_id, job.status.value)
                return

            kind = select_strategy(job)
            logger.info("Starting background processing for job %s (%s)", job_id, kind.value)
            await self._strategies[kind](job, started)
        except JobSuperseded as exc:
            logger.info("Job %s: abandoning pipeline, %s", job_id, exc)
        except Exception as exc:
            logger.exception("Job %s: unexpected error", job_id)
            try:
                await self.fail(job_id, _error_text(exc), _elapsed_ms(started))
            except Exception:
                logger.exception("Job %s: could not record failure", job_id)

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _emit(self, job: TryOnJob) -> None:
        emit_job_update(self._notifier, JobUpdatePayload.from_job(job))

    async def _transition(self, job: TryOnJob, status: TryOnJobStatus) -> TryOnJob:
        if not can_transition(job.status, status):
            raise RuntimeError(f"Illegal transition {job.status.value} -> {status.value} for job {job.id}")
        updated = await self._store.update(job.id, {"status": status}, expected_status=job.status)
        if updated is None:
            raise JobSuperseded(job.id, job.status)
        self._emit(updated)
        return updated

    async def _ensure_current(self, job: TryOnJob) -> None:
        """Checkpoint before a costly call: stop if the job was cancelled."""
        current = await self._store.get(job.id)
        if current is None or current.status != job.status:
            raise JobSuperseded(job.id, job.status)

    async def fail(self, job_id: str, message: str, processing_time: Optional[int] = None) -> Optional[TryOnJob]:
        """Move a job to FAILED unless it is already terminal."""
        logger.error("Job %s failed: %s", job_id, message)
        for _ in range(3):
            current = await self._store.get(job_id)
            if current is None or is_terminal(current.status):
                return None
            fields = {
                "status": TryOnJobStatus.FAILED,
                "error_message": message,
                "completed_at": utcnow(),
            }
            if processing_time is not None:
                fields["processing_time"] = processing_time
            updated = await self._store.update(job_id, fields, expected_status=current.status)
            if updated is not None:
                self._emit(updated)
                return updated
        logger.warning("Job %s: gave up recording failure after concurrent updates", job_id)
        return None

    async def _call_api(self, job: TryOnJob, garment_image: str, category: str) -> Prediction:
        await self._ensure_current(job)
        return await self._client.run(
            TryOnInputs(
                model_image=job.model_image_url,
                garment_image=garment_image,
                category=category,
                seed=job.seed,
                mode=job.mode,
            )
        )

    async def _persist_result(self, job: TryOnJob, upstream_url: str, filename: str) -> Tuple[str, Optional[str]]:
        """Copy the upstream result into durable storage.

        Falls back to the upstream URL when storage fails; the job still
        completes.
        """
        try:
            logger.info("Uploading result image to storage for job %s", job.id)
            stored = await self._images.upload_from_url(upstream_url, RESULTS_FOLDER, filename)
        except Exception as exc:
            logger.warning("Job %s: failed to store result (%s), using upstream URL", job.id, exc)
            return upstream_url, None
        if not stored.url:
            logger.warning("Job %s: storage returned no URL, using upstream URL", job.id)
            return upstream_url, None
        logger.info("Job %s: result stored at %s", job.id, stored.url)
        return stored.url, stored.key

    async def _complete(
        self,
        job: TryOnJob,
        prediction: Prediction,
        prediction_field: str,
        result_url: str,
        processing_time: int,
        metadata: Dict[str, Any],
        history_fields: Dict[str, Any],
    ) -> TryOnJob:
        history_id = None
        if job.save_to_history:
            record = await self._history.create(
                TryOnHistory(
                    user_id=job.user_id,
                    model_image_url=job.model_image_url,
                    result_image_url=result_url,
                    prediction_id=prediction.id,
                    processing_time=processing_time,
                    is_saved=True,
                    model_name=self._client.model_name,
                    metadata=metadata,
                    **history_fields,
                )
            )
            history_id = record.id

        fields = {
            "status": TryOnJobStatus.COMPLETED,
            prediction_field: prediction.id,
            "result_image_url": result_url,
            "processing_time": processing_time,
            "metadata": metadata,
            "history_id": history_id,
            "completed_at": utcnow(),
        }
        updated = await self._store.update(job.id, fields, expected_status=job.status)
        if updated is None:
            # Lost to a cancellation; the history copy must not outlive it
            if history_id is not None:
                await self._history.delete(job.user_id, history_id)
            raise JobSuperseded(job.id, job.status)

        self._emit(updated)
        logger.info("Job %s completed successfully in %dms", job.id, processing_time)
        return updated

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _run_garment_array(self, job: TryOnJob, started: float) -> None:
        job = await self._transition(job, TryOnJobStatus.PROCESSING_UPPER)
        logger.info("Job %s: Combining %d garment images", job.id, len(job.garment_urls))

        try:
            combined = await self._combiner.combine(job.garment_urls)
            stored = await self._images.upload_buffer(
                combined, COMBINED_GARMENTS_FOLDER, f"combined-garments-{job.id}.png"
            )
        except Exception as exc:
            await self.fail(job.id, f"Failed to combine garment images: {_error_text(exc)}", _elapsed_ms(started))
            return
        logger.info("Job %s: Combined garment uploaded to %s", job.id, stored.url)

        prediction = await self._call_api(job, stored.url, "auto")
        processing_time = _elapsed_ms(started)
        if not prediction.succeeded:
            await self.fail(job.id, prediction.error or "Try-on failed", processing_time)
            return

        upstream_url = prediction.output_url
        result_url, storage_key = await self._persist_result(job, upstream_url, f"garments_{job.id}.png")
        metadata = {
            "credits_used": prediction.credits_used or 1,
            "api_calls": 1,
            "combined_garment_url": stored.url,
            "combined_garment_key": stored.key,
            "garment_count": len(job.garment_urls),
            "original_result_url": upstream_url,
        }
        if storage_key:
            metadata["storage_key"] = storage_key

        await self._complete(
            job, prediction, "upper_prediction_id", result_url, processing_time, metadata,
            {"garment_urls": job.garment_urls, "category": "auto"},
        )

    async def _run_outfit(self, job: TryOnJob, started: float) -> None:
        job = await self._transition(job, TryOnJobStatus.PROCESSING_UPPER)
        category = job.category or "auto"
        logger.info("Job %s: Processing outfit image with category %r", job.id, category)

        prediction = await self._call_api(job, job.outfit_image_url, category)
        processing_time = _elapsed_ms(started)
        if not prediction.succeeded:
            await self.fail(job.id, prediction.error or "Try-on failed", processing_time)
            return

        upstream_url = prediction.output_url
        result_url, storage_key = await self._persist_result(job, upstream_url, f"outfit_{job.id}.png")
        metadata = {
            "credits_used": prediction.credits_used or 1,
            "category": category,
            "mode": job.mode,
            "original_result_url": upstream_url,
        }
        if storage_key:
            metadata["storage_key"] = storage_key

        await self._complete(
            job, prediction, "upper_prediction_id", result_url, processing_time, metadata,
            {"upper_garment_url": job.outfit_image_url, "category": category},
        )

    async def _run_upper_lower(self, job: TryOnJob, started: float) -> None:
        job = await self._transition(job, TryOnJobStatus.PROCESSING_UPPER)
        logger.info("Job %s: Step 1 - Combining upper and lower garment images", job.id)

        try:
            combined = await self._combiner.combine_pair(job.upper_garment_url, job.lower_garment_url)
            stored = await self._images.upload_buffer(combined, GARMENT_PAIRS_FOLDER, f"outfit_{job.id}.png")
        except Exception as exc:
            await self.fail(job.id, f"Failed to combine garment images: {_error_text(exc)}", _elapsed_ms(started))
            return
        logger.info("Job %s: Combined garment uploaded to %s", job.id, stored.url)

        # Kept as a separate state so clients still see 25% then 75%
        job = await self._transition(job, TryOnJobStatus.PROCESSING_LOWER)
        logger.info("Job %s: Step 2 - Processing combined outfit", job.id)

        prediction = await self._call_api(job, stored.url, "auto")
        processing_time = _elapsed_ms(started)
        if not prediction.succeeded:
            await self.fail(
                job.id,
                f"Lower garment try-on failed: {prediction.error or 'Unknown error'}",
                processing_time,
            )
            return

        upstream_url = prediction.output_url
        result_url, storage_key = await self._persist_result(job, upstream_url, f"combined_{job.id}.png")
        metadata = {
            "prediction_id": prediction.id,
            "credits_used": prediction.credits_used or 1,
            "mode": job.mode,
            "category": "auto",
            "original_result_url": upstream_url,
            "combined_garment_url": stored.url,
            "combined_garment_key": stored.key,
            "approach": "combined-single-call",
        }
        if storage_key:
            metadata["storage_key"] = storage_key

        await self._complete(
            job, prediction, "lower_prediction_id", result_url, processing_time, metadata,
            {
                "upper_garment_url": job.upper_garment_url,
                "lower_garment_url": job.lower_garment_url,
                "category": "auto",
            },
        )
