"""Request-scoped try-on calls that do not go through the job queue.

``generate`` applies the upper garment and then the lower garment on top of
the first pass's output, waiting for both. ``prediction_status`` proxies a
single prediction lookup.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from tryon.clients.fashn_client import Prediction, TryOnClient, TryOnInputs
from tryon.jobs.errors import TryOnApiError, TryOnValidationError
from tryon.jobs.models import TryOnHistory
from tryon.jobs.store import HistoryStore

logger = logging.getLogger(__name__)

_PREDICTION_PROGRESS = {
    "starting": 0,
    "in_queue": 0,
    "processing": 50,
    "completed": 100,
}


@dataclass
class DirectTryOnRequest:
    model_image_url: str
    upper_garment_url: str
    lower_garment_url: str
    category: Optional[str] = None
    save_to_history: bool = False


class DirectTryOnService:

    def __init__(self, client: TryOnClient, history_store: HistoryStore):
        self._client = client
        self._history = history_store

    async def generate(self, user_id: str, request: DirectTryOnRequest) -> Dict[str, Any]:
        started = time.monotonic()
        logger.info("Starting two-pass try-on for user %s", user_id)
        try:
            upper = await self._client.run(
                TryOnInputs(
                    model_image=request.model_image_url,
                    garment_image=request.upper_garment_url,
                    category="tops",
                )
            )
            if not upper.succeeded:
                raise TryOnValidationError(f"Upper garment try-on failed: {upper.error or 'Unknown error'}")

            lower = await self._client.run(
                TryOnInputs(
                    model_image=upper.output_url,
                    garment_image=request.lower_garment_url,
                    category="bottoms",
                )
            )
            if not lower.succeeded:
                raise TryOnValidationError(f"Lower garment try-on failed: {lower.error or 'Unknown error'}")
        except TryOnValidationError:
            raise
        except Exception as exc:
            raise TryOnValidationError(_describe_failure(exc)) from exc

        processing_time = int((time.monotonic() - started) * 1000)
        logger.info("Two-pass try-on completed in %dms (prediction %s)", processing_time, lower.id)

        result = {
            "success": True,
            "outputImageUrl": lower.output_url,
            "predictionId": lower.id,
            "processingTime": processing_time,
            "model": self._client.model_name,
            "metadata": {
                "status": lower.status,
                "upper_prediction_id": upper.id,
                "credits_used": (upper.credits_used or 0) + (lower.credits_used or 0),
            },
        }

        if request.save_to_history:
            record = await self._history.create(
                TryOnHistory(
                    user_id=user_id,
                    model_image_url=request.model_image_url,
                    upper_garment_url=request.upper_garment_url,
                    lower_garment_url=request.lower_garment_url,
                    result_image_url=lower.output_url,
                    prediction_id=lower.id,
                    processing_time=processing_time,
                    category=request.category,
                    is_saved=True,
                    model_name=self._client.model_name,
                    metadata=result["metadata"],
                )
            )
            result["historyId"] = record.id
            logger.info("Saved to history with ID: %s", record.id)

        return result

    async def prediction_status(self, prediction_id: str) -> Dict[str, Any]:
        try:
            prediction = await self._client.status(prediction_id)
        except Exception as exc:
            raise TryOnValidationError(f"Failed to get prediction status: {exc}") from exc
        return _status_body(prediction)


def _status_body(prediction: Prediction) -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": prediction.status, "predictionId": prediction.id}
    if prediction.status == "completed" and prediction.output_url:
        body["outputImageUrl"] = prediction.output_url
    if prediction.status == "failed":
        body["error"] = prediction.error or "Unknown error"
    if prediction.status in _PREDICTION_PROGRESS:
        body["progress"] = _PREDICTION_PROGRESS[prediction.status]
    return body


def _describe_failure(exc: Exception) -> str:
    message = str(exc) or "Unknown error"
    status_code = exc.status_code if isinstance(exc, TryOnApiError) else None
    if status_code == 401 or "API key" in message:
        return "Invalid FASHN API key"
    if status_code == 429 or "rate limit" in message.lower():
        return "FASHN API rate limit exceeded. Please try again later."
    return f"Failed to generate try-on: {message}"
