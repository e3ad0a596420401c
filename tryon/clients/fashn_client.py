"""FASHN virtual try-on API client.

The API is asynchronous on its side: ``POST /run`` returns a prediction id,
and ``GET /status/{id}`` is polled until the prediction settles. ``run``
hides that behind one awaitable call that resolves once the remote model has
finished a single garment-application pass.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import aiohttp

from tryon.jobs.errors import TryOnApiError

logger = logging.getLogger(__name__)

TERMINAL_PREDICTION_STATUSES = {"completed", "failed", "canceled", "time_out"}


@dataclass
class TryOnInputs:
    model_image: str
    garment_image: str
    category: str = "auto"
    seed: Optional[int] = None
    mode: Optional[str] = None
    output_format: str = "png"

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "model_image": self.model_image,
            "garment_image": self.garment_image,
            "category": self.category,
            "output_format": self.output_format,
        }
        if self.seed is not None:
            payload["seed"] = self.seed
        if self.mode is not None:
            payload["mode"] = self.mode
        return payload


@dataclass
class Prediction:
    id: str
    status: str
    output: Union[List[str], str, None] = None
    error: Optional[str] = None
    credits_used: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def output_url(self) -> Optional[str]:
        if isinstance(self.output, list):
            return self.output[0] if self.output else None
        return self.output

    @property
    def succeeded(self) -> bool:
        return self.status == "completed" and bool(self.output_url)

    @classmethod
    def from_response(cls, body: Dict[str, Any]) -> "Prediction":
        error = body.get("error")
        if isinstance(error, dict):
            error = error.get("message") or error.get("name")
        credits = body.get("creditsUsed", body.get("credits_used"))
        return cls(
            id=str(body.get("id", "")),
            status=str(body.get("status", "")),
            output=body.get("output"),
            error=error or None,
            credits_used=credits,
            raw=body,
        )


class TryOnClient(ABC):
    """One garment-application pass on a remote try-on model."""

    model_name: str = "tryon-v1.6"

    @abstractmethod
    async def run(self, inputs: TryOnInputs) -> Prediction:
        """Submit and wait until the prediction reaches a terminal status."""
        ...

    @abstractmethod
    async def status(self, prediction_id: str) -> Prediction:
        ...

    async def close(self) -> None:
        return None


class FashnClient(TryOnClient):

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.fashn.ai/v1",
        model_name: str = "tryon-v1.6",
        poll_interval: float = 2.0,
        request_timeout: float = 60.0,
    ):
        if not api_key:
            raise RuntimeError(
                "FASHN API key is required. Please set FASHN_API_KEY in your environment."
            )
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self.model_name = model_name
        self._poll_interval = poll_interval
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        session = self._get_session()
        async with session.request(method, f"{self._base_url}{path}", **kwargs) as response:
            try:
                body = await response.json(content_type=None)
            except ValueError:
                body = {"message": await response.text()}
            if response.status >= 400:
                message = None
                if isinstance(body, dict):
                    message = body.get("message") or body.get("error")
                    if isinstance(message, dict):
                        message = message.get("message")
                raise TryOnApiError(
                    f"FASHN API error {response.status}: {message or 'Unknown error'}",
                    status_code=response.status,
                )
            return body or {}

    async def run(self, inputs: TryOnInputs) -> Prediction:
        body = await self._request(
            "POST",
            "/run",
            json={"model_name": self.model_name, "inputs": inputs.to_payload()},
        )
        prediction_id = body.get("id")
        if not prediction_id:
            error = body.get("error")
            if isinstance(error, dict):
                error = error.get("message")
            raise TryOnApiError(f"FASHN API returned no prediction id: {error or body}")

        logger.info("FASHN prediction %s started (category=%s)", prediction_id, inputs.category)
        while True:
            prediction = await self.status(prediction_id)
            if prediction.status in TERMINAL_PREDICTION_STATUSES:
                logger.info("FASHN prediction %s finished with status %s", prediction_id, prediction.status)
                return prediction
            await asyncio.sleep(self._poll_interval)

    async def status(self, prediction_id: str) -> Prediction:
        body = await self._request("GET", f"/status/{prediction_id}")
        prediction = Prediction.from_response(body)
        if not prediction.id:
            prediction.id = prediction_id
        return prediction
