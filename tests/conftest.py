"""Shared fakes and fixtures for the try-on service tests."""

import asyncio
import io
from types import SimpleNamespace
from typing import List, Optional

import pytest
from PIL import Image

from tryon.clients.fashn_client import Prediction, TryOnClient, TryOnInputs
from tryon.jobs.dispatcher import JobDispatcher
from tryon.jobs.orchestrator import TryOnOrchestrator
from tryon.jobs.store import InMemoryHistoryStore, InMemoryJobStore, InMemoryProfileImages
from tryon.jobs.strategies import JobRunner
from tryon.notify.notifier import InProcessNotifier
from tryon.storage.image_store import ImageStore, StoredImage

USER = "user-1"
OTHER_USER = "user-2"
MODEL_URL = "https://cdn.example.com/model.jpg"


def png_bytes(size=(40, 60), color=(200, 30, 30, 255)) -> bytes:
    out = io.BytesIO()
    Image.new("RGBA", size, color).save(out, format="PNG")
    return out.getvalue()


def completed(prediction_id: str, url: Optional[str] = None, credits: int = 1) -> Prediction:
    return Prediction(
        id=prediction_id,
        status="completed",
        output=[url or f"https://cdn.fashn.ai/{prediction_id}/output.png"],
        credits_used=credits,
    )


def failed(prediction_id: str, error: str) -> Prediction:
    return Prediction(id=prediction_id, status="failed", error=error)


class FakeTryOnClient(TryOnClient):
    """Scripted try-on API. Each ``run`` pops the next scripted outcome.

    When ``gate`` is set, ``run`` signals ``entered`` and then blocks until
    the gate opens, so tests can act while a call is in flight.
    """

    model_name = "tryon-v1.6"

    def __init__(self, outcomes=None, statuses=None):
        self.calls: List[TryOnInputs] = []
        self._outcomes = list(outcomes or [])
        self.statuses = dict(statuses or {})
        self.gate: Optional[asyncio.Event] = None
        self.entered: Optional[asyncio.Event] = None
        self.closed = False

    def hold(self):
        """Make subsequent calls block until ``release`` (call inside a loop)."""
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    def release(self):
        self.gate.set()

    async def run(self, inputs: TryOnInputs) -> Prediction:
        self.calls.append(inputs)
        n = len(self.calls)
        if self.gate is not None:
            self.entered.set()
            await self.gate.wait()
        outcome = self._outcomes.pop(0) if self._outcomes else completed(f"pred-{n}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def status(self, prediction_id: str) -> Prediction:
        outcome = self.statuses.get(prediction_id)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome or Prediction(id=prediction_id, status="processing")

    async def close(self) -> None:
        self.closed = True


class FakeImageStore(ImageStore):
    """Records uploads and returns deterministic URLs."""

    def __init__(self, fail_buffer=False, fail_copy=False):
        self.fail_buffer = fail_buffer
        self.fail_copy = fail_copy
        self.buffers = []
        self.copies = []

    async def upload_buffer(self, data, folder, filename=None, content_type="image/png"):
        if self.fail_buffer:
            raise RuntimeError("storage unavailable")
        self.buffers.append((folder, filename, data))
        key = f"{folder}/{filename}"
        return StoredImage(url=f"https://storage.test/{key}", key=key)

    async def upload_from_url(self, url, folder, filename=None):
        if self.fail_copy:
            raise RuntimeError("storage unavailable")
        self.copies.append((url, folder, filename))
        key = f"{folder}/{filename}"
        return StoredImage(url=f"https://storage.test/{key}", key=key)


class FakeCombiner:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def combine(self, urls):
        self.calls.append(list(urls))
        if self.fail:
            raise ValueError("Garment image 2 could not be decoded")
        return png_bytes()

    async def combine_pair(self, upper_url, lower_url):
        return await self.combine([upper_url, lower_url])


class RecordingDispatcher(JobDispatcher):
    """Collects submitted ids; tests drive processing explicitly."""

    def __init__(self):
        self.submitted = []

    async def submit(self, job_id):
        self.submitted.append(job_id)
        return True

    async def start(self):
        pass

    async def stop(self):
        pass

    async def join(self):
        pass


@pytest.fixture
def client_outcomes():
    return []


@pytest.fixture
def harness(client_outcomes):
    """Orchestrator wired to in-memory stores and fakes."""
    store = InMemoryJobStore()
    history = InMemoryHistoryStore()
    profiles = InMemoryProfileImages({USER: "https://cdn.example.com/selfie.jpg"})
    notifier = InProcessNotifier()
    client = FakeTryOnClient(client_outcomes)
    images = FakeImageStore()
    combiner = FakeCombiner()
    runner = JobRunner(store, history, notifier, client, images, combiner)
    dispatcher = RecordingDispatcher()
    orchestrator = TryOnOrchestrator(store, profiles, notifier, runner, dispatcher)
    return SimpleNamespace(
        store=store,
        history=history,
        profiles=profiles,
        notifier=notifier,
        client=client,
        images=images,
        combiner=combiner,
        runner=runner,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
    )


def drain(subscription):
    """Every event delivered so far, without waiting."""
    events = []
    while subscription.pending():
        events.append(subscription._queue.get_nowait())
    return [e for e in events if e is not None]
