"""Publish/subscribe fan-out of job updates to live client connections.

Delivery is best effort: nothing is persisted, and a client that was not
subscribed when an event fired must reconcile by polling the job status.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set
import uuid

from tryon.jobs.models import JobUpdatePayload, TryOnJobStatus

logger = logging.getLogger(__name__)

JOB_UPDATE = "job-update"
JOB_COMPLETED = "job-completed"
JOB_FAILED = "job-failed"
JOB_PROCESSING = "job-processing"

_PROCESSING_STEPS = {
    TryOnJobStatus.PROCESSING_UPPER: ("upper", "Processing upper garment..."),
    TryOnJobStatus.PROCESSING_LOWER: ("lower", "Processing lower garment..."),
}


@dataclass
class JobEvent:
    event: str
    data: Dict[str, Any]

    def to_message(self) -> Dict[str, Any]:
        return {"event": self.event, "data": self.data}


@dataclass(eq=False)
class Subscription:
    """One live listener for one user's events."""
    user_id: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    _queue: "asyncio.Queue[Optional[JobEvent]]" = field(default_factory=asyncio.Queue)
    closed: bool = False

    def deliver(self, event: JobEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(None)

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> Optional[JobEvent]:
        """Next event, or None once the subscription has been closed."""
        return await self._queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> JobEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class JobNotifier(ABC):
    """Transport-agnostic pub/sub keyed by owning user."""

    @abstractmethod
    def subscribe(self, user_id: str) -> Subscription:
        ...

    @abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None:
        ...

    @abstractmethod
    def publish(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        """Deliver to every current subscriber of ``user_id`` without awaiting."""
        ...

    @abstractmethod
    def subscriber_count(self, user_id: Optional[str] = None) -> int:
        ...


class InProcessNotifier(JobNotifier):
    """Single-process registry of user id -> live subscriptions.

    Only correct within one service instance; a multi-instance deployment
    needs a shared broker behind the same interface.
    """

    def __init__(self):
        self._subscriptions: Dict[str, Set[Subscription]] = {}

    def subscribe(self, user_id: str) -> Subscription:
        subscription = Subscription(user_id=user_id)
        self._subscriptions.setdefault(user_id, set()).add(subscription)
        logger.info("Subscription %s added for user %s", subscription.id, user_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.user_id)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscriptions[subscription.user_id]
        subscription.close()
        logger.info("Subscription %s removed for user %s", subscription.id, subscription.user_id)

    def publish(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        job_event = JobEvent(event=event, data=data)
        for subscription in list(self._subscriptions.get(user_id, ())):
            subscription.deliver(job_event)

    def subscriber_count(self, user_id: Optional[str] = None) -> int:
        if user_id is not None:
            return len(self._subscriptions.get(user_id, ()))
        return sum(len(s) for s in self._subscriptions.values())


def emit_job_update(notifier: JobNotifier, payload: JobUpdatePayload) -> None:
    """Publish the generic update, then the status-specific convenience event."""
    data = payload.to_wire()
    logger.info(
        "Emitting job update for user %s, job %s, status: %s",
        payload.user_id, payload.job_id, payload.status.value,
    )
    notifier.publish(payload.user_id, JOB_UPDATE, data)

    status = TryOnJobStatus(payload.status)
    if status == TryOnJobStatus.COMPLETED:
        notifier.publish(payload.user_id, JOB_COMPLETED, data)
    elif status == TryOnJobStatus.FAILED:
        notifier.publish(payload.user_id, JOB_FAILED, data)
    elif status in _PROCESSING_STEPS:
        step, message = _PROCESSING_STEPS[status]
        notifier.publish(payload.user_id, JOB_PROCESSING, {**data, "step": step, "message": message})
