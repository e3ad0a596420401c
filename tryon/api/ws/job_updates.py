"""WebSocket channel pushing live try-on job updates.

Client sends ``{"event": "subscribe", "data": "<userId>"}`` to start
receiving that user's events and ``{"event": "unsubscribe", "data": ...}``
to stop. Every forwarded event is ``{"event": name, "data": payload}``.
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from tryon.notify.notifier import JobNotifier, Subscription

logger = logging.getLogger(__name__)

router = APIRouter()

WS_PATH = "/ws/tryon-jobs"

# Set by main.py during lifespan
_notifier: Optional[JobNotifier] = None


def set_notifier(notifier: JobNotifier):
    global _notifier
    _notifier = notifier


class _Connection:
    """Subscriptions held by one socket, keyed by user id."""

    def __init__(self, websocket: WebSocket, notifier: JobNotifier):
        self._ws = websocket
        self._notifier = notifier
        self._send_lock = asyncio.Lock()
        self._subscriptions: Dict[str, Tuple[Subscription, asyncio.Task]] = {}

    async def send(self, event: str, data) -> None:
        async with self._send_lock:
            await self._ws.send_json({"event": event, "data": data})

    async def subscribe(self, user_id: str) -> None:
        if user_id not in self._subscriptions:
            subscription = self._notifier.subscribe(user_id)
            task = asyncio.create_task(self._forward(subscription))
            self._subscriptions[user_id] = (subscription, task)
        await self.send("subscribed", {
            "userId": user_id,
            "message": "Successfully subscribed to job updates",
        })

    async def unsubscribe(self, user_id: str) -> None:
        entry = self._subscriptions.pop(user_id, None)
        if entry is not None:
            await self._drop(*entry)
        await self.send("unsubscribed", {"userId": user_id})

    async def close(self) -> None:
        entries = list(self._subscriptions.values())
        self._subscriptions.clear()
        for subscription, task in entries:
            await self._drop(subscription, task)

    async def _drop(self, subscription: Subscription, task: asyncio.Task) -> None:
        self._notifier.unsubscribe(subscription)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _forward(self, subscription: Subscription) -> None:
        async for event in subscription:
            try:
                await self.send(event.event, event.data)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.info("Dropping subscription %s: socket closed (%s)", subscription.id, exc)
                return


@router.websocket(WS_PATH)
async def job_updates(websocket: WebSocket):
    await websocket.accept()
    if _notifier is None:
        await websocket.close(code=1011, reason="Job notifier not initialized")
        return

    connection = _Connection(websocket, _notifier)
    logger.info("WebSocket client connected")
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await connection.send("error", {"message": "Messages must be JSON objects"})
                continue

            event = message.get("event") if isinstance(message, dict) else None
            user_id = message.get("data") if isinstance(message, dict) else None
            if event not in ("subscribe", "unsubscribe") or not isinstance(user_id, str) or not user_id:
                await connection.send("error", {"message": "Expected {event: subscribe|unsubscribe, data: userId}"})
                continue

            if event == "subscribe":
                logger.info("User %s subscribed to job updates", user_id)
                await connection.subscribe(user_id)
            else:
                logger.info("User %s unsubscribed from job updates", user_id)
                await connection.unsubscribe(user_id)
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    finally:
        await connection.close()
