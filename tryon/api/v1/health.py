"""Health check endpoint."""

from fastapi import APIRouter
import platform
import sys

router = APIRouter()

# Set by main.py during lifespan
_dispatcher = None
_notifier = None


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


def set_notifier(notifier):
    global _notifier
    _notifier = notifier


@router.get("/health")
async def health_check():
    """Service health, queue depth, and live subscriber count."""
    queue = None
    if _dispatcher is not None:
        queue = {
            "queued": _dispatcher.queued_count(),
            "active": _dispatcher.active_count(),
            "concurrency": _dispatcher.concurrency,
        }

    return {
        "status": "healthy" if _dispatcher is not None else "starting",
        "queue": queue,
        "subscribers": _notifier.subscriber_count() if _notifier is not None else 0,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
