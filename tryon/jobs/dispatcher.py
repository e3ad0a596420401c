"""Job dispatcher interface."""

from abc import ABC, abstractmethod


class JobDispatcher(ABC):
    """Abstract interface for handing jobs to background workers."""

    @abstractmethod
    async def submit(self, job_id: str) -> bool:
        """Schedule a persisted job for processing without waiting for it.

        Returns False if the job is already queued or running.
        """
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the worker loop(s)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher, cancelling in-flight work."""
        ...

    @abstractmethod
    async def join(self) -> None:
        """Wait until every submitted job has been processed."""
        ...
