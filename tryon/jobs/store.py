"""Repository interfaces for jobs, history and profile images, with
process-local implementations for development and tests.

The Supabase-backed implementations live in ``tryon.db.supabase_repositories``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple

from tryon.jobs.models import TryOnHistory, TryOnJob, TryOnJobStatus, utcnow


class JobStore(ABC):
    """Durable source of truth for job state."""

    @abstractmethod
    async def create(self, job: TryOnJob) -> TryOnJob:
        ...

    @abstractmethod
    async def get(self, job_id: str, user_id: Optional[str] = None) -> Optional[TryOnJob]:
        """Fetch a job; when ``user_id`` is given, only if that user owns it."""
        ...

    @abstractmethod
    async def list_for_user(
        self,
        user_id: str,
        status: Optional[TryOnJobStatus] = None,
        limit: int = 20,
    ) -> List[TryOnJob]:
        """Newest first."""
        ...

    @abstractmethod
    async def list_by_status(self, statuses: Iterable[TryOnJobStatus]) -> List[TryOnJob]:
        ...

    @abstractmethod
    async def update(
        self,
        job_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[TryOnJobStatus] = None,
    ) -> Optional[TryOnJob]:
        """Apply ``fields`` to the job.

        When ``expected_status`` is given the write is a compare-and-set: it
        only lands if the stored status still equals it. Returns the updated
        job, or None if the job is missing or the comparison failed.
        """
        ...

    @abstractmethod
    async def delete(self, job_id: str) -> None:
        ...


class HistoryStore(ABC):

    @abstractmethod
    async def create(self, record: TryOnHistory) -> TryOnHistory:
        ...

    @abstractmethod
    async def get(self, user_id: str, history_id: str) -> Optional[TryOnHistory]:
        ...

    @abstractmethod
    async def list_for_user(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        saved_only: bool = False,
    ) -> Tuple[List[TryOnHistory], int]:
        """Return one page (newest first) and the total matching count."""
        ...

    @abstractmethod
    async def set_saved(self, user_id: str, history_id: str, is_saved: bool) -> Optional[TryOnHistory]:
        ...

    @abstractmethod
    async def delete(self, user_id: str, history_id: str) -> bool:
        ...

    @abstractmethod
    async def count(self, user_id: str, saved_only: bool = False) -> int:
        ...


class ProfileImageStore(ABC):
    """Lookup of a user's stored default model (selfie) image."""

    @abstractmethod
    async def get_default_image_url(self, user_id: str) -> Optional[str]:
        ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

class InMemoryJobStore(JobStore):
    """Dict-backed store. Every method body runs without awaiting, so each
    call is atomic with respect to other tasks on the event loop."""

    def __init__(self):
        self._jobs: Dict[str, TryOnJob] = {}

    async def create(self, job: TryOnJob) -> TryOnJob:
        self._jobs[job.id] = job.model_copy(deep=True)
        return job.model_copy(deep=True)

    async def get(self, job_id: str, user_id: Optional[str] = None) -> Optional[TryOnJob]:
        job = self._jobs.get(job_id)
        if job is None or (user_id is not None and job.user_id != user_id):
            return None
        return job.model_copy(deep=True)

    async def list_for_user(
        self,
        user_id: str,
        status: Optional[TryOnJobStatus] = None,
        limit: int = 20,
    ) -> List[TryOnJob]:
        jobs = [j for j in self._jobs.values() if j.user_id == user_id]
        if status is not None:
            jobs = [j for j in jobs if j.status == status]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [j.model_copy(deep=True) for j in jobs[:limit]]

    async def list_by_status(self, statuses: Iterable[TryOnJobStatus]) -> List[TryOnJob]:
        wanted = set(statuses)
        jobs = [j for j in self._jobs.values() if j.status in wanted]
        jobs.sort(key=lambda j: j.created_at)
        return [j.model_copy(deep=True) for j in jobs]

    async def update(
        self,
        job_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[TryOnJobStatus] = None,
    ) -> Optional[TryOnJob]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if expected_status is not None and job.status != expected_status:
            return None
        updated = job.model_copy(update={**fields, "updated_at": utcnow()}, deep=True)
        self._jobs[job_id] = updated
        return updated.model_copy(deep=True)

    async def delete(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)


class InMemoryHistoryStore(HistoryStore):

    def __init__(self):
        self._records: Dict[str, TryOnHistory] = {}

    async def create(self, record: TryOnHistory) -> TryOnHistory:
        self._records[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def get(self, user_id: str, history_id: str) -> Optional[TryOnHistory]:
        record = self._records.get(history_id)
        if record is None or record.user_id != user_id:
            return None
        return record.model_copy(deep=True)

    def _matching(self, user_id: str, saved_only: bool) -> List[TryOnHistory]:
        records = [r for r in self._records.values() if r.user_id == user_id]
        if saved_only:
            records = [r for r in records if r.is_saved]
        return records

    async def list_for_user(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        saved_only: bool = False,
    ) -> Tuple[List[TryOnHistory], int]:
        records = self._matching(user_id, saved_only)
        records.sort(key=lambda r: r.created_at, reverse=True)
        offset = (page - 1) * limit
        return [r.model_copy(deep=True) for r in records[offset:offset + limit]], len(records)

    async def set_saved(self, user_id: str, history_id: str, is_saved: bool) -> Optional[TryOnHistory]:
        record = self._records.get(history_id)
        if record is None or record.user_id != user_id:
            return None
        updated = record.model_copy(update={"is_saved": is_saved, "updated_at": utcnow()})
        self._records[history_id] = updated
        return updated.model_copy(deep=True)

    async def delete(self, user_id: str, history_id: str) -> bool:
        record = self._records.get(history_id)
        if record is None or record.user_id != user_id:
            return False
        del self._records[history_id]
        return True

    async def count(self, user_id: str, saved_only: bool = False) -> int:
        return len(self._matching(user_id, saved_only))


class InMemoryProfileImages(ProfileImageStore):

    def __init__(self, defaults: Optional[Dict[str, str]] = None):
        self._defaults: Dict[str, str] = dict(defaults or {})

    def set_default(self, user_id: str, image_url: str) -> None:
        self._defaults[user_id] = image_url

    async def get_default_image_url(self, user_id: str) -> Optional[str]:
        return self._defaults.get(user_id)
