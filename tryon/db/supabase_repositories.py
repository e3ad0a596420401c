"""Supabase (PostgREST) implementations of the job, history and profile stores.

The supabase client is synchronous, so every query runs in the default thread
executor to keep the event loop free while the request is in flight.

Tables:
    tryon_jobs     - one row per TryOnJob, columns named after its fields
    tryon_history  - one row per TryOnHistory
    user_images    - (user_id, image_url, is_default) profile selfies
"""

import asyncio
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic_core import to_jsonable_python
from supabase import Client

from tryon.jobs.models import TryOnHistory, TryOnJob, TryOnJobStatus, utcnow
from tryon.jobs.store import HistoryStore, JobStore, ProfileImageStore

JOBS_TABLE = "tryon_jobs"
HISTORY_TABLE = "tryon_history"
USER_IMAGES_TABLE = "user_images"


async def _run(fn: Callable, *args, **kwargs):
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, partial(fn, *args, **kwargs))


def _to_row(fields: Dict[str, Any]) -> Dict[str, Any]:
    return to_jsonable_python(fields)


class SupabaseJobStore(JobStore):

    def __init__(self, client: Client):
        self._client = client

    def _table(self):
        return self._client.table(JOBS_TABLE)

    async def create(self, job: TryOnJob) -> TryOnJob:
        row = job.model_dump(mode="json")
        response = await _run(lambda: self._table().insert(row).execute())
        return TryOnJob.model_validate(response.data[0]) if response.data else job

    async def get(self, job_id: str, user_id: Optional[str] = None) -> Optional[TryOnJob]:
        def query():
            q = self._table().select("*").eq("id", job_id)
            if user_id is not None:
                q = q.eq("user_id", user_id)
            return q.limit(1).execute()

        response = await _run(query)
        if not response.data:
            return None
        return TryOnJob.model_validate(response.data[0])

    async def list_for_user(
        self,
        user_id: str,
        status: Optional[TryOnJobStatus] = None,
        limit: int = 20,
    ) -> List[TryOnJob]:
        def query():
            q = self._table().select("*").eq("user_id", user_id)
            if status is not None:
                q = q.eq("status", TryOnJobStatus(status).value)
            return q.order("created_at", desc=True).limit(limit).execute()

        response = await _run(query)
        return [TryOnJob.model_validate(row) for row in response.data or []]

    async def list_by_status(self, statuses: Iterable[TryOnJobStatus]) -> List[TryOnJob]:
        values = [TryOnJobStatus(s).value for s in statuses]
        response = await _run(
            lambda: self._table().select("*").in_("status", values).order("created_at").execute()
        )
        return [TryOnJob.model_validate(row) for row in response.data or []]

    async def update(
        self,
        job_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[TryOnJobStatus] = None,
    ) -> Optional[TryOnJob]:
        row = _to_row({**fields, "updated_at": utcnow()})

        def query():
            # The status filter turns the UPDATE into a compare-and-set on the row
            q = self._table().update(row).eq("id", job_id)
            if expected_status is not None:
                q = q.eq("status", TryOnJobStatus(expected_status).value)
            return q.execute()

        response = await _run(query)
        if not response.data:
            return None
        return TryOnJob.model_validate(response.data[0])

    async def delete(self, job_id: str) -> None:
        await _run(lambda: self._table().delete().eq("id", job_id).execute())


class SupabaseHistoryStore(HistoryStore):

    def __init__(self, client: Client):
        self._client = client

    def _table(self):
        return self._client.table(HISTORY_TABLE)

    async def create(self, record: TryOnHistory) -> TryOnHistory:
        row = record.model_dump(mode="json")
        response = await _run(lambda: self._table().insert(row).execute())
        return TryOnHistory.model_validate(response.data[0]) if response.data else record

    async def get(self, user_id: str, history_id: str) -> Optional[TryOnHistory]:
        response = await _run(
            lambda: self._table().select("*")
            .eq("id", history_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return TryOnHistory.model_validate(response.data[0])

    async def list_for_user(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        saved_only: bool = False,
    ) -> Tuple[List[TryOnHistory], int]:
        offset = (page - 1) * limit

        def query():
            q = self._table().select("*", count="exact").eq("user_id", user_id)
            if saved_only:
                q = q.eq("is_saved", True)
            return q.order("created_at", desc=True).range(offset, offset + limit - 1).execute()

        response = await _run(query)
        records = [TryOnHistory.model_validate(row) for row in response.data or []]
        return records, response.count or 0

    async def set_saved(self, user_id: str, history_id: str, is_saved: bool) -> Optional[TryOnHistory]:
        row = _to_row({"is_saved": is_saved, "updated_at": utcnow()})
        response = await _run(
            lambda: self._table().update(row)
            .eq("id", history_id)
            .eq("user_id", user_id)
            .execute()
        )
        if not response.data:
            return None
        return TryOnHistory.model_validate(response.data[0])

    async def delete(self, user_id: str, history_id: str) -> bool:
        response = await _run(
            lambda: self._table().delete()
            .eq("id", history_id)
            .eq("user_id", user_id)
            .execute()
        )
        return bool(response.data)

    async def count(self, user_id: str, saved_only: bool = False) -> int:
        def query():
            q = self._table().select("id", count="exact").eq("user_id", user_id)
            if saved_only:
                q = q.eq("is_saved", True)
            return q.execute()

        response = await _run(query)
        return response.count or 0


class SupabaseProfileImages(ProfileImageStore):

    def __init__(self, client: Client):
        self._client = client

    async def get_default_image_url(self, user_id: str) -> Optional[str]:
        response = await _run(
            lambda: self._client.table(USER_IMAGES_TABLE)
            .select("image_url")
            .eq("user_id", user_id)
            .eq("is_default", True)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return response.data[0].get("image_url")
