"""Saved try-on history: paging, lookup, saved flag, delete, counts."""

import logging
import math
from typing import Any, Dict

from tryon.jobs.errors import JobNotFoundError
from tryon.jobs.models import HistoryItem
from tryon.jobs.store import HistoryStore

logger = logging.getLogger(__name__)


class HistoryService:

    def __init__(self, store: HistoryStore):
        self._store = store

    async def list(self, user_id: str, page: int = 1, limit: int = 20, saved_only: bool = False) -> Dict[str, Any]:
        records, total = await self._store.list_for_user(user_id, page=page, limit=limit, saved_only=saved_only)
        total_pages = math.ceil(total / limit) if limit else 0
        return {
            "data": [HistoryItem.from_record(r).to_wire() for r in records],
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "totalPages": total_pages,
                "hasNext": page < total_pages,
                "hasPrev": page > 1,
            },
        }

    async def get(self, user_id: str, history_id: str) -> HistoryItem:
        record = await self._store.get(user_id, history_id)
        if record is None:
            raise JobNotFoundError(history_id, kind="History record")
        return HistoryItem.from_record(record)

    async def set_saved(self, user_id: str, history_id: str, is_saved: bool) -> HistoryItem:
        record = await self._store.set_saved(user_id, history_id, is_saved)
        if record is None:
            raise JobNotFoundError(history_id, kind="History record")
        logger.info("Updated saved status to %s for history %s", is_saved, history_id)
        return HistoryItem.from_record(record)

    async def delete(self, user_id: str, history_id: str) -> None:
        if not await self._store.delete(user_id, history_id):
            raise JobNotFoundError(history_id, kind="History record")
        logger.info("Deleted history record %s for user %s", history_id, user_id)

    async def counts(self, user_id: str) -> Dict[str, int]:
        return {
            "total": await self._store.count(user_id),
            "saved": await self._store.count(user_id, saved_only=True),
        }
