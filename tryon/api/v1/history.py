"""Saved try-on history endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from tryon.api.errors import to_http_exception
from tryon.auth.supabase_auth import current_user_id
from tryon.jobs.errors import JobNotFoundError
from tryon.jobs.models import HistoryItem

router = APIRouter()

# Set by main.py during lifespan (same pattern as jobs.py)
_history_service = None


def set_history_service(service):
    global _history_service
    _history_service = service


def _require_service():
    if _history_service is None:
        raise HTTPException(status_code=503, detail="History service not initialized")
    return _history_service


class UpdateSavedStatusRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_saved: bool


@router.get("/history")
async def get_user_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    saved_only: bool = Query(False, alias="savedOnly"),
    user_id: str = Depends(current_user_id),
):
    return await _require_service().list(user_id, page=page, limit=limit, saved_only=saved_only)


@router.get("/history/stats/count")
async def get_history_count(user_id: str = Depends(current_user_id)):
    return await _require_service().counts(user_id)


@router.get("/history/{history_id}", response_model=HistoryItem, response_model_exclude_none=True)
async def get_history_by_id(history_id: str, user_id: str = Depends(current_user_id)):
    try:
        return await _require_service().get(user_id, history_id)
    except JobNotFoundError as exc:
        raise to_http_exception(exc)


@router.patch("/history/{history_id}/saved", response_model=HistoryItem, response_model_exclude_none=True)
async def update_saved_status(
    history_id: str,
    request: UpdateSavedStatusRequest,
    user_id: str = Depends(current_user_id),
):
    try:
        return await _require_service().set_saved(user_id, history_id, request.is_saved)
    except JobNotFoundError as exc:
        raise to_http_exception(exc)


@router.delete("/history/{history_id}", status_code=204)
async def delete_history(history_id: str, user_id: str = Depends(current_user_id)):
    try:
        await _require_service().delete(user_id, history_id)
    except JobNotFoundError as exc:
        raise to_http_exception(exc)
    return Response(status_code=204)
