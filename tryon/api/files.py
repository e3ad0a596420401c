"""Serve result images written by the local-filesystem store."""

import mimetypes

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from tryon.storage.local_store import FILES_ROUTE

router = APIRouter()

# Wired in during lifespan when storage_backend is "local"
_local_store = None


def set_local_store(store):
    global _local_store
    _local_store = store


@router.get(FILES_ROUTE + "/{key:path}")
async def download_file(key: str):
    """Stream a stored image back to the browser."""
    if _local_store is None:
        raise HTTPException(status_code=404, detail="Local file serving is disabled")
    try:
        exists = _local_store.file_exists(key)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if not exists:
        raise HTTPException(status_code=404, detail=f"File '{key}' not found")

    media_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return FileResponse(_local_store.get_path(key), media_type=media_type)
