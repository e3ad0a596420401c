"""Direct (non-queued) try-on and prediction status passthrough."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, HttpUrl
from pydantic.alias_generators import to_camel

from tryon.api.errors import to_http_exception
from tryon.auth.supabase_auth import current_user_id
from tryon.jobs.errors import TryOnValidationError
from tryon.services.direct_tryon import DirectTryOnRequest

router = APIRouter()

# Set by main.py during lifespan (same pattern as jobs.py)
_direct_service = None


def set_direct_service(service):
    global _direct_service
    _direct_service = service


def _require_service():
    if _direct_service is None:
        raise HTTPException(status_code=503, detail="Try-on service not initialized")
    return _direct_service


class TryOnRequestBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    model_image_url: HttpUrl
    upper_garment_url: HttpUrl
    lower_garment_url: HttpUrl
    category: Optional[str] = None
    save_to_history: bool = False


@router.post("/tryon", status_code=201)
async def generate_tryon(body: TryOnRequestBody, user_id: str = Depends(current_user_id)):
    """Apply upper then lower garment and wait for the result.

    Blocks for two full model passes; prefer POST /tryon/queue.
    """
    request = DirectTryOnRequest(
        model_image_url=str(body.model_image_url),
        upper_garment_url=str(body.upper_garment_url),
        lower_garment_url=str(body.lower_garment_url),
        category=body.category,
        save_to_history=body.save_to_history,
    )
    try:
        return await _require_service().generate(user_id, request)
    except TryOnValidationError as exc:
        raise to_http_exception(exc)


@router.get("/predictions/{prediction_id}")
async def get_prediction_status(prediction_id: str, user_id: str = Depends(current_user_id)):
    try:
        return await _require_service().prediction_status(prediction_id)
    except TryOnValidationError as exc:
        raise to_http_exception(exc)
