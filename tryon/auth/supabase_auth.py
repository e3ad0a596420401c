"""Bearer-token authentication against Supabase Auth.

Routes depend on ``current_user_id``; every job and history lookup is
scoped to the id it returns.
"""

import logging
from functools import lru_cache

from fastapi import Depends, Header, HTTPException
from supabase import Client, create_client

from tryon.config import settings

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@lru_cache(maxsize=1)
def _auth_client() -> Client:
    """Anon-key client used only to resolve access tokens."""
    return create_client(settings.supabase_url, settings.supabase_anon_key)


async def verify_jwt(authorization: str = Header(None)):
    """Resolve the Supabase user behind the Authorization header."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing or invalid token")

    token = authorization[len(BEARER_PREFIX):].strip()
    try:
        user_response = _auth_client().auth.get_user(token)
    except Exception as exc:
        logger.info("Rejected access token: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid token")
    if user_response is None or user_response.user is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_response.user


async def current_user_id(user=Depends(verify_jwt)) -> str:
    user_id = getattr(user, "id", None)
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return str(user_id)
