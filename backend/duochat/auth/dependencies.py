"""FastAPI dependencies for bearer-token authentication."""
import logging
from typing import Optional

from fastapi import Header, HTTPException

from duochat.chat.errors import AuthInvalid

from .service import TokenService

logger = logging.getLogger(__name__)


async def current_participant(authorization: Optional[str] = Header(None)) -> int:
    """Resolve the participant id from an ``Authorization: Bearer`` header.

    Raises:
        HTTPException: 401 when the header is missing or the token is bad.
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="No token provided")

    token = authorization[len("bearer "):].strip()
    try:
        return TokenService.from_config().verify(token)
    except AuthInvalid as exc:
        logger.info(f"Rejected bearer token: {exc.detail}")
        raise HTTPException(status_code=401, detail=exc.detail)
