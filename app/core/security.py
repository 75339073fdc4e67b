"""API key check for the export endpoints."""

import logging
import secrets

from fastapi import Depends
from fastapi import HTTPException
from fastapi.security import APIKeyHeader

from app.core.config import settings

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(key: str | None = Depends(api_key_header)) -> bool:
    """Verifies the 'X-API-Key' header against the configured API key.

    Raises:
        HTTPException: 403 when the header is missing or wrong. A server without
                       a configured key denies every request.
    """
    if not settings.api_key:
        logger.critical(
            "CRITICAL: API key security is enforced, but no API_KEY is configured "
            "on the server. All export requests will be denied."
        )
        raise HTTPException(status_code=403, detail="Invalid API Key")

    if not key or not secrets.compare_digest(key, settings.api_key):
        raise HTTPException(status_code=403, detail="Invalid API Key")
    return True
