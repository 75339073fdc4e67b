import logging
from datetime import datetime
from functools import lru_cache
from typing import Annotated
from uuid import uuid4

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Path
from fastapi import Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.core.config import ExportConfig
from app.core.config import settings
from app.core.security import verify_api_key
from app.models.export_models import ErrorKind
from app.models.export_models import ExportRequest
from app.services.export_orchestrator import ExportOrchestrator
from app.services.records import JsonRecordStore
from app.services.storage.s3_service import S3StorageClient

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")

RECORD_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"

# Closed set of error kinds -> HTTP status seen by clients
STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RENDER_FAILURE: 500,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
    ErrorKind.AUTH_FAILURE: 502,
    ErrorKind.SIGNING_FAILURE: 502,
    ErrorKind.UPLOAD_EXHAUSTED: 503,
    ErrorKind.TIMEOUT: 504,
}


class ExportLinkResponse(BaseModel):
    url: str
    key: str
    checksum: str
    expires_at: datetime | None = None
    request_id: str


@lru_cache(maxsize=1)
def get_orchestrator() -> ExportOrchestrator:
    """Process-wide orchestrator; the S3 client inside it is shared by all requests."""
    config = ExportConfig.from_settings(settings)
    storage = S3StorageClient(config)
    return ExportOrchestrator.from_config(config, JsonRecordStore(settings.records_dir), storage)


@router.post(
    "/supervision-logs/{record_id}/export",
    dependencies=[Depends(verify_api_key)],
    response_model=ExportLinkResponse,
    summary="Export a supervision log to Word and return a download link",
    tags=["Export"],
)
async def export_supervision_log(
    record_id: Annotated[str, Path(pattern=RECORD_ID_PATTERN)],
    orchestrator: Annotated[ExportOrchestrator, Depends(get_orchestrator)],
    ttl: Annotated[int | None, Query(gt=0, description="Link validity in seconds.")] = None,
) -> ExportLinkResponse | JSONResponse:
    """
    Generates the DOCX for the supervision log, uploads it to object storage and
    returns a link the client can download it from.

    Errors come back as ``{"error": {"kind", "stage", "message", "retryable"}}``.
    ``retryable`` tells the client whether offering a manual retry makes sense.
    """
    request_id = str(uuid4())
    logger.info(f"[{request_id}] Export requested for supervision log {record_id} (ttl={ttl})")

    outcome = await orchestrator.export(ExportRequest(record_id=record_id), ttl=ttl, request_id=request_id)

    if outcome.link is not None:
        return ExportLinkResponse(
            url=outcome.link.url,
            key=outcome.link.key,
            checksum=outcome.link.checksum,
            expires_at=outcome.link.expires_at,
            request_id=request_id,
        )

    failure = outcome.failure
    if failure is None:
        raise RuntimeError(f"Export {request_id} returned neither a link nor a failure")
    status_code = STATUS_BY_KIND[failure.kind]
    logger.error(f"[{request_id}] Export of {record_id} failed ({status_code}): {failure.kind.value} at {failure.stage.value}")
    return JSONResponse(
        {
            "error": {
                "kind": failure.kind.value,
                "stage": failure.stage.value,
                "message": failure.message,
                "retryable": failure.retryable,
                "attempts": failure.attempts,
                "request_id": request_id,
            }
        },
        status_code=status_code,
    )
