"""Public entry point of the export pipeline.

``ExportOrchestrator.export`` sequences Build -> Upload -> Link for one
request, enforces the overall deadline and folds every failure into a single
``ExportOutcome``. Stages raise; nothing below this module packages errors.
"""

from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

from app.core.config import ExportConfig
from app.core.exceptions import ExportError
from app.core.exceptions import ExportTimeoutError
from app.core.exceptions import InvalidTransitionError
from app.core.exceptions import UploadExhaustedError
from app.models.export_models import DeliveryLink
from app.models.export_models import ErrorKind
from app.models.export_models import ExportFailure
from app.models.export_models import ExportOutcome
from app.models.export_models import ExportRequest
from app.models.export_models import ExportStage
from app.models.export_models import ExportState
from app.models.export_models import StoredObjectRef
from app.services.doc_builder import DocumentBuilder
from app.services.link_broker import LinkBroker
from app.services.records import RecordStore
from app.services.storage.s3_service import StorageClient
from app.services.upload_manager import UploadManager

logger = logging.getLogger(__name__)

# Strictly forward: no state is revisited, terminal states are final.
VALID_TRANSITIONS: dict[ExportState, set[ExportState]] = {
    ExportState.PENDING: {ExportState.BUILDING, ExportState.FAILED},
    ExportState.BUILDING: {ExportState.UPLOADING, ExportState.FAILED},
    ExportState.UPLOADING: {ExportState.LINK_ISSUING, ExportState.FAILED},
    ExportState.LINK_ISSUING: {ExportState.SUCCEEDED, ExportState.FAILED},
    ExportState.SUCCEEDED: set(),
    ExportState.FAILED: set(),
}

_STATE_TO_STAGE: dict[ExportState, ExportStage] = {
    ExportState.BUILDING: ExportStage.BUILDING,
    ExportState.UPLOADING: ExportStage.UPLOADING,
    ExportState.LINK_ISSUING: ExportStage.LINK_ISSUING,
}

# Kind used when a stage fails with an exception outside the taxonomy.
_UNEXPECTED_KIND: dict[ExportStage, ErrorKind] = {
    ExportStage.BUILDING: ErrorKind.RENDER_FAILURE,
    ExportStage.UPLOADING: ErrorKind.UPLOAD_EXHAUSTED,
    ExportStage.LINK_ISSUING: ErrorKind.SIGNING_FAILURE,
}


class ExportRun:
    """Per-invocation state machine."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        self.state = ExportState.PENDING
        self.history: list[ExportState] = [ExportState.PENDING]
        self.stored_object: StoredObjectRef | None = None

    @property
    def stage(self) -> ExportStage:
        """Stage in flight (or last entered, once failed)."""
        for state in reversed(self.history):
            if state in _STATE_TO_STAGE:
                return _STATE_TO_STAGE[state]
        return ExportStage.BUILDING

    def advance(self, new_state: ExportState) -> None:
        if new_state not in VALID_TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"Cannot move export from {self.state.value} to {new_state.value}")
        logger.debug("[%s] %s -> %s", self.request_id, self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)


class ExportOrchestrator:
    def __init__(
        self,
        builder: DocumentBuilder,
        uploader: UploadManager,
        broker: LinkBroker,
        overall_timeout: float = 60.0,
    ) -> None:
        self.builder = builder
        self.uploader = uploader
        self.broker = broker
        self.overall_timeout = overall_timeout

    @classmethod
    def from_config(cls, config: ExportConfig, record_store: RecordStore, storage: StorageClient) -> ExportOrchestrator:
        return cls(
            builder=DocumentBuilder(record_store, key_prefix=config.key_prefix, template_path=config.template_path),
            uploader=UploadManager(
                storage,
                max_attempts=config.max_upload_attempts,
                backoff_initial=config.upload_backoff_initial,
                backoff_max=config.upload_backoff_max,
                max_artifact_bytes=config.max_artifact_bytes,
            ),
            broker=LinkBroker(
                storage,
                default_ttl=config.default_link_ttl,
                min_ttl=config.min_link_ttl,
                max_ttl=config.max_link_ttl,
                public_base_url=config.public_base_url,
            ),
            overall_timeout=config.overall_timeout,
        )

    async def export_record(self, record_id: str, ttl: int | None = None, request_id: str | None = None) -> ExportOutcome:
        return await self.export(ExportRequest(record_id=record_id), ttl=ttl, request_id=request_id)

    async def export(
        self,
        request: ExportRequest,
        ttl: int | None = None,
        request_id: str | None = None,
    ) -> ExportOutcome:
        rid = request_id or str(uuid4())
        run = ExportRun(rid)
        deadline = request.timeout_seconds or self.overall_timeout
        logger.info("[%s] Export of record %s started (deadline %.1fs)", rid, request.record_id, deadline)

        timeout_cm = asyncio.timeout(deadline)
        try:
            async with timeout_cm:
                link = await self._run_stages(run, request, ttl)
        except TimeoutError as e:
            if not timeout_cm.expired():
                return self._fail(run, request, self._unexpected_failure(run.stage, e))
            timeout_err = ExportTimeoutError(run.stage, deadline)
            logger.error("[%s] %s", rid, timeout_err.message)
            return self._fail(run, request, self._failure_from(run.stage, timeout_err))
        except ExportError as e:
            logger.error("[%s] Export failed during %s: %s: %s", rid, run.stage.value, e.kind.value, e.message)
            return self._fail(run, request, self._failure_from(run.stage, e))
        except InvalidTransitionError:
            raise
        except Exception as e:
            logger.exception("[%s] Unexpected error during %s", rid, run.stage.value)
            return self._fail(run, request, self._unexpected_failure(run.stage, e))

        logger.info("[%s] Export of record %s succeeded: %s", rid, request.record_id, link.key)
        if run.stored_object is None:
            raise RuntimeError(f"Export {rid} succeeded without an acknowledged upload")
        return ExportOutcome.success(request, link, run.stored_object, list(run.history))

    async def _run_stages(self, run: ExportRun, request: ExportRequest, ttl: int | None) -> DeliveryLink:
        rid = run.request_id

        run.advance(ExportState.BUILDING)
        artifact = await self.builder.build(request, rid)
        filename = artifact.filename

        run.advance(ExportState.UPLOADING)
        try:
            run.stored_object = await self.uploader.upload(artifact, rid)
        finally:
            # Release the payload as soon as the upload settles
            del artifact

        run.advance(ExportState.LINK_ISSUING)
        link = await self.broker.issue_link(run.stored_object, ttl=ttl, filename=filename, request_id=rid)

        run.advance(ExportState.SUCCEEDED)
        return link

    def _fail(self, run: ExportRun, request: ExportRequest, failure: ExportFailure) -> ExportOutcome:
        run.advance(ExportState.FAILED)
        return ExportOutcome.failed(request, failure, list(run.history), stored_object=run.stored_object)

    @staticmethod
    def _failure_from(stage: ExportStage, err: ExportError) -> ExportFailure:
        if err.kind is ErrorKind.RENDER_FAILURE:
            # Rendering details stay in the logs
            message = "The document could not be generated"
        else:
            message = err.message
        cause = err.__cause__
        attempts = None
        if isinstance(err, UploadExhaustedError):
            attempts = err.attempts
            cause = err.last_cause
        return ExportFailure(
            kind=err.kind,
            stage=stage,
            message=message,
            cause=str(cause) if cause is not None else None,
            attempts=attempts,
            retryable=err.retryable,
        )

    @staticmethod
    def _unexpected_failure(stage: ExportStage, err: BaseException) -> ExportFailure:
        return ExportFailure(
            kind=_UNEXPECTED_KIND[stage],
            stage=stage,
            message=f"Unexpected error during {stage.value}",
            cause=repr(err),
        )
