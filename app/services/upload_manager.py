import asyncio
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from datetime import UTC
from datetime import datetime

from tenacity import AsyncRetrying
from tenacity import RetryCallState
from tenacity import RetryError
from tenacity import retry_if_exception_type
from tenacity import stop_after_attempt
from tenacity import wait_exponential_jitter

from app.core.exceptions import ExportError
from app.core.exceptions import PayloadTooLargeError
from app.core.exceptions import UploadExhaustedError
from app.core.exceptions import UploadTransientError
from app.models.export_models import DocumentArtifact
from app.models.export_models import StoredObjectRef
from app.services.storage.s3_service import StorageClient
from app.services.storage.s3_service import StorageError

logger = logging.getLogger(__name__)


class UploadManager:
    """Writes artifacts to object storage, retrying transient failures only.

    Every attempt re-sends the complete artifact under the same key, so a
    retried upload overwrites instead of duplicating. Auth failures and
    oversized payloads are surfaced on the first attempt.
    """

    def __init__(
        self,
        storage: StorageClient,
        max_attempts: int = 3,
        backoff_initial: float = 0.5,
        backoff_max: float = 8.0,
        max_artifact_bytes: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.storage = storage
        self.max_attempts = max_attempts
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.max_artifact_bytes = max_artifact_bytes
        self._sleep = sleep

    def _before_sleep(self, request_id: str, key: str) -> Callable[[RetryCallState], None]:
        def _log(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "[%s] Upload of %s failed on attempt %d/%d (%s); retrying in %.2fs",
                request_id,
                key,
                retry_state.attempt_number,
                self.max_attempts,
                exc,
                delay,
            )

        return _log

    async def upload(self, artifact: DocumentArtifact, request_id: str = "-") -> StoredObjectRef:
        if self.max_artifact_bytes is not None and artifact.size > self.max_artifact_bytes:
            raise PayloadTooLargeError(f"Document is {artifact.size} bytes, limit is {self.max_artifact_bytes}")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(multiplier=self.backoff_initial, max=self.backoff_max, jitter=self.backoff_initial),
            retry=retry_if_exception_type(UploadTransientError),
            before_sleep=self._before_sleep(request_id, artifact.key),
            sleep=self._sleep,
            reraise=False,
        )

        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    logger.info("[%s] Uploading %s (attempt %d/%d)", request_id, artifact.key, attempts, self.max_attempts)
                    ack = await asyncio.to_thread(
                        self.storage.write,
                        artifact.key,
                        artifact.content,
                        artifact.content_type,
                        artifact.checksum,
                    )
        except RetryError as e:
            last_cause = e.last_attempt.exception()
            logger.error("[%s] Upload of %s exhausted %d attempts: %s", request_id, artifact.key, attempts, last_cause)
            raise UploadExhaustedError(attempts=attempts, last_cause=last_cause) from last_cause
        except StorageError as e:
            # Unclassified storage errors are not retried
            logger.error("[%s] Upload of %s rejected by storage: %s", request_id, artifact.key, e)
            raise UploadExhaustedError(attempts=attempts, last_cause=e) from e
        except ExportError:
            raise
        except Exception as e:
            # Unknown client faults (e.g. botocore parameter errors) are not retried either
            logger.exception("[%s] Unexpected error uploading %s on attempt %d", request_id, artifact.key, attempts)
            raise UploadExhaustedError(attempts=attempts, last_cause=e) from e

        logger.info("[%s] Upload of %s acknowledged after %d attempt(s) (etag %s)", request_id, ack.key, attempts, ack.etag)
        return StoredObjectRef.from_ack(ack, artifact, uploaded_at=datetime.now(UTC))
