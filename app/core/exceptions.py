"""Core custom exceptions for the export pipeline.

Every pipeline error carries the stage that raised it and a stable kind, so the
orchestrator can package it into an ``ExportOutcome`` without inspecting
transport details.
"""

from app.models.export_models import ErrorKind
from app.models.export_models import ExportStage


class ConfigurationError(Exception):
    """Exception for configuration-related errors (e.g., missing bucket, invalid settings)."""


class InvalidTransitionError(RuntimeError):
    """Raised when the export state machine is asked to move backwards or out of a terminal state."""


class ExportError(Exception):
    """Base exception for stage failures."""

    kind: ErrorKind
    stage: ExportStage
    retryable: bool = False

    def __init__(self, message: str, *, stage: ExportStage | None = None) -> None:
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage


class NotFoundError(ExportError):
    kind = ErrorKind.NOT_FOUND
    stage = ExportStage.BUILDING


class RenderFailureError(ExportError):
    kind = ErrorKind.RENDER_FAILURE
    stage = ExportStage.BUILDING


class UploadTransientError(ExportError):
    """Retryable storage failure. Never leaves the Upload Manager."""

    kind = ErrorKind.UPLOAD_EXHAUSTED
    stage = ExportStage.UPLOADING
    retryable = True


class UploadExhaustedError(ExportError):
    kind = ErrorKind.UPLOAD_EXHAUSTED
    stage = ExportStage.UPLOADING
    retryable = True

    def __init__(self, attempts: int, last_cause: BaseException | None) -> None:
        super().__init__(f"Upload failed after {attempts} attempt(s): {last_cause}")
        self.attempts = attempts
        self.last_cause = last_cause


class PayloadTooLargeError(ExportError):
    kind = ErrorKind.PAYLOAD_TOO_LARGE
    stage = ExportStage.UPLOADING


class AuthFailureError(ExportError):
    """Credentials rejected by the storage platform; callers refresh them out-of-band."""

    kind = ErrorKind.AUTH_FAILURE
    stage = ExportStage.UPLOADING


class SigningFailureError(ExportError):
    kind = ErrorKind.SIGNING_FAILURE
    stage = ExportStage.LINK_ISSUING


class ExportTimeoutError(ExportError):
    kind = ErrorKind.TIMEOUT
    retryable = True

    def __init__(self, stage: ExportStage, timeout: float) -> None:
        super().__init__(f"Export exceeded {timeout:g}s deadline during {stage.value}", stage=stage)
        self.timeout = timeout
