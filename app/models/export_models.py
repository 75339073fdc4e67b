from datetime import date
from datetime import datetime
from enum import Enum

from pydantic import BaseModel
from pydantic import Field
from pydantic import model_validator

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class ExportStage(str, Enum):
    BUILDING = "Building"
    UPLOADING = "Uploading"
    LINK_ISSUING = "LinkIssuing"


class ExportState(str, Enum):
    PENDING = "Pending"
    BUILDING = "Building"
    UPLOADING = "Uploading"
    LINK_ISSUING = "LinkIssuing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    RENDER_FAILURE = "RenderFailure"
    UPLOAD_EXHAUSTED = "UploadExhausted"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    AUTH_FAILURE = "AuthFailure"
    SIGNING_FAILURE = "SigningFailure"
    TIMEOUT = "Timeout"


class AttachmentInfo(BaseModel):
    file_name: str
    file_type: str | None = None
    file_size: int | None = None


class SupervisionLog(BaseModel):
    """A daily supervision log entry as read from the record store."""

    id: str
    project_name: str | None = None
    project_code: str | None = None
    work_name: str | None = None
    work_code: str | None = None
    log_date: date | None = None
    weather: str | None = None
    project_dynamics: str | None = None
    supervision_work: str | None = None
    safety_work: str | None = None
    recorder_name: str | None = None
    recorder_date: date | None = None
    reviewer_name: str | None = None
    reviewer_date: date | None = None
    user_name: str | None = None
    attachments: list[AttachmentInfo] = Field(default_factory=list)


class ExportRequest(BaseModel):
    """Identifies the record to export. Immutable once created."""

    model_config = {"frozen": True}

    record_id: str = Field(..., pattern=r"^[A-Za-z0-9_-]{1,64}$")
    format: str = Field(default="docx", pattern=r"^docx$")
    timeout_seconds: float | None = Field(default=None, gt=0)


class DocumentArtifact(BaseModel):
    """Rendered document bytes plus the deterministic key they are stored under."""

    model_config = {"frozen": True}

    key: str
    content: bytes = Field(repr=False)
    size: int
    checksum: str
    filename: str
    content_type: str = DOCX_MEDIA_TYPE


class WriteAck(BaseModel):
    """What the storage platform reports back for an acknowledged write."""

    model_config = {"frozen": True}

    key: str
    etag: str | None = None
    version_id: str | None = None


class StoredObjectRef(BaseModel):
    model_config = {"frozen": True}

    key: str
    checksum: str
    size: int
    etag: str | None = None
    version_id: str | None = None
    uploaded_at: datetime

    @classmethod
    def from_ack(cls, ack: WriteAck, artifact: DocumentArtifact, uploaded_at: datetime) -> "StoredObjectRef":
        return cls(
            key=ack.key,
            checksum=artifact.checksum,
            size=artifact.size,
            etag=ack.etag,
            version_id=ack.version_id,
            uploaded_at=uploaded_at,
        )


class DeliveryLink(BaseModel):
    model_config = {"frozen": True}

    url: str
    key: str
    checksum: str
    expires_at: datetime | None = None


class ExportFailure(BaseModel):
    kind: ErrorKind
    stage: ExportStage
    message: str
    cause: str | None = None
    attempts: int | None = None
    retryable: bool = False


class ExportOutcome(BaseModel):
    """Result of one export invocation: exactly one of ``link`` and ``failure`` is set."""

    request: ExportRequest
    state: ExportState
    link: DeliveryLink | None = None
    failure: ExportFailure | None = None
    stored_object: StoredObjectRef | None = None
    history: list[ExportState] = Field(default_factory=list)

    @model_validator(mode="after")
    def _exactly_one_result(self) -> "ExportOutcome":
        if (self.link is None) == (self.failure is None):
            raise ValueError("ExportOutcome needs exactly one of link or failure")
        if self.link is not None and self.state is not ExportState.SUCCEEDED:
            raise ValueError("A link is only returned from a succeeded export")
        if self.failure is not None and self.state is not ExportState.FAILED:
            raise ValueError("A failure is only returned from a failed export")
        return self

    @property
    def ok(self) -> bool:
        return self.link is not None

    @classmethod
    def success(
        cls,
        request: ExportRequest,
        link: DeliveryLink,
        stored_object: StoredObjectRef,
        history: list[ExportState],
    ) -> "ExportOutcome":
        return cls(
            request=request,
            state=ExportState.SUCCEEDED,
            link=link,
            stored_object=stored_object,
            history=history,
        )

    @classmethod
    def failed(
        cls,
        request: ExportRequest,
        failure: ExportFailure,
        history: list[ExportState],
        stored_object: StoredObjectRef | None = None,
    ) -> "ExportOutcome":
        return cls(
            request=request,
            state=ExportState.FAILED,
            failure=failure,
            stored_object=stored_object,
            history=history,
        )
