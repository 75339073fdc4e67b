import hashlib
import threading
import time
from datetime import date

import pytest

from app.models.export_models import AttachmentInfo
from app.models.export_models import SupervisionLog
from app.models.export_models import WriteAck
from app.services.doc_builder import DocumentBuilder
from app.services.export_orchestrator import ExportOrchestrator
from app.services.link_broker import LinkBroker
from app.services.records import InMemoryRecordStore
from app.services.upload_manager import UploadManager


class FakeStorageClient:
    """In-memory StorageClient that records every write attempt.

    ``failures`` is consumed one entry per write: an exception instance is
    raised, ``None`` lets the write through. ``write_delay`` blocks the
    calling thread to simulate a slow platform.
    """

    def __init__(self, failures=None, write_delay: float = 0.0, sign_error: Exception | None = None):
        self.failures = list(failures or [])
        self.write_delay = write_delay
        self.sign_error = sign_error
        self.attempts: list[dict] = []
        self.objects: dict[str, bytes] = {}
        self.signed: list[tuple[str, int]] = []
        self._lock = threading.Lock()

    def write(self, key: str, data: bytes, content_type: str, checksum: str) -> WriteAck:
        with self._lock:
            self.attempts.append(
                {
                    "key": key,
                    "checksum": hashlib.sha256(data).hexdigest(),
                    "declared_checksum": checksum,
                    "content_type": content_type,
                }
            )
            failure = self.failures.pop(0) if self.failures else None
        if self.write_delay:
            time.sleep(self.write_delay)
        if failure is not None:
            raise failure
        with self._lock:
            self.objects[key] = data
            version = len(self.attempts)
        return WriteAck(key=key, etag=checksum[:32], version_id=f"v{version}")

    def sign(self, key: str, ttl: int, filename: str | None = None) -> str:
        if self.sign_error is not None:
            raise self.sign_error
        self.signed.append((key, ttl))
        return f"https://storage.example.com/{key}?X-Amz-Expires={ttl}&X-Amz-Signature={len(self.signed):04d}"


def make_log(record_id: str, **overrides) -> SupervisionLog:
    data = dict(
        id=record_id,
        project_name="North Bridge Rehabilitation",
        project_code="NB-2024",
        work_name="Pier foundations",
        work_code="W-07",
        log_date=date(2024, 5, 17),
        weather="Sunny, 24C",
        project_dynamics="Excavation of pier 3 completed.\nFormwork started on pier 4.",
        supervision_work="Checked rebar spacing on pier 4.",
        safety_work="Edge protection inspected.",
        recorder_name="L. Chen",
        recorder_date=date(2024, 5, 17),
        reviewer_name="M. Rossi",
        reviewer_date=date(2024, 5, 18),
        attachments=[AttachmentInfo(file_name="pier4.jpg", file_type="image/jpeg", file_size=20480)],
    )
    data.update(overrides)
    return SupervisionLog(**data)


@pytest.fixture
def record_store():
    return InMemoryRecordStore([make_log("42"), make_log("7", weather="Overcast")])


@pytest.fixture
def storage():
    return FakeStorageClient()


@pytest.fixture
def make_orchestrator(record_store):
    """Factory wiring the real stages around a fake storage client, with zero backoff."""

    def _make(storage, max_attempts: int = 3, overall_timeout: float = 10.0, public_base_url: str | None = None):
        return ExportOrchestrator(
            builder=DocumentBuilder(record_store, key_prefix="exports/"),
            uploader=UploadManager(storage, max_attempts=max_attempts, backoff_initial=0, backoff_max=0),
            broker=LinkBroker(storage, default_ttl=900, public_base_url=public_base_url),
            overall_timeout=overall_timeout,
        )

    return _make


@pytest.fixture
def log_factory():
    return make_log


@pytest.fixture
def fake_storage_cls():
    return FakeStorageClient
