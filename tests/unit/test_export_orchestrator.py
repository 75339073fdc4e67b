import asyncio

import pytest

from app.core.exceptions import AuthFailureError
from app.core.exceptions import InvalidTransitionError
from app.core.exceptions import SigningFailureError
from app.core.exceptions import UploadTransientError
from app.models.export_models import ErrorKind
from app.models.export_models import ExportRequest
from app.models.export_models import ExportStage
from app.models.export_models import ExportState
from app.services.export_orchestrator import ExportRun

FULL_PATH = [
    ExportState.PENDING,
    ExportState.BUILDING,
    ExportState.UPLOADING,
    ExportState.LINK_ISSUING,
    ExportState.SUCCEEDED,
]


@pytest.mark.asyncio
async def test_existing_record_exports_to_deterministic_key(make_orchestrator, storage):
    outcome = await make_orchestrator(storage).export(ExportRequest(record_id="42"))

    assert outcome.ok
    assert outcome.state is ExportState.SUCCEEDED
    assert outcome.failure is None
    assert "exports/42" in outcome.link.url
    assert outcome.link.key == "exports/42.docx"
    assert outcome.link.expires_at is not None
    assert outcome.history == FULL_PATH
    assert len(storage.attempts) == 1
    # The link points at an object whose checksum matches what was built
    assert outcome.link.checksum == storage.attempts[0]["checksum"]
    assert outcome.stored_object.checksum == outcome.link.checksum


@pytest.mark.asyncio
async def test_missing_record_fails_in_building(make_orchestrator, storage):
    outcome = await make_orchestrator(storage).export(ExportRequest(record_id="99"))

    assert not outcome.ok
    assert outcome.link is None
    assert outcome.state is ExportState.FAILED
    assert outcome.failure.kind is ErrorKind.NOT_FOUND
    assert outcome.failure.stage is ExportStage.BUILDING
    assert "99" in outcome.failure.message
    assert outcome.history == [ExportState.PENDING, ExportState.BUILDING, ExportState.FAILED]
    assert storage.attempts == []


@pytest.mark.asyncio
async def test_two_transient_failures_then_success(make_orchestrator, fake_storage_cls):
    storage = fake_storage_cls(failures=[UploadTransientError("503 ServiceUnavailable"), UploadTransientError("RequestTimeout")])
    outcome = await make_orchestrator(storage).export(ExportRequest(record_id="7"))

    assert outcome.ok
    assert len(storage.attempts) == 3
    assert len({a["checksum"] for a in storage.attempts}) == 1
    assert {a["key"] for a in storage.attempts} == {"exports/7.docx"}


@pytest.mark.asyncio
async def test_transient_failures_beyond_limit_exhaust(make_orchestrator, fake_storage_cls):
    storage = fake_storage_cls(failures=[UploadTransientError("SlowDown")] * 4)
    outcome = await make_orchestrator(storage, max_attempts=3).export(ExportRequest(record_id="42"))

    assert outcome.failure.kind is ErrorKind.UPLOAD_EXHAUSTED
    assert outcome.failure.stage is ExportStage.UPLOADING
    assert outcome.failure.attempts == 3
    assert "SlowDown" in outcome.failure.cause
    assert outcome.failure.retryable is True
    assert outcome.stored_object is None


@pytest.mark.asyncio
async def test_limit_minus_one_failures_succeeds(make_orchestrator, fake_storage_cls):
    storage = fake_storage_cls(failures=[UploadTransientError("x")] * 4)
    outcome = await make_orchestrator(storage, max_attempts=5).export(ExportRequest(record_id="42"))
    assert outcome.ok
    assert len(storage.attempts) == 5


@pytest.mark.asyncio
async def test_auth_failure_short_circuits(make_orchestrator, fake_storage_cls):
    storage = fake_storage_cls(failures=[AuthFailureError("InvalidAccessKeyId")])
    outcome = await make_orchestrator(storage).export(ExportRequest(record_id="42"))

    assert outcome.failure.kind is ErrorKind.AUTH_FAILURE
    assert outcome.failure.stage is ExportStage.UPLOADING
    assert outcome.failure.retryable is False
    assert len(storage.attempts) == 1


@pytest.mark.asyncio
async def test_signing_failure_is_tagged_link_issuing(make_orchestrator, fake_storage_cls):
    storage = fake_storage_cls(sign_error=SigningFailureError("no signing credentials"))
    outcome = await make_orchestrator(storage).export(ExportRequest(record_id="42"))

    assert outcome.failure.kind is ErrorKind.SIGNING_FAILURE
    assert outcome.failure.stage is ExportStage.LINK_ISSUING
    # The upload itself was acknowledged and is reported, but no link exists
    assert outcome.stored_object is not None
    assert outcome.link is None
    assert outcome.history[-2:] == [ExportState.LINK_ISSUING, ExportState.FAILED]


@pytest.mark.asyncio
async def test_slow_upload_times_out_in_uploading(make_orchestrator, fake_storage_cls):
    storage = fake_storage_cls(write_delay=1.5)
    outcome = await make_orchestrator(storage, overall_timeout=0.75).export(ExportRequest(record_id="42"))

    assert outcome.failure.kind is ErrorKind.TIMEOUT
    assert outcome.failure.stage is ExportStage.UPLOADING
    assert outcome.failure.retryable is True
    assert outcome.failure.message == "Export exceeded 0.75s deadline during Uploading"
    assert outcome.state is ExportState.FAILED
    assert outcome.link is None

    # Let the abandoned write finish: the outcome stays a failure
    await asyncio.sleep(1.6)
    assert storage.objects
    assert outcome.state is ExportState.FAILED
    assert outcome.link is None


@pytest.mark.asyncio
async def test_request_timeout_overrides_default(make_orchestrator, fake_storage_cls):
    storage = fake_storage_cls(write_delay=0.3)
    outcome = await make_orchestrator(storage, overall_timeout=30).export(
        ExportRequest(record_id="42", timeout_seconds=0.05)
    )
    assert outcome.failure.kind is ErrorKind.TIMEOUT
    await asyncio.sleep(0.35)


@pytest.mark.asyncio
async def test_repeated_export_is_idempotent(make_orchestrator, storage):
    orchestrator = make_orchestrator(storage)
    first = await orchestrator.export(ExportRequest(record_id="42"))
    second = await orchestrator.export(ExportRequest(record_id="42"))

    assert first.stored_object.key == second.stored_object.key
    assert first.stored_object.checksum == second.stored_object.checksum
    assert list(storage.objects) == ["exports/42.docx"]
    # Signed links may differ per call, the object does not
    assert first.link.url != second.link.url


@pytest.mark.asyncio
async def test_concurrent_exports_do_not_interfere(make_orchestrator, storage):
    orchestrator = make_orchestrator(storage)
    outcomes = await asyncio.gather(
        orchestrator.export(ExportRequest(record_id="42")),
        orchestrator.export(ExportRequest(record_id="7")),
        orchestrator.export(ExportRequest(record_id="99")),
    )
    assert [o.ok for o in outcomes] == [True, True, False]
    assert outcomes[0].link.key == "exports/42.docx"
    assert outcomes[1].link.key == "exports/7.docx"


@pytest.mark.asyncio
async def test_unexpected_builder_error_is_render_failure(make_orchestrator, storage, monkeypatch):
    orchestrator = make_orchestrator(storage)

    async def _explode(request, request_id="-"):
        raise KeyError("surprise")

    monkeypatch.setattr(orchestrator.builder, "build", _explode)
    outcome = await orchestrator.export(ExportRequest(record_id="42"))
    assert outcome.failure.kind is ErrorKind.RENDER_FAILURE
    assert outcome.failure.stage is ExportStage.BUILDING


@pytest.mark.asyncio
async def test_export_record_entry_point(make_orchestrator, storage):
    outcome = await make_orchestrator(storage).export_record("42", ttl=120)
    assert outcome.ok
    assert storage.signed == [("exports/42.docx", 120)]


@pytest.mark.asyncio
async def test_public_links_have_no_expiry(make_orchestrator, storage):
    outcome = await make_orchestrator(storage, public_base_url="https://files.example.com").export(
        ExportRequest(record_id="42")
    )
    assert outcome.link.url == "https://files.example.com/exports/42.docx"
    assert outcome.link.expires_at is None


@pytest.mark.asyncio
async def test_unexpected_storage_error_reports_attempts(make_orchestrator, fake_storage_cls):
    storage = fake_storage_cls(failures=[RuntimeError("Parameter validation failed")])
    outcome = await make_orchestrator(storage).export(ExportRequest(record_id="42"))

    assert outcome.failure.kind is ErrorKind.UPLOAD_EXHAUSTED
    assert outcome.failure.stage is ExportStage.UPLOADING
    assert outcome.failure.attempts == 1
    assert outcome.failure.retryable is True
    assert "Parameter validation failed" in outcome.failure.cause
    assert len(storage.attempts) == 1


def test_state_machine_only_moves_forward():
    run = ExportRun("req")
    run.advance(ExportState.BUILDING)
    run.advance(ExportState.UPLOADING)
    with pytest.raises(InvalidTransitionError):
        run.advance(ExportState.BUILDING)
    run.advance(ExportState.FAILED)
    with pytest.raises(InvalidTransitionError):
        run.advance(ExportState.SUCCEEDED)
    assert run.stage is ExportStage.UPLOADING


def test_state_machine_cannot_skip_stages():
    run = ExportRun("req")
    with pytest.raises(InvalidTransitionError):
        run.advance(ExportState.UPLOADING)
