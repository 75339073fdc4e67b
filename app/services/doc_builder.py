import asyncio
import hashlib
import io
import logging
import zipfile
from datetime import date
from datetime import datetime
from datetime import time
from pathlib import Path

from docx import Document
from docx.document import Document as DocxDocument
from docx.shared import Pt
from docxtpl import DocxTemplate
from jinja2 import Environment
from jinja2 import StrictUndefined
from jinja2 import UndefinedError

from app.core.exceptions import NotFoundError
from app.core.exceptions import RenderFailureError
from app.models.export_models import DOCX_MEDIA_TYPE
from app.models.export_models import DocumentArtifact
from app.models.export_models import ExportRequest
from app.models.export_models import SupervisionLog
from app.services.records import RecordStore
from app.services.records import RecordStoreError

# Configure module logger
logger = logging.getLogger(__name__)


# Maps the DOCX template tags (keys) to SupervisionLog fields (values).
TEMPLATE_TAG_TO_RECORD_FIELD: dict[str, str] = {
    "PROJECTNAME": "project_name",
    "PROJECTCODE": "project_code",
    "WORKNAME": "work_name",
    "WORKCODE": "work_code",
    "LOGDATE": "log_date",
    "WEATHER": "weather",
    "PROJECTDYNAMICS": "project_dynamics",
    "SUPERVISIONWORK": "supervision_work",
    "SAFETYWORK": "safety_work",
    "RECORDER": "recorder_name",
    "RECORDERDATE": "recorder_date",
    "REVIEWER": "reviewer_name",
    "REVIEWERDATE": "reviewer_date",
}

DOCUMENT_TITLE = "Supervision Log"

# Zip entries get a fixed timestamp so identical records yield identical bytes.
_FIXED_ZIP_TIME = (1980, 1, 1, 0, 0, 0)
_FALLBACK_DOC_DATE = date(2000, 1, 1)


def storage_key_for(record_id: str, prefix: str = "exports/") -> str:
    """Deterministic storage key: depends on nothing but the record id."""
    return f"{prefix}{record_id}.docx"


def _text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _template_context(record: SupervisionLog) -> dict[str, str]:
    data = record.model_dump()
    mapping = {tag: _text(data.get(field)) for tag, field in TEMPLATE_TAG_TO_RECORD_FIELD.items()}
    mapping["ATTACHMENTS"] = "\n".join(a.file_name for a in record.attachments)
    return mapping


def _pin_core_properties(doc: DocxDocument, record: SupervisionLog) -> None:
    stamp = datetime.combine(record.log_date or _FALLBACK_DOC_DATE, time())
    props = doc.core_properties
    props.title = f"{DOCUMENT_TITLE} {_text(record.log_date)}".strip()
    props.author = record.recorder_name or ""
    props.last_modified_by = record.recorder_name or ""
    props.created = stamp
    props.modified = stamp
    props.revision = 1


def _add_section(doc: DocxDocument, heading: str, body: str | None) -> None:
    doc.add_heading(heading, level=2)
    lines = [ln.strip() for ln in (body or "").splitlines() if ln.strip()]
    if not lines:
        doc.add_paragraph("-")
        return
    for line in lines:
        doc.add_paragraph(line)


def _layout_document(record: SupervisionLog) -> DocxDocument:
    """Lay out the supervision log without a template."""
    doc = Document()
    doc.styles["Normal"].font.size = Pt(11)
    doc.add_heading(DOCUMENT_TITLE, level=1)

    table = doc.add_table(rows=0, cols=2)
    table.style = "Table Grid"
    for label, value in (
        ("Project", record.project_name),
        ("Project code", record.project_code),
        ("Work", record.work_name),
        ("Work code", record.work_code),
        ("Date", record.log_date),
        ("Weather", record.weather),
    ):
        cells = table.add_row().cells
        cells[0].text = label
        cells[1].text = _text(value)

    _add_section(doc, "Project dynamics", record.project_dynamics)
    _add_section(doc, "Supervision work", record.supervision_work)
    _add_section(doc, "Safety work", record.safety_work)

    if record.attachments:
        doc.add_heading("Attachments", level=2)
        for att in record.attachments:
            suffix = f" ({att.file_size} bytes)" if att.file_size is not None else ""
            doc.add_paragraph(f"{att.file_name}{suffix}", style="List Bullet")

    sign = doc.add_table(rows=2, cols=2)
    sign.style = "Table Grid"
    sign.cell(0, 0).text = f"Recorder: {_text(record.recorder_name)}"
    sign.cell(0, 1).text = f"Date: {_text(record.recorder_date)}"
    sign.cell(1, 0).text = f"Reviewer: {_text(record.reviewer_name)}"
    sign.cell(1, 1).text = f"Date: {_text(record.reviewer_date)}"
    return doc


def normalize_package(raw: bytes) -> bytes:
    """Rewrite a DOCX zip container with fixed entry timestamps, keeping entry order."""
    with zipfile.ZipFile(io.BytesIO(raw)) as src, io.BytesIO() as out:
        with zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as dst:
            for info in src.infolist():
                entry = zipfile.ZipInfo(info.filename, date_time=_FIXED_ZIP_TIME)
                entry.compress_type = zipfile.ZIP_DEFLATED
                entry.external_attr = 0o644 << 16
                dst.writestr(entry, src.read(info.filename))
        return out.getvalue()


class DocumentBuilder:
    """Renders supervision logs into DOCX artifacts."""

    def __init__(
        self,
        record_store: RecordStore,
        key_prefix: str = "exports/",
        template_path: Path | None = None,
    ) -> None:
        self.record_store = record_store
        self.key_prefix = key_prefix
        self.template_path = template_path

    async def build(self, request: ExportRequest, request_id: str = "-") -> DocumentArtifact:
        try:
            record = await asyncio.to_thread(self.record_store.get, request.record_id)
        except RecordStoreError as e:
            raise RenderFailureError(str(e)) from e
        if record is None:
            raise NotFoundError(f"Supervision log {request.record_id} does not exist")

        content = await asyncio.to_thread(self._render, record, request_id)
        artifact = DocumentArtifact(
            key=storage_key_for(request.record_id, self.key_prefix),
            content=content,
            size=len(content),
            checksum=hashlib.sha256(content).hexdigest(),
            filename=f"supervision_log_{_text(record.log_date) or record.id}.docx",
            content_type=DOCX_MEDIA_TYPE,
        )
        logger.info("[%s] Built %s (%d bytes, sha256 %s)", request_id, artifact.key, artifact.size, artifact.checksum[:12])
        return artifact

    def _render(self, record: SupervisionLog, request_id: str) -> bytes:
        source = str(self.template_path) if self.template_path else "built-in layout"
        logger.info("[%s] Rendering supervision log %s from %s", request_id, record.id, source)
        try:
            target: DocxTemplate | DocxDocument
            if self.template_path:
                target = self._render_template(record, request_id)
                _pin_core_properties(target.docx, record)
            else:
                target = _layout_document(record)
                _pin_core_properties(target, record)
            with io.BytesIO() as bio:
                target.save(bio)
                raw = bio.getvalue()
            return normalize_package(raw)
        except RenderFailureError:
            raise
        except Exception as err:
            logger.exception("[%s] Document rendering failed for record %s", request_id, record.id)
            raise RenderFailureError("unexpected rendering error") from err

    def _render_template(self, record: SupervisionLog, request_id: str) -> DocxTemplate:
        tpl = DocxTemplate(str(self.template_path))
        try:
            tpl.render(_template_context(record), jinja_env=Environment(undefined=StrictUndefined), autoescape=True)
        except UndefinedError as e:
            # The Word template contains a tag missing from TEMPLATE_TAG_TO_RECORD_FIELD.
            logger.error("[%s] Undefined Jinja tag in template: %s", request_id, e)
            raise RenderFailureError(f"Undefined template tag: {e}") from e
        return tpl
