"""Read access to supervision log records.

The production database lives outside this service; the pipeline only needs a
``get(record_id)`` lookup, declared here as a protocol.
"""

import json
import logging
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from app.models.export_models import SupervisionLog

logger = logging.getLogger(__name__)


class RecordStoreError(Exception):
    """Raised when a record exists but cannot be read or parsed."""


class RecordStore(Protocol):
    def get(self, record_id: str) -> SupervisionLog | None: ...


class InMemoryRecordStore:
    def __init__(self, records: list[SupervisionLog] | None = None) -> None:
        self._records: dict[str, SupervisionLog] = {r.id: r for r in records or []}

    def add(self, record: SupervisionLog) -> None:
        self._records[record.id] = record

    def get(self, record_id: str) -> SupervisionLog | None:
        return self._records.get(record_id)


class JsonRecordStore:
    """Reads ``<records_dir>/<record_id>.json`` files."""

    def __init__(self, records_dir: Path) -> None:
        self.records_dir = Path(records_dir)

    def get(self, record_id: str) -> SupervisionLog | None:
        path = self.records_dir / f"{record_id}.json"
        if not path.is_file():
            logger.info("Record %s not found in %s", record_id, self.records_dir)
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            data.setdefault("id", record_id)
            return SupervisionLog.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Failed to load record %s from %s: %s", record_id, path, e)
            raise RecordStoreError(f"Record {record_id} is unreadable") from e
