from __future__ import annotations

import datetime as _dt
import uuid
from threading import RLock
from typing import Callable, Dict, List, Optional

from .contracts import DischargeRecord


class RecordNotFoundError(KeyError):
    """Raised when a discharge record id is unknown to the store."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Record not found"


def _utc_now_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def new_record_id() -> str:
    return f"dsc_{uuid.uuid4().hex[:12]}"


class InMemoryRecordStore:
    """Read-modify-write storage collaborator; last write wins."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._records: Dict[str, DischargeRecord] = {}

    def create(self, record: DischargeRecord) -> DischargeRecord:
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Duplicate record id: {record.id}")
            self._records[record.id] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    def find_by_id(self, record_id: str) -> DischargeRecord:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFoundError(f"Unknown record id: {record_id}")
            return record.model_copy(deep=True)

    def save(self, record: DischargeRecord) -> DischargeRecord:
        with self._lock:
            if record.id not in self._records:
                raise RecordNotFoundError(f"Unknown record id: {record.id}")
            stored = record.model_copy(deep=True)
            stored.updated_at = _utc_now_iso()
            self._records[record.id] = stored
            return stored.model_copy(deep=True)

    def list(self, predicate: Optional[Callable[[DischargeRecord], bool]] = None) -> List[DischargeRecord]:
        with self._lock:
            items = [r.model_copy(deep=True) for r in self._records.values()]
        if predicate is not None:
            items = [r for r in items if predicate(r)]
        items.sort(key=lambda r: r.updated_at, reverse=True)
        return items

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
