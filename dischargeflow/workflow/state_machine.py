from __future__ import annotations

"""
Discharge record workflow state machine.

Design intent:
- Keep the legal transition table in one place and reject anything else untouched.
- Apply each transition's side effects (timestamps, snapshots, notification) together.
- Run the enhancement pipeline without holding the record, then re-check before writing.
"""

import datetime as _dt
import logging
from typing import Any, Iterable, Mapping, Optional, Union

from dischargeflow.enhance.generation import TextGenerator
from dischargeflow.enhance.pipeline import EnhancementResult, EnhancementSettings, enhance as run_enhancement
from dischargeflow.internal_core.audit import log_transition
from dischargeflow.internal_core.contracts import (
    AIMeta,
    CLINICAL_FIELDS,
    IDENTITY_FIELDS,
    STATUSES,
    DischargeRecord,
    DischargeStatus,
    RecordCreateRequest,
    RecordUpdateRequest,
)
from dischargeflow.internal_core.record_store import InMemoryRecordStore, new_record_id
from dischargeflow.workflow.notify import Notifier
from dischargeflow.workflow.text_chain import (
    APPROVAL_CHAIN,
    AUTHOR_EDIT_DEFAULT_CHAIN,
    CHIEF_EDIT_DEFAULT_CHAIN,
    resolve_text,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "DRAFT": frozenset({"AI_ENHANCED", "DRAFT"}),
    "AI_ENHANCED": frozenset({"PENDING_APPROVAL", "DRAFT"}),
    "PENDING_APPROVAL": frozenset({"CHIEF_EDITED", "APPROVED", "REJECTED"}),
    "CHIEF_EDITED": frozenset({"APPROVED", "REJECTED"}),
    "REJECTED": frozenset({"DRAFT"}),
    "APPROVED": frozenset(),
}

EDITABLE_STATUSES: frozenset[str] = frozenset({"DRAFT", "AI_ENHANCED"})
PENDING_STATUSES: tuple[str, ...] = ("PENDING_APPROVAL", "CHIEF_EDITED")
EDITOR_CHAINS: dict[str, tuple[str, ...]] = {
    "author": AUTHOR_EDIT_DEFAULT_CHAIN,
    "chief": CHIEF_EDIT_DEFAULT_CHAIN,
}


class InvalidTransitionError(ValueError):
    """Raised when the requested status is not reachable from the current one."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid status transition: {current} -> {target}")
        self.current = current
        self.target = target


class InvalidStatusError(ValueError):
    """Raised for a status name outside the known set."""


class RecordLockedError(ValueError):
    """Raised when clinical fields are edited outside DRAFT / AI_ENHANCED."""


class ImmutableFieldError(ValueError):
    """Raised when an update tries to change record identity."""


class MissingIdentityError(ValueError):
    """Raised when a create request lacks uhid, ipid, or mobile."""


def normalize_status(value: str) -> DischargeStatus:
    status = str(value or "").strip().upper()
    if status not in STATUSES:
        raise InvalidStatusError(f"Unknown status: {value!r}")
    return status  # type: ignore[return-value]


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _utc_now_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class DischargeWorkflow:
    def __init__(
        self,
        store: InMemoryRecordStore,
        *,
        generator: Optional[TextGenerator] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[EnhancementSettings] = None,
    ) -> None:
        self.store = store
        self.generator = generator
        self.notifier = notifier
        self.settings = settings or EnhancementSettings()

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _require_transition(record: DischargeRecord, target: str) -> None:
        if not can_transition(record.status, target):
            raise InvalidTransitionError(record.status, target)

    def _move(self, record: DischargeRecord, target: DischargeStatus, code: str, detail: str = "") -> None:
        log_transition(record, from_status=record.status, to_status=target, code=code, detail=detail)
        record.status = target

    # -- commands ----------------------------------------------------------

    def create(self, payload: Union[RecordCreateRequest, Mapping[str, Any]]) -> DischargeRecord:
        request = payload if isinstance(payload, RecordCreateRequest) else RecordCreateRequest.model_validate(payload)
        identity = {name: (getattr(request, name) or "").strip() for name in IDENTITY_FIELDS}
        missing = [name for name, value in identity.items() if not value]
        if missing:
            raise MissingIdentityError(f"Missing required identity fields: {', '.join(missing)}")

        now = _utc_now_iso()
        record = DischargeRecord(
            id=new_record_id(),
            **identity,
            **{name: getattr(request, name) for name in CLINICAL_FIELDS},
            created_at=now,
            updated_at=now,
        )
        log_transition(record, from_status=None, to_status="DRAFT", code="CREATED")
        created = self.store.create(record)
        logger.info("discharge record created id=%s", created.id)
        return created

    def get(self, record_id: str) -> DischargeRecord:
        return self.store.find_by_id(record_id)

    def update(self, record_id: str, payload: Union[RecordUpdateRequest, Mapping[str, Any]]) -> DischargeRecord:
        request = payload if isinstance(payload, RecordUpdateRequest) else RecordUpdateRequest.model_validate(payload)
        record = self.store.find_by_id(record_id)

        for name in IDENTITY_FIELDS:
            if name in request.model_fields_set:
                incoming = (getattr(request, name) or "").strip()
                if incoming != getattr(record, name):
                    raise ImmutableFieldError(f"Field '{name}' cannot be changed after creation.")

        changed = [name for name in CLINICAL_FIELDS if name in request.model_fields_set]
        if not changed:
            return record
        if record.status not in EDITABLE_STATUSES:
            raise RecordLockedError(f"Clinical fields are read-only in status {record.status}.")

        for name in changed:
            value = getattr(request, name)
            setattr(record, name, list(value) if isinstance(value, list) else value)
        log_transition(
            record,
            from_status=record.status,
            to_status=record.status,
            code="FIELDS_UPDATED",
            detail=",".join(changed),
        )
        return self.store.save(record)

    async def enhance(self, record_id: str) -> DischargeRecord:
        record = self.store.find_by_id(record_id)
        self._require_transition(record, "AI_ENHANCED")

        result = await run_enhancement(record, generator=self.generator, settings=self.settings)

        # The record may have moved while the generator was running.
        current = self.store.find_by_id(record_id)
        self._require_transition(current, "AI_ENHANCED")
        self._apply_enhancement(current, result)
        self._move(current, "AI_ENHANCED", "ENHANCED", detail=f"engine={result.engine} strategy={result.strategy}")
        saved = self.store.save(current)
        logger.info(
            "discharge record enhanced id=%s engine=%s strategy=%s attempts=%d warnings=%d",
            saved.id,
            result.engine,
            result.strategy,
            result.attempts,
            len(result.warnings),
        )
        return saved

    @staticmethod
    def _apply_enhancement(record: DischargeRecord, result: EnhancementResult) -> None:
        record.ai_enhanced_text = result.narrative_text
        record.rendered_output = result.rendered_output
        record.structured_document = result.structured_document
        record.missing_fields = list(result.missing_fields)
        record.warnings = list(result.warnings)
        record.ai_meta = AIMeta(
            engine=result.engine,
            strategy=result.strategy,
            model=result.model,
            prompt_version=result.prompt_version,
            generated_at=result.generated_at,
            attempts=result.attempts,
        )

    def submit(self, record_id: str, doctor_edited_text: Optional[str] = None) -> DischargeRecord:
        record = self.store.find_by_id(record_id)
        self._require_transition(record, "PENDING_APPROVAL")
        edited = _clean_optional(doctor_edited_text)
        if edited is not None:
            record.doctor_edited_text = doctor_edited_text
        record.submitted_at = _utc_now_iso()
        self._move(record, "PENDING_APPROVAL", "SUBMITTED", detail="author_override" if edited else "")
        return self.store.save(record)

    def chief_edit(self, record_id: str, chief_edited_text: Optional[str] = None) -> DischargeRecord:
        record = self.store.find_by_id(record_id)
        self._require_transition(record, "CHIEF_EDITED")
        edited = _clean_optional(chief_edited_text)
        record.chief_edited_text = chief_edited_text if edited is not None else resolve_text(record, CHIEF_EDIT_DEFAULT_CHAIN)
        record.chief_edited_at = _utc_now_iso()
        self._move(record, "CHIEF_EDITED", "CHIEF_EDITED")
        return self.store.save(record)

    def approve(self, record_id: str) -> DischargeRecord:
        record = self.store.find_by_id(record_id)
        self._require_transition(record, "APPROVED")
        record.final_verified_text = resolve_text(record, APPROVAL_CHAIN)
        record.approved_at = _utc_now_iso()
        self._move(record, "APPROVED", "APPROVED")
        saved = self.store.save(record)
        self._notify_approved(saved)
        return saved

    def _notify_approved(self, record: DischargeRecord) -> None:
        if self.notifier is None:
            return
        text = record.final_verified_text or ""
        try:
            self.notifier.send(record.mobile, text)
        except Exception as exc:
            # Delivery is best-effort; the approval stands.
            logger.warning("discharge notification failed id=%s: %s", record.id, exc)

    def reject(self, record_id: str, remarks: Optional[str] = "") -> DischargeRecord:
        record = self.store.find_by_id(record_id)
        self._require_transition(record, "REJECTED")
        record.rejected_at = _utc_now_iso()
        record.rejection_remarks = (remarks or "").strip()
        self._move(record, "REJECTED", "REJECTED")
        return self.store.save(record)

    def revert_to_draft(self, record_id: str) -> DischargeRecord:
        record = self.store.find_by_id(record_id)
        self._require_transition(record, "DRAFT")
        code = "SAVED_AS_DRAFT" if record.status == "DRAFT" else "REVERTED_TO_DRAFT"
        if record.status == "REJECTED":
            self._reset_review_pass(record)
        self._move(record, "DRAFT", code)
        return self.store.save(record)

    @staticmethod
    def _reset_review_pass(record: DischargeRecord) -> None:
        # Resubmission starts a new review pass; chief text from the rejected pass must not win approval.
        record.chief_edited_text = None
        record.chief_edited_at = None
        record.final_verified_text = None
        record.submitted_at = None

    async def transition(self, record_id: str, target: str, **payload: Any) -> DischargeRecord:
        """Generic dispatcher used by callers that address transitions by status name."""

        status = normalize_status(target)
        if status == "AI_ENHANCED":
            return await self.enhance(record_id)
        if status == "PENDING_APPROVAL":
            return self.submit(record_id, payload.get("doctor_edited_text"))
        if status == "CHIEF_EDITED":
            return self.chief_edit(record_id, payload.get("chief_edited_text"))
        if status == "APPROVED":
            return self.approve(record_id)
        if status == "REJECTED":
            return self.reject(record_id, payload.get("remarks") or "")
        return self.revert_to_draft(record_id)

    # -- queries -----------------------------------------------------------

    def list_records(
        self,
        *,
        statuses: Optional[Iterable[str]] = None,
        search: Optional[str] = None,
        department: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        date_field: str = "created_at",
    ) -> list[DischargeRecord]:
        """
        Filter records; newest update first.

        `search` is a case-insensitive substring over uhid, ipid, mobile and patient name;
        `department` a case-insensitive substring. `from_date` / `to_date` are inclusive
        YYYY-MM-DD bounds on `date_field`; records without that timestamp never match a bound.
        """

        wanted = {normalize_status(s) for s in statuses} if statuses else None
        needle = (search or "").strip().lower()
        dept = (department or "").strip().lower()
        start = (from_date or "").strip()
        end = (to_date or "").strip()

        def matches(record: DischargeRecord) -> bool:
            if wanted is not None and record.status not in wanted:
                return False
            if needle and not any(
                needle in (value or "").lower() for value in (record.uhid, record.ipid, record.mobile, record.patient_name)
            ):
                return False
            if dept and dept not in (record.department or "").lower():
                return False
            day = (getattr(record, date_field) or "")[:10]
            if start and (not day or day < start):
                return False
            if end and (not day or day > end):
                return False
            return True

        return self.store.list(matches)

    def list_pending(
        self,
        *,
        search: Optional[str] = None,
        department: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
    ) -> list[DischargeRecord]:
        records = self.list_records(
            statuses=PENDING_STATUSES,
            search=search,
            department=department,
            from_date=from_date,
            to_date=to_date,
        )
        # Stable sort keeps updated_at order among equal submission times.
        records.sort(key=lambda r: r.submitted_at or "", reverse=True)
        return records

    def list_verified(
        self,
        *,
        search: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
    ) -> list[DischargeRecord]:
        records = self.list_records(
            statuses=("APPROVED",),
            search=search,
            from_date=from_date,
            to_date=to_date,
            date_field="approved_at",
        )
        records.sort(key=lambda r: r.approved_at or "", reverse=True)
        return records

    def editor_text(self, record_id: str, role: str = "author") -> str:
        """Text an editor should start from: its own snapshot, else the prior stage's."""

        chain = EDITOR_CHAINS.get((role or "").strip().lower())
        if chain is None:
            raise ValueError(f"Unknown editor role: {role!r}")
        return resolve_text(self.store.find_by_id(record_id), chain) or ""
