from __future__ import annotations

"""
HTTP command surface for the discharge summary workflow.

Design intent:
- Map each endpoint 1:1 onto a workflow command or query.
- Keep routers thin; domain rules live in workflow/enhance/document modules.
- Translate domain errors into predictable 400/404 responses.
"""

import dataclasses
import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

from dischargeflow.document.legacy_parser import parse_legacy_text
from dischargeflow.document.render import LegacySource, StructuredSource, render_source
from dischargeflow.enhance.generation import build_generator
from dischargeflow.enhance.pipeline import EnhancementSettings
from dischargeflow.internal_core.config import DischargeConfig, load_config
from dischargeflow.internal_core.contracts import (
    ChiefEditRequest,
    DischargeRecord,
    RecordCreateRequest,
    RecordUpdateRequest,
    RejectRequest,
    SubmitRequest,
)
from dischargeflow.internal_core.record_store import InMemoryRecordStore, RecordNotFoundError
from dischargeflow.workflow.notify import build_notifier
from dischargeflow.workflow.state_machine import DischargeWorkflow
from dischargeflow.workflow.text_chain import DISPLAY_CHAIN, resolve_text

app = FastAPI(title="dischargeflow service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_config() -> DischargeConfig:
    existing = getattr(app.state, "discharge_config", None)
    if isinstance(existing, DischargeConfig):
        return existing
    created = load_config()
    logging.getLogger("dischargeflow").setLevel(created.DISCHARGE_LOG_LEVEL)
    setattr(app.state, "discharge_config", created)
    return created


def _get_workflow() -> DischargeWorkflow:
    existing = getattr(app.state, "discharge_workflow", None)
    if isinstance(existing, DischargeWorkflow):
        return existing
    config = _get_config()
    created = DischargeWorkflow(
        InMemoryRecordStore(),
        generator=build_generator(config),
        notifier=build_notifier(config),
        settings=EnhancementSettings.from_config(config),
    )
    setattr(app.state, "discharge_workflow", created)
    return created


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, RecordNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _split_statuses(raw: Optional[str]) -> Optional[list[str]]:
    if not raw:
        return None
    items = [part.strip() for part in raw.split(",") if part.strip()]
    return items or None


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/discharges", response_model=DischargeRecord, status_code=201)
async def create_discharge(payload: RecordCreateRequest) -> DischargeRecord:
    try:
        return _get_workflow().create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/discharges", response_model=list[DischargeRecord])
async def list_discharges(
    status: Optional[str] = Query(default=None, description="Comma-separated statuses, case-insensitive."),
    search: Optional[str] = None,
    department: Optional[str] = None,
    from_date: Optional[str] = Query(default=None, description="YYYY-MM-DD, inclusive, on creation date."),
    to_date: Optional[str] = Query(default=None, description="YYYY-MM-DD, inclusive, on creation date."),
) -> list[DischargeRecord]:
    try:
        return _get_workflow().list_records(
            statuses=_split_statuses(status),
            search=search,
            department=department,
            from_date=from_date,
            to_date=to_date,
        )
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/discharges/pending", response_model=list[DischargeRecord])
async def list_pending_discharges(
    search: Optional[str] = None,
    department: Optional[str] = None,
    from_date: Optional[str] = Query(default=None, description="YYYY-MM-DD, inclusive, on creation date."),
    to_date: Optional[str] = Query(default=None, description="YYYY-MM-DD, inclusive, on creation date."),
) -> list[DischargeRecord]:
    return _get_workflow().list_pending(search=search, department=department, from_date=from_date, to_date=to_date)


@app.get("/discharges/verified", response_model=list[DischargeRecord])
async def list_verified_discharges(
    search: Optional[str] = None,
    from_date: Optional[str] = Query(default=None, description="YYYY-MM-DD, inclusive, on approval date."),
    to_date: Optional[str] = Query(default=None, description="YYYY-MM-DD, inclusive, on approval date."),
) -> list[DischargeRecord]:
    return _get_workflow().list_verified(search=search, from_date=from_date, to_date=to_date)


@app.get("/discharges/{record_id}", response_model=DischargeRecord)
async def get_discharge(record_id: str) -> DischargeRecord:
    try:
        return _get_workflow().get(record_id)
    except RecordNotFoundError as exc:
        raise _http_error(exc) from exc


@app.api_route("/discharges/{record_id}", methods=["PUT", "PATCH"], response_model=DischargeRecord)
async def update_discharge(record_id: str, payload: RecordUpdateRequest) -> DischargeRecord:
    try:
        return _get_workflow().update(record_id, payload)
    except (RecordNotFoundError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.post("/discharges/{record_id}/ai-enhance", response_model=DischargeRecord)
async def enhance_discharge(record_id: str) -> DischargeRecord:
    try:
        return await _get_workflow().enhance(record_id)
    except (RecordNotFoundError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.post("/discharges/{record_id}/submit", response_model=DischargeRecord)
async def submit_discharge(record_id: str, payload: Optional[SubmitRequest] = None) -> DischargeRecord:
    text = payload.doctor_edited_text if payload is not None else None
    try:
        return _get_workflow().submit(record_id, text)
    except (RecordNotFoundError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.put("/discharges/{record_id}/chief-edit", response_model=DischargeRecord)
async def chief_edit_discharge(record_id: str, payload: Optional[ChiefEditRequest] = None) -> DischargeRecord:
    text = payload.chief_edited_text if payload is not None else None
    try:
        return _get_workflow().chief_edit(record_id, text)
    except (RecordNotFoundError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.post("/discharges/{record_id}/approve", response_model=DischargeRecord)
def approve_discharge(record_id: str) -> DischargeRecord:
    # Sync handler: notifier delivery may block on network I/O.
    try:
        return _get_workflow().approve(record_id)
    except (RecordNotFoundError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.post("/discharges/{record_id}/reject", response_model=DischargeRecord)
async def reject_discharge(record_id: str, payload: Optional[RejectRequest] = None) -> DischargeRecord:
    remarks = payload.remarks if payload is not None else ""
    try:
        return _get_workflow().reject(record_id, remarks)
    except (RecordNotFoundError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.post("/discharges/{record_id}/revert", response_model=DischargeRecord)
async def revert_discharge(record_id: str) -> DischargeRecord:
    try:
        return _get_workflow().revert_to_draft(record_id)
    except (RecordNotFoundError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.get("/discharges/{record_id}/sections")
async def discharge_sections(record_id: str) -> dict[str, Any]:
    try:
        record = _get_workflow().get(record_id)
    except RecordNotFoundError as exc:
        raise _http_error(exc) from exc
    text = resolve_text(record, DISPLAY_CHAIN) or ""
    return {
        "id": record.id,
        "status": record.status,
        "sections": [dataclasses.asdict(section) for section in parse_legacy_text(text)],
    }


@app.get("/discharges/{record_id}/editor-text")
async def discharge_editor_text(record_id: str, role: str = Query(default="author")) -> dict[str, str]:
    try:
        text = _get_workflow().editor_text(record_id, role)
    except (RecordNotFoundError, ValueError) as exc:
        raise _http_error(exc) from exc
    return {"id": record_id, "role": role, "text": text}


@app.get("/discharges/{record_id}/document", response_class=HTMLResponse)
async def discharge_document(record_id: str) -> HTMLResponse:
    try:
        record = _get_workflow().get(record_id)
    except RecordNotFoundError as exc:
        raise _http_error(exc) from exc
    if record.status != "APPROVED":
        raise HTTPException(status_code=400, detail="Only approved discharge summaries can be downloaded.")

    profile = _get_config().hospital
    if record.structured_document is not None:
        body = render_source(StructuredSource(document=record.structured_document), profile)
    else:
        body = render_source(
            LegacySource(
                text=resolve_text(record, DISPLAY_CHAIN) or "",
                patient_name=record.patient_name,
                uhid=record.uhid,
                ipid=record.ipid,
                consultant=record.consultant,
                department=record.department,
            ),
            profile,
        )
    filename = f"discharge-{record.uhid or record.id}.html"
    return HTMLResponse(content=body, headers={"Content-Disposition": f'attachment; filename="{filename}"'})
