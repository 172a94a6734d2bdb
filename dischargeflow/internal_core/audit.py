from __future__ import annotations

import datetime as _dt
from typing import Optional

from .contracts import DischargeRecord, DischargeStatus, TransitionEvent


MAX_DETAIL_CHARS = 200


def _ts_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def _sanitize_detail(detail: str) -> str:
    # History is returned with every record; keep clinical text out of it.
    flat = " ".join((detail or "").split())
    return flat if len(flat) <= MAX_DETAIL_CHARS else flat[:MAX_DETAIL_CHARS] + "..."


def log_transition(
    record: DischargeRecord,
    *,
    from_status: Optional[DischargeStatus],
    to_status: DischargeStatus,
    code: str,
    detail: str = "",
) -> TransitionEvent:
    event = TransitionEvent(
        ts_iso=_ts_iso(),
        from_status=from_status,
        to_status=to_status,
        code=code,
        detail=_sanitize_detail(detail),
    )
    record.history.append(event)
    return event
