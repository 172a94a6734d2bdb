from __future__ import annotations

from typing import Optional, Sequence

from dischargeflow.internal_core.contracts import DischargeRecord

# Ordered fallbacks over the snapshot chain draft -> ai -> author edit -> chief edit -> final.
APPROVAL_CHAIN: tuple[str, ...] = ("chief_edited_text", "ai_enhanced_text", "doctor_edited_text")
CHIEF_EDIT_DEFAULT_CHAIN: tuple[str, ...] = ("chief_edited_text", "doctor_edited_text", "ai_enhanced_text", "doctor_draft_text")
AUTHOR_EDIT_DEFAULT_CHAIN: tuple[str, ...] = ("doctor_edited_text", "ai_enhanced_text", "doctor_draft_text")
DISPLAY_CHAIN: tuple[str, ...] = (
    "final_verified_text",
    "chief_edited_text",
    "doctor_edited_text",
    "ai_enhanced_text",
    "doctor_draft_text",
)


def resolve_text(record: DischargeRecord, chain: Sequence[str]) -> Optional[str]:
    """First non-empty snapshot along `chain`, or None."""

    for name in chain:
        value = getattr(record, name)
        if isinstance(value, str) and value.strip():
            return value
    return None
