from __future__ import annotations

"""
Schema validation for structured discharge documents.

Design intent:
- One canonical document shape shared by generator output and the fallback formatter.
- Normalize absent optional data (null strings, empty arrays) before checking types.
- Fail closed: any wrong type at a known key rejects the whole candidate.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from dischargeflow.internal_core.contracts import StructuredDocument

_WRAPPABLE_LIST_KEYS: tuple[str, ...] = ("investigations", "procedures")


@dataclass(frozen=True)
class SchemaValidation:
    ok: bool
    data: Optional[StructuredDocument] = None
    errors: list[str] = field(default_factory=list)


def _wrap_scalar_lists(candidate: dict[str, Any]) -> dict[str, Any]:
    # Producers may emit prose where a record list is expected.
    for key in _WRAPPABLE_LIST_KEYS:
        value = candidate.get(key)
        if isinstance(value, str) and value.strip():
            candidate[key] = [{"name": value.strip()}]
        elif isinstance(value, str):
            candidate[key] = []
    return candidate


def _format_error(err: Mapping[str, Any]) -> str:
    loc = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
    return f"{loc}: {err.get('msg', 'invalid value')}"


def validate_structured_document(candidate: Any) -> SchemaValidation:
    """
    Validate a generator/fallback candidate against the structured document shape.

    Returns `SchemaValidation(ok=True, data=...)` or `SchemaValidation(ok=False, errors=[...])`;
    never a partially valid document.
    """

    if isinstance(candidate, StructuredDocument):
        candidate = candidate.model_dump(by_alias=True)
    if not isinstance(candidate, Mapping):
        return SchemaValidation(ok=False, errors=[f"<root>: expected an object, got {type(candidate).__name__}"])

    prepared = _wrap_scalar_lists(copy.deepcopy(dict(candidate)))
    try:
        document = StructuredDocument.model_validate(prepared)
    except ValidationError as exc:
        return SchemaValidation(ok=False, errors=[_format_error(err) for err in exc.errors()])
    return SchemaValidation(ok=True, data=document)
