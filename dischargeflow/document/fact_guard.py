from __future__ import annotations

"""
Fact guard for generated discharge documents.

Design intent:
- Flag generated diagnoses, ICD-10 codes, procedures, and medications with no support in author input.
- Match by bidirectional substring containment so abbreviation drift is tolerated.
- Stay purely additive: append warnings, never edit or drop clinical values.

The containment heuristic is known to be imprecise (synonyms slip through, partial
token overlap passes); keep it exactly as is so warnings stay comparable over time.
"""

import copy
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from dischargeflow.internal_core.contracts import DischargeRecord

WARN_DIAGNOSIS = "Potential hallucination: diagnosis introduced by AI"
WARN_ICD10 = "Potential hallucination: ICD-10 introduced by AI"
WARN_PROCEDURE = "Potential hallucination: procedure introduced by AI"
WARN_MEDICATION = "Potential hallucination: medication introduced by AI"

MAX_PROCEDURES_CHECKED = 15

_ORIGINAL_SPLIT_RE = re.compile(r"[,;]")
_PROCEDURE_SPLIT_RE = re.compile(r"[,;.\n]")


def _norm(value: Any) -> str:
    if value is None:
        return ""
    return str(value).lower().strip()


def _to_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        items = [_norm(v) for v in value]
    elif value:
        items = [_norm(v) for v in _ORIGINAL_SPLIT_RE.split(str(value))]
    else:
        items = []
    return [item for item in items if item]


@dataclass(frozen=True)
class FactGuardInput:
    diagnoses: list[str] = field(default_factory=list)
    icd10_codes: list[str] = field(default_factory=list)
    procedures: list[str] = field(default_factory=list)
    medications: list[str] = field(default_factory=list)

    @classmethod
    def from_values(
        cls,
        *,
        final_diagnosis: Any = None,
        provisional_diagnosis: Any = None,
        icd10_codes: Any = None,
        procedures: Any = None,
        medications: Any = None,
    ) -> "FactGuardInput":
        return cls(
            diagnoses=_to_list(final_diagnosis) + _to_list(provisional_diagnosis),
            icd10_codes=_to_list(icd10_codes),
            procedures=_to_list(procedures),
            medications=_to_list(medications),
        )


def fact_guard_input_from_record(record: DischargeRecord) -> FactGuardInput:
    """Collect the author's original entries, free text plus structured sub-list names."""

    base = FactGuardInput.from_values(
        final_diagnosis=record.final_diagnosis,
        provisional_diagnosis=record.provisional_diagnosis,
        icd10_codes=list(record.icd10_codes),
        procedures=record.procedures,
        medications=record.medications,
    )
    procedure_names = _to_list([p.name for p in record.procedure_list if p.name])
    medication_names = _to_list([m.name for m in record.medication_list if m.name])
    return FactGuardInput(
        diagnoses=base.diagnoses,
        icd10_codes=base.icd10_codes,
        procedures=base.procedures + procedure_names,
        medications=base.medications + medication_names,
    )


def _is_supported(generated: str, originals: Iterable[str]) -> bool:
    return any(orig in generated or generated in orig for orig in originals)


def _generated_procedures(value: Any) -> list[str]:
    if isinstance(value, str):
        names = [_norm(part) for part in _PROCEDURE_SPLIT_RE.split(value)]
    elif isinstance(value, list):
        names = [_norm(item.get("name") if isinstance(item, Mapping) else item) for item in value]
    else:
        names = []
    return [name for name in names if name][:MAX_PROCEDURES_CHECKED]


def _generated_medications(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    names = []
    for item in value:
        name = item.get("name") if isinstance(item, Mapping) else item
        name = _norm(name)
        if name:
            names.append(name)
    return names


def collect_fact_guard_warnings(document: Mapping[str, Any], original: FactGuardInput) -> list[str]:
    warnings: list[str] = []

    diagnoses = document.get("diagnoses")
    if original.diagnoses and isinstance(diagnoses, Mapping):
        for key in ("final", "provisional"):
            generated = _norm(diagnoses.get(key))
            if generated and not _is_supported(generated, original.diagnoses):
                warnings.append(WARN_DIAGNOSIS)

    if original.icd10_codes and isinstance(diagnoses, Mapping):
        codes = diagnoses.get("icd10Codes")
        if isinstance(codes, list):
            for code in codes:
                generated = _norm(code)
                if generated and not _is_supported(generated, original.icd10_codes):
                    warnings.append(WARN_ICD10)

    if original.procedures:
        for generated in _generated_procedures(document.get("procedures")):
            if not _is_supported(generated, original.procedures):
                warnings.append(WARN_PROCEDURE)

    if original.medications:
        for generated in _generated_medications(document.get("medications")):
            if not _is_supported(generated, original.medications):
                warnings.append(WARN_MEDICATION)

    return warnings


def apply_fact_guard(document: Mapping[str, Any], original: FactGuardInput) -> dict[str, Any]:
    """Return a copy of `document` with fact-guard warnings appended to `warnings`."""

    guarded = copy.deepcopy(dict(document))
    found = collect_fact_guard_warnings(guarded, original)
    if not found:
        return guarded

    existing = guarded.get("warnings")
    if existing is None:
        existing = []
    if not isinstance(existing, list):
        # Leave malformed payloads for the schema validator to reject.
        return guarded
    guarded["warnings"] = list(existing) + found
    return guarded
