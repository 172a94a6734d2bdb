from __future__ import annotations

from typing import Any, Optional

from dischargeflow.internal_core.contracts import StructuredDocument

EMPTY_VALUE = "—"


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _join(values: list[Any], sep: str) -> str:
    return sep.join(_text(v) for v in values if _text(v))


def _records_line(items: list[Any], fields: tuple[str, ...], sep: str = "; ") -> str:
    rendered = []
    for item in items:
        parts = [_text(getattr(item, name, None)) for name in fields]
        line = " ".join(p for p in parts if p)
        if line:
            rendered.append(line)
    return sep.join(rendered)


def synthesize_narrative(doc: StructuredDocument) -> str:
    """Plain-text summary assembled from populated fields in a fixed order."""

    p = doc.patient
    a = doc.admission
    d = doc.diagnoses
    inst = doc.instructions

    blocks: list[str] = [
        f"Patient: {_join([p.name, p.uhid, p.ipid, p.mobile, p.age, p.gender], ', ') or EMPTY_VALUE}",
        "Admission: {adm} | Discharge: {dis} | {dept}".format(
            adm=_text(a.admission_date) or EMPTY_VALUE,
            dis=_text(a.discharge_date) or EMPTY_VALUE,
            dept=_text(a.department) or EMPTY_VALUE,
        ),
        "Diagnosis: Provisional {prov}; Final {final}; ICD-10: {codes}".format(
            prov=_text(d.provisional) or EMPTY_VALUE,
            final=_text(d.final) or EMPTY_VALUE,
            codes=_join(list(d.icd10_codes), ", ") or EMPTY_VALUE,
        ),
    ]

    def add(label: str, value: Optional[str]) -> None:
        if value:
            blocks.append(f"{label}: {value}")

    add("Reason for admission", _text(doc.reason_for_admission))
    add("Clinical examination", _text(doc.clinical_examination))
    add("Significant findings", _text(doc.significant_findings))
    add("Hospital course", _text(doc.hospital_course))

    if isinstance(doc.procedures, list):
        add("Procedures", _records_line(doc.procedures, ("date", "name", "indication_outcome")))
    else:
        add("Procedures", _text(doc.procedures))
    if isinstance(doc.investigations, list):
        add("Investigations", _records_line(doc.investigations, ("name", "result_admission", "result_discharge")))
    else:
        add("Investigations", _text(doc.investigations))

    add("Imaging", _text(doc.imaging_reports))
    add("Devices", _records_line(doc.medical_devices, ("device_type", "model", "location")))
    add("Medications", _records_line(doc.medications, ("name", "dose", "route", "frequency", "duration")))
    add("Condition at discharge", _text(a.discharge_condition))
    add("Follow-up", _join([inst.follow_up, inst.advice], " "))
    add("Red flags", _text(inst.red_flags))
    return "\n\n".join(blocks)
