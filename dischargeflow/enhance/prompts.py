from __future__ import annotations

"""
Prompt assembly for discharge document generation.

Design intent:
- One fixed system instruction for every generative attempt.
- Full prompt carries every known record field under stable labels.
- Reduced prompt keeps only identity, diagnosis, and the author draft.
"""

from typing import Any, Iterable

from dischargeflow.internal_core.contracts import DischargeRecord

PROMPT_VERSION = "2"

SYSTEM_INSTRUCTION = (
    "You are a medical discharge summary assistant. Expand terse clinical notes into complete, "
    "professional sentences while preserving every clinical fact exactly as given "
    "(identifiers, dates, doses, values). Never invent diagnoses, procedures, medications, "
    "investigations, or findings that are not present in the input.\n"
    "Return ONLY one JSON object, no commentary. Use exactly these top-level keys:\n"
    "patient {uhid, ipid, name, age, gender, mobile, address},\n"
    "admission {admissionDate, dischargeDate, department, dischargeCondition, consultant, wardBed},\n"
    "diagnoses {provisional, final, icd10Codes: [string]},\n"
    "reasonForAdmission, clinicalExamination, significantFindings, hospitalCourse, imagingReports (strings),\n"
    "investigations: [{name, resultAdmission, resultDischarge, referenceRange}],\n"
    "procedures: [{date, name, indicationOutcome}],\n"
    "medicalDevices: [{deviceType, model, location, implantDate}],\n"
    "medications: [{name, dose, route, frequency, duration, notes}],\n"
    "instructions {diet, activity, woundCare, followUp, redFlags, advice},\n"
    "missingFields: [string], warnings: [string], finalNarrativeText (string).\n"
    "All scalar values must be strings or null. If a field is not present in the input, set it to null "
    "and add its key (for example \"admission.wardBed\") to missingFields."
)


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _labeled(lines: Iterable[tuple[str, Any]]) -> str:
    return "\n".join(f"{label}: {_clean(value)}" for label, value in lines)


def _format_rows(rows: Iterable[Iterable[tuple[str, Any]]]) -> str:
    out = []
    for row in rows:
        cells = [f"{k}={_clean(v)}" for k, v in row if _clean(v)]
        if cells:
            out.append("- " + "; ".join(cells))
    return "\n".join(out)


def _identity_lines(record: DischargeRecord) -> list[tuple[str, Any]]:
    return [
        ("UHID", record.uhid),
        ("IPID", record.ipid),
        ("Name", record.patient_name),
        ("Mobile", record.mobile),
        ("Age", record.age),
        ("Gender", record.gender),
    ]


def _diagnosis_lines(record: DischargeRecord) -> list[tuple[str, Any]]:
    return [
        ("Provisional diagnosis", record.provisional_diagnosis),
        ("Final diagnosis", record.final_diagnosis),
        ("ICD10", ", ".join(record.icd10_codes)),
    ]


def _draft_block(record: DischargeRecord) -> str:
    return f"--- AUTHOR DRAFT ---\n{_clean(record.doctor_draft_text)}\n--- END DRAFT ---"


def build_full_prompt(record: DischargeRecord) -> str:
    sections = [
        "Structure the following discharge information into the JSON document. "
        "Copy identifiers and dates exactly.",
        "[PATIENT]\n" + _labeled(_identity_lines(record) + [("Address", record.address)]),
        "[ADMISSION]\n"
        + _labeled(
            [
                ("Admission", record.admission_date),
                ("Discharge", record.discharge_date),
                ("Department", record.department),
                ("Consultant", record.consultant),
                ("Ward/Bed", record.ward_bed),
                ("Discharge condition", record.discharge_condition),
            ]
        ),
        "[DIAGNOSIS]\n" + _labeled(_diagnosis_lines(record)),
        "[CLINICAL]\n"
        + _labeled(
            [
                ("Reason for admission", record.reason_for_admission),
                ("Clinical examination", record.clinical_examination),
                ("Significant findings", record.significant_findings),
                ("Course in hospital", record.course_in_hospital),
                ("Treatment", record.treatment),
                ("Investigations", record.investigations),
                ("Imaging", record.imaging_reports),
                ("Procedures", record.procedures),
                ("Medications", record.medications),
            ]
        ),
    ]

    structured = [
        (
            "Lab results",
            [
                [
                    ("investigation", r.investigation),
                    ("admission", r.result_admission),
                    ("discharge", r.result_discharge),
                    ("range", r.reference_range),
                ]
                for r in record.lab_results
            ],
        ),
        (
            "Procedure list",
            [[("date", p.date), ("name", p.name), ("indication/outcome", p.indication_outcome)] for p in record.procedure_list],
        ),
        (
            "Devices",
            [
                [("type", d.device_type), ("model", d.model), ("location", d.location), ("implanted", d.implant_date)]
                for d in record.device_list
            ],
        ),
        (
            "Medication list",
            [
                [
                    ("name", m.name),
                    ("dosage", m.dosage),
                    ("frequency", m.frequency),
                    ("duration", m.duration),
                    ("instructions", m.instructions),
                ]
                for m in record.medication_list
            ],
        ),
    ]
    for label, rows in structured:
        body = _format_rows(rows)
        if body:
            sections.append(f"[{label.upper()}]\n{body}")

    sections.append(
        "[INSTRUCTIONS]\n"
        + _labeled([("Advice", record.advice), ("Follow-up", record.follow_up), ("Red flags", record.red_flags)])
    )
    sections.append(_draft_block(record))
    sections.append("Output valid JSON only.")
    return "\n\n".join(sections)


def build_reduced_prompt(record: DischargeRecord) -> str:
    return "\n\n".join(
        [
            "Structure this discharge draft into the JSON document. Copy identifiers exactly.",
            "[PATIENT]\n" + _labeled(_identity_lines(record)),
            "[DIAGNOSIS]\n" + _labeled(_diagnosis_lines(record)),
            _draft_block(record),
            "Output valid JSON only.",
        ]
    )
