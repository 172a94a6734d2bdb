from __future__ import annotations

"""
Deterministic, network-free discharge document formatter.

Design intent:
- Map existing record fields straight onto the structured document shape.
- Prefer the structured sub-lists; wrap lone free text in a single-element record.
- Be reproducible from the record alone so it can always back the generative path.
"""

from typing import Any, Optional

from dischargeflow.document.schema import validate_structured_document
from dischargeflow.enhance.narrative import synthesize_narrative
from dischargeflow.internal_core.contracts import (
    AdmissionBlock,
    DiagnosesBlock,
    DischargeRecord,
    InstructionsBlock,
    InvestigationItem,
    MedicalDeviceItem,
    MedicationItem,
    PatientBlock,
    ProcedureItem,
    StructuredDocument,
)

FALLBACK_WARNING = "Note: Content generated from structured data (AI generation unavailable)."

# Dotted document keys reported as missing when the record leaves them empty.
_CORE_FIELDS: tuple[str, ...] = (
    "patient.name",
    "patient.age",
    "patient.gender",
    "admission.admissionDate",
    "admission.dischargeDate",
    "admission.department",
    "admission.dischargeCondition",
    "diagnoses.final",
    "hospitalCourse",
    "medications",
    "instructions.followUp",
)


def _opt(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _investigations(record: DischargeRecord) -> list[InvestigationItem]:
    if record.lab_results:
        return [
            InvestigationItem(
                name=_opt(r.investigation),
                result_admission=_opt(r.result_admission),
                result_discharge=_opt(r.result_discharge),
                reference_range=_opt(r.reference_range),
            )
            for r in record.lab_results
        ]
    text = _opt(record.investigations)
    return [InvestigationItem(name=text)] if text else []


def _procedures(record: DischargeRecord) -> list[ProcedureItem]:
    if record.procedure_list:
        return [
            ProcedureItem(date=_opt(p.date), name=_opt(p.name), indication_outcome=_opt(p.indication_outcome))
            for p in record.procedure_list
        ]
    text = _opt(record.procedures)
    return [ProcedureItem(name=text)] if text else []


def _devices(record: DischargeRecord) -> list[MedicalDeviceItem]:
    return [
        MedicalDeviceItem(
            device_type=_opt(d.device_type),
            model=_opt(d.model),
            location=_opt(d.location),
            implant_date=_opt(d.implant_date),
        )
        for d in record.device_list
    ]


def _medications(record: DischargeRecord) -> tuple[list[MedicationItem], bool]:
    """Return medication records and whether the treatment text was consumed as one."""

    if record.medication_list:
        return (
            [
                MedicationItem(
                    name=_opt(m.name),
                    dose=_opt(m.dosage),
                    frequency=_opt(m.frequency),
                    duration=_opt(m.duration),
                    notes=_opt(m.instructions),
                )
                for m in record.medication_list
            ],
            False,
        )
    text = _opt(record.medications)
    if text:
        return [MedicationItem(name=text)], False
    treatment = _opt(record.treatment)
    if treatment:
        return [MedicationItem(name=treatment)], True
    return [], False


def _hospital_course(record: DischargeRecord, treatment_used: bool) -> Optional[str]:
    parts = []
    course = _opt(record.course_in_hospital)
    if course:
        parts.append(course)
    treatment = _opt(record.treatment)
    if treatment and not treatment_used:
        parts.append(f"Treatment: {treatment}")
    return "\n\n".join(parts) or None


def _missing_fields(doc: StructuredDocument) -> list[str]:
    dumped = doc.model_dump(by_alias=True)
    missing = []
    for dotted in _CORE_FIELDS:
        value: Any = dumped
        for part in dotted.split("."):
            value = value.get(part) if isinstance(value, dict) else None
        if value is None or value == [] or (isinstance(value, str) and not value.strip()):
            missing.append(dotted)
    return missing


def build_fallback_document(record: DischargeRecord) -> StructuredDocument:
    medications, treatment_used = _medications(record)
    doc = StructuredDocument(
        patient=PatientBlock(
            uhid=_opt(record.uhid),
            ipid=_opt(record.ipid),
            name=_opt(record.patient_name),
            age=_opt(record.age),
            gender=_opt(record.gender),
            mobile=_opt(record.mobile),
            address=_opt(record.address),
        ),
        admission=AdmissionBlock(
            admission_date=_opt(record.admission_date),
            discharge_date=_opt(record.discharge_date),
            department=_opt(record.department),
            discharge_condition=_opt(record.discharge_condition),
            consultant=_opt(record.consultant),
            ward_bed=_opt(record.ward_bed),
        ),
        diagnoses=DiagnosesBlock(
            provisional=_opt(record.provisional_diagnosis),
            final=_opt(record.final_diagnosis),
            icd10_codes=[code.strip() for code in record.icd10_codes if code and code.strip()],
        ),
        reason_for_admission=_opt(record.reason_for_admission),
        clinical_examination=_opt(record.clinical_examination),
        significant_findings=_opt(record.significant_findings),
        hospital_course=_hospital_course(record, treatment_used),
        imaging_reports=_opt(record.imaging_reports),
        investigations=_investigations(record),
        procedures=_procedures(record),
        medical_devices=_devices(record),
        medications=medications,
        instructions=InstructionsBlock(
            follow_up=_opt(record.follow_up),
            red_flags=_opt(record.red_flags),
            advice=_opt(record.advice),
        ),
        warnings=[FALLBACK_WARNING],
    )
    doc.missing_fields = _missing_fields(doc)
    doc.final_narrative_text = synthesize_narrative(doc)

    outcome = validate_structured_document(doc)
    if not outcome.ok or outcome.data is None:
        # The formatter builds the model directly; failing here is a programming error.
        raise RuntimeError(f"Fallback document failed validation: {outcome.errors}")
    return outcome.data
