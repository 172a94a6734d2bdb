from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DischargeStatus = Literal[
    "DRAFT",
    "AI_ENHANCED",
    "PENDING_APPROVAL",
    "CHIEF_EDITED",
    "APPROVED",
    "REJECTED",
]

STATUSES: tuple[str, ...] = (
    "DRAFT",
    "AI_ENHANCED",
    "PENDING_APPROVAL",
    "CHIEF_EDITED",
    "APPROVED",
    "REJECTED",
)

IDENTITY_FIELDS: tuple[str, ...] = ("uhid", "ipid", "mobile")


class _CamelModel(BaseModel):
    # Wire format is camelCase; python attributes stay snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Structured document
# ---------------------------------------------------------------------------


class PatientBlock(_CamelModel):
    uhid: Optional[str] = None
    ipid: Optional[str] = None
    name: Optional[str] = None
    age: Optional[str] = None
    gender: Optional[str] = None
    mobile: Optional[str] = None
    address: Optional[str] = None


class AdmissionBlock(_CamelModel):
    admission_date: Optional[str] = None
    discharge_date: Optional[str] = None
    department: Optional[str] = None
    discharge_condition: Optional[str] = None
    consultant: Optional[str] = None
    ward_bed: Optional[str] = None


class DiagnosesBlock(_CamelModel):
    provisional: Optional[str] = None
    final: Optional[str] = None
    icd10_codes: List[str] = Field(default_factory=list)


class InvestigationItem(_CamelModel):
    name: Optional[str] = None
    result_admission: Optional[str] = None
    result_discharge: Optional[str] = None
    reference_range: Optional[str] = None


class ProcedureItem(_CamelModel):
    date: Optional[str] = None
    name: Optional[str] = None
    indication_outcome: Optional[str] = None


class MedicalDeviceItem(_CamelModel):
    device_type: Optional[str] = None
    model: Optional[str] = None
    location: Optional[str] = None
    implant_date: Optional[str] = None


class MedicationItem(_CamelModel):
    name: Optional[str] = None
    dose: Optional[str] = None
    route: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    notes: Optional[str] = None


class InstructionsBlock(_CamelModel):
    diet: Optional[str] = None
    activity: Optional[str] = None
    wound_care: Optional[str] = None
    follow_up: Optional[str] = None
    red_flags: Optional[str] = None
    advice: Optional[str] = None


class StructuredDocument(_CamelModel):
    patient: PatientBlock = Field(default_factory=PatientBlock)
    admission: AdmissionBlock = Field(default_factory=AdmissionBlock)
    diagnoses: DiagnosesBlock = Field(default_factory=DiagnosesBlock)
    reason_for_admission: Optional[str] = None
    clinical_examination: Optional[str] = None
    significant_findings: Optional[str] = None
    hospital_course: Optional[str] = None
    imaging_reports: Optional[str] = None
    investigations: Union[List[InvestigationItem], str, None] = Field(default_factory=list)
    procedures: Union[List[ProcedureItem], str, None] = Field(default_factory=list)
    medical_devices: List[MedicalDeviceItem] = Field(default_factory=list)
    medications: List[MedicationItem] = Field(default_factory=list)
    instructions: InstructionsBlock = Field(default_factory=InstructionsBlock)
    missing_fields: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    final_narrative_text: Optional[str] = None


# ---------------------------------------------------------------------------
# Discharge record
# ---------------------------------------------------------------------------


class LabResultEntry(_CamelModel):
    investigation: Optional[str] = None
    result_admission: Optional[str] = None
    result_discharge: Optional[str] = None
    reference_range: Optional[str] = None


class ProcedureEntry(_CamelModel):
    date: Optional[str] = None
    name: Optional[str] = None
    indication_outcome: Optional[str] = None


class DeviceEntry(_CamelModel):
    device_type: Optional[str] = None
    model: Optional[str] = None
    location: Optional[str] = None
    implant_date: Optional[str] = None


class MedicationEntry(_CamelModel):
    name: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    instructions: Optional[str] = None


class AIMeta(_CamelModel):
    engine: str
    strategy: str
    model: Optional[str] = None
    prompt_version: str
    generated_at: str
    attempts: int = 0


class TransitionEvent(_CamelModel):
    ts_iso: str
    from_status: Optional[DischargeStatus] = None
    to_status: DischargeStatus
    code: str
    detail: str = ""


class ClinicalFields(_CamelModel):
    """Author-owned free-form fields plus the structured sub-lists from the entry form."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    patient_name: Optional[str] = None
    age: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    admission_date: Optional[str] = None
    discharge_date: Optional[str] = None
    department: Optional[str] = None
    consultant: Optional[str] = None
    ward_bed: Optional[str] = None
    provisional_diagnosis: Optional[str] = None
    final_diagnosis: Optional[str] = None
    icd10_codes: List[str] = Field(default_factory=list)
    reason_for_admission: Optional[str] = None
    clinical_examination: Optional[str] = None
    significant_findings: Optional[str] = None
    course_in_hospital: Optional[str] = None
    investigations: Optional[str] = None
    imaging_reports: Optional[str] = None
    treatment: Optional[str] = None
    procedures: Optional[str] = None
    discharge_condition: Optional[str] = None
    medications: Optional[str] = None
    advice: Optional[str] = None
    follow_up: Optional[str] = None
    red_flags: Optional[str] = None
    lab_results: List[LabResultEntry] = Field(default_factory=list)
    procedure_list: List[ProcedureEntry] = Field(default_factory=list)
    device_list: List[DeviceEntry] = Field(default_factory=list)
    medication_list: List[MedicationEntry] = Field(default_factory=list)
    doctor_draft_text: Optional[str] = None
    doctor_edited_text: Optional[str] = None


CLINICAL_FIELDS: tuple[str, ...] = tuple(ClinicalFields.model_fields.keys())


class DischargeRecord(ClinicalFields):
    id: str
    uhid: str
    ipid: str
    mobile: str
    status: DischargeStatus = "DRAFT"

    ai_enhanced_text: Optional[str] = None
    chief_edited_text: Optional[str] = None
    final_verified_text: Optional[str] = None

    structured_document: Optional[StructuredDocument] = None
    missing_fields: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    rendered_output: Optional[str] = None
    ai_meta: Optional[AIMeta] = None

    submitted_at: Optional[str] = None
    chief_edited_at: Optional[str] = None
    approved_at: Optional[str] = None
    rejected_at: Optional[str] = None
    rejection_remarks: Optional[str] = None

    history: List[TransitionEvent] = Field(default_factory=list)
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Command payloads
# ---------------------------------------------------------------------------


class RecordCreateRequest(ClinicalFields):
    uhid: Optional[str] = None
    ipid: Optional[str] = None
    mobile: Optional[str] = None


class RecordUpdateRequest(ClinicalFields):
    uhid: Optional[str] = None
    ipid: Optional[str] = None
    mobile: Optional[str] = None


class SubmitRequest(_CamelModel):
    doctor_edited_text: Optional[str] = None


class ChiefEditRequest(_CamelModel):
    chief_edited_text: Optional[str] = None


class RejectRequest(_CamelModel):
    remarks: Optional[str] = None
