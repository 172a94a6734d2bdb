import asyncio
import json

from dischargeflow.document.fact_guard import WARN_MEDICATION
from dischargeflow.document.schema import validate_structured_document
from dischargeflow.enhance.fallback import FALLBACK_WARNING, build_fallback_document
from dischargeflow.enhance.generation import GenerationError
from dischargeflow.enhance.pipeline import EnhancementSettings, enhance, has_usable_input
from dischargeflow.internal_core.contracts import (
    DeviceEntry,
    DischargeRecord,
    LabResultEntry,
    MedicationEntry,
    ProcedureEntry,
)

VALID_DOC = {
    "patient": {"uhid": "U1", "ipid": "I1", "name": "Ravi", "age": "54", "gender": "Male", "mobile": "9876543210"},
    "admission": {"admissionDate": "2026-01-02", "dischargeDate": "2026-01-06", "department": "Cardiology"},
    "diagnoses": {"final": "Acute MI", "icd10Codes": ["I21.9"]},
    "hospitalCourse": "Patient was thrombolysed and monitored.",
    "medications": [{"name": "Aspirin", "dose": "75mg"}],
    "missingFields": ["admission.wardBed"],
    "warnings": [],
    "finalNarrativeText": "Ravi was admitted with acute MI.",
}


def _record(**fields) -> DischargeRecord:
    base = {
        "id": "dsc_test",
        "uhid": "U1",
        "ipid": "I1",
        "mobile": "9876543210",
        "created_at": "2026-01-01T00:00:00+00:00",
        "updated_at": "2026-01-01T00:00:00+00:00",
    }
    base.update(fields)
    return DischargeRecord(**base)


class ScriptedGenerator:
    """Replays a list of responses; exceptions in the list are raised."""

    engine = "openai_compatible"
    model_name = "scripted"

    def __init__(self, responses) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def complete(self, *, system: str, user: str, temperature: float, max_tokens: int) -> str:
        self.prompts.append(user)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class SlowGenerator:
    engine = "openai_compatible"
    model_name = "slow"

    def __init__(self) -> None:
        self.calls = 0

    async def complete(self, *, system: str, user: str, temperature: float, max_tokens: int) -> str:
        self.calls += 1
        await asyncio.sleep(5)
        return json.dumps(VALID_DOC)


def _run(record, generator, settings=None):
    return asyncio.run(enhance(record, generator=generator, settings=settings))


def test_fallback_without_generator_maps_record_fields() -> None:
    record = _record(final_diagnosis="Acute MI", medications="Tab. Aspirin 75mg OD")
    result = _run(record, None)

    doc = result.structured_document
    assert doc.diagnoses.final == "Acute MI"
    assert doc.medications[0].name == "Tab. Aspirin 75mg OD"
    assert FALLBACK_WARNING in result.warnings
    assert result.engine == "fallback"
    assert result.attempts == 0
    assert "Acute MI" in result.narrative_text
    assert "Acute MI" in result.rendered_output
    assert validate_structured_document(doc).ok is True


def test_fallback_prefers_structured_sub_lists() -> None:
    record = _record(
        medications="ignored free text",
        investigations="ignored labs",
        lab_results=[LabResultEntry(investigation="Troponin I", result_admission="2.1", reference_range="<0.04")],
        procedure_list=[ProcedureEntry(date="2026-01-03", name="PTCA", indication_outcome="Successful")],
        device_list=[DeviceEntry(device_type="Stent", model="DES")],
        medication_list=[MedicationEntry(name="Aspirin", dosage="75mg", frequency="OD", instructions="After food")],
    )
    doc = build_fallback_document(record)
    assert doc.investigations[0].name == "Troponin I"
    assert doc.investigations[0].result_admission == "2.1"
    assert doc.procedures[0].indication_outcome == "Successful"
    assert doc.medical_devices[0].device_type == "Stent"
    assert doc.medications[0].dose == "75mg"
    assert doc.medications[0].notes == "After food"


def test_fallback_treatment_text_and_missing_fields() -> None:
    record = _record(course_in_hospital="Uneventful stay.", treatment="IV antibiotics")
    doc = build_fallback_document(record)
    assert doc.medications[0].name == "IV antibiotics"
    assert doc.hospital_course == "Uneventful stay."
    assert "patient.name" in doc.missing_fields
    assert "diagnoses.final" in doc.missing_fields
    assert "medications" not in doc.missing_fields
    assert "hospitalCourse" not in doc.missing_fields

    record = _record(medications="Aspirin", treatment="IV antibiotics")
    doc = build_fallback_document(record)
    assert doc.medications[0].name == "Aspirin"
    assert doc.hospital_course == "Treatment: IV antibiotics"


def test_fallback_is_reproducible() -> None:
    record = _record(final_diagnosis="Acute MI", doctor_draft_text="Pt adm with CP.")
    assert build_fallback_document(record) == build_fallback_document(record)


def test_first_attempt_success_uses_generated_document() -> None:
    record = _record(final_diagnosis="Acute MI", icd10_codes=["I21.9"], medications="Aspirin", doctor_draft_text="pt adm c/o CP")
    generator = ScriptedGenerator([json.dumps(VALID_DOC)])
    result = _run(record, generator)

    assert result.strategy == "full_prompt"
    assert result.engine == "openai_compatible"
    assert result.attempts == 1
    assert result.narrative_text == "Ravi was admitted with acute MI."
    assert result.missing_fields == ["admission.wardBed"]
    assert result.warnings == []
    assert "[CLINICAL]" in generator.prompts[0]
    assert "pt adm c/o CP" in generator.prompts[0]


def test_retry_with_reduced_prompt_after_unparseable_payload() -> None:
    record = _record(final_diagnosis="Acute MI", medications="Aspirin", doctor_draft_text="draft")
    fenced = "```json\n" + json.dumps(VALID_DOC) + "\n```"
    generator = ScriptedGenerator(["I cannot help with that.", fenced])
    result = _run(record, generator)

    assert result.strategy == "reduced_prompt"
    assert result.attempts == 2
    assert "[CLINICAL]" not in generator.prompts[1]
    assert "[DIAGNOSIS]" in generator.prompts[1]
    assert result.structured_document.diagnoses.final == "Acute MI"


def test_both_attempts_fail_then_fallback() -> None:
    record = _record(final_diagnosis="Acute MI", doctor_draft_text="draft")
    invalid_shape = json.dumps({"medications": "Aspirin"})
    generator = ScriptedGenerator([GenerationError("HTTP 503"), invalid_shape])
    result = _run(record, generator)

    assert result.engine == "fallback"
    assert result.attempts == 2
    assert result.warnings == [FALLBACK_WARNING]
    assert result.debug["failed_strategies"] == ["full_prompt", "reduced_prompt"]
    assert generator.responses == []


def test_timeout_is_treated_as_failure() -> None:
    record = _record(final_diagnosis="Acute MI", doctor_draft_text="draft")
    generator = SlowGenerator()
    result = _run(record, generator, EnhancementSettings(timeout_seconds=0.05))

    assert generator.calls == 2
    assert result.engine == "fallback"
    assert FALLBACK_WARNING in result.warnings


def test_inner_cancellation_is_treated_as_failure() -> None:
    record = _record(final_diagnosis="Acute MI", doctor_draft_text="draft")
    generator = ScriptedGenerator([asyncio.CancelledError(), json.dumps(VALID_DOC)])
    result = _run(record, generator)

    assert result.strategy == "reduced_prompt"


def test_unexpected_generator_exception_is_absorbed() -> None:
    record = _record(final_diagnosis="Acute MI", doctor_draft_text="draft")
    generator = ScriptedGenerator([RuntimeError("llama crashed"), ValueError("bad state")])
    result = _run(record, generator)
    assert result.engine == "fallback"


def test_fact_guard_warnings_survive_into_result() -> None:
    record = _record(final_diagnosis="Acute MI", medications="Aspirin", doctor_draft_text="draft")
    payload = dict(VALID_DOC, medications=[{"name": "Clopidogrel"}])
    result = _run(record, ScriptedGenerator([json.dumps(payload)]))

    assert result.strategy == "full_prompt"
    assert result.warnings == [WARN_MEDICATION]
    assert result.structured_document.medications[0].name == "Clopidogrel"


def test_narrative_synthesized_when_generator_omits_it() -> None:
    record = _record(final_diagnosis="Acute MI", doctor_draft_text="draft")
    payload = dict(VALID_DOC, finalNarrativeText="  ")
    result = _run(record, ScriptedGenerator([json.dumps(payload)]))

    lines = result.narrative_text.split("\n\n")
    assert lines[0].startswith("Patient: Ravi, U1, I1")
    assert lines[1] == "Admission: 2026-01-02 | Discharge: 2026-01-06 | Cardiology"
    assert lines[2] == "Diagnosis: Provisional —; Final Acute MI; ICD-10: I21.9"
    assert "Hospital course: Patient was thrombolysed and monitored." in lines


def test_generator_skipped_without_usable_input() -> None:
    record = _record()
    generator = ScriptedGenerator([])
    assert has_usable_input(record) is False
    result = _run(record, generator)

    assert generator.prompts == []
    assert result.engine == "fallback"
    assert result.debug["generation_skipped"] is True
