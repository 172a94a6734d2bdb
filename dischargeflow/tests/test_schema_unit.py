from dischargeflow.document.schema import validate_structured_document
from dischargeflow.internal_core.contracts import StructuredDocument


def test_validate_normalizes_missing_fields() -> None:
    outcome = validate_structured_document({"diagnoses": {"final": "Acute MI"}})
    assert outcome.ok is True
    doc = outcome.data
    assert doc is not None
    assert doc.diagnoses.final == "Acute MI"
    assert doc.diagnoses.provisional is None
    assert doc.diagnoses.icd10_codes == []
    assert doc.patient.name is None
    assert doc.medications == []
    assert doc.medical_devices == []
    assert doc.instructions.follow_up is None
    assert doc.final_narrative_text is None


def test_validate_reads_camel_case_keys() -> None:
    outcome = validate_structured_document(
        {
            "admission": {"admissionDate": "2026-01-02", "wardBed": "CCU-4"},
            "diagnoses": {"icd10Codes": ["I21.9"]},
            "medications": [{"name": "Aspirin", "dose": "75mg"}],
            "finalNarrativeText": "Summary.",
        }
    )
    assert outcome.ok is True
    assert outcome.data.admission.admission_date == "2026-01-02"
    assert outcome.data.admission.ward_bed == "CCU-4"
    assert outcome.data.diagnoses.icd10_codes == ["I21.9"]
    assert outcome.data.medications[0].dose == "75mg"
    assert outcome.data.final_narrative_text == "Summary."


def test_validate_wraps_prose_investigations_and_procedures() -> None:
    outcome = validate_structured_document({"investigations": "Troponin raised", "procedures": "PTCA to LAD"})
    assert outcome.ok is True
    assert outcome.data.investigations[0].name == "Troponin raised"
    assert outcome.data.procedures[0].name == "PTCA to LAD"


def test_validate_empty_prose_becomes_empty_list() -> None:
    outcome = validate_structured_document({"investigations": "   "})
    assert outcome.ok is True
    assert outcome.data.investigations == []


def test_validate_ignores_unknown_keys() -> None:
    outcome = validate_structured_document({"unexpected": {"x": 1}, "hospitalCourse": "Uneventful."})
    assert outcome.ok is True
    assert outcome.data.hospital_course == "Uneventful."


def test_validate_fails_closed_on_wrong_types() -> None:
    cases = [
        {"medications": "Aspirin"},
        {"medications": None},
        {"diagnoses": {"icd10Codes": "I21.9"}},
        {"patient": {"age": 54}},
        {"warnings": [1, 2]},
        {"patient": "Ravi"},
    ]
    for candidate in cases:
        outcome = validate_structured_document(candidate)
        assert outcome.ok is False, candidate
        assert outcome.data is None
        assert outcome.errors


def test_validate_rejects_non_object_candidates() -> None:
    for candidate in (None, [], "text", 3):
        outcome = validate_structured_document(candidate)
        assert outcome.ok is False
        assert "expected an object" in outcome.errors[0]


def test_validate_accepts_model_instance() -> None:
    outcome = validate_structured_document(StructuredDocument())
    assert outcome.ok is True
