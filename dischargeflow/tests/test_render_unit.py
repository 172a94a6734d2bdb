import pytest

from dischargeflow.document.render import (
    DEFAULT_DISCHARGE_CONDITION,
    LegacySource,
    StructuredSource,
    render_discharge_html,
    render_source,
)
from dischargeflow.document.schema import validate_structured_document
from dischargeflow.internal_core.config import HospitalProfile


def _doc(payload: dict):
    outcome = validate_structured_document(payload)
    assert outcome.ok, outcome.errors
    return outcome.data


def _full_payload() -> dict:
    return {
        "patient": {"uhid": "U100", "ipid": "IP200", "name": "Ravi Kumar", "age": "54", "gender": "Male"},
        "admission": {
            "admissionDate": "2026-01-02",
            "dischargeDate": "2026-01-06",
            "department": "Cardiology",
            "consultant": "Dr. Meena",
            "dischargeCondition": "Hemodynamically stable.",
        },
        "diagnoses": {"final": "Acute MI", "provisional": "ACS", "icd10Codes": ["I21.9"]},
        "reasonForAdmission": "Chest pain for 2 hours.",
        "hospitalCourse": "Thrombolysed.\nMonitored in CCU.",
        "investigations": [{"name": "Troponin I", "resultAdmission": "2.1", "referenceRange": "<0.04"}],
        "procedures": [{"date": "2026-01-03", "name": "PTCA to LAD", "indicationOutcome": "Successful"}],
        "medicalDevices": [{"deviceType": "Stent", "model": "DES 3x18", "location": "LAD"}],
        "medications": [{"name": "Aspirin", "dose": "75mg", "frequency": "OD", "duration": "Lifelong"}],
        "instructions": {"followUp": "Review in 1 week.", "redFlags": "Chest pain, breathlessness.", "diet": "Low salt."},
    }


def test_render_is_deterministic() -> None:
    doc = _doc(_full_payload())
    assert render_discharge_html(doc) == render_discharge_html(doc)


def test_render_emits_sections_in_fixed_order() -> None:
    html = render_discharge_html(_doc(_full_payload()))
    titles = [
        "HOSPITAL DISCHARGE SUMMARY",
        "Patient Profile",
        "Clinical Summary",
        "Laboratory Investigations",
        "Final Diagnosis",
        "Hospital Course &amp; Care Provided",
        "Procedures Performed",
        "Medical Devices / Implants",
        "Condition at Discharge",
        "Post-Discharge Instructions",
        "Follow-up Advice",
        "Urgent Care Instructions (Warning Signs)",
        "Dietary and Activity Advice",
        "Patient / Attendant Signature",
        "This is a computer-generated summary",
    ]
    positions = [html.index(title) for title in titles]
    assert positions == sorted(positions)
    assert html.count('class="new-page-section"') == 3
    assert "Thrombolysed.</p><p>Monitored in CCU." in html
    assert "Hemodynamically stable." in html


def test_empty_investigations_omit_table_but_keep_condition_default() -> None:
    html = render_discharge_html(_doc({"diagnoses": {"final": "Acute MI"}, "investigations": []}))
    assert "Laboratory Investigations" not in html
    assert "<table" not in html
    assert "Condition at Discharge" in html
    assert DEFAULT_DISCHARGE_CONDITION in html


def test_prose_investigations_render_as_paragraph() -> None:
    html = render_discharge_html(_doc({"investigations": None, "imagingReports": "Echo: EF 45%"}))
    assert "Imaging &amp; Diagnostic Reports" in html
    assert "EF 45%" in html


def test_render_escapes_field_values() -> None:
    html = render_discharge_html(
        _doc({"patient": {"name": '<img src=x onerror="alert(1)">'}, "hospitalCourse": "A & B <b>"})
    )
    assert "<img src=x" not in html
    assert "&lt;img src=x onerror=&quot;alert(1)&quot;&gt;" in html
    assert "A &amp; B &lt;b&gt;" in html


def test_render_uses_hospital_profile() -> None:
    profile = HospitalProfile(
        name="City Hospital",
        tagline="Care first",
        address="1 Main Road",
        contact="Contact: 100",
        logo_url="https://example.org/logo.png",
    )
    html = render_discharge_html(_doc({}), profile)
    assert "<h1>City Hospital</h1>" in html
    assert "computer-generated summary from City Hospital." in html


def test_identity_defaults_to_placeholder() -> None:
    html = render_discharge_html(_doc({"patient": {"mobile": "9876543210"}}))
    assert "Contact: 9876543210" in html
    assert '<span class="info-value">—</span>' in html


def test_render_source_dispatches_legacy_text() -> None:
    source = LegacySource(
        text="## Diagnosis\n\n| Label | Value |\n|---|---|\n| Final | MI |\n\n## Advice\nRest & fluids",
        patient_name="Ravi",
        uhid="U100",
        ipid="IP200",
    )
    html = render_source(source)
    assert "<th>Label</th><th>Value</th>" in html
    assert "<td>Final</td><td>MI</td>" in html
    assert "Rest &amp; fluids" in html
    assert "U100 / IP200" in html


def test_render_source_dispatches_structured_document() -> None:
    doc = _doc(_full_payload())
    assert render_source(StructuredSource(document=doc)) == render_discharge_html(doc)


def test_render_source_rejects_unknown_variant() -> None:
    with pytest.raises(TypeError):
        render_source("plain text")  # type: ignore[arg-type]
