from __future__ import annotations

"""
Deterministic hospital-format renderer for discharge summaries.

Design intent:
- Pure function of the document and hospital profile: no clock, no I/O.
- Escape every field value before it reaches the markup.
- Emit a fixed section order with page-break hints for the printed A4 form.
"""

import html
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence, Union

from dischargeflow.document.legacy_parser import ParagraphSection, TableSection, parse_legacy_text
from dischargeflow.internal_core.config import DEFAULT_HOSPITAL_PROFILE, HospitalProfile
from dischargeflow.internal_core.contracts import StructuredDocument

DEFAULT_DISCHARGE_CONDITION = "Stable. Patient fit for discharge as per unit protocol."
EMPTY_VALUE = "—"
PAGE_BREAK_CLASS = "new-page-section"

_PRINT_CSS = " ".join(
    line.strip()
    for line in """
:root { --primary: #004a99; --secondary: #003366; --accent: #e6f0fa; --border: #d1d9e6; --text: #2c3e50; --muted: #546e7a; }
@page { size: A4; margin: 0; }
body { font-family: 'Segoe UI', Tahoma, Verdana, sans-serif; margin: 0; background: #f5f7f9; color: var(--text); line-height: 1.4; font-size: 10pt; -webkit-print-color-adjust: exact; }
.container { width: 210mm; margin: 20px auto; background: #fff; padding: 20mm; box-sizing: border-box; }
@media print {
  body { background: #fff; }
  .container { margin: 0; width: 210mm; padding: 15mm 20mm 10mm 20mm; }
  .new-page-section { break-before: page; padding-top: 15mm; }
  section, table, .info-group, .diagnosis-box, .signature-area { break-inside: avoid; }
}
.hospital-header { display: flex; align-items: center; border-bottom: 3px solid var(--primary); padding-bottom: 10px; margin-bottom: 20px; }
.logo { flex: 0 0 120px; }
.logo img { max-width: 100%; height: auto; }
.hospital-details { flex: 1; padding-left: 20px; }
.hospital-details h1 { margin: 0; font-size: 20pt; color: var(--primary); text-transform: uppercase; }
.hospital-details p { margin: 2px 0; font-size: 9pt; color: var(--muted); }
.report-title { text-align: center; background: var(--accent); padding: 10px; margin-bottom: 20px; }
.report-title h2 { margin: 0; font-size: 14pt; color: var(--secondary); letter-spacing: 1px; }
.info-grid { display: grid; grid-template-columns: 1fr 1fr; gap: 15px; margin-bottom: 20px; }
.info-group { border: 1px solid var(--border); padding: 10px; }
.info-group-title { font-weight: bold; font-size: 9pt; color: var(--primary); text-transform: uppercase; margin-bottom: 8px; border-bottom: 1px solid var(--border); }
.info-row { display: flex; margin-bottom: 4px; }
.info-label { flex: 0 0 120px; font-weight: 600; color: var(--muted); font-size: 8.5pt; }
.info-value { flex: 1; font-size: 9pt; }
.section-title { background: var(--secondary); color: #fff; padding: 6px 12px; font-size: 11pt; margin: 15px 0 10px 0; text-transform: uppercase; }
.content-text { text-align: justify; margin-bottom: 15px; }
.diagnosis-box { background: #fafafa; border: 1px dashed var(--border); padding: 10px 20px; margin-bottom: 15px; }
table { width: 100%; border-collapse: collapse; margin: 15px 0; }
th { background: #f0f4f8; color: var(--secondary); font-weight: 600; text-align: left; padding: 10px; border: 1px solid var(--border); font-size: 9pt; }
td { padding: 8px 10px; border: 1px solid var(--border); font-size: 9pt; }
.signature-area { margin-top: 40px; display: flex; justify-content: space-between; }
.sig-box { text-align: center; width: 200px; }
.sig-line { border-top: 1px solid var(--text); margin-bottom: 5px; }
.footer { margin-top: 40px; padding-top: 15px; border-top: 1px solid var(--border); text-align: center; font-size: 8pt; color: var(--muted); }
""".splitlines()
    if line.strip()
)


def _esc(value: Any) -> str:
    if value is None:
        return ""
    return html.escape(str(value), quote=True)


def _has_text(value: Any) -> bool:
    return value is not None and bool(str(value).strip())


def _para(text: Any) -> str:
    if not _has_text(text):
        return ""
    safe = _esc(str(text).strip()).replace("\n", "</p><p>")
    return f"<p>{safe}</p>"


def _section_title(title: str) -> str:
    return f'<div class="section-title">{_esc(title)}</div>'


def _prose_block(title: str, text: Any) -> str:
    return f'{_section_title(title)}<div class="content-text">{_para(text)}</div>'


def _table(headers: Sequence[str], rows: Iterable[Sequence[Any]], *, css_class: str = "") -> str:
    cls = f' class="{css_class}"' if css_class else ""
    head = "".join(f"<th>{_esc(h)}</th>" for h in headers)
    body = "".join("<tr>" + "".join(f"<td>{_esc(cell)}</td>" for cell in row) + "</tr>" for row in rows)
    return f"<table{cls}><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"


def _info_group(title: str, rows: Sequence[tuple[str, str]]) -> str:
    body = "".join(
        f'<div class="info-row"><span class="info-label">{_esc(label)}</span>'
        f'<span class="info-value">{_esc(value)}</span></div>'
        for label, value in rows
    )
    return f'<div class="info-group"><div class="info-group-title">{_esc(title)}</div>{body}</div>'


def _join_present(values: Iterable[Any], sep: str) -> str:
    return sep.join(str(v).strip() for v in values if _has_text(v))


def _document_head(profile: HospitalProfile) -> str:
    return (
        '<!DOCTYPE html><html lang="en"><head><meta charset="UTF-8"/>'
        '<meta name="viewport" content="width=device-width, initial-scale=1.0"/>'
        f"<title>Discharge Summary - {_esc(profile.name)}</title><style>{_PRINT_CSS}</style></head>"
        '<body><div class="container">'
        '<header class="hospital-header">'
        f'<div class="logo"><img src="{_esc(profile.logo_url)}" alt="{_esc(profile.name)} Logo"></div>'
        f'<div class="hospital-details"><h1>{_esc(profile.name)}</h1>'
        f"<p>{_esc(profile.tagline)}</p><p>{_esc(profile.address)}</p><p>{_esc(profile.contact)}</p></div>"
        "</header>"
        '<div class="report-title"><h2>HOSPITAL DISCHARGE SUMMARY</h2></div>'
    )


def _signature_and_footer(consultant: Optional[str], department: Optional[str], profile: HospitalProfile) -> str:
    signer = consultant if _has_text(consultant) else (department if _has_text(department) else "Consultant")
    unit = department if _has_text(department) else "Discharge Summary"
    return (
        '<div class="signature-area">'
        '<div class="sig-box"><div class="sig-line"></div><p>Patient / Attendant Signature</p></div>'
        f'<div class="sig-box"><div class="sig-line"></div><p><strong>{_esc(signer)}</strong></p>'
        f"<p>{_esc(unit)}</p></div>"
        "</div>"
        f'<div class="footer"><p>This is a computer-generated summary from {_esc(profile.name)}. '
        "Please correlate clinically.</p>"
        f"<p>{_esc(profile.tagline)}</p></div>"
    )


_DOCUMENT_TAIL = "</div></body></html>"


# ---------------------------------------------------------------------------
# Structured documents
# ---------------------------------------------------------------------------


def _identity_grid(doc: StructuredDocument) -> str:
    p = doc.patient
    a = doc.admission
    address = p.address if _has_text(p.address) else (f"Contact: {p.mobile}" if _has_text(p.mobile) else EMPTY_VALUE)
    patient_rows = [
        ("Name:", p.name if _has_text(p.name) else EMPTY_VALUE),
        ("UHID / IP No:", _join_present([p.uhid, p.ipid], " / ") or EMPTY_VALUE),
        ("Age / Gender:", _join_present([p.age, p.gender], " / ") or EMPTY_VALUE),
        ("Address:", address),
    ]
    admission_rows = [
        ("Admission Date:", a.admission_date if _has_text(a.admission_date) else EMPTY_VALUE),
        ("Discharge Date:", a.discharge_date if _has_text(a.discharge_date) else EMPTY_VALUE),
        ("Consultant:", _join_present([a.consultant], "") or _join_present([a.department], "") or EMPTY_VALUE),
        ("Ward / Bed:", a.ward_bed if _has_text(a.ward_bed) else EMPTY_VALUE),
    ]
    return (
        '<div class="info-grid">'
        + _info_group("Patient Profile", patient_rows)
        + _info_group("Admission Details", admission_rows)
        + "</div>"
    )


def _clinical_summary(doc: StructuredDocument) -> str:
    parts: list[str] = []
    inline: list[str] = []
    if _has_text(doc.reason_for_admission):
        inline.append(f"<p><strong>Reason for Admission:</strong> {_esc(doc.reason_for_admission.strip())}</p>")
    if _has_text(doc.clinical_examination):
        inline.append(f"<p><strong>Clinical Examination:</strong> {_esc(doc.clinical_examination.strip())}</p>")
    if inline:
        parts.append(_section_title("Clinical Summary") + '<div class="content-text">' + "".join(inline) + "</div>")
    if _has_text(doc.significant_findings):
        parts.append(_prose_block("Significant Findings & Examination", doc.significant_findings))
    if not parts:
        return ""
    return "<section>" + "".join(parts) + "</section>"


def _diagnosis_block(doc: StructuredDocument) -> str:
    d = doc.diagnoses
    out = [_section_title("Final Diagnosis"), '<div class="diagnosis-box">']
    if _has_text(d.final):
        out.append(f"<p><strong>Primary Diagnosis:</strong> {_esc(d.final)}.</p>")
    if _has_text(d.provisional) and d.provisional != d.final:
        out.append("<p><strong>Secondary Diagnoses / Provisional:</strong></p>")
        out.append(f"<ul><li>{_esc(d.provisional)}</li></ul>")
    elif _has_text(d.provisional):
        out.append(f"<p><strong>Provisional:</strong> {_esc(d.provisional)}.</p>")
    if d.icd10_codes:
        out.append("<p><strong>ICD-10 Codes:</strong></p><ul>")
        out.extend(f"<li>{_esc(code)}</li>" for code in d.icd10_codes)
        out.append("</ul>")
    out.append("</div>")
    return "".join(out)


def _investigations_and_diagnosis(doc: StructuredDocument) -> str:
    invs = doc.investigations
    d = doc.diagnoses
    has_lab_table = isinstance(invs, list) and len(invs) > 0
    has_lab_text = isinstance(invs, str) and _has_text(invs)
    has_imaging = _has_text(doc.imaging_reports)
    has_diagnosis = _has_text(d.final) or _has_text(d.provisional) or bool(d.icd10_codes)
    if not (has_lab_table or has_lab_text or has_imaging or has_diagnosis):
        return ""

    out = [f'<section class="{PAGE_BREAK_CLASS}">']
    if has_lab_table:
        out.append(_section_title("Laboratory Investigations"))
        out.append(
            _table(
                ["Investigation", "Result (Admission)", "Result (Discharge)", "Reference Range"],
                [
                    [
                        inv.name or "",
                        inv.result_admission if inv.result_admission is not None else "-",
                        inv.result_discharge if inv.result_discharge is not None else "-",
                        inv.reference_range if inv.reference_range is not None else "-",
                    ]
                    for inv in invs
                ],
                css_class="lab-results",
            )
        )
    elif has_lab_text:
        out.append(_prose_block("Laboratory Investigations", invs))
    if has_imaging:
        out.append(_prose_block("Imaging & Diagnostic Reports", doc.imaging_reports))
    if has_diagnosis:
        out.append(_diagnosis_block(doc))
    out.append("</section>")
    return "".join(out)


def _course_and_condition(doc: StructuredDocument) -> str:
    procs = doc.procedures
    devices = doc.medical_devices
    has_course = _has_text(doc.hospital_course)
    has_proc_table = isinstance(procs, list) and len(procs) > 0
    has_proc_text = isinstance(procs, str) and _has_text(procs)
    condition = doc.admission.discharge_condition
    condition_block = _prose_block(
        "Condition at Discharge", condition if _has_text(condition) else DEFAULT_DISCHARGE_CONDITION
    )

    if not (has_course or has_proc_table or has_proc_text or devices):
        return "<section>" + condition_block + "</section>"

    out = [f'<section class="{PAGE_BREAK_CLASS}">']
    if has_course:
        out.append(_prose_block("Hospital Course & Care Provided", doc.hospital_course))
    if has_proc_table:
        out.append(_section_title("Procedures Performed"))
        out.append(
            _table(
                ["Date", "Procedure Name", "Indication & Outcome"],
                [[p.date or "", p.name or "", p.indication_outcome or ""] for p in procs],
            )
        )
    elif has_proc_text:
        out.append(_prose_block("Procedures Performed", procs))
    if devices:
        out.append(_section_title("Medical Devices / Implants"))
        out.append(
            _table(
                ["Device Type", "Model / Serial No.", "Location / Position", "Implant Date"],
                [[dev.device_type or "", dev.model or "", dev.location or "", dev.implant_date or ""] for dev in devices],
            )
        )
    out.append(condition_block)
    out.append("</section>")
    return "".join(out)


def _post_discharge(doc: StructuredDocument, profile: HospitalProfile) -> str:
    inst = doc.instructions
    meds = doc.medications
    lifestyle = _join_present([inst.diet, inst.activity, inst.advice], "\n\n")
    has_block = bool(meds) or _has_text(inst.follow_up) or _has_text(inst.red_flags) or bool(lifestyle)
    closing = _signature_and_footer(doc.admission.consultant, doc.admission.department, profile)
    if not has_block:
        return closing

    out = [f'<section class="{PAGE_BREAK_CLASS}">', _section_title("Post-Discharge Instructions")]
    if meds:
        out.append("<p><strong>Discharge Medications</strong></p>")
        out.append(
            _table(
                ["Medication Name", "Dosage", "Frequency", "Duration", "Instructions"],
                [[m.name or "", m.dose or "", m.frequency or "", m.duration or "", m.notes or ""] for m in meds],
            )
        )
    if _has_text(inst.follow_up):
        out.append(_prose_block("Follow-up Advice", inst.follow_up))
    if _has_text(inst.red_flags):
        out.append(_prose_block("Urgent Care Instructions (Warning Signs)", inst.red_flags))
    if lifestyle:
        out.append(_prose_block("Dietary and Activity Advice", lifestyle))
    out.append(closing)
    out.append("</section>")
    return "".join(out)


def render_discharge_html(document: StructuredDocument, profile: HospitalProfile = DEFAULT_HOSPITAL_PROFILE) -> str:
    """Render a validated structured document as a full print-ready HTML page."""

    return "".join(
        [
            _document_head(profile),
            _identity_grid(document),
            _clinical_summary(document),
            _investigations_and_diagnosis(document),
            _course_and_condition(document),
            _post_discharge(document, profile),
            _DOCUMENT_TAIL,
        ]
    )


# ---------------------------------------------------------------------------
# Legacy free text
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StructuredSource:
    document: StructuredDocument
    kind: str = "structured"


@dataclass(frozen=True)
class LegacySource:
    text: str
    patient_name: Optional[str] = None
    uhid: Optional[str] = None
    ipid: Optional[str] = None
    consultant: Optional[str] = None
    department: Optional[str] = None
    extra: dict[str, str] = field(default_factory=dict)
    kind: str = "legacy"


RenderableSource = Union[StructuredSource, LegacySource]


def render_legacy_html(source: LegacySource, profile: HospitalProfile = DEFAULT_HOSPITAL_PROFILE) -> str:
    identity_rows = [
        ("Name:", source.patient_name if _has_text(source.patient_name) else EMPTY_VALUE),
        ("UHID / IP No:", _join_present([source.uhid, source.ipid], " / ") or EMPTY_VALUE),
    ]
    identity_rows.extend((f"{label}:", value) for label, value in sorted(source.extra.items()) if _has_text(value))

    out = [
        _document_head(profile),
        '<div class="info-grid">',
        _info_group("Patient Profile", identity_rows),
        "</div>",
    ]
    for section in parse_legacy_text(source.text):
        out.append("<section>")
        if section.title:
            out.append(_section_title(section.title))
        if isinstance(section, TableSection):
            out.append(_table(section.headers, section.rows))
        elif isinstance(section, ParagraphSection):
            out.append(f'<div class="content-text">{_para(section.content)}</div>')
        out.append("</section>")
    out.append(_signature_and_footer(source.consultant, source.department, profile))
    out.append(_DOCUMENT_TAIL)
    return "".join(out)


def render_source(source: RenderableSource, profile: HospitalProfile = DEFAULT_HOSPITAL_PROFILE) -> str:
    if isinstance(source, StructuredSource):
        return render_discharge_html(source.document, profile)
    if isinstance(source, LegacySource):
        return render_legacy_html(source, profile)
    raise TypeError(f"Unsupported renderable source: {type(source).__name__}")
