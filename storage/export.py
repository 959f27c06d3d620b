"""
storage/export.py

Handoff export helpers: a patient's medical history as a JSON string or as
PDF bytes.

Both exporters go through the same consent check as an on-screen read:
the requester must be the patient or a doctor the patient has shared with,
otherwise ``AccessDenied`` propagates.

Dependencies
------------
- reportlab  (PDF generation)
- engine.service  (consent-gated data access)
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from html import escape
from io import BytesIO
from typing import Any

from engine.service import HealthVaultService
from storage.models import (
    AccessContext,
    AllergyNote,
    Consultation,
    LabResult,
    MedicalRecord,
    Patient,
)

logger = logging.getLogger(__name__)

_DISCLAIMER = (
    "Exported from a personal health-record vault at the patient's request or "
    "with the patient's consent. Verify clinical details with the treating "
    "doctor before acting on them."
)


def _mask_national_id(national_id: str) -> str:
    return "XXXX-XXXX-" + national_id[-4:]


def _record_details(record: MedicalRecord) -> dict[str, Any]:
    """The type-specific fields of *record*, one branch per variant."""
    if isinstance(record, Consultation):
        return {
            "doctor": record.doctor_name,
            "diagnosis": record.diagnosis,
            "prescription": record.prescription,
        }
    if isinstance(record, LabResult):
        return {"test": record.test_name, "result": record.result_summary}
    if isinstance(record, AllergyNote):
        return {"allergen": record.allergen, "reaction": record.reaction, "severity": record.severity.value}
    raise TypeError(f"Unsupported record type: {type(record).__name__}")


# ---------------------------------------------------------------------------
# Shared data fetch
# ---------------------------------------------------------------------------


def _build_export_bundle(
    service: HealthVaultService, patient_uid: str, requester: AccessContext
) -> dict[str, Any]:
    patient, history = service.open_patient(requester, patient_uid)

    bundle: dict[str, Any] = {
        "export_generated_at": datetime.now(tz=timezone.utc).isoformat(),
        "patient": {
            "uid": patient.uid,
            "name": patient.name,
            "national_id": _mask_national_id(patient.national_id),
        },
        "records": [
            {
                "id": r.id,
                "date": r.date.isoformat(),
                "type": r.type,
                **_record_details(r),
                "notes": r.notes,
            }
            for r in history
        ],
        "disclaimer": _DISCLAIMER,
    }

    # Only the patient sees who else holds access.
    if requester.uid == patient.uid:
        bundle["shared_with"] = _doctor_names(service, patient)

    return bundle


def _doctor_names(service: HealthVaultService, patient: Patient) -> list[str]:
    return [d.name for d in service.registry.list_doctors() if d.uid in patient.shared_with]


# ---------------------------------------------------------------------------
# JSON export
# ---------------------------------------------------------------------------


def export_json(service: HealthVaultService, patient_uid: str, requester: AccessContext) -> str:
    """Pretty-printed JSON handoff of *patient_uid*'s history."""
    bundle = _build_export_bundle(service, patient_uid, requester)
    service.db.append_audit(requester.uid, "export_json", patient_uid)
    return json.dumps(bundle, indent=2, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# PDF export
# ---------------------------------------------------------------------------


def export_pdf(service: HealthVaultService, patient_uid: str, requester: AccessContext) -> bytes:
    """
    Produce a PDF of *patient_uid*'s history using reportlab.

    Returns:
        The PDF document as ``bytes``.
    """
    from reportlab.lib import colors
    from reportlab.lib.pagesizes import A4
    from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
    from reportlab.lib.units import inch
    from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

    bundle = _build_export_bundle(service, patient_uid, requester)

    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=0.8 * inch,
        rightMargin=0.8 * inch,
        topMargin=0.8 * inch,
        bottomMargin=0.8 * inch,
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "HistoryTitle",
        parent=styles["Title"],
        fontSize=17,
        textColor=colors.HexColor("#1f4e5f"),
        spaceAfter=6,
    )
    heading_style = ParagraphStyle(
        "HistoryHeading",
        parent=styles["Heading2"],
        fontSize=12,
        textColor=colors.HexColor("#1f4e5f"),
        spaceBefore=12,
        spaceAfter=4,
    )
    normal = styles["Normal"]
    small = ParagraphStyle("Small", parent=normal, fontSize=8, textColor=colors.grey)

    patient = bundle["patient"]
    story = [
        Paragraph(f"Medical History: {escape(patient['name'])}", title_style),
        Paragraph(f"Aadhaar: {patient['national_id']}", normal),
        Paragraph(f"Generated: {bundle['export_generated_at']}", small),
        Spacer(1, 0.15 * inch),
        Paragraph("Records", heading_style),
    ]

    if bundle["records"]:
        rows = [["Date", "Type", "Details"]]
        for r in bundle["records"]:
            details = "<br/>".join(
                f"<b>{k.title()}:</b> {escape(str(v))}"
                for k, v in r.items()
                if k not in ("id", "date", "type") and v
            )
            rows.append([r["date"][:10], r["type"].replace("_", " ").title(), Paragraph(details, normal)])
        table = Table(rows, colWidths=[1.0 * inch, 1.3 * inch, 4.3 * inch], repeatRows=1)
        table.setStyle(
            TableStyle([
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1f4e5f")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f0f4f8")]),
                ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.HexColor("#b8c4cc")),
                ("LEFTPADDING", (0, 0), (-1, -1), 5),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ])
        )
        story.append(table)
    else:
        story.append(Paragraph("No records on file.", normal))

    if "shared_with" in bundle:
        story.append(Paragraph("Doctors With Access", heading_style))
        story.append(Paragraph(escape(", ".join(bundle["shared_with"])) or "None", normal))

    story.append(Spacer(1, 0.3 * inch))
    story.append(Paragraph(bundle["disclaimer"], small))

    doc.build(story)
    service.db.append_audit(requester.uid, "export_pdf", patient_uid)
    logger.info("Exported history of %s as PDF for %s", patient_uid, requester.uid)
    return buf.getvalue()
