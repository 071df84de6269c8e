# =============================================================================
# drms_core/exports/pdf_export.py
# PDF Exports (reportlab)
# =============================================================================
"""
Render a titled table report to PDF bytes.

Layout: title, a metadata line (generated-at and row count), then the
data table with a repeated header row.
"""

from __future__ import annotations
import io
from typing import List, Optional, Sequence

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from drms_core.models.records import utcnow

MAX_CELL_CHARS = 40
DEFAULT_COLUMNS = {
    "assessments": ["rapid_assessment_type", "rapid_assessment_date", "entity_id", "status",
                    "priority", "verification_status"],
    "responses": ["type", "status", "priority", "entity_id", "assessment_id", "planned_date"],
    "entities": ["name", "type", "location", "is_active"],
    "incidents": ["type", "severity", "status", "location", "created_at"],
    "commitments": ["donor_id", "entity_id", "status", "total_committed_quantity", "delivered_quantity"],
    "donors": ["name", "type", "organization", "contact_email"],
}


def _cell(value) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    text = str(value)
    return text if len(text) <= MAX_CELL_CHARS else text[: MAX_CELL_CHARS - 3] + "..."


def build_pdf(
    title: str,
    df: pd.DataFrame,
    columns: Optional[Sequence[str]] = None,
    subtitle: Optional[str] = None,
) -> bytes:
    """Return the PDF document as bytes."""
    columns: List[str] = [c for c in (columns or df.columns) if c in df.columns]
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        topMargin=1.5 * cm,
        bottomMargin=1.5 * cm,
        leftMargin=1.5 * cm,
        rightMargin=1.5 * cm,
        title=title,
    )

    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(name="Meta", parent=styles["BodyText"], textColor=colors.grey, spaceAfter=8))

    meta = f"Generated {utcnow().strftime('%Y-%m-%d %H:%M UTC')} | {len(df)} records"
    if subtitle:
        meta = f"{subtitle} | {meta}"
    story = [Paragraph(title, styles["Title"]), Paragraph(meta, styles["Meta"]), Spacer(1, 0.3 * cm)]

    if columns and not df.empty:
        data = [[c.replace("_", " ").title() for c in columns]]
        data.extend([[_cell(v) for v in row] for row in df[columns].itertuples(index=False)])
        table = Table(data, repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#E5E7EB")),
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("FONTSIZE", (0, 0), (-1, -1), 8),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                    ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                    ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#F9FAFB")]),
                ]
            )
        )
        story.append(table)
    else:
        story.append(Paragraph("No records match the selected filters.", styles["BodyText"]))

    doc.build(story)
    return buffer.getvalue()
