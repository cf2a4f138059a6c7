from datetime import datetime

from fpdf import FPDF
from fpdf.enums import XPos, YPos


def _latin1(value):
    # Core PDF fonts only cover latin-1
    return str(value if value is not None else "-").encode("latin-1", "replace").decode("latin-1")


def _row(pdf, label, value):
    pdf.set_font("Helvetica", style="B", size=11)
    pdf.cell(50, 8, text=_latin1(label))
    pdf.set_font("Helvetica", size=11)
    pdf.cell(0, 8, text=_latin1(value), new_x=XPos.LMARGIN, new_y=YPos.NEXT)


def _fmt(dt):
    return dt.strftime("%Y-%m-%d %H:%M") if dt else "-"


def inspection_report(inspection) -> bytes:
    """Render a one-page PDF summary for an inspection."""
    pdf = FPDF()
    pdf.set_title(f"Inspection report #{inspection.id}")
    pdf.add_page()
    pdf.set_font("Helvetica", style="B", size=16)
    pdf.cell(0, 12, text="Buildstate Inspection Report", align="C", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(4)

    prop = inspection.property
    _row(pdf, "Inspection", f"#{inspection.id} {inspection.title}")
    _row(pdf, "Property", f"{prop.name}, {prop.address}, {prop.city}" if prop else "-")
    _row(pdf, "Unit", inspection.unit.unit_number if inspection.unit else "Whole property")
    _row(pdf, "Type", inspection.type)
    _row(pdf, "Status", inspection.status)
    _row(pdf, "Scheduled", _fmt(inspection.scheduled_date))
    _row(pdf, "Completed", _fmt(inspection.completed_date))
    _row(pdf, "Inspector", inspection.assigned_to.full_name if inspection.assigned_to else "Unassigned")

    for heading, body in (("Findings", inspection.findings), ("Notes", inspection.notes)):
        pdf.ln(4)
        pdf.set_font("Helvetica", style="B", size=13)
        pdf.cell(0, 10, text=heading, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.set_font("Helvetica", size=11)
        pdf.multi_cell(0, 6, text=_latin1(body or "None recorded."))

    pdf.ln(6)
    pdf.set_font("Helvetica", style="I", size=9)
    pdf.cell(0, 6, text=f"Generated {datetime.utcnow().strftime('%Y-%m-%d %H:%M')} UTC")
    return bytes(pdf.output())
