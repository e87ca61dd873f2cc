# notepipe/services/exporter.py
"""
Render a meeting into a downloadable artifact.

Missing summary or transcript data renders as ``N/A`` so an export can be
produced for a meeting that never finished processing.
"""
from __future__ import annotations

import json
from io import BytesIO
from typing import NamedTuple, Optional
from xml.sax.saxutils import escape

from docx import Document
from reportlab.lib import colors
from reportlab.lib.enums import TA_LEFT
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from ..errors import UnsupportedFormatError
from ..models import ExportFormat, Meeting, Summary, Transcript
from ..utils.text import strip_control

PLACEHOLDER = "N/A"

CONTENT_TYPES = {
    ExportFormat.PDF: "application/pdf",
    ExportFormat.DOCX: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ExportFormat.TXT: "text/plain",
    ExportFormat.JSON: "application/json",
}


class RenderedExport(NamedTuple):
    content: bytes
    content_type: str
    extension: str


def _date_str(meeting: Meeting) -> str:
    return meeting.created_at.strftime("%B %d, %Y") if meeting.created_at else PLACEHOLDER


def _exec_summary(summary: Optional[Summary]) -> str:
    # model output; XML-based formats reject control characters
    return strip_control(summary.exec_summary if summary else None) or PLACEHOLDER


def render_json(meeting: Meeting, transcript: Optional[Transcript], summary: Optional[Summary]) -> bytes:
    doc = {
        "meeting": meeting.model_dump(mode="json"),
        "summary": summary.model_dump(mode="json") if summary else None,
        "transcript": transcript.model_dump(mode="json") if transcript else None,
    }
    return json.dumps(doc, indent=2, ensure_ascii=False).encode("utf-8")


def render_txt(meeting: Meeting, transcript: Optional[Transcript], summary: Optional[Summary]) -> bytes:
    text = (transcript.text_long if transcript else None) or PLACEHOLDER
    content = (
        f"Title: {meeting.title}\n"
        f"Date: {_date_str(meeting)}\n\n"
        f"EXECUTIVE SUMMARY\n{_exec_summary(summary)}\n\n"
        f"TRANSCRIPT\n{text}"
    )
    return content.encode("utf-8")


def render_pdf(meeting: Meeting, transcript: Optional[Transcript], summary: Optional[Summary]) -> bytes:
    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=letter,
        rightMargin=0.75 * inch,
        leftMargin=0.75 * inch,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
        title=meeting.title,
    )
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        "MeetingTitle",
        parent=styles["Heading1"],
        fontSize=20,
        textColor=colors.HexColor("#1f2937"),
        spaceAfter=6,
        alignment=TA_LEFT,
        fontName="Helvetica-Bold",
    )
    date_style = ParagraphStyle(
        "MeetingDate",
        parent=styles["Normal"],
        fontSize=12,
        textColor=colors.HexColor("#6b7280"),
        spaceAfter=20,
    )
    heading_style = ParagraphStyle(
        "SectionHeading",
        parent=styles["Heading2"],
        fontSize=14,
        textColor=colors.HexColor("#1f2937"),
        spaceAfter=12,
        spaceBefore=12,
        fontName="Helvetica-Bold",
    )
    body_style = ParagraphStyle(
        "Body",
        parent=styles["Normal"],
        fontSize=10,
        leading=14,
    )

    story = [
        Paragraph(escape(strip_control(meeting.title)), title_style),
        Paragraph(f"Date: {escape(_date_str(meeting))}", date_style),
        Paragraph("Executive Summary:", heading_style),
    ]
    for para in _exec_summary(summary).split("\n\n"):
        story.append(Paragraph(escape(para).replace("\n", "<br/>"), body_style))
        story.append(Spacer(1, 6))

    doc.build(story)
    return buf.getvalue()


def render_docx(meeting: Meeting, transcript: Optional[Transcript], summary: Optional[Summary]) -> bytes:
    doc = Document()
    doc.add_heading(strip_control(meeting.title), level=1)
    date_par = doc.add_paragraph()
    date_par.add_run(f"Date: {_date_str(meeting)}").bold = True
    doc.add_heading("Executive Summary", level=2)
    doc.add_paragraph(_exec_summary(summary))

    buf = BytesIO()
    doc.save(buf)
    return buf.getvalue()


RENDERERS = {
    ExportFormat.JSON: render_json,
    ExportFormat.TXT: render_txt,
    ExportFormat.PDF: render_pdf,
    ExportFormat.DOCX: render_docx,
}


def render(fmt: str, meeting: Meeting, transcript: Optional[Transcript] = None,
           summary: Optional[Summary] = None) -> RenderedExport:
    try:
        export_format = ExportFormat(fmt)
    except ValueError:
        raise UnsupportedFormatError(f"Unsupported format: {fmt}") from None
    content = RENDERERS[export_format](meeting, transcript, summary)
    return RenderedExport(content, CONTENT_TYPES[export_format], export_format.value)
