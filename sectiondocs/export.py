"""Combine completed section summaries into a PDF or DOCX report."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import Literal, Sequence
from xml.sax.saxutils import escape

from docx import Document
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from .converters import DOCX_MEDIA_TYPE
from .types import Section, SectionStatus, WorkspaceState

LOGGER = logging.getLogger(__name__)

ExportFormat = Literal["pdf", "docx"]
REPORT_STEM = "mortgage-summary"


@dataclass(frozen=True, slots=True)
class ExportArtifact:
    filename: str
    data: bytes = field(repr=False)
    media_type: str


def completed_sections(state: WorkspaceState) -> list[Section]:
    """Sections in ``complete`` status, in workspace order."""

    return [section for section in state if section.status is SectionStatus.COMPLETE]


def export_pdf(sections: Sequence[Section]) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title="Summary Report",
    )
    styles = getSampleStyleSheet()
    heading = ParagraphStyle("SectionHeading", parent=styles["Heading2"], fontName="Helvetica-Bold", fontSize=14, leading=18)
    body = ParagraphStyle("SectionBody", parent=styles["BodyText"], fontName="Helvetica", fontSize=12, leading=16)

    story = []
    for section in sections:
        story.append(Paragraph(escape(section.title), heading))
        text = escape(section.summary or "").replace("\n", "<br/>")
        story.append(Paragraph(text, body))
        story.append(Spacer(1, 10 * mm))
    if not story:
        story.append(Spacer(1, 1))
    doc.build(story)
    return buffer.getvalue()


def export_docx(sections: Sequence[Section]) -> bytes:
    document = Document()
    for section in sections:
        paragraph = document.add_paragraph()
        paragraph.add_run(section.title).bold = True
        paragraph.add_run("\n")
        paragraph.add_run(section.summary or "")
        paragraph.add_run("\n\n")
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def export_report(state: WorkspaceState, fmt: ExportFormat, *, stem: str = REPORT_STEM) -> ExportArtifact:
    """Build ``{stem}.pdf`` or ``{stem}.docx`` from ``state``."""

    sections = completed_sections(state)
    LOGGER.info("Exporting %d completed section(s) as %s", len(sections), fmt)
    if fmt == "pdf":
        return ExportArtifact(f"{stem}.pdf", export_pdf(sections), "application/pdf")
    if fmt == "docx":
        return ExportArtifact(f"{stem}.docx", export_docx(sections), DOCX_MEDIA_TYPE)
    raise ValueError(f"Unsupported export format: {fmt!r}")


__all__ = [
    "ExportArtifact",
    "ExportFormat",
    "completed_sections",
    "export_docx",
    "export_pdf",
    "export_report",
]
