from __future__ import annotations

import io
from dataclasses import replace

import pytest
from docx import Document
from pypdf import PdfReader

from sectiondocs.export import completed_sections, export_report
from sectiondocs.state import SectionStore
from sectiondocs.types import SectionStatus, WorkspaceState


def _complete(state: WorkspaceState, section_id: str, summary: str) -> WorkspaceState:
    section = state.get(section_id)
    return state.with_section(replace(section, status=SectionStatus.COMPLETE, summary=summary))


@pytest.fixture()
def finished(store: SectionStore) -> WorkspaceState:
    state = _complete(store.state, "other", "Gift letter from parents")
    state = _complete(state, "identification", "Passport valid until 2030")
    failed = replace(state.get("income"), status=SectionStatus.ERROR)
    return state.with_section(failed)


def test_only_complete_sections_in_workspace_order(finished: WorkspaceState) -> None:
    assert [section.id for section in completed_sections(finished)] == ["identification", "other"]


def test_pdf_report(finished: WorkspaceState) -> None:
    artifact = export_report(finished, "pdf")

    assert artifact.filename == "mortgage-summary.pdf"
    assert artifact.media_type == "application/pdf"
    text = "".join(page.extract_text() for page in PdfReader(io.BytesIO(artifact.data)).pages)
    assert "Identification" in text
    assert "Passport valid until 2030" in text
    assert "Income Documents" not in text
    assert text.index("Identification") < text.index("Other Documents")


def test_docx_report_has_bold_titles(finished: WorkspaceState) -> None:
    artifact = export_report(finished, "docx")

    assert artifact.filename == "mortgage-summary.docx"
    document = Document(io.BytesIO(artifact.data))
    paragraphs = [paragraph for paragraph in document.paragraphs if paragraph.text.strip()]
    assert len(paragraphs) == 2
    first_run = paragraphs[0].runs[0]
    assert first_run.text == "Identification"
    assert first_run.bold is True
    assert "Gift letter from parents" in paragraphs[1].text


def test_report_with_nothing_complete(store: SectionStore) -> None:
    artifact = export_report(store.state, "pdf")

    assert artifact.data.startswith(b"%PDF")


def test_unknown_format(finished: WorkspaceState) -> None:
    with pytest.raises(ValueError):
        export_report(finished, "html")  # type: ignore[arg-type]


def test_report_stem_can_be_overridden(finished: WorkspaceState) -> None:
    artifact = export_report(finished, "docx", stem="applicant-42")

    assert artifact.filename == "applicant-42.docx"
