"""Normalise images, Word documents and plain text into PDF.

Every converter draws onto a single reportlab canvas, one page at a time, and
yields to the event loop between pages (or line batches) so several files can
be converted side by side.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Literal, Optional, Sequence
from xml.sax.saxutils import escape
from zipfile import BadZipFile

from docx import Document as load_docx
from docx.opc.exceptions import PackageNotFoundError
from docx.table import Table as DocxTable
from docx.text.paragraph import Paragraph as DocxParagraph
from PIL import Image, UnidentifiedImageError
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen.canvas import Canvas
from reportlab.platypus import Flowable, Frame, Paragraph, Spacer, Table, TableStyle

from .exceptions import ConversionError, ConversionUnsupported
from .jobs import CancellationToken, ProgressCallback, check_cancelled, report
from .types import ConvertedDocument, FileEntry

LOGGER = logging.getLogger(__name__)

PAGE_SIZE = A4
IMAGE_MARGIN_RATIO = 0.1
DOCX_BLOCKS_PER_PAGE = 10
DOCX_PAGE_BREAK_STYLES = frozenset({"Title", "Heading 1"})
DOCX_MARGIN = 50
TEXT_FONT = "Helvetica"
TEXT_FONT_SIZE = 11
TEXT_LINE_HEIGHT = 14
TEXT_MARGIN = 50
TEXT_PROGRESS_EVERY = 100

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "gif", "bmp", "webp", "tif", "tiff"})
TEXT_EXTENSIONS = frozenset({"txt", "text", "md", "csv", "log"})
LEGACY_WORD_EXTENSIONS = frozenset({"doc"})

InputKind = Literal["pdf", "image", "docx", "text"]


def detect_input_kind(file: FileEntry) -> InputKind:
    """Classify ``file`` by media type, falling back to its extension."""

    media_type = (file.media_type or "").lower()
    extension = file.extension
    if file.is_pdf:
        return "pdf"
    if extension in LEGACY_WORD_EXTENSIONS or media_type == "application/msword":
        raise ConversionUnsupported(
            f"Legacy Word documents are not supported ({file.name}); save it as .docx first."
        )
    if media_type.startswith("image/") or extension in IMAGE_EXTENSIONS:
        return "image"
    if media_type == DOCX_MEDIA_TYPE or extension == "docx":
        return "docx"
    if media_type.startswith("text/") or extension in TEXT_EXTENSIONS:
        return "text"
    raise ConversionUnsupported(f"Unsupported file type for conversion: {file.name} ({file.media_type})")


async def convert_to_portable_document(
    file: FileEntry,
    *,
    progress: Optional[ProgressCallback] = None,
    token: Optional[CancellationToken] = None,
) -> ConvertedDocument:
    """Convert ``file`` to a PDF document.

    Progress events are monotonic and end at 100. PDF input is returned
    unchanged.
    """

    kind = detect_input_kind(file)
    LOGGER.info("Converting %s (%s) to PDF", file.name, kind)
    report(progress, 0, "Starting conversion")
    check_cancelled(token)

    name = f"{Path(file.name).stem or 'document'}.pdf"
    if kind == "pdf":
        report(progress, 100, "Document is already a PDF")
        return ConvertedDocument(name=file.name, data=file.data, page_count=_count_pdf_pages(file.data))

    if kind == "image":
        data, pages = await _image_to_pdf(file, progress, token)
    elif kind == "docx":
        data, pages = await _docx_to_pdf(file, progress, token)
    else:
        data, pages = await _text_to_pdf(file, progress, token)

    report(progress, 100, "Conversion complete")
    LOGGER.info("Converted %s into %d page(s)", file.name, pages)
    return ConvertedDocument(name=name, data=data, page_count=pages)


def _count_pdf_pages(data: bytes) -> int:
    from pypdf import PdfReader
    from pypdf.errors import PdfReadError

    try:
        return len(PdfReader(io.BytesIO(data)).pages)
    except (PdfReadError, ValueError) as exc:
        LOGGER.warning("Could not count pages of pass-through PDF: %s", exc)
        return 0


def _new_canvas(buffer: io.BytesIO, title: str) -> Canvas:
    canv = Canvas(buffer, pagesize=PAGE_SIZE)
    canv.setTitle(title)
    return canv


# --------------------------------------------------------------------------- #
# Images
# --------------------------------------------------------------------------- #
def fit_image(width: float, height: float, page_size: tuple[float, float] = PAGE_SIZE) -> tuple[float, float, float, float]:
    """Return ``(x, y, width, height)`` placing an image centred on the page.

    The image keeps its aspect ratio and is scaled to fit inside the page
    minus a 10% margin on each dimension.
    """

    if width <= 0 or height <= 0:
        raise ConversionError("Image has no pixels")
    page_width, page_height = page_size
    available_width = page_width * (1 - IMAGE_MARGIN_RATIO)
    available_height = page_height * (1 - IMAGE_MARGIN_RATIO)
    scale = min(available_width / width, available_height / height)
    drawn_width = width * scale
    drawn_height = height * scale
    return (
        (page_width - drawn_width) / 2,
        (page_height - drawn_height) / 2,
        drawn_width,
        drawn_height,
    )


async def _image_to_pdf(
    file: FileEntry,
    progress: Optional[ProgressCallback],
    token: Optional[CancellationToken],
) -> tuple[bytes, int]:
    try:
        with Image.open(io.BytesIO(file.data)) as source:
            source.load()
            bitmap = _normalise_mode(source)
    except (UnidentifiedImageError, OSError) as exc:
        raise ConversionError(f"Could not decode image {file.name}: {exc}") from exc

    report(progress, 30, "Image decoded")
    await asyncio.sleep(0)
    check_cancelled(token)

    buffer = io.BytesIO()
    canv = _new_canvas(buffer, file.name)
    x, y, width, height = fit_image(*bitmap.size)
    mask = "auto" if bitmap.mode == "RGBA" else None
    canv.drawImage(ImageReader(bitmap), x, y, width=width, height=height, mask=mask)
    canv.showPage()
    report(progress, 80, "Image placed on page")
    canv.save()
    return buffer.getvalue(), 1


def _normalise_mode(image: Image.Image) -> Image.Image:
    if image.mode in ("RGB", "L"):
        return image.copy()
    if image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info:
        return image.convert("RGBA")
    return image.convert("RGB")


# --------------------------------------------------------------------------- #
# Word documents
# --------------------------------------------------------------------------- #
@dataclass(slots=True)
class Block:
    """A top-level paragraph or table read from a DOCX body."""

    kind: Literal["paragraph", "table"]
    style: str = "Normal"
    markup: str = ""
    rows: List[List[str]] = field(default_factory=list)

    @property
    def starts_page(self) -> bool:
        return self.kind == "paragraph" and self.style in DOCX_PAGE_BREAK_STYLES


def read_docx_blocks(data: bytes) -> list[Block]:
    """Decode a DOCX container into body blocks in document order."""

    try:
        document = load_docx(io.BytesIO(data))
    except (PackageNotFoundError, BadZipFile, KeyError, ValueError) as exc:
        raise ConversionError(f"Could not read Word document: {exc}") from exc

    blocks: list[Block] = []
    for item in document.iter_inner_content():
        if isinstance(item, DocxParagraph):
            if not item.text.strip():
                continue
            style = item.style.name if item.style is not None else "Normal"
            blocks.append(Block(kind="paragraph", style=style, markup=_runs_markup(item)))
        elif isinstance(item, DocxTable):
            rows = [[escape(cell.text) for cell in row.cells] for row in item.rows]
            if rows:
                blocks.append(Block(kind="table", rows=rows))
    return blocks


def _runs_markup(paragraph: DocxParagraph) -> str:
    parts: list[str] = []
    for run in paragraph.runs:
        text = escape(run.text).replace("\n", "<br/>")
        if not text:
            continue
        if run.bold:
            text = f"<b>{text}</b>"
        if run.italic:
            text = f"<i>{text}</i>"
        if run.underline:
            text = f"<u>{text}</u>"
        parts.append(text)
    return "".join(parts) or escape(paragraph.text)


def paginate_blocks(blocks: Sequence[Block], per_page: int = DOCX_BLOCKS_PER_PAGE) -> list[list[Block]]:
    """Group blocks into pages.

    A Title or Heading 1 paragraph opens a new page when the current page
    already holds a block; otherwise a page closes after ``per_page`` blocks.
    """

    pages: list[list[Block]] = []
    current: list[Block] = []
    for block in blocks:
        if current and (block.starts_page or len(current) >= per_page):
            pages.append(current)
            current = []
        current.append(block)
    if current:
        pages.append(current)
    return pages


def _block_flowables(block: Block, styles, usable_width: float) -> list[Flowable]:
    if block.kind == "table":
        body = styles["BodyText"]
        columns = max(len(row) for row in block.rows)
        cells = [
            [Paragraph(text, body) for text in row] + [""] * (columns - len(row))
            for row in block.rows
        ]
        table = Table(cells, colWidths=[usable_width / columns] * columns)
        table.setStyle(
            TableStyle(
                [
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ]
            )
        )
        return [table, Spacer(1, 6)]
    return [Paragraph(block.markup, _paragraph_style(block.style, styles))]


def _paragraph_style(style_name: str, styles) -> ParagraphStyle:
    if style_name == "Title":
        return styles["Title"]
    if style_name.startswith("Heading "):
        level = style_name.split(" ", 1)[1]
        key = f"Heading{level}"
        if key in styles:
            return styles[key]
    if style_name.startswith("List"):
        return styles["Bullet"]
    return styles["BodyText"]


def _draw_page(canv: Canvas, flowables: list[Flowable]) -> int:
    """Draw ``flowables`` starting on a fresh page; returns pages emitted."""

    width, height = PAGE_SIZE
    pending = list(flowables)
    emitted = 0
    while pending:
        frame = Frame(DOCX_MARGIN, DOCX_MARGIN, width - 2 * DOCX_MARGIN, height - 2 * DOCX_MARGIN)
        placed = False
        while pending:
            head = pending[0]
            if frame.add(head, canv):
                pending.pop(0)
                placed = True
                continue
            parts = frame.split(head, canv)
            if len(parts) > 1:
                pending[0:1] = parts
                continue
            break
        if not placed and pending:
            LOGGER.warning("Dropping a block that does not fit on an empty page")
            pending.pop(0)
        canv.showPage()
        emitted += 1
    return emitted


async def _docx_to_pdf(
    file: FileEntry,
    progress: Optional[ProgressCallback],
    token: Optional[CancellationToken],
) -> tuple[bytes, int]:
    blocks = read_docx_blocks(file.data)
    pages = paginate_blocks(blocks)
    report(progress, 10, f"Parsed {len(blocks)} block(s)")
    LOGGER.debug("%s: %d block(s) on %d page(s)", file.name, len(blocks), len(pages))

    styles = getSampleStyleSheet()
    usable_width = PAGE_SIZE[0] - 2 * DOCX_MARGIN
    buffer = io.BytesIO()
    canv = _new_canvas(buffer, file.name)
    emitted = 0
    for index, page in enumerate(pages):
        check_cancelled(token)
        flowables: list[Flowable] = []
        for block in page:
            flowables.extend(_block_flowables(block, styles, usable_width))
        emitted += _draw_page(canv, flowables)
        report(progress, 10 + (index + 1) * 85 // len(pages), f"Rendered page {index + 1} of {len(pages)}")
        await asyncio.sleep(0)

    if emitted == 0:
        canv.showPage()
        emitted = 1
    canv.save()
    return buffer.getvalue(), emitted


# --------------------------------------------------------------------------- #
# Plain text
# --------------------------------------------------------------------------- #
def wrap_text_lines(lines: Iterable[str], max_width: float) -> list[str]:
    """Soft-wrap ``lines`` so none exceeds ``max_width`` points."""

    wrapped: list[str] = []
    for line in lines:
        line = line.expandtabs(4)
        if not line.strip():
            wrapped.append("")
            continue
        wrapped.extend(simpleSplit(line, TEXT_FONT, TEXT_FONT_SIZE, max_width) or [""])
    return wrapped


async def _text_to_pdf(
    file: FileEntry,
    progress: Optional[ProgressCallback],
    token: Optional[CancellationToken],
) -> tuple[bytes, int]:
    text = file.data.decode("utf-8-sig", errors="replace")
    source_lines = text.splitlines() or [""]
    width, height = PAGE_SIZE
    buffer = io.BytesIO()
    canv = _new_canvas(buffer, file.name)
    canv.setFont(TEXT_FONT, TEXT_FONT_SIZE)

    top = height - TEXT_MARGIN
    y = top
    pages = 1
    total = len(source_lines)
    for number, line in enumerate(source_lines, start=1):
        for segment in wrap_text_lines([line], width - 2 * TEXT_MARGIN):
            if y - TEXT_LINE_HEIGHT < TEXT_MARGIN:
                canv.showPage()
                canv.setFont(TEXT_FONT, TEXT_FONT_SIZE)
                pages += 1
                y = top
            y -= TEXT_LINE_HEIGHT
            canv.drawString(TEXT_MARGIN, y, segment)
        if number % TEXT_PROGRESS_EVERY == 0:
            report(progress, 10 + number * 85 // total, f"Processed {number} of {total} lines")
            await asyncio.sleep(0)
            check_cancelled(token)

    canv.showPage()
    canv.save()
    return buffer.getvalue(), pages


__all__ = [
    "Block",
    "convert_to_portable_document",
    "detect_input_kind",
    "fit_image",
    "paginate_blocks",
    "read_docx_blocks",
    "wrap_text_lines",
]
