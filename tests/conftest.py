from __future__ import annotations

import io
from pathlib import Path
from typing import Callable
import sys

import pytest
from docx import Document
from PIL import Image
from pypdf import PdfWriter
from pypdf.generic import (
    ArrayObject,
    DecodedStreamObject,
    DictionaryObject,
    NameObject,
    NumberObject,
)
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen.canvas import Canvas

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sectiondocs.state import SectionStore, initial_state  # noqa: E402
from sectiondocs.types import FileEntry, Section  # noqa: E402

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


@pytest.fixture()
def sections() -> list[Section]:
    return [
        Section(id="identification", title="Identification", endpoint="https://hooks.test/identification"),
        Section(id="income", title="Income Documents", endpoint="https://hooks.test/income"),
        Section(id="other", title="Other Documents", endpoint="https://hooks.test/other"),
    ]


@pytest.fixture()
def store(sections: list[Section]) -> SectionStore:
    return SectionStore(initial_state(sections))


@pytest.fixture()
def png_bytes() -> bytes:
    image = Image.new("RGB", (40, 20), (200, 30, 30))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture()
def pdf_bytes() -> Callable[..., bytes]:
    """Build a PDF of ``pages`` 200x200pt pages with a line of text each."""

    def _create(pages: int = 1, *, image: Image.Image | None = None) -> bytes:
        buffer = io.BytesIO()
        canv = Canvas(buffer, pagesize=(200, 200))
        for number in range(1, pages + 1):
            canv.drawString(20, 100, f"Page {number}")
            if image is not None:
                canv.drawImage(ImageReader(image), 20, 20, width=60, height=30)
            canv.showPage()
        canv.save()
        return buffer.getvalue()

    return _create


@pytest.fixture()
def blank_pdf_bytes() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    writer.add_blank_page(width=200, height=200)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def make_stream(entries: dict[str, object], data: bytes) -> DecodedStreamObject:
    stream = DecodedStreamObject()
    for key, value in entries.items():
        stream[NameObject(key)] = value
    stream.set_data(data)
    return stream


def rgb_image_stream(width: int, height: int, pixels: bytes, **extra: object) -> DecodedStreamObject:
    entries: dict[str, object] = {
        "/Type": NameObject("/XObject"),
        "/Subtype": NameObject("/Image"),
        "/Width": NumberObject(width),
        "/Height": NumberObject(height),
        "/ColorSpace": NameObject("/DeviceRGB"),
        "/BitsPerComponent": NumberObject(8),
    }
    entries.update(extra)
    return make_stream(entries, pixels)


@pytest.fixture()
def xobject_pdf() -> Callable[..., bytes]:
    """Build a one-page PDF painting the given XObjects with ``content``.

    ``xobjects`` maps resource names (without slash) to stream objects or to
    callables receiving the writer and returning a stream, so forms can
    reference other registered objects.
    """

    def _create(xobjects: dict[str, object], content: bytes) -> bytes:
        writer = PdfWriter()
        page = writer.add_blank_page(width=200, height=200)
        resources = DictionaryObject()
        for name, value in xobjects.items():
            stream = value(writer) if callable(value) else value
            resources[NameObject(f"/{name}")] = writer._add_object(stream)
        page[NameObject("/Resources")] = DictionaryObject({NameObject("/XObject"): resources})
        contents = make_stream({}, content)
        page[NameObject("/Contents")] = writer._add_object(contents)
        buffer = io.BytesIO()
        writer.write(buffer)
        return buffer.getvalue()

    return _create


@pytest.fixture()
def docx_bytes() -> Callable[..., bytes]:
    def _create(build: Callable[[Document], None]) -> bytes:
        document = Document()
        build(document)
        buffer = io.BytesIO()
        document.save(buffer)
        return buffer.getvalue()

    return _create


@pytest.fixture()
def file_entry() -> Callable[..., FileEntry]:
    def _create(name: str, data: bytes, media_type: str | None = None) -> FileEntry:
        return FileEntry.create(name, data, media_type)

    return _create


def form_stream(inner_name: str, inner_ref: object) -> DecodedStreamObject:
    return make_stream(
        {
            "/Type": NameObject("/XObject"),
            "/Subtype": NameObject("/Form"),
            "/BBox": ArrayObject([NumberObject(0), NumberObject(0), NumberObject(10), NumberObject(10)]),
            "/Resources": DictionaryObject(
                {NameObject("/XObject"): DictionaryObject({NameObject(f"/{inner_name}"): inner_ref})}
            ),
        },
        f"q 10 0 0 10 0 0 cm /{inner_name} Do Q".encode("ascii"),
    )
