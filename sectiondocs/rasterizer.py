"""Render PDF pages to PNG images with PyMuPDF."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Literal, Optional

import fitz  # PyMuPDF

from .downloads import DownloadSink
from .exceptions import InvalidPDFError, RasterizationError
from .jobs import CancellationToken, ProgressCallback, check_cancelled, report
from .types import FileEntry, RasterImage

LOGGER = logging.getLogger(__name__)

ZOOM = 2.0


def page_image_name(stem: str, page_number: int, page_count: int) -> str:
    """``{stem}.png`` for one-page documents, ``{stem}-page-{n}.png`` otherwise."""

    if page_count == 1:
        return f"{stem}.png"
    return f"{stem}-page-{page_number}.png"


def _open_document(data: bytes, name: str) -> "fitz.Document":
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as exc:
        raise InvalidPDFError(f"Could not open {name}: {exc}") from exc
    if doc.needs_pass:
        doc.close()
        raise InvalidPDFError(f"{name} is password protected.")
    return doc


async def rasterize_pages(
    file: FileEntry,
    *,
    deliver: Literal["download", "return"] = "download",
    sink: Optional[DownloadSink] = None,
    progress: Optional[ProgressCallback] = None,
    token: Optional[CancellationToken] = None,
) -> list[RasterImage]:
    """Render every page of ``file`` at 2x zoom.

    With ``deliver="download"`` each page is handed to ``sink`` as soon as it
    is rendered; with ``deliver="return"`` nothing is delivered and the caller
    gets the images. Either way the full list is returned on success. Any
    page failure aborts the whole run and no images are returned.
    """

    if deliver not in ("download", "return"):
        raise ValueError(f"deliver must be 'download' or 'return', got {deliver!r}")
    if deliver == "download" and sink is None:
        raise ValueError("A download sink is required when deliver='download'")

    stem = Path(file.name).stem or "page"
    report(progress, 0, "Opening document")
    doc = _open_document(file.data, file.name)
    images: List[RasterImage] = []
    try:
        total = doc.page_count
        LOGGER.info("Rasterizing %d page(s) of %s", total, file.name)
        report(progress, 10, f"Loaded {total} page(s)")
        matrix = fitz.Matrix(ZOOM, ZOOM)
        for index in range(total):
            check_cancelled(token)
            report(progress, 20 + index * 70 // total, f"Rendering page {index + 1} of {total}")
            try:
                pixmap = doc.load_page(index).get_pixmap(matrix=matrix, alpha=False)
                data = pixmap.tobytes("png")
            except (RuntimeError, ValueError) as exc:
                raise RasterizationError(f"Failed to render page {index + 1} of {file.name}: {exc}") from exc

            image = RasterImage(
                name=page_image_name(stem, index + 1, total),
                data=data,
                page_number=index + 1,
                width=pixmap.width,
                height=pixmap.height,
            )
            LOGGER.debug("Rendered %s (%dx%d)", image.name, image.width, image.height)
            if deliver == "download":
                sink.deliver(image.name, image.data, image.media_type)
            images.append(image)
            await asyncio.sleep(0)
    finally:
        doc.close()

    report(progress, 100, "Rasterization complete")
    return images


__all__ = ["rasterize_pages", "page_image_name", "ZOOM"]
