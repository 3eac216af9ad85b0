"""Embedded image extraction from PDF content streams."""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Callable, Iterator, Literal, Optional
from uuid import uuid4

from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader
from pypdf.errors import PdfReadError
from pypdf.generic import (
    ArrayObject,
    ContentStream,
    DictionaryObject,
    IndirectObject,
    NameObject,
    StreamObject,
)

from .exceptions import ExtractionWarning, InvalidPDFError
from .jobs import CancellationToken, ProgressCallback, check_cancelled, report
from .types import ExtractedImage, FileEntry

LOGGER = logging.getLogger(__name__)

MAX_FORM_DEPTH = 8

WarningCallback = Callable[[ExtractionWarning], None]

_RGB_SPACES = {"DeviceRGB", "CalRGB"}
_GRAY_SPACES = {"DeviceGray", "CalGray"}
_CMYK_SPACES = {"DeviceCMYK"}
_UNSUPPORTED_FILTERS = {"CCITTFaxDecode", "JBIG2Decode"}


@dataclass(slots=True)
class _Paint:
    kind: Literal["image", "inline", "missing"]
    name: str = ""
    stream: Optional[StreamObject] = None


def _log_warning(warning: ExtractionWarning) -> None:
    LOGGER.warning(
        "Skipped image %d on page %d: %s", warning.index, warning.page_number, warning.message
    )


def image_name(page_number: int, index: int) -> str:
    return f"image-page{page_number}-{index}-{uuid4().hex[:8]}.png"


async def extract_embedded_images(
    file: FileEntry,
    *,
    progress: Optional[ProgressCallback] = None,
    token: Optional[CancellationToken] = None,
    on_warning: Optional[WarningCallback] = None,
) -> list[ExtractedImage]:
    """Return every image painted on the pages of ``file``.

    Images that cannot be decoded are reported through ``on_warning`` and
    skipped. A document without images yields an empty list.
    """

    warn = on_warning or _log_warning
    reader = _open_reader(file)
    report(progress, 0, "Scanning pages")
    total = len(reader.pages)
    LOGGER.info("Extracting images from %d page(s) of %s", total, file.name)

    images: list[ExtractedImage] = []
    for page_index, page in enumerate(reader.pages):
        page_number = page_index + 1
        check_cancelled(token)
        index = -1
        try:
            for index, paint in enumerate(_page_paints(page, reader)):
                check_cancelled(token)
                image = _extract_one(paint, page_number, index)
                if isinstance(image, ExtractionWarning):
                    warn(image)
                else:
                    images.append(image)
                await asyncio.sleep(0)
        except (PdfReadError, ValueError, KeyError, TypeError) as exc:
            warn(
                ExtractionWarning(
                    f"Could not read content stream: {exc}", page_number=page_number, index=index + 1
                )
            )
        report(progress, 10 + page_number * 85 // max(total, 1), f"Scanned page {page_number} of {total}")
        await asyncio.sleep(0)

    report(progress, 100, f"Found {len(images)} image(s)")
    LOGGER.info("Extracted %d image(s) from %s", len(images), file.name)
    return images


def _open_reader(file: FileEntry) -> PdfReader:
    try:
        reader = PdfReader(io.BytesIO(file.data))
        if reader.is_encrypted and not reader.decrypt(""):
            raise InvalidPDFError(f"{file.name} is password protected.")
        len(reader.pages)
    except (PdfReadError, ValueError, KeyError) as exc:
        raise InvalidPDFError(f"Could not read {file.name}: {exc}") from exc
    return reader


# --------------------------------------------------------------------------- #
# Content stream walk
# --------------------------------------------------------------------------- #
def _page_paints(page: DictionaryObject, reader: PdfReader) -> Iterator[_Paint]:
    contents = page.get_contents()
    if contents is None:
        return
    resources = _resolve(page.get(NameObject("/Resources")))
    yield from _walk(contents, resources, reader, depth=0, active=frozenset())


def _walk(
    source: object,
    resources: object,
    reader: PdfReader,
    *,
    depth: int,
    active: frozenset[int],
) -> Iterator[_Paint]:
    content = source if isinstance(source, ContentStream) else ContentStream(source, reader)
    xobjects = _xobjects(resources)
    for operands, operator in content.operations:
        if operator == b"INLINE IMAGE":
            yield _Paint(kind="inline")
            continue
        if operator != b"Do" or not operands:
            continue
        name = _clean_name(operands[0])
        xobject = _resolve(xobjects.get(name))
        if not isinstance(xobject, StreamObject):
            yield _Paint(kind="missing", name=name)
            continue
        subtype = xobject.get(NameObject("/Subtype"))
        if subtype == "/Image":
            yield _Paint(kind="image", name=name, stream=xobject)
        elif subtype == "/Form":
            key = id(xobject)
            if depth >= MAX_FORM_DEPTH or key in active:
                LOGGER.debug("Not descending into form %s", name)
                continue
            form_resources = _resolve(xobject.get(NameObject("/Resources"))) or resources
            yield from _walk(xobject, form_resources, reader, depth=depth + 1, active=active | {key})


def _xobjects(resources: object) -> dict[str, object]:
    if not isinstance(resources, DictionaryObject):
        return {}
    xobjects = _resolve(resources.get(NameObject("/XObject")))
    if not isinstance(xobjects, DictionaryObject):
        return {}
    return {_clean_name(key): value for key, value in xobjects.items()}


def _clean_name(name: object) -> str:
    raw = str(name)
    return raw[1:] if raw.startswith("/") else raw


def _resolve(obj: object | None) -> object | None:
    if isinstance(obj, IndirectObject):
        return obj.get_object()
    return obj


# --------------------------------------------------------------------------- #
# Decoding
# --------------------------------------------------------------------------- #
def _extract_one(
    paint: _Paint,
    page_number: int,
    index: int,
) -> ExtractedImage | ExtractionWarning:
    if paint.kind == "inline":
        return ExtractionWarning("Inline images are not extracted", page_number=page_number, index=index)
    if paint.kind == "missing" or paint.stream is None:
        return ExtractionWarning(
            f"XObject {paint.name or '?'} could not be resolved", page_number=page_number, index=index
        )
    try:
        bitmap = decode_image_stream(paint.stream)
        buffer = io.BytesIO()
        bitmap.save(buffer, format="PNG")
    except _DecodeFailure as exc:
        return ExtractionWarning(f"{paint.name}: {exc}", page_number=page_number, index=index)
    except (
        PdfReadError,
        UnidentifiedImageError,
        Image.DecompressionBombError,
        OSError,
        KeyError,
        ValueError,
        TypeError,
    ) as exc:
        return ExtractionWarning(
            f"{paint.name}: could not decode image data ({exc})", page_number=page_number, index=index
        )

    LOGGER.debug("Page %d image %d: %s %dx%d", page_number, index, paint.name, *bitmap.size)
    return ExtractedImage(
        name=image_name(page_number, index),
        data=buffer.getvalue(),
        page_number=page_number,
        index=index,
        width=bitmap.width,
        height=bitmap.height,
    )


class _DecodeFailure(Exception):
    pass


def decode_image_stream(stream: StreamObject) -> Image.Image:
    """Decode an image XObject into an RGB, RGBA, L or 1-bit Pillow image."""

    image_mask = _resolve(stream.get(NameObject("/ImageMask")))
    if image_mask is not None and bool(getattr(image_mask, "value", image_mask)):
        raise _DecodeFailure("stencil masks carry no colour data")
    filters = _normalise_filters(stream.get(NameObject("/Filter")))
    unsupported = filters & _UNSUPPORTED_FILTERS
    if unsupported:
        raise _DecodeFailure(f"unsupported filter {sorted(unsupported)[0]}")

    width = int(stream.get(NameObject("/Width"), 0) or 0)
    height = int(stream.get(NameObject("/Height"), 0) or 0)
    if width <= 0 or height <= 0:
        raise _DecodeFailure("image has no dimensions")

    if "DCTDecode" in filters or "JPXDecode" in filters:
        image = Image.open(io.BytesIO(stream.get_data()))
        image.load()
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
    else:
        image = _decode_raw(stream, width, height)

    alpha = _soft_mask(stream, image.size)
    if alpha is not None:
        image = image.convert("RGBA")
        image.putalpha(alpha)
    return image


def _decode_raw(stream: StreamObject, width: int, height: int) -> Image.Image:
    bits = int(stream.get(NameObject("/BitsPerComponent"), 8) or 8)
    color_space = _resolve(stream.get(NameObject("/ColorSpace")))
    family, components = _color_family(color_space)
    raw = stream.get_data()
    size = (width, height)

    if family == "Indexed":
        return _decode_indexed(raw, size, bits, color_space)
    if bits == 1 and family == "Gray":
        return Image.frombytes("1", size, raw)
    if bits != 8:
        raise _DecodeFailure(f"{bits}-bit {family} images are not supported")
    if family == "RGB":
        return Image.frombytes("RGB", size, raw)
    if family == "Gray":
        return Image.frombytes("L", size, raw)
    if family == "CMYK":
        return Image.frombytes("CMYK", size, raw).convert("RGB")
    raise _DecodeFailure(f"unsupported colour space {family or 'unknown'} ({components} components)")


def _color_family(color_space: object) -> tuple[str, int]:
    if isinstance(color_space, NameObject):
        name = _clean_name(color_space)
        if name in _RGB_SPACES:
            return "RGB", 3
        if name in _GRAY_SPACES:
            return "Gray", 1
        if name in _CMYK_SPACES:
            return "CMYK", 4
        return name, 0
    if isinstance(color_space, ArrayObject) and color_space:
        kind = _clean_name(_resolve(color_space[0]))
        if kind in _RGB_SPACES:
            return "RGB", 3
        if kind in _GRAY_SPACES:
            return "Gray", 1
        if kind == "ICCBased" and len(color_space) > 1:
            profile = _resolve(color_space[1])
            n = int(profile.get(NameObject("/N"), 3) or 3) if isinstance(profile, DictionaryObject) else 3
            return {1: ("Gray", 1), 3: ("RGB", 3), 4: ("CMYK", 4)}.get(n, ("ICCBased", n))
        if kind == "Indexed":
            return "Indexed", 1
        return kind, 0
    return "", 0


def _decode_indexed(raw: bytes, size: tuple[int, int], bits: int, color_space: ArrayObject) -> Image.Image:
    if len(color_space) < 4:
        raise _DecodeFailure("malformed Indexed colour space")
    base_family, _ = _color_family(_resolve(color_space[1]))
    hival = int(color_space[2])
    lookup = _lookup_bytes(_resolve(color_space[3]))
    if base_family == "RGB":
        palette = list(lookup[: (hival + 1) * 3])
    elif base_family == "Gray":
        palette = [value for value in lookup[: hival + 1] for _ in range(3)]
    else:
        raise _DecodeFailure(f"Indexed images over {base_family or 'unknown'} are not supported")
    rawmode = {1: "P;1", 2: "P;2", 4: "P;4", 8: "P"}.get(bits)
    if rawmode is None:
        raise _DecodeFailure(f"{bits}-bit Indexed images are not supported")
    image = Image.frombytes("P", size, raw, "raw", rawmode)
    image.putpalette(palette)
    return image.convert("RGB")


def _lookup_bytes(lookup: object) -> bytes:
    if isinstance(lookup, StreamObject):
        return lookup.get_data()
    original = getattr(lookup, "original_bytes", None)
    if original is not None:
        return bytes(original)
    if isinstance(lookup, (bytes, bytearray)):
        return bytes(lookup)
    if isinstance(lookup, str):
        return lookup.encode("latin-1")
    raise _DecodeFailure("Indexed lookup table is missing")


def _soft_mask(stream: StreamObject, size: tuple[int, int]) -> Image.Image | None:
    smask = _resolve(stream.get(NameObject("/SMask")))
    if not isinstance(smask, StreamObject):
        return None
    width = int(smask.get(NameObject("/Width"), 0) or 0)
    height = int(smask.get(NameObject("/Height"), 0) or 0)
    bits = int(smask.get(NameObject("/BitsPerComponent"), 8) or 8)
    if width <= 0 or height <= 0 or bits not in (1, 8):
        LOGGER.debug("Ignoring soft mask with unsupported layout")
        return None
    mask = Image.frombytes("1" if bits == 1 else "L", (width, height), smask.get_data()).convert("L")
    if mask.size != size:
        mask = mask.resize(size)
    return mask


def _normalise_filters(filter_obj: object | None) -> set[str]:
    filter_obj = _resolve(filter_obj)
    if filter_obj is None:
        return set()
    if isinstance(filter_obj, NameObject):
        return {_clean_name(filter_obj)}
    if isinstance(filter_obj, ArrayObject):
        return {_clean_name(_resolve(item)) for item in filter_obj}
    return {str(filter_obj)}


__all__ = ["extract_embedded_images", "decode_image_stream", "image_name"]
