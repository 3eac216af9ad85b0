"""
Type definitions and dataclasses for sectiondocs.

This module defines the section/file data model shared by every component.
All records are immutable; state changes produce new instances through
:mod:`sectiondocs.state`.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Tuple
from uuid import uuid4

from .exceptions import FileNotInSectionError, SectionNotFoundError


class SectionStatus(str, Enum):
    """Lifecycle of a section's summarization."""

    PENDING = "pending"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    ERROR = "error"
    COMPLETE = "complete"


class ConversionStatus(str, Enum):
    """Status of the derived operation last run on a file."""

    IDLE = "idle"
    CONVERTING = "converting"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Progress:
    """
    Informational progress of a long-running derived operation.

    Attributes:
        current: Completed units, between 0 and ``total``
        total: Always 100 for the built-in operations
        message: Human readable stage description
    """

    current: int
    total: int = 100
    message: str = ""

    @property
    def fraction(self) -> float:
        return self.current / self.total if self.total else 0.0


@dataclass(frozen=True, slots=True)
class ExtractedImage:
    """An embedded raster image recovered from a PDF page."""

    name: str
    data: bytes = field(repr=False)
    page_number: int = 0
    index: int = 0
    width: int = 0
    height: int = 0
    media_type: str = "image/png"


@dataclass(frozen=True, slots=True)
class RasterImage:
    """A rendered PDF page."""

    name: str
    data: bytes = field(repr=False)
    page_number: int
    width: int
    height: int
    media_type: str = "image/png"


@dataclass(frozen=True, slots=True)
class ConvertedDocument:
    """Output of the format conversion engine."""

    name: str
    data: bytes = field(repr=False)
    page_count: int
    media_type: str = "application/pdf"


def guess_media_type(filename: str) -> str:
    """Guess a media type from ``filename``, defaulting to octet-stream."""

    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


@dataclass(frozen=True, slots=True)
class FileEntry:
    """
    One uploaded binary plus its derived artifacts.

    ``file_id`` is assigned once at creation and never reused, so derived
    state stays attached to the right file when earlier files are removed.
    ``extracted_images`` is ``None`` until extraction has run; an empty tuple
    means extraction ran and found nothing.
    """

    file_id: str
    name: str
    media_type: str
    data: bytes = field(repr=False)
    conversion_status: ConversionStatus = ConversionStatus.IDLE
    progress: Optional[Progress] = None
    extracted_images: Optional[Tuple[ExtractedImage, ...]] = None

    @classmethod
    def create(cls, name: str, data: bytes, media_type: str | None = None) -> "FileEntry":
        return cls(
            file_id=uuid4().hex,
            name=name,
            media_type=media_type or guess_media_type(name),
            data=bytes(data),
        )

    @classmethod
    def from_path(cls, path: str | Path, media_type: str | None = None) -> "FileEntry":
        source = Path(path)
        return cls.create(source.name, source.read_bytes(), media_type)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower().lstrip(".")

    @property
    def is_pdf(self) -> bool:
        return self.media_type == "application/pdf" or self.extension == "pdf"


@dataclass(frozen=True, slots=True)
class Section:
    """One logical grouping of required documents."""

    id: str
    title: str
    description: str = ""
    endpoint: str = ""
    status: SectionStatus = SectionStatus.PENDING
    files: Tuple[FileEntry, ...] = ()
    notes: Optional[str] = None
    summary: Optional[str] = None

    def index_of(self, file_id: str) -> int:
        for index, entry in enumerate(self.files):
            if entry.file_id == file_id:
                return index
        raise FileNotInSectionError(f"File '{file_id}' is not part of section '{self.id}'.")

    def file(self, file_id: str) -> FileEntry:
        return self.files[self.index_of(file_id)]

    def has_file(self, file_id: str) -> bool:
        return any(entry.file_id == file_id for entry in self.files)


@dataclass(frozen=True, slots=True)
class WorkspaceState:
    """Ordered collection of sections for one session."""

    sections: Tuple[Section, ...] = ()

    def __iter__(self) -> Iterator[Section]:
        return iter(self.sections)

    def __contains__(self, section_id: object) -> bool:
        return any(section.id == section_id for section in self.sections)

    def get(self, section_id: str) -> Section:
        for section in self.sections:
            if section.id == section_id:
                return section
        raise SectionNotFoundError(f"Section '{section_id}' does not exist.")

    def with_section(self, updated: Section) -> "WorkspaceState":
        self.get(updated.id)
        return replace(
            self,
            sections=tuple(updated if section.id == updated.id else section for section in self.sections),
        )

    @property
    def all_complete(self) -> bool:
        return bool(self.sections) and all(
            section.status is SectionStatus.COMPLETE for section in self.sections
        )


__all__ = [
    "SectionStatus",
    "ConversionStatus",
    "Progress",
    "ExtractedImage",
    "RasterImage",
    "ConvertedDocument",
    "FileEntry",
    "Section",
    "WorkspaceState",
    "guess_media_type",
]
