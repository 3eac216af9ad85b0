"""
Custom exceptions for sectiondocs.

This module defines all custom exceptions used throughout the library.
"""

from __future__ import annotations


class SectionDocsError(Exception):
    """Base exception for all sectiondocs errors."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def default_message(self) -> str:
        return "An unknown sectiondocs error occurred."


# --------------------------------------------------------------------------- #
# Section state
# --------------------------------------------------------------------------- #
class SectionNotFoundError(SectionDocsError):
    """Raised when a section id is not part of the workspace."""

    @property
    def default_message(self) -> str:
        return "Section not found."


class FileNotInSectionError(SectionDocsError):
    """Raised when a file index or identity does not exist in a section."""

    @property
    def default_message(self) -> str:
        return "File not found in section."


class EmptySectionError(SectionDocsError):
    """Raised when summarization is requested for a section without files."""

    @property
    def default_message(self) -> str:
        return "Please upload files before summarizing."


class SectionBusyError(SectionDocsError):
    """Raised when a section already has an outstanding summarization."""

    @property
    def default_message(self) -> str:
        return "Section is already being processed."


class InvalidTransitionError(SectionDocsError):
    """Raised when a section status transition is not allowed."""

    @property
    def default_message(self) -> str:
        return "Invalid section status transition."


class FileBusyError(SectionDocsError):
    """Raised when a file already has a derived operation in flight."""

    @property
    def default_message(self) -> str:
        return "Another operation is already running for this file."


class OperationCancelled(SectionDocsError):
    """Raised inside a long-running operation once its token is cancelled."""

    @property
    def default_message(self) -> str:
        return "Operation was cancelled."


# --------------------------------------------------------------------------- #
# Derived artifacts
# --------------------------------------------------------------------------- #
class ConversionUnsupported(SectionDocsError):
    """Raised when an input format cannot be normalised to PDF."""

    @property
    def default_message(self) -> str:
        return "Unsupported file type for conversion."


class ConversionError(SectionDocsError):
    """Raised when a conversion, rasterization or extraction fails."""

    @property
    def default_message(self) -> str:
        return "Document conversion failed."


class InvalidPDFError(ConversionError):
    """Raised when PDF bytes are invalid or unreadable."""

    @property
    def default_message(self) -> str:
        return "Invalid or corrupted PDF file."


class RasterizationError(ConversionError):
    """Raised when a PDF page cannot be rendered."""

    @property
    def default_message(self) -> str:
        return "Failed to render PDF page."


class ExtractionWarning(SectionDocsError):
    """Non-fatal: a single embedded image could not be resolved."""

    def __init__(self, message: str = "", *, page_number: int = 0, index: int = -1) -> None:
        super().__init__(message)
        self.page_number = page_number
        self.index = index

    @property
    def default_message(self) -> str:
        return "Embedded image could not be extracted."


# --------------------------------------------------------------------------- #
# Upload and remote processing
# --------------------------------------------------------------------------- #
class UploadError(SectionDocsError):
    """Raised when object storage rejects an upload."""

    @property
    def default_message(self) -> str:
        return "Failed to upload file."


class InvalidPayload(SectionDocsError):
    """Raised when a summarization request payload is malformed."""

    status_code = 400

    @property
    def default_message(self) -> str:
        return "Invalid request payload."


class RemoteWorkflowError(SectionDocsError):
    """Raised when the external workflow fails or cannot be reached."""

    def __init__(
        self,
        message: str = "",
        *,
        status_code: int = 502,
        details: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details

    @property
    def default_message(self) -> str:
        return "Remote workflow request failed."


class PersistenceWarning(SectionDocsError):
    """Non-fatal: the audit log entry could not be written."""

    @property
    def default_message(self) -> str:
        return "Failed to persist workflow response."


__all__ = [
    "SectionDocsError",
    "SectionNotFoundError",
    "FileNotInSectionError",
    "EmptySectionError",
    "SectionBusyError",
    "InvalidTransitionError",
    "FileBusyError",
    "OperationCancelled",
    "ConversionUnsupported",
    "ConversionError",
    "InvalidPDFError",
    "RasterizationError",
    "ExtractionWarning",
    "UploadError",
    "InvalidPayload",
    "RemoteWorkflowError",
    "PersistenceWarning",
]
