"""
sectiondocs - document sections, derived artifacts and remote summaries.

Files are grouped into named sections. Each file can be normalised to PDF,
rendered page by page to PNG or scanned for embedded images, and a section's
files can be uploaded to object storage and summarized by a remote workflow.
Completed summaries are exported as a single PDF or DOCX report.

Quick Start:
    >>> from sectiondocs import SectionStore, initial_state, default_sections
    >>> store = SectionStore(initial_state(default_sections()))

Main Classes:
    - SectionStore: Holds the workspace state and applies transitions
    - FileJobRunner: Runs conversion, rasterization and extraction per file
    - SectionOrchestrator: Uploads files and stores the remote summary
    - SummarizationService: The backend summarization function

For CLI usage, use the 'sectiondocs' command after installation.
"""

__version__ = "0.1.0"

# Data types
from sectiondocs.types import (
    ConversionStatus,
    ConvertedDocument,
    ExtractedImage,
    FileEntry,
    Progress,
    RasterImage,
    Section,
    SectionStatus,
    WorkspaceState,
)

# Exceptions
from sectiondocs.exceptions import (
    ConversionError,
    ConversionUnsupported,
    EmptySectionError,
    ExtractionWarning,
    FileBusyError,
    InvalidPayload,
    InvalidPDFError,
    OperationCancelled,
    PersistenceWarning,
    RemoteWorkflowError,
    SectionDocsError,
    UploadError,
)

# State and jobs
from sectiondocs.state import (
    SectionStore,
    add_files,
    begin_summarize,
    complete_summarize,
    fail_summarize,
    initial_state,
    remove_file,
    set_notes,
)
from sectiondocs.jobs import CancellationToken, FileJobRunner

# Derived artifacts
from sectiondocs.converters import convert_to_portable_document
from sectiondocs.rasterizer import rasterize_pages
from sectiondocs.extractor import extract_embedded_images

# Remote processing and export
from sectiondocs.backend import SummarizationService
from sectiondocs.orchestrator import (
    HttpBackendClient,
    InProcessBackendClient,
    SectionOrchestrator,
    summarize_files,
)
from sectiondocs.export import export_report
from sectiondocs.config import Settings, default_sections, load_settings

__all__ = [
    # Data types
    "ConversionStatus",
    "ConvertedDocument",
    "ExtractedImage",
    "FileEntry",
    "Progress",
    "RasterImage",
    "Section",
    "SectionStatus",
    "WorkspaceState",
    # Exceptions
    "ConversionError",
    "ConversionUnsupported",
    "EmptySectionError",
    "ExtractionWarning",
    "FileBusyError",
    "InvalidPayload",
    "InvalidPDFError",
    "OperationCancelled",
    "PersistenceWarning",
    "RemoteWorkflowError",
    "SectionDocsError",
    "UploadError",
    # State and jobs
    "SectionStore",
    "add_files",
    "begin_summarize",
    "complete_summarize",
    "fail_summarize",
    "initial_state",
    "remove_file",
    "set_notes",
    "CancellationToken",
    "FileJobRunner",
    # Operations
    "convert_to_portable_document",
    "rasterize_pages",
    "extract_embedded_images",
    "SummarizationService",
    "HttpBackendClient",
    "InProcessBackendClient",
    "SectionOrchestrator",
    "summarize_files",
    "export_report",
    # Configuration
    "Settings",
    "default_sections",
    "load_settings",
    # Version info
    "__version__",
]
