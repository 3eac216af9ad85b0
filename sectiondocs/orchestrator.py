"""Upload section files and hand them to the remote summarization workflow."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol, Sequence

import httpx

from .backend import SummarizationService
from .config import settings
from .exceptions import InvalidPayload, InvalidTransitionError, RemoteWorkflowError, UploadError
from .jobs import FileJobRunner
from .state import SectionStore, add_files, begin_summarize, complete_summarize, fail_summarize
from .storage import ObjectStorage, build_object_key
from .types import FileEntry

LOGGER = logging.getLogger(__name__)


class BackendClient(Protocol):
    async def summarize(self, section_id: str, file_urls: Sequence[str], endpoint: str) -> str:
        """Return the summary produced for ``file_urls``."""


class HttpBackendClient:
    """Calls a deployed ``/process-documents`` endpoint."""

    def __init__(
        self,
        url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = settings.workflow_timeout if timeout is None else timeout
        self._transport = transport

    async def summarize(self, section_id: str, file_urls: Sequence[str], endpoint: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {"sectionId": section_id, "fileUrls": list(file_urls), "webhookUrl": endpoint}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise RemoteWorkflowError(f"Backend unreachable: {exc}") from exc

        if not response.is_success:
            error, details = _error_fields(response)
            if response.status_code == 400:
                raise InvalidPayload(details or error or "Invalid request payload")
            raise RemoteWorkflowError(
                error or f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
                details=details,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteWorkflowError("Backend returned a non-JSON response") from exc
        summary = data.get("summary") if isinstance(data, dict) else None
        if not isinstance(summary, str):
            raise RemoteWorkflowError("Backend response has no summary")
        return summary


def _error_fields(response: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    try:
        body = response.json()
    except ValueError:
        return None, None
    if not isinstance(body, dict):
        return None, None
    details = body.get("details")
    return body.get("error"), str(details) if details is not None else None


class InProcessBackendClient:
    """Runs :class:`SummarizationService` in the calling process."""

    def __init__(self, service: SummarizationService | None = None) -> None:
        self.service = service or SummarizationService()

    async def summarize(self, section_id: str, file_urls: Sequence[str], endpoint: str) -> str:
        result = await self.service.summarize(
            {"sectionId": section_id, "fileUrls": list(file_urls), "webhookUrl": endpoint}
        )
        return result["summary"]


async def upload_section_files(
    section_id: str,
    files: Sequence[FileEntry],
    storage: ObjectStorage,
) -> list[str]:
    """Upload ``files`` concurrently; any failure fails the whole batch."""

    async def _upload(entry: FileEntry) -> str:
        key = build_object_key(section_id, entry.name)
        return await storage.put(entry.data, key, content_type=entry.media_type)

    results = await asyncio.gather(*(_upload(entry) for entry in files), return_exceptions=True)
    for entry, result in zip(files, results):
        if isinstance(result, BaseException):
            LOGGER.error("Upload of %s failed: %s", entry.name, result)
            raise result
    LOGGER.info("All %d file(s) of %s uploaded", len(results), section_id)
    return list(results)


async def summarize_files(
    section_id: str,
    files: Sequence[FileEntry],
    endpoint: str,
    *,
    storage: ObjectStorage,
    backend: BackendClient,
) -> str:
    """Upload ``files`` and return the backend's summary for them."""

    urls = await upload_section_files(section_id, files, storage)
    for position, url in enumerate(urls, start=1):
        LOGGER.debug("%d. %s", position, url)
    return await backend.summarize(section_id, urls, endpoint)


class SectionOrchestrator:
    """Drives a section through ``processing`` to ``complete`` or ``error``."""

    def __init__(self, store: SectionStore, storage: ObjectStorage, backend: BackendClient) -> None:
        self.store = store
        self.storage = storage
        self.backend = backend

    async def summarize_section(self, section_id: str) -> str:
        """Summarize the files currently in ``section_id``.

        An empty or already processing section is rejected before any network
        call. Every other failure leaves the section in ``error`` and is
        re-raised.
        """

        self.store.dispatch(begin_summarize, section_id)
        section = self.store.section(section_id)
        LOGGER.info("Summarizing %d file(s) in %s", len(section.files), section_id)
        try:
            summary = await summarize_files(
                section_id,
                section.files,
                section.endpoint,
                storage=self.storage,
                backend=self.backend,
            )
        except (UploadError, InvalidPayload, RemoteWorkflowError) as exc:
            LOGGER.error("Error processing documents for %s: %s", section_id, exc.message)
            self._settle(fail_summarize, section_id)
            raise
        except (Exception, asyncio.CancelledError):
            LOGGER.exception("Unexpected failure while summarizing %s", section_id)
            self._settle(fail_summarize, section_id)
            raise

        self._settle(complete_summarize, section_id, summary)
        return summary

    def _settle(self, reducer: Callable[..., Any], *args: Any) -> None:
        try:
            self.store.dispatch(reducer, *args)
        except InvalidTransitionError as exc:
            LOGGER.warning("Discarding summarization outcome: %s", exc.message)

    async def upload_pdf_as_images(
        self,
        section_id: str,
        file_id: str,
        runner: FileJobRunner,
        *,
        summarize: bool = False,
    ) -> list[FileEntry]:
        """Rasterize a PDF and add its pages to the section as image files."""

        if runner.store is not self.store:
            raise ValueError("runner must operate on the orchestrator's store")
        pages = await runner.rasterize(section_id, file_id, deliver="return")
        entries = [FileEntry.create(page.name, page.data, page.media_type) for page in pages]
        self.store.dispatch(add_files, section_id, entries)
        LOGGER.info("Added %d page image(s) to %s", len(entries), section_id)
        if summarize:
            await self.summarize_section(section_id)
        return entries


__all__ = [
    "BackendClient",
    "HttpBackendClient",
    "InProcessBackendClient",
    "SectionOrchestrator",
    "summarize_files",
    "upload_section_files",
]
