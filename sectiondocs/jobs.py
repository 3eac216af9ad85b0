"""Per-file derived operations: exclusivity, progress and cleanup.

:class:`FileJobRunner` is the only place that starts conversion,
rasterization or extraction against a file held in a :class:`SectionStore`.
It rejects a second operation on a busy file, routes progress events into the
store under the file's identity, and clears the progress slot a fixed delay
after the operation ends.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Literal, Optional, TypeVar

from .config import settings
from .downloads import DownloadSink
from .exceptions import OperationCancelled
from .state import (
    SectionStore,
    begin_file_operation,
    finish_file_operation,
    set_extracted_images,
    set_progress,
)
from .types import ConversionStatus, ConvertedDocument, ExtractedImage, FileEntry, Progress, RasterImage

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[Progress], None]


class CancellationToken:
    """Cooperative cancellation flag checked between pages, lines and images."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled()


def report(progress: Optional[ProgressCallback], current: int, message: str) -> None:
    """Emit a progress event clamped to ``[0, 100]`` when a callback is set."""

    if progress is None:
        return
    progress(Progress(current=max(0, min(100, int(current))), total=100, message=message))


def check_cancelled(token: Optional[CancellationToken]) -> None:
    if token is not None:
        token.raise_if_cancelled()


Operation = Callable[[FileEntry, ProgressCallback, CancellationToken], Awaitable[T]]


class FileJobRunner:
    """Runs at most one derived operation per file identity."""

    def __init__(self, store: SectionStore, *, progress_clear_delay: float | None = None) -> None:
        self.store = store
        self.progress_clear_delay = (
            settings.progress_clear_delay if progress_clear_delay is None else progress_clear_delay
        )
        self._cleanups: Dict[str, asyncio.TimerHandle] = {}
        self._tokens: Dict[str, CancellationToken] = {}

    def is_running(self, file_id: str) -> bool:
        return file_id in self._tokens

    def cancel(self, file_id: str) -> bool:
        """Request cancellation of the operation running on ``file_id``."""

        token = self._tokens.get(file_id)
        if token is None:
            return False
        token.cancel()
        return True

    async def run(
        self,
        section_id: str,
        file_id: str,
        operation: Operation[T],
        *,
        token: CancellationToken | None = None,
        on_success: Callable[[T], None] | None = None,
    ) -> T:
        """Run ``operation`` against the file, tracking status and progress."""

        self._cancel_cleanup(file_id)
        self.store.dispatch(begin_file_operation, section_id, file_id)
        entry = self.store.section(section_id).file(file_id)
        token = token or CancellationToken()
        self._tokens[file_id] = token
        last_seen = -1

        def _on_progress(progress: Progress) -> None:
            nonlocal last_seen
            if progress.current < last_seen:
                return
            last_seen = progress.current
            self.store.dispatch(set_progress, section_id, file_id, progress)

        try:
            result = await operation(entry, _on_progress, token)
            if on_success is not None:
                on_success(result)
        except (OperationCancelled, asyncio.CancelledError):
            LOGGER.info("Operation on %s cancelled", entry.name)
            self.store.dispatch(finish_file_operation, section_id, file_id, ConversionStatus.IDLE)
            self.store.dispatch(set_progress, section_id, file_id, None)
            raise
        except Exception:
            LOGGER.exception("Operation on %s failed", entry.name)
            self.store.dispatch(finish_file_operation, section_id, file_id, ConversionStatus.ERROR)
            self._schedule_cleanup(section_id, file_id)
            raise
        finally:
            self._tokens.pop(file_id, None)

        self.store.dispatch(finish_file_operation, section_id, file_id, ConversionStatus.DONE)
        self._schedule_cleanup(section_id, file_id)
        return result

    # ------------------------------------------------------------------ #
    # Built-in operations
    # ------------------------------------------------------------------ #
    async def convert(
        self,
        section_id: str,
        file_id: str,
        *,
        sink: DownloadSink | None = None,
        token: CancellationToken | None = None,
    ) -> ConvertedDocument:
        """Normalise the file to PDF and offer the result as a download."""

        from .converters import convert_to_portable_document

        async def _operation(entry: FileEntry, progress: ProgressCallback, tok: CancellationToken):
            return await convert_to_portable_document(entry, progress=progress, token=tok)

        def _deliver(document: ConvertedDocument) -> None:
            if sink is not None:
                sink.deliver(document.name, document.data, document.media_type)

        return await self.run(section_id, file_id, _operation, token=token, on_success=_deliver)

    async def rasterize(
        self,
        section_id: str,
        file_id: str,
        *,
        deliver: Literal["download", "return"] = "download",
        sink: DownloadSink | None = None,
        token: CancellationToken | None = None,
    ) -> list[RasterImage]:
        from .rasterizer import rasterize_pages

        async def _operation(entry: FileEntry, progress: ProgressCallback, tok: CancellationToken):
            return await rasterize_pages(entry, deliver=deliver, sink=sink, progress=progress, token=tok)

        return await self.run(section_id, file_id, _operation, token=token)

    async def extract_images(
        self,
        section_id: str,
        file_id: str,
        *,
        token: CancellationToken | None = None,
    ) -> list[ExtractedImage]:
        """Extract embedded images and record them on the file."""

        from .extractor import extract_embedded_images

        async def _operation(entry: FileEntry, progress: ProgressCallback, tok: CancellationToken):
            return await extract_embedded_images(entry, progress=progress, token=tok)

        def _record(images: list[ExtractedImage]) -> None:
            self.store.dispatch(set_extracted_images, section_id, file_id, images)

        return await self.run(section_id, file_id, _operation, token=token, on_success=_record)

    # ------------------------------------------------------------------ #
    # Progress cleanup
    # ------------------------------------------------------------------ #
    def _schedule_cleanup(self, section_id: str, file_id: str) -> None:
        loop = asyncio.get_running_loop()
        self._cleanups[file_id] = loop.call_later(
            self.progress_clear_delay,
            self._clear_progress,
            section_id,
            file_id,
        )

    def _cancel_cleanup(self, file_id: str) -> None:
        handle = self._cleanups.pop(file_id, None)
        if handle is not None:
            handle.cancel()

    def _clear_progress(self, section_id: str, file_id: str) -> None:
        self._cleanups.pop(file_id, None)
        self.store.dispatch(set_progress, section_id, file_id, None)

    def close(self) -> None:
        """Cancel every pending progress cleanup."""

        for handle in self._cleanups.values():
            handle.cancel()
        self._cleanups.clear()


__all__ = [
    "CancellationToken",
    "FileJobRunner",
    "ProgressCallback",
    "report",
    "check_cancelled",
]
