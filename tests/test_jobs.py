from __future__ import annotations

import asyncio

import pytest

from sectiondocs.downloads import MemoryDownloadSink
from sectiondocs.exceptions import ConversionError, ConversionUnsupported, FileBusyError, OperationCancelled
from sectiondocs.jobs import CancellationToken, FileJobRunner, report
from sectiondocs.state import SectionStore, add_files, remove_file
from sectiondocs.types import ConversionStatus, FileEntry, Progress, SectionStatus


def _add(store: SectionStore, name: str = "doc.txt", data: bytes = b"hello") -> FileEntry:
    entry = FileEntry.create(name, data)
    store.dispatch(add_files, "income", [entry])
    return entry


def _entry(store: SectionStore, file_id: str) -> FileEntry:
    return store.section("income").file(file_id)


def test_report_clamps_values() -> None:
    events: list[Progress] = []
    report(events.append, 150, "over")
    report(events.append, -5, "under")
    report(None, 10, "ignored")
    assert [event.current for event in events] == [100, 0]


def test_cancellation_token() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()
    assert token.cancelled
    with pytest.raises(OperationCancelled):
        token.raise_if_cancelled()


def test_run_success_marks_done_and_clears_progress_later(store: SectionStore) -> None:
    entry = _add(store)
    runner = FileJobRunner(store, progress_clear_delay=0.01)
    observed: list[int] = []

    async def _operation(file, progress, token):
        for value in (10, 50, 100):
            progress(Progress(value, message=f"{value}%"))
            observed.append(_entry(store, file.file_id).progress.current)
            await asyncio.sleep(0)
        return "ok"

    async def _main():
        result = await runner.run("income", entry.file_id, _operation)
        after_finish = _entry(store, entry.file_id)
        await asyncio.sleep(0.05)
        return result, after_finish, _entry(store, entry.file_id)

    result, after_finish, later = asyncio.run(_main())

    assert result == "ok"
    assert observed == [10, 50, 100]
    assert after_finish.conversion_status is ConversionStatus.DONE
    assert after_finish.progress is not None
    assert later.progress is None
    assert store.section("income").status is SectionStatus.UPLOADED


def test_progress_never_goes_backwards(store: SectionStore) -> None:
    entry = _add(store)
    runner = FileJobRunner(store, progress_clear_delay=10)
    seen: list[int] = []

    def _record(old, new):
        before = old.get("income").file(entry.file_id).progress
        after = new.get("income").file(entry.file_id).progress
        if after is not None and after != before:
            seen.append(after.current)

    store.subscribe(_record)

    async def _operation(file, progress, token):
        for value in (30, 20, 60):
            progress(Progress(value))

    async def _main():
        await runner.run("income", entry.file_id, _operation)
        runner.close()

    asyncio.run(_main())

    assert seen == [30, 60]


def test_second_operation_on_busy_file_is_rejected(store: SectionStore) -> None:
    entry = _add(store)
    runner = FileJobRunner(store, progress_clear_delay=0)

    async def _main():
        release = asyncio.Event()

        async def _slow(file, progress, token):
            await release.wait()

        async def _quick(file, progress, token):
            return None

        first = asyncio.create_task(runner.run("income", entry.file_id, _slow))
        await asyncio.sleep(0)
        assert runner.is_running(entry.file_id)
        with pytest.raises(FileBusyError):
            await runner.run("income", entry.file_id, _quick)
        release.set()
        await first
        runner.close()

    asyncio.run(_main())
    assert _entry(store, entry.file_id).conversion_status is ConversionStatus.DONE


def test_different_files_run_independently(store: SectionStore) -> None:
    one, two = _add(store, "one.txt"), _add(store, "two.txt")
    runner = FileJobRunner(store, progress_clear_delay=10)

    async def _operation(file, progress, token):
        for value in (25, 75):
            progress(Progress(value, message=file.name))
            await asyncio.sleep(0)
        return file.name

    async def _main():
        results = await asyncio.gather(
            runner.run("income", one.file_id, _operation),
            runner.run("income", two.file_id, _operation),
        )
        snapshot = store.section("income")
        runner.close()
        return results, snapshot

    results, snapshot = asyncio.run(_main())

    assert results == ["one.txt", "two.txt"]
    assert snapshot.file(one.file_id).progress.message == "one.txt"
    assert snapshot.file(two.file_id).progress.message == "two.txt"


def test_failure_marks_error_and_reraises(store: SectionStore) -> None:
    entry = _add(store)
    runner = FileJobRunner(store, progress_clear_delay=0)

    async def _broken(file, progress, token):
        progress(Progress(20))
        raise ConversionError("boom")

    async def _main():
        with pytest.raises(ConversionError):
            await runner.run("income", entry.file_id, _broken)
        runner.close()

    asyncio.run(_main())

    assert _entry(store, entry.file_id).conversion_status is ConversionStatus.ERROR
    assert store.section("income").status is SectionStatus.UPLOADED
    assert not runner.is_running(entry.file_id)


def test_cancellation_returns_file_to_idle(store: SectionStore) -> None:
    entry = _add(store)
    runner = FileJobRunner(store, progress_clear_delay=10)

    async def _looping(file, progress, token):
        value = 0
        while True:
            token.raise_if_cancelled()
            value += 1
            progress(Progress(min(value, 99)))
            await asyncio.sleep(0)

    async def _main():
        task = asyncio.create_task(runner.run("income", entry.file_id, _looping))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert runner.cancel(entry.file_id)
        with pytest.raises(OperationCancelled):
            await task
        runner.close()

    asyncio.run(_main())

    cancelled = _entry(store, entry.file_id)
    assert cancelled.conversion_status is ConversionStatus.IDLE
    assert cancelled.progress is None
    assert runner.cancel(entry.file_id) is False


def test_new_operation_cancels_pending_cleanup(store: SectionStore) -> None:
    entry = _add(store)
    runner = FileJobRunner(store, progress_clear_delay=0.02)

    async def _first(file, progress, token):
        progress(Progress(100, message="first"))

    async def _second(file, progress, token):
        progress(Progress(5, message="second"))
        await asyncio.sleep(0.05)

    async def _main():
        await runner.run("income", entry.file_id, _first)
        second = asyncio.create_task(runner.run("income", entry.file_id, _second))
        await asyncio.sleep(0.03)
        during = _entry(store, entry.file_id).progress
        await second
        runner.close()
        return during

    during = asyncio.run(_main())

    assert during == Progress(5, message="second")


def test_removed_file_finishes_quietly(store: SectionStore) -> None:
    entry = _add(store)
    runner = FileJobRunner(store, progress_clear_delay=0)

    async def _operation(file, progress, token):
        store.dispatch(remove_file, "income", 0)
        progress(Progress(50))
        return "finished"

    async def _main():
        result = await runner.run("income", entry.file_id, _operation)
        await asyncio.sleep(0.01)
        return result

    assert asyncio.run(_main()) == "finished"
    assert store.section("income").files == ()


def test_convert_delivers_download_without_touching_section(store: SectionStore) -> None:
    entry = _add(store, "notes.txt", b"line one\nline two\n")
    runner = FileJobRunner(store, progress_clear_delay=0)
    sink = MemoryDownloadSink()

    async def _main():
        document = await runner.convert("income", entry.file_id, sink=sink)
        runner.close()
        return document

    document = asyncio.run(_main())

    assert sink.names == ["notes.pdf"]
    assert sink.downloads[0].data.startswith(b"%PDF")
    assert document.page_count == 1
    assert [item.name for item in store.section("income").files] == ["notes.txt"]
    assert _entry(store, entry.file_id).conversion_status is ConversionStatus.DONE


def test_convert_unsupported_marks_error(store: SectionStore) -> None:
    entry = _add(store, "legacy.doc", b"\xd0\xcf\x11\xe0")
    runner = FileJobRunner(store, progress_clear_delay=0)

    async def _main():
        with pytest.raises(ConversionUnsupported):
            await runner.convert("income", entry.file_id)
        runner.close()

    asyncio.run(_main())

    assert _entry(store, entry.file_id).conversion_status is ConversionStatus.ERROR
    assert store.section("income").status is SectionStatus.UPLOADED


def test_extract_images_records_empty_result(store: SectionStore, blank_pdf_bytes: bytes) -> None:
    entry = _add(store, "blank.pdf", blank_pdf_bytes)
    runner = FileJobRunner(store, progress_clear_delay=0)

    async def _main():
        images = await runner.extract_images("income", entry.file_id)
        runner.close()
        return images

    images = asyncio.run(_main())

    assert images == []
    extracted = _entry(store, entry.file_id)
    assert extracted.extracted_images == ()
    assert extracted.conversion_status is ConversionStatus.DONE


class _UnwritableSink:
    def deliver(self, name: str, data: bytes, media_type: str) -> None:
        raise PermissionError(13, "Permission denied", name)


def test_failed_delivery_marks_error_and_releases_file(store: SectionStore, png_bytes: bytes) -> None:
    entry = _add(store, "scan.png", png_bytes)
    runner = FileJobRunner(store, progress_clear_delay=0)

    async def _main():
        with pytest.raises(PermissionError):
            await runner.convert("income", entry.file_id, sink=_UnwritableSink())
        status = _entry(store, entry.file_id).conversion_status
        busy = runner.is_running(entry.file_id)
        retried = await runner.convert("income", entry.file_id, sink=MemoryDownloadSink())
        runner.close()
        return status, busy, retried

    status, busy, retried = asyncio.run(_main())

    assert status is ConversionStatus.ERROR
    assert busy is False
    assert retried.name == "scan.pdf"
    assert _entry(store, entry.file_id).conversion_status is ConversionStatus.DONE


def test_failed_result_recording_marks_error(store: SectionStore) -> None:
    entry = _add(store)
    runner = FileJobRunner(store, progress_clear_delay=0)

    async def _operation(file, progress, token):
        return "result"

    def _record(result):
        raise RuntimeError("could not record")

    async def _main():
        with pytest.raises(RuntimeError):
            await runner.run("income", entry.file_id, _operation, on_success=_record)
        runner.close()

    asyncio.run(_main())

    assert _entry(store, entry.file_id).conversion_status is ConversionStatus.ERROR


def test_task_cancellation_returns_file_to_idle(store: SectionStore) -> None:
    entry = _add(store)
    runner = FileJobRunner(store, progress_clear_delay=10)

    async def _forever(file, progress, token):
        progress(Progress(5))
        await asyncio.Event().wait()

    async def _main():
        task = asyncio.create_task(runner.run("income", entry.file_id, _forever))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        runner.close()

    asyncio.run(_main())

    cancelled = _entry(store, entry.file_id)
    assert cancelled.conversion_status is ConversionStatus.IDLE
    assert cancelled.progress is None
