"""Section/file state transitions.

Every operation is a pure function ``(state, ...) -> state``; nothing mutates
an existing :class:`~sectiondocs.types.WorkspaceState`. :class:`SectionStore`
holds the current state for a session and applies transitions one at a time.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Iterable, List, Sequence

from .exceptions import (
    EmptySectionError,
    FileBusyError,
    FileNotInSectionError,
    InvalidTransitionError,
    SectionBusyError,
)
from .types import (
    ConversionStatus,
    ExtractedImage,
    FileEntry,
    Progress,
    Section,
    SectionStatus,
    WorkspaceState,
)

LOGGER = logging.getLogger(__name__)

Reducer = Callable[..., WorkspaceState]
Listener = Callable[[WorkspaceState, WorkspaceState], None]


def initial_state(sections: Iterable[Section]) -> WorkspaceState:
    """Build a fresh workspace with every section reset to ``pending``."""

    fresh = tuple(
        replace(section, status=SectionStatus.PENDING, files=(), summary=None)
        for section in sections
    )
    ids = [section.id for section in fresh]
    if len(ids) != len(set(ids)):
        raise ValueError("Section ids must be unique")
    return WorkspaceState(sections=fresh)


# --------------------------------------------------------------------------- #
# Section transitions
# --------------------------------------------------------------------------- #
def add_files(state: WorkspaceState, section_id: str, files: Sequence[FileEntry]) -> WorkspaceState:
    """Append ``files`` and mark the section ``uploaded`` regardless of its prior status."""

    if not files:
        return state
    section = state.get(section_id)
    return state.with_section(
        replace(section, files=section.files + tuple(files), status=SectionStatus.UPLOADED)
    )


def remove_file(state: WorkspaceState, section_id: str, index: int) -> WorkspaceState:
    """Remove the file at ``index``; an emptied section reverts to ``pending``.

    Removing one of several files leaves the status (and any summary) as is.
    """

    section = state.get(section_id)
    if index < 0 or index >= len(section.files):
        raise FileNotInSectionError(
            f"File index {index} is out of range for section '{section_id}' "
            f"({len(section.files)} files)."
        )
    files = section.files[:index] + section.files[index + 1:]
    status = SectionStatus.PENDING if not files else section.status
    return state.with_section(replace(section, files=files, status=status))


def set_notes(state: WorkspaceState, section_id: str, text: str | None) -> WorkspaceState:
    section = state.get(section_id)
    return state.with_section(replace(section, notes=text))


def begin_summarize(state: WorkspaceState, section_id: str) -> WorkspaceState:
    section = state.get(section_id)
    if not section.files:
        raise EmptySectionError(f"Section '{section_id}' has no files to summarize.")
    if section.status is SectionStatus.PROCESSING:
        raise SectionBusyError(f"Section '{section_id}' is already processing.")
    return state.with_section(replace(section, status=SectionStatus.PROCESSING))


def complete_summarize(state: WorkspaceState, section_id: str, summary: str) -> WorkspaceState:
    section = _require_processing(state, section_id)
    if not isinstance(summary, str):
        raise TypeError("summary must be a string")
    return state.with_section(replace(section, status=SectionStatus.COMPLETE, summary=summary))


def fail_summarize(state: WorkspaceState, section_id: str) -> WorkspaceState:
    section = _require_processing(state, section_id)
    return state.with_section(replace(section, status=SectionStatus.ERROR))


def _require_processing(state: WorkspaceState, section_id: str) -> Section:
    section = state.get(section_id)
    if section.status is not SectionStatus.PROCESSING:
        raise InvalidTransitionError(
            f"Section '{section_id}' is '{section.status.value}', expected 'processing'."
        )
    return section


# --------------------------------------------------------------------------- #
# File transitions (no-ops once the file has been removed)
# --------------------------------------------------------------------------- #
def _update_file(
    state: WorkspaceState,
    section_id: str,
    file_id: str,
    update: Callable[[FileEntry], FileEntry],
) -> WorkspaceState:
    section = state.get(section_id)
    if not section.has_file(file_id):
        return state
    files = tuple(update(entry) if entry.file_id == file_id else entry for entry in section.files)
    return state.with_section(replace(section, files=files))


def begin_file_operation(state: WorkspaceState, section_id: str, file_id: str) -> WorkspaceState:
    """Mark ``file_id`` as ``converting``; a file that is already busy is rejected."""

    entry = state.get(section_id).file(file_id)
    if entry.conversion_status is ConversionStatus.CONVERTING:
        raise FileBusyError(f"File '{entry.name}' already has an operation in progress.")
    return _update_file(
        state,
        section_id,
        file_id,
        lambda item: replace(item, conversion_status=ConversionStatus.CONVERTING),
    )


def finish_file_operation(
    state: WorkspaceState,
    section_id: str,
    file_id: str,
    status: ConversionStatus,
) -> WorkspaceState:
    if status is ConversionStatus.CONVERTING:
        raise InvalidTransitionError("finish_file_operation needs a terminal status")
    return _update_file(state, section_id, file_id, lambda item: replace(item, conversion_status=status))


def set_progress(
    state: WorkspaceState,
    section_id: str,
    file_id: str,
    progress: Progress | None,
) -> WorkspaceState:
    return _update_file(state, section_id, file_id, lambda item: replace(item, progress=progress))


def set_extracted_images(
    state: WorkspaceState,
    section_id: str,
    file_id: str,
    images: Sequence[ExtractedImage],
) -> WorkspaceState:
    return _update_file(
        state,
        section_id,
        file_id,
        lambda item: replace(item, extracted_images=tuple(images)),
    )


class SectionStore:
    """Holds the current :class:`WorkspaceState` and applies transitions."""

    def __init__(self, state: WorkspaceState) -> None:
        self._state = state
        self._listeners: List[Listener] = []

    @property
    def state(self) -> WorkspaceState:
        return self._state

    def section(self, section_id: str) -> Section:
        return self._state.get(section_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener(old, new)``; returns a function that unsubscribes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def dispatch(self, reducer: Reducer, *args: object, **kwargs: object) -> WorkspaceState:
        """Apply ``reducer`` to the current state; errors leave the state untouched."""

        previous = self._state
        updated = reducer(previous, *args, **kwargs)
        if updated is previous:
            return updated
        self._state = updated
        LOGGER.debug("Applied %s", getattr(reducer, "__name__", reducer))
        for listener in list(self._listeners):
            listener(previous, updated)
        return updated


__all__ = [
    "initial_state",
    "add_files",
    "remove_file",
    "set_notes",
    "begin_summarize",
    "complete_summarize",
    "fail_summarize",
    "begin_file_operation",
    "finish_file_operation",
    "set_progress",
    "set_extracted_images",
    "SectionStore",
]
