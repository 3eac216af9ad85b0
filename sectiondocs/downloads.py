"""Sinks receiving artifacts that are offered to the user as downloads."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Protocol

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Download:
    name: str
    data: bytes = field(repr=False)
    media_type: str


class DownloadSink(Protocol):
    """Receives finished artifacts one at a time."""

    def deliver(self, name: str, data: bytes, media_type: str) -> None:
        """Hand ``data`` to the user under ``name``."""


class MemoryDownloadSink:
    """Collects deliveries in memory."""

    def __init__(self) -> None:
        self.downloads: List[Download] = []

    def deliver(self, name: str, data: bytes, media_type: str) -> None:
        self.downloads.append(Download(name=name, data=data, media_type=media_type))

    @property
    def names(self) -> list[str]:
        return [item.name for item in self.downloads]


class DirectoryDownloadSink:
    """Writes each delivery into ``output_dir``."""

    def __init__(self, output_dir: str | Path) -> None:
        self.output_dir = Path(output_dir)
        self.written: List[Path] = []

    def deliver(self, name: str, data: bytes, media_type: str) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        destination = self.output_dir / Path(name).name
        destination.write_bytes(data)
        self.written.append(destination)
        LOGGER.info("Saved %s (%s, %d bytes)", destination, media_type, len(data))


__all__ = ["Download", "DownloadSink", "MemoryDownloadSink", "DirectoryDownloadSink"]
