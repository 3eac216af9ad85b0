"""Best-effort audit log of raw workflow responses."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

import httpx

from .config import Settings, settings as default_settings
from .exceptions import PersistenceWarning

LOGGER = logging.getLogger(__name__)


def build_audit_entry(section_id: str, content: Any, files: Sequence[str]) -> dict[str, Any]:
    return {
        "session_id": section_id,
        "message": {
            "type": "webhook_response",
            "content": content,
            "files": list(files),
        },
    }


class AuditLog(Protocol):
    async def record(self, entry: dict[str, Any]) -> None:
        """Persist ``entry``; raise :class:`PersistenceWarning` on failure."""


class NullAuditLog:
    async def record(self, entry: dict[str, Any]) -> None:
        LOGGER.debug("Audit logging disabled; dropping entry for %s", entry.get("session_id"))


class JsonlAuditLog:
    """Appends one JSON document per line to ``path``."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def record(self, entry: dict[str, Any]) -> None:
        line = json.dumps(entry, ensure_ascii=False, default=str)
        async with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError as exc:
                raise PersistenceWarning(f"Failed to persist workflow response: {exc}") from exc

    def entries(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]


class SupabaseAuditLog:
    """Inserts entries into a table through the PostgREST API."""

    def __init__(
        self,
        url: str,
        api_key: str,
        table: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{table}"
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def record(self, entry: dict[str, Any]) -> None:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "apikey": self.api_key,
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.endpoint, json=entry, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PersistenceWarning(f"Failed to persist workflow response: {exc}") from exc


def build_audit_log(config: Settings | None = None) -> AuditLog:
    """Pick the audit sink: Supabase when configured, else JSONL, else none."""

    config = config or default_settings
    if config.supabase_url and config.supabase_key:
        return SupabaseAuditLog(config.supabase_url, config.supabase_key, config.audit_table)
    if config.audit_log_path is not None:
        return JsonlAuditLog(config.audit_log_path)
    return NullAuditLog()


__all__ = [
    "AuditLog",
    "NullAuditLog",
    "JsonlAuditLog",
    "SupabaseAuditLog",
    "build_audit_entry",
    "build_audit_log",
]
