"""Backend summarization function.

Validates the request payload, forwards the file URLs to the section's
workflow webhook, schedules the audit write without waiting for it and
returns the workflow's summary.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Set

import httpx

from .audit import AuditLog, NullAuditLog, build_audit_entry
from .config import settings
from .exceptions import InvalidPayload, PersistenceWarning, RemoteWorkflowError

LOGGER = logging.getLogger(__name__)

PLACEHOLDER_SUMMARY = "Document processing initiated"

Scheduler = Callable[..., Any]


@dataclass(frozen=True, slots=True)
class SummarizeRequest:
    section_id: str
    file_urls: tuple[str, ...]
    webhook_url: str


def parse_payload(payload: Any) -> SummarizeRequest:
    """Validate a ``{sectionId, fileUrls, webhookUrl}`` request body.

    ``endpoint`` is accepted in place of ``webhookUrl``. An empty
    ``fileUrls`` list is valid.
    """

    if not payload:
        raise InvalidPayload("Request body is empty")
    if not isinstance(payload, dict):
        raise InvalidPayload("Request body must be a JSON object")
    section_id = payload.get("sectionId")
    if not section_id or not isinstance(section_id, str):
        raise InvalidPayload("sectionId is required")
    file_urls = payload.get("fileUrls")
    if not isinstance(file_urls, list):
        raise InvalidPayload("fileUrls must be an array")
    webhook_url = payload.get("webhookUrl") or payload.get("endpoint")
    if not webhook_url or not isinstance(webhook_url, str):
        raise InvalidPayload("webhookUrl is required")
    if not all(isinstance(url, str) and url for url in file_urls):
        raise InvalidPayload("All fileUrls must be non-empty strings")
    return SummarizeRequest(section_id=section_id, file_urls=tuple(file_urls), webhook_url=webhook_url)


def utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class WorkflowClient:
    """Posts ``{sectionId, fileUrls, timestamp}`` to a workflow webhook."""

    def __init__(
        self,
        *,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = settings.workflow_timeout if timeout is None else timeout
        self._transport = transport

    async def invoke(self, request: SummarizeRequest) -> Any:
        body = {
            "sectionId": request.section_id,
            "fileUrls": list(request.file_urls),
            "timestamp": utc_timestamp(),
        }
        LOGGER.info("Forwarding %d file(s) for %s to %s", len(request.file_urls), request.section_id, request.webhook_url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(request.webhook_url, json=body)
        except httpx.HTTPError as exc:
            raise RemoteWorkflowError(
                f"Webhook unreachable: {exc.__class__.__name__}", details=str(exc)
            ) from exc

        if not response.is_success:
            raise RemoteWorkflowError(
                f"Webhook error: {response.status_code}", details=response.text[:500] or None
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteWorkflowError("Webhook returned a non-JSON response", details=str(exc)) from exc


def summary_from_response(data: Any) -> str:
    """Pull ``summary`` out of a workflow response, or fall back to the placeholder."""

    summary = data.get("summary") if isinstance(data, dict) else None
    if not summary:
        return PLACEHOLDER_SUMMARY
    if isinstance(summary, str):
        return summary
    return json.dumps(summary, ensure_ascii=False)


class SummarizationService:
    """The backend function, independent of any HTTP framework."""

    def __init__(self, workflow: WorkflowClient | None = None, audit_log: AuditLog | None = None) -> None:
        self.workflow = workflow or WorkflowClient()
        self.audit_log = audit_log or NullAuditLog()
        self._pending: Set[asyncio.Task] = set()

    async def summarize(self, payload: Any, *, schedule: Scheduler | None = None) -> dict[str, str]:
        """Handle one request and return ``{"summary": ...}``.

        ``schedule(func, entry)`` receives the audit write; by default it runs
        as a detached task on the current loop.
        """

        request = parse_payload(payload)
        data = await self.workflow.invoke(request)
        entry = build_audit_entry(request.section_id, data, request.file_urls)
        if schedule is not None:
            schedule(self.persist, entry)
        else:
            self._spawn(self.persist(entry))
        return {"summary": summary_from_response(data)}

    async def persist(self, entry: dict[str, Any]) -> None:
        """Write ``entry`` to the audit log; failures are logged only."""

        try:
            await self.audit_log.record(entry)
        except PersistenceWarning as exc:
            LOGGER.warning("Database error for %s: %s", entry.get("session_id"), exc.message)
        except Exception:
            LOGGER.exception("Unexpected audit log failure for %s", entry.get("session_id"))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for detached audit writes; used on shutdown and in tests."""

        if self._pending:
            await asyncio.gather(*list(self._pending))


__all__ = [
    "PLACEHOLDER_SUMMARY",
    "SummarizeRequest",
    "SummarizationService",
    "WorkflowClient",
    "parse_payload",
    "summary_from_response",
    "utc_timestamp",
]
