from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path

import httpx
import pytest

from sectiondocs.audit import JsonlAuditLog
from sectiondocs.backend import (
    PLACEHOLDER_SUMMARY,
    SummarizationService,
    WorkflowClient,
    parse_payload,
    summary_from_response,
    utc_timestamp,
)
from sectiondocs.exceptions import InvalidPayload, PersistenceWarning, RemoteWorkflowError

PAYLOAD = {
    "sectionId": "income",
    "fileUrls": ["https://store/income/abc.png"],
    "webhookUrl": "https://hooks.test/income",
}


class FailingAuditLog:
    def __init__(self) -> None:
        self.calls = 0

    async def record(self, entry):
        self.calls += 1
        raise PersistenceWarning("connection refused")


def _service(handler, audit_log=None) -> SummarizationService:
    workflow = WorkflowClient(timeout=5, transport=httpx.MockTransport(handler))
    return SummarizationService(workflow, audit_log)


def _summarize(service: SummarizationService, payload=PAYLOAD):
    async def _main():
        result = await service.summarize(payload)
        await service.drain()
        return result

    return asyncio.run(_main())


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        (None, "Request body is empty"),
        ({}, "Request body is empty"),
        (["income"], "Request body must be a JSON object"),
        ({"fileUrls": [], "webhookUrl": "https://hooks.test"}, "sectionId is required"),
        ({"sectionId": "income", "fileUrls": "a.pdf", "webhookUrl": "https://hooks.test"}, "fileUrls must be an array"),
        ({"sectionId": "income", "fileUrls": []}, "webhookUrl is required"),
        (
            {"sectionId": "income", "fileUrls": ["ok", ""], "webhookUrl": "https://hooks.test"},
            "All fileUrls must be non-empty strings",
        ),
    ],
)
def test_parse_payload_rejects(payload, message: str) -> None:
    with pytest.raises(InvalidPayload) as excinfo:
        parse_payload(payload)
    assert excinfo.value.message == message
    assert excinfo.value.status_code == 400


def test_parse_payload_accepts_endpoint_alias_and_empty_urls() -> None:
    request = parse_payload({"sectionId": "other", "fileUrls": [], "endpoint": "https://hooks.test/other"})

    assert request.section_id == "other"
    assert request.file_urls == ()
    assert request.webhook_url == "https://hooks.test/other"


def test_utc_timestamp_format() -> None:
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z", utc_timestamp())


@pytest.mark.parametrize(
    ("data", "expected"),
    [
        ({"summary": "Net income: $5,000/mo"}, "Net income: $5,000/mo"),
        ({"summary": ""}, PLACEHOLDER_SUMMARY),
        ({}, PLACEHOLDER_SUMMARY),
        ([1, 2], PLACEHOLDER_SUMMARY),
        ({"summary": {"income": 5000}}, '{"income": 5000}'),
    ],
)
def test_summary_from_response(data, expected: str) -> None:
    assert summary_from_response(data) == expected


def test_summarize_forwards_urls_and_records_audit(tmp_path: Path) -> None:
    forwarded: list[dict] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        forwarded.append(json.loads(request.content))
        return httpx.Response(200, json={"summary": "Net income: $5,000/mo"})

    audit_log = JsonlAuditLog(tmp_path / "audit.jsonl")
    result = _summarize(_service(_handler, audit_log))

    assert result == {"summary": "Net income: $5,000/mo"}
    body = forwarded[0]
    assert body["sectionId"] == "income"
    assert body["fileUrls"] == ["https://store/income/abc.png"]
    assert body["timestamp"].endswith("Z")
    [entry] = audit_log.entries()
    assert entry["session_id"] == "income"
    assert entry["message"]["content"] == {"summary": "Net income: $5,000/mo"}
    assert entry["message"]["files"] == ["https://store/income/abc.png"]


def test_summarize_without_summary_returns_placeholder() -> None:
    result = _summarize(_service(lambda request: httpx.Response(200, json={"status": "queued"})))

    assert result == {"summary": PLACEHOLDER_SUMMARY}


def test_webhook_error_status() -> None:
    service = _service(lambda request: httpx.Response(500, text="workflow crashed"))

    with pytest.raises(RemoteWorkflowError) as excinfo:
        _summarize(service)
    assert excinfo.value.message == "Webhook error: 500"
    assert excinfo.value.status_code == 502
    assert excinfo.value.details == "workflow crashed"


def test_webhook_non_json_response() -> None:
    service = _service(lambda request: httpx.Response(200, text="<html>ok</html>"))

    with pytest.raises(RemoteWorkflowError, match="non-JSON"):
        _summarize(service)


def test_webhook_unreachable() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(RemoteWorkflowError, match="Webhook unreachable"):
        _summarize(_service(_handler))


def test_invalid_payload_never_calls_workflow() -> None:
    calls: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(InvalidPayload):
        _summarize(_service(_handler), {"sectionId": "income"})
    assert calls == []


def test_audit_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    audit_log = FailingAuditLog()
    service = _service(lambda request: httpx.Response(200, json={"summary": "done"}), audit_log)

    with caplog.at_level("WARNING", logger="sectiondocs.backend"):
        result = _summarize(service)

    assert result == {"summary": "done"}
    assert audit_log.calls == 1
    assert "Database error for income" in caplog.text


def test_custom_scheduler_receives_audit_write() -> None:
    scheduled: list[tuple] = []
    service = _service(lambda request: httpx.Response(200, json={"summary": "done"}))

    result = asyncio.run(service.summarize(PAYLOAD, schedule=lambda func, entry: scheduled.append((func, entry))))

    assert result == {"summary": "done"}
    [(func, entry)] = scheduled
    assert func == service.persist
    assert entry["session_id"] == "income"


def test_empty_file_list_is_still_forwarded() -> None:
    forwarded: list[dict] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        forwarded.append(json.loads(request.content))
        return httpx.Response(200, json={"summary": "Nothing to review"})

    payload = {"sectionId": "other", "fileUrls": [], "webhookUrl": "https://hooks.test/other"}
    result = _summarize(_service(_handler), payload)

    assert result == {"summary": "Nothing to review"}
    assert len(forwarded) == 1
    assert forwarded[0]["sectionId"] == "other"
    assert forwarded[0]["fileUrls"] == []
