"""FastAPI application exposing the summarization backend."""

from __future__ import annotations

import logging
from json import JSONDecodeError
from typing import Any

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from ..audit import build_audit_log
from ..backend import SummarizationService, WorkflowClient
from ..config import Settings, load_settings
from ..exceptions import InvalidPayload, RemoteWorkflowError

LOGGER = logging.getLogger(__name__)

ALLOWED_METHODS = "POST, OPTIONS"
ALLOWED_HEADERS = "authorization, x-client-info, apikey, content-type"


def cors_headers(origin: str = "*") -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": ALLOWED_HEADERS,
    }


def create_app(settings: Settings | None = None, service: SummarizationService | None = None) -> FastAPI:
    """Build the API; ``service`` defaults to one wired from ``settings``."""

    settings = settings or load_settings()
    if service is None:
        service = SummarizationService(
            WorkflowClient(timeout=settings.workflow_timeout),
            build_audit_log(settings),
        )
    headers = cors_headers(settings.cors_allow_origin)

    app = FastAPI(title="sectiondocs API", version="0.1.0")
    app.state.service = service

    def _error(status_code: int, error: str, details: Any = None) -> JSONResponse:
        body: dict[str, Any] = {"error": error}
        if details is not None:
            body["details"] = details
        return JSONResponse(body, status_code=status_code, headers=headers)

    @app.get("/health", response_class=JSONResponse)
    async def health() -> dict[str, str]:
        """Lightweight health endpoint for uptime checks."""
        return {"status": "ok"}

    @app.options("/process-documents")
    async def preflight() -> Response:
        return Response(status_code=204, headers=headers)

    @app.post("/process-documents")
    async def process_documents(request: Request, background_tasks: BackgroundTasks) -> JSONResponse:
        """Validate the payload, call the workflow and return its summary."""

        try:
            payload = await request.json()
        except (JSONDecodeError, UnicodeDecodeError):
            return _error(400, "Invalid request payload", "Failed to parse request body")

        try:
            result = await service.summarize(payload, schedule=background_tasks.add_task)
        except InvalidPayload as exc:
            return _error(exc.status_code, "Invalid request payload", exc.message)
        except RemoteWorkflowError as exc:
            LOGGER.error("Error processing documents: %s", exc.message)
            return _error(exc.status_code, exc.message, exc.details)
        except Exception as exc:
            LOGGER.exception("Unexpected error processing documents")
            return _error(500, str(exc) or "An unexpected error occurred")

        return JSONResponse(result, headers=headers)

    return app


app = create_app()
