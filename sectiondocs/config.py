"""Application configuration helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .types import Section

ENV_PREFIX = "SECTIONDOCS_"


def _env(name: str, default: str | None = None) -> str | None:
    return os.getenv(ENV_PREFIX + name, default)


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from exc


def _env_path(name: str) -> Path | None:
    raw = _env(name)
    return Path(raw) if raw else None


class Settings(BaseModel):
    """Runtime settings read from ``SECTIONDOCS_*`` environment variables."""

    app_name: str = "sectiondocs"
    log_level: str = Field(default_factory=lambda: _env("LOG_LEVEL", "INFO"))

    storage_backend: Literal["local", "supabase"] = Field(
        default_factory=lambda: _env("STORAGE_BACKEND", "local")
    )
    storage_dir: Path = Field(default_factory=lambda: Path(_env("STORAGE_DIR", "storage")))
    storage_base_url: Optional[str] = Field(default_factory=lambda: _env("STORAGE_BASE_URL"))
    storage_bucket: str = Field(default_factory=lambda: _env("STORAGE_BUCKET", "section-docs"))

    supabase_url: Optional[str] = Field(default_factory=lambda: _env("SUPABASE_URL"))
    supabase_key: Optional[str] = Field(default_factory=lambda: _env("SUPABASE_KEY"))

    backend_url: Optional[str] = Field(default_factory=lambda: _env("BACKEND_URL"))
    backend_api_key: Optional[str] = Field(default_factory=lambda: _env("BACKEND_API_KEY"))

    audit_log_path: Optional[Path] = Field(default_factory=lambda: _env_path("AUDIT_LOG_PATH"))
    audit_table: str = Field(default_factory=lambda: _env("AUDIT_TABLE", "workflow_responses"))

    workflow_timeout: float = Field(default_factory=lambda: _env_float("WORKFLOW_TIMEOUT", 120.0))
    upload_timeout: float = Field(default_factory=lambda: _env_float("UPLOAD_TIMEOUT", 60.0))
    progress_clear_delay: float = Field(
        default_factory=lambda: _env_float("PROGRESS_CLEAR_DELAY", 3.0)
    )
    cors_allow_origin: str = Field(default_factory=lambda: _env("CORS_ALLOW_ORIGIN", "*"))


def load_settings() -> Settings:
    """Read settings from the current environment."""

    return Settings()


def default_sections() -> tuple[Section, ...]:
    """The document sections of a mortgage application."""

    webhook_base = (_env("WEBHOOK_BASE_URL", "https://n8n.example.com/webhook") or "").rstrip("/")
    catalogue = (
        ("identification", "Identification", "Upload government-issued ID documents", "identification"),
        ("income", "Income Documents", "Upload pay stubs, T4s, or business financial statements", "income"),
        ("bankStatements", "Bank Statements", "Upload last 3 months of bank statements", "bank-statements"),
        ("depositProof", "Deposit Proof", "Upload proof of down payment", "deposit-proof"),
        (
            "assetsLiabilities",
            "Assets & Liabilities",
            "Upload statements for investments, debts, etc.",
            "assets-liabilities",
        ),
        (
            "propertyInfo",
            "Property Information",
            "Upload property details, MLS listing, or purchase agreement",
            "property-info",
        ),
        ("other", "Other Documents", "Upload any additional supporting documents", "other"),
    )
    return tuple(
        Section(id=key, title=title, description=description, endpoint=f"{webhook_base}/{slug}")
        for key, title, description, slug in catalogue
    )


settings = load_settings()


__all__ = ["Settings", "load_settings", "default_sections", "settings", "ENV_PREFIX"]
