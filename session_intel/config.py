"""
Runtime configuration for the session intelligence sink.

All settings come from environment variables (optionally via a ``.env`` file
next to the project root). Validation is strict: a bad value fails startup
with a RuntimeError naming the variable instead of surfacing later as a
confusing runtime failure.

Last Grunted: 10/15/2026
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


__all__ = ["RuntimeConfig", "load_runtime_config"]


_env_path = Path(__file__).parent.parent / ".env"
load_dotenv(_env_path)


@dataclass(frozen=True)
class RuntimeConfig:
    """Runtime config for the webhook sink and its collaborators."""

    sink_host: str
    sink_port: int
    db_path: Path
    archive_dir: Path
    archive_public_base_url: Optional[str]
    recall_api_url: Optional[str]
    recall_api_key: Optional[str]
    webhook_secret: Optional[str]
    notify_webhook_url: Optional[str]
    notify_webhook_token: Optional[str]
    notify_timeout_seconds: float
    analyzer_timeout_seconds: float
    embedding_timeout_seconds: float
    archive_timeout_seconds: float
    coach_name_markers: tuple[str, ...]
    org_name: str


def _optional(name: str) -> Optional[str]:
    value = (os.environ.get(name) or "").strip()
    return value or None


def _required(name: str, default: str) -> str:
    value = (os.environ.get(name, default) or "").strip()
    if not value:
        raise RuntimeError(f"{name} resolved to empty value.")
    return value


def _positive_float(name: str, default: str) -> float:
    raw = _required(name, default)
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number. Got: {raw}") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be greater than zero. Got: {value}.")
    return value


def load_runtime_config() -> RuntimeConfig:
    """Load runtime config from environment with strict validation."""
    sink_host = _required("SINK_HOST", "0.0.0.0")

    sink_port_raw = _required("SINK_PORT", "8766")
    try:
        sink_port = int(sink_port_raw)
    except ValueError as exc:
        raise RuntimeError(f"SINK_PORT must be an integer. Got: {sink_port_raw}") from exc

    if sink_port < 1 or sink_port > 65535:
        raise RuntimeError(f"SINK_PORT must be in range 1-65535. Got: {sink_port}.")

    db_path = Path(_required("SESSION_DB_PATH", "./output/session_intel.db")).expanduser()
    archive_dir = Path(_required("ARCHIVE_DIR", "./output/audio")).expanduser()

    recall_api_url = _optional("RECALL_API_URL")
    recall_api_key = _optional("RECALL_API_KEY")
    if recall_api_url and not recall_api_key:
        raise RuntimeError("RECALL_API_URL is set but RECALL_API_KEY is missing.")

    markers = tuple(
        marker.strip().lower()
        for marker in _required("COACH_NAME_MARKERS", "coach").split(",")
        if marker.strip()
    )
    if not markers:
        raise RuntimeError("COACH_NAME_MARKERS must contain at least one marker.")

    return RuntimeConfig(
        sink_host=sink_host,
        sink_port=sink_port,
        db_path=db_path,
        archive_dir=archive_dir,
        archive_public_base_url=_optional("ARCHIVE_PUBLIC_BASE_URL"),
        recall_api_url=recall_api_url.rstrip("/") if recall_api_url else None,
        recall_api_key=recall_api_key,
        webhook_secret=_optional("RECALL_WEBHOOK_SECRET"),
        notify_webhook_url=_optional("NOTIFY_WEBHOOK_URL"),
        notify_webhook_token=_optional("NOTIFY_WEBHOOK_TOKEN"),
        notify_timeout_seconds=_positive_float("NOTIFY_TIMEOUT_SECONDS", "5"),
        analyzer_timeout_seconds=_positive_float("ANALYZER_TIMEOUT_SECONDS", "90"),
        embedding_timeout_seconds=_positive_float("EMBEDDING_TIMEOUT_SECONDS", "20"),
        archive_timeout_seconds=_positive_float("ARCHIVE_TIMEOUT_SECONDS", "120"),
        coach_name_markers=markers,
        org_name=_required("ORG_NAME", "Yestoryd"),
    )
