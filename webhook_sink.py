"""
Session Intelligence Webhook Service

Receives meeting-bot webhooks for scheduled tutoring sessions, classifies
what actually happened (no-show, partial, completed) and persists the
outcome together with a pedagogical analysis of completed sessions.

Endpoints:
    POST /webhooks/recall        - Receive recording-bot webhook events
    POST /bots/register          - Record a bot-to-session mapping
    GET  /bots/{bot_id}          - Bot audit record
    PUT  /sessions/{session_id}  - Sync a scheduled session from the scheduler
    GET  /sessions/{session_id}  - Session record plus stored analysis
    PUT  /children/{child_id}    - Sync a child profile from the scheduler
    GET  /health                 - Health check
    GET  /stats                  - Statistics

Internal binding: configured by SINK_HOST/SINK_PORT (default 0.0.0.0:8766)
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Any, AsyncIterator, TypedDict

import uvicorn
from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from session_intel import __version__
from session_intel.analyzer import PedagogicalAnalyzer
from session_intel.archiver import RecallAudioArchiver
from session_intel.config import RuntimeConfig, load_runtime_config
from session_intel.embeddings import OpenAIEmbedder
from session_intel.envelope import EnvelopeError, EventKind, parse_envelope
from session_intel.models import BotSession, ScheduledSession, SessionAnalysis
from session_intel.notify import build_notification_dispatcher
from session_intel.persister import SessionPersister
from session_intel.pipeline import WebhookPipeline
from session_intel.registry import BotSessionRegistry
from session_intel.store import SessionStore, StoreError

# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

SERVICE_NAME = "Session Intelligence Service"
SIGNATURE_HEADER = "x-recall-signature"

RUNTIME_CONFIG = load_runtime_config()


# =============================================================================
# Request/Response Models
# =============================================================================


class BotRegistrationRequest(BaseModel):
    """Bot-to-session mapping published by the scheduling system."""

    bot_id: str = Field(..., min_length=1, description="Provider bot identifier")
    session_id: str = Field(..., min_length=1, description="Scheduled session identifier")
    child_id: str | None = Field(default=None, description="Child attending the session")
    coach_id: str | None = Field(default=None, description="Coach running the session")
    meeting_url: str | None = Field(default=None, description="Meeting join URL")

    model_config = {"extra": "forbid"}


class ChildSyncRequest(BaseModel):
    """Child profile published by the scheduling system."""

    name: str = Field(..., min_length=1)
    age: int | None = Field(default=None, ge=0)
    latest_assessment_score: float | None = Field(default=None, ge=0, le=10)
    sessions_completed: int = Field(default=0, ge=0)

    model_config = {"extra": "forbid"}


class BaseResponse(BaseModel):
    """Base response model with common fields."""

    ok: bool = Field(..., description="Whether the operation succeeded")
    message: str | None = Field(default=None, description="Optional status message")


class ErrorResponse(BaseModel):
    """Standard error response."""

    ok: bool = Field(default=False)
    error: str = Field(..., description="Error description")
    error_code: str | None = Field(default=None, description="Machine-readable error code")


class WebhookResponse(BaseModel):
    """Result of processing one webhook delivery."""

    ok: bool = Field(..., description="Whether the event was processed")
    status: str = Field(..., description="processed, no_change, duplicate, unresolved, acknowledged or ignored")
    bot_id: str | None = Field(default=None)
    session_id: str | None = Field(default=None)
    outcome: str | None = Field(default=None, description="Session status decided for this event")
    detail: str | None = Field(default=None)


class BotResponse(BaseResponse):
    """Bot audit record."""

    bot: BotSession


class SessionDetailResponse(BaseResponse):
    """Session record with its stored analysis."""

    session: ScheduledSession
    analysis: SessionAnalysis | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    timestamp: str = Field(..., description="Current server timestamp")
    analyzer_available: bool = Field(..., description="Whether the pedagogical analyzer is configured")
    archiver_available: bool = Field(..., description="Whether audio archival is configured")
    notification_routes: int = Field(..., description="Enabled notification routes")


class StatsResponse(BaseModel):
    """Statistics response."""

    stats: dict[str, Any] = Field(..., description="Service statistics")
    database_path: str = Field(..., description="Session store path")


# =============================================================================
# Application State (Type-safe Lifespan State)
# =============================================================================


class AppStats(TypedDict):
    """Application statistics tracking."""

    events_received: int
    events_ignored: int
    signature_failures: int
    errors: int
    events_by_kind: dict[str, int]
    results_by_status: dict[str, int]
    outcomes: dict[str, int]
    started_at: str


class AppState(TypedDict):
    """Type-safe application state managed by lifespan."""

    config: RuntimeConfig
    store: SessionStore
    pipeline: WebhookPipeline
    stats: AppStats


def get_initial_stats() -> AppStats:
    """Create initial statistics dictionary."""
    return AppStats(
        events_received=0,
        events_ignored=0,
        signature_failures=0,
        errors=0,
        events_by_kind={kind.value: 0 for kind in EventKind},
        results_by_status={},
        outcomes={},
        started_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    )


# =============================================================================
# Custom Exceptions
# =============================================================================


class SessionServiceError(Exception):
    """Base exception for session service errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class InvalidSignatureError(SessionServiceError):
    """Raised when a webhook signature is missing or does not match."""

    def __init__(self, message: str = "Invalid or missing webhook signature.") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="INVALID_SIGNATURE",
        )


class BotNotFoundError(SessionServiceError):
    """Raised when a bot id is unknown."""

    def __init__(self, bot_id: str) -> None:
        super().__init__(
            message=f"Bot '{bot_id}' not found.",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="BOT_NOT_FOUND",
        )


class SessionNotFoundError(SessionServiceError):
    """Raised when a session id is unknown."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            message=f"Session '{session_id}' not found.",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="SESSION_NOT_FOUND",
        )


# =============================================================================
# Dependencies
# =============================================================================


def get_app_state(request: Request) -> AppState:
    """
    Dependency to retrieve application state from request.

    Args:
        request: The incoming request object.

    Returns:
        AppState dictionary from lifespan context.

    Raises:
        RuntimeError: If state is not properly initialized.
    """
    state = getattr(request, "state", None)
    if state is None or not hasattr(state, "pipeline"):
        raise RuntimeError("Application state not initialized")
    return AppState(
        config=state.config,
        store=state.store,
        pipeline=state.pipeline,
        stats=state.stats,
    )


# Type alias for dependency injection
AppStateDep = Annotated[AppState, Depends(get_app_state)]


# =============================================================================
# Signature Verification
# =============================================================================


def verify_signature(secret: str | None, body: bytes, signature: str | None) -> bool:
    """
    Check the HMAC-SHA256 hex digest of the raw body.

    Verification is skipped (always True) when no secret is configured. A
    ``sha256=`` prefix on the header value is accepted.
    """
    if not secret:
        return True
    if not signature:
        return False
    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, provided.lower())


# =============================================================================
# Exception Handlers
# =============================================================================


async def session_service_error_handler(
    request: Request, exc: SessionServiceError
) -> JSONResponse:
    """
    Handle SessionServiceError exceptions.

    Args:
        request: The incoming request.
        exc: The exception that was raised.

    Returns:
        JSONResponse with error details.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            ok=False,
            error=exc.message,
            error_code=exc.error_code,
        ).model_dump(),
    )


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Surface store failures as 500 so the provider retries the delivery."""
    logger.error("Store failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            ok=False,
            error="Session store unavailable",
            error_code="STORE_UNAVAILABLE",
        ).model_dump(),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions.

    Args:
        request: The incoming request.
        exc: The exception that was raised.

    Returns:
        JSONResponse with generic error message.
    """
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            ok=False,
            error="Internal server error",
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )


# =============================================================================
# FastAPI App Lifespan
# =============================================================================


def build_pipeline(config: RuntimeConfig, store: SessionStore) -> WebhookPipeline:
    """Wire the pipeline and its collaborators from runtime config."""
    notifier = build_notification_dispatcher(config)
    logger.info("Enabled notification routes: %d", notifier.route_count)

    analyzer = PedagogicalAnalyzer(org_name=config.org_name)
    embedder = OpenAIEmbedder()

    archiver = None
    if config.recall_api_url and config.recall_api_key:
        archiver = RecallAudioArchiver(
            api_url=config.recall_api_url,
            api_key=config.recall_api_key,
            archive_dir=config.archive_dir,
            public_base_url=config.archive_public_base_url,
            timeout_seconds=config.archive_timeout_seconds,
        )
        logger.info("Audio archive directory: %s", config.archive_dir)
    else:
        logger.info("RECALL_API_URL not configured; audio archival disabled")

    persister = SessionPersister(
        store=store,
        notifier=notifier,
        analyzer=analyzer,
        embedder=embedder,
        archiver=archiver,
        analyzer_timeout_seconds=config.analyzer_timeout_seconds,
        embedding_timeout_seconds=config.embedding_timeout_seconds,
        archive_timeout_seconds=config.archive_timeout_seconds,
        notify_timeout_seconds=config.notify_timeout_seconds,
    )
    registry = BotSessionRegistry(store, org_name=config.org_name)
    return WebhookPipeline(store, registry, persister, coach_markers=config.coach_name_markers)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[dict[str, Any]]:
    """
    Manage application lifespan with type-safe state.

    Configuration is re-read on every startup. The pipeline is also exposed
    on ``app.state`` so operators and tests can swap collaborators.

    Args:
        app: The FastAPI application instance.

    Yields:
        Dictionary of application state to be attached to requests.
    """
    config = load_runtime_config()
    logger.info("Starting %s v%s", SERVICE_NAME, __version__)
    logger.info(
        "Runtime: host=%s port=%d db=%s signature_check=%s",
        config.sink_host,
        config.sink_port,
        config.db_path,
        "on" if config.webhook_secret else "off",
    )

    store = SessionStore(config.db_path)
    await store.init()

    pipeline = build_pipeline(config, store)
    stats = get_initial_stats()

    app.state.config = config
    app.state.store = store
    app.state.pipeline = pipeline
    app.state.stats = stats

    state = {
        "config": config,
        "store": store,
        "pipeline": pipeline,
        "stats": stats,
    }

    yield state

    logger.info("Shutting down...")


# =============================================================================
# FastAPI Application
# =============================================================================


app = FastAPI(
    title=SERVICE_NAME,
    version=__version__,
    description="Classifies tutoring sessions from meeting-bot webhooks and stores pedagogical analyses",
    lifespan=lifespan,
)

# Register exception handlers
app.add_exception_handler(SessionServiceError, session_service_error_handler)
app.add_exception_handler(StoreError, store_error_handler)
app.add_exception_handler(Exception, generic_exception_handler)


def _bump(counter: dict[str, int], key: str | None) -> None:
    if key:
        counter[key] = counter.get(key, 0) + 1


# =============================================================================
# Endpoints
# =============================================================================


@app.post("/webhooks/recall", response_model=WebhookResponse)
async def receive_webhook(request: Request, state: AppStateDep) -> WebhookResponse:
    """
    Receive a recording-bot webhook.

    Envelope format:
        {
            "event": "bot.status_change" | "bot.transcription" | "bot.recording_ready" | "bot.done",
            "data": {"bot_id": "...", ...}
        }

    Malformed or unknown events are acknowledged with ``status="ignored"``
    so the provider does not retry them. Store failures return 500 so it
    does.
    """
    stats = state["stats"]
    config = state["config"]
    body = await request.body()

    if not verify_signature(config.webhook_secret, body, request.headers.get(SIGNATURE_HEADER)):
        stats["signature_failures"] += 1
        logger.warning("Rejected webhook with invalid signature")
        raise InvalidSignatureError()

    stats["events_received"] += 1

    try:
        envelope = parse_envelope(body)
    except EnvelopeError as exc:
        stats["events_ignored"] += 1
        logger.warning("Ignoring webhook: %s", exc)
        return WebhookResponse(ok=False, status="ignored", detail=str(exc))

    _bump(stats["events_by_kind"], envelope.kind.value)

    try:
        result = await state["pipeline"].handle(envelope)
    except Exception:
        stats["errors"] += 1
        raise

    _bump(stats["results_by_status"], result.status)
    if result.status == "processed":
        _bump(stats["outcomes"], result.outcome)

    return WebhookResponse(
        ok=True,
        status=result.status,
        bot_id=result.bot_id,
        session_id=result.session_id,
        outcome=result.outcome,
        detail=result.detail,
    )


@app.post("/bots/register", response_model=BotResponse)
async def register_bot(request: BotRegistrationRequest, state: AppStateDep) -> BotResponse:
    """Record which session a freshly created bot belongs to."""
    store = state["store"]
    if await store.get_session(request.session_id) is None:
        raise SessionNotFoundError(request.session_id)

    bot = await store.register_bot(
        request.bot_id,
        request.session_id,
        child_id=request.child_id,
        coach_id=request.coach_id,
        meeting_url=request.meeting_url,
    )
    logger.info("Registered bot %s for session %s", bot.bot_id, bot.session_id)
    return BotResponse(ok=True, message="Bot registered", bot=bot)


@app.get("/bots/{bot_id}", response_model=BotResponse)
async def get_bot(bot_id: str, state: AppStateDep) -> BotResponse:
    bot = await state["store"].get_bot_session(bot_id)
    if bot is None:
        raise BotNotFoundError(bot_id)
    return BotResponse(ok=True, bot=bot)


@app.put("/sessions/{session_id}", response_model=SessionDetailResponse)
async def sync_session(
    session_id: str,
    session: ScheduledSession,
    state: AppStateDep,
) -> SessionDetailResponse:
    """Insert or update a scheduled session published by the scheduler."""
    if session.id != session_id:
        raise SessionServiceError(
            message="Session id in path and body differ.",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="SESSION_ID_MISMATCH",
        )
    stored = await state["store"].put_scheduled_session(session)
    return SessionDetailResponse(ok=True, message="Session synced", session=stored)


@app.get("/sessions/{session_id}", response_model=SessionDetailResponse)
async def get_session(session_id: str, state: AppStateDep) -> SessionDetailResponse:
    store = state["store"]
    session = await store.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    analysis = await store.get_analysis(session_id)
    return SessionDetailResponse(ok=True, session=session, analysis=analysis)


@app.put("/children/{child_id}", response_model=BaseResponse)
async def sync_child(child_id: str, request: ChildSyncRequest, state: AppStateDep) -> BaseResponse:
    """Insert or update a child profile published by the scheduler."""
    await state["store"].put_child(
        child_id,
        request.name,
        age=request.age,
        latest_assessment_score=request.latest_assessment_score,
        sessions_completed=request.sessions_completed,
    )
    return BaseResponse(ok=True, message="Child synced")


@app.get("/health", response_model=HealthResponse)
async def health(state: AppStateDep) -> HealthResponse:
    """
    Health check endpoint.

    Args:
        state: Application state from dependency injection.

    Returns:
        HealthResponse with service status.
    """
    persister = state["pipeline"].persister
    notifier = persister.notifier

    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        version=__version__,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        analyzer_available=persister.analyzer is not None,
        archiver_available=persister.archiver is not None,
        notification_routes=getattr(notifier, "route_count", 0),
    )


@app.get("/stats", response_model=StatsResponse)
async def get_stats(state: AppStateDep) -> StatsResponse:
    """
    Get current statistics.

    Args:
        state: Application state from dependency injection.

    Returns:
        StatsResponse with service statistics.
    """
    return StatsResponse(
        stats=dict(state["stats"]),
        database_path=str(state["config"].db_path),
    )


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    logger.info("=" * 60)
    logger.info("%s v%s", SERVICE_NAME, __version__)
    logger.info("=" * 60)
    logger.info(
        "Binding to: http://%s:%d",
        RUNTIME_CONFIG.sink_host,
        RUNTIME_CONFIG.sink_port,
    )
    logger.info("")
    logger.info("Endpoints:")
    logger.info("  POST /webhooks/recall       - Receive bot webhooks")
    logger.info("  POST /bots/register         - Register bot for session")
    logger.info("  GET  /bots/{bot_id}         - Bot audit record")
    logger.info("  PUT  /sessions/{session_id} - Sync scheduled session")
    logger.info("  GET  /sessions/{session_id} - Session record + analysis")
    logger.info("  PUT  /children/{child_id}   - Sync child profile")
    logger.info("  GET  /health                - Health check")
    logger.info("  GET  /stats                 - Statistics")
    logger.info("")
    logger.info("Session store: %s", RUNTIME_CONFIG.db_path)
    logger.info("=" * 60)

    uvicorn.run(
        app,
        host=RUNTIME_CONFIG.sink_host,
        port=RUNTIME_CONFIG.sink_port,
        log_level="info",
    )
