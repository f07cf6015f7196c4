import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, Header, HTTPException, status, Query
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from app.metrics import record_webhook_outcome, get_metrics, get_metrics_content_type
from app.pipeline import MessagePipeline, TransportFactory, parse_webhook_payload
from app.schemas import (
    ErrorResponse,
    HealthResponse,
    MessageLogResponse,
    MessageLogsListResponse,
    PipelineOutcome,
    WebhookResponse,
    WebhookStatusResponse,
)
from app.storage import (
    check_db_health,
    get_bot_settings,
    get_db,
    get_message_logs,
    get_webhook_status,
    init_db,
)
from app.utils import verify_hmac_signature
from app.whatsapp import EvolutionClient


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="Assistente Técnico Webhook",
    description="WhatsApp webhook that answers spare-part questions from the product catalog",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Dependencies
# =============================================================================

def get_pipeline(db: Session = Depends(get_db)) -> MessagePipeline:
    return MessagePipeline(db)


def get_transport_factory() -> TransportFactory:
    return EvolutionClient.from_settings


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    schema is applied, otherwise 503.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Webhook Route
# =============================================================================

@app.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"description": "Body is not a JSON object"},
    }
)
async def webhook(
    request: Request,
    x_signature: Annotated[str | None, Header(alias="X-Signature")] = None,
    pipeline: MessagePipeline = Depends(get_pipeline),
) -> WebhookResponse:
    """
    Receive a WhatsApp message from the Evolution API and reply to it.

    Accepts either the bare message or the Evolution event envelope
    ({"event", "instance", "data": <message>}). Dropped messages (own,
    group, empty, AI disabled) and JSON objects without the message shape
    still return 200. Redelivered payloads are processed again.

    Headers:
        - X-Signature: hex HMAC-SHA256 of raw body, required only when
          WEBHOOK_SECRET is configured
    """
    raw_body = await request.body()

    if not verify_hmac_signature(raw_body, x_signature, settings.WEBHOOK_SECRET):
        logger.error("Invalid webhook signature")
        record_webhook_outcome("invalid_signature")
        log_webhook_data(request=request, result="invalid_signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid signature"
        )

    try:
        body = json.loads(raw_body)
    except ValueError as e:
        # JSONDecodeError and UnicodeDecodeError both land here
        logger.error(f"Invalid JSON: {e}")
        record_webhook_outcome("validation_error")
        log_webhook_data(request=request, result="validation_error")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid JSON: {e}"
        )

    if not isinstance(body, dict):
        logger.error(f"Webhook body is not a JSON object: {type(body).__name__}")
        record_webhook_outcome("validation_error")
        log_webhook_data(request=request, result="validation_error")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Payload must be a JSON object"
        )

    try:
        message = parse_webhook_payload(body)
    except ValidationError as e:
        # Non-message events (connection.update, ...) share this URL
        logger.info(f"Non-message webhook ignored: event={body.get('event')!r}, {e.error_count()} errors")
        record_webhook_outcome(PipelineOutcome.INELIGIBLE.value)
        log_webhook_data(request=request, result=PipelineOutcome.INELIGIBLE.value)
        return WebhookResponse(status="ok", result=PipelineOutcome.INELIGIBLE.value)

    # Outbound HTTP calls block, keep them off the event loop
    result = await run_in_threadpool(pipeline.process, message)

    log_webhook_data(
        request=request,
        numero=result.numero,
        result=result.outcome.value,
        path_taken=result.path.value if result.path else None,
    )
    return WebhookResponse(status="ok", result=result.outcome.value)


# =============================================================================
# Message Log Route
# =============================================================================

@app.get("/logs", response_model=MessageLogsListResponse)
async def list_logs(
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum number of rows to return")] = 50,
    offset: Annotated[int, Query(ge=0, description="Number of rows to skip")] = 0,
    numero: Annotated[str | None, Query(description="Filter by sender number (exact match)")] = None,
    q: Annotated[str | None, Query(description="Search in message and reply text (case-insensitive)")] = None,
    db: Session = Depends(get_db)
) -> MessageLogsListResponse:
    """List message logs, newest first."""
    rows, total = get_message_logs(db=db, limit=limit, offset=offset, numero=numero, q=q)

    return MessageLogsListResponse(
        data=[MessageLogResponse.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset
    )


# =============================================================================
# Status Route
# =============================================================================

@app.get("/status", response_model=WebhookStatusResponse)
def webhook_status(
    db: Session = Depends(get_db),
    transport_factory: TransportFactory = Depends(get_transport_factory),
) -> WebhookStatusResponse:
    """
    Report recent webhook activity and the messaging instance state.

    - status: "active", or "error" when the log table cannot be read
    - last_message: timestamp of the latest logged message
    - message_count: messages logged in the last 24 hours
    - instance_status: connected / disconnected / error, null without settings
    """
    summary = get_webhook_status(db)

    instance_status = None
    bot_settings = get_bot_settings(db)
    if bot_settings is not None:
        instance_status = transport_factory(bot_settings).get_instance_status()

    return WebhookStatusResponse(instance_status=instance_status, **summary)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
