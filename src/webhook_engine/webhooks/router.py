"""Webhook API routes.

FastAPI router providing inbound webhook reception and the read /
recovery endpoints used by monitoring dashboards. The engine is taken
from ``request.app.state.webhook_engine``.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from .engine import WebhookEngine
from .models import DeliveryAttempt, HealthStatus, WebhookEvent, WebhookStats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def get_engine(request: Request) -> WebhookEngine:
    """Dependency returning the app's webhook engine."""
    engine = getattr(request.app.state, "webhook_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Webhook engine not configured")
    return engine


# ============================================================================
# Inbound Webhook Receiver Endpoint
# ============================================================================

@router.post("/receive/{source}")
async def receive_webhook(
    source: str,
    request: Request,
    x_tenant_id: Optional[str] = Header(None),
    engine: WebhookEngine = Depends(get_engine),
):
    """Receive an inbound webhook from an external platform.

    The raw body is passed through untouched (signatures are computed
    over the exact bytes). Responds 200 when queued, 400 for a malformed
    payload or unknown source, and 401 for a bad or missing signature.
    """
    raw_body = await request.body()
    result = engine.receive_webhook(
        source,
        raw_body,
        dict(request.headers),
        tenant_id=x_tenant_id,
    )

    if not result.success:
        return JSONResponse(
            status_code=result.status_code,
            content={"success": False, "error": result.error},
        )

    return {"success": True, "event_id": result.event_id, "duplicate": result.duplicate}


# ============================================================================
# Monitoring Endpoints
# ============================================================================

@router.get("/stats", response_model=WebhookStats)
async def get_stats(engine: WebhookEngine = Depends(get_engine)):
    """Aggregate processing statistics."""
    return engine.get_stats()


@router.get("/health", response_model=HealthStatus)
async def get_health(engine: WebhookEngine = Depends(get_engine)):
    """Coarse health of the processing queue."""
    return engine.get_health_status()


@router.get("/events/{event_id}", response_model=WebhookEvent)
async def get_event(event_id: str, engine: WebhookEngine = Depends(get_engine)):
    """Get a webhook event by ID."""
    event = engine.get_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@router.get("/events/{event_id}/deliveries", response_model=List[DeliveryAttempt])
async def get_deliveries(event_id: str, engine: WebhookEngine = Depends(get_engine)):
    """Get the delivery attempt history for an event."""
    if engine.get_event(event_id) is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return engine.get_delivery_history(event_id)


# ============================================================================
# Dead Letter / Maintenance Endpoints
# ============================================================================

@router.get("/dead-letter", response_model=List[WebhookEvent])
async def list_dead_letters(engine: WebhookEngine = Depends(get_engine)):
    """List events in the dead letter queue."""
    return engine.list_dead_letters()


@router.post("/dead-letter/{event_id}/retry")
async def retry_dead_letter(event_id: str, engine: WebhookEngine = Depends(get_engine)):
    """Move a dead-lettered event back to the processing queue."""
    result = engine.retry_event(event_id)
    if not result.success:
        raise HTTPException(status_code=404, detail=result.error)
    return {"status": "success", "message": "Event queued for retry"}


@router.delete("/dead-letter")
async def clear_dead_letters(engine: WebhookEngine = Depends(get_engine)):
    """Delete every event in the dead letter queue."""
    cleared = engine.clear_dead_letter_queue()
    return {"status": "success", "cleared": cleared}


@router.post("/cleanup")
async def cleanup(engine: WebhookEngine = Depends(get_engine)):
    """Purge completed and dead-letter events past the retention window."""
    removed = engine.cleanup()
    return {"status": "success", "removed": removed}
