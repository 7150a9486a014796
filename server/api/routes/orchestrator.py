"""Orchestrator API routes: process requests and inspect the running service."""
from fastapi import APIRouter, HTTPException, status
import logging

from api.schemas.request_schemas import ProcessRequest
from api.schemas.response_schemas import CapabilitiesResponse, MetricsResponse, ProcessResponse
from core.dependencies import get_orchestrator, get_provider_registry
from core.errors import OrchestratorError

logger = logging.getLogger(__name__)
router = APIRouter()


def _http_error(e: OrchestratorError) -> HTTPException:
    return HTTPException(
        status_code=(
            status.HTTP_503_SERVICE_UNAVAILABLE if e.retryable
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        ),
        detail={"error": e.kind, "detail": str(e), "retryable": e.retryable},
    )


@router.post("/process", response_model=ProcessResponse)
async def process_request(request: ProcessRequest):
    """
    Run one travel request through the orchestrator.

    Partial capability failures are part of a normal 200 response. Store or
    catalog problems return 503 when retryable and 500 otherwise.
    """
    orchestrator = get_orchestrator()
    try:
        outcome = await orchestrator.process_request(
            request.user_id,
            request.message_text,
            request.context_updates,
        )
    except OrchestratorError as e:
        logger.error(f"Request for user {request.user_id} failed ({e.kind}, retryable={e.retryable}): {e}")
        raise _http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return ProcessResponse(
        outcome=outcome,
        requires_clarification=bool(outcome.output.get("requires_clarification")),
        clarification_question=outcome.output.get("clarification_question"),
    )


@router.get("/metrics", response_model=MetricsResponse)
async def metrics():
    orchestrator = get_orchestrator()
    try:
        health = await orchestrator.get_health_metrics()
    except OrchestratorError as e:
        logger.error(f"Metrics unavailable: {e}")
        raise _http_error(e)
    return MetricsResponse(health=health, learner=orchestrator.learner.get_metrics())


@router.get("/capabilities", response_model=CapabilitiesResponse)
async def list_capabilities():
    """List registered providers with their operational status."""
    return CapabilitiesResponse(capabilities=get_provider_registry().get_statuses())
