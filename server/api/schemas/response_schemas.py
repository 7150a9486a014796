"""API response schemas"""
from pydantic import BaseModel
from typing import Optional, List, Dict, Any

from models.workflow import ExecutionOutcome, HealthMetrics


class ProcessResponse(BaseModel):
    outcome: ExecutionOutcome
    requires_clarification: bool = False
    clarification_question: Optional[str] = None


class MetricsResponse(BaseModel):
    health: HealthMetrics
    learner: Dict[str, Any]


class CapabilitiesResponse(BaseModel):
    capabilities: List[Dict[str, Any]]


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
    retryable: bool = False
