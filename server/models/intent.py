"""Intent analysis data models"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Literal

UNKNOWN_INTENT = "unknown"


class IntentCandidate(BaseModel):
    """A scored, not-yet-final guess at the user's intent"""
    label: str
    weight: float = Field(ge=0.0, le=1.0)
    phase: float = 0.0  # radians in [0, 2π), only used as an interference key
    coherence: float = Field(default=0.5, ge=0.0, le=1.0)


class ContextFactor(BaseModel):
    """Non-intent signal extracted from the user context or input"""
    name: str
    weight: float = Field(ge=0.0, le=1.0)
    influence: Literal["positive", "negative", "neutral"] = "neutral"
    source: Literal["user_history", "current_context", "external_data"] = "current_context"


class TemporalContext(BaseModel):
    """Wall-clock snapshot taken at request time"""
    hour: int = Field(ge=0, le=23)
    day_of_week: int = Field(ge=0, le=6)  # Monday == 0
    season: Literal["winter", "spring", "summer", "fall"]
    urgency: Literal["low", "medium", "high", "critical"] = "low"


class CollapsedIntent(BaseModel):
    """Primary/secondary selection made from resolved candidates"""
    model_config = ConfigDict(frozen=True)

    primary_intent: str = UNKNOWN_INTENT
    confidence: float = 0.0
    secondary_intents: tuple[str, ...] = ()


class IntentAnalysisResult(BaseModel):
    """Immutable output of one analysis pass"""
    model_config = ConfigDict(frozen=True)

    primary_intent: str
    confidence: float = Field(ge=0.0, le=1.0)
    secondary_intents: tuple[str, ...] = ()
    candidates: tuple[IntentCandidate, ...] = ()
    context_factors: tuple[ContextFactor, ...] = ()
    emotional_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    temporal_context: TemporalContext
    normalized_text: str = ""

    @property
    def is_unknown(self) -> bool:
        return self.primary_intent == UNKNOWN_INTENT
