"""User context data models"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Any, Literal
from datetime import datetime, timezone
from uuid import uuid4


EmotionalState = Literal["excited", "stressed", "tired", "neutral"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TripSummary(BaseModel):
    """A completed trip remembered for a user"""
    trip_id: str = Field(default_factory=lambda: str(uuid4()))
    destination: str
    companions: list[str] = []
    satisfaction: float = Field(default=0.0, ge=0.0, le=1.0)
    completed_at: datetime = Field(default_factory=_utcnow)

    @field_validator("completed_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are read as UTC so retention cutoffs can compare them."""
        return _as_utc(v)


class UserContextUpdate(BaseModel):
    """Partial update applied to a UserContext before analysis"""
    session_id: Optional[str] = None
    preferences: dict[str, Any] = {}
    travel_history: list[TripSummary] = []
    emotional_state: Optional[EmotionalState] = None
    current_intent: Optional[str] = None


class UserContext(BaseModel):
    """Per-user state owned by the orchestrator"""
    user_id: str
    session_id: str = Field(default_factory=lambda: f"session_{uuid4().hex}")
    preferences: dict[str, Any] = {}
    travel_history: list[TripSummary] = []
    emotional_state: Optional[EmotionalState] = None
    current_intent: Optional[str] = None
    request_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def apply_updates(self, updates: Optional[UserContextUpdate]) -> "UserContext":
        """Return a copy with the update merged in.

        Preferences are merged key by key and trips are appended; history is
        never rewritten here.
        """
        if updates is None:
            return self.model_copy(deep=True)

        merged = self.model_copy(deep=True)
        if updates.session_id:
            merged.session_id = updates.session_id
        merged.preferences.update(updates.preferences)
        merged.travel_history.extend(t.model_copy() for t in updates.travel_history)
        if updates.emotional_state is not None:
            merged.emotional_state = updates.emotional_state
        if updates.current_intent is not None:
            merged.current_intent = updates.current_intent
        return merged

    def prune_history(self, cutoff: datetime) -> int:
        """Drop trips completed before cutoff. Returns the number removed."""
        cutoff = _as_utc(cutoff)
        kept = [t for t in self.travel_history if _as_utc(t.completed_at) >= cutoff]
        removed = len(self.travel_history) - len(kept)
        self.travel_history = kept
        return removed

    def snapshot(self) -> dict[str, Any]:
        """Content that drives interference phases (stable JSON-able dict)."""
        return {
            "preferences": self.preferences,
            "emotional_state": self.emotional_state,
            "travel_history": [
                {"destination": t.destination, "companions": t.companions}
                for t in self.travel_history[-3:]
            ],
        }
