"""Context Analyzer: non-intent signals: sentiment, urgency and history factors."""
from datetime import datetime
from typing import Callable, List, Optional
import logging

from pydantic import BaseModel

from config.settings import settings
from core.text import keyword_matches
from models.context import UserContext
from models.intent import ContextFactor, TemporalContext

logger = logging.getLogger(__name__)

MAX_FACTORS = 5


class ContextSignals(BaseModel):
    """Everything the analyzer extracts for one request"""
    factors: List[ContextFactor]
    emotional_weight: float
    temporal_context: TemporalContext


class ContextAnalyzer:
    """
    Extracts signals that are independent of intent scoring:
    - emotional weight from sentiment keywords and the user's emotional state
    - a temporal snapshot with an urgency tier
    - up to five context factors for synthesis and learning

    Every input has a safe default, so analysis runs even when no intent
    candidate survives.
    """

    def __init__(
        self,
        urgent_hours_start: Optional[int] = None,
        urgent_hours_end: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.urgent_hours_start = (
            settings.URGENT_HOURS_START if urgent_hours_start is None else urgent_hours_start
        )
        self.urgent_hours_end = (
            settings.URGENT_HOURS_END if urgent_hours_end is None else urgent_hours_end
        )
        self.clock = clock or datetime.now

        self._positive_keywords = ["excited", "happy", "amazing", "wonderful", "love", "great"]
        self._negative_keywords = ["worried", "stressed", "tired", "frustrated", "problem", "issue"]
        self._urgent_keywords = ["urgent", "asap", "immediately", "emergency", "right now"]

    def analyze(
        self,
        context: UserContext,
        normalized_text: str,
        now: Optional[datetime] = None,
    ) -> ContextSignals:
        now = now or self.clock()
        positive = keyword_matches(normalized_text, self._positive_keywords)
        negative = keyword_matches(normalized_text, self._negative_keywords)

        emotional_weight = self.emotional_weight(context, len(positive), len(negative))
        temporal = self.temporal_context(now, normalized_text)
        factors = self._factors(context, temporal, len(positive), len(negative), emotional_weight)

        logger.debug(
            f"Context signals: emotional_weight={emotional_weight:.2f}, "
            f"urgency={temporal.urgency}, factors={[f.name for f in factors]}"
        )
        return ContextSignals(
            factors=factors,
            emotional_weight=emotional_weight,
            temporal_context=temporal,
        )

    def emotional_weight(self, context: UserContext, positive: int, negative: int) -> float:
        weight = 0.5 + 0.1 * positive - 0.1 * negative
        if context.emotional_state == "excited":
            weight += 0.2
        elif context.emotional_state in ("stressed", "tired"):
            weight -= 0.2
        return max(0.0, min(1.0, weight))

    def temporal_context(self, now: datetime, normalized_text: str = "") -> TemporalContext:
        hour = now.hour
        weekday = now.weekday()

        # First matching rule wins
        if keyword_matches(normalized_text, self._urgent_keywords):
            urgency = "critical"
        elif self._in_urgent_window(hour):
            urgency = "high"
        elif weekday >= 5:
            urgency = "medium"
        else:
            urgency = "low"

        return TemporalContext(
            hour=hour,
            day_of_week=weekday,
            season=_season(now.month),
            urgency=urgency,
        )

    def _in_urgent_window(self, hour: int) -> bool:
        start, end = self.urgent_hours_start, self.urgent_hours_end
        if start > end:
            return hour >= start or hour <= end
        return start <= hour <= end

    def _factors(
        self,
        context: UserContext,
        temporal: TemporalContext,
        positive: int,
        negative: int,
        emotional_weight: float,
    ) -> List[ContextFactor]:
        factors: List[ContextFactor] = []

        if context.preferences:
            factors.append(ContextFactor(
                name="user_preferences",
                weight=0.8,
                influence="positive",
                source="user_history",
            ))

        if context.travel_history:
            factors.append(ContextFactor(
                name="travel_history",
                weight=min(1.0, len(context.travel_history) / 10),
                influence="positive",
                source="user_history",
            ))

        if context.emotional_state:
            state = context.emotional_state
            factors.append(ContextFactor(
                name="emotional_state",
                weight=0.9 if state == "excited" else 0.6,
                influence="negative" if state in ("stressed", "tired") else "positive",
                source="current_context",
            ))

        if positive or negative:
            if positive > negative:
                influence = "positive"
            elif negative > positive:
                influence = "negative"
            else:
                influence = "neutral"
            # Distance from neutral, so the user's emotional state counts too
            factors.append(ContextFactor(
                name="input_sentiment",
                weight=min(1.0, abs(emotional_weight - 0.5) * 2),
                influence=influence,
                source="current_context",
            ))

        factors.append(ContextFactor(
            name="time_urgency",
            weight=0.9 if temporal.urgency in ("high", "critical") else 0.5,
            influence="negative" if temporal.urgency == "critical" else "neutral",
            source="external_data",
        ))

        return factors[:MAX_FACTORS]


def _season(month: int) -> str:
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "fall"
    return "winter"
