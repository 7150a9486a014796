"""Intent Engine: weighted candidate scoring, interference and collapse.

Pipeline for one request:

    generate_candidates -> resolve_interference -> collapse

Candidates are scored against the intent catalog, adjusted pairwise by a
phase-keyed interference term, dampened when poorly supported by the user's
history, and finally collapsed to one primary label. All steps are
deterministic for a given text and context snapshot.
"""
from datetime import datetime
from typing import Any, Iterable, List, Optional
import hashlib
import json
import logging
import math

from config.settings import settings
from core.catalog import IntentCatalog, IntentDefinition
from core.context_analyzer import ContextAnalyzer
from core.text import keyword_matches, normalize_text
from models.context import UserContext
from models.intent import (
    CollapsedIntent,
    IntentAnalysisResult,
    IntentCandidate,
)

logger = logging.getLogger(__name__)

KEYWORD_SCORE = 0.2
PREFERENCE_BONUS = 0.3
HISTORY_BONUS = 0.2
TWO_PI = 2 * math.pi


class IntentEngine:
    """Scores catalog intents for an input and collapses them to a result."""

    def __init__(
        self,
        catalog: IntentCatalog,
        context_analyzer: Optional[ContextAnalyzer] = None,
        *,
        candidate_floor: Optional[float] = None,
        max_candidates: Optional[int] = None,
        interference_sensitivity: Optional[float] = None,
        coherence_threshold: Optional[float] = None,
        decoherence_factor: Optional[float] = None,
        primary_min_weight: Optional[float] = None,
        secondary_min_weight: Optional[float] = None,
        max_secondary: Optional[int] = None,
    ):
        self.catalog = catalog
        self.context_analyzer = context_analyzer or ContextAnalyzer()
        self.candidate_floor = _or(candidate_floor, settings.CANDIDATE_FLOOR)
        self.max_candidates = _or(max_candidates, settings.MAX_CANDIDATES)
        self.interference_sensitivity = _or(
            interference_sensitivity, settings.INTERFERENCE_SENSITIVITY
        )
        self.coherence_threshold = _or(coherence_threshold, settings.COHERENCE_THRESHOLD)
        self.decoherence_factor = _or(decoherence_factor, settings.DECOHERENCE_FACTOR)
        self.primary_min_weight = _or(primary_min_weight, settings.PRIMARY_MIN_WEIGHT)
        self.secondary_min_weight = _or(secondary_min_weight, settings.SECONDARY_MIN_WEIGHT)
        self.max_secondary = _or(max_secondary, settings.MAX_SECONDARY_INTENTS)

    def analyze(
        self,
        text: str,
        context: UserContext,
        now: Optional[datetime] = None,
    ) -> IntentAnalysisResult:
        """Run generator, resolver, collapser and context analysis for one input."""
        normalized = normalize_text(text)

        candidates = self.generate_candidates(normalized, context)
        resolved = resolve_interference(
            candidates,
            sensitivity=self.interference_sensitivity,
            coherence_threshold=self.coherence_threshold,
            decoherence_factor=self.decoherence_factor,
        )
        collapsed = collapse(
            resolved,
            primary_min_weight=self.primary_min_weight,
            secondary_min_weight=self.secondary_min_weight,
            max_secondary=self.max_secondary,
        )
        signals = self.context_analyzer.analyze(context, normalized, now=now)

        logger.info(
            f"Intent analysis: primary={collapsed.primary_intent}, "
            f"confidence={collapsed.confidence:.3f}, "
            f"secondary={list(collapsed.secondary_intents)}, "
            f"{len(candidates)} candidates -> {len(resolved)} resolved"
        )

        return IntentAnalysisResult(
            primary_intent=collapsed.primary_intent,
            confidence=collapsed.confidence,
            secondary_intents=collapsed.secondary_intents,
            candidates=tuple(resolved),
            context_factors=tuple(signals.factors),
            emotional_weight=signals.emotional_weight,
            temporal_context=signals.temporal_context,
            normalized_text=normalized,
        )

    # ------------------------------------------------------------------
    # Candidate generation
    # ------------------------------------------------------------------

    def generate_candidates(self, normalized_text: str, context: UserContext) -> List[IntentCandidate]:
        """
        Score every catalog label; keep those above the floor.

        weight = 0.2 per matched keyword
               + 0.3 if a preference value relates to the label
               + 0.2 if a past destination relates to the label
        clamped to [0, 1]. Highest weight first, capped at max_candidates.
        """
        snapshot = _snapshot_key(context)
        candidates: List[IntentCandidate] = []

        for definition in self.catalog.definitions:
            weight = KEYWORD_SCORE * len(keyword_matches(normalized_text, definition.keywords))

            if any(_relates(value, definition) for value in _preference_texts(context.preferences)):
                weight += PREFERENCE_BONUS

            relevant_trips = sum(
                1 for trip in context.travel_history if _relates(trip.destination, definition)
            )
            if relevant_trips:
                weight += HISTORY_BONUS

            weight = min(1.0, weight)
            if weight <= self.candidate_floor:
                continue

            candidates.append(IntentCandidate(
                label=definition.label,
                weight=weight,
                phase=_phase(snapshot, definition.label),
                coherence=_coherence(relevant_trips, len(context.travel_history)),
            ))

        candidates.sort(key=lambda c: (-c.weight, c.label))
        return candidates[: self.max_candidates]


# ---------------------------------------------------------------------------
# Interference and collapse (pure functions)
# ---------------------------------------------------------------------------

def resolve_interference(
    candidates: List[IntentCandidate],
    *,
    sensitivity: float = 0.1,
    coherence_threshold: float = 0.6,
    decoherence_factor: float = 0.5,
) -> List[IntentCandidate]:
    """
    Adjust weights by pairwise interference, then apply decoherence.

    For candidate i the term w_i * w_j * cos(phase_i - phase_j) * sensitivity is
    summed over every other candidate j, using the incoming weights so the
    result does not depend on order. Candidates whose original coherence is
    below the threshold get weight and coherence multiplied by the decoherence
    factor. Weights and coherences end in [0, 1]; candidates that drop to zero
    weight are removed. No new labels are introduced.
    """
    resolved: List[IntentCandidate] = []

    for i, state in enumerate(candidates):
        interference = 0.0
        for j, other in enumerate(candidates):
            if i == j:
                continue
            interference += (
                state.weight * other.weight
                * math.cos(state.phase - other.phase)
                * sensitivity
            )

        weight = state.weight + interference
        coherence = state.coherence
        if state.coherence < coherence_threshold:
            weight *= decoherence_factor
            coherence *= decoherence_factor

        weight = _clamp(weight)
        if weight <= 0.0:
            continue

        resolved.append(state.model_copy(update={
            "weight": weight,
            "coherence": _clamp(coherence),
        }))

    return resolved


def collapse(
    candidates: Iterable[IntentCandidate],
    *,
    primary_min_weight: float = 0.0,
    secondary_min_weight: float = 0.3,
    max_secondary: int = 3,
) -> CollapsedIntent:
    """Pick the primary intent and up to max_secondary secondaries."""
    candidates = list(candidates)
    if not candidates:
        return CollapsedIntent()

    # max() keeps the first of equal weights
    primary = max(candidates, key=lambda c: c.weight)
    if primary.weight <= primary_min_weight:
        return CollapsedIntent()

    secondary = sorted(
        (c for c in candidates if c is not primary and c.weight > secondary_min_weight),
        key=lambda c: -c.weight,
    )

    return CollapsedIntent(
        primary_intent=primary.label,
        confidence=_clamp(primary.weight * primary.coherence),
        secondary_intents=tuple(c.label for c in secondary[:max_secondary]),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _or(value, default):
    return default if value is None else value


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _relates(text: str, definition: IntentDefinition) -> bool:
    normalized = normalize_text(text)
    if not normalized:
        return False
    return bool(keyword_matches(normalized, [definition.subject_term, *definition.keywords]))


def _preference_texts(preferences: dict[str, Any]) -> List[str]:
    """String preference values, including strings inside list values."""
    texts: List[str] = []
    for value in preferences.values():
        if isinstance(value, str):
            texts.append(value)
        elif isinstance(value, (list, tuple, set)):
            texts.extend(v for v in value if isinstance(v, str))
    return texts


def _snapshot_key(context: UserContext) -> str:
    return json.dumps(context.snapshot(), sort_keys=True, default=str)


def _phase(snapshot_key: str, label: str) -> float:
    """Map sha256(snapshot, label) into [0, 2π)."""
    digest = hashlib.sha256(f"{snapshot_key}|{label}".encode("utf-8")).hexdigest()
    return int(digest[:12], 16) / float(16 ** 12) * TWO_PI


def _coherence(relevant_trips: int, total_trips: int) -> float:
    if total_trips == 0:
        return 0.5
    return 0.5 + 0.5 * (relevant_trips / total_trips)
