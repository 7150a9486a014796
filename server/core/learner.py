"""Outcome Learner: bounded history and an aggregate optimization score."""
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional
import logging

from pydantic import BaseModel, Field

from config.settings import settings
from models.context import UserContext
from models.workflow import ExecutionOutcome

logger = logging.getLogger(__name__)


class LearningRecord(BaseModel):
    """What the learner keeps about one finished request"""
    workflow_id: str
    request_id: str
    user_id: str
    primary_intent: str
    confidence: float
    success: bool
    partial: bool
    failed_steps: List[str] = []
    capabilities: List[str] = []
    duration_ms: int
    estimated_cost: float
    emotional_state: Optional[str] = None
    request_count: int = 0
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class OutcomeLearner:
    """
    Records outcomes and tracks an optimization score in [0, 1].

    The score starts at a neutral baseline and moves up by learning_rate on
    each fully successful outcome; partial and failed outcomes leave it flat.
    Per-label success rates are exposed for callers that want to tune candidate
    generation, but nothing here feeds them back automatically.
    """

    def __init__(
        self,
        baseline: Optional[float] = None,
        learning_rate: Optional[float] = None,
        max_history: Optional[int] = None,
        repository=None,
    ):
        self.baseline = settings.LEARNER_BASELINE_SCORE if baseline is None else baseline
        self.learning_rate = settings.LEARNING_RATE if learning_rate is None else learning_rate
        max_history = settings.LEARNER_HISTORY_SIZE if max_history is None else max_history
        if not 0.0 <= self.baseline <= 1.0:
            raise ValueError("baseline must be within [0, 1]")

        self._score = self.baseline
        self._history: Deque[LearningRecord] = deque(maxlen=max_history)
        self.repository = repository

    async def record_outcome(self, outcome: ExecutionOutcome, context: UserContext) -> LearningRecord:
        record = LearningRecord(
            workflow_id=outcome.workflow_id,
            request_id=outcome.request_id,
            user_id=outcome.user_id,
            primary_intent=outcome.primary_intent,
            confidence=outcome.confidence,
            success=outcome.success,
            partial=outcome.partial,
            failed_steps=list(outcome.failed_steps),
            capabilities=[r.capability for r in outcome.step_results],
            duration_ms=outcome.duration_ms,
            estimated_cost=outcome.estimated_cost,
            emotional_state=context.emotional_state,
            request_count=context.request_count,
        )
        self._history.append(record)

        if outcome.success and not outcome.partial:
            self._score = min(1.0, self._score + self.learning_rate)

        logger.debug(
            f"Outcome recorded for {outcome.workflow_id}: success={outcome.success}, "
            f"score={self._score:.3f}"
        )

        if self.repository is not None:
            await self.repository.save_record(record)
        return record

    def get_optimization_score(self) -> float:
        return self._score

    def label_success_rates(self) -> Dict[str, float]:
        """Share of fully successful outcomes per primary intent label."""
        totals: Dict[str, int] = {}
        successes: Dict[str, int] = {}
        for record in self._history:
            totals[record.primary_intent] = totals.get(record.primary_intent, 0) + 1
            if record.success and not record.partial:
                successes[record.primary_intent] = successes.get(record.primary_intent, 0) + 1
        return {label: successes.get(label, 0) / count for label, count in totals.items()}

    def get_metrics(self) -> dict:
        total = len(self._history)
        succeeded = sum(1 for r in self._history if r.success and not r.partial)
        partial = sum(1 for r in self._history if r.partial)
        return {
            "optimization_score": self._score,
            "history_size": total,
            "success_rate": succeeded / total if total else 0.0,
            "partial_rate": partial / total if total else 0.0,
            "average_duration_ms": sum(r.duration_ms for r in self._history) / total if total else 0.0,
            "label_success_rates": self.label_success_rates(),
        }

    def prune(self, cutoff: datetime) -> int:
        """Forget records older than cutoff; the score is kept."""
        before = len(self._history)
        kept = [r for r in self._history if r.recorded_at >= cutoff]
        self._history.clear()
        self._history.extend(kept)
        return before - len(kept)

    @property
    def history(self) -> List[LearningRecord]:
        return list(self._history)
