"""Workflow and execution outcome data models"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Any
from datetime import datetime, timezone
from uuid import uuid4


class WorkflowStep(BaseModel):
    """One capability invocation inside a workflow"""
    step_id: str = Field(default_factory=lambda: f"step_{uuid4().hex[:12]}")
    capability: str
    parameters: dict[str, Any] = {}
    depends_on: list[str] = []  # step_ids whose output this step consumes
    parallel: bool = True
    mitigation: bool = False
    estimated_cost: float = 0.0
    timeout_seconds: Optional[float] = None


class Workflow(BaseModel):
    """Ordered/parallel plan of capability invocations"""
    workflow_id: str = Field(default_factory=lambda: f"workflow_{uuid4().hex}")
    primary_intent: str
    steps: list[WorkflowStep]
    fallback: bool = False

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    def execution_waves(self) -> list[list[WorkflowStep]]:
        """
        Group steps into dependency layers.

        Every step of a wave depends only on steps from earlier waves, so the
        members of one wave can run concurrently. Declaration order is kept
        inside each wave. Raises ValueError on unknown or cyclic dependencies.
        """
        known = {step.step_id for step in self.steps}
        for step in self.steps:
            missing = [dep for dep in step.depends_on if dep not in known]
            if missing:
                raise ValueError(
                    f"Step {step.step_id} depends on unknown step(s): {', '.join(missing)}"
                )

        done: set[str] = set()
        remaining = list(self.steps)
        waves: list[list[WorkflowStep]] = []
        while remaining:
            wave = [s for s in remaining if all(d in done for d in s.depends_on)]
            if not wave:
                raise ValueError(f"Dependency cycle in workflow {self.workflow_id}")
            waves.append(wave)
            done.update(s.step_id for s in wave)
            remaining = [s for s in remaining if s.step_id not in done]
        return waves


class StepResult(BaseModel):
    """Result of dispatching one workflow step"""
    step_id: str
    capability: str
    success: bool
    output: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    timed_out: bool = False
    duration_ms: int = 0


class BackupPlan(BaseModel):
    """Alternative plan produced by the backup-plan capability"""
    trigger: str
    alternative: dict[str, Any] = {}
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ExecutionOutcome(BaseModel):
    """Final, immutable record of one processed request"""
    model_config = ConfigDict(frozen=True)

    workflow_id: str
    request_id: str
    user_id: str
    primary_intent: str
    confidence: float = 0.0
    success: bool
    partial: bool = False
    state: str = "Completed"
    step_results: tuple[StepResult, ...] = ()
    failed_steps: tuple[str, ...] = ()
    output: dict[str, Any] = {}
    duration_ms: int = 0
    estimated_cost: float = 0.0
    backup_plans: tuple[BackupPlan, ...] = ()
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def result_for(self, step_id: str) -> Optional[StepResult]:
        for result in self.step_results:
            if result.step_id == step_id:
                return result
        return None


class HealthMetrics(BaseModel):
    """Aggregate orchestrator health"""
    active_requests: int
    total_users: int
    cached_users: int = 0
    average_execution_time: float
    optimization_score: float
    total_requests: int = 0
    failed_requests: int = 0
