"""Travel Orchestrator: runs one request from raw text to an ExecutionOutcome.

    Received -> ContextLoaded -> Analyzed -> Synthesized -> Dispatching -> Merging -> Completed
                                                                  \\-> Failed

Context mutations for one user are serialized with a per-user lock; requests
for different users run fully concurrently. Only capability dispatch is
concurrent inside a request.
"""
import asyncio
import copy
import time
import logging
from datetime import datetime, timedelta, timezone
from collections import OrderedDict
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from pydantic import ValidationError

from config.settings import settings
from core.catalog import IntentCatalog
from core.errors import ContextStoreError, OrchestratorShuttingDown
from core.intent_engine import IntentEngine
from core.learner import OutcomeLearner
from core.locks import UserLockRegistry
from core.workflow_synthesizer import WorkflowSynthesizer
from database.repositories.user_context_repo import UserContextStore
from models.context import UserContext, UserContextUpdate
from models.workflow import (
    BackupPlan,
    ExecutionOutcome,
    HealthMetrics,
    StepResult,
    Workflow,
    WorkflowStep,
)
from tools.base import ProviderRegistry

logger = logging.getLogger(__name__)


class RequestState(str, Enum):
    RECEIVED = "Received"
    CONTEXT_LOADED = "ContextLoaded"
    ANALYZED = "Analyzed"
    SYNTHESIZED = "Synthesized"
    DISPATCHING = "Dispatching"
    MERGING = "Merging"
    COMPLETED = "Completed"
    FAILED = "Failed"


class TravelOrchestrator:
    """Coordinates analysis, synthesis, dispatch, merge and learning."""

    def __init__(
        self,
        catalog: IntentCatalog,
        context_store: UserContextStore,
        registry: ProviderRegistry,
        learner: Optional[OutcomeLearner] = None,
        *,
        engine: Optional[IntentEngine] = None,
        synthesizer: Optional[WorkflowSynthesizer] = None,
        locks: Optional[UserLockRegistry] = None,
        provider_timeout: Optional[float] = None,
        max_parallel_steps: Optional[int] = None,
        retention_days: Optional[int] = None,
        context_cache_size: Optional[int] = None,
    ):
        self.catalog = catalog
        self.context_store = context_store
        self.registry = registry
        self.learner = learner or OutcomeLearner()
        self.engine = engine or IntentEngine(catalog)
        self.synthesizer = synthesizer or WorkflowSynthesizer(catalog)
        self.locks = locks or UserLockRegistry()
        self.provider_timeout = provider_timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.max_parallel_steps = max_parallel_steps or settings.MAX_PARALLEL_STEPS
        self.retention_days = retention_days or settings.MEMORY_RETENTION_DAYS

        # LRU of last persisted contexts; the store is written through, so an
        # evicted user is simply reloaded from it
        self.context_cache_size = (
            settings.CONTEXT_CACHE_SIZE if context_cache_size is None else context_cache_size
        )
        self._contexts: "OrderedDict[str, UserContext]" = OrderedDict()

        self._active_requests = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._shutting_down = False

        self._total_requests = 0
        self._failed_requests = 0
        self._average_duration_ms = 0.0

    # ------------------------------------------------------------------
    # Request processing
    # ------------------------------------------------------------------

    async def process_request(
        self,
        user_id: str,
        message_text: str,
        context_updates: Optional[Union[UserContextUpdate, Dict[str, Any]]] = None,
        now: Optional[datetime] = None,
    ) -> ExecutionOutcome:
        """
        Process one user request end to end.

        Ambiguous input never raises: it produces a clarification workflow.
        Failing or slow capability steps are recorded in the outcome. Only
        infrastructure problems raise (ContextStoreError, CatalogError,
        OrchestratorShuttingDown); the user lock is released on every path and
        the context is only persisted after a request finishes.
        """
        if self._shutting_down:
            raise OrchestratorShuttingDown()
        if not user_id:
            raise ValueError("user_id is required")
        if isinstance(context_updates, dict):
            try:
                context_updates = UserContextUpdate.model_validate(context_updates)
            except ValidationError as e:
                raise ValueError(f"Invalid context updates: {e}") from e

        request_id = f"req_{uuid4().hex[:12]}"
        start_time = time.time()
        self._active_requests += 1
        self._idle.clear()

        try:
            self._transition(request_id, RequestState.RECEIVED, f"user={user_id}")
            self.catalog.reload_if_changed()

            async with self.locks.hold(user_id):
                context = await self._load_context(user_id)
                context = context.apply_updates(context_updates)
                self._transition(request_id, RequestState.CONTEXT_LOADED)

                analysis = self.engine.analyze(message_text, context, now=now)
                self._transition(
                    request_id,
                    RequestState.ANALYZED,
                    f"primary={analysis.primary_intent} confidence={analysis.confidence:.3f}",
                )

                workflow = self.synthesizer.synthesize(analysis, context)
                self._transition(request_id, RequestState.SYNTHESIZED, f"{len(workflow.steps)} steps")

                self._transition(request_id, RequestState.DISPATCHING)
                results = await self.execute_workflow(workflow, context)

                self._transition(request_id, RequestState.MERGING)
                output = merge_outputs(workflow, results)

                failed = tuple(r.step_id for r in results if not r.success)
                succeeded = len(results) - len(failed)
                state = RequestState.FAILED if results and not succeeded else RequestState.COMPLETED

                context.current_intent = workflow.primary_intent
                context.request_count += 1
                context.updated_at = datetime.now(timezone.utc)
                await self._save_context(context)
                self._cache_context(context)

                duration_ms = int((time.time() - start_time) * 1000)
                outcome = ExecutionOutcome(
                    workflow_id=workflow.workflow_id,
                    request_id=request_id,
                    user_id=user_id,
                    primary_intent=workflow.primary_intent,
                    confidence=analysis.confidence,
                    success=not failed,
                    partial=bool(failed) and succeeded > 0,
                    state=state.value,
                    step_results=tuple(results),
                    failed_steps=failed,
                    output=output,
                    duration_ms=duration_ms,
                    estimated_cost=round(sum(s.estimated_cost for s in workflow.steps), 6),
                    backup_plans=_backup_plans(output),
                )
                self._transition(
                    request_id,
                    state,
                    f"success={outcome.success} partial={outcome.partial} "
                    f"failed={list(failed)} in {duration_ms}ms",
                )

                self._record_stats(outcome)
                await self.learner.record_outcome(outcome, context)
                return outcome

        except asyncio.CancelledError:
            logger.warning(f"[{request_id}] cancelled; context for user {user_id} left unchanged")
            raise
        finally:
            self._active_requests -= 1
            if self._active_requests == 0:
                self._idle.set()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def execute_workflow(self, workflow: Workflow, context: UserContext) -> List[StepResult]:
        """Run every step wave by wave. Returns results in declaration order."""
        try:
            waves = workflow.execution_waves()
        except ValueError as e:
            logger.error(f"Workflow {workflow.workflow_id} cannot be scheduled: {e}")
            return [
                StepResult(step_id=s.step_id, capability=s.capability, success=False, error=str(e))
                for s in workflow.steps
            ]

        semaphore = asyncio.Semaphore(self.max_parallel_steps)
        outputs: Dict[str, Optional[Dict[str, Any]]] = {}
        results: Dict[str, StepResult] = {}

        async def _guarded(step: WorkflowStep) -> StepResult:
            async with semaphore:
                return await self._execute_step(step, context, outputs)

        for wave in waves:
            raw_results = await asyncio.gather(*(_guarded(s) for s in wave), return_exceptions=True)
            for step, res in zip(wave, raw_results):
                if isinstance(res, BaseException):
                    if isinstance(res, asyncio.CancelledError):
                        raise res
                    logger.error(f"Step {step.step_id} ({step.capability}) raised unhandled exception: {res}")
                    res = StepResult(
                        step_id=step.step_id,
                        capability=step.capability,
                        success=False,
                        error="An internal error occurred while executing this step.",
                    )
                results[step.step_id] = res
                outputs[step.step_id] = res.output if res.success else None

        return [results[s.step_id] for s in workflow.steps]

    async def _execute_step(
        self,
        step: WorkflowStep,
        context: UserContext,
        outputs: Dict[str, Optional[Dict[str, Any]]],
    ) -> StepResult:
        """Invoke one provider with its timeout. Never raises except on cancellation."""
        step_start = time.time()

        def _failed(error: str, timed_out: bool = False) -> StepResult:
            return StepResult(
                step_id=step.step_id,
                capability=step.capability,
                success=False,
                error=error,
                timed_out=timed_out,
                duration_ms=int((time.time() - step_start) * 1000),
            )

        provider = self.registry.get(step.capability)
        if provider is None:
            logger.error(f"No provider registered for capability: {step.capability}")
            return _failed(f"No provider registered for capability '{step.capability}'")

        parameters = dict(step.parameters)
        if step.depends_on:
            parameters["upstream"] = {dep: outputs.get(dep) for dep in step.depends_on}

        try:
            provider.validate_parameters(parameters)
        except ValueError as e:
            logger.error(f"Parameter validation failed ({step.capability}): {e}")
            return _failed(f"Invalid parameters for '{step.capability}': {e}")

        timeout = step.timeout_seconds or self.registry.timeout_for(step.capability, self.provider_timeout)
        try:
            output = await asyncio.wait_for(provider.invoke(parameters, context), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Step {step.step_id} ({step.capability}) timed out after {timeout}s")
            return _failed(f"Timed out after {timeout}s", timed_out=True)
        except Exception as e:
            logger.error(f"Step {step.step_id} ({step.capability}) failed: {e}", exc_info=True)
            return _failed(f"Capability '{step.capability}' failed: {e}")

        if not isinstance(output, dict):
            return _failed(f"Capability '{step.capability}' returned {type(output).__name__}, expected dict")
        if output.get("success") is False:
            return _failed(output.get("error") or f"Capability '{step.capability}' reported failure")

        duration_ms = int((time.time() - step_start) * 1000)
        logger.info(f"Step {step.step_id} ({step.capability}) completed in {duration_ms}ms")
        return StepResult(
            step_id=step.step_id,
            capability=step.capability,
            success=True,
            output=output,
            duration_ms=duration_ms,
        )

    # ------------------------------------------------------------------
    # Context persistence
    # ------------------------------------------------------------------

    async def _load_context(self, user_id: str) -> UserContext:
        cached = self._contexts.get(user_id)
        if cached is not None:
            self._contexts.move_to_end(user_id)
            return cached.model_copy(deep=True)
        try:
            stored = await self.context_store.load(user_id)
        except Exception as e:
            raise ContextStoreError(f"Could not load context for user {user_id}: {e}") from e
        return stored or UserContext(user_id=user_id)

    async def _save_context(self, context: UserContext) -> None:
        try:
            await self.context_store.save(context)
        except Exception as e:
            raise ContextStoreError(f"Could not save context for user {context.user_id}: {e}") from e

    def _cache_context(self, context: UserContext) -> None:
        if self.context_cache_size <= 0:
            return
        self._contexts[context.user_id] = context
        self._contexts.move_to_end(context.user_id)
        while len(self._contexts) > self.context_cache_size:
            evicted, _ = self._contexts.popitem(last=False)
            logger.debug(f"Evicted cached context for user {evicted}")

    @property
    def cached_users(self) -> int:
        return len(self._contexts)

    async def prune_expired_contexts(self, now: Optional[datetime] = None) -> int:
        """Drop trips older than the retention window. Returns trips removed from the store."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=self.retention_days)

        for user_id in list(self._contexts):
            async with self.locks.hold(user_id):
                cached = self._contexts.get(user_id)
                if cached is not None:
                    cached.prune_history(cutoff)

        try:
            removed = await self.context_store.prune_stale(cutoff)
        except Exception as e:
            raise ContextStoreError(f"Could not prune contexts: {e}") from e

        records = self.learner.prune(cutoff)
        logger.info(f"Pruned {removed} trips and {records} learning records older than {cutoff.isoformat()}")
        return removed

    # ------------------------------------------------------------------
    # Metrics and lifecycle
    # ------------------------------------------------------------------

    def _transition(self, request_id: str, state: RequestState, detail: str = "") -> None:
        logger.info(f"[{request_id}] {state.value}{' ' + detail if detail else ''}")

    def _record_stats(self, outcome: ExecutionOutcome) -> None:
        self._total_requests += 1
        if not outcome.success:
            self._failed_requests += 1
        self._average_duration_ms += (outcome.duration_ms - self._average_duration_ms) / self._total_requests

    async def get_health_metrics(self) -> HealthMetrics:
        """Aggregate metrics. total_users counts stored contexts, not just cached ones."""
        try:
            total_users = await self.context_store.count()
        except Exception as e:
            raise ContextStoreError(f"Could not count stored contexts: {e}") from e
        return HealthMetrics(
            active_requests=self._active_requests,
            total_users=total_users,
            cached_users=len(self._contexts),
            average_execution_time=self._average_duration_ms,
            optimization_score=self.learner.get_optimization_score(),
            total_requests=self._total_requests,
            failed_requests=self._failed_requests,
        )

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop accepting requests, drain in-flight ones, flush contexts, close providers."""
        self._shutting_down = True
        timeout = settings.SHUTDOWN_DRAIN_SECONDS if timeout is None else timeout
        logger.info(f"Orchestrator shutting down; {self._active_requests} request(s) in flight")

        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Shutdown drain timed out after {timeout}s with "
                f"{self._active_requests} request(s) still running"
            )

        for user_id, context in list(self._contexts.items()):
            try:
                await self.context_store.save(context)
            except Exception as e:
                logger.error(f"Failed to persist context for user {user_id} on shutdown: {e}")

        await self.registry.shutdown_all()
        logger.info("Orchestrator shut down")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def merge_outputs(workflow: Workflow, results: List[StepResult]) -> Dict[str, Any]:
    """
    Combine successful step outputs in declaration order.

    A later step may add keys (nested dicts are merged key by key) but never
    replaces a value an earlier step already set. Each raw output is also kept
    under output["capabilities"][capability].
    """
    by_id = {r.step_id: r for r in results}
    merged: Dict[str, Any] = {}
    capabilities: Dict[str, Any] = {}
    for step in workflow.steps:
        result = by_id.get(step.step_id)
        if result is None or not result.success or result.output is None:
            continue
        capabilities[step.capability] = result.output
        _merge_into(merged, result.output)
    merged["capabilities"] = capabilities
    return merged


def _merge_into(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    for key, value in source.items():
        if key not in target:
            target[key] = copy.deepcopy(value)
        elif isinstance(target[key], dict) and isinstance(value, dict):
            _merge_into(target[key], value)


def _backup_plans(output: Dict[str, Any]) -> tuple:
    plans = []
    for raw in output.get("backup_plans") or []:
        try:
            plans.append(BackupPlan.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"Ignoring malformed backup plan {raw!r}: {e}")
    return tuple(plans)
