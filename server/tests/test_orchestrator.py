"""Tests for TravelOrchestrator: the request state machine.

Covers:
- partial failure and timeouts during dispatch
- per-user serialization with cross-user concurrency
- clarification fallback for unrecognised input
- store and catalog failures (lock always released)
- cancellation and graceful shutdown
- merge semantics, upstream outputs and health metrics
"""
import asyncio
import json
import os
import pytest
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from core.catalog import IntentCatalog
from core.errors import CatalogError, ContextStoreError, OrchestratorShuttingDown
from core.learner import OutcomeLearner
from core.orchestrator import TravelOrchestrator, merge_outputs
from core.workflow_synthesizer import WorkflowSynthesizer
from database.repositories.user_context_repo import InMemoryUserContextStore
from models.context import TripSummary, UserContext
from models.workflow import StepResult, Workflow, WorkflowStep
from tools.assistance import ClarifyIntentProvider
from tools.base import CapabilityMetadata, CapabilityProvider, CapabilitySchema, ProviderRegistry

# Wednesday afternoon: no urgency mitigation is triggered
NOW = datetime(2024, 1, 10, 14, 0)

TRIPLE_INTENTS = [
    {
        "label": "triple",
        "keywords": ["triple"],
        "capabilities": [
            {"capability": "step_a", "estimated_cost": 0.01},
            {"capability": "step_b", "estimated_cost": 0.02},
            {"capability": "step_c", "estimated_cost": 0.03},
        ],
    },
    {
        "label": "chain",
        "keywords": ["chain"],
        "capabilities": [
            {"capability": "first"},
            {"capability": "second", "depends_on": ["first"]},
        ],
    },
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeProvider(CapabilityProvider):
    """Configurable provider that records its calls."""

    def __init__(self, name, output=None, delay=0.0, error=None, timeout=None):
        self._name = name
        self.output = output if output is not None else {name: {"ok": True}}
        self.delay = delay
        self.error = error
        self.timeout = timeout
        self.calls = []
        self.cancelled = False
        self.shut_down = False

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name=self._name,
            description=f"Fake {self._name}",
            metadata=CapabilityMetadata(timeout_seconds=self.timeout),
        )

    async def invoke(self, parameters, context):
        self.calls.append(parameters)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error:
            raise self.error
        return dict(self.output)

    async def shutdown(self):
        self.shut_down = True


class FailingStore(InMemoryUserContextStore):
    def __init__(self, fail_load=False, fail_save=False):
        super().__init__()
        self.fail_load = fail_load
        self.fail_save = fail_save
        self.saves = 0

    async def load(self, user_id):
        if self.fail_load:
            raise ConnectionError("store unreachable")
        return await super().load(user_id)

    async def save(self, context):
        if self.fail_save:
            raise ConnectionError("store unreachable")
        self.saves += 1
        await super().save(context)


def _registry(*providers) -> ProviderRegistry:
    registry = ProviderRegistry()
    for provider in providers:
        registry.register(provider)
    return registry


def _orchestrator(registry, catalog=None, store=None, **kwargs) -> TravelOrchestrator:
    catalog = catalog or IntentCatalog.from_dicts(TRIPLE_INTENTS)
    synthesizer = WorkflowSynthesizer(
        catalog,
        enable_emotional_adaptation=False,
        enable_cross_trip_memory=False,
        enable_social_matching=False,
        enable_carbon_scoring=False,
        enable_shadow_planning=False,
        enable_backup_plans=False,
    )
    return TravelOrchestrator(
        catalog=catalog,
        context_store=store or InMemoryUserContextStore(),
        registry=registry,
        learner=OutcomeLearner(baseline=0.5, learning_rate=0.01, max_history=100),
        synthesizer=synthesizer,
        **kwargs,
    )


def _triple(b_delay=0.0, b_error=None):
    return (
        FakeProvider("step_a", output={"a": 1}),
        FakeProvider("step_b", output={"b": 2}, delay=b_delay, error=b_error),
        FakeProvider("step_c", output={"c": 3}),
    )


# ---------------------------------------------------------------------------
# Partial failure
# ---------------------------------------------------------------------------

class TestPartialFailure:
    @pytest.mark.asyncio
    async def test_timeout_of_middle_step(self):
        a, b, c = _triple(b_delay=10)
        orch = _orchestrator(_registry(a, b, c), provider_timeout=0.05)

        outcome = await asyncio.wait_for(orch.process_request("u1", "triple", now=NOW), timeout=5)

        assert outcome.success is False
        assert outcome.partial is True
        assert outcome.state == "Completed"
        results = {r.capability: r for r in outcome.step_results}
        assert results["step_a"].success and results["step_a"].output == {"a": 1}
        assert results["step_c"].success and results["step_c"].output == {"c": 3}
        assert results["step_b"].success is False
        assert results["step_b"].timed_out is True
        assert outcome.failed_steps == (results["step_b"].step_id,)
        assert outcome.output["a"] == 1 and outcome.output["c"] == 3
        assert "b" not in outcome.output
        assert set(outcome.output["capabilities"]) == {"step_a", "step_c"}
        assert b.cancelled is True

    @pytest.mark.asyncio
    async def test_provider_timeout_metadata_used(self):
        a, _, c = _triple()
        slow = FakeProvider("step_b", delay=10, timeout=0.05)
        orch = _orchestrator(_registry(a, slow, c), provider_timeout=30)

        outcome = await asyncio.wait_for(orch.process_request("u1", "triple", now=NOW), timeout=5)
        assert outcome.partial is True

    @pytest.mark.asyncio
    async def test_raising_provider(self):
        orch = _orchestrator(_registry(*_triple(b_error=RuntimeError("upstream 500"))))
        outcome = await orch.process_request("u1", "triple", now=NOW)

        failed = outcome.result_for(outcome.failed_steps[0])
        assert failed.capability == "step_b"
        assert "upstream 500" in failed.error
        assert failed.timed_out is False

    @pytest.mark.asyncio
    async def test_provider_reporting_failure(self):
        a, _, c = _triple()
        reporting = FakeProvider("step_b", output={"success": False, "error": "sold out"})
        orch = _orchestrator(_registry(a, reporting, c))

        outcome = await orch.process_request("u1", "triple", now=NOW)

        assert outcome.partial is True
        assert outcome.result_for(outcome.failed_steps[0]).error == "sold out"

    @pytest.mark.asyncio
    async def test_missing_provider_is_failed_step(self):
        a, _, c = _triple()
        orch = _orchestrator(_registry(a, c))

        outcome = await orch.process_request("u1", "triple", now=NOW)

        assert outcome.partial is True
        assert "No provider registered" in outcome.result_for(outcome.failed_steps[0]).error

    @pytest.mark.asyncio
    async def test_all_steps_failing(self):
        boom = RuntimeError("down")
        orch = _orchestrator(_registry(
            FakeProvider("step_a", error=boom),
            FakeProvider("step_b", error=boom),
            FakeProvider("step_c", error=boom),
        ))

        outcome = await orch.process_request("u1", "triple", now=NOW)

        assert outcome.success is False
        assert outcome.partial is False
        assert outcome.state == "Failed"
        assert len(outcome.failed_steps) == 3
        assert outcome.output == {"capabilities": {}}

    @pytest.mark.asyncio
    async def test_full_success(self):
        orch = _orchestrator(_registry(*_triple()))
        outcome = await orch.process_request("u1", "triple", now=NOW)

        assert outcome.success is True
        assert outcome.partial is False
        assert outcome.failed_steps == ()
        assert outcome.primary_intent == "triple"
        assert outcome.confidence > 0
        assert outcome.estimated_cost == pytest.approx(0.06)


# ---------------------------------------------------------------------------
# Dependencies between steps
# ---------------------------------------------------------------------------

class TestUpstream:
    @pytest.mark.asyncio
    async def test_dependent_receives_upstream_output(self):
        first = FakeProvider("first", output={"itinerary": {"days": 2}})
        second = FakeProvider("second")
        orch = _orchestrator(_registry(first, second))

        outcome = await orch.process_request("u1", "chain", now=NOW)

        first_id = outcome.step_results[0].step_id
        assert second.calls[0]["upstream"] == {first_id: {"itinerary": {"days": 2}}}
        assert "upstream" not in first.calls[0]

    @pytest.mark.asyncio
    async def test_dependent_runs_after_failed_dependency(self):
        first = FakeProvider("first", error=RuntimeError("nope"))
        second = FakeProvider("second")
        orch = _orchestrator(_registry(first, second))

        outcome = await orch.process_request("u1", "chain", now=NOW)

        first_id = outcome.step_results[0].step_id
        assert second.calls[0]["upstream"] == {first_id: None}
        assert outcome.partial is True

    @pytest.mark.asyncio
    async def test_unschedulable_workflow_fails_every_step(self):
        orch = _orchestrator(_registry(FakeProvider("x")))
        workflow = Workflow(
            primary_intent="triple",
            steps=[WorkflowStep(step_id="s1", capability="x", depends_on=["ghost"])],
        )
        results = await orch.execute_workflow(workflow, UserContext(user_id="u1"))
        assert [r.success for r in results] == [False]
        assert "ghost" in results[0].error


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

class TestConcurrency:
    @pytest.mark.asyncio
    async def test_per_user_serialization(self):
        in_flight = defaultdict(int)
        peak_per_user = defaultdict(int)
        peak_total = {"value": 0, "current": 0}

        class TrackingProvider(FakeProvider):
            async def invoke(self, parameters, context):
                uid = context.user_id
                in_flight[uid] += 1
                peak_total["current"] += 1
                peak_per_user[uid] = max(peak_per_user[uid], in_flight[uid])
                peak_total["value"] = max(peak_total["value"], peak_total["current"])
                try:
                    await asyncio.sleep(0.01)
                finally:
                    in_flight[uid] -= 1
                    peak_total["current"] -= 1
                return {"a": 1}

        store = InMemoryUserContextStore()
        orch = _orchestrator(
            _registry(TrackingProvider("step_a"), FakeProvider("step_b"), FakeProvider("step_c")),
            store=store,
        )
        users = [f"user_{i}" for i in range(10)]

        outcomes = await asyncio.gather(*(
            orch.process_request(users[i % 10], "triple", now=NOW) for i in range(50)
        ))

        assert len(outcomes) == 50
        assert all(o.success for o in outcomes)
        for uid in users:
            assert (await store.load(uid)).request_count == 5
            assert peak_per_user[uid] == 1
        assert peak_total["value"] > 1
        assert len(orch.locks) == 0
        assert (await orch.get_health_metrics()).total_users == 10


# ---------------------------------------------------------------------------
# Ambiguity
# ---------------------------------------------------------------------------

class TestClarification:
    @pytest.mark.asyncio
    async def test_unmatched_input_asks_for_clarification(self):
        catalog = IntentCatalog.default()
        orch = TravelOrchestrator(
            catalog=catalog,
            context_store=InMemoryUserContextStore(),
            registry=_registry(ClarifyIntentProvider()),
        )

        outcome = await orch.process_request("u1", "xyzzy plugh", now=NOW)

        assert outcome.primary_intent == "unknown"
        assert outcome.confidence == 0.0
        assert [r.capability for r in outcome.step_results] == ["clarify_intent"]
        assert outcome.success is True
        assert outcome.output["requires_clarification"] is True
        assert outcome.output["clarification_question"]


# ---------------------------------------------------------------------------
# Infrastructure failures
# ---------------------------------------------------------------------------

class TestInfrastructureFailures:
    @pytest.mark.asyncio
    async def test_save_failure_raises_and_releases_lock(self):
        store = FailingStore(fail_save=True)
        orch = _orchestrator(_registry(*_triple()), store=store)

        with pytest.raises(ContextStoreError) as exc_info:
            await orch.process_request("u1", "triple", now=NOW)

        assert exc_info.value.retryable is True
        assert exc_info.value.kind == "context_store_unavailable"
        assert not orch.locks.is_locked("u1")
        assert len(orch.locks) == 0
        assert (await orch.get_health_metrics()).active_requests == 0
        assert (await orch.get_health_metrics()).total_users == 0

        # The lock is usable again once the store recovers
        store.fail_save = False
        outcome = await orch.process_request("u1", "triple", now=NOW)
        assert outcome.success is True
        assert (await store.load("u1")).request_count == 1

    @pytest.mark.asyncio
    async def test_load_failure_raises(self):
        a, b, c = _triple()
        orch = _orchestrator(_registry(a, b, c), store=FailingStore(fail_load=True))

        with pytest.raises(ContextStoreError):
            await orch.process_request("u1", "triple", now=NOW)

        assert a.calls == []
        assert len(orch.locks) == 0

    @pytest.mark.asyncio
    async def test_broken_catalog_reload(self, tmp_path):
        path = tmp_path / "intents.json"
        path.write_text(json.dumps(TRIPLE_INTENTS), encoding="utf-8")
        catalog = IntentCatalog.from_file(path)
        orch = _orchestrator(_registry(*_triple()), catalog=catalog)

        path.write_text("{not json", encoding="utf-8")
        stat = os.stat(path)
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        with pytest.raises(CatalogError):
            await orch.process_request("u1", "triple", now=NOW)
        assert len(orch.locks) == 0

    @pytest.mark.asyncio
    async def test_invalid_context_updates(self):
        orch = _orchestrator(_registry(*_triple()))
        with pytest.raises(ValueError):
            await orch.process_request("u1", "triple", {"emotional_state": "furious"}, now=NOW)


# ---------------------------------------------------------------------------
# Cancellation and shutdown
# ---------------------------------------------------------------------------

class TestLifecycle:
    @pytest.mark.asyncio
    async def test_cancellation_releases_lock_and_cancels_steps(self):
        a, b, c = _triple(b_delay=10)
        store = InMemoryUserContextStore()
        orch = _orchestrator(_registry(a, b, c), store=store, provider_timeout=30)

        task = asyncio.create_task(orch.process_request("u1", "triple", now=NOW))
        await asyncio.sleep(0.05)
        assert orch.locks.is_locked("u1")

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert b.cancelled is True
        assert len(orch.locks) == 0
        assert (await orch.get_health_metrics()).active_requests == 0
        assert await store.load("u1") is None

        # Same user can be served right after
        b.delay = 0
        outcome = await orch.process_request("u1", "triple", now=NOW)
        assert outcome.success is True

    @pytest.mark.asyncio
    async def test_shutdown_drains_and_refuses_new_requests(self):
        a, b, c = _triple(b_delay=0.1)
        store = FailingStore()
        orch = _orchestrator(_registry(a, b, c), store=store)

        task = asyncio.create_task(orch.process_request("u1", "triple", now=NOW))
        await asyncio.sleep(0.02)

        await orch.shutdown(timeout=5)

        assert task.done()
        assert task.result().success is True
        assert orch.is_shutting_down
        assert all(p.shut_down for p in (a, b, c))
        # one save from the request, one flush on shutdown
        assert store.saves == 2

        with pytest.raises(OrchestratorShuttingDown):
            await orch.process_request("u2", "triple", now=NOW)

    @pytest.mark.asyncio
    async def test_shutdown_drain_timeout(self):
        a, b, c = _triple(b_delay=10)
        orch = _orchestrator(_registry(a, b, c), provider_timeout=30)

        task = asyncio.create_task(orch.process_request("u1", "triple", now=NOW))
        await asyncio.sleep(0.02)
        await asyncio.wait_for(orch.shutdown(timeout=0.05), timeout=5)

        assert not task.done()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


# ---------------------------------------------------------------------------
# Context handling, metrics and pruning
# ---------------------------------------------------------------------------

class TestContextAndMetrics:
    @pytest.mark.asyncio
    async def test_context_updated_and_persisted(self):
        store = InMemoryUserContextStore()
        orch = _orchestrator(_registry(*_triple()), store=store)

        await orch.process_request(
            "u1",
            "triple",
            {"preferences": {"seat": "aisle"}, "travel_history": [{"destination": "Oslo"}]},
            now=NOW,
        )
        await orch.process_request("u1", "triple", {"preferences": {"meal": "veg"}}, now=NOW)

        stored = await store.load("u1")
        assert stored.request_count == 2
        assert stored.current_intent == "triple"
        assert stored.preferences == {"seat": "aisle", "meal": "veg"}
        assert [t.destination for t in stored.travel_history] == ["Oslo"]

    @pytest.mark.asyncio
    async def test_existing_context_loaded_from_store(self):
        store = InMemoryUserContextStore()
        await store.save(UserContext(user_id="u1", request_count=7, preferences={"seat": "window"}))
        orch = _orchestrator(_registry(*_triple()), store=store)

        await orch.process_request("u1", "triple", now=NOW)

        stored = await store.load("u1")
        assert stored.request_count == 8
        assert stored.preferences == {"seat": "window"}

    @pytest.mark.asyncio
    async def test_metrics_and_learning(self):
        orch = _orchestrator(_registry(*_triple()))
        assert (await orch.get_health_metrics()).total_requests == 0

        await orch.process_request("u1", "triple", now=NOW)
        await orch.process_request("u2", "triple", now=NOW)

        metrics = await orch.get_health_metrics()
        assert metrics.total_requests == 2
        assert metrics.failed_requests == 0
        assert metrics.total_users == 2
        assert metrics.active_requests == 0
        assert metrics.average_execution_time >= 0
        assert metrics.optimization_score == pytest.approx(0.52)
        assert len(orch.learner.history) == 2

    @pytest.mark.asyncio
    async def test_failed_request_counted(self):
        orch = _orchestrator(_registry(*_triple(b_error=RuntimeError("x"))))
        await orch.process_request("u1", "triple", now=NOW)

        metrics = await orch.get_health_metrics()
        assert metrics.failed_requests == 1
        assert metrics.optimization_score == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_prune_expired_contexts(self):
        store = InMemoryUserContextStore()
        now = datetime.now(timezone.utc)
        await store.save(UserContext(
            user_id="u1",
            travel_history=[
                TripSummary(destination="Old", completed_at=now - timedelta(days=200)),
                TripSummary(destination="New", completed_at=now - timedelta(days=5)),
            ],
        ))
        orch = _orchestrator(_registry(*_triple()), store=store, retention_days=90)

        removed = await orch.prune_expired_contexts(now=now)

        assert removed == 1
        assert [t.destination for t in (await store.load("u1")).travel_history] == ["New"]

    @pytest.mark.asyncio
    async def test_prune_failure_is_store_error(self):
        store = InMemoryUserContextStore()
        orch = _orchestrator(_registry(*_triple()), store=store)
        store.prune_stale = _raise_async(ConnectionError("gone"))

        with pytest.raises(ContextStoreError):
            await orch.prune_expired_contexts()

    @pytest.mark.asyncio
    async def test_prune_handles_naive_trip_timestamps(self):
        store = InMemoryUserContextStore()
        orch = _orchestrator(_registry(*_triple()), store=store, retention_days=90)
        await orch.process_request(
            "u1",
            "triple",
            {"travel_history": [
                {"destination": "Paris", "completed_at": "2020-01-01T00:00:00"},
                {"destination": "Oslo"},
            ]},
            now=NOW,
        )

        removed = await orch.prune_expired_contexts()

        assert removed == 1
        assert [t.destination for t in (await store.load("u1")).travel_history] == ["Oslo"]

        # The cached copy was pruned as well
        await orch.process_request("u1", "triple", now=NOW)
        assert [t.destination for t in (await store.load("u1")).travel_history] == ["Oslo"]

    @pytest.mark.asyncio
    async def test_context_cache_is_bounded(self):
        store = InMemoryUserContextStore()
        orch = _orchestrator(_registry(*_triple()), store=store, context_cache_size=3)

        for i in range(5):
            await orch.process_request(f"user_{i}", "triple", now=NOW)

        assert orch.cached_users == 3
        metrics = await orch.get_health_metrics()
        assert metrics.total_users == 5
        assert metrics.cached_users == 3

        # Evicted users are reloaded from the store
        await orch.process_request("user_0", "triple", now=NOW)
        assert (await store.load("user_0")).request_count == 2
        assert orch.cached_users == 3

    @pytest.mark.asyncio
    async def test_metrics_store_failure(self):
        store = InMemoryUserContextStore()
        orch = _orchestrator(_registry(*_triple()), store=store)
        store.count = _raise_async(ConnectionError("gone"))

        with pytest.raises(ContextStoreError):
            await orch.get_health_metrics()


def _raise_async(exc):
    async def _inner(*args, **kwargs):
        raise exc
    return _inner


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

class TestMergeOutputs:
    def _workflow_and_results(self, outputs):
        steps = [WorkflowStep(step_id=f"s{i}", capability=f"cap{i}") for i in range(len(outputs))]
        results = [
            StepResult(step_id=s.step_id, capability=s.capability, success=out is not None, output=out)
            for s, out in zip(steps, outputs)
        ]
        return Workflow(primary_intent="x", steps=steps), results

    def test_later_outputs_only_add_keys(self):
        workflow, results = self._workflow_and_results([
            {"flights": {"price": 100}, "summary": "first"},
            {"flights": {"price": 999, "airline": "Nimbus"}, "summary": "second", "extra": 1},
        ])

        merged = merge_outputs(workflow, results)

        assert merged["summary"] == "first"
        assert merged["flights"] == {"price": 100, "airline": "Nimbus"}
        assert merged["extra"] == 1
        assert merged["capabilities"]["cap1"]["summary"] == "second"

    def test_failed_steps_skipped(self):
        workflow, results = self._workflow_and_results([None, {"a": 1}])
        merged = merge_outputs(workflow, results)
        assert merged == {"a": 1, "capabilities": {"cap1": {"a": 1}}}

    def test_merge_does_not_alias_step_output(self):
        workflow, results = self._workflow_and_results([{"flights": {"price": 100}}, {"flights": {"x": 1}}])
        merge_outputs(workflow, results)
        assert results[0].output == {"flights": {"price": 100}}
