"""Workflow Synthesizer: maps an intent analysis to a plan of capability steps."""
from typing import Any, Dict, List, Optional
import logging

from config.settings import settings
from core.catalog import CapabilityTemplate, IntentCatalog
from models.context import UserContext
from models.intent import IntentAnalysisResult, UNKNOWN_INTENT
from models.workflow import Workflow, WorkflowStep

logger = logging.getLogger(__name__)

CLARIFY_CAPABILITY = "clarify_intent"

# Negative context factor -> capability that runs ahead of the main steps
MITIGATIONS: Dict[str, str] = {
    "time_urgency": "expedited_handling",
    "emotional_state": "emotional_adaptation",
    "input_sentiment": "emotional_adaptation",
}

# Main capabilities whose output carries a travel footprint
FOOTPRINT_CAPABILITIES = ("flight_booking", "hotel_booking", "trip_planning")

ENHANCER_COSTS: Dict[str, float] = {
    "expedited_handling": 0.001,
    "emotional_adaptation": 0.002,
    "cross_trip_memory": 0.003,
    "carbon_scoring": 0.002,
    "social_matching": 0.002,
    "shadow_planning": 0.003,
    "backup_plan_generation": 0.004,
    CLARIFY_CAPABILITY: 0.0,
}


class WorkflowSynthesizer:
    """
    Builds a Workflow from (primary, secondaries, context factors).

    Layout of a synthesized workflow:
    1. mitigation steps for strong negative context factors
    2. the primary intent's capability templates, then each secondary's,
       de-duplicated by capability
    3. enabled enhancers (memory, carbon, social, emotional, shadow planning,
       backup plans)

    An unknown primary yields exactly one clarify_intent step. Synthesis never
    fails and never calls a provider.
    """

    def __init__(
        self,
        catalog: IntentCatalog,
        *,
        mitigation_threshold: Optional[float] = None,
        enable_emotional_adaptation: Optional[bool] = None,
        enable_cross_trip_memory: Optional[bool] = None,
        enable_social_matching: Optional[bool] = None,
        enable_carbon_scoring: Optional[bool] = None,
        enable_shadow_planning: Optional[bool] = None,
        enable_backup_plans: Optional[bool] = None,
    ):
        self.catalog = catalog
        self.mitigation_threshold = _or(mitigation_threshold, settings.MITIGATION_WEIGHT_THRESHOLD)
        self.enable_emotional_adaptation = _or(
            enable_emotional_adaptation, settings.ENABLE_EMOTIONAL_ADAPTATION
        )
        self.enable_cross_trip_memory = _or(enable_cross_trip_memory, settings.ENABLE_CROSS_TRIP_MEMORY)
        self.enable_social_matching = _or(enable_social_matching, settings.ENABLE_SOCIAL_MATCHING)
        self.enable_carbon_scoring = _or(enable_carbon_scoring, settings.ENABLE_CARBON_SCORING)
        self.enable_shadow_planning = _or(enable_shadow_planning, settings.ENABLE_SHADOW_PLANNING)
        self.enable_backup_plans = _or(enable_backup_plans, settings.ENABLE_BACKUP_PLANS)

    def synthesize(self, analysis: IntentAnalysisResult, context: UserContext) -> Workflow:
        base = _base_parameters(analysis, context)

        definition = None if analysis.is_unknown else self.catalog.get(analysis.primary_intent)
        if definition is None:
            if not analysis.is_unknown:
                logger.warning(
                    f"Primary intent '{analysis.primary_intent}' is not in the catalog; "
                    "falling back to clarification"
                )
            return self._fallback(analysis, base)

        steps: List[WorkflowStep] = []
        by_capability: Dict[str, WorkflowStep] = {}

        # 1. Mitigation
        for factor in analysis.context_factors:
            if factor.influence != "negative" or factor.weight <= self.mitigation_threshold:
                continue
            capability = MITIGATIONS.get(factor.name)
            if capability is None or capability in by_capability:
                continue
            if capability == "emotional_adaptation" and not self.enable_emotional_adaptation:
                continue
            step = WorkflowStep(
                capability=capability,
                parameters={
                    "factor": factor.name,
                    "factor_weight": factor.weight,
                    "urgency": base["urgency"],
                    "emotional_state": base["emotional_state"],
                    "emotional_weight": base["emotional_weight"],
                },
                mitigation=True,
                estimated_cost=ENHANCER_COSTS.get(capability, 0.0),
            )
            steps.append(step)
            by_capability[capability] = step

        # 2. Intent templates
        main_steps: List[WorkflowStep] = []
        for label in (analysis.primary_intent, *analysis.secondary_intents):
            intent_definition = self.catalog.get(label)
            if intent_definition is None:
                logger.warning(f"Secondary intent '{label}' is not in the catalog; skipped")
                continue
            params = {**base, "intent": label}
            for template in _dependency_order(intent_definition.capabilities):
                if template.capability in by_capability:
                    continue
                step = self._step_from_template(template, params, by_capability)
                steps.append(step)
                main_steps.append(step)
                by_capability[template.capability] = step

        # 3. Enhancers
        steps.extend(self._enhancer_steps(base, context, main_steps, by_capability))

        for step in steps:
            step.parallel = not step.depends_on

        workflow = Workflow(primary_intent=analysis.primary_intent, steps=steps)
        logger.info(
            f"Workflow {workflow.workflow_id} synthesized for '{analysis.primary_intent}': "
            f"{[s.capability for s in steps]}"
        )
        return workflow

    # ------------------------------------------------------------------

    def _fallback(self, analysis: IntentAnalysisResult, base: Dict[str, Any]) -> Workflow:
        step = WorkflowStep(
            capability=CLARIFY_CAPABILITY,
            parameters={
                "query": base["query"],
                "candidates": [c.label for c in analysis.candidates],
            },
        )
        logger.info("Intent unclear; synthesizing clarification workflow")
        return Workflow(primary_intent=UNKNOWN_INTENT, steps=[step], fallback=True)

    def _step_from_template(
        self,
        template: CapabilityTemplate,
        params: Dict[str, Any],
        by_capability: Dict[str, WorkflowStep],
    ) -> WorkflowStep:
        return WorkflowStep(
            capability=template.capability,
            parameters={name: params.get(name) for name in template.parameters},
            depends_on=[by_capability[dep].step_id for dep in template.depends_on],
            estimated_cost=template.estimated_cost,
            timeout_seconds=template.timeout_seconds,
        )

    def _enhancer_steps(
        self,
        base: Dict[str, Any],
        context: UserContext,
        main_steps: List[WorkflowStep],
        by_capability: Dict[str, WorkflowStep],
    ) -> List[WorkflowStep]:
        enhancers: List[WorkflowStep] = []
        main_ids = [s.step_id for s in main_steps]

        def add(capability: str, parameters: Dict[str, Any], depends_on: List[str]) -> None:
            if capability in by_capability:
                return
            step = WorkflowStep(
                capability=capability,
                parameters=parameters,
                depends_on=depends_on,
                estimated_cost=ENHANCER_COSTS.get(capability, 0.0),
            )
            enhancers.append(step)
            by_capability[capability] = step

        if self.enable_cross_trip_memory and context.travel_history:
            add("cross_trip_memory", {
                "past_destinations": base["past_destinations"],
                "preferences": base["preferences"],
            }, [])

        footprint = [by_capability[c].step_id for c in FOOTPRINT_CAPABILITIES if c in by_capability]
        if self.enable_carbon_scoring and footprint:
            add("carbon_scoring", {"intent": base["intent"]}, footprint)

        if self.enable_social_matching:
            add("social_matching", {
                "intent": base["intent"],
                "preferences": base["preferences"],
            }, [])

        if (
            self.enable_emotional_adaptation
            and context.emotional_state
            and context.emotional_state != "neutral"
        ):
            add("emotional_adaptation", {
                "emotional_state": base["emotional_state"],
                "emotional_weight": base["emotional_weight"],
            }, main_ids)

        if self.enable_shadow_planning and main_ids:
            add("shadow_planning", {
                "intent": base["intent"],
                "secondary_intents": base["secondary_intents"],
                "season": base["season"],
                "past_destinations": base["past_destinations"],
            }, main_ids)

        if self.enable_backup_plans and main_ids:
            add("backup_plan_generation", {
                "intent": base["intent"],
                "season": base["season"],
                "urgency": base["urgency"],
            }, main_ids)

        return enhancers


def _base_parameters(analysis: IntentAnalysisResult, context: UserContext) -> Dict[str, Any]:
    return {
        "intent": analysis.primary_intent,
        "confidence": analysis.confidence,
        "secondary_intents": list(analysis.secondary_intents),
        "query": analysis.normalized_text,
        "preferences": dict(context.preferences),
        "past_destinations": [t.destination for t in context.travel_history[-5:]],
        "urgency": analysis.temporal_context.urgency,
        "season": analysis.temporal_context.season,
        "emotional_state": context.emotional_state,
        "emotional_weight": analysis.emotional_weight,
    }


def _dependency_order(templates: List[CapabilityTemplate]) -> List[CapabilityTemplate]:
    """Templates ordered so dependencies come first (catalog guarantees no cycles)."""
    ordered: List[CapabilityTemplate] = []
    placed: set = set()
    pending = list(templates)
    while pending:
        ready = [t for t in pending if all(d in placed for d in t.depends_on)]
        if not ready:
            # Unreachable for a validated catalog; keep remaining order
            ordered.extend(pending)
            break
        for template in ready:
            ordered.append(template)
            placed.add(template.capability)
        pending = [t for t in pending if t.capability not in placed]
    return ordered


def _or(value, default):
    return default if value is None else value
