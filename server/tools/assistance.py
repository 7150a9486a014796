"""Clarification, mitigation and emergency providers.

These run without external services: they shape the response when the intent
is unclear, when the request is urgent, or when the user is under stress.
"""
from typing import Dict, Any
import logging

from core.text import mentions_any
from models.context import UserContext
from tools.base import CapabilityProvider, CapabilitySchema, CapabilityParameter, CapabilityMetadata

logger = logging.getLogger(__name__)

_LABEL_PROMPTS = {
    "book_flight": "book a flight",
    "book_hotel": "find a hotel",
    "plan_trip": "plan a trip",
    "get_recommendations": "get recommendations",
    "check_weather": "check the weather",
    "find_restaurants": "find somewhere to eat",
    "cultural_info": "learn about local culture",
    "emergency_help": "get urgent help",
}


class ClarifyIntentProvider(CapabilityProvider):
    """Ask the user for more detail when no intent was recognised"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="clarify_intent",
            description="Produce a clarification question when the request is ambiguous.",
            metadata=CapabilityMetadata(timeout_seconds=1.0),
            parameters=[
                CapabilityParameter(name="query", type="string", description="Normalized request text"),
                CapabilityParameter(name="candidates", type="array", description="Weak candidate labels"),
            ],
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        options = [
            _LABEL_PROMPTS.get(label, label.replace("_", " "))
            for label in (parameters.get("candidates") or [])
        ]
        if options:
            question = f"Just to be sure: would you like to {' or '.join(options[:3])}?"
        elif parameters.get("query"):
            question = "I'm not sure what you need yet. Could you tell me a bit more about your trip?"
        else:
            question = "How can I help with your travels today?"
        return {
            "requires_clarification": True,
            "clarification_question": question,
            "suggested_intents": list(_LABEL_PROMPTS)[:4] if not options else [],
        }


class ExpeditedHandlingProvider(CapabilityProvider):
    """Flag the request for priority handling"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="expedited_handling",
            description="Mark the response as priority and shorten follow-up latency.",
            metadata=CapabilityMetadata(timeout_seconds=1.0, estimated_cost=0.001),
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        logger.info(f"Expedited handling for user {context.user_id} (urgency={parameters.get('urgency')})")
        return {"priority": {"expedited": True, "urgency": parameters.get("urgency")}}


class EmotionalAdaptationProvider(CapabilityProvider):
    """Adapt tone to the user's emotional state"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="emotional_adaptation",
            description="Choose response tone and pacing from emotional state and weight.",
            metadata=CapabilityMetadata(timeout_seconds=1.0, estimated_cost=0.002),
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        state = parameters.get("emotional_state") or context.emotional_state or "neutral"
        weight = parameters.get("emotional_weight")
        if weight is None:
            weight = 0.5

        if state in ("stressed", "tired") or weight < 0.4:
            tone, pacing = "reassuring", "step_by_step"
        elif state == "excited" or weight > 0.7:
            tone, pacing = "enthusiastic", "inspirational"
        else:
            tone, pacing = "friendly", "concise"
        return {"tone": {"style": tone, "pacing": pacing, "emotional_state": state}}


class EmergencyAssistanceProvider(CapabilityProvider):
    """Urgent-help checklist"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="emergency_assistance",
            description="Return an immediate action checklist for travel emergencies.",
            metadata=CapabilityMetadata(timeout_seconds=3.0, estimated_cost=0.004),
            parameters=[
                CapabilityParameter(name="query", type="string", description="Normalized request text", required=True),
            ],
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        query = parameters["query"]
        steps = ["Move to a safe place", "Contact local emergency services if anyone is at risk"]
        if mentions_any(query, ["passport", "stolen", "lost"]):
            steps.append("Report the loss to local police and contact your embassy")
        if mentions_any(query, ["flight", "cancel"]):
            steps.append("Contact the airline desk for rebooking options")
        return {"emergency": {"checklist": steps, "urgency": parameters.get("urgency")}}
