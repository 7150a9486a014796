"""Enhancer providers: augment the main workflow output.

They run after (or alongside) the intent capabilities and only add their own
keys to the merged output.
"""
from typing import Dict, Any, List
import logging

from models.context import UserContext
from tools.base import CapabilityProvider, CapabilitySchema, CapabilityMetadata

logger = logging.getLogger(__name__)

# kg CO2e per passenger, rough averages used for the mock estimate
_FOOTPRINT_KG = {"flight_booking": 450.0, "hotel_booking": 60.0, "trip_planning": 120.0}


class CrossTripMemoryProvider(CapabilityProvider):
    """Surface what worked on earlier trips"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="cross_trip_memory",
            description="Summarize past trips: favourite companions and best-rated destinations.",
            metadata=CapabilityMetadata(estimated_cost=0.003),
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        trips = sorted(context.travel_history, key=lambda t: t.satisfaction, reverse=True)
        companions: Dict[str, int] = {}
        for trip in context.travel_history:
            for companion in trip.companions:
                companions[companion] = companions.get(companion, 0) + 1
        return {
            "memory": {
                "favorite_destinations": [t.destination for t in trips[:3]],
                "frequent_companions": sorted(companions, key=lambda c: -companions[c])[:3],
                "trip_count": len(context.travel_history),
            },
        }


class CarbonScoringProvider(CapabilityProvider):
    """Estimate the footprint of the planned travel"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="carbon_scoring",
            description="Estimate CO2e of the planned trip components and suggest greener options.",
            metadata=CapabilityMetadata(mock_mode=True, estimated_cost=0.002),
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        upstream = parameters.get("upstream") or {}
        components: List[str] = []
        total = 0.0
        for output in upstream.values():
            if not output:
                continue
            for key, capability in (("flights", "flight_booking"), ("hotels", "hotel_booking"),
                                    ("itinerary", "trip_planning")):
                if key in output and capability not in components:
                    components.append(capability)
                    total += _FOOTPRINT_KG[capability]

        if total >= 400:
            rating = "high"
        elif total >= 100:
            rating = "medium"
        else:
            rating = "low"
        return {
            "carbon": {
                "estimated_kg_co2e": total,
                "components": components,
                "rating": rating,
                "alternatives": ["rail for legs under 700 km"] if "flight_booking" in components else [],
            },
        }


class SocialMatchingProvider(CapabilityProvider):
    """Find travellers with similar plans"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="social_matching",
            description="Match the user with travellers who share the intent and interests.",
            metadata=CapabilityMetadata(mock_mode=True, estimated_cost=0.002),
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        # No traveller directory is wired up yet
        return {"social": {"matches": [], "intent": parameters.get("intent")}}


class BackupPlanProvider(CapabilityProvider):
    """Alternatives to fall back on if the main plan breaks"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="backup_plan_generation",
            description="Generate backup plans with their triggers and confidence.",
            metadata=CapabilityMetadata(estimated_cost=0.004),
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        upstream = parameters.get("upstream") or {}
        plans = [{
            "trigger": "weather_change",
            "alternative": {"type": "indoor_activities"},
            "confidence": 0.8,
        }]
        if any(out and "flights" in out for out in upstream.values()):
            plans.append({
                "trigger": "flight_cancellation",
                "alternative": {"type": "next_available_departure"},
                "confidence": 0.7,
            })
        failed = [step_id for step_id, out in upstream.items() if out is None]
        if failed:
            plans.append({
                "trigger": "service_unavailable",
                "alternative": {"type": "retry_later", "steps": failed},
                "confidence": 0.5,
            })
        if parameters.get("urgency") in ("high", "critical"):
            plans.append({
                "trigger": "no_availability",
                "alternative": {"type": "human_agent_handoff"},
                "confidence": 0.6,
            })
        return {"backup_plans": plans}


# Capability whose output already covers a need -> the intent that would cover it
_COVERED_BY = {
    "flights": "book_flight",
    "hotels": "book_hotel",
    "weather": "check_weather",
    "restaurants": "find_restaurants",
}

_SEASON_NOTES = {
    "winter": "Short daylight and possible snow delays: keep transfers flexible.",
    "spring": "Shoulder season: good prices, pack layers for changing weather.",
    "summer": "Peak season: book stays and popular sights early.",
    "fall": "Harvest and festival season: check local event calendars.",
}


class ShadowPlanningProvider(CapabilityProvider):
    """
    Plan the parts of the trip the user did not ask for yet.

    Looks at what the main steps produced and suggests the intents that would
    complete the plan (a trip with flights but no stay gets a hotel
    suggestion, and so on). Suggestions only; nothing is booked.
    """

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="shadow_planning",
            description="Anticipate unrequested travel needs from the planned workflow.",
            metadata=CapabilityMetadata(estimated_cost=0.003),
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        upstream = parameters.get("upstream") or {}
        intent = parameters.get("intent")
        requested = {intent, *(parameters.get("secondary_intents") or [])}

        covered = set()
        for output in upstream.values():
            if output:
                covered.update(key for key in _COVERED_BY if key in output)

        travelling = bool(covered & {"flights", "hotels"}) or intent == "plan_trip"
        suggested: List[str] = []
        if travelling:
            for key, suggestion in _COVERED_BY.items():
                if key not in covered and suggestion not in requested:
                    suggested.append(suggestion)

        notes: List[str] = []
        season_note = _SEASON_NOTES.get(parameters.get("season"))
        if season_note and travelling:
            notes.append(season_note)
        past = parameters.get("past_destinations") or []
        if past:
            notes.append(f"Last trip was to {past[-1]}; similar destinations were favoured.")

        logger.debug(f"Shadow planning for '{intent}': suggested={suggested}")
        return {
            "shadow_insights": {
                "anticipated_needs": [key for key in _COVERED_BY if key not in covered] if travelling else [],
                "suggested_intents": suggested,
                "notes": notes,
            },
        }
