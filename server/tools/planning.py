"""Trip planning, recommendation, weather, dining and culture providers (Mock implementation)"""
from typing import Dict, Any, List
import logging

from models.context import UserContext
from tools.base import CapabilityProvider, CapabilitySchema, CapabilityParameter, CapabilityMetadata

logger = logging.getLogger(__name__)

_SEASON_TEMPS_C = {"winter": 6, "spring": 16, "summer": 27, "fall": 15}


def _destinations(parameters: Dict[str, Any]) -> List[str]:
    return list(parameters.get("past_destinations") or [])


class TripPlanningProvider(CapabilityProvider):
    """Draft an itinerary skeleton"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="trip_planning",
            description="Draft a day-by-day itinerary skeleton for the requested trip.",
            metadata=CapabilityMetadata(mock_mode=True, estimated_cost=0.02),
            parameters=[
                CapabilityParameter(name="query", type="string", description="Normalized request text", required=True),
                CapabilityParameter(name="preferences", type="object", description="User preferences"),
                CapabilityParameter(name="season", type="string", description="Current season"),
                CapabilityParameter(name="urgency", type="string", description="Urgency tier"),
            ],
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        preferences = parameters.get("preferences") or {}
        days = int(preferences.get("trip_length_days", 5))
        pace = preferences.get("pace", "balanced")
        itinerary = [
            {"day": day, "theme": ["arrival", "explore", "culture", "leisure", "departure"][min(day - 1, 4)]}
            for day in range(1, days + 1)
        ]
        return {
            "mock": True,
            "itinerary": {"days": itinerary, "pace": pace, "season": parameters.get("season")},
        }


class RecommendationProvider(CapabilityProvider):
    """Personalized suggestions"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="recommendation",
            description="Suggest activities and places based on intent, preferences and history.",
            metadata=CapabilityMetadata(mock_mode=True, estimated_cost=0.005),
            parameters=[
                CapabilityParameter(name="intent", type="string", description="Intent being served", required=True),
                CapabilityParameter(name="preferences", type="object", description="User preferences"),
            ],
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        preferences = parameters.get("preferences") or {}
        interests = preferences.get("interests") or ["food", "sightseeing"]
        if isinstance(interests, str):
            interests = [interests]

        # Reuse the itinerary when trip planning ran first
        upstream = parameters.get("upstream") or {}
        planned_days = next(
            (len(out["itinerary"]["days"]) for out in upstream.values() if out and "itinerary" in out),
            None,
        )
        suggestions = [
            {"title": f"Top {interest} spot", "category": interest, "score": round(0.9 - i * 0.1, 2)}
            for i, interest in enumerate(interests[:5])
        ]
        return {
            "mock": True,
            "recommendations": {"items": suggestions, "planned_days": planned_days},
        }


class WeatherLookupProvider(CapabilityProvider):
    """Seasonal weather outlook"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="weather_lookup",
            description="Seasonal weather outlook for the trip. Returns mock averages.",
            metadata=CapabilityMetadata(mock_mode=True, estimated_cost=0.001, timeout_seconds=2.0),
            parameters=[
                CapabilityParameter(name="season", type="string", description="Current season", required=True),
            ],
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        season = parameters["season"]
        return {
            "mock": True,
            "weather": {
                "season": season,
                "avg_temp_c": _SEASON_TEMPS_C.get(season, 18),
                "rain_chance": 0.4 if season in ("spring", "fall") else 0.2,
            },
        }


class RestaurantSearchProvider(CapabilityProvider):
    """Dining suggestions"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="restaurant_search",
            description="Find restaurants matching cuisine and budget preferences.",
            metadata=CapabilityMetadata(mock_mode=True, estimated_cost=0.003),
            parameters=[
                CapabilityParameter(name="query", type="string", description="Normalized request text", required=True),
                CapabilityParameter(name="preferences", type="object", description="User preferences"),
            ],
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        preferences = parameters.get("preferences") or {}
        cuisine = str(preferences.get("cuisine", "local"))
        restaurants = [
            {"name": f"{cuisine.title()} Kitchen {i + 1}", "cuisine": cuisine, "price_level": "$" * (i + 1)}
            for i in range(3)
        ]
        return {"mock": True, "restaurants": restaurants}


class CulturalInfoProvider(CapabilityProvider):
    """Local customs and etiquette"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="cultural_info",
            description="Cultural background, etiquette and notable museums.",
            metadata=CapabilityMetadata(mock_mode=True, estimated_cost=0.002),
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        return {
            "mock": True,
            "culture": {
                "etiquette": ["Greet hosts before entering", "Tipping customs vary by region"],
                "related_destinations": _destinations(parameters),
            },
        }
