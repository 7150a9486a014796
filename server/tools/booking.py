"""Flight and hotel booking providers (Mock implementation)"""
from typing import Dict, Any
import hashlib
import logging

from models.context import UserContext
from tools.base import CapabilityProvider, CapabilitySchema, CapabilityParameter, CapabilityMetadata

logger = logging.getLogger(__name__)


def _quote(seed: str, low: int, high: int) -> int:
    """Stable pseudo-price so repeated searches return the same mock quote."""
    digest = int(hashlib.md5(seed.encode("utf-8")).hexdigest()[:8], 16)
    return low + digest % (high - low)


class FlightBookingProvider(CapabilityProvider):
    """Search flight options for the request"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="flight_booking",
            description=(
                "Search flight options matching the user's request. Returns a list of "
                "options with airline, cabin and price. Currently returns clearly-tagged "
                "mock data when no airline API is configured."
            ),
            metadata=CapabilityMetadata(
                read_only_hint=False,
                open_world_hint=True,
                mock_mode=True,
                estimated_cost=0.01,
            ),
            parameters=[
                CapabilityParameter(name="query", type="string", description="Normalized request text", required=True),
                CapabilityParameter(name="past_destinations", type="array", description="Recent destinations"),
                CapabilityParameter(name="preferences", type="object", description="User preferences"),
                CapabilityParameter(name="season", type="string", description="Current season"),
            ],
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        query = parameters["query"]
        preferences = parameters.get("preferences") or {}
        budget_minded = "budget" in query or preferences.get("budget") == "low"

        cabins = ["economy"] if budget_minded else ["economy", "premium_economy", "business"]
        options = [
            {
                "option_id": f"FL-{i + 1}",
                "airline": ["SkyWays", "Atlas Air", "Nimbus"][i % 3],
                "cabin": cabin,
                "price_usd": _quote(f"{query}:{cabin}:{i}", 250, 1400),
                "stops": i % 2,
            }
            for i, cabin in enumerate(cabins)
        ]
        options.sort(key=lambda o: o["price_usd"])

        logger.info(f"Mock flight search: {len(options)} options for user {context.user_id}")
        return {
            "mock": True,
            "flights": {"options": options, "budget_minded": budget_minded},
        }


class HotelBookingProvider(CapabilityProvider):
    """Search hotel options for the request"""

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name="hotel_booking",
            description=(
                "Search hotels matching the request and preferences. Returns mock "
                "options with name, stars and nightly price."
            ),
            metadata=CapabilityMetadata(
                read_only_hint=False,
                open_world_hint=True,
                mock_mode=True,
                estimated_cost=0.008,
            ),
            parameters=[
                CapabilityParameter(name="query", type="string", description="Normalized request text", required=True),
                CapabilityParameter(name="past_destinations", type="array", description="Recent destinations"),
                CapabilityParameter(name="preferences", type="object", description="User preferences"),
            ],
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        query = parameters["query"]
        options = [
            {
                "option_id": f"HT-{stars}",
                "name": f"{['Harbor', 'Garden', 'Summit'][stars - 3]} Hotel",
                "stars": stars,
                "nightly_usd": _quote(f"{query}:{stars}", 60 * stars, 90 * stars),
            }
            for stars in (3, 4, 5)
        ]
        return {"mock": True, "hotels": {"options": options}}
