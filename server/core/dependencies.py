"""
Shared singleton dependencies for the application.

The catalog, provider registry, context store, learner and orchestrator are
created once at startup and reused across requests. The orchestrator holds the
per-user locks and statistics, so there must be exactly one per process.
"""
import logging
from typing import Optional

import httpx

from config.settings import settings
from core.catalog import IntentCatalog
from core.learner import OutcomeLearner
from core.orchestrator import TravelOrchestrator
from database.client import get_supabase
from database.repositories.outcome_repo import OutcomeRepository
from database.repositories.user_context_repo import (
    InMemoryUserContextStore,
    SupabaseUserContextRepository,
    UserContextStore,
)
from tools.assistance import (
    ClarifyIntentProvider,
    EmergencyAssistanceProvider,
    EmotionalAdaptationProvider,
    ExpeditedHandlingProvider,
)
from tools.base import ProviderRegistry
from tools.booking import FlightBookingProvider, HotelBookingProvider
from tools.enhancers import (
    BackupPlanProvider,
    CarbonScoringProvider,
    CrossTripMemoryProvider,
    ShadowPlanningProvider,
    SocialMatchingProvider,
)
from tools.planning import (
    CulturalInfoProvider,
    RecommendationProvider,
    RestaurantSearchProvider,
    TripPlanningProvider,
    WeatherLookupProvider,
)
from tools.remote import RemoteCapabilityProvider

logger = logging.getLogger(__name__)

# Module-level singletons: initialized once via init_dependencies()
_http_client: Optional[httpx.AsyncClient] = None
_provider_registry: Optional[ProviderRegistry] = None
_context_store: Optional[UserContextStore] = None
_orchestrator: Optional[TravelOrchestrator] = None


def build_provider_registry(http_client: Optional[httpx.AsyncClient] = None) -> ProviderRegistry:
    """Register the built-in providers, then any remote overrides from settings."""
    registry = ProviderRegistry()
    for provider in (
        FlightBookingProvider(),
        HotelBookingProvider(),
        TripPlanningProvider(),
        RecommendationProvider(),
        WeatherLookupProvider(),
        RestaurantSearchProvider(),
        CulturalInfoProvider(),
        EmergencyAssistanceProvider(),
        ClarifyIntentProvider(),
        ExpeditedHandlingProvider(),
        EmotionalAdaptationProvider(),
        CrossTripMemoryProvider(),
        SocialMatchingProvider(),
        CarbonScoringProvider(),
        ShadowPlanningProvider(),
        BackupPlanProvider(),
    ):
        registry.register(provider)

    for capability, endpoint in settings.CAPABILITY_ENDPOINTS.items():
        registry.register(RemoteCapabilityProvider(
            capability,
            endpoint,
            client=http_client,
            timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
        ))
    return registry


def build_context_store() -> UserContextStore:
    if settings.USER_CONTEXT_BACKEND == "supabase":
        return SupabaseUserContextRepository(get_supabase())
    return InMemoryUserContextStore()


def build_learner() -> OutcomeLearner:
    repository = None
    if settings.USER_CONTEXT_BACKEND == "supabase":
        repository = OutcomeRepository(get_supabase())
    return OutcomeLearner(repository=repository)


def init_dependencies() -> None:
    """
    Initialize all shared singletons. Called once at application startup.

    Raises CatalogError when the configured intent catalog is unusable.
    """
    global _http_client, _provider_registry, _context_store, _orchestrator

    logger.info("Initializing shared dependencies...")

    if settings.INTENT_CATALOG_PATH:
        catalog = IntentCatalog.from_file(settings.INTENT_CATALOG_PATH)
    else:
        catalog = IntentCatalog.default()

    # One httpx.AsyncClient shared by every remote provider
    if settings.CAPABILITY_ENDPOINTS:
        _http_client = httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS)

    _provider_registry = build_provider_registry(_http_client)
    _context_store = build_context_store()
    _orchestrator = TravelOrchestrator(
        catalog=catalog,
        context_store=_context_store,
        registry=_provider_registry,
        learner=build_learner(),
    )

    logger.info(
        f"Dependencies initialized: {len(catalog)} intents, "
        f"{len(_provider_registry.list_capabilities())} providers, "
        f"context backend={settings.USER_CONTEXT_BACKEND}"
    )


async def shutdown_dependencies() -> None:
    """Drain the orchestrator and clean up resources on shutdown."""
    global _http_client
    if _orchestrator:
        await _orchestrator.shutdown()
    if _http_client:
        await _http_client.aclose()
        _http_client = None
        logger.info("HTTP client closed")


def get_orchestrator() -> TravelOrchestrator:
    if _orchestrator is None:
        raise RuntimeError("Dependencies not initialized. Call init_dependencies() first.")
    return _orchestrator


def get_provider_registry() -> ProviderRegistry:
    if _provider_registry is None:
        raise RuntimeError("Dependencies not initialized. Call init_dependencies() first.")
    return _provider_registry


def get_context_store() -> UserContextStore:
    if _context_store is None:
        raise RuntimeError("Dependencies not initialized. Call init_dependencies() first.")
    return _context_store
