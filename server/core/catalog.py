"""Intent catalog: labels, keywords and capability templates.

The catalog is the static configuration shared by candidate generation (keywords)
and workflow synthesis (capability templates). It can be loaded from a JSON file
and hot-reloaded when the file changes on disk.
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ValidationError

from core.errors import CatalogError
from models.intent import UNKNOWN_INTENT

logger = logging.getLogger(__name__)


class CapabilityTemplate(BaseModel):
    """How one capability is invoked for an intent."""
    capability: str
    parameters: list[str] = []
    depends_on: list[str] = []  # other capabilities of the same intent
    estimated_cost: float = 0.0
    timeout_seconds: Optional[float] = None


class IntentDefinition(BaseModel):
    """A catalog label with its keywords and capability plan."""
    label: str
    keywords: list[str]
    subject: Optional[str] = None
    capabilities: list[CapabilityTemplate] = []

    @property
    def subject_term(self) -> str:
        """Noun the label is about: 'book_flight' -> 'flight'."""
        if self.subject:
            return self.subject.lower()
        parts = self.label.split("_", 1)
        return (parts[1] if len(parts) > 1 else parts[0]).replace("_", " ").lower()


DEFAULT_INTENTS: list[dict] = [
    {
        "label": "book_flight",
        "keywords": ["flight", "fly", "plane", "ticket", "airline", "airport", "book", "reserve"],
        "subject": "flight",
        "capabilities": [
            {
                "capability": "flight_booking",
                "parameters": ["query", "past_destinations", "preferences", "season"],
                "estimated_cost": 0.01,
            },
        ],
    },
    {
        "label": "book_hotel",
        "keywords": ["hotel", "stay", "room", "accommodation", "lodge", "inn", "hostel"],
        "subject": "hotel",
        "capabilities": [
            {
                "capability": "hotel_booking",
                "parameters": ["query", "past_destinations", "preferences"],
                "estimated_cost": 0.008,
            },
        ],
    },
    {
        "label": "plan_trip",
        "keywords": [
            "trip", "travel", "journey", "vacation", "holiday", "plan",
            "itinerary", "budget", "visit", "explore",
        ],
        "subject": "trip",
        "capabilities": [
            {
                "capability": "trip_planning",
                "parameters": ["query", "past_destinations", "preferences", "season", "urgency"],
                "estimated_cost": 0.02,
            },
            {
                "capability": "weather_lookup",
                "parameters": ["past_destinations", "season"],
                "estimated_cost": 0.001,
            },
            {
                "capability": "recommendation",
                "parameters": ["intent", "preferences", "past_destinations"],
                "depends_on": ["trip_planning"],
                "estimated_cost": 0.005,
            },
        ],
    },
    {
        "label": "get_recommendations",
        "keywords": ["recommend", "suggest", "best", "advice", "ideas", "should"],
        "subject": "recommendation",
        "capabilities": [
            {
                "capability": "recommendation",
                "parameters": ["intent", "query", "preferences", "past_destinations"],
                "estimated_cost": 0.005,
            },
        ],
    },
    {
        "label": "check_weather",
        "keywords": ["weather", "rain", "sunny", "temperature", "forecast", "climate"],
        "subject": "weather",
        "capabilities": [
            {
                "capability": "weather_lookup",
                "parameters": ["past_destinations", "season"],
                "estimated_cost": 0.001,
            },
        ],
    },
    {
        "label": "find_restaurants",
        "keywords": ["restaurant", "food", "eat", "dining", "cuisine", "dinner", "lunch"],
        "subject": "restaurant",
        "capabilities": [
            {
                "capability": "restaurant_search",
                "parameters": ["query", "past_destinations", "preferences"],
                "estimated_cost": 0.003,
            },
        ],
    },
    {
        "label": "cultural_info",
        "keywords": ["culture", "history", "museum", "tradition", "local", "custom"],
        "subject": "culture",
        "capabilities": [
            {
                "capability": "cultural_info",
                "parameters": ["query", "past_destinations"],
                "estimated_cost": 0.002,
            },
        ],
    },
    {
        "label": "emergency_help",
        "keywords": ["emergency", "help", "problem", "issue", "urgent", "assistance", "lost", "stolen"],
        "subject": "emergency",
        "capabilities": [
            {
                "capability": "emergency_assistance",
                "parameters": ["query", "urgency", "emotional_state"],
                "estimated_cost": 0.004,
                "timeout_seconds": 3.0,
            },
        ],
    },
]


class IntentCatalog:
    """Validated, optionally file-backed set of intent definitions."""

    def __init__(
        self,
        definitions: list[IntentDefinition],
        source_path: Optional[Union[str, Path]] = None,
    ):
        self._validate(definitions)
        self._definitions = {d.label: d for d in definitions}
        self.source_path = Path(source_path) if source_path else None
        self._mtime: Optional[float] = self._current_mtime()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def default(cls) -> "IntentCatalog":
        return cls.from_dicts(DEFAULT_INTENTS)

    @classmethod
    def from_dicts(
        cls,
        raw: list[dict],
        source_path: Optional[Union[str, Path]] = None,
    ) -> "IntentCatalog":
        try:
            definitions = [IntentDefinition.model_validate(item) for item in raw]
        except ValidationError as e:
            raise CatalogError(f"Invalid intent definition: {e}") from e
        return cls(definitions, source_path=source_path)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "IntentCatalog":
        """Load a catalog from a JSON file: a list of intents or {"intents": [...]}."""
        path = Path(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise CatalogError(f"Cannot read intent catalog {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise CatalogError(f"Intent catalog {path} is not valid JSON: {e}") from e

        if isinstance(raw, dict):
            raw = raw.get("intents")
        if not isinstance(raw, list):
            raise CatalogError(f"Intent catalog {path} must contain a list of intents")

        catalog = cls.from_dicts(raw, source_path=path)
        logger.info(f"Loaded intent catalog from {path}: {len(catalog)} intents")
        return catalog

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, label: str) -> bool:
        return label in self._definitions

    def get(self, label: str) -> Optional[IntentDefinition]:
        return self._definitions.get(label)

    @property
    def labels(self) -> list[str]:
        return list(self._definitions)

    @property
    def definitions(self) -> list[IntentDefinition]:
        return list(self._definitions.values())

    # ------------------------------------------------------------------
    # Hot reload
    # ------------------------------------------------------------------

    def reload_if_changed(self) -> bool:
        """
        Re-read the backing file when its mtime changed.

        Returns True when definitions were replaced. A broken file raises
        CatalogError and leaves the previous definitions in place; the mtime is
        not recorded, so the next call retries.
        """
        if self.source_path is None:
            return False
        mtime = self._current_mtime()
        if mtime is None:
            raise CatalogError(f"Intent catalog {self.source_path} disappeared")
        if mtime == self._mtime:
            return False

        fresh = IntentCatalog.from_file(self.source_path)
        self._definitions = fresh._definitions
        self._mtime = mtime
        logger.info(f"Intent catalog reloaded: {len(self)} intents")
        return True

    def _current_mtime(self) -> Optional[float]:
        if self.source_path is None:
            return None
        try:
            return os.path.getmtime(self.source_path)
        except OSError:
            return None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(definitions: list[IntentDefinition]) -> None:
        if not definitions:
            raise CatalogError("Intent catalog is empty")

        seen: set[str] = set()
        for definition in definitions:
            label = definition.label
            if not label or label == UNKNOWN_INTENT:
                raise CatalogError(f"Invalid intent label: '{label}'")
            if label in seen:
                raise CatalogError(f"Duplicate intent label: '{label}'")
            seen.add(label)

            if not any(kw.strip() for kw in definition.keywords):
                raise CatalogError(f"Intent '{label}' has no keywords")

            capabilities = [t.capability for t in definition.capabilities]
            if len(set(capabilities)) != len(capabilities):
                raise CatalogError(f"Intent '{label}' lists a capability twice")
            for template in definition.capabilities:
                unknown = [d for d in template.depends_on if d not in capabilities]
                if unknown:
                    raise CatalogError(
                        f"Intent '{label}': capability '{template.capability}' depends on "
                        f"undeclared capability(ies) {', '.join(unknown)}"
                    )
            _check_acyclic(label, definition.capabilities)


def _check_acyclic(label: str, templates: list[CapabilityTemplate]) -> None:
    deps = {t.capability: set(t.depends_on) for t in templates}
    resolved: set[str] = set()
    while deps:
        ready = [cap for cap, d in deps.items() if d <= resolved]
        if not ready:
            raise CatalogError(
                f"Intent '{label}' has a dependency cycle between: {', '.join(sorted(deps))}"
            )
        for cap in ready:
            resolved.add(cap)
            del deps[cap]
