"""Base capability provider interface and registry."""
from abc import ABC, abstractmethod
from functools import cached_property
from typing import Dict, Any, List, Optional
from pydantic import BaseModel
import logging

from models.context import UserContext

logger = logging.getLogger(__name__)


class CapabilityMetadata(BaseModel):
    """Operational hints a provider advertises to the orchestrator."""
    timeout_seconds: Optional[float] = None  # None -> orchestrator default
    read_only_hint: bool = True      # True if the provider only reads data
    open_world_hint: bool = False    # True if the provider calls external services
    mock_mode: bool = False          # True if the provider returns placeholder data
    estimated_cost: float = 0.0


class CapabilityParameter(BaseModel):
    """Capability parameter definition."""
    name: str
    type: str  # JSON Schema types: "string", "integer", "number", "boolean", "array", "object"
    description: str
    required: bool = False


class CapabilitySchema(BaseModel):
    """Capability schema: name, description, parameters and metadata."""
    name: str
    description: str
    parameters: List[CapabilityParameter] = []
    metadata: CapabilityMetadata = CapabilityMetadata()

    def to_json_schema(self) -> dict:
        """Convert to a JSON Schema style description."""
        properties: Dict[str, Any] = {}
        required_list: List[str] = []

        for param in self.parameters:
            properties[param.name] = {
                "type": param.type,
                "description": param.description,
            }
            if param.required:
                required_list.append(param.name)

        schema: Dict[str, Any] = {"type": "object", "properties": properties}
        if required_list:
            schema["required"] = required_list

        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": schema,
            "metadata": self.metadata.model_dump(),
        }


class CapabilityProvider(ABC):
    """Base class for everything a workflow step can invoke."""

    @cached_property
    def schema(self) -> CapabilitySchema:
        """Provider schema, built once on first access."""
        return self._build_schema()

    @property
    def name(self) -> str:
        return self.schema.name

    @abstractmethod
    def _build_schema(self) -> CapabilitySchema:
        """Subclasses implement this to define their schema."""
        ...

    @abstractmethod
    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        """
        Perform the capability.

        Returns a dict that is merged into the workflow output. Raising any
        exception marks the step as failed; the rest of the workflow still runs.
        """
        ...

    def validate_parameters(self, parameters: Dict[str, Any]) -> bool:
        """Validate parameters before invocation."""
        required_params = [p.name for p in self.schema.parameters if p.required]

        missing = [p for p in required_params if parameters.get(p) is None]
        if missing:
            raise ValueError(f"Missing required parameter(s): {', '.join(missing)}")

        return True

    async def shutdown(self) -> None:
        """Release provider resources. Default: nothing to release."""
        return None


class ProviderRegistry:
    """Central registry of capability providers, keyed by capability name."""

    def __init__(self):
        self._providers: Dict[str, CapabilityProvider] = {}
        logger.info("Provider registry initialized")

    def register(self, provider: CapabilityProvider) -> None:
        """Register a provider, replacing any earlier one for the same capability."""
        name = provider.schema.name
        if name in self._providers:
            logger.info(f"Replacing provider for capability: {name}")
        self._providers[name] = provider
        logger.info(f"Registered provider: {name}")

    def get(self, name: str) -> Optional[CapabilityProvider]:
        """Get provider by capability name."""
        return self._providers.get(name)

    def list_capabilities(self) -> List[str]:
        """List all registered capability names."""
        return list(self._providers.keys())

    def timeout_for(self, name: str, default: float) -> float:
        provider = self._providers.get(name)
        if provider and provider.schema.metadata.timeout_seconds:
            return provider.schema.metadata.timeout_seconds
        return default

    def get_statuses(self) -> List[dict]:
        """Return operational status for each provider."""
        statuses = []
        for name, provider in self._providers.items():
            meta = provider.schema.metadata
            statuses.append({
                "name": name,
                "mock_mode": meta.mock_mode,
                "read_only": meta.read_only_hint,
                "timeout_seconds": meta.timeout_seconds,
                "estimated_cost": meta.estimated_cost,
            })
        return statuses

    async def shutdown_all(self) -> None:
        """Shut every provider down; one failing provider does not stop the rest."""
        for name, provider in self._providers.items():
            try:
                await provider.shutdown()
            except Exception as e:
                logger.error(f"Provider {name} failed to shut down: {e}", exc_info=True)
