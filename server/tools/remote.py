"""Remote capability provider: delegates a capability to an HTTP endpoint."""
from typing import Dict, Any, Optional
import httpx
import logging

from models.context import UserContext
from tools.base import CapabilityProvider, CapabilitySchema, CapabilityMetadata

logger = logging.getLogger(__name__)


class RemoteCapabilityProvider(CapabilityProvider):
    """
    POSTs a step to an external service.

    Request body: {"capability", "parameters", "user_id", "session_id"}.
    The response must be a JSON object; it becomes the step output. Non-2xx
    responses and malformed bodies raise, which marks the step as failed.
    Retries belong to the remote service, not to this client.
    """

    def __init__(
        self,
        capability: str,
        endpoint: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
        description: Optional[str] = None,
    ):
        self.capability = capability
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self.description = description or f"Remote provider for '{capability}' at {endpoint}"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds or 10.0)

    def _build_schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name=self.capability,
            description=self.description,
            metadata=CapabilityMetadata(
                timeout_seconds=self.timeout_seconds,
                read_only_hint=False,
                open_world_hint=True,
            ),
        )

    async def invoke(self, parameters: Dict[str, Any], context: UserContext) -> Dict[str, Any]:
        payload = {
            "capability": self.capability,
            "parameters": parameters,
            "user_id": context.user_id,
            "session_id": context.session_id,
        }
        response = await self.client.post(self.endpoint, json=payload)
        response.raise_for_status()

        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Remote provider {self.capability} returned a non-object body")
        logger.debug(f"Remote capability {self.capability} responded {response.status_code}")
        return data

    async def shutdown(self) -> None:
        if self._owns_client:
            await self.client.aclose()
            logger.info(f"Remote provider {self.capability} client closed")
