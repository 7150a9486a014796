"""User context storage: interface, in-memory store and Supabase repository."""
from abc import ABC, abstractmethod
from asyncio import to_thread
from datetime import datetime, timezone
from typing import Dict, Optional
from supabase import Client
import logging

from models.context import UserContext

logger = logging.getLogger(__name__)


class UserContextStore(ABC):
    """Where UserContext lives between requests.

    Implementations raise on infrastructure problems; the orchestrator turns
    those into ContextStoreError.
    """

    @abstractmethod
    async def load(self, user_id: str) -> Optional[UserContext]:
        """Return the stored context, or None for a new user."""
        ...

    @abstractmethod
    async def save(self, context: UserContext) -> None:
        ...

    @abstractmethod
    async def prune_stale(self, cutoff: datetime) -> int:
        """Trim travel history older than cutoff in every context. Returns trips removed."""
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    async def ping(self) -> bool:
        """Cheap availability check used by the health endpoint."""
        await self.count()
        return True


class InMemoryUserContextStore(UserContextStore):
    """Process-local store. Copies on the way in and out so callers never share state."""

    def __init__(self):
        self._contexts: Dict[str, UserContext] = {}

    async def load(self, user_id: str) -> Optional[UserContext]:
        context = self._contexts.get(user_id)
        return context.model_copy(deep=True) if context else None

    async def save(self, context: UserContext) -> None:
        self._contexts[context.user_id] = context.model_copy(deep=True)

    async def prune_stale(self, cutoff: datetime) -> int:
        return sum(context.prune_history(cutoff) for context in self._contexts.values())

    async def count(self) -> int:
        return len(self._contexts)


class SupabaseUserContextRepository(UserContextStore):
    """One row per user in `user_contexts`: user_id, context (JSON), updated_at."""

    TABLE = "user_contexts"

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def load(self, user_id: str) -> Optional[UserContext]:
        try:
            response = await to_thread(
                lambda: self.supabase.table(self.TABLE)
                .select("context")
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error loading context for user {user_id}: {e}")
            raise

        if not response.data:
            return None
        return UserContext.model_validate(response.data[0]["context"])

    async def save(self, context: UserContext) -> None:
        data = {
            "user_id": context.user_id,
            "context": context.model_dump(mode="json"),
            "updated_at": context.updated_at.isoformat(),
        }
        try:
            await to_thread(
                lambda: self.supabase.table(self.TABLE)
                .upsert(data, on_conflict="user_id")
                .execute()
            )
        except Exception as e:
            logger.error(f"Error saving context for user {context.user_id}: {e}")
            raise

    async def prune_stale(self, cutoff: datetime) -> int:
        """Rewrite only the rows whose history actually shrank."""
        try:
            response = await to_thread(
                lambda: self.supabase.table(self.TABLE).select("context").execute()
            )
        except Exception as e:
            logger.error(f"Error reading contexts for pruning: {e}")
            raise

        removed = 0
        for row in response.data or []:
            context = UserContext.model_validate(row["context"])
            dropped = context.prune_history(cutoff)
            if dropped:
                context.updated_at = datetime.now(timezone.utc)
                await self.save(context)
                removed += dropped
        return removed

    async def count(self) -> int:
        try:
            response = await to_thread(
                lambda: self.supabase.table(self.TABLE)
                .select("user_id", count="exact")
                .execute()
            )
        except Exception as e:
            logger.error(f"Error counting contexts: {e}")
            raise
        if response.count is not None:
            return response.count
        return len(response.data or [])
