"""Outcome repository: durable copy of the learner's history."""
from asyncio import to_thread
from supabase import Client
import logging

logger = logging.getLogger(__name__)


class OutcomeRepository:
    """Handle workflow outcome database operations."""

    TABLE = "workflow_outcomes"

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def save_record(self, record) -> None:
        """Log a learning record. Failures are logged, never raised."""
        try:
            data = record.model_dump(mode="json")
            await to_thread(
                lambda: self.supabase.table(self.TABLE).insert(data).execute()
            )
        except Exception as e:
            logger.error(f"Error logging workflow outcome {record.workflow_id}: {e}")
