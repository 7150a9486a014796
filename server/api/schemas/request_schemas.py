"""API request schemas"""
from pydantic import BaseModel, Field
from typing import Optional

from models.context import UserContextUpdate


class ProcessRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=256)
    message_text: str = Field(..., max_length=10000)
    context_updates: Optional[UserContextUpdate] = None
