"""Pydantic schemas for thread-related responses."""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, ConfigDict


class MessageResponse(BaseModel):
    """Schema for a single message."""
    role: str
    content: str
    stopped: bool = False
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ThreadResponse(BaseModel):
    """Schema for thread list entries."""
    id: str
    title: str
    last_model: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ThreadDetailResponse(ThreadResponse):
    """Schema for a thread with its messages."""
    user_id: str
    messages: List[MessageResponse] = []
