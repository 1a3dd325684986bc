from pydantic import AliasChoices, BaseModel, Field
from typing import Any, Optional

class ChatRequest(BaseModel):
    # Shape checks happen in the relay (400), not here
    thread_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("thread_id", "chatId"))
    message: Optional[Any] = None
    model: Optional[str] = Field(default=None, description="Model class: basic or max")
