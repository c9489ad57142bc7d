"""
Pydantic request/response models shared across route modules.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from config import MAX_HISTORY_MESSAGES, MAX_MESSAGE_LENGTH


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    history: Optional[list[ChatMessage]] = Field(default=None, max_length=MAX_HISTORY_MESSAGES)


class ChatResponse(BaseModel):
    response: str


class ResultResponse(BaseModel):
    id: str
    value: Any


class HistoryEntry(BaseModel):
    id: str
    code: str
    result: Any
    format: str
    timestamp: float


class HealthResponse(BaseModel):
    status: str
    ready: bool
    backend: Optional[str] = None
    engines: list[str] = []
