from typing import List, Optional

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="session_id")
    message: str
    user_id: Optional[int] = Field(default=None, alias="user_id")


class ChatResponse(BaseModel):
    version: str = "v1"
    session_id: str = Field(alias="session_id")
    answer: str


class ContextEntry(BaseModel):
    role: str
    content: str
    ts: Optional[int] = None


class ContextResponse(BaseModel):
    user_id: int = Field(alias="user_id")
    messages: List[ContextEntry] = []
