"""
Pydantic Models for API Requests
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from consult_assist.models.chat import ChatMessage, ChatRole
from consult_assist.models.session import SessionStatus, SessionType


class ChatMessageIn(BaseModel):
    role: ChatRole = Field(description="system, user or assistant")
    content: str = Field(default="", description="Message text")
    images: List[str] = Field(default_factory=list, description="Image URLs or data URIs")

    def to_message(self) -> ChatMessage:
        return ChatMessage(role=self.role, content=self.content, images=tuple(self.images))


class ChatRequest(BaseModel):
    """Request Model for blocking and streamed chat"""
    messages: List[ChatMessageIn] = Field(min_length=1)


class MatchRequest(BaseModel):
    query: str = Field(description="Free-text name or code to resolve")


class RecordRequest(BaseModel):
    transcript: str = Field(min_length=1, description="Consultation transcript")


class TestModeRequest(BaseModel):
    enabled: bool


class StartSessionRequest(BaseModel):
    session_type: SessionType = Field(default=SessionType.CONSULTATION)
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None


class EndSessionRequest(BaseModel):
    status: SessionStatus = Field(default=SessionStatus.COMPLETED)
