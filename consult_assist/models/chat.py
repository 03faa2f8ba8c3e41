"""
Pydantic models for chat conversations
"""

from enum import Enum
from typing import Tuple

from pydantic import BaseModel, ConfigDict, Field


class ChatRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """One message of a conversation; order in the conversation is significant"""
    role: ChatRole = Field(description="Speaker of the message")
    content: str = Field(description="Message text")
    images: Tuple[str, ...] = Field(default=(), description="Image data URLs or public URLs")

    model_config = ConfigDict(frozen=True)

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=ChatRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str, images: Tuple[str, ...] = ()) -> "ChatMessage":
        return cls(role=ChatRole.USER, content=content, images=images)

    def to_payload(self) -> dict:
        """Provider message shape; image messages become a content list."""
        if self.images:
            return {
                "role": self.role.value,
                "content": [
                    {"type": "text", "text": self.content},
                    *({"type": "image_url", "image_url": {"url": url}} for url in self.images),
                ],
            }
        return {"role": self.role.value, "content": self.content}
