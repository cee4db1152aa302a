"""Data models for the LLM library."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """Conversation roles as stored in a history."""
    USER = "user"
    MODEL = "model"


@dataclass
class ChatMessage:
    """One message of a conversation history."""
    role: Role
    content: str
    thinking: Optional[str] = None  # Only on model messages of a persona turn

    def to_api(self) -> dict:
        """Wire shape; the model role is sent as 'assistant'."""
        role = "assistant" if self.role == Role.MODEL else "user"
        return {"role": role, "content": self.content}

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "content": self.content,
            "thinking": self.thinking,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChatMessage":
        return cls(
            role=Role(data["role"]),
            content=data["content"],
            thinking=data.get("thinking"),
        )

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def model(cls, content: str, thinking: Optional[str] = None) -> "ChatMessage":
        return cls(role=Role.MODEL, content=content, thinking=thinking)


@dataclass
class ChatOptions:
    """Sampling and format options for one chat-completion request."""
    temperature: float
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    json_mode: bool = False

    def to_payload(self) -> dict:
        payload = {"temperature": self.temperature}
        if self.top_p is not None:
            payload["top_p"] = self.top_p
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        if self.json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload
