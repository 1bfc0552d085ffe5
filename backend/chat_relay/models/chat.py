"""
Pydantic models for the chat relay.

Models:
  Role          - the three roles the model API understands
  Message       - one conversation turn
  ChatRequest   - validated inbound body for POST /chat
  ModelReply    - completed language-model reply
  EmailIntent   - fields extracted from a reply that asks to create an email
  ChatResponse  - non-streaming response body
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    role: Role = Role.USER
    content: str = ""


class ChatRequest(BaseModel):
    """
    Inbound chat body after validation.

    ``messages`` has already been through the conversation formatter, so
    every entry is a well-typed Message.
    """
    messages: List[Message]
    stream: bool = False


class ModelReply(BaseModel):
    text: str
    model: str
    usage: Dict[str, int] = Field(default_factory=dict)
    stop_reason: Optional[str] = None


class EmailIntent(BaseModel):
    """Name/subject/body extracted from a reply, with defaults already applied."""
    name: str
    subject: str
    body_description: str


class ChatResponse(BaseModel):
    content: str
    mceResult: Optional[Dict[str, Any]] = None
    model: str
