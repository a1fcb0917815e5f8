"""Message models for the chat pipeline and its API."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Sender(str, Enum):
    """Message sender."""

    USER = "user"
    ASSISTANT = "assistant"


class SafetyFlag(str, Enum):
    """Safety annotation attached to a message."""

    CRISIS_DETECTED = "crisis_detected"
    CRISIS_MENTIONED = "crisis_mentioned"
    SENSITIVE_TOPIC = "sensitive_topic"


class SuggestedTopic(str, Enum):
    """Follow-up exercise the UI may offer next to a reply."""

    BREATHE = "breathe"
    VISUALIZE = "visualize"
    SLEEP = "sleep"
    GAMES = "games"
    AFFIRM = "affirm"
    JOURNAL = "journal"


class ResponseDraft(BaseModel):
    """An assistant reply that has not been persisted yet."""

    text: str
    safety_flag: Optional[SafetyFlag] = None
    suggested_topic: Optional[SuggestedTopic] = None


class ChatMessage(BaseModel):
    """Persisted chat message. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    session_id: str
    sender: Sender
    text: str = Field(min_length=1)
    created_at: datetime = Field(default_factory=utc_now)
    safety_flag: Optional[SafetyFlag] = None
    suggested_topic: Optional[SuggestedTopic] = None


class SendMessageRequest(BaseModel):
    """Body of ``POST /api/sessions/{session_id}/messages``."""

    text: str = Field(min_length=1, max_length=4000)


class HistoryResponse(BaseModel):
    """Ordered messages of one session."""

    session_id: str
    messages: list[ChatMessage]


class MessageType(str, Enum):
    """WebSocket message type discriminator."""

    TEXT = "text"
    STATUS = "status"
    ERROR = "error"


class OutgoingMessage(BaseModel):
    """Message sent to client via WebSocket."""

    type: MessageType
    content: Optional[str] = None
    session_id: Optional[str] = None
    safety_flag: Optional[SafetyFlag] = None
    suggested_topic: Optional[SuggestedTopic] = None
    timestamp: datetime = Field(default_factory=utc_now)
