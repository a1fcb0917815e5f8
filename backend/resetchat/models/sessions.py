"""Session models for conversation management."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from resetchat.models.messages import utc_now


class Session(BaseModel):
    """Conversation session metadata.

    ``crisis_flagged`` only ever moves from ``False`` to ``True``.
    """

    session_id: str = Field(default_factory=lambda: uuid4().hex)
    created_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    crisis_flagged: bool = False
    crisis_flag_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class SessionSummary(BaseModel):
    """Summary of a session for list views."""

    session_id: str
    created_at: datetime
    ended_at: Optional[datetime] = None
    crisis_flagged: bool = False
    message_count: int = 0


class GreetingStatus(BaseModel):
    """Whether the UI should open the session with a greeting."""

    session_id: str
    should_greet: bool
