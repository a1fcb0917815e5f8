"""Conversation store contract shared by all storage backends."""

from __future__ import annotations

import abc
from datetime import datetime, timedelta
from typing import Optional

from resetchat.models.messages import (
    ChatMessage,
    SafetyFlag,
    Sender,
    SuggestedTopic,
    utc_now,
)
from resetchat.models.sessions import Session, SessionSummary

DEFAULT_GREETING_INACTIVITY_HOURS = 6.0


class SessionNotFoundError(KeyError):
    """Raised when a session id does not reference a stored session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


def next_timestamp(
    last: Optional[datetime],
    now: datetime,
    resolution: timedelta = timedelta(microseconds=1),
) -> datetime:
    """Return a creation time strictly after ``last``.

    Two appends inside one clock tick would otherwise share a timestamp and
    lose their order.
    """
    if last is not None and now <= last:
        return last + resolution
    return now


def greeting_due(
    last_message_at: Optional[datetime],
    now: datetime,
    inactivity_hours: float = DEFAULT_GREETING_INACTIVITY_HOURS,
) -> bool:
    """True for an empty session, a last message from an earlier day, or a long pause."""
    if last_message_at is None:
        return True
    if last_message_at.astimezone().date() != now.astimezone().date():
        return True
    return now - last_message_at > timedelta(hours=inactivity_hours)


class ConversationStore(abc.ABC):
    """Append-only store of sessions and their messages.

    Appending a message that carries a safety flag also marks the owning
    session as crisis-flagged, and both changes become visible together.
    """

    def __init__(
        self, greeting_inactivity_hours: float = DEFAULT_GREETING_INACTIVITY_HOURS
    ) -> None:
        self._greeting_inactivity_hours = greeting_inactivity_hours

    async def initialize(self) -> None:
        """Prepare the backend; call once at startup."""

    async def close(self) -> None:
        """Release backend resources; call once at shutdown."""

    @abc.abstractmethod
    async def create_session(self) -> Session: ...

    @abc.abstractmethod
    async def get_session(self, session_id: str) -> Session: ...

    @abc.abstractmethod
    async def end_session(self, session_id: str) -> Session: ...

    @abc.abstractmethod
    async def list_sessions(self, limit: int = 50) -> list[SessionSummary]: ...

    @abc.abstractmethod
    async def append(
        self,
        session_id: str,
        sender: Sender,
        text: str,
        safety_flag: Optional[SafetyFlag] = None,
        suggested_topic: Optional[SuggestedTopic] = None,
    ) -> ChatMessage: ...

    @abc.abstractmethod
    async def messages_for(
        self, session_id: str, limit: Optional[int] = None
    ) -> list[ChatMessage]:
        """Messages of a session oldest first; ``limit`` keeps the newest ones."""

    @abc.abstractmethod
    async def last_message_at(self, session_id: str) -> Optional[datetime]: ...

    @abc.abstractmethod
    async def active_or_new_session(self) -> Session:
        """Most recently created open session, created if none exists."""

    async def should_greet(
        self, session_id: str, now: Optional[datetime] = None
    ) -> bool:
        last = await self.last_message_at(session_id)
        return greeting_due(last, now or utc_now(), self._greeting_inactivity_hours)
