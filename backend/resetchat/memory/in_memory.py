"""Simple in-memory conversation store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from resetchat.memory.base import ConversationStore, SessionNotFoundError, next_timestamp
from resetchat.models.messages import (
    ChatMessage,
    SafetyFlag,
    Sender,
    SuggestedTopic,
    utc_now,
)
from resetchat.models.sessions import Session, SessionSummary

logger = logging.getLogger(__name__)


class InMemoryConversationStore(ConversationStore):
    """Keep sessions and messages in process memory.

    No method awaits in the middle of a mutation, so each call is atomic
    with respect to other coroutines on the same event loop.
    """

    def __init__(self, greeting_inactivity_hours: float = 6.0) -> None:
        super().__init__(greeting_inactivity_hours)
        self._sessions: Dict[str, Session] = {}
        self._messages: Dict[str, List[ChatMessage]] = {}

    def _get(self, session_id: str) -> Session:
        state = self._sessions.get(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        return state

    async def create_session(self) -> Session:
        session = Session()
        self._sessions[session.session_id] = session
        self._messages[session.session_id] = []
        logger.info("Created session %s", session.session_id)
        return session.model_copy()

    async def get_session(self, session_id: str) -> Session:
        return self._get(session_id).model_copy()

    async def end_session(self, session_id: str) -> Session:
        """Mark a session as ended while keeping its contents."""
        state = self._get(session_id)
        if state.ended_at is None:
            state.ended_at = utc_now()
            logger.info("Ended session %s", session_id)
        return state.model_copy()

    async def list_sessions(self, limit: int = 50) -> list[SessionSummary]:
        recent = list(reversed(self._sessions.values()))[:limit]
        return [
            SessionSummary(
                session_id=s.session_id,
                created_at=s.created_at,
                ended_at=s.ended_at,
                crisis_flagged=s.crisis_flagged,
                message_count=len(self._messages[s.session_id]),
            )
            for s in recent
        ]

    async def append(
        self,
        session_id: str,
        sender: Sender,
        text: str,
        safety_flag: Optional[SafetyFlag] = None,
        suggested_topic: Optional[SuggestedTopic] = None,
    ) -> ChatMessage:
        state = self._get(session_id)
        history = self._messages[session_id]
        last = history[-1].created_at if history else None

        message = ChatMessage(
            session_id=session_id,
            sender=sender,
            text=text,
            created_at=next_timestamp(last, utc_now()),
            safety_flag=safety_flag,
            suggested_topic=suggested_topic,
        )
        history.append(message)

        if safety_flag is not None:
            state.crisis_flagged = True
            state.crisis_flag_reason = safety_flag.value
            logger.warning(
                "Session %s flagged (%s)", session_id, safety_flag.value
            )
        return message

    async def messages_for(
        self, session_id: str, limit: Optional[int] = None
    ) -> list[ChatMessage]:
        self._get(session_id)
        history = self._messages[session_id]
        return list(history[-limit:]) if limit else list(history)

    async def last_message_at(self, session_id: str) -> Optional[datetime]:
        self._get(session_id)
        history = self._messages[session_id]
        return history[-1].created_at if history else None

    async def active_or_new_session(self) -> Session:
        for state in reversed(self._sessions.values()):
            if state.is_open:
                return state.model_copy()
        return await self.create_session()
