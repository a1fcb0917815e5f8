"""Safety-gated dispatch of user messages.

Every message is screened locally before anything touches the network:

    Start -> Classified -> CrisisResolved
                        -> RemoteAttempted -> RemoteResolved | Degraded
                        -> Degraded (no credential)
          -> Persisted

Model failures never reach the caller. They degrade to the canned
generator, so ``send`` always produces a reply for a valid session.
"""

from __future__ import annotations

import asyncio
import logging
import random
import weakref
from enum import Enum
from typing import Callable, Optional, Sequence

from resetchat.credentials import CredentialProvider
from resetchat.llm.base import ChatModelClient, ModelClientError
from resetchat.memory.base import ConversationStore
from resetchat.models.messages import ChatMessage, ResponseDraft, Sender
from resetchat.models.sessions import Session
from resetchat.responses.canned import CannedResponseGenerator, crisis_draft
from resetchat.safety.classifier import ClassificationResult, detect

logger = logging.getLogger(__name__)


class Resolution(str, Enum):
    """How a reply was produced."""

    CRISIS_RESOLVED = "crisis_resolved"
    REMOTE_RESOLVED = "remote_resolved"
    DEGRADED = "degraded"


class Dispatcher:
    """Turns one user message into one persisted assistant reply.

    Calls for the same session are serialized in arrival order; different
    sessions never wait on each other.
    """

    def __init__(
        self,
        store: ConversationStore,
        model_client: ChatModelClient,
        generator: CannedResponseGenerator,
        credentials: CredentialProvider,
        system_prompt: str,
        *,
        classifier: Callable[[Optional[str]], ClassificationResult] = detect,
        api_key_name: str = "openai_api_key",
        history_window: int = 10,
        greetings: Sequence[str] = (),
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._model = model_client
        self._generator = generator
        self._credentials = credentials
        self._system_prompt = system_prompt
        self._classify = classifier
        self._api_key_name = api_key_name
        self._history_window = history_window
        self._greetings = list(greetings)
        self._rng = rng or random.Random()
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send(self, text: str, session_id: str) -> ChatMessage:
        """Persist ``text`` as a user message and return the assistant's reply.

        Args:
            text: The user's message. Must contain non-whitespace text.
            session_id: An existing session.

        Returns:
            The persisted assistant message.

        Model and network failures never raise; they degrade to a canned
        reply. The two exceptions below are caller preconditions, checked
        before anything is persisted or sent.

        Raises:
            ValueError: If ``text`` is blank. Persisted messages are never empty.
            SessionNotFoundError: If the session does not exist.
        """
        if not text or not text.strip():
            raise ValueError("Message text must not be empty")

        async with self._lock_for(session_id):
            return await self._dispatch(text, session_id)

    async def open_conversation(self) -> Session:
        """Return the active (or a new) session, greeting the user when due."""
        session = await self._store.active_or_new_session()

        async with self._lock_for(session.session_id):
            if self._greetings and await self._store.should_greet(session.session_id):
                greeting = self._rng.choice(self._greetings)
                await self._store.append(session.session_id, Sender.ASSISTANT, greeting)
                logger.info("Greeting added to session %s", session.session_id)

        return session

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def _dispatch(self, text: str, session_id: str) -> ChatMessage:
        # Classification happens before any I/O for this message.
        classification = self._classify(text)

        history = await self._store.messages_for(
            session_id, limit=self._history_window
        )
        await self._store.append(session_id, Sender.USER, text)

        if classification.is_crisis:
            logger.warning(
                "Crisis language detected in session %s; remote model bypassed",
                session_id,
            )
            draft, resolution = crisis_draft(), Resolution.CRISIS_RESOLVED
        else:
            draft, resolution = await self._respond(text, history)

        reply = await self._store.append(
            session_id,
            Sender.ASSISTANT,
            draft.text,
            safety_flag=draft.safety_flag,
            suggested_topic=draft.suggested_topic,
        )
        logger.info(
            "Reply persisted for session %s (%s, flag=%s)",
            session_id,
            resolution.value,
            draft.safety_flag.value if draft.safety_flag else None,
        )
        return reply

    async def _respond(
        self, text: str, history: Sequence[ChatMessage]
    ) -> tuple[ResponseDraft, Resolution]:
        api_key: Optional[str] = None
        if self._model.requires_credential:
            api_key = self._credentials.get_secret(self._api_key_name)
            if not api_key:
                logger.info("No API key available; answering from canned pools")
                return self._generator.generate(text, history), Resolution.DEGRADED

        try:
            draft = await self._model.complete(
                text, history, self._system_prompt, api_key=api_key
            )
        except ModelClientError as exc:
            logger.warning("Model client failed (%s); using canned fallback", exc.kind.value)
            return self._generator.generate(text, history), Resolution.DEGRADED
        except Exception:
            logger.exception("Unexpected model client failure; using canned fallback")
            return self._generator.generate(text, history), Resolution.DEGRADED

        if not draft.text.strip():
            logger.warning("Model client returned an empty reply; using canned fallback")
            return self._generator.generate(text, history), Resolution.DEGRADED

        return draft, Resolution.REMOTE_RESOLVED
