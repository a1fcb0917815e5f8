"""MongoDB conversation store - single document per session.

All messages of a session live in one document, so pushing a flagged
message and raising the session's crisis flag is a single atomic update.

Document schema::

    {
        "session_id": "3f2a...",
        "created_at": ISODate("2026-02-08T10:30:00Z"),
        "ended_at": null,
        "crisis_flagged": true,
        "crisis_flag_reason": "crisis_detected",
        "last_message_at": ISODate("2026-02-08T10:30:02Z"),
        "messages": [
            {
                "id": "9c1e...",
                "sender": "user",
                "text": "I can't sleep",
                "created_at": ISODate("2026-02-08T10:30:00Z"),
                "safety_flag": null,
                "suggested_topic": null
            }
        ]
    }
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo import DESCENDING, ReturnDocument

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

COLLECTION_NAME = "chat_sessions"

# BSON dates carry millisecond precision.
_BSON_RESOLUTION = timedelta(milliseconds=1)


def _to_bson_time(value: datetime) -> datetime:
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _message_to_doc(message: ChatMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "sender": message.sender.value,
        "text": message.text,
        "created_at": message.created_at,
        "safety_flag": message.safety_flag.value if message.safety_flag else None,
        "suggested_topic": (
            message.suggested_topic.value if message.suggested_topic else None
        ),
    }


def _doc_to_message(session_id: str, entry: dict[str, Any]) -> ChatMessage:
    return ChatMessage(
        id=entry["id"],
        session_id=session_id,
        sender=Sender(entry["sender"]),
        text=entry["text"],
        created_at=_aware(entry["created_at"]),
        safety_flag=entry.get("safety_flag"),
        suggested_topic=entry.get("suggested_topic"),
    )


def _doc_to_session(doc: dict[str, Any]) -> Session:
    return Session(
        session_id=doc["session_id"],
        created_at=_aware(doc["created_at"]),
        ended_at=_aware(doc.get("ended_at")),
        crisis_flagged=doc.get("crisis_flagged", False),
        crisis_flag_reason=doc.get("crisis_flag_reason"),
    )


_SESSION_FIELDS = {
    "_id": 0,
    "session_id": 1,
    "created_at": 1,
    "ended_at": 1,
    "crisis_flagged": 1,
    "crisis_flag_reason": 1,
}


class MongoConversationStore(ConversationStore):
    """MongoDB conversation store via motor.

    Lifecycle:
        store = MongoConversationStore(uri, database)
        await store.initialize()   # call once at startup
        ...
        await store.close()        # call once at shutdown
    """

    def __init__(
        self,
        connection_string: str,
        database_name: str,
        collection_name: str = COLLECTION_NAME,
        greeting_inactivity_hours: float = 6.0,
        client: Any = None,
    ) -> None:
        super().__init__(greeting_inactivity_hours)
        self._connection_string = connection_string
        self._database_name = database_name
        self._collection_name = collection_name
        self._client = client
        self._owns_client = client is None
        self._collection: AsyncIOMotorCollection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Connect to MongoDB and ensure indexes."""
        if self._collection is not None:
            logger.warning("MongoConversationStore already initialized - skipping")
            return

        if self._client is None:
            logger.info("Connecting to MongoDB at %s", self._connection_string)
            self._client = AsyncIOMotorClient(
                self._connection_string,
                serverSelectionTimeoutMS=5_000,
                tz_aware=True,
            )
            await self._client.admin.command("ping")
            logger.info("MongoDB connection established")

        db: AsyncIOMotorDatabase = self._client[self._database_name]
        self._collection = db[self._collection_name]

        await self._collection.create_index("session_id", unique=True)
        await self._collection.create_index(
            [("ended_at", 1), ("created_at", DESCENDING)]
        )
        logger.info(
            "MongoConversationStore ready (%s.%s)",
            self._database_name,
            self._collection_name,
        )

    async def close(self) -> None:
        """Release the connection."""
        if self._client is not None and self._owns_client:
            self._client.close()
            logger.info("MongoDB connection closed")
        self._collection = None

    async def ping(self) -> None:
        """Round-trip to the server; raises if it is unreachable."""
        if self._client is None:
            raise RuntimeError(
                "MongoConversationStore not initialized - call initialize() first"
            )
        await self._client.admin.command("ping")

    @property
    def collection(self) -> AsyncIOMotorCollection:
        if self._collection is None:
            raise RuntimeError(
                "MongoConversationStore not initialized - call initialize() first"
            )
        return self._collection

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self) -> Session:
        session = Session(created_at=_to_bson_time(utc_now()))
        await self.collection.insert_one(
            {
                "session_id": session.session_id,
                "created_at": session.created_at,
                "ended_at": None,
                "crisis_flagged": False,
                "crisis_flag_reason": None,
                "last_message_at": None,
                "messages": [],
            }
        )
        logger.info("Created session %s", session.session_id)
        return session

    async def get_session(self, session_id: str) -> Session:
        doc = await self.collection.find_one(
            {"session_id": session_id}, _SESSION_FIELDS
        )
        if doc is None:
            raise SessionNotFoundError(session_id)
        return _doc_to_session(doc)

    async def end_session(self, session_id: str) -> Session:
        doc = await self.collection.find_one_and_update(
            {"session_id": session_id, "ended_at": None},
            {"$set": {"ended_at": _to_bson_time(utc_now())}},
            projection=_SESSION_FIELDS,
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            # Either unknown or already ended; get_session tells them apart.
            return await self.get_session(session_id)
        logger.info("Ended session %s", session_id)
        return _doc_to_session(doc)

    async def list_sessions(self, limit: int = 50) -> list[SessionSummary]:
        cursor = (
            self.collection.find({}, {"_id": 0, "last_message_at": 0})
            .sort("created_at", DESCENDING)
            .limit(limit)
        )

        summaries = []
        async for doc in cursor:
            summaries.append(
                SessionSummary(
                    session_id=doc["session_id"],
                    created_at=_aware(doc["created_at"]),
                    ended_at=_aware(doc.get("ended_at")),
                    crisis_flagged=doc.get("crisis_flagged", False),
                    message_count=len(doc.get("messages", [])),
                )
            )
        return summaries

    async def active_or_new_session(self) -> Session:
        cursor = (
            self.collection.find({"ended_at": None}, _SESSION_FIELDS)
            .sort("created_at", DESCENDING)
            .limit(1)
        )
        async for doc in cursor:
            return _doc_to_session(doc)
        return await self.create_session()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def append(
        self,
        session_id: str,
        sender: Sender,
        text: str,
        safety_flag: Optional[SafetyFlag] = None,
        suggested_topic: Optional[SuggestedTopic] = None,
    ) -> ChatMessage:
        last = await self.last_message_at(session_id)
        created_at = next_timestamp(
            last, _to_bson_time(utc_now()), resolution=_BSON_RESOLUTION
        )
        message = ChatMessage(
            session_id=session_id,
            sender=sender,
            text=text,
            created_at=created_at,
            safety_flag=safety_flag,
            suggested_topic=suggested_topic,
        )

        fields: dict[str, Any] = {"last_message_at": created_at}
        if safety_flag is not None:
            fields["crisis_flagged"] = True
            fields["crisis_flag_reason"] = safety_flag.value

        result = await self.collection.update_one(
            {"session_id": session_id},
            {"$push": {"messages": _message_to_doc(message)}, "$set": fields},
        )
        if result.matched_count == 0:
            raise SessionNotFoundError(session_id)

        if safety_flag is not None:
            logger.warning("Session %s flagged (%s)", session_id, safety_flag.value)
        return message

    async def messages_for(
        self, session_id: str, limit: Optional[int] = None
    ) -> list[ChatMessage]:
        doc = await self.collection.find_one(
            {"session_id": session_id}, {"_id": 0, "messages": 1}
        )
        if doc is None:
            raise SessionNotFoundError(session_id)

        entries = doc.get("messages") or []
        if limit:
            entries = entries[-limit:]
        return [_doc_to_message(session_id, entry) for entry in entries]

    async def last_message_at(self, session_id: str) -> Optional[datetime]:
        doc = await self.collection.find_one(
            {"session_id": session_id}, {"_id": 0, "last_message_at": 1}
        )
        if doc is None:
            raise SessionNotFoundError(session_id)
        return _aware(doc.get("last_message_at"))
