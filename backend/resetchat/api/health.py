"""Health check endpoint for infrastructure monitoring."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from resetchat.config import Settings, get_settings
from resetchat.credentials import CredentialProvider
from resetchat.dependencies import (
    get_conversation_store,
    get_credentials,
    get_model_client,
)
from resetchat.llm import ChatModelClient
from resetchat.memory.base import ConversationStore
from resetchat.memory.chat_store import MongoConversationStore

logger = logging.getLogger(__name__)
router = APIRouter()


async def _check_storage(store: ConversationStore) -> dict[str, Any]:
    """Ping the storage backend and return status."""
    backend = "mongodb" if isinstance(store, MongoConversationStore) else "memory"
    if not isinstance(store, MongoConversationStore):
        return {"status": "healthy", "backend": backend}
    try:
        await store.ping()
        return {"status": "healthy", "backend": backend}
    except Exception as exc:
        logger.warning("MongoDB health check failed: %s", exc)
        return {"status": "unhealthy", "backend": backend, "error": str(exc)}


def _check_model(
    client: ChatModelClient,
    credentials: CredentialProvider,
    settings: Settings,
) -> dict[str, Any]:
    """Report whether replies can come from the remote model."""
    if not client.requires_credential:
        return {"status": "healthy", "mode": "offline"}
    if credentials.get_secret(settings.openai_api_key_name):
        return {"status": "healthy", "mode": "remote", "model": settings.openai_model}
    # Still answers, from canned pools.
    return {"status": "degraded", "mode": "fallback", "error": "API key not configured"}


@router.get("")
async def health_check(
    settings: Settings = Depends(get_settings),
    store: ConversationStore = Depends(get_conversation_store),
    client: ChatModelClient = Depends(get_model_client),
    credentials: CredentialProvider = Depends(get_credentials),
) -> dict[str, Any]:
    """Return aggregate health of the chat pipeline."""
    services = {
        "storage": await _check_storage(store),
        "model": _check_model(client, credentials, settings),
    }

    overall = (
        "healthy"
        if all(s["status"] == "healthy" for s in services.values())
        else "degraded"
    )

    return {
        "status": overall,
        "services": services,
    }
