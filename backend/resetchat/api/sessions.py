"""Session management endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from resetchat.dependencies import get_conversation_store, get_dispatcher
from resetchat.memory.base import ConversationStore, SessionNotFoundError
from resetchat.models.messages import HistoryResponse
from resetchat.models.sessions import GreetingStatus, Session, SessionSummary
from resetchat.pipeline.dispatcher import Dispatcher

logger = logging.getLogger(__name__)
router = APIRouter()


def _not_found(exc: SessionNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Session {exc.session_id} not found")


@router.get("", response_model=list[SessionSummary])
async def list_sessions(
    limit: int = Query(50, ge=1, le=200),
    store: ConversationStore = Depends(get_conversation_store),
) -> list[SessionSummary]:
    """Return recent chat sessions, newest first."""
    return await store.list_sessions(limit=limit)


@router.post("", response_model=Session, status_code=201)
async def create_session(
    store: ConversationStore = Depends(get_conversation_store),
) -> Session:
    """Start a new, empty session."""
    return await store.create_session()


@router.post("/active", response_model=Session)
async def open_active_session(
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> Session:
    """Return the open session (creating one if needed), greeting the user when due."""
    return await dispatcher.open_conversation()


@router.get("/{session_id}", response_model=Session)
async def get_session(
    session_id: str,
    store: ConversationStore = Depends(get_conversation_store),
) -> Session:
    try:
        return await store.get_session(session_id)
    except SessionNotFoundError as exc:
        raise _not_found(exc)


@router.get("/{session_id}/history", response_model=HistoryResponse)
async def get_session_history(
    session_id: str,
    store: ConversationStore = Depends(get_conversation_store),
) -> HistoryResponse:
    """Return the full message history for a session, oldest first."""
    try:
        messages = await store.messages_for(session_id)
    except SessionNotFoundError as exc:
        raise _not_found(exc)

    return HistoryResponse(session_id=session_id, messages=messages)


@router.get("/{session_id}/greeting", response_model=GreetingStatus)
async def get_greeting_status(
    session_id: str,
    store: ConversationStore = Depends(get_conversation_store),
) -> GreetingStatus:
    """Tell the UI whether this session should open with a greeting."""
    try:
        should_greet = await store.should_greet(session_id)
    except SessionNotFoundError as exc:
        raise _not_found(exc)

    return GreetingStatus(session_id=session_id, should_greet=should_greet)


@router.post("/{session_id}/end", response_model=Session)
async def end_session(
    session_id: str,
    store: ConversationStore = Depends(get_conversation_store),
) -> Session:
    """Close a session. Its history is kept."""
    try:
        return await store.end_session(session_id)
    except SessionNotFoundError as exc:
        raise _not_found(exc)
