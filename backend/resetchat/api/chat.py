"""Chat endpoints: one-shot REST send and a WebSocket for live chat."""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from resetchat.dependencies import get_conversation_store, get_dispatcher
from resetchat.memory.base import ConversationStore, SessionNotFoundError
from resetchat.models.messages import (
    ChatMessage,
    MessageType,
    OutgoingMessage,
    SendMessageRequest,
)
from resetchat.pipeline.dispatcher import Dispatcher

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{session_id}/messages", response_model=ChatMessage)
async def send_message(
    session_id: str,
    request: SendMessageRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> ChatMessage:
    """Send one user message and return the persisted assistant reply."""
    try:
        return await dispatcher.send(request.text, session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Session {exc.session_id} not found")
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


async def websocket_chat(
    websocket: WebSocket,
    dispatcher: Dispatcher = Depends(get_dispatcher),
    store: ConversationStore = Depends(get_conversation_store),
) -> None:
    """Handle WebSocket connections for real-time chat.

    Protocol:
        Client sends JSON: {"type": "text", "content": "..."}
        Server sends JSON: {"type": "text"|"status"|"error", "content": "...",
                            "session_id": "...", "safety_flag": ..., "suggested_topic": ...,
                            "timestamp": "..."}

    Without a ``session_id`` query parameter the active session is used,
    or a new one is created.
    """
    await websocket.accept()

    session_id = websocket.query_params.get("session_id")
    try:
        if session_id:
            await store.get_session(session_id)
        else:
            session_id = (await store.active_or_new_session()).session_id
    except SessionNotFoundError:
        await _send_message(websocket, MessageType.ERROR, "Unknown session", session_id)
        await websocket.close(code=4404)
        return

    logger.info("WebSocket connected: session_id=%s", session_id)
    await _send_message(websocket, MessageType.STATUS, "Connected", session_id)

    try:
        while True:
            raw = await websocket.receive_text()

            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await _send_message(websocket, MessageType.ERROR, "Invalid JSON", session_id)
                continue

            if not isinstance(data, dict):
                await _send_message(websocket, MessageType.ERROR, "Invalid JSON", session_id)
                continue

            msg_type = data.get("type", "text")
            content = data.get("content") or ""

            if msg_type == "text" and isinstance(content, str) and content.strip():
                await _handle_text_message(websocket, dispatcher, session_id, content)
            else:
                await _send_message(
                    websocket, MessageType.ERROR, "Empty or unsupported message", session_id
                )

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected: session_id=%s", session_id)


async def _handle_text_message(
    websocket: WebSocket,
    dispatcher: Dispatcher,
    session_id: str,
    content: str,
) -> None:
    """Run one message through the dispatcher and send the reply."""
    await _send_message(websocket, MessageType.STATUS, "Thinking...", session_id)

    try:
        reply = await dispatcher.send(content, session_id)
    except SessionNotFoundError:
        await _send_message(websocket, MessageType.ERROR, "Unknown session", session_id)
        return

    await websocket.send_json(
        OutgoingMessage(
            type=MessageType.TEXT,
            content=reply.text,
            session_id=session_id,
            safety_flag=reply.safety_flag,
            suggested_topic=reply.suggested_topic,
            timestamp=reply.created_at,
        ).model_dump(mode="json")
    )


async def _send_message(
    websocket: WebSocket,
    msg_type: MessageType,
    content: str,
    session_id: Optional[str],
) -> None:
    """Send a structured JSON message over the WebSocket."""
    payload = OutgoingMessage(type=msg_type, content=content, session_id=session_id)
    await websocket.send_json(payload.model_dump(mode="json"))
