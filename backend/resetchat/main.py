"""FastAPI application entry point with lifespan management."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from resetchat.api.chat import websocket_chat
from resetchat.api.router import api_router
from resetchat.config import settings
from resetchat.dependencies import get_conversation_store, get_model_client
from resetchat.llm import OpenAIChatClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    logger.info("Starting ResetNow chat backend...")

    store = get_conversation_store()
    await store.initialize()
    logger.info("Conversation store initialized (%s)", settings.storage_backend)

    model_client = get_model_client()
    if isinstance(model_client, OpenAIChatClient):
        await model_client.initialize()
    logger.info("Chat model client ready (%s)", settings.chat_backend)

    yield

    if isinstance(model_client, OpenAIChatClient):
        await model_client.close()
    await store.close()
    logger.info("ResetNow chat backend shut down cleanly")


app = FastAPI(
    title="ResetNow Chat API",
    description="Safety-gated supportive chat with canned fallback replies",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")

# Kept outside /api to match the frontend's socket URL
app.websocket("/ws/chat")(websocket_chat)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
