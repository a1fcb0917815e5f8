"""Shared test fixtures for the ResetNow chat backend."""

import asyncio
import random
from collections.abc import AsyncGenerator, Generator
from typing import Optional, Sequence

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from resetchat.credentials import StaticCredentialProvider
from resetchat.dependencies import (
    get_conversation_store,
    get_credentials,
    get_dispatcher,
    get_model_client,
)
from resetchat.main import app
from resetchat.memory.in_memory import InMemoryConversationStore
from resetchat.models.messages import ChatMessage, ResponseDraft
from resetchat.pipeline.dispatcher import Dispatcher
from resetchat.responses.canned import CannedResponseGenerator

TEST_API_KEY = "sk-test-key"
TEST_SYSTEM_PROMPT = "You are a calm, supportive companion."
TEST_GREETING = "Hi, I'm Rae. What's on your mind today?"


class StubModelClient:
    """Test double for ``ChatModelClient`` that records every call."""

    requires_credential = True

    def __init__(
        self,
        reply: str = "That sounds like a lot. What part feels heaviest?",
        error: Optional[Exception] = None,
        draft: Optional[ResponseDraft] = None,
        delays: Sequence[float] = (),
    ) -> None:
        self.reply = reply
        self.error = error
        self.draft = draft
        self.delays = list(delays)
        self.gate: Optional[asyncio.Event] = None
        self.calls: list[dict] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def complete(
        self,
        text: str,
        history: Sequence[ChatMessage],
        system_prompt: str,
        *,
        api_key: Optional[str] = None,
    ) -> ResponseDraft:
        self.calls.append(
            {
                "text": text,
                "history": list(history),
                "system_prompt": system_prompt,
                "api_key": api_key,
            }
        )
        if self.delays:
            await asyncio.sleep(self.delays.pop(0))
        if self.gate is not None and text == "wait for me":
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.draft is not None:
            return self.draft
        return ResponseDraft(text=self.reply)


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def generator() -> CannedResponseGenerator:
    return CannedResponseGenerator(rng=random.Random(1234))


@pytest.fixture
def model_client() -> StubModelClient:
    return StubModelClient()


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    return StaticCredentialProvider({"openai_api_key": TEST_API_KEY})


@pytest.fixture
def no_credentials() -> StaticCredentialProvider:
    return StaticCredentialProvider()


@pytest.fixture
def dispatcher(
    store: InMemoryConversationStore,
    model_client: StubModelClient,
    generator: CannedResponseGenerator,
    credentials: StaticCredentialProvider,
) -> Dispatcher:
    return Dispatcher(
        store=store,
        model_client=model_client,
        generator=generator,
        credentials=credentials,
        system_prompt=TEST_SYSTEM_PROMPT,
        greetings=[TEST_GREETING],
        rng=random.Random(7),
    )


@pytest.fixture
def api_overrides(
    store: InMemoryConversationStore,
    model_client: StubModelClient,
    credentials: StaticCredentialProvider,
    dispatcher: Dispatcher,
) -> Generator[None, None, None]:
    """Point the app's providers at the test doubles above."""
    app.dependency_overrides[get_conversation_store] = lambda: store
    app.dependency_overrides[get_model_client] = lambda: model_client
    app.dependency_overrides[get_credentials] = lambda: credentials
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(api_overrides: None) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
