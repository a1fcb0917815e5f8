"""Tests for the safety-gated dispatch pipeline."""

import asyncio
import random

import httpx
import pytest

from resetchat.config import Settings
from resetchat.credentials import StaticCredentialProvider
from resetchat.llm import ClientErrorKind, ModelClientError, OfflineChatClient, OpenAIChatClient
from resetchat.memory.base import SessionNotFoundError
from resetchat.memory.in_memory import InMemoryConversationStore
from resetchat.models.messages import ResponseDraft, SafetyFlag, Sender
from resetchat.pipeline.dispatcher import Dispatcher
from resetchat.responses.canned import CannedResponseGenerator
from resetchat.safety.classifier import CRISIS_RESPONSE

from conftest import TEST_API_KEY, TEST_GREETING, TEST_SYSTEM_PROMPT, StubModelClient


def _all_canned_texts(generator: CannedResponseGenerator) -> set[str]:
    texts = generator.pool_texts("default")
    for group in generator.pools.groups:
        texts |= generator.pool_texts(group.name)
    return texts


def _dispatcher(
    store: InMemoryConversationStore,
    model_client,
    generator: CannedResponseGenerator,
    credentials: StaticCredentialProvider,
) -> Dispatcher:
    return Dispatcher(
        store=store,
        model_client=model_client,
        generator=generator,
        credentials=credentials,
        system_prompt=TEST_SYSTEM_PROMPT,
        rng=random.Random(3),
    )


def _remote_client(handler) -> OpenAIChatClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIChatClient(Settings(_env_file=None), client=http)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "text",
    [
        "I want to kill myself",
        "I WANT TO KILL MYSELF!!",
        "i feel like a burden",
        "I dont want to live anymore",
        "i cant go on",
        "I want to kill-myself",
    ],
)
async def test_crisis_message_bypasses_model(
    dispatcher: Dispatcher,
    store: InMemoryConversationStore,
    model_client: StubModelClient,
    text: str,
) -> None:
    session = await store.create_session()

    reply = await dispatcher.send(text, session.session_id)

    assert reply.text == CRISIS_RESPONSE
    assert reply.sender == Sender.ASSISTANT
    assert reply.safety_flag == SafetyFlag.CRISIS_DETECTED
    assert model_client.call_count == 0

    stored = await store.get_session(session.session_id)
    assert stored.crisis_flagged
    assert stored.crisis_flag_reason == "crisis_detected"


@pytest.mark.asyncio
async def test_remote_reply_is_returned_and_persisted(
    dispatcher: Dispatcher,
    store: InMemoryConversationStore,
    model_client: StubModelClient,
) -> None:
    session = await store.create_session()

    reply = await dispatcher.send("Work has been rough", session.session_id)

    assert reply.text == model_client.reply
    assert model_client.call_count == 1
    call = model_client.calls[0]
    assert call["api_key"] == TEST_API_KEY
    assert call["system_prompt"] == TEST_SYSTEM_PROMPT

    messages = await store.messages_for(session.session_id)
    assert [(m.sender, m.text) for m in messages] == [
        (Sender.USER, "Work has been rough"),
        (Sender.ASSISTANT, model_client.reply),
    ]


@pytest.mark.asyncio
async def test_remote_text_is_trimmed_completion(
    store: InMemoryConversationStore,
    generator: CannedResponseGenerator,
    credentials: StaticCredentialProvider,
) -> None:
    client = _remote_client(
        lambda request: httpx.Response(
            200,
            json={"choices": [{"message": {"content": "  Take a slow breath with me.\n"}}]},
        )
    )
    dispatcher = _dispatcher(store, client, generator, credentials)
    session = await store.create_session()

    reply = await dispatcher.send("I'm nervous about tomorrow", session.session_id)

    assert reply.text == "Take a slow breath with me."


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", list(ClientErrorKind))
async def test_client_errors_fall_back_to_canned(
    store: InMemoryConversationStore,
    generator: CannedResponseGenerator,
    credentials: StaticCredentialProvider,
    kind: ClientErrorKind,
) -> None:
    client = StubModelClient(error=ModelClientError(kind))
    dispatcher = _dispatcher(store, client, generator, credentials)
    session = await store.create_session()

    reply = await dispatcher.send("School is getting to me", session.session_id)

    assert client.call_count == 1
    assert reply.text in generator.pool_texts("work")
    assert reply.text.strip()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(503),
        lambda request: httpx.Response(200, text="{not json"),
        lambda request: httpx.Response(200, json={"choices": [{"message": {"content": ""}}]}),
    ],
)
async def test_send_never_fails_on_bad_responses(
    store: InMemoryConversationStore,
    generator: CannedResponseGenerator,
    credentials: StaticCredentialProvider,
    handler,
) -> None:
    dispatcher = _dispatcher(store, _remote_client(handler), generator, credentials)
    session = await store.create_session()

    reply = await dispatcher.send("I like turtles", session.session_id)

    assert reply.text in _all_canned_texts(generator)


@pytest.mark.asyncio
async def test_timeout_falls_back(
    store: InMemoryConversationStore,
    generator: CannedResponseGenerator,
    credentials: StaticCredentialProvider,
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    dispatcher = _dispatcher(store, _remote_client(handler), generator, credentials)
    session = await store.create_session()

    reply = await dispatcher.send("I can't sleep", session.session_id)

    assert reply.text in generator.pool_texts("sleep")


@pytest.mark.asyncio
async def test_rate_limit_falls_back_without_flagging_session(
    store: InMemoryConversationStore,
    generator: CannedResponseGenerator,
    credentials: StaticCredentialProvider,
) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(429, json={"error": {"message": "slow down"}})

    dispatcher = _dispatcher(store, _remote_client(handler), generator, credentials)
    session = await store.create_session()

    reply = await dispatcher.send("School is getting to me", session.session_id)

    assert len(requests) == 1
    assert reply.text in generator.pool_texts("work")
    assert reply.safety_flag is None
    assert not (await store.get_session(session.session_id)).crisis_flagged


@pytest.mark.asyncio
async def test_no_credential_uses_canned_without_calling_model(
    store: InMemoryConversationStore,
    model_client: StubModelClient,
    generator: CannedResponseGenerator,
    no_credentials: StaticCredentialProvider,
) -> None:
    dispatcher = _dispatcher(store, model_client, generator, no_credentials)
    session = await store.create_session()

    reply = await dispatcher.send("I can't sleep, it's 3am", session.session_id)

    assert model_client.call_count == 0
    assert reply.text in generator.pool_texts("sleep")


@pytest.mark.asyncio
async def test_blank_credential_counts_as_missing(
    store: InMemoryConversationStore,
    model_client: StubModelClient,
    generator: CannedResponseGenerator,
) -> None:
    credentials = StaticCredentialProvider({"openai_api_key": ""})
    dispatcher = _dispatcher(store, model_client, generator, credentials)
    session = await store.create_session()

    await dispatcher.send("hello", session.session_id)

    assert model_client.call_count == 0


@pytest.mark.asyncio
async def test_offline_client_needs_no_credential(
    store: InMemoryConversationStore,
    generator: CannedResponseGenerator,
    no_credentials: StaticCredentialProvider,
) -> None:
    dispatcher = _dispatcher(
        store, OfflineChatClient(generator), generator, no_credentials
    )
    session = await store.create_session()

    reply = await dispatcher.send("I'm so anxious", session.session_id)

    assert reply.text in generator.pool_texts("anxiety")


@pytest.mark.asyncio
async def test_unexpected_client_failure_falls_back(
    store: InMemoryConversationStore,
    generator: CannedResponseGenerator,
    credentials: StaticCredentialProvider,
) -> None:
    client = StubModelClient(error=RuntimeError("boom"))
    dispatcher = _dispatcher(store, client, generator, credentials)
    session = await store.create_session()

    reply = await dispatcher.send("I like turtles", session.session_id)

    assert reply.text in generator.pool_texts("default")


@pytest.mark.asyncio
async def test_empty_model_reply_falls_back(
    store: InMemoryConversationStore,
    generator: CannedResponseGenerator,
    credentials: StaticCredentialProvider,
) -> None:
    client = StubModelClient(reply="   ")
    dispatcher = _dispatcher(store, client, generator, credentials)
    session = await store.create_session()

    reply = await dispatcher.send("I like turtles", session.session_id)

    assert reply.text in generator.pool_texts("default")


@pytest.mark.asyncio
async def test_model_crisis_mention_flags_session(
    store: InMemoryConversationStore,
    generator: CannedResponseGenerator,
    credentials: StaticCredentialProvider,
) -> None:
    draft = ResponseDraft(
        text="If things ever feel hopeless, you can text 988.",
        safety_flag=SafetyFlag.CRISIS_MENTIONED,
    )
    dispatcher = _dispatcher(store, StubModelClient(draft=draft), generator, credentials)
    session = await store.create_session()

    reply = await dispatcher.send("Rough week", session.session_id)

    assert reply.text == draft.text
    assert reply.safety_flag == SafetyFlag.CRISIS_MENTIONED
    stored = await store.get_session(session.session_id)
    assert stored.crisis_flagged
    assert stored.crisis_flag_reason == "crisis_mentioned"


@pytest.mark.asyncio
async def test_crisis_flag_is_never_cleared(
    dispatcher: Dispatcher, store: InMemoryConversationStore
) -> None:
    session = await store.create_session()

    await dispatcher.send("I want to kill myself", session.session_id)
    await dispatcher.send("Thanks for listening", session.session_id)
    await dispatcher.send("I feel a bit calmer", session.session_id)

    assert (await store.get_session(session.session_id)).crisis_flagged


@pytest.mark.asyncio
async def test_history_excludes_message_being_answered(
    dispatcher: Dispatcher,
    store: InMemoryConversationStore,
    model_client: StubModelClient,
) -> None:
    session = await store.create_session()

    await dispatcher.send("first message", session.session_id)
    await dispatcher.send("second message", session.session_id)

    first, second = model_client.calls
    assert first["history"] == []
    assert second["text"] == "second message"
    assert [m.text for m in second["history"]] == ["first message", model_client.reply]


@pytest.mark.asyncio
async def test_concurrent_sends_keep_call_order(
    store: InMemoryConversationStore,
    generator: CannedResponseGenerator,
    credentials: StaticCredentialProvider,
) -> None:
    # The first call is slower; without serialization it would finish last.
    client = StubModelClient(delays=[0.05, 0.0])
    dispatcher = _dispatcher(store, client, generator, credentials)
    session = await store.create_session()

    await asyncio.gather(
        dispatcher.send("first tap", session.session_id),
        dispatcher.send("second tap", session.session_id),
    )

    messages = await store.messages_for(session.session_id)
    assert [(m.sender, m.text) for m in messages] == [
        (Sender.USER, "first tap"),
        (Sender.ASSISTANT, client.reply),
        (Sender.USER, "second tap"),
        (Sender.ASSISTANT, client.reply),
    ]
    assert [m.text for m in client.calls[1]["history"]] == ["first tap", client.reply]
    timestamps = [m.created_at for m in messages]
    assert timestamps == sorted(timestamps)
    assert len(set(timestamps)) == len(timestamps)


@pytest.mark.asyncio
async def test_sessions_do_not_block_each_other(
    store: InMemoryConversationStore,
    generator: CannedResponseGenerator,
    credentials: StaticCredentialProvider,
) -> None:
    client = StubModelClient()
    client.gate = asyncio.Event()
    dispatcher = _dispatcher(store, client, generator, credentials)
    blocked = await store.create_session()
    other = await store.create_session()

    pending = asyncio.create_task(dispatcher.send("wait for me", blocked.session_id))
    await asyncio.sleep(0)

    reply = await asyncio.wait_for(
        dispatcher.send("hello", other.session_id), timeout=1.0
    )
    assert reply.text == client.reply
    assert not pending.done()

    client.gate.set()
    await asyncio.wait_for(pending, timeout=1.0)


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
async def test_blank_text_is_rejected(
    dispatcher: Dispatcher,
    store: InMemoryConversationStore,
    model_client: StubModelClient,
    text: str,
) -> None:
    session = await store.create_session()

    with pytest.raises(ValueError):
        await dispatcher.send(text, session.session_id)

    assert await store.messages_for(session.session_id) == []
    assert model_client.call_count == 0


@pytest.mark.asyncio
async def test_unknown_session_is_rejected(
    dispatcher: Dispatcher, model_client: StubModelClient
) -> None:
    with pytest.raises(SessionNotFoundError):
        await dispatcher.send("hello", "missing")

    assert model_client.call_count == 0


@pytest.mark.asyncio
async def test_open_conversation_greets_once(
    dispatcher: Dispatcher, store: InMemoryConversationStore
) -> None:
    session = await dispatcher.open_conversation()
    again = await dispatcher.open_conversation()

    assert again.session_id == session.session_id
    messages = await store.messages_for(session.session_id)
    assert [(m.sender, m.text) for m in messages] == [(Sender.ASSISTANT, TEST_GREETING)]


@pytest.mark.asyncio
async def test_open_conversation_after_end_starts_fresh(
    dispatcher: Dispatcher, store: InMemoryConversationStore
) -> None:
    first = await dispatcher.open_conversation()
    await store.end_session(first.session_id)

    second = await dispatcher.open_conversation()

    assert second.session_id != first.session_id
    assert len(await store.messages_for(first.session_id)) == 1
