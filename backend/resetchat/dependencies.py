"""Dependency injection providers for FastAPI.

Each provider lazily builds one shared instance from settings. Tests swap
them out through ``app.dependency_overrides``.
"""

from resetchat.config import settings
from resetchat.credentials import CredentialProvider, SettingsCredentialProvider
from resetchat.llm import ChatModelClient, OfflineChatClient, OpenAIChatClient
from resetchat.memory.base import ConversationStore
from resetchat.memory.chat_store import MongoConversationStore
from resetchat.memory.in_memory import InMemoryConversationStore
from resetchat.personality.loader import get_system_prompt, load_persona
from resetchat.pipeline.dispatcher import Dispatcher
from resetchat.responses.canned import CannedResponseGenerator

_store: ConversationStore | None = None
_generator: CannedResponseGenerator | None = None
_model_client: ChatModelClient | None = None
_credentials: CredentialProvider | None = None
_dispatcher: Dispatcher | None = None


def get_conversation_store() -> ConversationStore:
    """Return the configured ConversationStore instance."""
    global _store
    if _store is None:
        if settings.storage_backend == "mongodb":
            _store = MongoConversationStore(
                settings.mongodb_uri,
                settings.mongodb_database,
                settings.mongodb_collection,
                greeting_inactivity_hours=settings.greeting_inactivity_hours,
            )
        else:
            _store = InMemoryConversationStore(
                greeting_inactivity_hours=settings.greeting_inactivity_hours
            )
    return _store


def get_generator() -> CannedResponseGenerator:
    """Return singleton CannedResponseGenerator instance."""
    global _generator
    if _generator is None:
        _generator = CannedResponseGenerator()
    return _generator


def get_model_client() -> ChatModelClient:
    """Return the configured chat model client."""
    global _model_client
    if _model_client is None:
        if settings.chat_backend == "offline":
            _model_client = OfflineChatClient(get_generator())
        else:
            _model_client = OpenAIChatClient(settings)
    return _model_client


def get_credentials() -> CredentialProvider:
    """Return singleton credential provider."""
    global _credentials
    if _credentials is None:
        _credentials = SettingsCredentialProvider(settings)
    return _credentials


def get_dispatcher() -> Dispatcher:
    """Return singleton Dispatcher wired to the providers above."""
    global _dispatcher
    if _dispatcher is None:
        persona = load_persona()
        _dispatcher = Dispatcher(
            store=get_conversation_store(),
            model_client=get_model_client(),
            generator=get_generator(),
            credentials=get_credentials(),
            system_prompt=get_system_prompt(persona),
            api_key_name=settings.openai_api_key_name,
            history_window=settings.history_window,
            greetings=persona.get("greetings") or (),
        )
    return _dispatcher
