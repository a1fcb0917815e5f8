"""Chat model clients - remote completions via REST and a local offline fallback."""

from .base import ChatModelClient, ClientErrorKind, ModelClientError, build_messages
from .offline import OfflineChatClient
from .openai_client import OpenAIChatClient

__all__ = [
    "ChatModelClient",
    "ClientErrorKind",
    "ModelClientError",
    "OfflineChatClient",
    "OpenAIChatClient",
    "build_messages",
]
