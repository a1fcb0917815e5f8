"""Shared contract for chat model clients."""

from __future__ import annotations

from enum import Enum
from typing import Protocol, Sequence, runtime_checkable

from resetchat.models.messages import ChatMessage, ResponseDraft, Sender


class ClientErrorKind(str, Enum):
    """Why a remote completion produced no usable reply."""

    NETWORK_ERROR = "network_error"
    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    INVALID_RESPONSE = "invalid_response"


class ModelClientError(Exception):
    """Raised by a model client instead of returning a draft."""

    def __init__(
        self,
        kind: ClientErrorKind,
        detail: str = "",
        status_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        message = kind.value if not detail else f"{kind.value}: {detail}"
        super().__init__(message)


@runtime_checkable
class ChatModelClient(Protocol):
    """A source of assistant replies.

    ``requires_credential`` tells the dispatcher whether an API key must be
    available before ``complete`` may be called at all.
    """

    requires_credential: bool

    async def complete(
        self,
        text: str,
        history: Sequence[ChatMessage],
        system_prompt: str,
        *,
        api_key: str | None = None,
    ) -> ResponseDraft: ...


def build_messages(
    text: str,
    history: Sequence[ChatMessage],
    system_prompt: str,
    window: int = 10,
) -> list[dict[str, str]]:
    """Construct the chat-completion message list.

    One system instruction, then at most ``window`` prior messages (oldest
    first), then the message being answered.
    """
    messages = [{"role": "system", "content": system_prompt}]

    recent = list(history)[-window:] if window > 0 else []
    for msg in recent:
        role = "user" if msg.sender == Sender.USER else "assistant"
        messages.append({"role": role, "content": msg.text})

    messages.append({"role": "user", "content": text})
    return messages
