"""Model client that answers locally from the canned reply pools."""

from typing import Sequence

from resetchat.models.messages import ChatMessage, ResponseDraft
from resetchat.responses.canned import CannedResponseGenerator


class OfflineChatClient:
    """Drop-in ``ChatModelClient`` used when the app runs without a remote model."""

    requires_credential = False

    def __init__(self, generator: CannedResponseGenerator) -> None:
        self._generator = generator

    async def complete(
        self,
        text: str,
        history: Sequence[ChatMessage],
        system_prompt: str,
        *,
        api_key: str | None = None,
    ) -> ResponseDraft:
        return self._generator.generate(text, history)
