"""Remote chat completions over the OpenAI-compatible REST API.

Issues exactly one POST per call with a bounded timeout and maps every
failure to a ``ModelClientError``. Retrying and falling back are the
dispatcher's job.
"""

import logging
from typing import Any, Sequence

import httpx

from resetchat.config import Settings
from resetchat.llm.base import ClientErrorKind, ModelClientError, build_messages
from resetchat.models.messages import ChatMessage, ResponseDraft, SafetyFlag
from resetchat.safety.classifier import classify

logger = logging.getLogger(__name__)


class OpenAIChatClient:
    """Chat completions via ``POST /v1/chat/completions``."""

    requires_credential = True

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._endpoint = settings.openai_endpoint
        self._model = settings.openai_model

    async def initialize(self) -> None:
        """Create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.openai_timeout)
        logger.info(
            "OpenAIChatClient initialized (model=%s, timeout=%.0fs)",
            self._model,
            self._settings.openai_timeout,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("OpenAIChatClient closed")

    async def complete(
        self,
        text: str,
        history: Sequence[ChatMessage],
        system_prompt: str,
        *,
        api_key: str | None = None,
    ) -> ResponseDraft:
        """Request one completion for ``text``.

        Args:
            text: The user message being answered.
            history: Prior messages of the session, oldest first.
            system_prompt: Persona and safety instruction.
            api_key: Bearer token for the endpoint.

        Returns:
            The trimmed completion, flagged ``crisis_mentioned`` when the
            model's own text contains crisis language.

        Raises:
            ModelClientError: On transport failure, non-200 status or a
                malformed payload.
        """
        if not self._client:
            raise RuntimeError("OpenAIChatClient not initialized. Call initialize() first.")
        if not api_key:
            raise ModelClientError(ClientErrorKind.INVALID_CREDENTIAL, "no API key")

        request_body = {
            "model": self._model,
            "messages": build_messages(
                text, history, system_prompt, window=self._settings.history_window
            ),
            "max_tokens": self._settings.openai_max_tokens,
            "temperature": self._settings.openai_temperature,
        }

        try:
            response = await self._client.post(
                self._endpoint,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                json=request_body,
                timeout=self._settings.openai_timeout,
            )
        except httpx.TransportError as e:
            logger.error("Chat completion request failed: %s", type(e).__name__)
            raise ModelClientError(ClientErrorKind.NETWORK_ERROR, type(e).__name__) from e

        _raise_for_status(response)

        content = _extract_content(response)
        safety_flag = SafetyFlag.CRISIS_MENTIONED if classify(content) else None
        if safety_flag:
            logger.warning("Model reply mentions crisis language; flagging message")

        logger.info("Chat completion received (%d chars)", len(content))
        return ResponseDraft(text=content, safety_flag=safety_flag)


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status == 200:
        return

    if status == 401:
        kind = ClientErrorKind.INVALID_CREDENTIAL
    elif status == 429:
        kind = ClientErrorKind.RATE_LIMITED
    elif 500 <= status <= 599:
        kind = ClientErrorKind.SERVER_ERROR
    else:
        kind = ClientErrorKind.INVALID_RESPONSE

    logger.error("Chat completion API error %d (%s)", status, kind.value)
    raise ModelClientError(kind, f"HTTP {status}", status_code=status)


def _extract_content(response: httpx.Response) -> str:
    """Return ``choices[0].message.content`` trimmed, or raise."""
    try:
        data: Any = response.json()
        content = data["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise ModelClientError(
            ClientErrorKind.INVALID_RESPONSE, "malformed completion payload", 200
        ) from e

    if not isinstance(content, str) or not content.strip():
        raise ModelClientError(
            ClientErrorKind.INVALID_RESPONSE, "empty completion content", 200
        )
    return content.strip()
