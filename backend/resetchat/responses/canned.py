"""Offline response generator backed by topic-keyed reply pools.

Serves as the whole chat backend in offline mode and as the fallback when
the remote model fails. It re-checks for crisis language itself so it is
safe to call without any upstream screening.
"""

from __future__ import annotations

import logging
import random
import re
from pathlib import Path
from typing import Any, Optional, Sequence

import yaml
from pydantic import BaseModel, Field

from resetchat.models.messages import (
    ChatMessage,
    ResponseDraft,
    SafetyFlag,
    Sender,
    SuggestedTopic,
)
from resetchat.safety.classifier import CRISIS_RESPONSE, classify

logger = logging.getLogger(__name__)

_DEFAULT_PATH = Path(__file__).parent / "pools.yaml"

_WORD_PATTERN = re.compile(r"[a-z']+")

# Re-draws allowed when a candidate repeats a recent assistant reply.
MAX_DRAWS = 5
RECENT_REPLIES = 3


class CannedReply(BaseModel):
    text: str = Field(min_length=1)
    suggested_topic: Optional[SuggestedTopic] = None


class ResponseGroup(BaseModel):
    """One keyword group and the pool it selects."""

    name: str
    keywords: list[str] = Field(default_factory=list)
    words: list[str] = Field(default_factory=list)
    exact: list[str] = Field(default_factory=list)
    when_asked: list[str] = Field(default_factory=list)
    max_words: Optional[int] = None
    unless: list[str] = Field(default_factory=list)
    safety_flag: Optional[SafetyFlag] = None
    responses: list[CannedReply] = Field(min_length=1, max_length=10)

    @property
    def has_triggers(self) -> bool:
        return bool(self.keywords or self.words or self.exact)

    def matches(
        self, message: str, words: set[str], last_reply: Optional[str]
    ) -> bool:
        if self.when_asked:
            if last_reply is None:
                return False
            if not any(phrase in last_reply for phrase in self.when_asked):
                return False
        if self.max_words is not None and len(message.split()) > self.max_words:
            return False
        if any(keyword in message for keyword in self.unless):
            return False
        if not self.has_triggers:
            return True
        return (
            message.strip(" .!?") in self.exact
            or any(keyword in message for keyword in self.keywords)
            or any(word in words for word in self.words)
        )


class ResponsePools(BaseModel):
    groups: list[ResponseGroup]
    default: list[CannedReply] = Field(min_length=1)


def load_pools(path: Path | None = None) -> ResponsePools:
    """Load and validate reply pools from a YAML file.

    Args:
        path: Optional path to a pools YAML file.
              Defaults to pools.yaml in this directory.

    Raises:
        FileNotFoundError: If the pools file does not exist.
        yaml.YAMLError: If the file contains invalid YAML.
        pydantic.ValidationError: If the file does not match the pool schema.
    """
    pools_path = path or _DEFAULT_PATH

    if not pools_path.exists():
        raise FileNotFoundError(f"Response pools file not found: {pools_path}")

    with open(pools_path, encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f)

    return ResponsePools.model_validate(raw)


def crisis_draft() -> ResponseDraft:
    """The fixed crisis-resource reply."""
    return ResponseDraft(text=CRISIS_RESPONSE, safety_flag=SafetyFlag.CRISIS_DETECTED)


class CannedResponseGenerator:
    """Picks a supportive reply from the first matching topic pool."""

    def __init__(
        self,
        pools: ResponsePools | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._pools = pools or load_pools()
        self._rng = rng or random.Random()
        logger.info(
            "CannedResponseGenerator loaded %d reply groups", len(self._pools.groups)
        )

    @property
    def pools(self) -> ResponsePools:
        return self._pools

    def generate(
        self, text: str, history: Sequence[ChatMessage] = ()
    ) -> ResponseDraft:
        """Return a reply for ``text``; never raises."""
        if classify(text):
            return crisis_draft()

        recent = [m.text for m in history if m.sender == Sender.ASSISTANT][
            -RECENT_REPLIES:
        ]
        group, pool = self.select_pool(text, history)

        reply = self._rng.choice(pool)
        draws = 1
        while reply.text in recent and draws < MAX_DRAWS:
            reply = self._rng.choice(pool)
            draws += 1

        logger.debug("Canned reply from group=%s", group.name if group else "default")
        return ResponseDraft(
            text=reply.text,
            safety_flag=group.safety_flag if group else None,
            suggested_topic=reply.suggested_topic,
        )

    def select_pool(
        self, text: str, history: Sequence[ChatMessage] = ()
    ) -> tuple[Optional[ResponseGroup], list[CannedReply]]:
        """Return the first matching group and its pool, or the default pool."""
        message = (text or "").lower().replace("’", "'")
        words = set(_WORD_PATTERN.findall(message))

        last_reply: Optional[str] = None
        for previous in reversed(history):
            if previous.sender == Sender.ASSISTANT:
                last_reply = previous.text.lower().replace("’", "'")
                break

        for group in self._pools.groups:
            if group.matches(message, words, last_reply):
                return group, group.responses
        return None, self._pools.default

    def pool_texts(self, name: str) -> set[str]:
        """All reply texts of the named group (``"default"`` for the fallback pool)."""
        if name == "default":
            return {reply.text for reply in self._pools.default}
        for group in self._pools.groups:
            if group.name == name:
                return {reply.text for reply in group.responses}
        raise KeyError(f"Unknown response group: {name}")
