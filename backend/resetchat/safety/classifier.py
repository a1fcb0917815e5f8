"""Local crisis detection by phrase matching.

The same phrase list is used for the user's input and for the model's
output. Both the phrases and the text are folded the same way (lowercase,
no apostrophes, punctuation and whitespace runs collapsed to one space)
before a substring test. New phrases should err on the side of matching
too much.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

CRISIS_PHRASES: tuple[str, ...] = (
    # Direct self-harm / suicide
    "kill myself", "suicide", "suicidal", "end my life", "want to die",
    "hurt myself", "self harm", "self-harm", "cutting", "overdose",
    "hang myself", "don't want to live", "no reason to live",
    "better off dead", "can't go on", "end it all", "kill me",
    "take my life", "ending it", "give up on life", "asleep forever",
    "pain stop", "way out", "goodbye forever", "never wake up",
    # Self-injury variations
    "cut myself", "cut my wrist", "cut my arm", "cut my leg", "cut my skin",
    "cut me", "cutting myself", "slit my wrist", "slit my", "slice my",
    "scratch myself", "burn myself", "burning myself", "hurting myself",
    "harm myself", "harming myself", "injure myself", "injuring myself",
    # Coded / slang terms
    "unalive", "unaliving", "kms", "kys", "ctb", "catch the bus",
    "final exit", "peaceful pill", "end myself", "off myself",
    "do it tonight", "won't be here tomorrow", "last day",
    "say goodbye", "writing notes", "goodbye letter", "final letter",
    # Methods and locations
    "jump off a", "jump off the", "jump out the", "jump from", "jumping off",
    "off a bridge", "off the bridge", "off a building", "off the roof",
    "take pills", "take all my pills", "swallow pills", "overdose on",
    "use a gun", "shoot myself", "get a gun",
    "use a knife", "with a knife", "stab myself",
    "drink bleach", "drink poison", "poison myself",
    "step into traffic", "walk into traffic", "in front of a train",
    "tie a noose", "with a rope",
    "drown myself", "drown in",
    # Severe distress / hopelessness
    "hopeless", "worthless", "nobody cares", "burden", "i'm a burden",
    "everyone better off", "better off without me", "no point", "give up",
    "can't take it", "make it stop", "want it to end", "don't want to be here",
    "can't do this anymore", "can't live like this", "tired of living",
    "no way out", "trapped", "no escape", "suffering too much",
    "no one would care", "no one would miss me", "disappear forever",
    "want to disappear", "wish i was dead", "wish i wasn't born",
    "shouldn't be alive", "don't deserve to live", "hate being alive",
)

CRISIS_RESPONSE = (
    "I hear that you're going through something really difficult right now, "
    "and I want you to know that what you're feeling matters.\n\n"
    "I'm not able to provide the kind of support you need in this moment, "
    "but there are people trained to help who are available right now.\n\n"
    "Please reach out to:\n"
    "• 988 Suicide & Crisis Lifeline (call or text 988)\n"
    "• Crisis Text Line (text HOME to 741741)\n"
    "• Your local emergency services (911)\n\n"
    "You deserve support from people who can truly help. "
    "You're not alone in this. 💚\n\n"
    "If you're in immediate danger, please call emergency services right away."
)


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of a crisis check. ``phrase`` is for diagnostics only."""

    is_crisis: bool
    phrase: Optional[str] = None


_APOSTROPHES = re.compile(r"['‘’ʼ`]")
_SEPARATORS = re.compile(r"[^a-z0-9]+")


def _normalize(text: str) -> str:
    """Lowercase, drop apostrophes and collapse everything else to single spaces.

    "Don’t  want-to live" and "dont want to live" both become
    "dont want to live".
    """
    text = _APOSTROPHES.sub("", text.lower())
    return _SEPARATORS.sub(" ", text).strip()


# (normalized, as listed) pairs; phrases and input go through the same folding.
_NORMALIZED_PHRASES: tuple[tuple[str, str], ...] = tuple(
    (_normalize(phrase), phrase) for phrase in CRISIS_PHRASES
)


def detect(text: Optional[str]) -> ClassificationResult:
    """Return the first crisis phrase found in ``text``, if any."""
    if not text:
        return ClassificationResult(is_crisis=False)

    normalized = _normalize(text)
    for needle, phrase in _NORMALIZED_PHRASES:
        if needle in normalized:
            return ClassificationResult(is_crisis=True, phrase=phrase)
    return ClassificationResult(is_crisis=False)


def classify(text: Optional[str]) -> bool:
    """Return True when ``text`` contains a crisis-indicative phrase."""
    return detect(text).is_crisis
