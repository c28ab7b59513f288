"""LLM-backed classification with a deterministic fallback and a per-run cache.

Every decision prtrail makes from free text (did the developer concede? what
does this reply want? is this mention a review request?) is a classification
into a closed vocabulary. Each one follows the same steps:

    key → cache hit? → remote strategy → no usable answer? → local strategy → cache

Whatever answer is produced, including a fallback answer, is cached so the
same text costs at most one completion call per run.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from prtrail_core.safety import sanitize_delimiters

if TYPE_CHECKING:
    from prtrail_core.providers.base import BaseCompletionClient

logger = logging.getLogger(__name__)

# Reply intents
ACKNOWLEDGMENT = "acknowledgment"
DISPUTE = "dispute"
QUESTION = "question"
OUT_OF_SCOPE = "out_of_scope"

# Mention intents
REVIEW_REQUEST = "review-request"


def content_hash(text: str) -> int:
    """32-bit signed rolling hash of the trimmed, lowercased text.

    Computed over UTF-16 code units as ``h = h * 31 + unit`` modulo 2**32 so
    keys stay stable for the same input across runs and platforms.
    """
    encoded = text.strip().lower().encode("utf-16-le")
    h = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


class ClassificationCache:
    """Per-run map from ``{namespace}_{hash}`` to a classification outcome."""

    def __init__(self):
        self._entries: dict[str, Any] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(namespace: str, text: str) -> str:
        return f"{namespace}_{content_hash(text)}"

    def get(self, key: str) -> tuple[bool, Any]:
        if key in self._entries:
            self.hits += 1
            return True, self._entries[key]
        self.misses += 1
        return False, None

    def put(self, key: str, value: Any) -> None:
        self._entries[key] = value

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class Classification:
    """A typed classification task.

    ``outcomes`` maps each word of the closed response vocabulary to the value
    returned for it; matching is a case-insensitive prefix test, tried in
    order. ``fallback`` computes the outcome locally from the same inputs.
    """

    namespace: str
    build_prompt: Callable[..., str]
    outcomes: dict[str, Any]
    fallback: Callable[..., Any]
    max_tokens: int = 10
    temperature: float = 0.0
    vocabulary: tuple[str, ...] = field(init=False)

    def __post_init__(self):
        self.vocabulary = tuple(self.outcomes)

    def parse(self, response: str | None) -> Any:
        answer = (response or "").strip().strip("\"'`.").lower()
        for word, outcome in self.outcomes.items():
            if answer.startswith(word.lower()):
                return outcome
        return None


class RemoteStrategy:
    """Ask the completion client and map its answer onto the vocabulary.

    Returns None when the answer is outside the vocabulary. Transport errors
    propagate so the caller can log them before falling back.
    """

    def __init__(self, llm: BaseCompletionClient):
        self.llm = llm

    def classify(self, classification: Classification, *inputs: str) -> Any:
        prompt = classification.build_prompt(*inputs)
        response = self.llm.complete(
            prompt, max_tokens=classification.max_tokens, temperature=classification.temperature
        )
        outcome = classification.parse(response)
        if outcome is None:
            logger.debug("%s: unexpected classification response %r", classification.namespace, response)
        return outcome


class LocalStrategy:
    def classify(self, classification: Classification, *inputs: str) -> Any:
        return classification.fallback(*inputs)


class Classifier:
    """Runs classifications through cache, remote and local strategies in turn."""

    def __init__(
        self,
        remote: RemoteStrategy | None,
        cache: ClassificationCache | None = None,
        local: LocalStrategy | None = None,
    ):
        self.remote = remote
        self.cache = cache if cache is not None else ClassificationCache()
        self.local = local or LocalStrategy()

    def classify(self, classification: Classification, *inputs: str) -> Any:
        key = ClassificationCache.key(classification.namespace, "\n".join(inputs))
        hit, cached = self.cache.get(key)
        if hit:
            logger.debug("%s: cache hit for %s", classification.namespace, key)
            return cached

        outcome = None
        if self.remote is not None:
            try:
                outcome = self.remote.classify(classification, *inputs)
            except Exception as e:
                logger.warning("%s: remote classification failed: %s; using fallback", classification.namespace, e)
        if outcome is None:
            outcome = self.local.classify(classification, *inputs)
            logger.info("%s: fallback classification → %s", classification.namespace, outcome)

        self.cache.put(key, outcome)
        return outcome

    def detect_concession(self, text: str) -> bool:
        return self.classify(CONCESSION, text)

    def classify_reply(self, finding: str, reply: str) -> str:
        return self.classify(REPLY_INTENT, finding, reply)

    def classify_mention(self, text: str) -> str:
        return self.classify(MENTION_INTENT, text)


# ---------------------------------------------------------------------- #
# Concession detection                                                    #
# ---------------------------------------------------------------------- #

_CONCESSION_PHRASES = ("you are correct", "i concede", "you're right", "fair point", "good catch", "agreed", "makes sense")


def _concession_prompt(text: str) -> str:
    return f'''You are analyzing a code review comment to determine if the developer is conceding to a reviewer's suggestion.

A concession means the developer:
- Agrees with the reviewer's point
- Acknowledges they were wrong or missed something
- Commits to making the suggested change
- Accepts the feedback as valid

A concession does NOT include:
- Disagreements or rebuttals
- Requests for clarification
- Alternative suggestions
- Neutral acknowledgments without commitment

Comment to analyze:
"""
{sanitize_delimiters(text)}
"""

Respond with ONLY "true" if this is a concession, or "false" if it is not.'''


def _concession_fallback(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in _CONCESSION_PHRASES)


CONCESSION = Classification(
    namespace="sentiment",
    build_prompt=_concession_prompt,
    outcomes={"true": True, "false": False},
    fallback=_concession_fallback,
)


# ---------------------------------------------------------------------- #
# Developer reply intent                                                  #
# ---------------------------------------------------------------------- #

_ACK_PHRASES = ("good catch", "will fix", "thanks", "you're right", "you are right", "agreed", "makes sense", "fair point")
_QUESTION_MARKERS = ("what", "why", "how", "can you", "could you", "?")
_OUT_OF_SCOPE_PHRASES = ("next sprint", "later", "future pr", "separate pr", "out of scope", "follow up")


def _reply_prompt(finding: str, reply: str) -> str:
    return f'''You are analyzing a developer's response to a code review comment to classify their intent.

Original finding: "{sanitize_delimiters(finding)}"

Developer's response:
"""
{sanitize_delimiters(reply)}
"""

Classify the response as ONE of the following:
- "acknowledgment": Developer agrees and commits to fixing it (e.g., "good catch", "will fix", "you're right")
- "dispute": Developer disagrees with the finding (e.g., "this is intentional", "middleware handles this")
- "question": Developer asks for clarification (e.g., "what do you mean?", "can you explain?")
- "out_of_scope": Developer acknowledges but will fix later (e.g., "will fix in next sprint", "out of scope for this PR")

Respond with ONLY one word: acknowledgment, dispute, question, or out_of_scope'''


def _reply_fallback(finding: str, reply: str) -> str:
    lowered = reply.lower()
    if any(phrase in lowered for phrase in _ACK_PHRASES):
        return ACKNOWLEDGMENT
    if any(marker in lowered for marker in _QUESTION_MARKERS):
        return QUESTION
    if any(phrase in lowered for phrase in _OUT_OF_SCOPE_PHRASES):
        return OUT_OF_SCOPE
    return DISPUTE


REPLY_INTENT = Classification(
    namespace="reply",
    build_prompt=_reply_prompt,
    outcomes={
        ACKNOWLEDGMENT: ACKNOWLEDGMENT,
        DISPUTE: DISPUTE,
        QUESTION: QUESTION,
        OUT_OF_SCOPE: OUT_OF_SCOPE,
    },
    fallback=_reply_fallback,
)


# ---------------------------------------------------------------------- #
# Bot mention intent                                                      #
# ---------------------------------------------------------------------- #

_REVIEW_REQUEST_PATTERNS = [
    re.compile(r"\b(?:please\s+)?review(?:\s+this)?(?:\s+pr)?", re.IGNORECASE),
    re.compile(r"\b(?:can|could)\s+you\s+review", re.IGNORECASE),
    re.compile(r"\bdo\s+a\s+review", re.IGNORECASE),
    re.compile(r"\brun\s+(?:a\s+)?review", re.IGNORECASE),
    re.compile(r"\bcheck\s+(?:this\s+)?(?:the\s+)?(?:pr|code|changes)", re.IGNORECASE),
    re.compile(r"\blgtm\?", re.IGNORECASE),
    re.compile(r"\bready\s+for\s+review", re.IGNORECASE),
    re.compile(r"\btake\s+a\s+look", re.IGNORECASE),
]


def _mention_prompt(text: str) -> str:
    return f"""You are a classifier that determines the intent of GitHub PR comments that mention a code review bot.

Given the user's message, classify it as one of these intents:
- "review-request": The user wants a full code review of the PR
- "question": The user is asking a question about the code, PR, or wants clarification

IMPORTANT: Respond with ONLY the intent name, nothing else. No explanation, no punctuation.

Examples:
User: "please review this PR"
Response: review-request

User: "Why is this function needed?"
Response: question

User: "run a review"
Response: review-request

User: "what's the purpose of this change?"
Response: question

Now classify this message:
User: "{sanitize_delimiters(text)}"
Response:"""


def _mention_fallback(text: str) -> str:
    if any(pattern.search(text) for pattern in _REVIEW_REQUEST_PATTERNS):
        return REVIEW_REQUEST
    return QUESTION


MENTION_INTENT = Classification(
    namespace="mention",
    build_prompt=_mention_prompt,
    outcomes={REVIEW_REQUEST: REVIEW_REQUEST, QUESTION: QUESTION},
    fallback=_mention_fallback,
)
