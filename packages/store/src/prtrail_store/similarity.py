"""Lexical similarity used to deduplicate findings.

A cheap word-overlap heuristic, not semantic similarity. It is tuned to miss
rather than over-match: posting a near-duplicate is a nuisance, silently
swallowing a distinct finding is a lost review comment.
"""

from __future__ import annotations

import re

SIMILARITY_THRESHOLD = 0.5

STOP_WORDS = frozenset(
    """
    a an the is are was were be been being have has had do does did will would
    could should may might must shall can need dare ought used to of in for on
    with at by from as into through during before after above below between
    under again further then once here there when where why how all each few
    more most other some such no nor not only own same so than too very just
    and but if or because until while this that these those
    """.split()
)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def normalize(text: str) -> str:
    return _NON_ALNUM_RE.sub(" ", (text or "").lower()).strip()


def significant_words(text: str) -> set[str]:
    return {w for w in normalize(text).split() if len(w) > 2 and w not in STOP_WORDS}


def overlap_ratio(a: str, b: str) -> float:
    words_a = significant_words(a)
    words_b = significant_words(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / min(len(words_a), len(words_b))


def is_similar_finding(a: str, b: str) -> bool:
    if normalize(a) == normalize(b):
        return True
    return overlap_ratio(a, b) >= SIMILARITY_THRESHOLD
