"""Machine-readable marker blocks embedded in human-readable comments.

Every comment prtrail posts carries a fenced block tagged ``prtrail`` holding
a JSON object. Findings store ``{finding, assessment, score}``; lifecycle
markers store ``{type, status, ...timestamps}``. Rebuilding state is a matter
of finding and parsing these blocks again on the next run.

Assessment extraction tries an ordered list of patterns, each more permissive
than the last, so older comments or model output that wrapped the payload in a
plain ``json`` fence (or no fence at all) are still recognised.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Callable

from prtrail_store.models import DISPUTED, ESCALATED, RESOLVED, Assessment

logger = logging.getLogger(__name__)

MARKER_LANG = "prtrail"

# Marker block types
REVIEW_FINDING = "review-finding"
DISPUTE_RESOLUTION = "dispute-resolution"
QUESTION = "question"
QUESTION_ANSWER = "question-answer"
MANUAL_PR_REVIEW = "manual-pr-review"

# Literal banners recognised for comments posted before status markers existed.
RESOLVED_BANNER = "✅ **Issue Resolved**"
ESCALATED_BANNER = "🔺 **Escalated to Human Review**"

_BLOCK_RE = re.compile(r"```" + MARKER_LANG + r"[ \t]*\n([\s\S]*?)\n?```")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def _sanitize(raw: str) -> str:
    """Make captured JSON parseable when it contains developer-style markdown.

    Backticked code spans inside the explanation would terminate the fence
    early or break the string literal; single quotes are harmless to JSON.
    """
    cleaned = _TRAILING_COMMA_RE.sub(r"\1", raw)
    cleaned = cleaned.replace("\\`", "'")
    return cleaned.replace("`", "'")


def _parse_assessment(raw: str) -> Assessment | None:
    try:
        data = json.loads(_sanitize(raw))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    finding = data.get("finding")
    explanation = data.get("assessment", data.get("explanation"))
    score = data.get("score")
    if not finding or explanation is None:
        return None
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return None
    return Assessment(finding=str(finding), explanation=str(explanation), score=int(score))


# Order matters: later patterns accept progressively looser input.
ASSESSMENT_PATTERNS: list[tuple[re.Pattern, Callable[[str], Assessment | None]]] = [
    (re.compile(r"```" + MARKER_LANG + r"\s*(\{[\s\S]*?\})\s*```"), _parse_assessment),
    (re.compile(r"```json\s*(\{[\s\S]*?\})\s*```"), _parse_assessment),
    (re.compile(r'(\{\s*"finding"[\s\S]*?"score"\s*:\s*\d+\s*\})'), _parse_assessment),
]


def extract_assessment(body: str) -> Assessment | None:
    """Return the first assessment found in a comment body, or None.

    "Not found" is the normal answer for ordinary comments and is never an
    error.
    """
    for pattern, parse in ASSESSMENT_PATTERNS:
        match = pattern.search(body or "")
        if not match:
            continue
        assessment = parse(match.group(1))
        if assessment is not None:
            return assessment
    return None


def extract_blocks(body: str) -> list[dict]:
    """Return every parseable marker block in ``body``, in document order."""
    blocks = []
    for match in _BLOCK_RE.finditer(body or ""):
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError:
            logger.debug("Ignoring unparseable marker block: %s", match.group(1)[:200])
            continue
        if isinstance(data, dict):
            blocks.append(data)
    return blocks


def extract_block(body: str, block_type: str | None = None) -> dict | None:
    """Return the first marker block, optionally restricted to one ``type``."""
    for block in extract_blocks(body):
        if block_type is None or block.get("type") == block_type:
            return block
    return None


def extract_status(body: str) -> str | None:
    """Status carried by a reply: marker block first, then the literal banners."""
    for block in extract_blocks(body):
        status = block.get("status")
        if status in (RESOLVED, ESCALATED, DISPUTED):
            return status
    if RESOLVED_BANNER in (body or ""):
        return RESOLVED
    if ESCALATED_BANNER in (body or ""):
        return ESCALATED
    return None


def render_block(data: dict) -> str:
    return f"```{MARKER_LANG}\n{json.dumps(data)}\n```"


def add_block(body: str, data: dict) -> str:
    return f"{body.rstrip()}\n\n{render_block(data)}"


def update_block(body: str, data: dict) -> str:
    """Replace the first marker block in ``body`` with ``data``, or append one."""
    match = _BLOCK_RE.search(body or "")
    if not match:
        return add_block(body or "", data)
    return body[: match.start()] + render_block(data) + body[match.end() :]


def resolution_body(reason: str) -> str:
    """Reply body that marks a finding's thread resolved in the comment history."""
    return add_block(f"{RESOLVED_BANNER}\n\n{reason}", {"type": DISPUTE_RESOLUTION, "status": RESOLVED})
