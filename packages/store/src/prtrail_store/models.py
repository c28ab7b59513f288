"""Review state data models.

The comment history on the pull request is the only durable record of review
state. These models are the in-process view reconstructed from it, kept in
prtrail_store so the reconstruction layer has no knowledge of prtrail_core.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

SCHEMA_VERSION = 1

# Thread statuses
PENDING = "PENDING"
RESOLVED = "RESOLVED"
DISPUTED = "DISPUTED"
ESCALATED = "ESCALATED"

THREAD_STATUSES = (PENDING, RESOLVED, DISPUTED, ESCALATED)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Comment:
    """A single comment as returned by the hosting platform.

    ``kind`` separates inline review comments ("review"), which can carry
    findings and reply threads, from conversation comments ("issue"), which
    carry bot mentions and question answers.
    """

    id: str
    author: str
    body: str
    created_at: str  # ISO-8601 UTC timestamp
    kind: str = "review"  # "review" | "issue"
    in_reply_to_id: str | None = None
    path: str | None = None
    line: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Comment:
        reply_to = data.get("in_reply_to_id")
        return cls(
            id=str(data["id"]),
            author=data.get("author", ""),
            body=data.get("body") or "",
            created_at=data.get("created_at", ""),
            kind=data.get("kind", "review"),
            in_reply_to_id=str(reply_to) if reply_to is not None else None,
            path=data.get("path"),
            line=data.get("line"),
        )


@dataclass
class Assessment:
    """Structured payload of a finding: what is wrong, why, and how bad (1-10)."""

    finding: str
    explanation: str
    score: int

    def to_marker(self) -> dict:
        # "assessment" is the key used inside posted marker blocks.
        return {"finding": self.finding, "assessment": self.explanation, "score": self.score}


@dataclass
class ThreadComment:
    author: str
    body: str
    timestamp: str


@dataclass
class Thread:
    """One tracked finding with its reply history and current status.

    Threads are never deleted: RESOLVED and ESCALATED threads stay in state so
    later runs do not re-report the same finding.
    """

    id: str
    file: str
    line: int
    status: str
    score: int
    assessment: Assessment
    original_comment: ThreadComment
    developer_replies: list[ThreadComment] = field(default_factory=list)
    escalated_at: str | None = None
    last_automation_reply_at: str | None = None

    @property
    def last_automation_activity(self) -> str:
        return self.last_automation_reply_at or self.original_comment.timestamp


@dataclass
class PassResult:
    pass_number: int
    completed: bool
    has_blocking_issues: bool


@dataclass
class StateMetadata:
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


@dataclass
class ProcessState:
    """Reconstructed review state for one pull request.

    Owned by StateStore. Other components read it freely but mutate it only
    through StateStore operations so ``metadata.updated_at`` stays accurate.
    """

    request_id: str
    last_known_revision: str
    threads: list[Thread] = field(default_factory=list)
    passes: list[PassResult] = field(default_factory=list)
    metadata: StateMetadata = field(default_factory=StateMetadata)
    schema_version: int = SCHEMA_VERSION

    def get_thread(self, thread_id: str) -> Thread | None:
        for thread in self.threads:
            if thread.id == thread_id:
                return thread
        return None

    def active_threads(self) -> list[Thread]:
        return [t for t in self.threads if t.status != RESOLVED]

    def to_dict(self) -> dict:
        return asdict(self)
