"""In-memory platform: a complete BasePlatform with no network access.

Backs the offline ``prtrail state --comments-file`` command and every test
that needs a comment history. Holding comments in a list rather than mocking
each call lets tests assert on what was actually posted.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

from prtrail_store.base import BasePlatform
from prtrail_store.markers import resolution_body
from prtrail_store.models import Comment, utc_now


class InMemoryPlatform(BasePlatform):
    """Stores comments in insertion order and assigns sequential ids.

    New comments are always timestamped after every existing comment, so
    ordering by ``created_at`` matches posting order even when the clock is
    coarse.
    """

    def __init__(
        self,
        comments: list[Comment] | None = None,
        head_revision: str = "0" * 40,
        author: str = "prtrail[bot]",
        changed_files: list[str] | None = None,
        diff: str = "",
        clock: Callable[[], str] | None = None,
    ):
        self.comments: list[Comment] = list(comments or [])
        self.head_revision = head_revision
        self.author = author
        self.changed_files = list(changed_files or [])
        self.diff = diff
        self.resolved: dict[str, str] = {}
        self.reviewer_requests: list[tuple[str, list[str]]] = []
        self._clock = clock or utc_now
        self._next_id = max((int(c.id) for c in self.comments if c.id.isdigit()), default=0) + 1

    @classmethod
    def from_json(cls, path: str, **kwargs) -> InMemoryPlatform:
        """Load a comment dump: a list of comment dicts, or ``{"comments": [...], "head_revision": ...}``."""
        data = json.loads(Path(path).read_text())
        if isinstance(data, dict):
            kwargs.setdefault("head_revision", data.get("head_revision", "0" * 40))
            data = data.get("comments", [])
        return cls(comments=[Comment.from_dict(d) for d in data], **kwargs)

    def _timestamp(self) -> str:
        now = self._clock()
        latest = max((c.created_at for c in self.comments), default="")
        if latest and now <= latest:
            now = (datetime.fromisoformat(latest) + timedelta(seconds=1)).isoformat()
        return now

    def _add(self, body: str, **fields) -> str:
        comment_id = str(self._next_id)
        self._next_id += 1
        self.comments.append(
            Comment(id=comment_id, author=self.author, body=body, created_at=self._timestamp(), **fields)
        )
        return comment_id

    def list_comments(self) -> list[Comment]:
        return list(self.comments)

    def get_comment(self, comment_id: str) -> Comment | None:
        for comment in self.comments:
            if comment.id == comment_id:
                return comment
        return None

    def get_head_revision(self) -> str:
        return self.head_revision

    def post_review_comment(self, path: str, line: int, body: str) -> str:
        return self._add(body, kind="review", path=path, line=line)

    def post_issue_comment(self, body: str) -> str:
        return self._add(body, kind="issue")

    def reply_to_comment(self, parent_id: str, body: str) -> str:
        parent = self.get_comment(parent_id)
        if parent is None:
            raise KeyError(f"Comment {parent_id!r} not found")
        if parent.kind == "issue":
            # Conversation comments have no reply threads; answers are new comments.
            return self._add(body, kind="issue")
        return self._add(body, kind="review", in_reply_to_id=parent_id, path=parent.path, line=parent.line)

    def resolve_thread(self, thread_id: str, reason: str) -> None:
        self.reply_to_comment(thread_id, resolution_body(reason))
        self.resolved[thread_id] = reason

    def update_comment(self, comment_id: str, body: str) -> None:
        comment = self.get_comment(comment_id)
        if comment is None:
            raise KeyError(f"Comment {comment_id!r} not found")
        comment.body = body

    def request_reviewers(self, thread_id: str, reviewers: list[str], body: str) -> None:
        self.reply_to_comment(thread_id, body)
        self.reviewer_requests.append((thread_id, list(reviewers)))

    def list_changed_files(self) -> list[str]:
        return list(self.changed_files)

    def get_diff(self) -> str:
        return self.diff
