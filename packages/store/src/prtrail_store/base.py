"""Abstract code-hosting platform interface.

The comment history is prtrail's only database, so the platform is the
storage backend. StateStore, the task detector and the agent tools depend on
BasePlatform, never on a concrete client, which keeps GitHub specifics in
prtrail_core.gh and lets tests run against InMemoryPlatform.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prtrail_store.models import Comment


class BasePlatform(ABC):
    """Comment operations for a single pull request.

    Every method is a point-to-point request. Implementations raise on
    transport failure; callers decide whether that is fatal.
    """

    @abstractmethod
    def list_comments(self) -> list[Comment]:
        """Return the full comment history, inline and conversation comments alike."""

    @abstractmethod
    def get_comment(self, comment_id: str) -> Comment | None:
        """Return one comment by id, or None if it no longer exists."""

    @abstractmethod
    def get_head_revision(self) -> str:
        """Return the id of the latest commit on the pull request."""

    @abstractmethod
    def post_review_comment(self, path: str, line: int, body: str) -> str:
        """Post a new inline comment and return its id."""

    @abstractmethod
    def post_issue_comment(self, body: str) -> str:
        """Post a conversation comment and return its id."""

    @abstractmethod
    def reply_to_comment(self, parent_id: str, body: str) -> str:
        """Reply under an existing comment and return the reply id."""

    @abstractmethod
    def resolve_thread(self, thread_id: str, reason: str) -> None:
        """Mark the thread rooted at ``thread_id`` resolved."""

    @abstractmethod
    def update_comment(self, comment_id: str, body: str) -> None:
        """Replace the body of an existing comment."""

    @abstractmethod
    def request_reviewers(self, thread_id: str, reviewers: list[str], body: str) -> None:
        """Hand a thread over to human reviewers, posting ``body`` as explanation."""

    def list_changed_files(self) -> list[str]:
        """Return paths changed by the pull request. Optional."""
        return []

    def get_diff(self) -> str:
        """Return the unified diff of the pull request. Optional."""
        return ""

    def close(self) -> None:
        """Release any resources held by the client.

        Optional. Default is a no-op so callers can always call close() safely.
        """
