"""GitHub implementation of BasePlatform on top of PyGithub.

Inline review comments carry findings and their reply threads; issue
(conversation) comments carry bot mentions and question answers. Both are
merged into one Comment list for state reconstruction.
"""

from __future__ import annotations

import functools
import logging
from datetime import timezone

from github import Auth, Github, GithubException

from prtrail_core.errors import TransportError
from prtrail_store.base import BasePlatform
from prtrail_store.markers import resolution_body
from prtrail_store.models import Comment

logger = logging.getLogger(__name__)


def _transport(method):
    """Re-raise PyGithub failures as TransportError."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except GithubException as e:
            raise TransportError(f"GitHub {method.__name__} failed: {e}") from e

    return wrapper


def _timestamp(value) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _login(user) -> str:
    return user.login if user is not None else ""


class GitHubPlatform(BasePlatform):
    def __init__(self, repo: str, pr_number: int, token: str, github: Github | None = None):
        self._github = github or Github(auth=Auth.Token(token))
        self.repo_name = repo
        self.pr_number = pr_number
        try:
            self.repo = self._github.get_repo(repo)
            self.pull = self.repo.get_pull(pr_number)
        except GithubException as e:
            raise TransportError(f"PR #{pr_number} not found in {repo}: {e}") from e
        self._kinds: dict[str, str] = {}

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    @_transport
    def list_comments(self) -> list[Comment]:
        comments = []
        for c in self.pull.get_review_comments():
            reply_to = getattr(c, "in_reply_to_id", None)
            comments.append(
                Comment(
                    id=str(c.id),
                    author=_login(c.user),
                    body=c.body or "",
                    created_at=_timestamp(c.created_at),
                    kind="review",
                    in_reply_to_id=str(reply_to) if reply_to else None,
                    path=c.path,
                    line=getattr(c, "line", None) or getattr(c, "original_line", None),
                )
            )
        for c in self.pull.get_issue_comments():
            comments.append(
                Comment(
                    id=str(c.id),
                    author=_login(c.user),
                    body=c.body or "",
                    created_at=_timestamp(c.created_at),
                    kind="issue",
                )
            )
        self._kinds = {c.id: c.kind for c in comments}
        logger.debug("Fetched %d comment(s) on %s#%d", len(comments), self.repo_name, self.pr_number)
        return comments

    def get_comment(self, comment_id: str) -> Comment | None:
        for comment in self.list_comments():
            if comment.id == comment_id:
                return comment
        return None

    @_transport
    def get_head_revision(self) -> str:
        return self.pull.head.sha

    @_transport
    def list_changed_files(self) -> list[str]:
        return [f.filename for f in self.pull.get_files()]

    @_transport
    def get_diff(self) -> str:
        parts = []
        for f in self.pull.get_files():
            if f.patch:
                parts.append(f"--- a/{f.filename}\n+++ b/{f.filename}\n{f.patch}")
        return "\n".join(parts)

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #

    @_transport
    def post_review_comment(self, path: str, line: int, body: str) -> str:
        commit = self.repo.get_commit(self.pull.head.sha)
        created = self.pull.create_review_comment(body, commit, path, line=line)
        self._kinds[str(created.id)] = "review"
        return str(created.id)

    @_transport
    def post_issue_comment(self, body: str) -> str:
        created = self.pull.create_issue_comment(body)
        self._kinds[str(created.id)] = "issue"
        return str(created.id)

    @_transport
    def reply_to_comment(self, parent_id: str, body: str) -> str:
        if self._kind(parent_id) == "issue":
            # Conversation comments have no reply threads.
            return self.post_issue_comment(body)
        created = self.pull.create_review_comment_reply(int(parent_id), body)
        self._kinds[str(created.id)] = "review"
        return str(created.id)

    def resolve_thread(self, thread_id: str, reason: str) -> None:
        self.reply_to_comment(thread_id, resolution_body(reason))

    @_transport
    def update_comment(self, comment_id: str, body: str) -> None:
        if self._kind(comment_id) == "issue":
            self.pull.get_issue_comment(int(comment_id)).edit(body)
        else:
            self.pull.get_comment(int(comment_id)).edit(body)

    def request_reviewers(self, thread_id: str, reviewers: list[str], body: str) -> None:
        self.reply_to_comment(thread_id, body)
        try:
            self.pull.create_review_request(reviewers=reviewers)
        except GithubException as e:
            # The escalation comment already mentions them.
            logger.warning("Could not request review from %s: %s", ", ".join(reviewers), e)

    def close(self) -> None:
        self._github.close()

    def _kind(self, comment_id: str) -> str:
        if comment_id not in self._kinds:
            self.list_comments()
        return self._kinds.get(comment_id, "review")
