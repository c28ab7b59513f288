"""Review state reconstructed from the pull request comment history.

There is no private datastore. StateStore replays the comment history once
per run into a ProcessState, serves that cached view afterwards and applies
mutations in place. Everything it learns on the next run must therefore be
written back to the platform as marker blocks inside posted comments.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Callable

from prtrail_store.errors import ThreadNotFoundError
from prtrail_store.markers import (
    MANUAL_PR_REVIEW,
    QUESTION,
    extract_assessment,
    extract_block,
    extract_status,
    update_block,
)
from prtrail_store.models import (
    ESCALATED,
    PENDING,
    RESOLVED,
    SCHEMA_VERSION,
    PassResult,
    ProcessState,
    StateMetadata,
    Thread,
    ThreadComment,
    utc_now,
)
from prtrail_store.similarity import is_similar_finding

if TYPE_CHECKING:
    from prtrail_store.base import BasePlatform
    from prtrail_store.models import Comment

logger = logging.getLogger(__name__)

# Question lifecycle
QUESTION_PENDING = "PENDING"
QUESTION_IN_PROGRESS = "IN_PROGRESS"
QUESTION_ANSWERED = "ANSWERED"

# Manual review lifecycle
REVIEW_PENDING = "PENDING"
REVIEW_IN_PROGRESS = "IN_PROGRESS"
REVIEW_COMPLETED = "COMPLETED"
REVIEW_DISMISSED = "DISMISSED_BY_AUTO_REVIEW"

DISMISSAL_MESSAGE = (
    "ℹ️ This manual review request was dismissed because an automatic PR review was "
    "triggered for the same changes. The automatic review covers everything a manual "
    "review would, so no separate manual review will run."
)

_STATUS_TIMESTAMP = {
    QUESTION_IN_PROGRESS: "started_at",
    QUESTION_ANSWERED: "answered_at",
    REVIEW_COMPLETED: "completed_at",
    REVIEW_DISMISSED: "dismissed_at",
}


class StateStore:
    """Owns the ProcessState for one pull request.

    Reads go through get_state(), which rebuilds lazily. Mutations are upserts
    against the cached state and bump ``metadata.updated_at``; they never call
    the platform, which is the job of whoever posts the matching comment.
    """

    def __init__(
        self,
        platform: BasePlatform,
        request_id: str,
        automation_identities: list[str],
        clock: Callable[[], str] | None = None,
    ):
        self.platform = platform
        self.request_id = request_id
        self.automation_identities = set(automation_identities)
        self._clock = clock or utc_now
        self._state: ProcessState | None = None

    # ------------------------------------------------------------------ #
    # Reconstruction                                                       #
    # ------------------------------------------------------------------ #

    def is_automation(self, author: str) -> bool:
        return author in self.automation_identities

    def rebuild(self) -> ProcessState:
        """Replay the full comment history into a fresh ProcessState.

        Read-only against the platform, so calling it twice on an unchanged
        history yields the same threads.
        """
        revision = self.platform.get_head_revision()
        comments = sorted(self.platform.list_comments(), key=lambda c: c.created_at)

        replies: dict[str, list[Comment]] = defaultdict(list)
        for comment in comments:
            if comment.in_reply_to_id is not None:
                replies[comment.in_reply_to_id].append(comment)

        threads = []
        for comment in comments:
            if comment.kind != "review" or comment.in_reply_to_id is not None:
                continue
            if not self.is_automation(comment.author):
                continue
            assessment = extract_assessment(comment.body)
            if assessment is None:
                continue
            threads.append(self._build_thread(comment, assessment, replies.get(comment.id, [])))

        if threads:
            created_at = threads[0].original_comment.timestamp
        else:
            created_at = comments[0].created_at if comments else ""
        self._state = ProcessState(
            request_id=self.request_id,
            last_known_revision=revision,
            threads=threads,
            passes=[],
            metadata=StateMetadata(created_at=created_at, updated_at=self._clock()),
        )
        logger.info("Rebuilt review state: %d thread(s) at %s", len(threads), revision[:7])
        return self._state

    def _build_thread(self, comment: Comment, assessment, thread_replies: list[Comment]) -> Thread:
        automation = [r for r in thread_replies if self.is_automation(r.author)]
        developer = [r for r in thread_replies if not self.is_automation(r.author)]

        status = PENDING
        escalated_at = None
        for reply in reversed(automation):
            found = extract_status(reply.body)
            if found:
                status = found
                if found == ESCALATED:
                    escalated_at = reply.created_at
                break

        return Thread(
            id=comment.id,
            file=comment.path or "",
            line=comment.line or 1,
            status=status,
            score=assessment.score,
            assessment=assessment,
            original_comment=ThreadComment(comment.author, comment.body, comment.created_at),
            developer_replies=[ThreadComment(r.author, r.body, r.created_at) for r in developer],
            escalated_at=escalated_at,
            last_automation_reply_at=automation[-1].created_at if automation else None,
        )

    def get_state(self) -> ProcessState:
        if self._state is not None and self._state.schema_version == SCHEMA_VERSION:
            return self._state
        if self._state is not None:
            logger.warning(
                "Cached state has schema version %s (expected %s); rebuilding",
                self._state.schema_version,
                SCHEMA_VERSION,
            )
        return self.rebuild()

    def invalidate(self) -> None:
        self._state = None

    # ------------------------------------------------------------------ #
    # Mutations                                                            #
    # ------------------------------------------------------------------ #

    def _touch(self, state: ProcessState) -> None:
        state.metadata.updated_at = self._clock()

    def add_thread(self, thread: Thread) -> None:
        state = self.get_state()
        for i, existing in enumerate(state.threads):
            if existing.id == thread.id:
                state.threads[i] = thread
                break
        else:
            state.threads.append(thread)
        self._touch(state)

    def update_thread_status(self, thread_id: str, status: str) -> Thread:
        state = self.get_state()
        thread = state.get_thread(thread_id)
        if thread is None:
            raise ThreadNotFoundError(thread_id)
        thread.status = status
        if status == ESCALATED:
            thread.escalated_at = self._clock()
        self._touch(state)
        return thread

    def record_automation_reply(self, thread_id: str) -> None:
        """Note that prtrail replied on a thread so its developer replies count as handled."""
        state = self.get_state()
        thread = state.get_thread(thread_id)
        if thread is not None:
            thread.last_automation_reply_at = self._clock()
            self._touch(state)

    def record_pass_completion(self, result: PassResult) -> None:
        state = self.get_state()
        state.passes = [p for p in state.passes if p.pass_number != result.pass_number]
        state.passes.append(result)
        state.passes.sort(key=lambda p: p.pass_number)
        self._touch(state)

    def reset_passes(self) -> None:
        state = self.get_state()
        state.passes = []
        self._touch(state)

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    def find_duplicate_thread(self, file: str, line: int, finding: str) -> Thread | None:
        for thread in self.get_state().threads:
            if thread.status == RESOLVED:
                continue
            if thread.file != file or thread.line != line:
                continue
            if is_similar_finding(thread.assessment.finding, finding):
                return thread
        return None

    # ------------------------------------------------------------------ #
    # Lifecycle markers on conversation comments                           #
    # ------------------------------------------------------------------ #

    def _annotate(self, comment_id: str, block_type: str, status: str, **extra) -> bool:
        """Rewrite the ``block_type`` marker on a comment with a new status.

        Marker updates are bookkeeping for the next run; a failure here must
        not abort the work the marker describes, so it is logged and reported
        through the return value.
        """
        try:
            comment = self.platform.get_comment(comment_id)
            if comment is None:
                logger.warning("Cannot annotate comment %s: not found", comment_id)
                return False
            block = extract_block(comment.body, block_type) or {"type": block_type}
            block["status"] = status
            stamp = _STATUS_TIMESTAMP.get(status)
            if stamp:
                block[stamp] = self._clock()
            block.update(extra)
            self.platform.update_comment(comment_id, update_block(comment.body, block))
            return True
        except Exception as e:
            logger.warning("Failed to update %s marker on comment %s: %s", block_type, comment_id, e)
            return False

    def mark_question(self, comment_id: str, status: str) -> bool:
        return self._annotate(comment_id, QUESTION, status)

    def mark_manual_review(self, comment_id: str, status: str) -> bool:
        return self._annotate(comment_id, MANUAL_PR_REVIEW, status)

    def dismiss_manual_review(self, comment_id: str, reason: str) -> bool:
        """Mark a manual review request superseded by an automatic review and tell its author."""
        marked = self._annotate(comment_id, MANUAL_PR_REVIEW, REVIEW_DISMISSED, dismissed_reason=reason)
        try:
            self.platform.reply_to_comment(comment_id, DISMISSAL_MESSAGE)
        except Exception as e:
            logger.warning("Failed to post dismissal reply on comment %s: %s", comment_id, e)
            return False
        return marked
