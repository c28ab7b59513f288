"""Outstanding-work detection.

Scans the reconstructed review state and the raw comment history for three
kinds of work, highest priority first:

  1. disputes  : a developer replied on an open thread after prtrail last spoke
  2. questions : a bot mention asking something, not yet answered
  3. reviews   : the run's trigger, or bot mentions asking for a review

Answered questions and finished review requests are recognised from the
marker blocks written onto their comments by earlier runs.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from prtrail_core.classify import QUESTION
from prtrail_core.tasks import AUTO, MANUAL, DisputeTask, QuestionTask, ReviewTask
from prtrail_store.markers import MANUAL_PR_REVIEW, QUESTION_ANSWER, extract_block
from prtrail_store.markers import QUESTION as QUESTION_MARKER
from prtrail_store.state import QUESTION_ANSWERED, REVIEW_COMPLETED, REVIEW_DISMISSED

if TYPE_CHECKING:
    from prtrail_core.classify import Classifier
    from prtrail_core.tasks import TriggerContext
    from prtrail_store.base import BasePlatform
    from prtrail_store.models import Comment
    from prtrail_store.state import StateStore

logger = logging.getLogger(__name__)

_HISTORY_LIMIT = 10


class TaskDetector:
    def __init__(self, store: StateStore, platform: BasePlatform, classifier: Classifier, config: dict):
        self.store = store
        self.platform = platform
        self.classifier = classifier
        self.bot_mention = config.get("bot_mention", "@prtrail-bot")
        self._mention_re = re.compile(re.escape(self.bot_mention), re.IGNORECASE)

    def detect(self, trigger: TriggerContext) -> list:
        """Return deduplicated tasks ordered by priority, stable within a tier."""
        tasks: list = []
        tasks.extend(self._detect_disputes())

        comments = sorted(self.platform.list_comments(), key=lambda c: c.created_at)
        questions, review_requests = self._scan_mentions(comments, trigger)
        tasks.extend(questions)
        tasks.extend(self._review_tasks(trigger, review_requests))

        tasks = self._dedupe(tasks, trigger)
        tasks.sort(key=lambda t: t.priority)
        logger.info(
            "Detected %d task(s): %s",
            len(tasks),
            ", ".join(t.key for t in tasks) or "none",
        )
        return tasks

    # ------------------------------------------------------------------ #
    # Disputes                                                             #
    # ------------------------------------------------------------------ #

    def _detect_disputes(self) -> list[DisputeTask]:
        disputes = []
        for thread in self.store.get_state().active_threads():
            if not thread.developer_replies:
                continue
            latest = thread.developer_replies[-1]
            if latest.timestamp <= thread.last_automation_activity:
                continue
            disputes.append(
                DisputeTask(
                    thread_id=thread.id,
                    reply_body=latest.body,
                    reply_author=latest.author,
                    file=thread.file,
                    line=thread.line,
                )
            )
        return disputes

    # ------------------------------------------------------------------ #
    # Bot mentions                                                         #
    # ------------------------------------------------------------------ #

    def _scan_mentions(self, comments: list[Comment], trigger: TriggerContext) -> tuple[list[QuestionTask], list[str]]:
        thread_ids = {t.id for t in self.store.get_state().threads}
        answered = {
            str(block.get("reply_to_comment_id"))
            for c in comments
            if self.store.is_automation(c.author)
            for block in [extract_block(c.body, QUESTION_ANSWER)]
            if block and block.get("reply_to_comment_id") is not None
        }

        questions: list[QuestionTask] = []
        review_requests: list[str] = []
        history: list[dict] = []

        for comment in comments:
            if self.store.is_automation(comment.author):
                if comment.kind == "issue":
                    history.append(_turn(comment))
                continue
            if not self._mention_re.search(comment.body):
                continue
            # Replies inside a finding's thread are handled as disputes.
            if comment.in_reply_to_id in thread_ids:
                continue

            text = self._mention_re.sub("", comment.body).strip()
            review_marker = extract_block(comment.body, MANUAL_PR_REVIEW)
            is_trigger = trigger.event == MANUAL and comment.id == trigger.comment_id

            if review_marker is not None or is_trigger:
                if is_trigger or review_marker.get("status") not in (REVIEW_COMPLETED, REVIEW_DISMISSED):
                    review_requests.append(comment.id)
            elif text and comment.id not in answered and not self._marked_answered(comment):
                intent = self.classifier.classify_mention(text)
                if intent == QUESTION:
                    questions.append(
                        QuestionTask(
                            comment_id=comment.id,
                            question=text,
                            author=comment.author,
                            file_context={"path": comment.path, "line": comment.line} if comment.path else None,
                            conversation_history=history[-_HISTORY_LIMIT:],
                        )
                    )
                else:
                    review_requests.append(comment.id)

            history.append(_turn(comment))

        return questions, review_requests

    def _marked_answered(self, comment: Comment) -> bool:
        block = extract_block(comment.body, QUESTION_MARKER)
        return block is not None and block.get("status") == QUESTION_ANSWERED

    # ------------------------------------------------------------------ #
    # Reviews and deduplication                                            #
    # ------------------------------------------------------------------ #

    def _review_tasks(self, trigger: TriggerContext, review_requests: list[str]) -> list[ReviewTask]:
        tasks = []
        if trigger.event == AUTO:
            tasks.append(ReviewTask(is_manual=False))

        covered = list(dict.fromkeys(review_requests))
        if trigger.event == MANUAL and trigger.comment_id and trigger.comment_id not in covered:
            covered.insert(0, trigger.comment_id)
        if covered:
            trigger_id = trigger.comment_id if trigger.event == MANUAL and trigger.comment_id else covered[0]
            tasks.append(ReviewTask(is_manual=True, trigger_comment_id=trigger_id, covered_comment_ids=covered))
        elif trigger.event == MANUAL:
            tasks.append(ReviewTask(is_manual=True))
        return tasks

    def _dedupe(self, tasks: list, trigger: TriggerContext) -> list:
        has_auto = any(isinstance(t, ReviewTask) and not t.is_manual for t in tasks)
        kept: dict[str, object] = {}
        for task in tasks:
            if has_auto and isinstance(task, ReviewTask) and task.is_manual:
                self._dismiss(task, trigger)
                continue
            kept.setdefault(task.key, task)
        return list(kept.values())

    def _dismiss(self, task: ReviewTask, trigger: TriggerContext) -> None:
        reason = f"Automatic review triggered ({trigger.action or 'pull request event'})"
        for comment_id in task.covered_comment_ids:
            logger.info("Dismissing manual review request %s: %s", comment_id, reason)
            self.store.dismiss_manual_review(comment_id, reason)


def _turn(comment: Comment) -> dict:
    return {"author": comment.author, "body": comment.body, "timestamp": comment.created_at}
