"""Runs detected tasks in priority order and summarises the outcome."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prtrail_core.tasks import ExecutionResult, QuestionTask, ReviewTask, TaskResult
from prtrail_store.state import (
    QUESTION_ANSWERED,
    QUESTION_IN_PROGRESS,
    REVIEW_COMPLETED,
    REVIEW_IN_PROGRESS,
)

if TYPE_CHECKING:
    from prtrail_core.detector import TaskDetector
    from prtrail_core.session import ReviewSession
    from prtrail_core.tasks import TriggerContext
    from prtrail_store.state import StateStore

logger = logging.getLogger(__name__)


class ExecutionOrchestrator:
    def __init__(self, detector: TaskDetector, session: ReviewSession, store: StateStore):
        self.detector = detector
        self.session = session
        self.store = store

    def execute(self, trigger: TriggerContext) -> ExecutionResult:
        """Detect outstanding work and run each task; one task failing does not stop the rest."""
        tasks = self.detector.detect(trigger)
        result = ExecutionResult()
        for index, task in enumerate(tasks, start=1):
            logger.info("[%d/%d] Running %s", index, len(tasks), task.key)
            result.results.append(self._run(task))
        logger.info(
            "Run finished: %d task(s), %d failed, %d blocking issue(s)",
            result.total_tasks,
            len(result.failed),
            result.blocking_issues,
        )
        return result

    def _run(self, task) -> TaskResult:
        is_manual = isinstance(task, ReviewTask) and task.is_manual
        try:
            if isinstance(task, ReviewTask):
                review = self._run_review(task)
                return TaskResult(task.kind, True, task.key, review=review, is_manual_review=is_manual)
            if isinstance(task, QuestionTask):
                self._answer(task)
            else:
                self.session.resolve_dispute(task)
            return TaskResult(task.kind, True, task.key)
        except Exception as e:
            logger.error("Task %s failed: %s", task.key, e)
            return TaskResult(task.kind, False, task.key, error=str(e), is_manual_review=is_manual)

    def _answer(self, task: QuestionTask) -> None:
        self.store.mark_question(task.comment_id, QUESTION_IN_PROGRESS)
        self.session.answer_question(task)
        self.store.mark_question(task.comment_id, QUESTION_ANSWERED)

    def _run_review(self, task: ReviewTask):
        for comment_id in task.covered_comment_ids:
            self.store.mark_manual_review(comment_id, REVIEW_IN_PROGRESS)
        review = self.session.run_review()
        for comment_id in task.covered_comment_ids:
            self.store.mark_manual_review(comment_id, REVIEW_COMPLETED)
        return review
