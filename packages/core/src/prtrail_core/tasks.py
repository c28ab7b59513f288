"""Units of outstanding work and the results of executing them."""

from __future__ import annotations

from dataclasses import dataclass, field

# Trigger events
AUTO = "auto"  # platform event: PR opened / synchronized / ready for review
MANUAL = "manual"  # bot mention asking for a review
NONE = "none"  # no review requested; only disputes and questions are handled

# Review output statuses
COMPLETED = "completed"
HAS_BLOCKING_ISSUES = "has_blocking_issues"
FAILED = "failed"


@dataclass
class DisputeTask:
    thread_id: str
    reply_body: str
    reply_author: str
    file: str
    line: int
    priority: int = field(default=1, init=False)
    kind: str = field(default="dispute", init=False)

    @property
    def key(self) -> str:
        return f"dispute:{self.thread_id}"


@dataclass
class QuestionTask:
    comment_id: str
    question: str
    author: str
    file_context: dict | None = None  # {"path": ..., "line": ...}
    conversation_history: list[dict] = field(default_factory=list)
    priority: int = field(default=2, init=False)
    kind: str = field(default="question", init=False)

    @property
    def key(self) -> str:
        return f"question:{self.comment_id}"


@dataclass
class ReviewTask:
    is_manual: bool
    trigger_comment_id: str | None = None
    # Comment ids of manual review requests this task fulfils.
    covered_comment_ids: list[str] = field(default_factory=list)
    priority: int = field(default=3, init=False)
    kind: str = field(default="review", init=False)

    @property
    def affects_merge_gate(self) -> bool:
        return not self.is_manual

    @property
    def key(self) -> str:
        return "review:manual" if self.is_manual else "review:auto"


@dataclass
class TriggerContext:
    """What started this run."""

    event: str = NONE  # "auto" | "manual" | "none"
    action: str | None = None  # e.g. "opened", "synchronize"
    comment_id: str | None = None  # the mention that requested a manual review


@dataclass
class ReviewOutput:
    status: str  # "completed" | "has_blocking_issues" | "failed"
    issues_found: int = 0
    blocking_issues: int = 0


@dataclass
class TaskResult:
    task_kind: str
    success: bool
    task_key: str = ""
    error: str | None = None
    review: ReviewOutput | None = None
    is_manual_review: bool = False

    @property
    def has_blocking_issues(self) -> bool:
        return self.review is not None and self.review.status == HAS_BLOCKING_ISSUES

    @property
    def blocking_issues(self) -> int:
        return self.review.blocking_issues if self.review else 0

    @property
    def issues_found(self) -> int:
        return self.review.issues_found if self.review else 0


@dataclass
class ExecutionResult:
    """Summary of one run, used by the caller to decide the merge gate."""

    results: list[TaskResult] = field(default_factory=list)

    @property
    def total_tasks(self) -> int:
        return len(self.results)

    @property
    def has_blocking_issues(self) -> bool:
        return any(r.has_blocking_issues for r in self.results)

    @property
    def review_completed(self) -> bool:
        return any(r.task_kind == "review" and r.success for r in self.results)

    @property
    def had_auto_review(self) -> bool:
        return any(r.task_kind == "review" and not r.is_manual_review for r in self.results)

    @property
    def had_manual_review(self) -> bool:
        return any(r.task_kind == "review" and r.is_manual_review for r in self.results)

    @property
    def auto_review_has_blocking_issues(self) -> bool:
        """True only when an automatic review completed with blocking issues.

        Manual reviews never gate a merge, whatever they find.
        """
        return any(
            r.task_kind == "review" and r.success and not r.is_manual_review and r.has_blocking_issues
            for r in self.results
        )

    @property
    def issues_found(self) -> int:
        return sum(r.issues_found for r in self.results)

    @property
    def blocking_issues(self) -> int:
        return sum(r.blocking_issues for r in self.results)

    @property
    def failed(self) -> list[TaskResult]:
        return [r for r in self.results if not r.success]
