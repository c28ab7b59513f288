"""Operations the review agent performs through tool calls.

These are the only ways the agent can change the pull request. Each one
writes to the platform and mirrors the change into StateStore, so the
cached state matches what the next run will reconstruct from comments.

Every call is recorded in the run's AuditLog. ``dispatch`` maps the
agent-facing tool names onto the methods for whatever transport delivers
the agent's calls.
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import TYPE_CHECKING

from prtrail_core.audit import BLOCKED, ERROR, SUCCESS
from prtrail_core.errors import SecurityBlockError, ThreadNotFoundError
from prtrail_core.safety import PUBLICATION_SCREEN
from prtrail_store.markers import DISPUTE_RESOLUTION, ESCALATED_BANNER, REVIEW_FINDING, add_block
from prtrail_store.models import (
    DISPUTED,
    ESCALATED,
    PENDING,
    RESOLVED,
    Assessment,
    PassResult,
    Thread,
    ThreadComment,
    utc_now,
)

if TYPE_CHECKING:
    from prtrail_core.audit import AuditLog
    from prtrail_core.safety import SafetyPipeline
    from prtrail_store.base import BasePlatform
    from prtrail_store.state import StateStore

logger = logging.getLogger(__name__)

TOTAL_PASSES = 3


def _audited(tool_name: str):
    """Record each call of the wrapped tool: blocked results, errors and successes."""

    def decorator(method):
        signature = inspect.signature(method)

        @functools.wraps(method)
        def wrapper(self, *args, **kwargs):
            params = signature.bind(self, *args, **kwargs).arguments
            params.pop("self")
            try:
                result = method(self, *args, **kwargs)
            except Exception as e:
                self.audit.record(tool_name, params, ERROR, session_id=self.session_id, reason=str(e))
                raise
            outcome = BLOCKED if isinstance(result, dict) and result.get("blocked") else SUCCESS
            self.audit.record(
                tool_name, params, outcome, session_id=self.session_id, reason=(result or {}).get("reason")
            )
            return result

        return wrapper

    return decorator


class ReviewTools:
    def __init__(
        self,
        store: StateStore,
        platform: BasePlatform,
        safety: SafetyPipeline,
        audit: AuditLog,
        config: dict,
    ):
        self.store = store
        self.platform = platform
        self.safety = safety
        self.audit = audit
        self.problem_threshold = config["problem_threshold"]
        self.escalation_enabled = bool(config.get("enable_human_escalation"))
        self.human_reviewers = list(config.get("human_reviewers") or [])
        self.identity = (config.get("automation_identities") or ["prtrail[bot]"])[0]
        self.session_id: str | None = None
        self.acknowledged_passes: set[int] = set()

    # ------------------------------------------------------------------ #
    # Findings                                                             #
    # ------------------------------------------------------------------ #

    @_audited("github_post_review_comment")
    def post_finding(self, file: str, line: int, body: str, assessment: dict) -> dict:
        parsed = Assessment(
            finding=str(assessment["finding"]),
            explanation=str(assessment.get("assessment", assessment.get("explanation", ""))),
            score=int(assessment["score"]),
        )
        if parsed.score < self.problem_threshold:
            reason = f"Score {parsed.score} is below problem_threshold {self.problem_threshold}"
            logger.info("Filtered finding at %s:%s: %s", file, line, reason)
            return {"filtered": True, "reason": reason}

        blocked = self._screen(body)
        if blocked:
            return blocked

        duplicate = self.store.find_duplicate_thread(file, line, parsed.finding)
        if duplicate is not None:
            reason = f"Duplicate of open thread {duplicate.id}"
            logger.info("Filtered finding at %s:%s: %s", file, line, reason)
            return {"filtered": True, "reason": reason, "thread_id": duplicate.id}

        full_body = add_block(f"{body.rstrip()}\n\n---", {"type": REVIEW_FINDING, **parsed.to_marker()})
        thread_id = self.platform.post_review_comment(file, line, full_body)
        self.store.add_thread(
            Thread(
                id=thread_id,
                file=file,
                line=line,
                status=PENDING,
                score=parsed.score,
                assessment=parsed,
                original_comment=ThreadComment(self.identity, full_body, utc_now()),
            )
        )
        logger.info("Posted finding %s at %s:%s (score %d)", thread_id, file, line, parsed.score)
        return {"filtered": False, "thread_id": thread_id}

    # ------------------------------------------------------------------ #
    # Threads                                                              #
    # ------------------------------------------------------------------ #

    @_audited("github_reply_to_thread")
    def reply_to_thread(self, thread_id: str, body: str, is_concession: bool = False) -> dict:
        self._require_thread(thread_id)
        blocked = self._screen(body)
        if blocked:
            return blocked

        status = RESOLVED if is_concession else DISPUTED
        marker = {"type": DISPUTE_RESOLUTION, "status": status, "is_concession": bool(is_concession)}
        self.platform.reply_to_comment(thread_id, add_block(body, marker))
        self.store.update_thread_status(thread_id, status)
        self.store.record_automation_reply(thread_id)
        return {"success": True, "status": status}

    @_audited("github_resolve_thread")
    def resolve_thread(self, thread_id: str, reason: str) -> dict:
        self._require_thread(thread_id)
        self.platform.resolve_thread(thread_id, reason)
        self.store.update_thread_status(thread_id, RESOLVED)
        self.store.record_automation_reply(thread_id)
        return {"success": True, "status": RESOLVED}

    @_audited("github_escalate_dispute")
    def escalate_dispute(self, thread_id: str, agent_position: str, developer_position: str) -> dict:
        if not self.escalation_enabled or not self.human_reviewers:
            return {
                "success": False,
                "blocked": True,
                "reason": "Human escalation is disabled or no human reviewers are configured",
            }
        self._require_thread(thread_id)

        mentions = " ".join(f"@{r.lstrip('@')}" for r in self.human_reviewers)
        body = (
            f"{ESCALATED_BANNER}\n\n"
            f"**Reviewer position:** {agent_position}\n\n"
            f"**Developer position:** {developer_position}\n\n"
            f"{mentions} please make the final call on this thread."
        )
        body = add_block(body, {"type": DISPUTE_RESOLUTION, "status": ESCALATED})
        self.platform.request_reviewers(thread_id, [r.lstrip("@") for r in self.human_reviewers], body)
        self.store.update_thread_status(thread_id, ESCALATED)
        self.store.record_automation_reply(thread_id)
        return {"success": True, "status": ESCALATED}

    # ------------------------------------------------------------------ #
    # Run state                                                            #
    # ------------------------------------------------------------------ #

    @_audited("github_get_run_state")
    def get_run_state(self) -> dict:
        return self.store.get_state().to_dict()

    @_audited("submit_pass_results")
    def submit_pass_results(self, pass_number: int, has_blocking_issues: bool = False) -> dict:
        if not 1 <= pass_number <= TOTAL_PASSES:
            return {"success": False, "reason": f"pass_number must be between 1 and {TOTAL_PASSES}"}
        next_pass = pass_number + 1 if pass_number < TOTAL_PASSES else None
        if pass_number in self.acknowledged_passes:
            return {"success": False, "reason": f"Pass {pass_number} was already submitted", "next_pass": next_pass}

        self.store.record_pass_completion(PassResult(pass_number, True, bool(has_blocking_issues)))
        self.acknowledged_passes.add(pass_number)
        logger.info("Pass %d complete (blocking issues: %s)", pass_number, bool(has_blocking_issues))
        return {"success": True, "next_pass": next_pass}

    def reset_passes(self) -> None:
        self.acknowledged_passes.clear()

    # ------------------------------------------------------------------ #
    # Dispatch                                                             #
    # ------------------------------------------------------------------ #

    TOOL_METHODS = {
        "github_post_review_comment": "post_finding",
        "github_reply_to_thread": "reply_to_thread",
        "github_resolve_thread": "resolve_thread",
        "github_escalate_dispute": "escalate_dispute",
        "github_get_run_state": "get_run_state",
        "submit_pass_results": "submit_pass_results",
    }

    def dispatch(self, tool_name: str, arguments: dict | None = None) -> dict:
        method_name = self.TOOL_METHODS.get(tool_name)
        if method_name is None:
            self.audit.record(tool_name, arguments or {}, ERROR, session_id=self.session_id, reason="unknown tool")
            raise ValueError(f"Unknown tool: {tool_name!r}")
        return getattr(self, method_name)(**(arguments or {}))

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    def _require_thread(self, thread_id: str) -> None:
        """Raise ThreadNotFoundError unless the thread exists, rebuilding once first.

        The agent can reference a thread posted after the state was cached,
        e.g. by another run, so one rebuild is attempted before giving up.
        """
        if self.store.get_state().get_thread(thread_id) is not None:
            return
        logger.warning("Thread %s not in cached state; rebuilding", thread_id)
        if self.store.rebuild().get_thread(thread_id) is None:
            raise ThreadNotFoundError(thread_id)

    def _screen(self, body: str) -> dict | None:
        try:
            self.safety.check(body, PUBLICATION_SCREEN)
        except SecurityBlockError as e:
            return {"success": False, "filtered": True, "blocked": True, "reason": str(e), "flags": e.flags}
        return None
