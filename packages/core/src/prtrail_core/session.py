"""Review session orchestration.

A ReviewSession owns one long-lived agent conversation and drives it through
the review phases:

    idle → dispute_resolution → fix_verification → multi_pass_review → idle

Dispute resolution and fix verification only run when unresolved threads
exist. The multi-pass review sends three prompts; after each one the agent
must call ``submit_pass_results`` before the next prompt is sent.

A review attempt is raced against a wall-clock budget. When an attempt fails
(timeout, transport error, missing pass acknowledgment) the whole attempt is
retried from the start: the agent session is deleted and recreated, pass
bookkeeping is reset and state is reconstructed again. Phases are never
resumed midway.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from typing import TYPE_CHECKING, Callable

from prtrail_core import prompts
from prtrail_core.agent.base import AgentSessionLease
from prtrail_core.classify import ACKNOWLEDGMENT, OUT_OF_SCOPE, QUESTION
from prtrail_core.errors import (
    ReviewError,
    ReviewTimeoutError,
    SecurityBlockError,
    ThreadNotFoundError,
    TransportError,
)
from prtrail_core.safety import INJECTION_SCREEN, PUBLICATION_SCREEN
from prtrail_core.tasks import COMPLETED, HAS_BLOCKING_ISSUES, ReviewOutput
from prtrail_core.tools import TOTAL_PASSES
from prtrail_core.utils.code import reviewable_files
from prtrail_store.markers import QUESTION_ANSWER, add_block
from prtrail_store.models import utc_now

if TYPE_CHECKING:
    from prtrail_core.agent.base import BaseAgentClient
    from prtrail_core.classify import Classifier
    from prtrail_core.safety import SafetyPipeline
    from prtrail_core.tasks import DisputeTask, QuestionTask
    from prtrail_core.tools import ReviewTools
    from prtrail_store.base import BasePlatform
    from prtrail_store.models import Thread
    from prtrail_store.state import StateStore

logger = logging.getLogger(__name__)

# Phases
IDLE = "idle"
DISPUTE_RESOLUTION = "dispute_resolution"
FIX_VERIFICATION = "fix_verification"
MULTI_PASS_REVIEW = "multi_pass_review"

# Dispute outcomes
RESOLVED_BY_ACK = "resolved"
DEFERRAL_ACCEPTED = "deferral_accepted"
DEFERRAL_REJECTED = "deferral_rejected"
DELEGATED = "delegated"

_DEFER_ACCEPT_REPLY = (
    "Acceptable to address in a follow-up given the severity of this finding. "
    "Please make sure it is tracked."
)
_DEFER_REJECT_REPLY = (
    "This is a critical issue (score {score}/10) and cannot be deferred. "
    "It must be addressed before this PR merges."
)


class ReviewSession:
    def __init__(
        self,
        agent: BaseAgentClient,
        store: StateStore,
        platform: BasePlatform,
        tools: ReviewTools,
        classifier: Classifier,
        safety: SafetyPipeline,
        config: dict,
        workspace_root: str = ".",
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.agent = agent
        self.store = store
        self.platform = platform
        self.tools = tools
        self.classifier = classifier
        self.safety = safety
        self.workspace_root = workspace_root
        self._sleep = sleep

        self.timeout_seconds = config["review_timeout_minutes"] * 60
        self.max_retries = config["max_review_retries"]
        self.retry_delay = config.get("retry_delay_seconds", 5)
        self.blocking_threshold = config.get("blocking_threshold") or config["problem_threshold"]
        self.defer_accept_max_score = config.get("defer_accept_max_score", 4)
        self.defer_reject_min_score = config.get("defer_reject_min_score", 9)
        self.escalation_enabled = bool(config.get("enable_human_escalation")) and bool(config.get("human_reviewers"))
        self.exclude = config.get("exclude") or []

        self.lease = AgentSessionLease(agent, f"prtrail review {store.request_id}", prompts.SYSTEM)
        self.phase = IDLE
        self.session_ids: list[str] = []
        self._generation = 0
        self._handled_replies: set[tuple[str, str]] = set()

    # ------------------------------------------------------------------ #
    # Review                                                               #
    # ------------------------------------------------------------------ #

    def run_review(self) -> ReviewOutput:
        """Run the full review, retrying whole attempts; raise ReviewError when all fail."""
        attempts = self.max_retries + 1
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                delay = self.retry_delay * (attempt - 1)
                logger.warning("Retrying review in %ss (attempt %d/%d)", delay, attempt, attempts)
                self._reset_for_retry()
                self._sleep(delay)

            self._generation += 1
            generation = self._generation
            try:
                self._run_with_timeout(lambda: self._attempt(generation))
                output = self.build_output()
                logger.info(
                    "Review complete: %s (%d issue(s), %d blocking)",
                    output.status,
                    output.issues_found,
                    output.blocking_issues,
                )
                return output
            except Exception as e:
                last_error = e
                logger.warning("Review attempt %d/%d failed: %s", attempt, attempts, e)
            finally:
                self.phase = IDLE

        self.lease.release()
        logger.error("Review failed after %d attempt(s): %s", attempts, last_error)
        raise ReviewError(f"Review failed after {attempts} attempt(s): {last_error}") from last_error

    def _run_with_timeout(self, fn: Callable[[], None]) -> None:
        """Run ``fn`` in a worker thread and stop waiting once the budget is spent.

        The worker cannot be interrupted; on timeout it is abandoned and its
        generation is retired so it stops at the next phase boundary.
        """
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="prtrail-review")
        future = executor.submit(fn)
        try:
            future.result(timeout=self.timeout_seconds)
        except concurrent.futures.TimeoutError:
            self._generation += 1
            raise ReviewTimeoutError(
                f"Review attempt exceeded {self.timeout_seconds / 60:g} minute budget"
            ) from None
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _reset_for_retry(self) -> None:
        self.lease.release()
        self.tools.reset_passes()
        self.store.invalidate()

    def _check_current(self, generation: int) -> None:
        if generation != self._generation:
            raise ReviewError("Review attempt was abandoned")

    def _acquire(self) -> str:
        held = self.lease.held
        session_id = self.lease.acquire()
        if not held:
            self.session_ids.append(session_id)
        self.tools.session_id = session_id
        return session_id

    def _attempt(self, generation: int) -> None:
        session_id = self._acquire()
        state = self.store.get_state()
        unresolved = state.active_threads()

        if unresolved:
            self.phase = DISPUTE_RESOLUTION
            for thread in unresolved:
                self._check_current(generation)
                try:
                    self._resolve_pending_reply(session_id, thread)
                except SecurityBlockError as e:
                    # The reply is discarded; the thread stays as it was.
                    logger.warning("Skipping reply on thread %s: %s", thread.id, e)

            self._check_current(generation)
            self.phase = FIX_VERIFICATION
            still_open = self.store.get_state().active_threads()
            if still_open:
                prompt = prompts.fix_verification(
                    prompts.format_previous_issues(still_open),
                    self._new_commits_summary(state.last_known_revision),
                )
                self.agent.send_prompt_and_wait_for_idle(session_id, prompt)

        self.phase = MULTI_PASS_REVIEW
        for pass_number in range(1, TOTAL_PASSES + 1):
            self._check_current(generation)
            prompt = self._pass_prompt(pass_number)
            logger.info("Starting pass %d of %d", pass_number, TOTAL_PASSES)
            logger.debug("Pass %d prompt length: %d chars", pass_number, len(prompt))
            self.agent.send_prompt_and_wait_for_idle(session_id, prompt)
            if pass_number not in self.tools.acknowledged_passes:
                raise ReviewError(
                    f"Pass {pass_number} ended without submit_pass_results; "
                    "check that the agent runtime forwards tool calls to ReviewTools.dispatch"
                )

    def _new_commits_summary(self, revision: str) -> str:
        try:
            files = self.platform.list_changed_files()
            diff = self.platform.get_diff()
        except TransportError as e:
            logger.warning("Failed to fetch changes for fix verification: %s", e)
            return prompts.new_commits_summary(revision)
        return prompts.new_commits_summary(revision, files, diff)

    def _pass_prompt(self, pass_number: int) -> str:
        if pass_number == 1:
            return prompts.pass_1(reviewable_files(self.platform.list_changed_files(), self.exclude))
        if pass_number == 2:
            return prompts.pass_2()
        return prompts.pass_3(prompts.detect_security_sensitivity(self.workspace_root))

    def build_output(self) -> ReviewOutput:
        state = self.store.get_state()
        active = state.active_threads()
        blocking = [t for t in active if t.score >= self.blocking_threshold]
        pass_blocking = any(p.has_blocking_issues for p in state.passes)
        status = HAS_BLOCKING_ISSUES if blocking or pass_blocking else COMPLETED
        return ReviewOutput(status=status, issues_found=len(active), blocking_issues=len(blocking))

    # ------------------------------------------------------------------ #
    # Disputes                                                             #
    # ------------------------------------------------------------------ #

    def resolve_dispute(self, task: DisputeTask) -> str:
        """Handle one developer reply on a finding; returns the outcome."""
        session_id = self._acquire()
        thread = self.store.get_state().get_thread(task.thread_id)
        if thread is None:
            thread = self.store.rebuild().get_thread(task.thread_id)
        if thread is None:
            raise ThreadNotFoundError(task.thread_id)

        self.phase = DISPUTE_RESOLUTION
        try:
            return self._handle_reply(session_id, thread, task.reply_body, key=(thread.id, task.reply_body))
        finally:
            self.phase = IDLE

    def _resolve_pending_reply(self, session_id: str, thread: Thread) -> None:
        if not thread.developer_replies:
            return
        latest = thread.developer_replies[-1]
        if latest.timestamp <= thread.last_automation_activity:
            return
        self._handle_reply(session_id, thread, latest.body, key=(thread.id, latest.body))

    def _handle_reply(self, session_id: str, thread: Thread, reply: str, key: tuple[str, str]) -> str:
        if key in self._handled_replies:
            logger.debug("Reply on thread %s already handled this run", thread.id)
            return DELEGATED

        try:
            reply = self.safety.check(reply, INJECTION_SCREEN)
        except SecurityBlockError:
            self._handled_replies.add(key)
            raise
        outcome = self._act_on_reply(session_id, thread, reply)
        # Recorded after handling; a failed attempt leaves the reply pending.
        self._handled_replies.add(key)
        return outcome

    def _act_on_reply(self, session_id: str, thread: Thread, reply: str) -> str:
        intent = self.classifier.classify_reply(thread.assessment.finding, reply)
        logger.info("Developer reply on thread %s classified as %s (score %d)", thread.id, intent, thread.score)

        if intent == ACKNOWLEDGMENT:
            self.tools.resolve_thread(thread.id, "Developer acknowledged and will address this issue")
            return RESOLVED_BY_ACK

        if intent == OUT_OF_SCOPE:
            if thread.score <= self.defer_accept_max_score:
                self.tools.reply_to_thread(thread.id, _DEFER_ACCEPT_REPLY, is_concession=False)
                self.tools.resolve_thread(thread.id, "Deferral accepted for a low-severity finding")
                return DEFERRAL_ACCEPTED
            if thread.score >= self.defer_reject_min_score:
                self.tools.reply_to_thread(thread.id, _DEFER_REJECT_REPLY.format(score=thread.score), is_concession=False)
                return DEFERRAL_REJECTED

        if intent == QUESTION:
            prompt = prompts.clarify_finding(thread, reply)
        else:
            prompt = prompts.dispute_evaluation(thread, reply, intent, self.escalation_enabled)
        self.agent.send_prompt_and_wait_for_idle(session_id, prompt)
        return DELEGATED

    # ------------------------------------------------------------------ #
    # Questions                                                            #
    # ------------------------------------------------------------------ #

    def answer_question(self, task: QuestionTask) -> str:
        """Answer a bot mention in a dedicated session and post the reply; returns its comment id."""
        question = self.safety.check(task.question, INJECTION_SCREEN)
        prompt = prompts.answer_question(
            question,
            task.author,
            file_context=task.file_context,
            changed_files=self.platform.list_changed_files(),
            conversation_history=task.conversation_history,
        )

        with AgentSessionLease(self.agent, f"prtrail question {task.comment_id}", prompts.QUESTION_ANSWERING_SYSTEM) as lease:
            answer = self.agent.send_prompt_and_await_reply(lease.session_id, prompt)

        if not answer.strip():
            raise ReviewError(f"Agent returned an empty answer for comment {task.comment_id}")
        answer = self.safety.check(answer, PUBLICATION_SCREEN)

        body = add_block(
            f"@{task.author} {answer.strip()}",
            {"type": QUESTION_ANSWER, "reply_to_comment_id": task.comment_id, "answered_at": utc_now()},
        )
        comment_id = self.platform.reply_to_comment(task.comment_id, body)
        logger.info("Answered question %s in comment %s", task.comment_id, comment_id)
        return comment_id

    def submit_pass_results(self, pass_number: int, has_blocking_issues: bool = False) -> int | None:
        """Acknowledge a pass; returns the next pass number, or None after the last."""
        result = self.tools.submit_pass_results(pass_number, has_blocking_issues)
        if not result.get("success") and "next_pass" not in result:
            raise ValueError(result["reason"])
        return result.get("next_pass")

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        self.lease.release()
        self.phase = IDLE

    def __enter__(self) -> ReviewSession:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
