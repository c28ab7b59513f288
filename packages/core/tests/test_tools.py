"""Tests for the agent tool surface."""

from unittest.mock import MagicMock

import pytest

from prtrail_core.audit import BLOCKED, ERROR, SUCCESS, AuditLog
from prtrail_core.errors import ThreadNotFoundError
from prtrail_core.safety import SafetyPipeline
from prtrail_core.tools import ReviewTools
from prtrail_store.markers import ESCALATED_BANNER, RESOLVED_BANNER, extract_assessment, extract_block
from prtrail_store.memory import InMemoryPlatform
from prtrail_store.models import DISPUTED, ESCALATED, PENDING, RESOLVED
from prtrail_store.state import StateStore

BOT = "prtrail[bot]"
FINDING = {"finding": "SQL query built from user input", "assessment": "Injection risk", "score": 8}
BODY = "**SQL injection.** The query concatenates `name` into the statement. Use parameters."


def _tools(llm_answer="no", **config_overrides):
    platform = InMemoryPlatform(author=BOT)
    store = StateStore(platform, "acme/api#7", [BOT])
    llm = MagicMock()
    llm.complete.return_value = llm_answer
    audit = AuditLog()
    config = {
        "problem_threshold": 5,
        "enable_human_escalation": False,
        "human_reviewers": [],
        "automation_identities": [BOT],
        **config_overrides,
    }
    tools = ReviewTools(store, platform, SafetyPipeline(llm, audit=audit), audit, config)
    tools.session_id = "ses_1"
    return tools, platform, store, audit


# ---------------------------------------------------------------------------
# post_finding
# ---------------------------------------------------------------------------


class TestPostFinding:
    def test_posts_comment_with_marker_and_tracks_thread(self):
        tools, platform, store, _ = _tools()
        result = tools.post_finding("app/db.py", 42, BODY, FINDING)
        assert result == {"filtered": False, "thread_id": "1"}

        comment = platform.comments[0]
        assert (comment.path, comment.line) == ("app/db.py", 42)
        assessment = extract_assessment(comment.body)
        assert assessment.score == 8
        assert assessment.finding == FINDING["finding"]

        thread = store.get_state().get_thread("1")
        assert thread.status == PENDING
        assert thread.score == 8

    def test_posted_finding_survives_rebuild(self):
        tools, _, store, _ = _tools()
        tools.post_finding("app/db.py", 42, BODY, FINDING)
        store.invalidate()
        assert [t.id for t in store.get_state().threads] == ["1"]

    def test_below_threshold_filtered(self):
        tools, platform, _, _ = _tools()
        result = tools.post_finding("app/db.py", 42, BODY, {**FINDING, "score": 4})
        assert result["filtered"] is True
        assert "problem_threshold" in result["reason"]
        assert platform.comments == []

    def test_threshold_is_inclusive(self):
        tools, platform, _, _ = _tools()
        assert tools.post_finding("app/db.py", 42, BODY, {**FINDING, "score": 5})["filtered"] is False

    def test_duplicate_filtered(self):
        tools, platform, _, _ = _tools()
        tools.post_finding("app/db.py", 42, BODY, FINDING)
        result = tools.post_finding(
            "app/db.py", 42, BODY, {**FINDING, "finding": "User input builds the SQL query string"}
        )
        assert result["filtered"] is True
        assert result["thread_id"] == "1"
        assert len(platform.comments) == 1

    def test_same_finding_other_line_not_duplicate(self):
        tools, platform, _, _ = _tools()
        tools.post_finding("app/db.py", 42, BODY, FINDING)
        assert tools.post_finding("app/db.py", 90, BODY, FINDING)["filtered"] is False

    def test_unpublishable_body_blocked(self):
        tools, platform, _, audit = _tools(llm_answer="yes")
        result = tools.post_finding("app/db.py", 42, "Wait, let me check the caller first.", FINDING)
        assert result["blocked"] is True
        assert platform.comments == []
        assert [e.tool_name for e in audit.entries(BLOCKED)] == ["screen:publication", "github_post_review_comment"]

    def test_success_audited_with_session(self):
        tools, _, _, audit = _tools()
        tools.post_finding("app/db.py", 42, BODY, FINDING)
        entry = audit.entries(SUCCESS)[0]
        assert entry.tool_name == "github_post_review_comment"
        assert entry.session_id == "ses_1"
        assert entry.parameters["file"] == "app/db.py"


# ---------------------------------------------------------------------------
# Thread operations
# ---------------------------------------------------------------------------


class TestThreadTools:
    def _with_thread(self, **kwargs):
        tools, platform, store, audit = _tools(**kwargs)
        tools.post_finding("app/db.py", 42, BODY, FINDING)
        return tools, platform, store, audit

    def test_reply_disputes(self):
        tools, platform, store, _ = self._with_thread()
        assert tools.reply_to_thread("1", "The input is still unescaped here.")["status"] == DISPUTED
        reply = platform.comments[-1]
        assert reply.in_reply_to_id == "1"
        assert extract_block(reply.body)["status"] == DISPUTED
        thread = store.get_state().get_thread("1")
        assert thread.status == DISPUTED
        assert thread.last_automation_reply_at is not None

    def test_concession_resolves(self):
        tools, _, store, _ = self._with_thread()
        tools.reply_to_thread("1", "You are right, the ORM escapes this.", is_concession=True)
        assert store.get_state().get_thread("1").status == RESOLVED

    def test_resolve_posts_banner_and_survives_rebuild(self):
        tools, platform, store, _ = self._with_thread()
        tools.resolve_thread("1", "Fixed in the latest commit")
        assert RESOLVED_BANNER in platform.comments[-1].body
        assert platform.resolved == {"1": "Fixed in the latest commit"}
        store.invalidate()
        assert store.get_state().get_thread("1").status == RESOLVED

    def test_unknown_thread_raises_and_audits_error(self):
        tools, _, _, audit = self._with_thread()
        with pytest.raises(ThreadNotFoundError):
            tools.resolve_thread("999", "nope")
        assert audit.entries(ERROR)[0].tool_name == "github_resolve_thread"

    def test_escalation_disabled_is_blocked(self):
        tools, platform, _, audit = self._with_thread()
        result = tools.escalate_dispute("1", "Still vulnerable", "ORM escapes it")
        assert result["blocked"] is True
        assert platform.reviewer_requests == []
        assert audit.entries(BLOCKED)[0].tool_name == "github_escalate_dispute"

    def test_escalation_requests_reviewers(self):
        tools, platform, store, _ = self._with_thread(enable_human_escalation=True, human_reviewers=["@alice", "bob"])
        assert tools.escalate_dispute("1", "Still vulnerable", "ORM escapes it")["status"] == ESCALATED
        assert platform.reviewer_requests == [("1", ["alice", "bob"])]
        body = platform.comments[-1].body
        assert ESCALATED_BANNER in body
        assert "@alice @bob" in body
        thread = store.get_state().get_thread("1")
        assert thread.status == ESCALATED
        assert thread.escalated_at is not None


# ---------------------------------------------------------------------------
# Passes and dispatch
# ---------------------------------------------------------------------------


class TestPasses:
    def test_submit_records_pass(self):
        tools, _, store, _ = _tools()
        assert tools.submit_pass_results(1, has_blocking_issues=True) == {"success": True, "next_pass": 2}
        assert 1 in tools.acknowledged_passes
        assert store.get_state().passes[0].has_blocking_issues is True

    def test_last_pass_has_no_next(self):
        tools, _, _, _ = _tools()
        assert tools.submit_pass_results(3)["next_pass"] is None

    def test_duplicate_rejected(self):
        tools, _, _, _ = _tools()
        tools.submit_pass_results(2)
        assert tools.submit_pass_results(2)["success"] is False

    def test_out_of_range_rejected(self):
        tools, _, _, _ = _tools()
        assert tools.submit_pass_results(4)["success"] is False
        assert tools.acknowledged_passes == set()

    def test_reset_clears_acknowledgments(self):
        tools, _, _, _ = _tools()
        tools.submit_pass_results(1)
        tools.reset_passes()
        assert tools.submit_pass_results(1)["success"] is True


class TestDispatch:
    def test_routes_by_tool_name(self):
        tools, _, _, _ = _tools()
        result = tools.dispatch("submit_pass_results", {"pass_number": 1, "has_blocking_issues": False})
        assert result["success"] is True

    def test_get_run_state(self):
        tools, _, _, _ = _tools()
        tools.post_finding("app/db.py", 42, BODY, FINDING)
        state = tools.dispatch("github_get_run_state")
        assert state["request_id"] == "acme/api#7"
        assert state["threads"][0]["id"] == "1"

    def test_unknown_tool(self):
        tools, _, _, audit = _tools()
        with pytest.raises(ValueError):
            tools.dispatch("github_merge_pr", {})
        assert audit.entries(ERROR)[0].tool_name == "github_merge_pr"
