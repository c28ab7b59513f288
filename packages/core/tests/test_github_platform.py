"""Tests for the PyGithub-backed platform adapter."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from github import GithubException

from prtrail_core.errors import TransportError
from prtrail_core.gh.platform import GitHubPlatform
from prtrail_store.markers import RESOLVED_BANNER, extract_status
from prtrail_store.models import RESOLVED


def _user(login):
    user = MagicMock()
    user.login = login
    return user


def _review_comment(id, body, login="prtrail[bot]", in_reply_to_id=None, path="src/app.py", line=10):
    c = MagicMock()
    c.id = id
    c.user = _user(login)
    c.body = body
    c.created_at = datetime(2024, 5, 1, 10, 0, id % 60, tzinfo=timezone.utc)
    c.in_reply_to_id = in_reply_to_id
    c.path = path
    c.line = line
    return c


def _issue_comment(id, body, login="alice"):
    c = MagicMock()
    c.id = id
    c.user = _user(login)
    c.body = body
    c.created_at = datetime(2024, 5, 1, 9, 0, 0)
    return c


def _platform(review=(), issue=()):
    github = MagicMock()
    pull = github.get_repo.return_value.get_pull.return_value
    pull.get_review_comments.return_value = list(review)
    pull.get_issue_comments.return_value = list(issue)
    pull.head.sha = "f" * 40
    return GitHubPlatform("acme/api", 7, "token", github=github), pull, github


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:
    def test_lists_review_and_issue_comments(self):
        platform, _, _ = _platform(
            review=[_review_comment(1, "finding"), _review_comment(2, "reply", login="alice", in_reply_to_id=1)],
            issue=[_issue_comment(3, "@prtrail-bot review")],
        )
        comments = platform.list_comments()
        assert [(c.id, c.kind) for c in comments] == [("1", "review"), ("2", "review"), ("3", "issue")]
        assert comments[1].in_reply_to_id == "1"
        assert comments[0].author == "prtrail[bot]"
        assert comments[0].path == "src/app.py"
        assert comments[0].created_at == "2024-05-01T10:00:01+00:00"

    def test_naive_timestamps_treated_as_utc(self):
        platform, _, _ = _platform(issue=[_issue_comment(3, "hi")])
        assert platform.list_comments()[0].created_at == "2024-05-01T09:00:00+00:00"

    def test_get_comment(self):
        platform, _, _ = _platform(issue=[_issue_comment(3, "hi")])
        assert platform.get_comment("3").body == "hi"
        assert platform.get_comment("99") is None

    def test_head_revision_and_files(self):
        platform, pull, _ = _platform()
        file = MagicMock(filename="src/app.py", patch="@@ -1 +1 @@\n-a\n+b")
        pull.get_files.return_value = [file]
        assert platform.get_head_revision() == "f" * 40
        assert platform.list_changed_files() == ["src/app.py"]
        assert "+++ b/src/app.py" in platform.get_diff()

    def test_missing_pull_request(self):
        github = MagicMock()
        github.get_repo.return_value.get_pull.side_effect = GithubException(404, {"message": "Not Found"}, None)
        with pytest.raises(TransportError, match="PR #7 not found"):
            GitHubPlatform("acme/api", 7, "token", github=github)

    def test_api_failure_becomes_transport_error(self):
        platform, pull, _ = _platform()
        pull.get_review_comments.side_effect = GithubException(502, {"message": "Bad Gateway"}, None)
        with pytest.raises(TransportError):
            platform.list_comments()


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestWrites:
    def test_post_review_comment_on_head_commit(self):
        platform, pull, github = _platform()
        pull.create_review_comment.return_value.id = 101
        assert platform.post_review_comment("src/app.py", 12, "body") == "101"
        repo = github.get_repo.return_value
        repo.get_commit.assert_called_once_with("f" * 40)
        pull.create_review_comment.assert_called_once_with("body", repo.get_commit.return_value, "src/app.py", line=12)

    def test_reply_to_review_comment_threads(self):
        platform, pull, _ = _platform(review=[_review_comment(1, "finding")])
        pull.create_review_comment_reply.return_value.id = 102
        assert platform.reply_to_comment("1", "reply") == "102"
        pull.create_review_comment_reply.assert_called_once_with(1, "reply")

    def test_reply_to_issue_comment_posts_new_comment(self):
        platform, pull, _ = _platform(issue=[_issue_comment(3, "@prtrail-bot why?")])
        pull.create_issue_comment.return_value.id = 103
        assert platform.reply_to_comment("3", "answer") == "103"
        pull.create_review_comment_reply.assert_not_called()

    def test_resolve_posts_resolution_reply(self):
        platform, pull, _ = _platform(review=[_review_comment(1, "finding")])
        platform.resolve_thread("1", "Fixed in abc123")
        body = pull.create_review_comment_reply.call_args.args[1]
        assert RESOLVED_BANNER in body
        assert extract_status(body) == RESOLVED

    def test_update_issue_comment(self):
        platform, pull, _ = _platform(issue=[_issue_comment(3, "hi")])
        platform.update_comment("3", "edited")
        pull.get_issue_comment.assert_called_once_with(3)
        pull.get_issue_comment.return_value.edit.assert_called_once_with("edited")

    def test_update_review_comment(self):
        platform, pull, _ = _platform(review=[_review_comment(1, "finding")])
        platform.update_comment("1", "edited")
        pull.get_comment.return_value.edit.assert_called_once_with("edited")

    def test_request_reviewers_tolerates_api_failure(self):
        platform, pull, _ = _platform(review=[_review_comment(1, "finding")])
        pull.create_review_request.side_effect = GithubException(422, {"message": "not a collaborator"}, None)
        platform.request_reviewers("1", ["alice"], "escalated")
        pull.create_review_comment_reply.assert_called_once_with(1, "escalated")

    def test_close(self):
        platform, _, github = _platform()
        platform.close()
        github.close.assert_called_once()
