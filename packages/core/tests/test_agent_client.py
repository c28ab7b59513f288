"""Tests for the agent runtime client and session lease."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import httpx
import pytest

from prtrail_core.agent.base import AgentSessionLease
from prtrail_core.agent.opencode import OpenCodeClient, _parse_sse
from prtrail_core.errors import TransportError


def _sse(*events) -> str:
    return "".join(f"data: {json.dumps(e)}\n\n" for e in events)


def _status(session_id, status):
    return {"type": "session.status", "properties": {"sessionID": session_id, "status": {"type": status}}}


def _idle(session_id):
    return {"type": "session.idle", "properties": {"sessionID": session_id}}


def _client(routes: dict):
    """Build an OpenCodeClient whose requests are answered from ``routes``.

    Keys are ``"METHOD /path"``; values are a response or a callable taking
    the request. Every request is appended to ``client.requests``.
    """
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        route = routes.get(f"{request.method} {request.url.path}")
        if route is None:
            return httpx.Response(404)
        return route(request) if callable(route) else route

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://agent")
    client = OpenCodeClient("http://agent", timeout=30, client=http)
    client.requests = requests
    return client


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


class TestSessions:
    def test_create_session(self):
        client = _client({"POST /session": httpx.Response(200, json={"id": "ses_1"})})
        assert client.create_session("review acme/api#7") == "ses_1"
        assert json.loads(client.requests[0].content) == {"title": "review acme/api#7"}

    def test_create_session_without_id(self):
        client = _client({"POST /session": httpx.Response(200, json={})})
        with pytest.raises(TransportError, match="no id"):
            client.create_session("t")

    def test_http_error_becomes_transport_error(self):
        client = _client({"POST /session": httpx.Response(500)})
        with pytest.raises(TransportError):
            client.create_session("t")

    def test_system_prompt_is_sent_without_reply(self):
        client = _client({"POST /session/ses_1/message": httpx.Response(200, json={})})
        client.send_system_prompt("ses_1", "You are a reviewer.")
        payload = json.loads(client.requests[0].content)
        assert payload["noReply"] is True
        assert payload["parts"] == [{"type": "text", "text": "You are a reviewer."}]

    def test_await_reply_joins_text_parts(self):
        reply = {"parts": [{"type": "text", "text": "It is capped"}, {"type": "tool"}, {"type": "text", "text": "upstream."}]}
        client = _client({"POST /session/ses_1/message": httpx.Response(200, json=reply)})
        assert client.send_prompt_and_await_reply("ses_1", "why?") == "It is capped\nupstream."

    def test_delete_session(self):
        client = _client({"DELETE /session/ses_1": httpx.Response(200, json=True)})
        client.delete_session("ses_1")
        assert client.requests[0].method == "DELETE"


# ---------------------------------------------------------------------------
# Waiting for idle
# ---------------------------------------------------------------------------


class TestWaitForIdle:
    def _run(self, *events):
        client = _client(
            {
                "GET /event": httpx.Response(200, text=_sse(*events)),
                "POST /session/ses_1/prompt_async": httpx.Response(204),
            }
        )
        client.send_prompt_and_wait_for_idle("ses_1", "Run pass 1")
        return client

    def test_busy_then_idle_completes(self):
        client = self._run(_status("ses_1", "busy"), _idle("ses_1"))
        assert [r.url.path for r in client.requests] == ["/event", "/session/ses_1/prompt_async"]

    def test_idle_status_counts_as_idle(self):
        self._run(_status("ses_1", "busy"), _status("ses_1", "idle"))

    def test_idle_before_busy_is_ignored(self):
        with pytest.raises(TransportError, match="ended unexpectedly"):
            self._run(_idle("ses_1"))

    def test_other_sessions_ignored(self):
        with pytest.raises(TransportError, match="ended unexpectedly"):
            self._run(_status("ses_2", "busy"), _idle("ses_2"))

    def test_session_error_raises(self):
        with pytest.raises(TransportError, match="Session error"):
            self._run(_status("ses_1", "busy"), {"type": "session.error", "properties": {"sessionID": "ses_1"}})

    def test_retry_status_keeps_waiting(self):
        self._run(_status("ses_1", "retry"), _status("ses_1", "busy"), _idle("ses_1"))


class TestParseSse:
    def test_skips_comments_and_bad_json(self):
        lines = [": keepalive", "data: not-json", 'data: {"type": "x"}', "event: ping", "data: [1, 2]"]
        assert list(_parse_sse(lines)) == [{"type": "x"}]


# ---------------------------------------------------------------------------
# Session lease
# ---------------------------------------------------------------------------


class TestAgentSessionLease:
    def _agent(self):
        agent = MagicMock()
        agent.create_session.side_effect = ["ses_1", "ses_2"]
        return agent

    def test_acquire_creates_and_injects_system_prompt_once(self):
        agent = self._agent()
        lease = AgentSessionLease(agent, "review", "SYSTEM")
        assert lease.acquire() == "ses_1"
        assert lease.acquire() == "ses_1"
        agent.create_session.assert_called_once_with("review")
        agent.send_system_prompt.assert_called_once_with("ses_1", "SYSTEM")

    def test_release_then_acquire_gives_new_session(self):
        agent = self._agent()
        lease = AgentSessionLease(agent, "review", "SYSTEM")
        lease.acquire()
        lease.release()
        assert not lease.held
        assert lease.acquire() == "ses_2"
        agent.delete_session.assert_called_once_with("ses_1")

    def test_release_never_raises(self):
        agent = self._agent()
        agent.delete_session.side_effect = TransportError("gone")
        lease = AgentSessionLease(agent, "review", "SYSTEM")
        lease.acquire()
        lease.release()
        assert not lease.held

    def test_release_without_session_is_noop(self):
        agent = self._agent()
        AgentSessionLease(agent, "review", "SYSTEM").release()
        agent.delete_session.assert_not_called()

    def test_failed_system_prompt_deletes_session(self):
        agent = self._agent()
        agent.send_system_prompt.side_effect = TransportError("boom")
        lease = AgentSessionLease(agent, "review", "SYSTEM")
        with pytest.raises(TransportError):
            lease.acquire()
        agent.delete_session.assert_called_once_with("ses_1")
        assert not lease.held

    def test_context_manager(self):
        agent = self._agent()
        with AgentSessionLease(agent, "q", "QA") as lease:
            assert lease.session_id == "ses_1"
        agent.delete_session.assert_called_once_with("ses_1")
