"""httpx client for an OpenCode-style agent runtime.

Endpoints used:
  POST   /session                       create a session
  DELETE /session/{id}                  delete it
  POST   /session/{id}/message          synchronous prompt (returns the reply)
  POST   /session/{id}/prompt_async     queue a prompt and return immediately
  GET    /event                         server-sent event stream

Completion of an async prompt is detected from the event stream: the session
must be seen busy and then idle. The stream is opened before the prompt is
queued so the busy transition cannot be missed.
"""

from __future__ import annotations

import json
import logging
import time

import httpx

from prtrail_core.agent.base import BaseAgentClient
from prtrail_core.errors import TransportError

logger = logging.getLogger(__name__)


class OpenCodeClient(BaseAgentClient):
    def __init__(self, base_url: str, timeout: float = 600.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.Client(base_url=self.base_url, timeout=httpx.Timeout(30.0, read=timeout))

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPError as e:
            raise TransportError(f"Agent runtime {method} {path} failed: {e}") from e

    @staticmethod
    def _text_parts(text: str) -> dict:
        return {"parts": [{"type": "text", "text": text}]}

    def create_session(self, title: str) -> str:
        data = self._request("POST", "/session", json={"title": title}).json()
        session_id = data.get("id")
        if not session_id:
            raise TransportError("Failed to create session: no id returned")
        logger.info("Created agent session %s", session_id)
        return session_id

    def delete_session(self, session_id: str) -> None:
        self._request("DELETE", f"/session/{session_id}")
        logger.info("Deleted agent session %s", session_id)

    def send_system_prompt(self, session_id: str, text: str) -> None:
        logger.debug("Sending system prompt to session %s (%d chars)", session_id, len(text))
        self._request("POST", f"/session/{session_id}/message", json={"noReply": True, **self._text_parts(text)})

    def send_prompt_and_await_reply(self, session_id: str, text: str) -> str:
        logger.debug("Sending prompt to session %s and awaiting reply (%d chars)", session_id, len(text))
        data = self._request("POST", f"/session/{session_id}/message", json=self._text_parts(text)).json()
        parts = data.get("parts") or []
        return "\n".join(p.get("text", "") for p in parts if p.get("type") == "text")

    def send_prompt_and_wait_for_idle(self, session_id: str, text: str) -> None:
        logger.debug("Sending prompt to session %s (%d chars)", session_id, len(text))
        started = time.monotonic()
        try:
            with self.client.stream("GET", "/event") as events:
                events.raise_for_status()
                self._request("POST", f"/session/{session_id}/prompt_async", json=self._text_parts(text))
                self._wait_for_idle(events, session_id, started)
        except httpx.HTTPError as e:
            raise TransportError(f"Event stream for session {session_id} failed: {e}") from e
        logger.info("Session %s completed after %.1fs", session_id, time.monotonic() - started)

    def _wait_for_idle(self, events: httpx.Response, session_id: str, started: float) -> None:
        saw_busy = False
        for event in _parse_sse(events.iter_lines()):
            if time.monotonic() - started > self.timeout:
                raise TransportError(f"Timeout waiting for session {session_id} after {self.timeout:.0f}s")

            props = event.get("properties") or {}
            if props.get("sessionID") != session_id:
                continue

            event_type = event.get("type")
            status = (props.get("status") or {}).get("type")

            if event_type == "session.error":
                raise TransportError(f"Session error: {json.dumps(props)}")
            if event_type == "session.status" and status == "retry":
                logger.warning("Session %s is retrying: %s", session_id, props["status"].get("message"))
            if event_type == "session.status" and status != "idle":
                saw_busy = True

            idle = event_type == "session.idle" or (event_type == "session.status" and status == "idle")
            if idle and saw_busy:
                return

        raise TransportError("Event stream ended unexpectedly")

    def close(self) -> None:
        self.client.close()


def _parse_sse(lines):
    """Yield the JSON payload of each ``data:`` line, skipping anything unparseable."""
    for line in lines:
        line = line.strip()
        if not line.startswith("data:"):
            continue
        try:
            payload = json.loads(line[5:].strip())
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            yield payload
