"""Abstract agent runtime interface and the owned session resource.

The review agent is a long-lived conversation in an external runtime. The
orchestrator depends on BaseAgentClient only; AgentSessionLease wraps one
session so it is created on demand and always deleted, whether the attempt
succeeded, failed or is about to be retried.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class BaseAgentClient(ABC):
    """Session operations against the agent runtime.

    Implementations raise TransportError on failure.
    """

    @abstractmethod
    def create_session(self, title: str) -> str:
        """Create a conversation and return its id."""

    @abstractmethod
    def delete_session(self, session_id: str) -> None:
        """Tear down a conversation."""

    @abstractmethod
    def send_system_prompt(self, session_id: str, text: str) -> None:
        """Inject instructions without asking the agent to respond."""

    @abstractmethod
    def send_prompt_and_wait_for_idle(self, session_id: str, text: str) -> None:
        """Send a prompt and block until the agent goes idle after having been busy."""

    @abstractmethod
    def send_prompt_and_await_reply(self, session_id: str, text: str) -> str:
        """Send a prompt and return the text of the agent's reply."""

    def close(self) -> None:
        """Release HTTP resources. Optional."""


class AgentSessionLease:
    """One agent session, acquired lazily and released exactly once per acquisition.

    ``acquire()`` is idempotent while a session is held. ``release()`` never
    raises: a session that cannot be deleted is logged and forgotten so the
    next acquisition starts clean.
    """

    def __init__(self, agent: BaseAgentClient, title: str, system_prompt: str):
        self.agent = agent
        self.title = title
        self.system_prompt = system_prompt
        self.session_id: str | None = None

    def acquire(self) -> str:
        if self.session_id is None:
            session_id = self.agent.create_session(self.title)
            try:
                self.agent.send_system_prompt(session_id, self.system_prompt)
            except Exception:
                self._delete(session_id)
                raise
            self.session_id = session_id
            logger.info("Acquired agent session %s", session_id)
        return self.session_id

    def release(self) -> None:
        if self.session_id is None:
            return
        session_id, self.session_id = self.session_id, None
        self._delete(session_id)

    def _delete(self, session_id: str) -> None:
        try:
            self.agent.delete_session(session_id)
            logger.info("Released agent session %s", session_id)
        except Exception as e:
            logger.warning("Failed to delete agent session %s: %s", session_id, e)

    @property
    def held(self) -> bool:
        return self.session_id is not None

    def __enter__(self) -> AgentSessionLease:
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
