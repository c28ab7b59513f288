"""State-layer exceptions.

Defined here rather than in prtrail_core so StateStore can raise them without
importing the core package; prtrail_core.errors re-exports both.
"""


class StateInconsistencyError(Exception):
    """Reconstructed state disagrees with what a caller expected."""


class ThreadNotFoundError(StateInconsistencyError, KeyError):
    """A status update referenced a thread id absent from state."""

    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        super().__init__(f"Thread {thread_id!r} not found in review state")

    def __str__(self) -> str:
        return self.args[0]
