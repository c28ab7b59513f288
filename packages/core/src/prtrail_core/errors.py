"""Exception taxonomy for prtrail.

Configuration errors abort before any external call. Transport errors are
recovered locally (fallback classifiers) or retried at the review-attempt
level. Security blocks and timeouts abandon the enclosing task or attempt
without stopping the run.
"""

from __future__ import annotations

from prtrail_store.errors import StateInconsistencyError, ThreadNotFoundError

__all__ = [
    "PrtrailError",
    "ConfigurationError",
    "TransportError",
    "StateInconsistencyError",
    "ThreadNotFoundError",
    "SecurityBlockError",
    "ReviewTimeoutError",
    "ReviewError",
]


class PrtrailError(Exception):
    """Base class for errors raised by prtrail_core."""


class ConfigurationError(PrtrailError):
    """Invalid thresholds, missing credentials or an unknown provider."""


class TransportError(PrtrailError):
    """A platform, LLM or agent runtime call failed."""


class SecurityBlockError(PrtrailError):
    """Content was confirmed unsafe (or could not be verified) and was discarded."""

    def __init__(self, message: str, flags: list[str] | None = None):
        super().__init__(message)
        self.flags = list(flags or [])


class ReviewTimeoutError(PrtrailError):
    """A review attempt exceeded its wall-clock budget."""


class ReviewError(PrtrailError):
    """A review attempt failed, or every retry was exhausted."""
