"""Base completion client implementing the Template Method pattern.

prtrail only ever asks the hosted LLM short, constrained questions (one-word
classifications and yes/no verifications), so every provider shares one
algorithm:
    complete() → _call_with_retry() → _call_api()   ← only this differs per provider

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

from prtrail_core.errors import TransportError

logger = logging.getLogger(__name__)

# Shared defaults; subclasses may override as class attributes if needed.
_MAX_RETRIES = 3


class BaseCompletionClient(ABC):
    MAX_RETRIES: int = _MAX_RETRIES

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def complete(self, prompt: str, max_tokens: int = 10, temperature: float = 0.1) -> str | None:
        """Return the model's text answer to a single-turn prompt.

        Returns None when the provider answered with no text. Raises
        TransportError once retries are exhausted; callers own the fallback.
        """
        logger.debug("%s completion request (%d chars)", self.__class__.__name__, len(prompt))
        return self._call_with_retry(prompt, max_tokens, temperature)

    # ------------------------------------------------------------------ #
    # Abstract; implement in each provider                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, prompt: str, max_tokens: int, temperature: float) -> str | None:
        """Make a single API call and return the raw text response.

        This is the only method subclasses must implement. It should raise
        on failure; _call_with_retry handles retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, prompt: str, max_tokens: int, temperature: float) -> str | None:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff."""
        for attempt in range(self.MAX_RETRIES):
            try:
                return self._call_api(prompt, max_tokens, temperature)
            except Exception as e:
                if attempt == self.MAX_RETRIES - 1:
                    logger.error(
                        "%s API failed after %d attempts: %s",
                        self.__class__.__name__,
                        self.MAX_RETRIES,
                        e,
                    )
                    raise TransportError(f"{self.__class__.__name__} completion failed: {e}") from e
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)
        return None


def build_completion_client(config: dict) -> BaseCompletionClient:
    """Instantiate the provider named by ``config["model"]``."""
    from prtrail_core.errors import ConfigurationError

    model = config.get("model")
    if model == "anthropic":
        from prtrail_core.providers.anthropic import AnthropicClient

        return AnthropicClient(api_key=config.get("anthropic_api_key"))
    if model == "openai":
        from prtrail_core.providers.openai import OpenAIClient

        return OpenAIClient(api_key=config.get("openai_api_key"))
    raise ConfigurationError(f"Unknown model provider: {model!r}. Choose 'anthropic' or 'openai'.")
