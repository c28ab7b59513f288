import os
from pathlib import Path
from typing import Optional

import yaml

from prtrail_core.errors import ConfigurationError

DEFAULT_CONFIG: dict = {
    "model": "anthropic",
    "problem_threshold": 5,  # findings scored below this are never posted
    "blocking_threshold": None,  # None = same as problem_threshold
    "review_timeout_minutes": 40,
    "max_review_retries": 1,
    "retry_delay_seconds": 5,  # multiplied by the attempt number
    "enable_human_escalation": False,
    "human_reviewers": [],
    "injection_detection_enabled": True,
    "publication_check_enabled": True,
    "bot_mention": "@prtrail-bot",
    "automation_identities": ["prtrail[bot]", "github-actions[bot]"],
    # Out-of-scope deferrals: accept at or below, reject at or above, ask the agent in between.
    "defer_accept_max_score": 4,
    "defer_reject_min_score": 9,
    "agent_url": "http://localhost:3000",
    "exclude": [],  # fnmatch patterns or directory names left out of the pass-1 file list
}

_RANGES = {
    "problem_threshold": (1, 10),
    "blocking_threshold": (1, 10),
    "review_timeout_minutes": (5, 120),
    "max_review_retries": (0, 3),
    "defer_accept_max_score": (0, 10),
    "defer_reject_min_score": (1, 11),
}


def load_config(config_path: str = ".prtrail.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prtrail.yml in the current directory
      3. CLI argument overrides
    """
    config = {
        **DEFAULT_CONFIG,
        "exclude": list(DEFAULT_CONFIG["exclude"]),
        "human_reviewers": list(DEFAULT_CONFIG["human_reviewers"]),
        "automation_identities": list(DEFAULT_CONFIG["automation_identities"]),
    }

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Comma-separated lists are common in workflow inputs.
    for key in ("human_reviewers", "automation_identities"):
        if isinstance(config.get(key), str):
            config[key] = [item.strip() for item in config[key].split(",") if item.strip()]

    if config.get("blocking_threshold") is None:
        config["blocking_threshold"] = config["problem_threshold"]

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

    return config


def validate_config(config: dict) -> None:
    """Raise ConfigurationError if the merged config cannot drive a run.

    Called before any network request so a bad workflow input fails fast
    rather than halfway through a review.
    """
    for key, (low, high) in _RANGES.items():
        value = config.get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f"{key} must be an integer, got {value!r}")
        if not low <= value <= high:
            raise ConfigurationError(f"{key} must be between {low} and {high}, got {value}")

    if config["blocking_threshold"] < config["problem_threshold"]:
        raise ConfigurationError(
            f"blocking_threshold ({config['blocking_threshold']}) must be >= "
            f"problem_threshold ({config['problem_threshold']})"
        )

    if config["defer_accept_max_score"] >= config["defer_reject_min_score"]:
        raise ConfigurationError("defer_accept_max_score must be lower than defer_reject_min_score")

    if config.get("model") not in ("anthropic", "openai"):
        raise ConfigurationError(f"Unknown model provider: {config.get('model')!r}. Choose 'anthropic' or 'openai'.")

    if not config.get("github_token"):
        raise ConfigurationError("No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.")

    if not config.get("automation_identities"):
        raise ConfigurationError("automation_identities must name at least one author")
