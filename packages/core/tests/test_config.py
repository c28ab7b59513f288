"""Tests for configuration loading and validation."""

import pytest

from prtrail_core.config import load_config, validate_config
from prtrail_core.errors import ConfigurationError


def _valid(tmp_path, **overrides):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    config["github_token"] = "gh-token"
    config.update(overrides)
    return config


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def test_defaults_applied_when_no_config_file(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert config["model"] == "anthropic"
    assert config["problem_threshold"] == 5
    assert config["review_timeout_minutes"] == 40
    assert config["max_review_retries"] == 1
    assert config["enable_human_escalation"] is False
    assert config["bot_mention"] == "@prtrail-bot"
    assert config["exclude"] == []


def test_blocking_threshold_defaults_to_problem_threshold(tmp_path):
    cfg = tmp_path / ".prtrail.yml"
    cfg.write_text("problem_threshold: 7\n")
    config = load_config(config_path=str(cfg))
    assert config["blocking_threshold"] == 7


def test_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / ".prtrail.yml"
    cfg.write_text("model: openai\nreview_timeout_minutes: 20\nblocking_threshold: 8\n")
    config = load_config(config_path=str(cfg))
    assert config["model"] == "openai"
    assert config["review_timeout_minutes"] == 20
    assert config["blocking_threshold"] == 8


def test_cli_overrides_config_file(tmp_path):
    cfg = tmp_path / ".prtrail.yml"
    cfg.write_text("model: openai\n")
    config = load_config(config_path=str(cfg), cli_overrides={"model": "anthropic"})
    assert config["model"] == "anthropic"


def test_none_cli_overrides_ignored(tmp_path):
    cfg = tmp_path / ".prtrail.yml"
    cfg.write_text("model: openai\n")
    config = load_config(config_path=str(cfg), cli_overrides={"model": None})
    assert config["model"] == "openai"


def test_comma_separated_reviewers_split(tmp_path):
    cfg = tmp_path / ".prtrail.yml"
    cfg.write_text("human_reviewers: 'alice, bob,'\n")
    config = load_config(config_path=str(cfg))
    assert config["human_reviewers"] == ["alice", "bob"]


def test_env_vars_loaded(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "gh-token")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "ant-key")
    monkeypatch.setenv("OPENAI_API_KEY", "oai-key")
    config = load_config(config_path="nonexistent.yml")
    assert config["github_token"] == "gh-token"
    assert config["anthropic_api_key"] == "ant-key"
    assert config["openai_api_key"] == "oai-key"


def test_lists_are_not_shared_references(tmp_path):
    config_a = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    config_b = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    config_a["exclude"].append("migrations/")
    config_a["automation_identities"].append("someone[bot]")
    assert config_b["exclude"] == []
    assert "someone[bot]" not in config_b["automation_identities"]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidateConfig:
    def test_defaults_are_valid(self, tmp_path):
        validate_config(_valid(tmp_path))

    @pytest.mark.parametrize(
        "key,value",
        [
            ("problem_threshold", 0),
            ("problem_threshold", 11),
            ("review_timeout_minutes", 4),
            ("review_timeout_minutes", 121),
            ("max_review_retries", 4),
            ("max_review_retries", -1),
        ],
    )
    def test_out_of_range_rejected(self, tmp_path, key, value):
        config = _valid(tmp_path, **{key: value})
        if key == "problem_threshold":
            config["blocking_threshold"] = 10
        with pytest.raises(ConfigurationError, match=key):
            validate_config(config)

    def test_non_integer_rejected(self, tmp_path):
        with pytest.raises(ConfigurationError, match="integer"):
            validate_config(_valid(tmp_path, review_timeout_minutes="forty"))

    def test_blocking_below_problem_rejected(self, tmp_path):
        with pytest.raises(ConfigurationError, match="blocking_threshold"):
            validate_config(_valid(tmp_path, problem_threshold=6, blocking_threshold=5))

    def test_overlapping_deferral_bands_rejected(self, tmp_path):
        with pytest.raises(ConfigurationError, match="defer_accept_max_score"):
            validate_config(_valid(tmp_path, defer_accept_max_score=8, defer_reject_min_score=8))

    def test_unknown_model_rejected(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Unknown model"):
            validate_config(_valid(tmp_path, model="llama"))

    def test_missing_token_rejected(self, tmp_path):
        with pytest.raises(ConfigurationError, match="GitHub token"):
            validate_config(_valid(tmp_path, github_token=None))

    def test_empty_automation_identities_rejected(self, tmp_path):
        with pytest.raises(ConfigurationError, match="automation_identities"):
            validate_config(_valid(tmp_path, automation_identities=[]))
