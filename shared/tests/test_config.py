"""Tests for configuration loading."""

import os

import pytest

from llm.src.errors import ConfigurationError
from shared.config import (
    DEFAULT_SAMPLING,
    SamplingProfile,
    Settings,
    load_config,
    load_env_file,
)
from shared.prompts import PromptTemplates


class TestLoading:
    """Tests for config.yaml and .env loading."""

    def test_missing_config_is_empty(self, tmp_path):
        assert load_config(tmp_path / "config.yaml") == {}

    def test_load_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("processing:\n  concurrency_limit: 3\n", encoding="utf-8")
        assert load_config(path) == {"processing": {"concurrency_limit": 3}}

    def test_env_file_does_not_override(self, tmp_path, monkeypatch):
        path = tmp_path / ".env"
        path.write_text("PHILOSCOPE_TEST_A=from-file\nPHILOSCOPE_TEST_B=from-file\n", encoding="utf-8")
        monkeypatch.setenv("PHILOSCOPE_TEST_A", "from-env")
        monkeypatch.setenv("PHILOSCOPE_TEST_B", "")
        monkeypatch.delenv("PHILOSCOPE_TEST_B")

        assert load_env_file(path) is True

        assert os.environ["PHILOSCOPE_TEST_A"] == "from-env"
        assert os.environ["PHILOSCOPE_TEST_B"] == "from-file"

    def test_missing_env_file(self, tmp_path):
        assert load_env_file(tmp_path / ".env") is False


class TestSettings:
    """Tests for Settings.from_config."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SILICONFLOW_API_KEY", raising=False)

        settings = Settings.from_config({}, prompts=PromptTemplates())

        assert settings.concurrency_limit == 2
        assert settings.observer_max_turns == 10
        assert settings.llm.api_key is None
        assert settings.sampling_for("round2") == DEFAULT_SAMPLING["round2"]
        with pytest.raises(ConfigurationError):
            settings.require_credentials()

    def test_api_key_from_named_env_var(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "secret")

        settings = Settings.from_config({"llm": {"api_key_env": "MY_KEY"}}, prompts=PromptTemplates())

        assert settings.llm.api_key == "secret"
        settings.require_credentials()

    def test_overrides(self):
        settings = Settings.from_config(
            {
                "llm": {"api_key": "k", "model": "m", "timeout_seconds": 30},
                "processing": {"concurrency_limit": 4},
                "sampling": {"round1": {"temperature": 0.5, "max_tokens": 100}, "comparison": 0.9},
                "persona": {
                    "observer_max_turns": 6,
                    "parameters": {"2-1": {"temperature": 0.1, "top_p": 0.5, "max_history_turns": 1}},
                },
                "paths": {"reports": "out"},
            },
            prompts=PromptTemplates(),
        )

        assert settings.llm.model == "m"
        assert settings.llm.timeout_seconds == 30
        assert settings.concurrency_limit == 4
        assert settings.sampling_for("round1") == SamplingProfile(temperature=0.5, max_tokens=100)
        assert settings.sampling_for("comparison").temperature == 0.9
        assert settings.observer_max_turns == 6
        assert "2-1" in settings.persona_parameters
        assert "default" in settings.persona_parameters
        assert settings.output_dir.name == "out"

    @pytest.mark.parametrize("config", [
        {"processing": {"concurrency_limit": 0}},
        {"persona": {"observer_max_turns": 0}},
    ])
    def test_invalid_limits(self, config):
        with pytest.raises(ConfigurationError):
            Settings.from_config(config, prompts=PromptTemplates())

    def test_prompts_loaded_from_file(self):
        settings = Settings.from_config({"prompts_file": "prompts.yaml"})
        assert "{{textContent}}" in settings.prompts.analysis_user
