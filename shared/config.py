"""
Configuration management.

config.yaml is loaded once into a plain dict; Settings turns it into an
immutable object that is passed explicitly into every pipeline.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from llm.src.errors import ConfigurationError
from shared.logging import get_logger
from shared.prompts import PromptTemplates

log = get_logger("shared", "config")

# Core paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_PATH = PROJECT_ROOT / "config.yaml"
ENV_PATH = PROJECT_ROOT / ".env"

DEFAULT_API_KEY_ENV = "SILICONFLOW_API_KEY"


def load_config(path: Optional[Path] = None) -> dict:
    """Load the configuration from config.yaml (empty dict if missing)."""
    config_path = Path(path) if path else CONFIG_PATH
    if config_path.exists():
        return yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    return {}


def load_env_file(path: Optional[Path] = None) -> bool:
    """Load a .env file into os.environ without overriding existing variables."""
    env_path = Path(path) if path else ENV_PATH
    if not env_path.exists():
        return False
    return load_dotenv(env_path, override=False)


@dataclass(frozen=True)
class SamplingProfile:
    """Sampling options for one kind of request."""
    temperature: float
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None

    def as_kwargs(self) -> dict:
        return {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_tokens": self.max_tokens,
        }

    @classmethod
    def from_dict(cls, data) -> "SamplingProfile":
        if isinstance(data, (int, float)):
            return cls(temperature=float(data))
        return cls(
            temperature=float(data["temperature"]),
            top_p=data.get("top_p"),
            max_tokens=data.get("max_tokens"),
        )


# Low temperatures where the task is extraction, a little higher where the
# model has to synthesize from earlier rounds.
DEFAULT_SAMPLING = {
    "domain_analysis": SamplingProfile(temperature=0.2),
    "comparison": SamplingProfile(temperature=0.4),
    "explanation": SamplingProfile(temperature=0.3, max_tokens=500),
    "term_explanation": SamplingProfile(temperature=0.3, max_tokens=500),
    "round0": SamplingProfile(temperature=0.2),
    "round1": SamplingProfile(temperature=0.2),
    "round2": SamplingProfile(temperature=0.3),
    "persona_thinking": SamplingProfile(temperature=0.3, top_p=0.9),
}

DEFAULT_PERSONA_PARAMETERS = {
    "default": {"temperature": 0.7, "top_p": 0.9, "max_history_turns": 5},
    "1": {"temperature": 0.5, "top_p": 0.95, "max_history_turns": 3},
    "1-3": {"temperature": 0.6, "top_p": 0.9, "max_history_turns": 4},
    "1-3-1": {"temperature": 0.65, "top_p": 0.88, "max_history_turns": 4},
    "2": {"temperature": 0.7, "top_p": 0.9, "max_history_turns": 5},
    "3": {"temperature": 0.8, "top_p": 0.85, "max_history_turns": 6},
    "4": {"temperature": 0.9, "top_p": 0.8, "max_history_turns": 8},
    "4-1": {"temperature": 0.95, "top_p": 0.8, "max_history_turns": 10},
}


@dataclass(frozen=True)
class LLMSettings:
    """Endpoint, credentials and model."""
    api_key: Optional[str] = None
    model: str = "deepseek-ai/DeepSeek-V3"
    endpoint: str = "https://api.siliconflow.cn/v1/chat/completions"
    timeout_seconds: int = 300


@dataclass(frozen=True)
class Settings:
    """Everything a pipeline needs, passed by value."""
    llm: LLMSettings = field(default_factory=LLMSettings)
    concurrency_limit: int = 2
    sampling: dict = field(default_factory=lambda: dict(DEFAULT_SAMPLING))
    prompts: PromptTemplates = field(default_factory=PromptTemplates)
    persona_parameters: dict = field(default_factory=lambda: dict(DEFAULT_PERSONA_PARAMETERS))
    observer_max_turns: int = 10
    index_path: Path = PROJECT_ROOT / "data" / "philosophy_index.yaml"
    output_dir: Path = PROJECT_ROOT / "data" / "reports"

    def sampling_for(self, name: str) -> SamplingProfile:
        return self.sampling.get(name) or DEFAULT_SAMPLING[name]

    def require_credentials(self) -> None:
        if not self.llm.api_key:
            raise ConfigurationError(
                f"No API key configured. Set llm.api_key in config.yaml or "
                f"the {DEFAULT_API_KEY_ENV} environment variable."
            )

    @classmethod
    def from_config(
        cls,
        config: dict,
        prompts: Optional[PromptTemplates] = None,
    ) -> "Settings":
        """
        Build settings from a config.yaml dict.

        Args:
            config: Parsed config.yaml (may be empty)
            prompts: Templates to use; loaded from `prompts_file` if not given

        Raises:
            ConfigurationError: Invalid concurrency limit or turn cap
        """
        llm_config = config.get("llm", {}) or {}
        api_key_env = llm_config.get("api_key_env", DEFAULT_API_KEY_ENV)
        llm = LLMSettings(
            api_key=llm_config.get("api_key") or os.environ.get(api_key_env),
            model=llm_config.get("model", LLMSettings.model),
            endpoint=llm_config.get("endpoint", LLMSettings.endpoint),
            timeout_seconds=int(llm_config.get("timeout_seconds", LLMSettings.timeout_seconds)),
        )

        processing = config.get("processing", {}) or {}
        concurrency_limit = int(processing.get("concurrency_limit", 2))
        if concurrency_limit < 1:
            raise ConfigurationError(
                f"processing.concurrency_limit must be >= 1, got {concurrency_limit}"
            )

        sampling = dict(DEFAULT_SAMPLING)
        for name, value in (config.get("sampling", {}) or {}).items():
            sampling[name] = SamplingProfile.from_dict(value)

        persona_config = config.get("persona", {}) or {}
        persona_parameters = dict(DEFAULT_PERSONA_PARAMETERS)
        persona_parameters.update(persona_config.get("parameters", {}) or {})
        observer_max_turns = int(persona_config.get("observer_max_turns", 10))
        if observer_max_turns < 1:
            raise ConfigurationError(
                f"persona.observer_max_turns must be >= 1, got {observer_max_turns}"
            )

        if prompts is None:
            prompts_file = config.get("prompts_file")
            prompts = PromptTemplates.load(PROJECT_ROOT / prompts_file if prompts_file else None)

        paths = config.get("paths", {}) or {}
        index_path = PROJECT_ROOT / paths.get("index", "data/philosophy_index.yaml")
        output_dir = PROJECT_ROOT / paths.get("reports", "data/reports")

        log.debug(
            "config.settings_built",
            model=llm.model,
            concurrency_limit=concurrency_limit,
            has_api_key=bool(llm.api_key),
        )

        return cls(
            llm=llm,
            concurrency_limit=concurrency_limit,
            sampling=sampling,
            prompts=prompts,
            persona_parameters=persona_parameters,
            observer_max_turns=observer_max_turns,
            index_path=index_path,
            output_dir=output_dir,
        )
