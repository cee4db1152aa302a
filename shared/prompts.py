"""
Prompt templates and placeholder rendering.

Templates use {{name}} placeholders. The wording lives in prompts.yaml and is
editable; only the placeholder names are relied on by the pipelines.
"""

import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

from shared.logging import get_logger

log = get_logger("shared", "prompts")

PROMPTS_PATH = Path(__file__).resolve().parent.parent / "prompts.yaml"

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

# Meta-role used for both persona calls (thinking and reply)
PERSONA_SYSTEM_PROMPT = """
You are a first-rate actor and philosophical thinker. Your task is to play an
assigned philosophical persona completely and convincingly. You work in two
steps: first an inner, structured reflection, then a natural reply based on it.
""".strip()


def render(template: str, **values) -> str:
    """
    Replace every {{name}} with str(values[name]).

    Placeholders without a value are left as they are, so a template can be
    rendered in stages (e.g. persona templates keep {{userInput}}).
    """

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        if name in values:
            return str(values[name])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(substitute, template)


def placeholders(template: str) -> set[str]:
    """Names of the placeholders used in a template."""
    return set(PLACEHOLDER_PATTERN.findall(template))


@dataclass(frozen=True)
class PromptTemplates:
    """All templates used by the pipelines."""

    analysis_system: str = ""
    analysis_user: str = ""
    comparison_system: str = ""
    comparison_user: str = ""
    explanation_system: str = ""
    explanation_user: str = ""
    round0_system: str = ""
    round0_user: str = ""
    round1_system: str = ""
    round1_user: str = ""
    round2_system: str = ""
    round2_user: str = ""
    term_explanation_system: str = ""
    term_explanation_user: str = ""
    persona_system: str = PERSONA_SYSTEM_PROMPT
    # Keyed by the first code segment, "1".."4"
    persona_thinking: dict[str, str] = field(default_factory=dict)
    persona_reply: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "PromptTemplates":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            log.warning("prompts.unknown_keys", keys=unknown)

        values = {key: value for key, value in data.items() if key in known}
        for key in ("persona_thinking", "persona_reply"):
            if key in values:
                values[key] = {str(k): str(v) for k, v in (values[key] or {}).items()}
        return cls(**values)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "PromptTemplates":
        """Load templates from YAML (default: prompts.yaml at the project root)."""
        path = Path(path) if path else PROMPTS_PATH
        if not path.exists():
            log.warning("prompts.file_missing", path=str(path))
            return cls()
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return cls.from_dict(data)
