"""
Persona chat - conversations with philosophy items played as personas.

Usage:
    from persona import PersonaChat

    chat = PersonaChat.from_settings(client, settings)
    chat.load_persona("A", item, analysis, settings.prompts)
    result = await chat.send("A", "How do you see the world?")
"""

from .src.chat import (
    PersonaChat,
    PersonaSlot,
    PersonaTurnError,
    TranscriptEntry,
    TurnResult,
    strip_thinking,
)
from .src.parameters import ParameterTable, PersonaParameters
from .src.prompt_builder import PersonaPrompt, build_persona_prompt

__all__ = [
    "PersonaChat",
    "PersonaSlot",
    "PersonaTurnError",
    "TranscriptEntry",
    "TurnResult",
    "strip_thinking",
    "ParameterTable",
    "PersonaParameters",
    "PersonaPrompt",
    "build_persona_prompt",
]
