"""Shared fixtures for persona tests."""

from unittest.mock import MagicMock

import pytest

from analysis.src.models import Concept, PhilosophyItem, PlainTerm
from llm.src.cancellation import CancellationController
from persona.src.chat import PersonaChat
from persona.src.parameters import ParameterTable
from shared.config import SamplingProfile
from shared.prompts import PromptTemplates


@pytest.fixture
def templates():
    thinking = "think as {{philosophyName}} ({{ontologyExplanation}}) about: {{userInput}}"
    return PromptTemplates(
        persona_system="persona-system",
        persona_thinking={part: thinking for part in ("1", "2", "3", "4")},
        persona_reply={
            part: f"reply{part} to: {{{{userInput}}}} notes: {{{{thinking_content}}}}"
            for part in ("1", "2", "3", "4")
        },
    )


@pytest.fixture
def heraclitus():
    return PhilosophyItem(code="1-2", name="Flux and Being", field_theory=PlainTerm("Logos"),
                          ontology="Becoming", epistemology="Dialectic", teleology="Harmony",
                          representative="Heraclitus")


@pytest.fixture
def augustine():
    return PhilosophyItem(code="2-1", name="Confessions", field_theory=PlainTerm("Church"),
                          ontology="Creation", epistemology="Illumination", teleology="Rest",
                          representative="Augustine")


@pytest.fixture
def analysis():
    return {
        "fieldTheoryAnalysis": [Concept(id="f1", name="Logos", explanation="the common measure")],
        "ontologyAnalysis": [
            Concept(id="o1", name="Flux", definition="everything flows"),
            Concept(id="o1a", name="River", explanation="never the same", parent="o1"),
        ],
    }


@pytest.fixture
def parameters():
    return ParameterTable({
        "default": {"temperature": 0.7, "top_p": 0.9, "max_history_turns": 5},
        "1": {"temperature": 0.5, "top_p": 0.95, "max_history_turns": 2},
        "2": {"temperature": 0.8, "top_p": 0.85, "max_history_turns": 3},
    })


@pytest.fixture
def mock_client():
    return MagicMock()


@pytest.fixture
def chat(mock_client, parameters):
    return PersonaChat(
        mock_client,
        parameters,
        thinking_sampling=SamplingProfile(temperature=0.3, top_p=0.9),
        system_prompt="persona-system",
        controller=CancellationController(),
        observer_max_turns=4,
    )


async def scripted_complete(messages, options, token=None):
    """Thinking calls return notes, reply calls echo the incoming message."""
    prompt = messages[-1]["content"]
    if prompt.startswith("think"):
        return "  notes  "
    incoming = prompt.split("reply")[1].split(" to: ")[1].split(" notes:")[0]
    return f"<thinking>hidden</thinking> answer to {incoming}"


@pytest.fixture
def complete():
    return scripted_complete
