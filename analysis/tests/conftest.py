"""Shared fixtures for analysis tests."""

from unittest.mock import MagicMock

import pytest

from analysis.src.index import PhilosophyIndex
from analysis.src.models import PhilosophyItem, PlainTerm, StructuredTerm
from shared.config import DEFAULT_SAMPLING, LLMSettings, SamplingProfile, Settings
from shared.prompts import PromptTemplates


@pytest.fixture
def templates():
    """Templates that expose every placeholder so prompts can be asserted on."""
    return PromptTemplates(
        analysis_system="analysis-system",
        analysis_user=(
            "domain={{domainName}} name={{philosophyName}} code={{philosophyCode}} "
            "term={{domainTerm}} pattern={{movementPattern}} key={{domainKey}} text={{textContent}}"
        ),
        comparison_system="comparison-system",
        comparison_user="A={{itemACode}} {{itemAName}} | B={{itemBCode}} {{itemBName}} | {{reportA}} | {{reportB}}",
        explanation_system="explanation-system",
        explanation_user="concept={{parentConceptName}} term={{newConcept}} text={{originalTextContent}}",
        round0_system="r0",
        round0_user="summarize: {{textContent}}",
        round1_system="r1",
        round1_user="keyword={{keyword}} summary={{documentSummary}} text={{textContent}}",
        round2_system="r2",
        round2_user=(
            "keyword={{keyword}} concept={{mainConceptName}} id={{mainConceptId}} "
            "summary={{documentSummary}}"
        ),
        term_explanation_system="term-system",
        term_explanation_user="term={{term}} keyword={{keyword}} passage={{passage}}",
    )


@pytest.fixture
def sampling():
    return dict(DEFAULT_SAMPLING)


@pytest.fixture
def low_temperature():
    return SamplingProfile(temperature=0.2)


@pytest.fixture
def index():
    return PhilosophyIndex([
        PhilosophyItem(code="1", name="Naturalism", field_theory=PlainTerm("Nature"),
                       ontology="Substance", epistemology="Observation", teleology="Order"),
        PhilosophyItem(code="1-2", name="Flux and Being", field_theory=PlainTerm("Logos"),
                       ontology="Becoming", epistemology="Dialectic", teleology="Harmony"),
        PhilosophyItem(code="1-3", name="Idealism", field_theory=PlainTerm("Polis"),
                       ontology="Forms", epistemology="Recollection", teleology="The Good"),
        PhilosophyItem(code="1-3-1-4", name="Aporia", field_theory=PlainTerm("Dialogue"),
                       ontology="Participation", epistemology="Aporia", teleology="Unresolved"),
        PhilosophyItem(code="1-3-2", name="Hylomorphism", field_theory=PlainTerm("Lyceum"),
                       ontology="Form and matter", epistemology="Induction", teleology="Eudaimonia"),
        PhilosophyItem(code="1-4-4-4", name="Exhaustion", field_theory=PlainTerm("Late Antiquity"),
                       ontology="The One", epistemology="Ecstasis", teleology="Return"),
        PhilosophyItem(code="2", name="Theology",
                       field_theory=StructuredTerm(base="Church", reconciliation="Grace",
                                                   other="Scholastics", practice="Liturgy"),
                       ontology="Creation", epistemology="Revelation", teleology="Salvation",
                       representative="Augustine", is_special=True),
    ])


@pytest.fixture
def settings(templates):
    return Settings(llm=LLMSettings(api_key="test-key"), concurrency_limit=2, prompts=templates)


@pytest.fixture
def mock_client():
    """Client whose send_json/send are replaced per test."""
    return MagicMock()


def concept(id, name, parent=None, **extra):
    data = {"id": id, "name": name, "definition": f"{name} def", "explanation": f"{name} expl",
            "examples": f"{name} ex", "relationships": []}
    if parent:
        data["parent"] = parent
    data.update(extra)
    return data


@pytest.fixture
def make_concept():
    """Factory for concept dicts in the model's wire shape."""
    return concept
