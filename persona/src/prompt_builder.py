"""
Persona prompt building.

A persona prompt is a pair of templates (thinking, reply) chosen by the
first segment of the item's code and filled with the item's terms and the
primary concepts of its analysis. {{userInput}} and {{thinking_content}}
are left in place and filled per turn.
"""

from dataclasses import dataclass
from typing import Optional

from analysis.src.models import PhilosophyItem, StructuredAnalysis, format_field_theory, primary_concepts
from llm.src.errors import ConfigurationError
from shared.prompts import PromptTemplates, render

NO_ANALYSIS = "(No detailed analysis available; elaborate from the core term.)"
NO_CONCEPTS = "(No concepts were extracted for this domain; elaborate from the core term.)"
NO_DETAIL = "No further detail"


@dataclass(frozen=True)
class PersonaPrompt:
    thinking: str
    reply: str


def explain_domain(domain_key: str, analysis: Optional[StructuredAnalysis]) -> str:
    """Primary concepts of one domain as '**name**: explanation' lines."""
    if analysis is None:
        return NO_ANALYSIS
    concepts = analysis.get(domain_key) or []
    if not concepts:
        return NO_CONCEPTS
    return "\n".join(
        f"**{c.name}**: {c.explanation or c.definition or NO_DETAIL}"
        for c in primary_concepts(concepts)
    )


def build_persona_prompt(
    item: PhilosophyItem,
    analysis: Optional[StructuredAnalysis],
    templates: PromptTemplates,
) -> PersonaPrompt:
    """
    Fill the thinking and reply templates for `item`.

    Raises:
        ConfigurationError: The code does not start with 1-4, or the
            templates for that part are missing
    """
    prefix = item.code.split("-")[0] if item.code else ""
    if prefix not in ("1", "2", "3", "4"):
        raise ConfigurationError(f"Invalid philosophy code prefix: {prefix!r}")

    thinking = templates.persona_thinking.get(prefix)
    reply = templates.persona_reply.get(prefix)
    if not thinking or not reply:
        raise ConfigurationError(f"No persona templates configured for part {prefix}")

    values = dict(
        philosophyName=item.name,
        philosophyCode=item.code,
        representative=item.representative,
        fieldTheoryTerm=format_field_theory(item.field_theory),
        fieldTheoryExplanation=explain_domain("fieldTheoryAnalysis", analysis),
        ontologyTerm=item.ontology,
        ontologyExplanation=explain_domain("ontologyAnalysis", analysis),
        epistemologyTerm=item.epistemology,
        epistemologyExplanation=explain_domain("epistemologyAnalysis", analysis),
        teleologyTerm=item.teleology,
        teleologyExplanation=explain_domain("teleologyAnalysis", analysis),
    )
    return PersonaPrompt(thinking=render(thinking, **values), reply=render(reply, **values))
