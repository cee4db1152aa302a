"""
Markdown reports from a structured analysis.

    # [1-3-1-4] Name Deep Analysis Report
    ## Ontology
    ### Primary concept
    #### Child concept
    ## Developmental Outlook        (transition items only)
"""

import re
from typing import Optional

from .models import (
    DOMAIN_LABELS,
    Concept,
    PhilosophyItem,
    StructuredAnalysis,
    child_concepts,
    concept_index,
    primary_concepts,
    resolve_concept_name,
)

REPORT_SUFFIX = "Deep Analysis Report"
REPORT_HEADER = re.compile(r"^#\s*\[(.*?)\]\s*(.*?)\s*" + re.escape(REPORT_SUFFIX))


def _format_concept(concept: Concept, level: int, index: dict[str, Concept]) -> str:
    lines = [
        f"{'#' * (level + 3)} {concept.name}",
        "",
        f"**Definition:** {concept.definition}",
        "",
        f"**Explanation:** {concept.explanation}",
        "",
        f"**Examples:** {concept.examples}",
        "",
    ]
    if concept.movement_pattern_analysis:
        lines += [f"**Movement pattern analysis:** {concept.movement_pattern_analysis}", ""]
    if concept.relationships:
        lines.append("**Relationships:**")
        for rel in concept.relationships:
            lines.append(f"- {rel.description} [{resolve_concept_name(index, rel.target_id)}]")
        lines.append("")
    if concept.contextual_explanations:
        lines.append("**Contextual explanations:**")
        for term, explanation in concept.contextual_explanations.items():
            body = explanation.replace("\n", "\n   ")
            lines.append(f" - **{term}:** {body}")
        lines.append("")
    return "\n".join(lines) + "\n"


def render_report(
    analysis: StructuredAnalysis,
    item: PhilosophyItem,
    successor: Optional[PhilosophyItem] = None,
) -> str:
    """
    Render the markdown report for `item`.

    Domains appear in the analysis' key order. Secondary concepts follow
    their parent; relationship targets that do not exist render as
    "unknown concept".
    """
    index = concept_index(analysis)
    parts = [f"# [{item.code}] {item.name} {REPORT_SUFFIX}\n\n"]

    for domain_key, concepts in analysis.items():
        if concepts is None:
            continue
        parts.append(f"## {DOMAIN_LABELS.get(domain_key, domain_key)}\n\n")
        for primary in primary_concepts(concepts):
            parts.append(_format_concept(primary, 0, index))
            for child in child_concepts(concepts, primary.id):
                parts.append(_format_concept(child, 1, index))

    if successor is not None:
        parts.append(
            "## Developmental Outlook\n\n"
            "(Generated from the index's succession rules; can be deepened further.)\n\n"
            f'The system of "{item.name}" has reached its end point; its inner '
            f"contradictions lead to the successor **\"[{successor.code}] {successor.name}\"**."
        )

    return "".join(parts)


def parse_report_header(content: str) -> Optional[tuple[str, str]]:
    """(code, name) from a report's first heading, or None if it has none."""
    match = REPORT_HEADER.match(content.lstrip())
    if not match:
        return None
    return match.group(1).strip(), match.group(2).strip()
