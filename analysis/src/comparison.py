"""
Single-call services built on finished analyses.

- generate_comparison_report: juxtapose two analysed items
- generate_contextual_explanation: explain a term relative to one concept
"""

from typing import Optional

from llm.src.cancellation import CancellationToken
from llm.src.client import ChatCompletionClient
from llm.src.errors import AbortedError, ConfigurationError, LLMError, StageError
from shared.config import SamplingProfile
from shared.logging import get_logger
from shared.prompts import PromptTemplates, render

from .models import Concept, PhilosophyItem, ProcessedFileResult, ResultStatus, format_field_theory

log = get_logger("analysis", "comparison")


def check_comparable(result_a: ProcessedFileResult, result_b: ProcessedFileResult) -> None:
    """
    Both results must be distinct successful analyses with a report.

    Raises:
        ConfigurationError: Otherwise
    """
    for result in (result_a, result_b):
        if result.status != ResultStatus.SUCCESS or not result.report:
            raise ConfigurationError(
                f'"{result.file_name}" has no successful report to compare'
            )
    if result_a.file_name == result_b.file_name:
        raise ConfigurationError("Select two different results to compare")


def _item_placeholders(prefix: str, item: PhilosophyItem, report: str) -> dict:
    return {
        f"{prefix}Code": item.code,
        f"{prefix}Name": item.name,
        f"{prefix}FieldTheory": format_field_theory(item.field_theory),
        f"{prefix}Ontology": item.ontology,
        f"{prefix}Epistemology": item.epistemology,
        f"{prefix}Teleology": item.teleology,
        f"report{prefix[-1]}": report,
    }


async def generate_comparison_report(
    client: ChatCompletionClient,
    item_a: PhilosophyItem,
    report_a: str,
    item_b: PhilosophyItem,
    report_b: str,
    templates: PromptTemplates,
    sampling: SamplingProfile,
    token: Optional[CancellationToken] = None,
) -> str:
    """
    Markdown comparison of two items based on their reports.

    Raises:
        StageError: The request failed
        AbortedError: The token fired
    """
    values = _item_placeholders("itemA", item_a, report_a)
    values.update(_item_placeholders("itemB", item_b, report_b))
    user_prompt = render(templates.comparison_user, **values)

    log.info("analysis.comparison.start", code_a=item_a.code, code_b=item_b.code)
    try:
        report = await client.send(
            templates.comparison_system,
            user_prompt,
            token=token,
            **sampling.as_kwargs(),
        )
    except AbortedError:
        raise
    except LLMError as e:
        log.warning("analysis.comparison.failed", error=str(e))
        raise StageError("Comparison", e) from e

    log.info("analysis.comparison.completed", length=len(report))
    return report


async def generate_contextual_explanation(
    client: ChatCompletionClient,
    text: str,
    parent: Concept,
    term: str,
    templates: PromptTemplates,
    sampling: SamplingProfile,
    token: Optional[CancellationToken] = None,
) -> str:
    """
    Explain `term` as it is used around the concept `parent` in `text`.

    Raises:
        ConfigurationError: Empty term
        StageError: The request failed
        AbortedError: The token fired
    """
    term = (term or "").strip()
    if not term:
        raise ConfigurationError("A term is required")

    user_prompt = render(
        templates.explanation_user,
        parentConceptName=parent.name,
        parentConceptDefinition=parent.definition,
        parentConceptExplanation=parent.explanation,
        newConcept=term,
        originalTextContent=text,
    )
    try:
        explanation = await client.send(
            templates.explanation_system,
            user_prompt,
            token=token,
            **sampling.as_kwargs(),
        )
    except AbortedError:
        raise
    except LLMError as e:
        raise StageError("Contextual explanation", e) from e

    log.info("analysis.comparison.explained", concept=parent.id, term=term)
    return explanation.strip()
