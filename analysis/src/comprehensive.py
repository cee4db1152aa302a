"""
Comprehensive analysis - three sequential rounds over one manuscript.

Round 0  one request: structural summary of the whole text (degrades to a
         placeholder on failure, the pipeline keeps going)
Round 1  one request per keyword: primary concepts
Round 2  one request per primary concept: secondary concepts

Each round starts only after the previous one has fully settled. Rounds 1
and 2 are fail-fast.
"""

import json
import re
from dataclasses import dataclass
from typing import Callable, Optional

from llm.src.batching import process_in_batches
from llm.src.cancellation import CancellationToken
from llm.src.client import ChatCompletionClient
from llm.src.errors import (
    AbortedError,
    ConfigurationError,
    LLMError,
    MalformedResponseError,
    RoundError,
    StageError,
)
from shared.config import SamplingProfile
from shared.logging import get_logger
from shared.prompts import PromptTemplates, render

from .models import (
    ComprehensiveAnalysisResult,
    Concept,
    KeywordResult,
    RoundPrompts,
    parse_concepts,
)

log = get_logger("analysis", "comprehensive")

LogSink = Callable[[str], None]

EMPTY_SUMMARY = "The model did not produce a usable summary."
SUMMARY_FAILED = "Document summary failed: {message}"

_KEYWORD_SPLIT = re.compile(r"[:：、—\s《》【】]+")


def extract_keywords(title: str) -> list[str]:
    """
    Candidate keywords from a manuscript title.

    Splits on punctuation and whitespace, drops single characters and pure
    numbers, and removes duplicates while keeping order.
    """
    keywords = []
    for part in _KEYWORD_SPLIT.split(title or ""):
        part = part.strip()
        if len(part) > 1 and not part.isdigit() and part not in keywords:
            keywords.append(part)
    return keywords


def _title_case_key(key: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in key.replace("_", " ").split(" "))


def format_summary(value) -> str:
    """
    Normalize the `summary` field of a round-0 reply.

    Raises:
        MalformedResponseError: The field is missing or neither text nor object
    """
    if isinstance(value, str):
        return value or EMPTY_SUMMARY
    if isinstance(value, dict):
        return "\n\n".join(f"**{_title_case_key(str(k))}:** {v}" for k, v in value.items())
    if value is None:
        raise MalformedResponseError("Summary response has no 'summary' field")
    raise MalformedResponseError(f"Unexpected summary type: {type(value).__name__}")


@dataclass
class _MainConcept:
    keyword: str
    concept: Concept

    @property
    def label(self) -> str:
        return f"{self.keyword} > {self.concept.name}"

    @property
    def prompt_key(self) -> str:
        # Concept names may repeat under one keyword; ids do not
        return f"{self.label} [{self.concept.id}]"


class ComprehensiveAnalysisPipeline:
    """Summary, primary concepts per keyword, secondary concepts per primary concept."""

    def __init__(
        self,
        client: ChatCompletionClient,
        *,
        concurrency_limit: int,
        prompts: PromptTemplates,
        sampling: dict[str, SamplingProfile],
        on_log: Optional[LogSink] = None,
    ):
        self.client = client
        self.concurrency_limit = concurrency_limit
        self.prompts = prompts
        self.sampling = sampling
        self.on_log = on_log or (lambda message: None)

    def _sampling(self, name: str) -> dict:
        return self.sampling[name].as_kwargs()

    async def analyze(
        self,
        title: str,
        text: str,
        keywords: list[str],
        token: Optional[CancellationToken] = None,
    ) -> ComprehensiveAnalysisResult:
        """
        Run rounds 0-2.

        Raises:
            ConfigurationError: Empty title, empty text or no keyword
            RoundError: A round-1 or round-2 request failed
            AbortedError: The token fired
        """
        if not (title or "").strip():
            raise ConfigurationError("A title is required")
        if not (text or "").strip():
            raise ConfigurationError("Manuscript text is empty")
        keywords = list(dict.fromkeys(k for k in keywords if k and k.strip()))
        if not keywords:
            raise ConfigurationError("Select at least one keyword")

        prompts = RoundPrompts()
        log.info("analysis.comprehensive.start", title=title, keywords=keywords)

        summary = await self._round0(text, prompts, token)

        results = await self._round1(text, summary, keywords, prompts, token)

        main_concepts = [
            _MainConcept(keyword=keyword, concept=concept)
            for keyword in keywords
            for concept in results[keyword].primary
        ]
        await self._round2(text, summary, main_concepts, results, prompts, token)

        log.info(
            "analysis.comprehensive.completed",
            title=title,
            primary=len(main_concepts),
            secondary=sum(len(r.secondary) for r in results.values()),
        )
        return ComprehensiveAnalysisResult(
            title=title,
            summary=summary,
            keywords=keywords,
            results=results,
            prompts=prompts,
        )

    async def _round0(
        self,
        text: str,
        prompts: RoundPrompts,
        token: Optional[CancellationToken],
    ) -> str:
        self.on_log("Round 0: summarizing document structure and content...")
        prompts.round0 = render(self.prompts.round0_user, textContent=text)
        try:
            data = await self.client.send_json(
                self.prompts.round0_system,
                prompts.round0,
                token=token,
                **self._sampling("round0"),
            )
            summary = format_summary(data.get("summary"))
        except AbortedError:
            raise
        except LLMError as e:
            self.on_log(f"Round 0: document summary failed - {e}")
            log.warning("analysis.comprehensive.summary_failed", error=str(e))
            return SUMMARY_FAILED.format(message=e)

        self.on_log("Round 0: document summary done.")
        return summary

    async def _round1(
        self,
        text: str,
        summary: str,
        keywords: list[str],
        prompts: RoundPrompts,
        token: Optional[CancellationToken],
    ) -> dict[str, KeywordResult]:
        self.on_log(
            f"Round 1: extracting primary concepts for {len(keywords)} keyword(s) "
            f"(batch limit: {self.concurrency_limit})..."
        )

        async def process(keyword: str, index: int) -> list[Concept]:
            user_prompt = render(
                self.prompts.round1_user,
                keyword=keyword,
                textContent=text,
                documentSummary=summary,
            )
            prompts.round1[keyword] = user_prompt
            self.on_log(f"Round 1 ({keyword}): sending request...")
            try:
                data = await self.client.send_json(
                    self.prompts.round1_system,
                    user_prompt,
                    token=token,
                    **self._sampling("round1"),
                )
                concepts = parse_concepts(data)
            except AbortedError:
                raise
            except LLMError as e:
                log.warning("analysis.comprehensive.round1_failed", keyword=keyword, error=str(e))
                raise RoundError(1, keyword, e) from e
            self.on_log(f"Round 1 ({keyword}): done.")
            return concepts

        round1 = await process_in_batches(
            keywords,
            process,
            self.concurrency_limit,
            lambda batch, total: self.on_log(f"Round 1: keyword batch {batch}/{total}..."),
        )
        return {
            keyword: KeywordResult(primary=concepts)
            for keyword, concepts in zip(keywords, round1)
        }

    async def _round2(
        self,
        text: str,
        summary: str,
        main_concepts: list[_MainConcept],
        results: dict[str, KeywordResult],
        prompts: RoundPrompts,
        token: Optional[CancellationToken],
    ) -> None:
        if not main_concepts:
            self.on_log("Round 2: no primary concepts, skipping.")
            return

        self.on_log(
            f"Round 2: deepening {len(main_concepts)} primary concept(s) "
            f"(batch limit: {self.concurrency_limit})..."
        )

        async def process(main: _MainConcept, index: int) -> list[Concept]:
            concept_json = json.dumps(
                dict(main.concept.to_dict(), keyword=main.keyword),
                ensure_ascii=False,
                indent=2,
            )
            user_prompt = render(
                self.prompts.round2_user,
                keyword=main.keyword,
                mainConceptName=main.concept.name,
                mainConceptId=main.concept.id,
                mainConceptAnalysis=concept_json,
                textContent=text,
                documentSummary=summary,
            )
            prompts.round2[main.prompt_key] = user_prompt
            self.on_log(f"Round 2 ({main.label}): sending request...")
            try:
                data = await self.client.send_json(
                    self.prompts.round2_system,
                    user_prompt,
                    token=token,
                    **self._sampling("round2"),
                )
                concepts = parse_concepts(data)
            except AbortedError:
                raise
            except LLMError as e:
                log.warning(
                    "analysis.comprehensive.round2_failed",
                    keyword=main.keyword,
                    concept=main.concept.name,
                    error=str(e),
                )
                raise RoundError(2, main.concept.name, e) from e
            self.on_log(f"Round 2 ({main.label}): done.")
            return concepts

        round2 = await process_in_batches(
            main_concepts,
            process,
            self.concurrency_limit,
            lambda batch, total: self.on_log(f"Round 2: deepening batch {batch}/{total}..."),
        )

        # Commit only after the whole round has settled
        for main, concepts in zip(main_concepts, round2):
            results[main.keyword].secondary.extend(concepts)


def build_keyword_passage(keyword: str, result: KeywordResult) -> str:
    """Text block describing one keyword's concepts, used as context for term explanations."""
    lines = [f"Keyword: {keyword}", ""]
    for heading, concepts in (("Primary concepts", result.primary),
                              ("Secondary concepts", result.secondary)):
        if not concepts:
            continue
        lines.append(f"{heading}:")
        for concept in concepts:
            lines.append(f"- {concept.name}")
            lines.append(f"  Definition: {concept.definition}")
            lines.append(f"  Explanation: {concept.explanation}")
            lines.append(f"  Examples: {concept.examples}")
        lines.append("")
    return "\n".join(lines).strip()


async def explain_term(
    client: ChatCompletionClient,
    result: ComprehensiveAnalysisResult,
    keyword: str,
    term: str,
    text: str,
    templates: PromptTemplates,
    sampling: SamplingProfile,
    token: Optional[CancellationToken] = None,
) -> str:
    """
    Explain `term` within the context of one keyword's analysis.

    The explanation is stored in result.results[keyword].term_explanations
    only after the call succeeds.

    Raises:
        ConfigurationError: Empty term or unknown keyword
        StageError: The request failed
        AbortedError: The token fired
    """
    term = (term or "").strip()
    if not term:
        raise ConfigurationError("A term is required")
    if keyword not in result.results:
        raise ConfigurationError(f'Keyword "{keyword}" is not part of this analysis')

    keyword_result = result.results[keyword]
    user_prompt = render(
        templates.term_explanation_user,
        term=term,
        keyword=keyword,
        passage=build_keyword_passage(keyword, keyword_result),
        textContent=text,
    )
    try:
        explanation = await client.send(
            templates.term_explanation_system,
            user_prompt,
            token=token,
            **sampling.as_kwargs(),
        )
    except AbortedError:
        raise
    except LLMError as e:
        raise StageError("Term explanation", e) from e

    explanation = explanation.strip()
    keyword_result.term_explanations[term] = explanation
    log.info("analysis.comprehensive.term_explained", keyword=keyword, term=term)
    return explanation
