"""
Domain analysis - one JSON request per applicable domain of a philosophy item.

The number of domains follows the depth of the item's code: "1-3" is
analysed for field theory and ontology, "1-3-1-4" for all four domains.
Requests run through process_in_batches; the first failed domain aborts
the whole analysis.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional

from llm.src.batching import process_in_batches
from llm.src.cancellation import CancellationToken
from llm.src.client import ChatCompletionClient
from llm.src.errors import AbortedError, DomainPipelineError, LLMError
from shared.config import SamplingProfile
from shared.logging import get_logger
from shared.prompts import render

from .models import Domain, PhilosophyItem, StructuredAnalysis, parse_concepts

log = get_logger("analysis", "domain")

LogSink = Callable[[str], None]


@dataclass
class DomainAnalysis:
    """Concepts per domain key, plus the rendered user prompts in domain order."""
    analysis: StructuredAnalysis = field(default_factory=dict)
    prompts: list[str] = field(default_factory=list)


def build_domain_prompt(template: str, item: PhilosophyItem, domain: Domain, text: str) -> str:
    return render(
        template,
        domainName=domain.label,
        philosophyName=item.name,
        philosophyCode=item.code,
        domainTerm=item.term_for(domain),
        movementPattern=item.movement_pattern_for(domain),
        textContent=text,
        domainKey=domain.key,
    )


class DomainAnalysisPipeline:
    """Fan-out of one manuscript over the domains of its index item."""

    def __init__(
        self,
        client: ChatCompletionClient,
        *,
        concurrency_limit: int,
        system_prompt: str,
        user_template: str,
        sampling: SamplingProfile,
        on_log: Optional[LogSink] = None,
    ):
        self.client = client
        self.concurrency_limit = concurrency_limit
        self.system_prompt = system_prompt
        self.user_template = user_template
        self.sampling = sampling
        self.on_log = on_log or (lambda message: None)

    async def analyze(
        self,
        text: str,
        item: PhilosophyItem,
        token: Optional[CancellationToken] = None,
    ) -> DomainAnalysis:
        """
        Analyse `text` against `item`.

        Returns:
            DomainAnalysis whose keys are exactly the applicable domain keys

        Raises:
            DomainPipelineError: A domain request failed (names the domain)
            AbortedError: The token fired
        """
        domains = item.applicable_domains()
        prompts = [build_domain_prompt(self.user_template, item, d, text) for d in domains]

        self.on_log(
            f"Analyzing {len(domains)} domain(s) (batch limit: {self.concurrency_limit})..."
        )
        log.info(
            "analysis.domain.start",
            code=item.code,
            domains=[d.key for d in domains],
            concurrency_limit=self.concurrency_limit,
        )

        async def process(domain: Domain, index: int):
            self.on_log(f"Analysis ({domain.label}): sending request...")
            try:
                data = await self.client.send_json(
                    self.system_prompt,
                    prompts[index],
                    token=token,
                    **self.sampling.as_kwargs(),
                )
                concepts = parse_concepts(data)
            except AbortedError:
                raise
            except LLMError as e:
                self.on_log(f"Analysis ({domain.label}): failed - {e}")
                log.warning(
                    "analysis.domain.failed",
                    code=item.code,
                    domain=domain.key,
                    error=str(e),
                )
                raise DomainPipelineError(domain.label, e) from e

            self.on_log(f"Analysis ({domain.label}): done.")
            log.info(
                "analysis.domain.completed",
                code=item.code,
                domain=domain.key,
                concepts=len(concepts),
            )
            return domain.key, concepts

        parts = await process_in_batches(
            domains,
            process,
            self.concurrency_limit,
            lambda batch, total: self.on_log(f"Processing domain batch {batch}/{total}..."),
        )

        return DomainAnalysis(analysis=dict(parts), prompts=prompts)
