"""
Multi-manuscript processing.

Manuscripts are processed `concurrency_limit` at a time. A failing
manuscript becomes an error record and never stops its siblings; only a
cancellation stops the run. Every outcome is upserted into a ResultStore
keyed by file name.
"""

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from llm.src.batching import process_in_batches
from llm.src.cancellation import CancellationToken
from llm.src.client import ChatCompletionClient
from llm.src.errors import AbortedError, ConfigurationError, LLMError
from shared.config import Settings
from shared.logging import get_logger

from .comparison import generate_contextual_explanation
from .domain import DomainAnalysisPipeline
from .index import PhilosophyIndex
from .models import Concept, ProcessedFileResult, ResultStatus
from .report import parse_report_header, render_report

log = get_logger("analysis", "processing")

LogSink = Callable[[str], None]

SUPPORTED_SUFFIXES = (".txt", ".md")
CODE_PATTERN = re.compile(r"(\[.*?\])|(^[0-9]+(-[0-9]+)*)")


def extract_code(name: str) -> Optional[str]:
    """
    Item code from a file name or a first line.

    "[1-3-1] Title.txt" -> "1-3-1", "1-3-1 Title.txt" -> "1-3-1".
    """
    match = CODE_PATTERN.search(name or "")
    if not match:
        return None
    code = match.group(0).replace("[", "").replace("]", "").strip()
    return code or None


@dataclass
class Manuscript:
    """A named text waiting to be analysed."""
    name: str
    content: str


class ManuscriptError(Exception):
    """A file or pasted text could not be accepted for processing."""


def read_manuscript(path: Path) -> Manuscript:
    """
    Read a .txt or .md file.

    Raises:
        ManuscriptError: Unsupported format or unreadable file
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".doc":
        raise ManuscriptError(f"{path.name}: legacy .doc files are not supported")
    if suffix not in SUPPORTED_SUFFIXES:
        raise ManuscriptError(
            f"{path.name}: unsupported format (expected {', '.join(SUPPORTED_SUFFIXES)})"
        )
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ManuscriptError(f"{path.name}: could not be read: {e}") from e
    return Manuscript(name=path.name, content=content)


def manuscript_from_text(text: str) -> Manuscript:
    """
    Turn pasted text into a virtual `<code>.txt` manuscript.

    Raises:
        ManuscriptError: Empty text, or no code on the first line
    """
    if not (text or "").strip():
        raise ManuscriptError("Pasted text is empty")
    first_line = text.split("\n", 1)[0]
    code = extract_code(first_line)
    if not code:
        raise ManuscriptError(f'No code found on the first line "{first_line}"')
    return Manuscript(name=f"{code}.txt", content=text)


class ManuscriptQueue:
    """Manuscripts waiting for processing; names are unique."""

    def __init__(self):
        self._manuscripts: list[Manuscript] = []

    def __len__(self) -> int:
        return len(self._manuscripts)

    def __iter__(self):
        return iter(self._manuscripts)

    def add(self, manuscript: Manuscript) -> None:
        if any(m.name == manuscript.name for m in self._manuscripts):
            raise ManuscriptError(f'"{manuscript.name}" is already queued')
        self._manuscripts.append(manuscript)

    def remove(self, name: str) -> None:
        self._manuscripts = [m for m in self._manuscripts if m.name != name]

    def clear(self) -> None:
        self._manuscripts.clear()


class ResultStore:
    """At most one current result per file name, in first-seen order."""

    def __init__(self):
        self._results: dict[str, ProcessedFileResult] = {}

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self):
        return iter(self._results.values())

    def get(self, file_name: str) -> Optional[ProcessedFileResult]:
        return self._results.get(file_name)

    def upsert(self, result: ProcessedFileResult) -> None:
        # dict assignment keeps the original position of an existing key
        self._results[result.file_name] = result

    def successful(self) -> list[ProcessedFileResult]:
        return [r for r in self._results.values() if r.status == ResultStatus.SUCCESS]

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = [result.to_dict() for result in self._results.values()]
        path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "ResultStore":
        """Results saved by save(); a missing or unreadable file gives an empty store."""
        store = cls()
        path = Path(path)
        if not path.exists():
            return store
        try:
            for entry in json.loads(path.read_text(encoding="utf-8")):
                store.upsert(ProcessedFileResult.from_dict(entry))
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.exception(e, "analysis.processing.results_load_error", {"path": str(path)})
            return cls()
        log.info("analysis.processing.results_loaded", path=str(path), results=len(store))
        return store


class ManuscriptProcessor:
    """
    Drives domain analysis and report rendering for many manuscripts.

    Usage:
        processor = ManuscriptProcessor(client, index, settings, on_log=print)
        results = await processor.process(manuscripts, token=token)
    """

    def __init__(
        self,
        client: ChatCompletionClient,
        index: PhilosophyIndex,
        settings: Settings,
        store: Optional[ResultStore] = None,
        on_log: Optional[LogSink] = None,
    ):
        self.client = client
        self.index = index
        self.settings = settings
        self.store = store if store is not None else ResultStore()
        self.on_log = on_log or (lambda message: None)
        # Source text per file name, needed for contextual explanations
        self.texts: dict[str, str] = {}

    def _pipeline(self, on_log: LogSink) -> DomainAnalysisPipeline:
        return DomainAnalysisPipeline(
            self.client,
            concurrency_limit=self.settings.concurrency_limit,
            system_prompt=self.settings.prompts.analysis_system,
            user_template=self.settings.prompts.analysis_user,
            sampling=self.settings.sampling_for("domain_analysis"),
            on_log=on_log,
        )

    def _error(self, manuscript: Manuscript, code: Optional[str], name: str, message: str):
        self.on_log(f"[{manuscript.name}] failed: {message}")
        log.warning(
            "analysis.processing.manuscript_failed",
            file_name=manuscript.name,
            code=code,
            error=message,
        )
        result = ProcessedFileResult(
            file_name=manuscript.name,
            code=code or "N/A",
            name=name,
            status=ResultStatus.ERROR,
            error=message,
        )
        self.store.upsert(result)
        return result

    async def process_one(
        self,
        manuscript: Manuscript,
        token: Optional[CancellationToken] = None,
    ) -> ProcessedFileResult:
        """Analyse one manuscript. Failures become error results; aborts propagate."""
        code = extract_code(manuscript.name)
        if not code:
            return self._error(
                manuscript, None, "Unknown",
                f'Could not extract a code from the file name "{manuscript.name}"',
            )

        item = self.index.find(code)
        if item is None:
            return self._error(
                manuscript, code, "Unknown", f'No index entry with code "{code}"'
            )

        if not (manuscript.content or "").strip():
            return self._error(manuscript, code, item.name, "File content is empty or unreadable")

        self.on_log(f"[{manuscript.name}] processing... ([{item.code}] {item.name})")
        pipeline = self._pipeline(lambda message: self.on_log(f"[{manuscript.name}] {message}"))
        try:
            domain_analysis = await pipeline.analyze(manuscript.content, item, token=token)
        except AbortedError:
            raise
        except LLMError as e:
            return self._error(manuscript, code, item.name, str(e))
        except Exception as e:
            # One manuscript never takes its siblings down
            log.exception(e, "analysis.processing.unexpected_error", {"file_name": manuscript.name})
            return self._error(manuscript, code, item.name, f"Unexpected error: {e}")

        self.on_log(f"[{manuscript.name}] structured analysis done.")
        report = render_report(domain_analysis.analysis, item, self.index.find_next(item))

        result = ProcessedFileResult(
            file_name=manuscript.name,
            code=item.code,
            name=item.name,
            status=ResultStatus.SUCCESS,
            report=report,
            analysis=domain_analysis.analysis,
            prompts=domain_analysis.prompts,
        )
        self.texts[manuscript.name] = manuscript.content
        self.store.upsert(result)
        self.on_log(f"[{manuscript.name}] processed successfully.")
        log.info("analysis.processing.manuscript_done", file_name=manuscript.name, code=item.code)
        return result

    async def process(
        self,
        manuscripts: Iterable[Manuscript],
        token: Optional[CancellationToken] = None,
    ) -> list[ProcessedFileResult]:
        """
        Process all manuscripts, `concurrency_limit` at a time.

        Raises:
            ConfigurationError: Nothing to process, or no API key
            AbortedError: The token fired; results stored so far are kept
        """
        manuscripts = list(manuscripts)
        if not manuscripts:
            raise ConfigurationError("No files or text to process")
        self.settings.require_credentials()

        limit = self.settings.concurrency_limit
        self.on_log(f"Starting deep analysis of {len(manuscripts)} item(s)... (batch limit: {limit})")
        log.info("analysis.processing.start", manuscripts=len(manuscripts), concurrency_limit=limit)

        results = await process_in_batches(
            manuscripts,
            lambda manuscript, index: self.process_one(manuscript, token=token),
            limit,
            lambda batch, total: self.on_log(f"Processing file batch {batch}/{total}..."),
        )
        self.on_log("All items processed.")
        return results

    def load_report(self, file_name: str, content: str) -> ProcessedFileResult:
        """
        Register an existing markdown report as a successful result.

        Raises:
            ManuscriptError: The first heading is not a report heading
        """
        header = parse_report_header(content)
        if header is None:
            raise ManuscriptError(
                f'{file_name}: could not parse the report title; expected '
                f'"# [code] name Deep Analysis Report"'
            )
        code, name = header
        item = self.index.find(code)
        if item is None or item.name != name:
            self.on_log(
                f"[{file_name}] warning: code/name ([{code}] {name}) do not fully match the index; "
                "loading anyway."
            )
            log.warning("analysis.processing.report_mismatch", file_name=file_name, code=code)

        result = ProcessedFileResult(
            file_name=file_name,
            code=code,
            name=name,
            status=ResultStatus.SUCCESS,
            report=content,
        )
        self.store.upsert(result)
        self.on_log(f"Loaded report: {file_name}")
        return result

    async def add_contextual_explanation(
        self,
        file_name: str,
        concept_id: str,
        term: str,
        token: Optional[CancellationToken] = None,
    ) -> str:
        """
        Explain `term` for one concept of an analysed manuscript.

        The explanation is stored on the concept, the report is re-rendered
        and the result upserted. Nothing changes if the call fails.

        Raises:
            ConfigurationError: Unknown result, concept or source text
            StageError: The request failed
            AbortedError: The token fired
        """
        result = self.store.get(file_name)
        if result is None or result.analysis is None:
            raise ConfigurationError(f'"{file_name}" has no structured analysis')
        text = self.texts.get(file_name)
        if text is None:
            raise ConfigurationError(f'Source text of "{file_name}" is not available')

        concept = self._find_concept(result, concept_id)
        explanation = await generate_contextual_explanation(
            self.client,
            text,
            concept,
            term,
            self.settings.prompts,
            self.settings.sampling_for("explanation"),
            token=token,
        )

        concept.contextual_explanations[term.strip()] = explanation
        item = self.index.find(result.code)
        if item is not None:
            result.report = render_report(result.analysis, item, self.index.find_next(item))
        self.store.upsert(result)
        return explanation

    @staticmethod
    def _find_concept(result: ProcessedFileResult, concept_id: str) -> Concept:
        for concepts in result.analysis.values():
            for concept in concepts:
                if concept.id == concept_id:
                    return concept
        raise ConfigurationError(f'No concept "{concept_id}" in "{result.file_name}"')

