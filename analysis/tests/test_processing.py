"""Tests for multi-manuscript processing."""

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from analysis.src.models import Concept, ProcessedFileResult, ResultStatus
from analysis.src.processing import (
    Manuscript,
    ManuscriptError,
    ManuscriptProcessor,
    ManuscriptQueue,
    ResultStore,
    extract_code,
    manuscript_from_text,
    read_manuscript,
)
from llm.src.errors import AbortedError, ConfigurationError, StageError, TransportError
from shared.config import LLMSettings


class TestExtractCode:
    """Tests for extract_code."""

    @pytest.mark.parametrize("name,expected", [
        ("[1-3-1] Title.txt", "1-3-1"),
        ("1-3-1 Title.txt", "1-3-1"),
        ("Notes on [2-1].md", "2-1"),
        ("4.txt", "4"),
        ("notes.txt", None),
        ("[] empty.txt", None),
    ])
    def test_extract(self, name, expected):
        assert extract_code(name) == expected


class TestIntake:
    """Tests for reading files, pasted text and the queue."""

    def test_read_text_file(self, tmp_path):
        path = tmp_path / "[1-2] Flux.md"
        path.write_text("content", encoding="utf-8")

        manuscript = read_manuscript(path)

        assert manuscript == Manuscript(name="[1-2] Flux.md", content="content")

    @pytest.mark.parametrize("name", ["old.doc", "paper.pdf"])
    def test_unsupported_formats(self, tmp_path, name):
        path = tmp_path / name
        path.write_bytes(b"\x00")

        with pytest.raises(ManuscriptError):
            read_manuscript(path)

    def test_pasted_text(self):
        manuscript = manuscript_from_text("[1-3] Idealism\nbody")
        assert manuscript.name == "1-3.txt"
        assert manuscript.content == "[1-3] Idealism\nbody"

    @pytest.mark.parametrize("text", ["", "Idealism\n[1-3] later"])
    def test_pasted_text_rejected(self, text):
        with pytest.raises(ManuscriptError):
            manuscript_from_text(text)

    def test_queue_rejects_duplicates(self):
        queue = ManuscriptQueue()
        queue.add(Manuscript("1.txt", "a"))

        with pytest.raises(ManuscriptError):
            queue.add(Manuscript("1.txt", "b"))

        queue.add(Manuscript("2.txt", "c"))
        queue.remove("1.txt")
        assert [m.name for m in queue] == ["2.txt"]
        queue.clear()
        assert len(queue) == 0


class TestResultStore:
    """Tests for ResultStore."""

    def test_upsert_keeps_position(self):
        store = ResultStore()
        store.upsert(ProcessedFileResult("a.txt", "1", "A", ResultStatus.ERROR, error="x"))
        store.upsert(ProcessedFileResult("b.txt", "2", "B", ResultStatus.SUCCESS, report="r"))
        store.upsert(ProcessedFileResult("a.txt", "1", "A", ResultStatus.SUCCESS, report="r2"))

        assert [r.file_name for r in store] == ["a.txt", "b.txt"]
        assert store.get("a.txt").status == ResultStatus.SUCCESS
        assert len(store.successful()) == 2

    def test_save_and_load(self, tmp_path, make_concept):
        store = ResultStore()
        store.upsert(ProcessedFileResult(
            "a.txt", "1", "A", ResultStatus.SUCCESS, report="r",
            analysis={"fieldTheoryAnalysis": [Concept.from_dict(make_concept("c1", "Nature"))]},
            prompts=["p"],
        ))
        path = tmp_path / "out" / "results.json"

        store.save(path)
        loaded = ResultStore.load(path)

        result = loaded.get("a.txt")
        assert result.analysis["fieldTheoryAnalysis"][0].name == "Nature"
        assert result.prompts == ["p"]

    def test_load_missing_file(self, tmp_path):
        assert len(ResultStore.load(tmp_path / "none.json")) == 0


def make_processor(mock_client, index, settings, logs=None):
    return ManuscriptProcessor(
        mock_client, index, settings, on_log=logs.append if logs is not None else None,
    )


class TestProcessing:
    """Tests for ManuscriptProcessor.process."""

    @pytest.mark.asyncio
    async def test_success_renders_report_with_successor(self, mock_client, index, settings, make_concept):
        mock_client.send_json = AsyncMock(return_value={"concepts": [make_concept("c1", "Concept")]})
        processor = make_processor(mock_client, index, settings)

        results = await processor.process([Manuscript("[1-3-1-4] Aporia.txt", "body")])

        result = results[0]
        assert result.status == ResultStatus.SUCCESS
        assert result.code == "1-3-1-4"
        assert result.name == "Aporia"
        assert result.report.startswith("# [1-3-1-4] Aporia Deep Analysis Report")
        assert "[1-3-2] Hylomorphism" in result.report
        assert len(result.prompts) == 4
        assert processor.store.get("[1-3-1-4] Aporia.txt") is result
        assert processor.texts["[1-3-1-4] Aporia.txt"] == "body"

    @pytest.mark.asyncio
    async def test_failures_become_error_records(self, mock_client, index, settings):
        async def send_json(system, user, **kwargs):
            if "key=ontologyAnalysis" in user and "code=1-2 " in user:
                raise TransportError("rate limited", status=429)
            return {"concepts": []}

        mock_client.send_json = AsyncMock(side_effect=send_json)
        processor = make_processor(mock_client, index, settings)

        results = await processor.process([
            Manuscript("notes.txt", "body"),
            Manuscript("[9] Missing.txt", "body"),
            Manuscript("[1-3] Idealism.txt", "   "),
            Manuscript("[1-2] Flux.txt", "body"),
            Manuscript("[1] Nature.txt", "body"),
        ])

        assert [r.status for r in results] == [ResultStatus.ERROR] * 4 + [ResultStatus.SUCCESS]
        assert results[0].code == "N/A"
        assert "Could not extract a code" in results[0].error
        assert results[1].error == 'No index entry with code "9"'
        assert results[2].name == "Idealism"
        assert results[2].error == "File content is empty or unreadable"
        assert results[3].error == "Analysis failed (Ontology): rate limited"
        assert len(processor.store) == 5

    @pytest.mark.asyncio
    async def test_malformed_concept_fails_only_its_manuscript(
        self, mock_client, index, settings, make_concept
    ):
        async def send_json(system, user, **kwargs):
            if "code=1 " in user:
                return {"concepts": [{"id": "a", "name": "n", "contextualExplanations": "oops"}]}
            return {"concepts": [make_concept("c1", "Concept")]}

        mock_client.send_json = AsyncMock(side_effect=send_json)
        processor = make_processor(mock_client, index, settings)

        results = await processor.process([
            Manuscript("[1] Nature.txt", "body"),
            Manuscript("[2] Mind.txt", "body"),
        ])

        assert [r.status for r in results] == [ResultStatus.ERROR, ResultStatus.SUCCESS]
        assert results[0].error.startswith("Analysis failed (Field Theory): ")
        assert processor.store.get("[2] Mind.txt").status == ResultStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_error_record(self, mock_client, index, settings):
        async def send_json(system, user, **kwargs):
            if "code=1 " in user:
                raise RuntimeError("socket closed")
            return {"concepts": []}

        mock_client.send_json = AsyncMock(side_effect=send_json)
        logs = []
        processor = make_processor(mock_client, index, settings, logs)

        results = await processor.process([
            Manuscript("[1] Nature.txt", "body"),
            Manuscript("[2] Mind.txt", "body"),
        ])

        assert [r.status for r in results] == [ResultStatus.ERROR, ResultStatus.SUCCESS]
        assert results[0].error == "Unexpected error: socket closed"
        assert results[0].code == "1"
        assert "[[1] Nature.txt] failed: Unexpected error: socket closed" in logs

    @pytest.mark.asyncio
    async def test_reprocessing_replaces_result(self, mock_client, index, settings):
        mock_client.send_json = AsyncMock(side_effect=TransportError("down"))
        processor = make_processor(mock_client, index, settings)
        await processor.process([Manuscript("[1] a.txt", "body"), Manuscript("[2] b.txt", "body")])

        mock_client.send_json = AsyncMock(return_value={"concepts": []})
        await processor.process([Manuscript("[1] a.txt", "body")])

        assert [r.file_name for r in processor.store] == ["[1] a.txt", "[2] b.txt"]
        assert processor.store.get("[1] a.txt").status == ResultStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_batches_bounded_by_limit(self, mock_client, index, settings):
        active = 0
        peak = 0

        async def send_json(system, user, **kwargs):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return {"concepts": []}

        mock_client.send_json = AsyncMock(side_effect=send_json)
        logs = []
        processor = make_processor(mock_client, index, replace(settings, concurrency_limit=1), logs)

        await processor.process([Manuscript(f"[{c}] x.txt", "body") for c in ("1", "2", "1-3")])

        assert peak == 1
        assert "Processing file batch 3/3..." in logs
        assert logs[-1] == "All items processed."

    @pytest.mark.asyncio
    async def test_abort_propagates(self, mock_client, index, settings):
        mock_client.send_json = AsyncMock(side_effect=AbortedError())
        processor = make_processor(mock_client, index, settings)

        with pytest.raises(AbortedError):
            await processor.process([Manuscript("[1] a.txt", "body")])

    @pytest.mark.asyncio
    async def test_empty_selection(self, mock_client, index, settings):
        processor = make_processor(mock_client, index, settings)

        with pytest.raises(ConfigurationError):
            await processor.process([])

    @pytest.mark.asyncio
    async def test_missing_api_key(self, mock_client, index, settings):
        mock_client.send_json = AsyncMock()
        processor = make_processor(mock_client, index, replace(settings, llm=LLMSettings(api_key=None)))

        with pytest.raises(ConfigurationError):
            await processor.process([Manuscript("[1] a.txt", "body")])

        mock_client.send_json.assert_not_called()


class TestLoadReport:
    """Tests for registering existing reports."""

    def test_load_matching_report(self, mock_client, index, settings):
        logs = []
        processor = make_processor(mock_client, index, settings, logs)

        result = processor.load_report("idealism.md", "# [1-3] Idealism Deep Analysis Report\n\nbody")

        assert result.status == ResultStatus.SUCCESS
        assert (result.code, result.name) == ("1-3", "Idealism")
        assert processor.store.get("idealism.md") is result
        assert not any("warning" in line for line in logs)

    def test_load_mismatched_report_warns(self, mock_client, index, settings):
        logs = []
        processor = make_processor(mock_client, index, settings, logs)

        result = processor.load_report("x.md", "# [1-3] Platonism Deep Analysis Report\n")

        assert result.name == "Platonism"
        assert any("do not fully match" in line for line in logs)

    def test_load_report_without_header(self, mock_client, index, settings):
        processor = make_processor(mock_client, index, settings)

        with pytest.raises(ManuscriptError):
            processor.load_report("x.md", "just notes")


class TestContextualExplanation:
    """Tests for ManuscriptProcessor.add_contextual_explanation."""

    @pytest_asyncio.fixture
    async def processed(self, mock_client, index, settings, make_concept):
        mock_client.send_json = AsyncMock(return_value={"concepts": [make_concept("c1", "Logos")]})
        processor = make_processor(mock_client, index, settings)
        await processor.process([Manuscript("[1] a.txt", "the source text")])
        return processor

    @pytest.mark.asyncio
    async def test_stores_and_rerenders(self, processed, mock_client):
        mock_client.send = AsyncMock(return_value=" It means reason. ")

        explanation = await processed.add_contextual_explanation("[1] a.txt", "c1", " ratio ")

        assert explanation == "It means reason."
        result = processed.store.get("[1] a.txt")
        assert result.analysis["fieldTheoryAnalysis"][0].contextual_explanations == {"ratio": "It means reason."}
        assert " - **ratio:** It means reason." in result.report
        args, kwargs = mock_client.send.call_args
        assert args[0] == "explanation-system"
        assert args[1] == "concept=Logos term=ratio text=the source text"

    @pytest.mark.asyncio
    async def test_failure_changes_nothing(self, processed, mock_client):
        mock_client.send = AsyncMock(side_effect=TransportError("down"))
        before = processed.store.get("[1] a.txt").report

        with pytest.raises(StageError):
            await processed.add_contextual_explanation("[1] a.txt", "c1", "ratio")

        result = processed.store.get("[1] a.txt")
        assert result.report == before
        assert result.analysis["fieldTheoryAnalysis"][0].contextual_explanations == {}

    @pytest.mark.asyncio
    async def test_unknown_concept(self, processed):
        with pytest.raises(ConfigurationError):
            await processed.add_contextual_explanation("[1] a.txt", "nope", "ratio")

    @pytest.mark.asyncio
    async def test_unknown_result(self, processed):
        with pytest.raises(ConfigurationError):
            await processed.add_contextual_explanation("missing.txt", "c1", "ratio")


def test_corrupt_results_file_gives_empty_store(tmp_path):
    path = tmp_path / "results.json"
    path.write_text("{not json", encoding="utf-8")

    assert len(ResultStore.load(path)) == 0
