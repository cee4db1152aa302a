"""
Manuscript analysis - domain analysis, comprehensive analysis, reports.

Usage:
    from analysis import DomainAnalysisPipeline, PhilosophyIndex

    index = PhilosophyIndex.load(settings.index_path)
    pipeline = DomainAnalysisPipeline(client, concurrency_limit=2, ...)
    result = await pipeline.analyze(text, index.require("1-3"))
"""

from .src.comparison import generate_comparison_report, generate_contextual_explanation
from .src.comprehensive import ComprehensiveAnalysisPipeline, explain_term, extract_keywords
from .src.domain import DomainAnalysis, DomainAnalysisPipeline
from .src.index import PhilosophyIndex, UnknownItemError
from .src.models import (
    DOMAINS,
    ComprehensiveAnalysisResult,
    Concept,
    KeywordResult,
    PhilosophyItem,
    PlainTerm,
    ProcessedFileResult,
    Relationship,
    ResultStatus,
    StructuredTerm,
    format_field_theory,
)
from .src.processing import (
    Manuscript,
    ManuscriptError,
    ManuscriptProcessor,
    ManuscriptQueue,
    ResultStore,
    extract_code,
    manuscript_from_text,
    read_manuscript,
)
from .src.report import parse_report_header, render_report

__all__ = [
    "generate_comparison_report",
    "generate_contextual_explanation",
    "ComprehensiveAnalysisPipeline",
    "explain_term",
    "extract_keywords",
    "DomainAnalysis",
    "DomainAnalysisPipeline",
    "PhilosophyIndex",
    "UnknownItemError",
    "DOMAINS",
    "ComprehensiveAnalysisResult",
    "Concept",
    "KeywordResult",
    "PhilosophyItem",
    "PlainTerm",
    "ProcessedFileResult",
    "Relationship",
    "ResultStatus",
    "StructuredTerm",
    "format_field_theory",
    "Manuscript",
    "ManuscriptError",
    "ManuscriptProcessor",
    "ManuscriptQueue",
    "ResultStore",
    "extract_code",
    "manuscript_from_text",
    "read_manuscript",
    "parse_report_header",
    "render_report",
]
