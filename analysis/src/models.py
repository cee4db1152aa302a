"""
Data models for manuscript analysis.

Concepts as returned by the model, the philosophy index entries they are
analysed against, and the result records kept per manuscript.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from llm.src.errors import MalformedResponseError


# --- Field theory (plain term or four-part record) ---

@dataclass(frozen=True)
class PlainTerm:
    """Field theory given as a single term."""
    text: str


@dataclass(frozen=True)
class StructuredTerm:
    """Four-part field theory of the special items."""
    base: str = ""
    reconciliation: str = ""
    other: str = ""
    practice: str = ""

    def parts(self) -> list[str]:
        return [self.base, self.reconciliation, self.other, self.practice]


FieldTheory = Union[PlainTerm, StructuredTerm]


def parse_field_theory(raw) -> FieldTheory:
    """Build a FieldTheory from index data (string or mapping with 'base')."""
    if isinstance(raw, dict):
        return StructuredTerm(
            base=str(raw.get("base", "") or ""),
            reconciliation=str(raw.get("reconciliation", "") or ""),
            other=str(raw.get("other", "") or ""),
            practice=str(raw.get("practice", "") or ""),
        )
    return PlainTerm(text=str(raw or ""))


def format_field_theory(field_theory: FieldTheory) -> str:
    """Canonical one-line form used in prompts and reports."""
    if isinstance(field_theory, StructuredTerm):
        if any(field_theory.parts()):
            return (
                f"Base: {field_theory.base} | Reconciliation: {field_theory.reconciliation} | "
                f"Theory: {field_theory.other} | Practice unit: {field_theory.practice}"
            )
        return field_theory.base
    if isinstance(field_theory, PlainTerm):
        return field_theory.text
    raise TypeError(f"Unknown field theory variant: {type(field_theory).__name__}")


def field_theory_to_raw(field_theory: FieldTheory):
    if isinstance(field_theory, StructuredTerm):
        return {
            "base": field_theory.base,
            "reconciliation": field_theory.reconciliation,
            "other": field_theory.other,
            "practice": field_theory.practice,
        }
    return field_theory.text


# --- Domains ---

@dataclass(frozen=True)
class Domain:
    """One of the four analytical domains."""
    key: str        # Result key, e.g. "ontologyAnalysis"
    label: str      # Display name
    attribute: str  # PhilosophyItem attribute holding the domain's term


DOMAINS: tuple[Domain, ...] = (
    Domain(key="fieldTheoryAnalysis", label="Field Theory", attribute="field_theory"),
    Domain(key="ontologyAnalysis", label="Ontology", attribute="ontology"),
    Domain(key="epistemologyAnalysis", label="Epistemology", attribute="epistemology"),
    Domain(key="teleologyAnalysis", label="Teleology", attribute="teleology"),
)

DOMAIN_LABELS = {domain.key: domain.label for domain in DOMAINS}

MOVEMENT_PATTERNS = {
    "1": "Cyclical Motion",
    "2": "Oppositional Conflict",
    "3": "Harmonious Reconciliation",
    "4": "Failed Reconciliation / Disintegration",
}
NOT_APPLICABLE = "Not applicable"


# --- Philosophy index entries ---

@dataclass(frozen=True)
class PhilosophyItem:
    """A fixed entry of the philosophy index. Never mutated."""
    code: str  # Hierarchical "A-B-C-D"
    name: str
    field_theory: FieldTheory = PlainTerm("")
    ontology: str = ""
    epistemology: str = ""
    teleology: str = ""
    representative: str = ""
    is_special: bool = False

    @property
    def segments(self) -> list[str]:
        return self.code.split("-") if self.code else []

    @property
    def depth(self) -> int:
        return len(self.segments)

    def applicable_domains(self) -> tuple[Domain, ...]:
        """The first `depth` domains (at most four)."""
        return DOMAINS[:min(self.depth, len(DOMAINS))]

    def term_for(self, domain: Domain) -> str:
        if domain.attribute == "field_theory":
            return format_field_theory(self.field_theory)
        return str(getattr(self, domain.attribute) or "")

    def movement_pattern_for(self, domain: Domain) -> str:
        position = DOMAINS.index(domain)
        segments = self.segments
        if position < len(segments):
            return MOVEMENT_PATTERNS.get(segments[position], NOT_APPLICABLE)
        return NOT_APPLICABLE

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "field_theory": field_theory_to_raw(self.field_theory),
            "ontology": self.ontology,
            "epistemology": self.epistemology,
            "teleology": self.teleology,
            "representative": self.representative,
            "is_special": self.is_special,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PhilosophyItem":
        return cls(
            code=str(data["code"]),
            name=data["name"],
            field_theory=parse_field_theory(data.get("field_theory", data.get("fieldTheory"))),
            ontology=data.get("ontology", "") or "",
            epistemology=data.get("epistemology", "") or "",
            teleology=data.get("teleology", "") or "",
            representative=data.get("representative", "") or "",
            is_special=bool(data.get("is_special", data.get("isSpecial", False))),
        )


# --- Concepts ---

@dataclass
class Relationship:
    """Directed link to another concept of the same analysis."""
    target_id: str
    description: str = ""


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return "\n".join(str(v) for v in value)
    return str(value)


@dataclass
class Concept:
    """
    A concept extracted by the model.

    Primary concepts have no parent; secondary concepts point at a primary
    concept's id. Dangling ids are kept as-is and resolved at display time.
    """
    id: str
    name: str
    definition: str = ""
    explanation: str = ""
    examples: str = ""
    relationships: list[Relationship] = field(default_factory=list)
    parent: Optional[str] = None
    contextual_explanations: dict[str, str] = field(default_factory=dict)
    movement_pattern_analysis: Optional[str] = None

    @property
    def is_primary(self) -> bool:
        return not self.parent

    def to_dict(self) -> dict:
        """Wire shape (camelCase), as the model produces it."""
        data = {
            "id": self.id,
            "name": self.name,
            "definition": self.definition,
            "explanation": self.explanation,
            "examples": self.examples,
            "relationships": [
                {"targetId": rel.target_id, "description": rel.description}
                for rel in self.relationships
            ],
        }
        if self.parent:
            data["parent"] = self.parent
        if self.contextual_explanations:
            data["contextualExplanations"] = dict(self.contextual_explanations)
        if self.movement_pattern_analysis:
            data["movementPatternAnalysis"] = self.movement_pattern_analysis
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Concept":
        raw_relationships = data.get("relationships") or []
        if not isinstance(raw_relationships, list):
            raise MalformedResponseError("'relationships' must be a list")
        raw_explanations = data.get("contextualExplanations") or data.get("contextual_explanations") or {}
        if not isinstance(raw_explanations, dict):
            raise MalformedResponseError("'contextualExplanations' must be an object")

        relationships = []
        for rel in raw_relationships:
            if isinstance(rel, dict):
                relationships.append(Relationship(
                    target_id=str(rel.get("targetId", rel.get("target_id", ""))),
                    description=_text(rel.get("description")),
                ))
        parent = data.get("parent")
        return cls(
            id=str(data.get("id", "")),
            name=_text(data.get("name")),
            definition=_text(data.get("definition")),
            explanation=_text(data.get("explanation")),
            examples=_text(data.get("examples")),
            relationships=relationships,
            parent=str(parent) if parent else None,
            contextual_explanations={str(k): _text(v) for k, v in raw_explanations.items()},
            movement_pattern_analysis=_text(data.get("movementPatternAnalysis")) or None,
        )


def parse_concepts(data: dict) -> list[Concept]:
    """
    Read the `concepts` array of a JSON-mode reply.

    An absent array means no concepts; anything that is not a list of
    objects is malformed.
    """
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Expected a JSON object, got {type(data).__name__}")
    raw = data.get("concepts")
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise MalformedResponseError(f"'concepts' must be a list, got {type(raw).__name__}")
    concepts = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise MalformedResponseError("Every concept must be a JSON object")
        try:
            concepts.append(Concept.from_dict(entry))
        except (ValueError, TypeError, AttributeError) as e:
            raise MalformedResponseError(f"Invalid concept: {e}") from e
    return concepts


# Domain key (or keyword) -> ordered concepts
StructuredAnalysis = dict[str, list[Concept]]

UNKNOWN_CONCEPT = "unknown concept"


def concept_index(analysis: StructuredAnalysis) -> dict[str, Concept]:
    """All concepts of an analysis by id (later duplicates win)."""
    index = {}
    for concepts in analysis.values():
        for concept in concepts or []:
            index[concept.id] = concept
    return index


def resolve_concept_name(index: dict[str, Concept], concept_id: Optional[str]) -> str:
    concept = index.get(concept_id) if concept_id else None
    return concept.name if concept else UNKNOWN_CONCEPT


def primary_concepts(concepts: list[Concept]) -> list[Concept]:
    return [c for c in concepts if c.is_primary]


def child_concepts(concepts: list[Concept], parent_id: str) -> list[Concept]:
    return [c for c in concepts if c.parent == parent_id and c.id != parent_id]


def analysis_to_dict(analysis: StructuredAnalysis) -> dict:
    return {key: [c.to_dict() for c in concepts] for key, concepts in analysis.items()}


def analysis_from_dict(data: dict) -> StructuredAnalysis:
    return {key: [Concept.from_dict(c) for c in concepts or []] for key, concepts in data.items()}


# --- Per-manuscript results ---

class ResultStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class ProcessedFileResult:
    """Current outcome for one manuscript, keyed by file name."""
    file_name: str
    code: str
    name: str
    status: ResultStatus
    report: Optional[str] = None
    analysis: Optional[StructuredAnalysis] = None
    prompts: list[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "file_name": self.file_name,
            "code": self.code,
            "name": self.name,
            "status": self.status.value,
            "report": self.report,
            "analysis": analysis_to_dict(self.analysis) if self.analysis is not None else None,
            "prompts": self.prompts,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessedFileResult":
        analysis = data.get("analysis")
        return cls(
            file_name=data["file_name"],
            code=data["code"],
            name=data["name"],
            status=ResultStatus(data["status"]),
            report=data.get("report"),
            analysis=analysis_from_dict(analysis) if analysis is not None else None,
            prompts=data.get("prompts", []),
            error=data.get("error"),
        )


# --- Comprehensive analysis ---

@dataclass
class KeywordResult:
    """Round 1 (primary) and Round 2 (secondary) concepts of one keyword."""
    primary: list[Concept] = field(default_factory=list)
    secondary: list[Concept] = field(default_factory=list)
    term_explanations: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "primary": [c.to_dict() for c in self.primary],
            "secondary": [c.to_dict() for c in self.secondary],
            "term_explanations": dict(self.term_explanations),
        }


@dataclass
class RoundPrompts:
    """Rendered user prompts, kept for inspection and export."""
    round0: str = ""
    round1: dict[str, str] = field(default_factory=dict)  # keyword -> prompt
    round2: dict[str, str] = field(default_factory=dict)  # "keyword > concept [id]" -> prompt


@dataclass
class ComprehensiveAnalysisResult:
    title: str
    summary: str
    keywords: list[str]
    results: dict[str, KeywordResult] = field(default_factory=dict)
    prompts: RoundPrompts = field(default_factory=RoundPrompts)

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "summary": self.summary,
            "keywords": list(self.keywords),
            "results": {k: v.to_dict() for k, v in self.results.items()},
            "prompts": {
                "round0": self.prompts.round0,
                "round1": dict(self.prompts.round1),
                "round2": dict(self.prompts.round2),
            },
        }
