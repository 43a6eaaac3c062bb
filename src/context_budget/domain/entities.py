"""Domain entities — pure data structures with no external dependencies."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class DocumentStatus(str, Enum):
    """Lifecycle status of a candidate document."""

    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"
    PUBLISHED = "published"


class PriorityClass(str, Enum):
    """Coarse admission-order tier derived from the document type."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort position — lower is admitted first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[PriorityClass, int] = {
    PriorityClass.CRITICAL: 0,
    PriorityClass.HIGH: 1,
    PriorityClass.MEDIUM: 2,
    PriorityClass.LOW: 3,
}


class LoadStrategy(str, Enum):
    """Packing strategy chosen by the strategy selector."""

    FULL_LOAD = "full-load"
    PRIORITIZED_LOAD = "prioritized-load"
    CHUNKED_LOAD = "chunked-load"
    SUMMARIZED_LOAD = "summarized-load"


class CompressionTechnique(str, Enum):
    """How a document is reduced to a compression surrogate."""

    STRUCTURAL_SUMMARY = "structural-summary"
    KEYWORD_EXTRACTION = "keyword-extraction"
    TEMPLATE_EXTRACTION = "template-extraction"
    AI_SEMANTIC_SUMMARY = "ai-semantic-summary"
    HYBRID = "hybrid"


class ItemOrigin(str, Enum):
    """How an included item relates to its source document."""

    WHOLE = "whole"
    FRAGMENTED = "fragmented"
    COMPRESSED = "compressed"


class FailureReason(str, Enum):
    ERROR = "error"
    TIMEOUT = "timeout"
    RUN_DEADLINE = "run-deadline"
    UNAVAILABLE = "unavailable"


class WarningCode(str, Enum):
    """Structured warning codes surfaced on an allocation result."""

    EXCLUDED_OVER_BUDGET = "excluded-over-budget"
    EXCLUDED_CEILING_REACHED = "excluded-ceiling-reached"
    DOCUMENT_CHUNKED = "document-chunked"
    UNSPLITTABLE_OVERFLOW = "unsplittable-overflow"
    DOCUMENT_COMPRESSED = "document-compressed"
    AI_SUMMARY_FALLBACK = "ai-summary-fallback"
    AI_SUMMARY_SKIPPED = "ai-summary-skipped"
    MISSING_REFERENCE = "missing-reference"


@dataclass(frozen=True, slots=True)
class CandidateDocument:
    """A reference document offered for inclusion in the generation context.

    The derived fields (``estimated_tokens``, ``priority_class`` and
    ``relevance_score``) are ``None`` until the prioritizer ranks the corpus;
    ranking returns new instances rather than mutating these.
    """

    id: str
    name: str
    document_type: str
    category: str
    content: str
    quality_score: float
    status: DocumentStatus
    last_modified: datetime
    estimated_tokens: int | None = None
    priority_class: PriorityClass | None = None
    relevance_score: float | None = None

    @property
    def tokens(self) -> int:
        """Estimated token cost; ``0`` before ranking."""
        return self.estimated_tokens or 0

    @property
    def tier(self) -> PriorityClass:
        return self.priority_class or PriorityClass.LOW


@dataclass(frozen=True, slots=True)
class ProviderBudget:
    """Token capacity of a provider + model combination."""

    provider_id: str
    model_id: str
    max_tokens: int
    input_token_budget: int
    output_token_reserve: int
    cost_per_1k_tokens: float = 0.0

    @classmethod
    def from_capacity(
        cls,
        provider_id: str,
        model_id: str,
        max_tokens: int,
        *,
        input_share: float = 0.7,
        output_share: float = 0.2,
        cost_per_1k_tokens: float = 0.0,
    ) -> ProviderBudget:
        """Derive the input budget and output reserve from the raw window size.

        Whatever is left after ``input_share + output_share`` is the safety
        margin for system prompts and estimation error.
        """
        return cls(
            provider_id=provider_id,
            model_id=model_id,
            max_tokens=max_tokens,
            input_token_budget=round(max_tokens * input_share),
            output_token_reserve=round(max_tokens * output_share),
            cost_per_1k_tokens=cost_per_1k_tokens,
        )


@dataclass(frozen=True, slots=True)
class StrategyOverrides:
    """Per-request switches for the optional packing behaviours."""

    enable_chunking: bool = True
    enable_ai_summarization: bool = True
    compression_technique: CompressionTechnique | None = None


@dataclass(frozen=True, slots=True)
class AllocationRequest:
    """One invocation of the allocator."""

    provider_id: str
    model_id: str
    corpus: tuple[CandidateDocument, ...] = ()
    target_document_type: str | None = None
    max_utilization_percentage: float = 90.0
    strategy_overrides: StrategyOverrides = field(default_factory=StrategyOverrides)


@dataclass(frozen=True, slots=True)
class ChunkedFragment:
    """A structure-preserving slice of a larger document."""

    parent_document_id: str
    sequence_index: int
    content: str
    context_header: str
    section_title: str
    estimated_tokens: int
    over_budget: bool = False

    def render(self) -> str:
        """Fragment text as it appears in the context (header + content)."""
        if not self.context_header:
            return self.content
        return f"{self.context_header}\n{self.content}"


@dataclass(frozen=True, slots=True)
class CompressionFailure:
    """Why an AI-assisted summary could not be produced."""

    document_id: str
    reason: FailureReason
    detail: str = ""


@dataclass(frozen=True, slots=True)
class CompressedSurrogate:
    """A reduced-token stand-in for a document's full content."""

    document_id: str
    technique: CompressionTechnique
    requested_technique: CompressionTechnique
    content: str
    original_tokens: int
    estimated_tokens: int
    truncated: bool = False
    failure: CompressionFailure | None = None

    @property
    def degraded(self) -> bool:
        return self.failure is not None


@dataclass(frozen=True, slots=True)
class IncludedItem:
    """One admitted document, whole, fragmented or compressed."""

    document_id: str
    name: str
    origin: ItemOrigin
    content: str
    estimated_tokens: int
    priority_class: PriorityClass
    relevance_score: float
    fragments: tuple[ChunkedFragment, ...] = ()
    surrogate: CompressedSurrogate | None = None


@dataclass(frozen=True, slots=True)
class AllocationWarning:
    code: WarningCode
    document_id: str | None
    message: str


@dataclass(frozen=True, slots=True)
class AllocationResult:
    """The final, auditable outcome handed to the prompt assembler."""

    strategy_used: LoadStrategy
    included_items: tuple[IncludedItem, ...]
    excluded_document_ids: tuple[str, ...]
    total_tokens_used: int
    utilization_percentage: float
    warnings: tuple[AllocationWarning, ...]
    generated_at: datetime
    input_token_budget: int = 0
    token_ceiling: int = 0
    estimated_input_cost: float = 0.0
    required_tokens: int = 0
    reduction_percentage: float = 0.0
    suggested_model: str | None = None

    @property
    def included_document_ids(self) -> tuple[str, ...]:
        return tuple(item.document_id for item in self.included_items)

    def warnings_for(self, code: WarningCode) -> list[AllocationWarning]:
        return [w for w in self.warnings if w.code is code]
