"""Pydantic request / response DTOs for the API boundary."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from context_budget.domain.entities import (
    AllocationRequest,
    AllocationResult,
    CandidateDocument,
    CompressionTechnique,
    DocumentStatus,
    IncludedItem,
    StrategyOverrides,
)
from context_budget.domain.value_objects import ModelRef
from context_budget.services.context_assembler import assemble_context
from context_budget.services.reporter import summarize_warnings


class DocumentIn(BaseModel):
    """One candidate document in ``POST /allocate``."""

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    document_type: str
    category: str = ""
    content: str
    quality_score: float = 50.0
    status: DocumentStatus = DocumentStatus.DRAFT
    last_modified: datetime

    def to_entity(self) -> CandidateDocument:
        return CandidateDocument(
            id=self.id,
            name=self.name,
            document_type=self.document_type,
            category=self.category,
            content=self.content,
            quality_score=self.quality_score,
            status=self.status,
            last_modified=self.last_modified,
        )


class OverridesIn(BaseModel):
    enable_chunking: bool = True
    enable_ai_summarization: bool = True
    compression_technique: CompressionTechnique | None = None


class AllocateRequest(BaseModel):
    """Request body for ``POST /allocate``.

    ``model`` is a ``provider/model`` reference; the configured default is
    used when it is omitted.
    """

    model: str | None = None
    documents: list[DocumentIn] = Field(default_factory=list)
    target_document_type: str | None = None
    max_utilization_percentage: float | None = Field(default=None, gt=0, le=100)
    strategy_overrides: OverridesIn = Field(default_factory=OverridesIn)

    @field_validator("model")
    @classmethod
    def _must_be_model_ref(cls, v: str | None) -> str | None:
        if v is None:
            return v
        stripped = v.strip()
        if "/" not in stripped and ":" not in stripped:
            msg = f"Invalid model reference: '{stripped}'. Expected <provider>/<model>."
            raise ValueError(msg)
        return stripped

    def to_domain(self, default_model: ModelRef, default_utilization: float) -> AllocationRequest:
        ref = ModelRef.from_string(self.model) if self.model else default_model
        overrides = self.strategy_overrides
        return AllocationRequest(
            provider_id=ref.provider_id,
            model_id=ref.model_id,
            corpus=tuple(doc.to_entity() for doc in self.documents),
            target_document_type=self.target_document_type,
            max_utilization_percentage=(
                self.max_utilization_percentage
                if self.max_utilization_percentage is not None
                else default_utilization
            ),
            strategy_overrides=StrategyOverrides(
                enable_chunking=overrides.enable_chunking,
                enable_ai_summarization=overrides.enable_ai_summarization,
                compression_technique=overrides.compression_technique,
            ),
        )


class IncludedItemOut(BaseModel):
    document_id: str
    name: str
    origin: str
    estimated_tokens: int
    priority_class: str
    relevance_score: float
    fragment_count: int = 0
    technique: str | None = None

    @classmethod
    def from_item(cls, item: IncludedItem) -> IncludedItemOut:
        return cls(
            document_id=item.document_id,
            name=item.name,
            origin=item.origin.value,
            estimated_tokens=item.estimated_tokens,
            priority_class=item.priority_class.value,
            relevance_score=item.relevance_score,
            fragment_count=len(item.fragments),
            technique=item.surrogate.technique.value if item.surrogate else None,
        )


class WarningOut(BaseModel):
    code: str
    document_id: str | None
    message: str


class AllocateResponse(BaseModel):
    """Successful response from ``POST /allocate``."""

    strategy_used: str
    included_items: list[IncludedItemOut]
    excluded_document_ids: list[str]
    total_tokens_used: int
    utilization_percentage: float
    input_token_budget: int
    token_ceiling: int
    estimated_input_cost: float
    required_tokens: int
    reduction_percentage: float
    suggested_model: str | None = None
    warnings: list[WarningOut]
    warning_summary: list[str]
    generated_at: datetime
    context: str

    @classmethod
    def from_result(cls, result: AllocationResult) -> AllocateResponse:
        return cls(
            strategy_used=result.strategy_used.value,
            included_items=[IncludedItemOut.from_item(item) for item in result.included_items],
            excluded_document_ids=list(result.excluded_document_ids),
            total_tokens_used=result.total_tokens_used,
            utilization_percentage=result.utilization_percentage,
            input_token_budget=result.input_token_budget,
            token_ceiling=result.token_ceiling,
            estimated_input_cost=result.estimated_input_cost,
            required_tokens=result.required_tokens,
            reduction_percentage=result.reduction_percentage,
            suggested_model=result.suggested_model,
            warnings=[
                WarningOut(code=w.code.value, document_id=w.document_id, message=w.message)
                for w in result.warnings
            ],
            warning_summary=summarize_warnings(result),
            generated_at=result.generated_at,
            context=assemble_context(result),
        )


class ProviderBudgetOut(BaseModel):
    provider_id: str
    model_id: str
    max_tokens: int
    input_token_budget: int
    output_token_reserve: int
    cost_per_1k_tokens: float


class ErrorResponse(BaseModel):
    """Standard error envelope returned on all failure paths."""

    status: str = "error"
    message: str
