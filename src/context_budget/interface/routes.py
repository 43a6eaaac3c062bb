"""API routes — thin controllers that delegate to the allocator."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from context_budget.domain.value_objects import ModelRef
from context_budget.interface.dependencies import (
    get_allocator,
    get_default_model,
    get_default_utilization,
)
from context_budget.interface.schemas import (
    AllocateRequest,
    AllocateResponse,
    ErrorResponse,
    ProviderBudgetOut,
)
from context_budget.services.allocator import BudgetAllocator

router = APIRouter()


@router.post(
    "/allocate",
    response_model=AllocateResponse,
    responses={
        404: {"model": ErrorResponse, "description": "No budget configured for the provider / model"},
        422: {"model": ErrorResponse, "description": "Invalid request or unusable budget"},
    },
)
async def allocate(
    body: AllocateRequest,
    allocator: BudgetAllocator = Depends(get_allocator),
    default_model: ModelRef = Depends(get_default_model),
    default_utilization: float = Depends(get_default_utilization),
) -> AllocateResponse:
    """Decide which documents fit the model's input budget, and in what form."""
    request = body.to_domain(default_model, default_utilization)
    result = await allocator.allocate(request)
    return AllocateResponse.from_result(result)


@router.get("/providers", response_model=list[ProviderBudgetOut])
async def providers(
    allocator: BudgetAllocator = Depends(get_allocator),
) -> list[ProviderBudgetOut]:
    """List the configured provider / model budgets."""
    return [
        ProviderBudgetOut(
            provider_id=b.provider_id,
            model_id=b.model_id,
            max_tokens=b.max_tokens,
            input_token_budget=b.input_token_budget,
            output_token_reserve=b.output_token_reserve,
            cost_per_1k_tokens=b.cost_per_1k_tokens,
        )
        for b in allocator.resolver.budgets()
    ]
