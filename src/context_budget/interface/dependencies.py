"""FastAPI dependency injection wiring."""

from __future__ import annotations

import logging

import httpx

from context_budget.domain.value_objects import ModelRef
from context_budget.infrastructure.config import Settings, get_settings
from context_budget.infrastructure.openai_adapter import OpenAIAdapter
from context_budget.services.allocator import AllocatorConfig, BudgetAllocator
from context_budget.services.budget_resolver import ProviderBudgetResolver
from context_budget.services.token_estimator import build_estimator

logger = logging.getLogger(__name__)

_http_client: httpx.AsyncClient | None = None
_openai_adapter: OpenAIAdapter | None = None
_allocator: BudgetAllocator | None = None


def allocator_config(settings: Settings) -> AllocatorConfig:
    return AllocatorConfig(
        chunk_document_threshold=settings.chunk_document_threshold,
        summarize_share=settings.summarize_share,
        fragment_share=settings.fragment_share,
        compression_technique=settings.compression_technique,
        compression_slack=settings.compression_slack,
        ai_concurrency=settings.ai_concurrency,
        ai_call_timeout_seconds=settings.ai_call_timeout_seconds,
        run_timeout_seconds=settings.run_timeout_seconds,
    )


def build_allocator(settings: Settings, adapter: OpenAIAdapter | None = None) -> BudgetAllocator:
    """Wire a :class:`BudgetAllocator` from settings and an optional summariser."""
    if settings.provider_budgets_file:
        resolver = ProviderBudgetResolver.from_json_file(settings.provider_budgets_file)
    else:
        resolver = ProviderBudgetResolver()

    return BudgetAllocator(
        resolver,
        estimator=build_estimator(settings.token_estimator),
        text_generator=adapter,
        config=allocator_config(settings),
    )


async def startup() -> None:
    """Initialise shared resources — called from the lifespan context manager."""
    global _http_client, _openai_adapter, _allocator  # noqa: PLW0603

    settings = get_settings()
    _http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.ai_call_timeout_seconds))
    if settings.openai_api_key is not None:
        _openai_adapter = OpenAIAdapter(
            api_key=settings.openai_api_key.get_secret_value(),
            model=settings.openai_model,
            http_client=_http_client,
        )
    else:
        logger.warning("OPENAI_API_KEY not set; AI summaries will fall back to local techniques")

    _allocator = build_allocator(settings, _openai_adapter)


async def shutdown() -> None:
    """Release shared resources."""
    global _http_client, _openai_adapter, _allocator  # noqa: PLW0603

    if _openai_adapter:
        await _openai_adapter.close()
        _openai_adapter = None
    if _http_client:
        await _http_client.aclose()
        _http_client = None
    _allocator = None


def get_allocator() -> BudgetAllocator:
    """Return the allocator built at startup."""
    assert _allocator is not None, "startup() was not called"
    return _allocator


def get_default_model() -> ModelRef:
    settings = get_settings()
    return ModelRef.of(settings.default_provider, settings.default_model)


def get_default_utilization() -> float:
    return get_settings().max_utilization_percentage
