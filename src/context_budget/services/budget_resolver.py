"""Provider budget resolution — table lookup of usable input-token budgets.

The table is immutable once built.  Changing it means building a new
resolver (a new table generation), never mutating one that concurrent
allocation runs may be reading.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

from context_budget.domain.entities import ProviderBudget
from context_budget.domain.exceptions import ConfigurationError, ProviderNotFoundError
from context_budget.domain.value_objects import ModelRef

logger = logging.getLogger(__name__)

# ── Default table ───────────────────────────────────────────────────────────

# (provider, model, context window, USD per 1K input tokens)
_DEFAULT_CAPACITIES: list[tuple[str, str, int, float]] = [
    ("openai", "gpt-4o", 128_000, 0.005),
    ("openai", "gpt-4o-mini", 128_000, 0.00015),
    ("openai", "gpt-4-turbo", 128_000, 0.01),
    ("openai", "gpt-4", 128_000, 0.03),
    ("openai", "gpt-3.5-turbo", 16_385, 0.0015),
    ("azure-openai", "gpt-4", 8_000, 0.02),
    ("azure-openai", "gpt-4-32k", 32_000, 0.02),
    ("github-ai", "gpt-4o", 128_000, 0.015),
    ("anthropic", "claude-3-opus", 200_000, 0.015),
    ("anthropic", "claude-3-sonnet", 200_000, 0.003),
    ("anthropic", "claude-3-haiku", 200_000, 0.00025),
    ("google", "gemini-1.5-flash", 1_048_576, 0.01),
    ("google", "gemini-1.5-pro", 2_097_152, 0.01),
    ("google", "gemini-2.0-flash-exp", 1_048_576, 0.01),
    ("ollama", "llama3.1", 131_072, 0.0),
    ("ollama", "llama3.2", 131_072, 0.0),
    ("ollama", "qwen2.5", 131_072, 0.0),
    ("ollama", "phi3", 131_072, 0.0),
]

DEFAULT_PROVIDER_BUDGETS: tuple[ProviderBudget, ...] = tuple(
    ProviderBudget.from_capacity(provider, model, window, cost_per_1k_tokens=cost)
    for provider, model, window, cost in _DEFAULT_CAPACITIES
)


# ── Resolver ────────────────────────────────────────────────────────────────


class ProviderBudgetResolver:
    """Resolve ``(provider, model)`` to a :class:`ProviderBudget`.

    Unknown pairs raise :class:`ProviderNotFoundError` instead of falling back
    to a default, so callers can tell "unsupported model" apart from
    "budget exhausted".
    """

    def __init__(self, budgets: Iterable[ProviderBudget] = DEFAULT_PROVIDER_BUDGETS) -> None:
        table: dict[str, ProviderBudget] = {}
        for budget in budgets:
            ref = ModelRef.of(budget.provider_id, budget.model_id)
            table[ref.key] = budget
        self._table: Mapping[str, ProviderBudget] = MappingProxyType(table)

    def resolve(self, provider_id: str, model_id: str) -> ProviderBudget:
        ref = ModelRef.of(provider_id, model_id)
        budget = self._table.get(ref.key)
        if budget is None:
            raise ProviderNotFoundError(provider_id, model_id)
        return budget

    def budgets(self) -> list[ProviderBudget]:
        """All entries, sorted by provider then model."""
        return [self._table[key] for key in sorted(self._table)]

    def smallest_fitting(
        self,
        required_tokens: int,
        max_utilization_percentage: float,
        *,
        exclude: ProviderBudget | None = None,
    ) -> ProviderBudget | None:
        """Smallest configured model whose utilization ceiling holds *required_tokens*.

        Ties on input budget are broken by provider then model id.
        """
        skip = ModelRef.of(exclude.provider_id, exclude.model_id).key if exclude else None
        fitting = [
            budget
            for key, budget in self._table.items()
            if key != skip
            and int(budget.input_token_budget * max_utilization_percentage / 100) >= required_tokens
        ]
        return min(
            fitting,
            key=lambda b: (b.input_token_budget, b.provider_id, b.model_id),
            default=None,
        )

    def with_budgets(self, budgets: Iterable[ProviderBudget]) -> ProviderBudgetResolver:
        """Return a new table generation with *budgets* added or replaced."""
        return ProviderBudgetResolver([*self._table.values(), *budgets])

    def __contains__(self, ref: object) -> bool:
        return isinstance(ref, ModelRef) and ref.key in self._table

    def __len__(self) -> int:
        return len(self._table)

    # ── Loading ─────────────────────────────────────────────────────────

    @classmethod
    def from_json_file(cls, path: str | Path) -> ProviderBudgetResolver:
        """Load a table from a JSON list of budget entries.

        Each entry needs ``provider_id``, ``model_id`` and ``max_tokens``;
        ``input_share``, ``output_share`` and ``cost_per_1k_tokens`` are
        optional.  An explicit ``input_token_budget`` overrides the share.
        """
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot read provider budget table {path}: {exc}") from exc

        if not isinstance(raw, list):
            raise ConfigurationError(f"Provider budget table {path} must be a JSON list.")

        budgets = [_budget_from_mapping(entry) for entry in raw]
        logger.info("Loaded %d provider budget(s) from %s", len(budgets), path)
        return cls(budgets)


def _budget_from_mapping(entry: object) -> ProviderBudget:
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Invalid provider budget entry: {entry!r}")
    try:
        budget = ProviderBudget.from_capacity(
            str(entry["provider_id"]),
            str(entry["model_id"]),
            int(entry["max_tokens"]),
            input_share=float(entry.get("input_share", 0.7)),
            output_share=float(entry.get("output_share", 0.2)),
            cost_per_1k_tokens=float(entry.get("cost_per_1k_tokens", 0.0)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid provider budget entry {entry!r}: {exc}") from exc

    if "input_token_budget" in entry:
        try:
            input_budget = int(entry["input_token_budget"])
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid input_token_budget in {entry!r}") from exc
        budget = replace(budget, input_token_budget=input_budget)
    return budget
