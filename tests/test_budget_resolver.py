"""Tests for provider budget resolution and model references."""

from __future__ import annotations

import json

import pytest

from context_budget.domain.entities import ProviderBudget
from context_budget.domain.exceptions import ConfigurationError, ProviderNotFoundError
from context_budget.domain.value_objects import ModelRef
from context_budget.services.budget_resolver import ProviderBudgetResolver


class TestModelRef:
    """Parsing of ``provider/model`` references."""

    @pytest.mark.parametrize("raw", ["openai/gpt-4o", "OpenAI:GPT-4o", "  openai / gpt-4o "])
    def test_accepts_both_separators(self, raw: str):
        ref = ModelRef.from_string(raw)
        assert ref == ModelRef("openai", "gpt-4o")
        assert ref.key == "openai/gpt-4o"

    @pytest.mark.parametrize("raw", ["", "gpt-4o", "openai/", "/gpt-4o"])
    def test_rejects_malformed(self, raw: str):
        with pytest.raises(ConfigurationError):
            ModelRef.from_string(raw)


class TestDefaultTable:
    """The built-in provider table."""

    def test_resolves_known_model(self):
        budget = ProviderBudgetResolver().resolve("openai", "gpt-4o")
        assert budget.max_tokens == 128_000
        assert budget.input_token_budget == 89_600
        assert budget.output_token_reserve == 25_600

    def test_lookup_is_case_insensitive(self):
        resolver = ProviderBudgetResolver()
        assert resolver.resolve("OpenAI", "GPT-4o") == resolver.resolve("openai", "gpt-4o")

    def test_unknown_model_raises(self):
        with pytest.raises(ProviderNotFoundError) as exc_info:
            ProviderBudgetResolver().resolve("openai", "gpt-99")
        assert exc_info.value.provider_id == "openai"
        assert exc_info.value.model_id == "gpt-99"

    def test_not_found_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            ProviderBudgetResolver().resolve("nobody", "nothing")

    def test_budgets_are_sorted(self):
        keys = [(b.provider_id, b.model_id) for b in ProviderBudgetResolver().budgets()]
        assert keys == sorted(keys)


class TestTableGenerations:
    """Tables are immutable; updates produce a new resolver."""

    def test_with_budgets_leaves_original_untouched(self, resolver):
        extra = ProviderBudget("test", "huge", 100_000, 70_000, 20_000)
        updated = resolver.with_budgets([extra])

        assert ModelRef("test", "huge") in updated
        assert ModelRef("test", "huge") not in resolver
        assert len(updated) == len(resolver) + 1

    def test_with_budgets_replaces_existing_entry(self, resolver):
        replacement = ProviderBudget("test", "small", 4_000, 3_000, 500)
        updated = resolver.with_budgets([replacement])

        assert updated.resolve("test", "small").input_token_budget == 3_000
        assert resolver.resolve("test", "small").input_token_budget == 1_000


class TestSmallestFitting:
    """Looking up a larger context window for an oversized corpus."""

    def test_picks_smallest_model_that_holds_the_corpus(self, resolver):
        table = resolver.with_budgets([ProviderBudget("test", "huge", 100_000, 70_000, 20_000)])

        budget = table.smallest_fitting(2_900, 90.0)

        assert (budget.provider_id, budget.model_id) == ("test", "medium")

    def test_respects_utilization(self, resolver):
        # medium holds 4,500 tokens at 90% but only 2,500 at 50%
        assert resolver.smallest_fitting(3_000, 90.0).model_id == "medium"
        assert resolver.smallest_fitting(3_000, 50.0) is None

    def test_excludes_current_model(self, resolver):
        medium = resolver.resolve("test", "medium")
        assert resolver.smallest_fitting(500, 90.0, exclude=medium).model_id == "small"

    def test_nothing_large_enough(self, resolver):
        assert resolver.smallest_fitting(50_000, 90.0) is None


class TestJsonFile:
    """Loading a provider table from disk."""

    def test_loads_entries(self, tmp_path):
        path = tmp_path / "budgets.json"
        path.write_text(
            json.dumps(
                [
                    {"provider_id": "acme", "model_id": "m1", "max_tokens": 10_000},
                    {
                        "provider_id": "acme",
                        "model_id": "m2",
                        "max_tokens": 8_000,
                        "input_token_budget": 6_000,
                        "cost_per_1k_tokens": 0.002,
                    },
                ]
            ),
            encoding="utf-8",
        )

        resolver = ProviderBudgetResolver.from_json_file(path)

        assert resolver.resolve("acme", "m1").input_token_budget == 7_000
        m2 = resolver.resolve("acme", "m2")
        assert m2.input_token_budget == 6_000
        assert m2.cost_per_1k_tokens == 0.002

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read"):
            ProviderBudgetResolver.from_json_file(tmp_path / "absent.json")

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "budgets.json"
        path.write_text('{"provider_id": "acme"}', encoding="utf-8")
        with pytest.raises(ConfigurationError, match="JSON list"):
            ProviderBudgetResolver.from_json_file(path)

    def test_entry_missing_field(self, tmp_path):
        path = tmp_path / "budgets.json"
        path.write_text('[{"provider_id": "acme", "model_id": "m1"}]', encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid provider budget entry"):
            ProviderBudgetResolver.from_json_file(path)
