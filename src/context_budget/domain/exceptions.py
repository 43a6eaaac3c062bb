"""Domain exception hierarchy.

Only :class:`ConfigurationError` (and its subclasses) crosses the
``BudgetAllocator.allocate()`` boundary.  Everything else is degraded inside
the pipeline and surfaced as an allocation warning.  The interface layer maps
these onto HTTP status codes.
"""

from __future__ import annotations


class ContextBudgetError(Exception):
    """Base exception for the entire application."""


# ── Configuration errors (fatal) ────────────────────────────────────────────


class ConfigurationError(ContextBudgetError):
    """The allocation cannot run: bad budget, bad ceiling, or unknown model."""


class ProviderNotFoundError(ConfigurationError):
    """No budget entry exists for the requested provider / model pair."""

    def __init__(self, provider_id: str, model_id: str) -> None:
        super().__init__(
            f"No token budget configured for provider '{provider_id}', model '{model_id}'."
        )
        self.provider_id = provider_id
        self.model_id = model_id


# ── Text-generation errors (recovered by the compressor) ────────────────────


class TextGenerationError(ContextBudgetError):
    """Any error originating from the external text-generation provider."""
