"""Port: text generator — defined by the domain, implemented by infrastructure."""

from __future__ import annotations

from typing import Protocol


class TextGenerator(Protocol):
    """Abstract contract for the external summarisation model.

    Implementations raise :class:`~context_budget.domain.exceptions.TextGenerationError`
    (or time out); callers treat the collaborator as untrusted and slow.
    """

    async def summarize(
        self, text: str, target_token_hint: int, *, timeout: float
    ) -> str:
        """Return a summary of *text* aiming for roughly *target_token_hint* tokens."""
        ...
