"""Context assembler — renders an allocation result as one context block.

This is the final transformation before text enters the generation prompt.
Headers added here are not charged against the token budget.
"""

from __future__ import annotations

from context_budget.domain.entities import AllocationResult, IncludedItem, ItemOrigin

_SEPARATOR = "\n\n---\n\n"


def _header(item: IncludedItem) -> str:
    if item.origin is ItemOrigin.FRAGMENTED:
        return f"### {item.name} (excerpt: {len(item.fragments)} part(s))"
    if item.origin is ItemOrigin.COMPRESSED and item.surrogate is not None:
        return f"### {item.name} (summary: {item.surrogate.technique.value})"
    return f"### {item.name}"


def assemble_context(result: AllocationResult) -> str:
    """Combine all non-empty included items, in admission order."""
    sections = [
        f"{_header(item)}\n\n{item.content.strip()}"
        for item in result.included_items
        if item.content.strip()
    ]
    return _SEPARATOR.join(sections)
