"""Cross-document reference graph.

An edge ``a → b`` means document *a* mentions document *b* by name or id.
The reporter uses it to flag admitted documents whose references were
dropped from the context.
"""

from __future__ import annotations

import re
from typing import Iterable, Sequence

import networkx as nx  # type: ignore[import-untyped]

from context_budget.domain.entities import CandidateDocument

# Names shorter than this match too much ordinary prose
_MIN_NAME_LENGTH = 4


def _mention_pattern(documents: Sequence[CandidateDocument]) -> tuple[re.Pattern[str] | None, dict[str, str]]:
    """One alternation over every document name and id → owning document id."""
    owner: dict[str, str] = {}
    for doc in documents:
        for label in (doc.name, doc.id):
            key = label.strip().lower()
            if len(key) >= _MIN_NAME_LENGTH and key not in owner:
                owner[key] = doc.id

    if not owner:
        return None, owner

    # Longest first so "Risk Register v2" wins over "Risk Register"
    alternatives = sorted(owner, key=lambda k: (-len(k), k))
    pattern = re.compile(
        r"(?<!\w)(" + "|".join(re.escape(a) for a in alternatives) + r")(?!\w)",
        re.IGNORECASE,
    )
    return pattern, owner


def build_reference_graph(documents: Sequence[CandidateDocument]) -> nx.DiGraph:  # type: ignore[type-arg]
    """Build the directed mention graph for *documents*."""
    graph: nx.DiGraph = nx.DiGraph()  # type: ignore[type-arg]
    graph.add_nodes_from(doc.id for doc in documents)

    pattern, owner = _mention_pattern(documents)
    if pattern is None:
        return graph

    for doc in documents:
        for match in pattern.finditer(doc.content):
            target = owner[match.group(1).lower()]
            if target != doc.id:
                graph.add_edge(doc.id, target)
    return graph


def missing_references(
    graph: nx.DiGraph,  # type: ignore[type-arg]
    included_ids: Iterable[str],
    excluded_ids: Iterable[str],
) -> list[tuple[str, str]]:
    """``(included, excluded)`` pairs where an admitted document references a dropped one."""
    excluded = set(excluded_ids)
    pairs: list[tuple[str, str]] = []
    for source in included_ids:
        if source not in graph:
            continue
        for target in sorted(graph.successors(source)):
            if target in excluded:
                pairs.append((source, target))
    return pairs
