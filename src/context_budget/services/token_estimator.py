"""Token estimation.

The default estimator is the cheap ``ceil(chars / 4)`` heuristic used across
the budgeting pipeline.  ``TiktokenEstimator`` counts exactly under
``cl100k_base`` and can be swapped in without touching any caller.
"""

from __future__ import annotations

import math
from collections import OrderedDict
from typing import Protocol

import tiktoken

# ── Constants ───────────────────────────────────────────────────────────────

_ENCODING_NAME = "cl100k_base"  # GPT-4o family
_CHARS_PER_TOKEN = 4.0
TRUNCATION_MARKER = "\n[… truncated to fit token budget]"


class TokenEstimator(Protocol):
    """Approximates the token cost of a piece of text."""

    def estimate(self, text: str) -> int:
        """Return a non-negative token count; ``0`` for empty text."""
        ...


# ── Implementations ─────────────────────────────────────────────────────────


class CharRatioEstimator:
    """``ceil(len(text) / chars_per_token)`` — pure and monotonic in length."""

    def __init__(self, chars_per_token: float = _CHARS_PER_TOKEN) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self._ratio = chars_per_token

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self._ratio)


class TiktokenEstimator:
    """Exact token count for OpenAI-family models."""

    def __init__(self, encoding_name: str = _ENCODING_NAME) -> None:
        self._encoding_name = encoding_name
        self._encoder: tiktoken.Encoding | None = None

    def _get_encoder(self) -> tiktoken.Encoding:
        if self._encoder is None:
            self._encoder = tiktoken.get_encoding(self._encoding_name)
        return self._encoder

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return len(self._get_encoder().encode(text, disallowed_special=()))


class CachingEstimator:
    """Bounded LRU memo in front of another estimator.

    The allocator creates one per run, so nothing leaks between runs.
    """

    def __init__(self, inner: TokenEstimator, max_entries: int = 4096) -> None:
        self._inner = inner
        self._max_entries = max_entries
        self._cache: OrderedDict[str, int] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def estimate(self, text: str) -> int:
        cached = self._cache.get(text)
        if cached is not None:
            self._cache.move_to_end(text)
            self.hits += 1
            return cached

        self.misses += 1
        value = self._inner.estimate(text)
        self._cache[text] = value
        if len(self._cache) > self._max_entries:
            self._cache.popitem(last=False)
        return value

    def __len__(self) -> int:
        return len(self._cache)


def build_estimator(name: str) -> TokenEstimator:
    """Return the estimator configured by name (``chars`` or ``tiktoken``)."""
    if name == "tiktoken":
        return TiktokenEstimator()
    if name == "chars":
        return CharRatioEstimator()
    raise ValueError(f"Unknown token estimator '{name}'")


# ── Truncation ──────────────────────────────────────────────────────────────


def truncate_to_budget(
    text: str,
    max_tokens: int,
    estimator: TokenEstimator,
    *,
    marker: str = TRUNCATION_MARKER,
) -> str:
    """Truncate *text* to fit within *max_tokens*, cutting at line boundaries.

    Attempts to preserve complete lines rather than splitting mid-word.  The
    result (marker included) never estimates above *max_tokens*; when even the
    marker does not fit, the marker is dropped.
    """
    if max_tokens <= 0:
        return ""
    if estimator.estimate(text) <= max_tokens:
        return text

    if estimator.estimate(marker) >= max_tokens:
        marker = ""

    # Longest prefix that still fits (estimators are monotonic in length)
    lo, hi = 0, len(text)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if estimator.estimate(text[:mid] + marker) <= max_tokens:
            lo = mid
        else:
            hi = mid - 1
    truncated = text[:lo]

    # Roll back to the last newline for a clean cut
    last_nl = truncated.rfind("\n")
    if last_nl > len(truncated) // 2:
        truncated = truncated[: last_nl + 1]

    return truncated.rstrip("\n") + marker if marker else truncated
