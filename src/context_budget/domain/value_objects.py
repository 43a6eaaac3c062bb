"""Value objects — self-validating domain primitives."""

from __future__ import annotations

import re
from dataclasses import dataclass

from context_budget.domain.exceptions import ConfigurationError

_MODEL_REF_RE = re.compile(
    r"^(?P<provider>[A-Za-z0-9\-_.]+)\s*[/:]\s*(?P<model>[A-Za-z0-9\-_.:]+)$"
)


@dataclass(frozen=True, slots=True)
class ModelRef:
    """Validated ``provider/model`` reference.

    Accepts ``openai/gpt-4o`` or ``openai:gpt-4o``.  Identifiers are
    normalised to lower case so table lookups are case-insensitive.
    """

    provider_id: str
    model_id: str

    @classmethod
    def from_string(cls, raw: str) -> ModelRef:
        """Parse and validate a raw ``provider/model`` string."""
        raw = raw.strip()
        match = _MODEL_REF_RE.match(raw)
        if not match:
            raise ConfigurationError(
                f"Invalid model reference: '{raw}'. "
                "Expected format: <provider>/<model>"
            )
        return cls.of(match["provider"], match["model"])

    @classmethod
    def of(cls, provider_id: str, model_id: str) -> ModelRef:
        provider = provider_id.strip().lower()
        model = model_id.strip().lower()
        if not provider or not model:
            raise ConfigurationError("Provider and model identifiers must not be empty.")
        return cls(provider_id=provider, model_id=model)

    @property
    def key(self) -> str:
        return f"{self.provider_id}/{self.model_id}"
