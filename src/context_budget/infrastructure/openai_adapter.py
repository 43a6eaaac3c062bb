"""OpenAI adapter — implements the TextGenerator port."""

from __future__ import annotations

import logging

import httpx
from openai import APITimeoutError, AsyncOpenAI, AuthenticationError, RateLimitError

from context_budget.domain.exceptions import TextGenerationError

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = """\
You are condensing a reference document so it can be used as grounding \
context for another writing task.  Keep decisions, requirements, constraints, \
owners, dates and figures.  Drop boilerplate, repetition and formatting noise.

Return plain text only: no preamble, no closing remarks.
"""


class OpenAIAdapter:
    """Concrete ``TextGenerator`` backed by the OpenAI chat-completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        # Retries are left to the caller's deadline, not the client
        self._client = AsyncOpenAI(api_key=api_key, max_retries=0, http_client=http_client)
        self._model = model

    async def summarize(self, text: str, target_token_hint: int, *, timeout: float) -> str:
        """Summarise *text* in roughly *target_token_hint* tokens."""
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": (
                            f"Summarise the document below in at most "
                            f"{target_token_hint} tokens.\n\n{text}"
                        ),
                    },
                ],
                temperature=0.2,
                max_tokens=max(1, target_token_hint),
                timeout=timeout,
            )

            content = response.choices[0].message.content
            if not content:
                raise TextGenerationError("Model returned an empty summary.")
            return content

        except AuthenticationError as exc:
            raise TextGenerationError(
                "Invalid OpenAI API key. "
                "Set a valid key in the OPENAI_API_KEY environment variable."
            ) from exc

        except RateLimitError as exc:
            logger.error("OpenAI RateLimitError: %s", exc)
            raise TextGenerationError(f"OpenAI rate limit / quota error: {exc}") from exc

        except APITimeoutError as exc:
            raise TextGenerationError(f"OpenAI request timed out after {timeout:.1f}s") from exc

        except TextGenerationError:
            raise

        except Exception as exc:
            raise TextGenerationError(f"Summary call failed: {exc}") from exc

    async def close(self) -> None:
        """Release underlying HTTP resources."""
        await self._client.close()
