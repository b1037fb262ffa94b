"""
Text embeddings via LiteLLM.

One `aembedding` call embeds the whole batch. The call is all-or-nothing:
the response must hold exactly one vector per input text, otherwise the
batch is rejected with ProviderError. Vectors are re-ordered by the
provider's `index` field so output order always matches input order.

Switching provider only changes the model string:

    "gemini/text-embedding-004"        →  Google Gemini  (GEMINI_API_KEY)
    "openai/text-embedding-3-small"    →  OpenAI         (OPENAI_API_KEY)
"""

from __future__ import annotations

import logging
import time
from typing import Any

from project_clusters.core.errors import ProviderError

logger = logging.getLogger(__name__)


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


class LiteLLMVectorSource:
    """VectorSource backed by `litellm.aembedding`."""

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.timeout = timeout

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        try:
            from litellm import aembedding  # type: ignore
        except ImportError as exc:
            raise ImportError(
                "litellm is not installed. "
                "Add `litellm` to the project dependencies and reinstall."
            ) from exc

        if not texts:
            return []

        t0 = time.monotonic()
        try:
            response = await aembedding(
                model=self.model,
                input=texts,
                api_key=self.api_key,
                timeout=self.timeout,
            )
        except Exception as exc:
            raise ProviderError(self.model, f"embedding call failed: {exc}") from exc

        items = list(_field(response, "data") or [])
        if len(items) != len(texts):
            raise ProviderError(
                self.model,
                f"returned {len(items)} embeddings for {len(texts)} texts",
            )

        ordered: list[list[float] | None] = [None] * len(texts)
        for position, item in enumerate(items):
            index = _field(item, "index")
            index = position if index is None else int(index)
            vector = _field(item, "embedding")
            if not 0 <= index < len(texts) or ordered[index] is not None or not vector:
                raise ProviderError(self.model, f"malformed embedding at position {position}")
            ordered[index] = [float(x) for x in vector]

        elapsed_ms = int((time.monotonic() - t0) * 1000)
        logger.debug(
            "Embedded batch | model=%s texts=%d dim=%d ms=%d",
            self.model, len(texts), len(ordered[0] or []), elapsed_ms,
        )
        return ordered  # type: ignore[return-value]
