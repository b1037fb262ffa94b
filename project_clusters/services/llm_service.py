"""
Cluster naming via LiteLLM.

The model sees a handful of project descriptions from one cluster and
answers with a 3-5 word title. Any provider LiteLLM supports works; only
the model string changes:

    "gemini/gemini-2.5-flash"      →  Google Gemini  (GEMINI_API_KEY)
    "openai/gpt-4o-mini"           →  OpenAI         (OPENAI_API_KEY)
    "anthropic/claude-3-5-haiku"   →  Anthropic      (ANTHROPIC_API_KEY)

See: https://docs.litellm.ai/docs/providers
"""

from __future__ import annotations

import logging
import time

from project_clusters.core.errors import ProviderError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

_NAMING_PROMPT = """\
I have a cluster of project descriptions. Based on these descriptions, please \
generate a short, descriptive, and catchy title for the cluster (3-5 words max). \
Here are the project descriptions:

- {descriptions}

Respond with only the title.\
"""

MAX_NAME_LENGTH = 80


def build_naming_prompt(sample_texts: list[str]) -> str:
    return _NAMING_PROMPT.format(descriptions="\n- ".join(sample_texts))


def clean_cluster_name(raw: str | None) -> str:
    """Strip quotes, markdown emphasis and trailing punctuation from a reply."""
    text = (raw or "").strip()
    if not text:
        return ""
    name = text.splitlines()[0].replace('"', "").replace("*", "").strip().strip("'").strip()
    return name.rstrip(".").strip()[:MAX_NAME_LENGTH]


class LiteLLMClusterLabeler:
    """ClusterLabeler backed by `litellm.acompletion`."""

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        max_tokens: int = 30,
        temperature: float = 0.7,
        timeout: float = 30.0,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout

    async def name_cluster(self, sample_texts: list[str]) -> str:
        """
        Ask the model for a cluster title.

        Raises:
            ProviderError: the call failed or the reply was empty.
        """
        try:
            from litellm import acompletion  # type: ignore
        except ImportError as exc:
            raise ImportError(
                "litellm is not installed. "
                "Add `litellm` to the project dependencies and reinstall."
            ) from exc

        t0 = time.monotonic()
        try:
            response = await acompletion(
                model=self.model,
                messages=[{"role": "user", "content": build_naming_prompt(sample_texts)}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                api_key=self.api_key,
                timeout=self.timeout,
            )
            raw_text = response.choices[0].message.content
        except Exception as exc:
            raise ProviderError(self.model, f"naming call failed: {exc}") from exc

        name = clean_cluster_name(raw_text)
        if not name:
            raise ProviderError(self.model, "naming call returned an empty title")

        logger.debug(
            "Cluster named | model=%s samples=%d ms=%d name=%r",
            self.model, len(sample_texts), int((time.monotonic() - t0) * 1000), name,
        )
        return name
