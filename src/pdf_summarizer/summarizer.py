"""
Summary generation through the OpenAI chat completions API.

The summarizer receives already-extracted document text and returns a
markdown summary. Prompting is deliberately fixed; callers only control the
model and sampling parameters through configuration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from omegaconf import DictConfig
from openai import OpenAI, OpenAIError

from .exceptions import SummarizationError
from .utils import count_words

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an assistant that summarizes PDF documents.
Write the summary in markdown with these sections:

# <document title>
## Overview
Two or three sentences describing what the document is about.
## Key points
Five to eight bullet points covering the most important facts, findings or decisions.
## Conclusion
One short paragraph with the main takeaway.

Only use information present in the document. Answer in the document's language."""


@dataclass
class SummaryResult:
    content: str
    model: str
    word_count: int


def build_user_prompt(text: str, title: Optional[str] = None) -> str:
    header = f"Document title: {title}\n\n" if title else ""
    return f"{header}Document text:\n\n{text}"


class Summarizer:
    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        temperature: float = 0.2,
        max_output_tokens: int = 1200,
        request_timeout: float = 120.0,
        base_url: Optional[str] = None,
        client: Any = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        if client is None and api_key:
            client = OpenAI(api_key=api_key, base_url=base_url, timeout=request_timeout, max_retries=0)
        self._client = client

    @classmethod
    def from_settings(cls, settings: DictConfig) -> "Summarizer":
        config = settings.summarizer
        return cls(
            api_key=config.api_key,
            model=config.model,
            temperature=config.temperature,
            max_output_tokens=config.max_output_tokens,
            request_timeout=config.request_timeout,
            base_url=config.base_url,
        )

    def summarize(self, text: str, title: Optional[str] = None) -> SummaryResult:
        """
        Generate a markdown summary of ``text``.

        Raises:
            SummarizationError: If the API is not configured, fails, or
                returns an empty completion
        """
        if self._client is None:
            raise SummarizationError("OPENAI_API_KEY not configured for summarization")

        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_prompt(text, title)},
                ],
                temperature=self.temperature,
                max_tokens=self.max_output_tokens,
            )
        except OpenAIError as exc:
            logger.error("Summarization request failed: %s", exc)
            raise SummarizationError(f"Summarization request failed: {exc}") from exc

        content = ""
        if response.choices:
            content = (response.choices[0].message.content or "").strip()
        if not content:
            raise SummarizationError("Summarization returned an empty response")

        model = getattr(response, "model", None) or self.model
        return SummaryResult(content=content, model=model, word_count=count_words(content))
