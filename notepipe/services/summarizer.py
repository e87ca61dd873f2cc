# notepipe/services/summarizer.py
from __future__ import annotations

import json
import logging
from typing import Any

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from ..config import Settings
from ..errors import SummarizationError
from ..schemas import SUMMARY_JSON_SHAPE, SummaryDocument

logger = logging.getLogger(__name__)

MAX_CHUNK_CHARS = 10_000  # roughly 2,500 tokens
CHUNK_SEPARATOR = "\n\n---\n\n"

CHUNK_SYSTEM_PROMPT = (
    "You are an expert meeting assistant. Summarize this part of a meeting. "
    "Focus on core discussions, decisions, and outcomes."
)

MERGE_SYSTEM_PROMPT = """You are an expert meeting assistant. Create a comprehensive JSON summary of the meeting titled "{title}".
You MUST provide a valid JSON object matching the following structure:
{shape}
Confidence mapping: 0 to 1.
Be faithful to the transcript; do not invent details."""

REPAIR_SYSTEM_PROMPT = """You are a JSON fixer. The following JSON failed schema validation. Fix it to match the schema exactly.
The schema is:
{shape}
The error was: {error}
Output ONLY the valid JSON."""


def chunk_text(text: str, size: int = MAX_CHUNK_CHARS) -> list[str]:
    """Split ``text`` into consecutive ``size``-long pieces; the last may be shorter."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [text[i:i + size] for i in range(0, len(text), size)]


class Summarizer:
    """Chunk, summarize, merge to JSON, validate, repair once."""

    def __init__(self, client: OpenAI, model: str = "gpt-4o-mini", chunk_chars: int = MAX_CHUNK_CHARS):
        self.client = client
        self.model = model
        self.chunk_chars = chunk_chars

    @classmethod
    def from_settings(cls, settings: Settings) -> "Summarizer":
        if not settings.llm_key:
            raise RuntimeError("LLM_API_KEY is not set")
        return cls(OpenAI(api_key=settings.llm_key), settings.llm_model, settings.summary_chunk_chars)

    def summarize(self, title: str, transcript: str) -> SummaryDocument:
        chunks = chunk_text(transcript, self.chunk_chars)
        if len(chunks) > 1:
            logger.info("Transcript long (%d chars). Chunking into %d parts.", len(transcript), len(chunks))
            summaries = [
                self._summarize_chunk(chunk, i, len(chunks))
                for i, chunk in enumerate(chunks, start=1)
            ]
        else:
            summaries = [transcript]

        raw = self._merge(title, summaries)
        try:
            return self._validate(raw)
        except (ValueError, ValidationError) as e:
            logger.warning("Summary failed validation, attempting one repair round: %s", e)
            fixed = self._repair(raw, str(e))

        try:
            return self._validate(fixed)
        except (ValueError, ValidationError) as e:
            raise SummarizationError(f"Summary still invalid after repair: {e}") from e

    # ---------- model calls ----------

    def _complete(self, messages: list[dict[str, str]], *, json_mode: bool = False) -> str:
        kwargs: dict[str, Any] = {"model": self.model, "messages": messages, "temperature": 0.2}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            resp = self.client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            raise SummarizationError(f"LLM request failed: {e}") from e
        return resp.choices[0].message.content or ""

    def _summarize_chunk(self, text: str, index: int, total: int) -> str:
        return self._complete([
            {"role": "system", "content": CHUNK_SYSTEM_PROMPT},
            {"role": "user", "content": f"Part {index}/{total} of meeting transcript:\n\n{text}"},
        ])

    def _merge(self, title: str, summaries: list[str]) -> str:
        combined = CHUNK_SEPARATOR.join(summaries)
        return self._complete([
            {"role": "system", "content": MERGE_SYSTEM_PROMPT.format(title=title, shape=SUMMARY_JSON_SHAPE)},
            {"role": "user", "content": f"Summaries to merge:\n\n{combined}"},
        ], json_mode=True)

    def _repair(self, raw: str, error: str) -> str:
        return self._complete([
            {"role": "system", "content": REPAIR_SYSTEM_PROMPT.format(shape=SUMMARY_JSON_SHAPE, error=error)},
            {"role": "user", "content": raw or "{}"},
        ], json_mode=True)

    @staticmethod
    def _validate(raw: str) -> SummaryDocument:
        if not raw or not raw.strip():
            raise ValueError("LLM returned empty content")
        # json.JSONDecodeError is a ValueError
        data = json.loads(raw)
        return SummaryDocument.model_validate(data)
