# notepipe/services/transcription.py
"""
AssemblyAI client.

Transcription is asynchronous on the provider side: ``submit`` registers the
audio URL together with a webhook, and the provider calls us back when the
job is done. ``fetch_result`` and ``fetch_utterances`` read the finished job.
Nothing here retries; a failed call surfaces as ``TranscriptionServiceError``
and the job queue redelivers the enclosing stage.
"""
from __future__ import annotations

import logging
from typing import Any, NamedTuple, Optional

import httpx

from ..config import Settings
from ..errors import TranscriptionServiceError

logger = logging.getLogger(__name__)


class TranscriptResult(NamedTuple):
    text: str
    words: list[dict[str, Any]]
    confidence: Optional[float]


class AssemblyAIClient:
    def __init__(self, api_key: str, base_url: str = "https://api.assemblyai.com/v2",
                 *, timeout: float = 60, transport: httpx.BaseTransport | None = None):
        if not api_key:
            raise RuntimeError("ASSEMBLYAI_API_KEY is not set")
        self.client = httpx.Client(
            base_url=base_url,
            headers={"authorization": api_key, "content-type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "AssemblyAIClient":
        return cls(settings.assemblyai_key or "", settings.assemblyai_base_url)

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            r = self.client.request(method, path, **kwargs)
            r.raise_for_status()
            return r.json()
        except httpx.HTTPStatusError as e:
            raise TranscriptionServiceError(
                f"AssemblyAI {method} {path} failed: {e.response.status_code} {e.response.text[:200]}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise TranscriptionServiceError(f"AssemblyAI {method} {path} failed: {e}") from e

    def submit(self, audio_url: str, callback_url: str, callback_secret: str,
               *, header_name: str = "x-webhook-secret") -> str:
        """Queue ``audio_url`` for transcription and return the provider's transcript id."""
        payload = {
            "audio_url": audio_url,
            "webhook_url": callback_url,
            "webhook_auth_header_name": header_name,
            "webhook_auth_header_value": callback_secret,
            "speaker_labels": True,
            "punctuate": True,
            "format_text": True,
            "language_detection": True,
        }
        job = self._request("POST", "/transcript", json=payload)
        tid = job.get("id")
        if not tid:
            raise TranscriptionServiceError("AssemblyAI did not return a transcript id")
        logger.info("AssemblyAI transcript %s created", tid)
        return tid

    def fetch_result(self, transcript_id: str) -> TranscriptResult:
        j = self._request("GET", f"/transcript/{transcript_id}")
        return TranscriptResult(
            text=j.get("text") or "",
            words=j.get("words") or [],
            confidence=j.get("confidence"),
        )

    def fetch_utterances(self, transcript_id: str) -> list[dict[str, Any]]:
        j = self._request("GET", f"/transcript/{transcript_id}/utterances")
        return [
            {
                "speaker": u.get("speaker"),
                "start": u.get("start"),
                "end": u.get("end"),
                "text": u.get("text", ""),
            }
            for u in j.get("utterances") or []
        ]
