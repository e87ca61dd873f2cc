# notepipe/schemas.py
"""
Pydantic shapes shared by the worker and the API.

``SummaryDocument`` is the contract the AI model's JSON must satisfy before a
Summary row may be written. ``JobPayload`` is the input of every Hatchet stage task.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import ActionStatus, ExportFormat


# ---------- AI summary ----------

class Decision(BaseModel):
    decision: str
    owner: Optional[str] = None
    timestamp_seconds: Optional[float] = None
    quote: Optional[str] = None


class SummaryActionItem(BaseModel):
    task: str
    owner: Optional[str] = None
    due_date: Optional[str] = None
    confidence: float = Field(ge=0, le=1)
    timestamp_seconds: Optional[float] = None
    quote: Optional[str] = None


class KeyQuote(BaseModel):
    quote: str
    speaker: Optional[str] = None
    timestamp_seconds: Optional[float] = None


class Topic(BaseModel):
    title: str
    start_time_seconds: float
    summary: str
    key_quotes: Optional[List[KeyQuote]] = None


class SummaryDocument(BaseModel):
    executive_summary: str
    bullet_summary: List[str]
    decisions: List[Decision]
    action_items: List[SummaryActionItem]
    topics: List[Topic]
    risks: List[str]
    questions: List[str]


# Embedded textually in the merge prompt; keep in step with SummaryDocument.
SUMMARY_JSON_SHAPE = """{
  "executive_summary": "High level overview",
  "bullet_summary": ["Point 1", "Point 2"],
  "decisions": [{"decision": "...", "owner": "...", "timestamp_seconds": 0, "quote": "..."}],
  "action_items": [{"task": "...", "owner": "...", "due_date": "YYYY-MM-DD", "confidence": 0.95, "timestamp_seconds": 0, "quote": "..."}],
  "topics": [{"title": "...", "start_time_seconds": 0, "summary": "...", "key_quotes": [{"quote": "...", "speaker": "...", "timestamp_seconds": 0}]}],
  "risks": ["Risk 1"],
  "questions": ["Question 1"]
}"""


# ---------- Queue ----------

class JobPayload(BaseModel):
    meeting_id: str
    assemblyai_transcript_id: Optional[str] = None
    export_id: Optional[str] = None
    format: Optional[str] = None


# ---------- API bodies ----------

class ExportRequest(BaseModel):
    format: ExportFormat


class ActionUpdate(BaseModel):
    status: ActionStatus


class TranscriptUpdate(BaseModel):
    text_long: str = Field(min_length=1)


class AssemblyAIWebhook(BaseModel):
    transcript_id: str
    status: str
    error: Optional[str] = None
