import enum
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp():
    return Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


# === Enums ===

class MeetingStatus(str, enum.Enum):
    DRAFT = "draft"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class MeetingSource(str, enum.Enum):
    RECORDING = "recording"
    UPLOAD = "upload"


class TranscriptStatus(str, enum.Enum):
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class ActionStatus(str, enum.Enum):
    OPEN = "open"
    DONE = "done"


class ExportFormat(str, enum.Enum):
    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"
    JSON = "json"


class JobName(str, enum.Enum):
    START_TRANSCRIPTION = "start_transcription"
    FETCH_TRANSCRIPT = "fetch_transcript"
    SUMMARIZE_MEETING = "summarize_meeting"
    EXPORT_MEETING = "export_meeting"



# Meeting lifecycle. Any state may move to FAILED.
TRANSITIONS: dict[MeetingStatus, set[MeetingStatus]] = {
    MeetingStatus.DRAFT: {MeetingStatus.UPLOADED},
    MeetingStatus.UPLOADED: {MeetingStatus.PROCESSING},
    MeetingStatus.PROCESSING: {MeetingStatus.PROCESSING, MeetingStatus.READY},
    # re-running fetch or summary on a finished meeting replaces its results
    MeetingStatus.READY: {MeetingStatus.PROCESSING, MeetingStatus.READY},
    # manual retry re-enters at UPLOADED; a queue retry that succeeds lands on PROCESSING/READY
    MeetingStatus.FAILED: {MeetingStatus.UPLOADED, MeetingStatus.PROCESSING, MeetingStatus.READY},
}


def can_transition(src: MeetingStatus | str, dst: MeetingStatus | str) -> bool:
    src, dst = MeetingStatus(src), MeetingStatus(dst)
    return dst == MeetingStatus.FAILED or dst in TRANSITIONS[src]


# === Tables ===

class Meeting(SQLModel, table=True):
    __tablename__ = "meetings"

    id: str = Field(default_factory=_uuid, primary_key=True)
    workspace_id: str = Field(index=True)
    title: str
    source: MeetingSource = MeetingSource.UPLOAD
    status: MeetingStatus = MeetingStatus.DRAFT

    recording_object_path: Optional[str] = None
    recording_mime: Optional[str] = None
    failure_reason: Optional[str] = None
    created_by: Optional[str] = None

    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()


class Transcript(SQLModel, table=True):
    __tablename__ = "transcripts"

    id: Optional[int] = Field(default=None, primary_key=True)
    meeting_id: str = Field(foreign_key="meetings.id", unique=True, index=True)
    assemblyai_transcript_id: Optional[str] = Field(default=None, index=True)
    status: TranscriptStatus = TranscriptStatus.PROCESSING

    text_long: Optional[str] = None
    segments_json: Optional[list[dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))
    words_json: Optional[list[dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))
    confidence_avg: Optional[float] = None

    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()


class Summary(SQLModel, table=True):
    __tablename__ = "summaries"

    id: Optional[int] = Field(default=None, primary_key=True)
    meeting_id: str = Field(foreign_key="meetings.id", unique=True, index=True)

    exec_summary: str
    bullet_summary: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    decisions: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    action_items: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    topics: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    risks: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    questions: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    prompt_version: str = "v1"

    created_at: datetime = _timestamp()


class ActionItem(SQLModel, table=True):
    __tablename__ = "actions"

    id: Optional[int] = Field(default=None, primary_key=True)
    meeting_id: str = Field(foreign_key="meetings.id", index=True)
    workspace_id: str = Field(index=True)

    description: str
    owner_user_id: Optional[str] = None
    due_date: Optional[date] = None
    confidence: float = 0.0
    source_timestamp_seconds: Optional[float] = None
    source_quote: Optional[str] = None
    status: ActionStatus = ActionStatus.OPEN

    created_at: datetime = _timestamp()


class Export(SQLModel, table=True):
    __tablename__ = "exports"

    id: str = Field(default_factory=_uuid, primary_key=True)
    meeting_id: str = Field(foreign_key="meetings.id", index=True)
    format: ExportFormat
    created_by: Optional[str] = None
    object_path: str
    created_at: datetime = _timestamp()

    @property
    def is_pending(self) -> bool:
        return self.object_path.startswith("pending/")

