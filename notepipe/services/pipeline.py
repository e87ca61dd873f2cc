# notepipe/services/pipeline.py
"""
Meeting processing pipeline.

Four stages run as queue jobs:

    start_transcription -> (provider webhook) -> fetch_transcript
        -> summarize_meeting                     export_meeting (on demand)

``Pipeline.handle`` is the only place stage errors are caught: the meeting is
marked ``failed`` with a user-facing reason and the error is re-raised so the
queue's retry/backoff still applies. Database sessions are never held open
across a network call; each stage reads what it needs, talks to the outside
world, then writes in a fresh session.
"""
from __future__ import annotations

import logging
import re
import time
from datetime import date, datetime
from typing import Any, Callable, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..config import Settings
from ..db import make_engine
from ..errors import EnqueueError, InvalidTransition, MissingTranscript, NotFound, UnsupportedFormatError
from ..models import (
    ActionItem,
    Export,
    ExportFormat,
    JobName,
    Meeting,
    MeetingStatus,
    Summary,
    Transcript,
    TranscriptStatus,
    can_transition,
    utcnow,
)
from ..schemas import JobPayload, SummaryDocument
from ..utils.storage import ObjectStorage
from ..utils.text import failure_reason, safe_preview
from .exporter import render
from .queue import JobQueue
from .summarizer import Summarizer
from .transcription import AssemblyAIClient

logger = logging.getLogger(__name__)

# Statuses in which each stage is allowed to run. FAILED is accepted so that a
# queue redelivery of a stage that already failed the meeting can still succeed;
# READY so that fetching or summarizing again replaces the previous results.
STAGE_PRECONDITIONS: dict[JobName, Optional[set[MeetingStatus]]] = {
    JobName.START_TRANSCRIPTION: {MeetingStatus.UPLOADED, MeetingStatus.PROCESSING, MeetingStatus.FAILED},
    JobName.FETCH_TRANSCRIPT: {MeetingStatus.PROCESSING, MeetingStatus.READY, MeetingStatus.FAILED},
    JobName.SUMMARIZE_MEETING: {MeetingStatus.PROCESSING, MeetingStatus.READY, MeetingStatus.FAILED},
    JobName.EXPORT_MEETING: None,  # any status
}

_ISO_DATE = re.compile(r"^\s*(\d{4}-\d{2}-\d{2})")


def normalize_due_date(value: Optional[str]) -> Optional[date]:
    """Reduce a model-supplied due date to calendar-date precision; None if unparseable."""
    if not value:
        return None
    m = _ISO_DATE.match(value)
    try:
        if m:
            return date.fromisoformat(m.group(1))
        return datetime.fromisoformat(value.strip()).date()
    except ValueError:
        logger.info("Ignoring unparseable due date %r", value)
        return None


def export_object_path(meeting: Meeting, export_id: str, extension: str) -> str:
    return f"{meeting.workspace_id}/{meeting.id}/exports/{export_id}.{extension}"


class Pipeline:
    def __init__(
        self,
        engine: Engine,
        queue: JobQueue,
        transcription: AssemblyAIClient,
        summarizer: Summarizer,
        storage: ObjectStorage,
        settings: Settings,
    ):
        self.engine = engine
        self.queue = queue
        self.transcription = transcription
        self.summarizer = summarizer
        self.storage = storage
        self.settings = settings
        self._stages: dict[JobName, Callable[[JobPayload], Any]] = {
            JobName.START_TRANSCRIPTION: self.start_transcription,
            JobName.FETCH_TRANSCRIPT: self.fetch_transcript,
            JobName.SUMMARIZE_MEETING: self.summarize_meeting,
            JobName.EXPORT_MEETING: self.export_meeting,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "Pipeline":
        engine = make_engine(settings.database_url)
        return cls(
            engine,
            JobQueue.from_settings(settings),
            AssemblyAIClient.from_settings(settings),
            Summarizer.from_settings(settings),
            ObjectStorage.from_settings(settings),
            settings,
        )

    # ---------- helpers ----------

    @staticmethod
    def _load_meeting(s: Session, meeting_id: str) -> Meeting:
        m = s.get(Meeting, meeting_id)
        if not m:
            raise NotFound(f"Meeting not found: {meeting_id}")
        return m

    @staticmethod
    def _transcript_for(s: Session, meeting_id: str) -> Optional[Transcript]:
        return s.exec(select(Transcript).where(Transcript.meeting_id == meeting_id)).first()

    @staticmethod
    def _summary_for(s: Session, meeting_id: str) -> Optional[Summary]:
        return s.exec(select(Summary).where(Summary.meeting_id == meeting_id)).first()

    @staticmethod
    def _set_status(m: Meeting, status: MeetingStatus) -> None:
        if not can_transition(m.status, status):
            raise InvalidTransition(f"Meeting {m.id} cannot move from {m.status.value} to {status.value}")
        if status != MeetingStatus.FAILED:
            m.failure_reason = None
        m.status = status
        m.updated_at = utcnow()

    @staticmethod
    def _accepts(m: Meeting, stage: JobName) -> bool:
        allowed = STAGE_PRECONDITIONS[stage]
        if allowed is None or m.status in allowed:
            return True
        logger.warning("Skipping %s for meeting %s: status is %s", stage.value, m.id, m.status.value)
        return False

    def _mark_failed(self, meeting_id: str, exc: BaseException) -> None:
        reason = failure_reason(exc, self.settings.failure_reason_max_len)
        try:
            with Session(self.engine) as s:
                m = s.get(Meeting, meeting_id)
                if not m:
                    logger.error("Cannot record failure for missing meeting %s", meeting_id)
                    return
                self._set_status(m, MeetingStatus.FAILED)
                m.failure_reason = reason
                s.add(m)
                s.commit()
        except SQLAlchemyError:
            # the stage error is re-raised by the caller either way
            logger.exception("Could not record failure for meeting %s", meeting_id)

    # ---------- worker entry ----------

    def handle(self, name: str, payload: dict[str, Any]) -> Any:
        """Run one stage. On any error mark the meeting failed, then re-raise."""
        stage = JobName(name)
        job = JobPayload.model_validate(payload)
        logger.info("Processing %s for meeting %s", stage.value, job.meeting_id)
        try:
            return self._stages[stage](job)
        except Exception as e:
            logger.exception("Stage %s failed for meeting %s", stage.value, job.meeting_id)
            self._mark_failed(job.meeting_id, e)
            raise

    # ---------- stages ----------

    def start_transcription(self, job: JobPayload) -> Optional[str]:
        with Session(self.engine) as s:
            m = self._load_meeting(s, job.meeting_id)
            if not self._accepts(m, JobName.START_TRANSCRIPTION):
                return None
            title, object_path = m.title, m.recording_object_path

        tripwire = self.settings.failure_tripwire
        if tripwire and tripwire in title:
            raise RuntimeError(f"TEST FAILURE: meeting title contains {tripwire}")
        if not object_path:
            raise NotFound(f"Meeting {job.meeting_id} has no recording")

        audio_url = self.storage.signed_url(
            self.settings.recordings_bucket, object_path, self.settings.signed_url_ttl
        )
        tid = self.transcription.submit(
            audio_url,
            self.settings.webhook_url,
            self.settings.webhook_secret,
            header_name=self.settings.webhook_header_name,
        )

        with Session(self.engine) as s:
            t = self._transcript_for(s, job.meeting_id) or Transcript(meeting_id=job.meeting_id)
            t.assemblyai_transcript_id = tid
            t.status = TranscriptStatus.PROCESSING
            t.updated_at = utcnow()
            m = self._load_meeting(s, job.meeting_id)
            self._set_status(m, MeetingStatus.PROCESSING)
            s.add(t)
            s.add(m)
            s.commit()

        logger.info("AssemblyAI transcript %s created for %s", tid, job.meeting_id)
        return tid

    def fetch_transcript(self, job: JobPayload) -> None:
        tid = job.assemblyai_transcript_id
        if not tid:
            raise NotFound("Missing assemblyai_transcript_id for fetch")

        with Session(self.engine) as s:
            m = self._load_meeting(s, job.meeting_id)
            if not self._accepts(m, JobName.FETCH_TRANSCRIPT):
                return

        result = self.transcription.fetch_result(tid)
        utterances = self.transcription.fetch_utterances(tid)

        with Session(self.engine) as s:
            t = self._transcript_for(s, job.meeting_id) or Transcript(meeting_id=job.meeting_id)
            t.assemblyai_transcript_id = tid
            t.text_long = result.text
            t.segments_json = utterances
            t.words_json = result.words
            t.confidence_avg = result.confidence
            t.status = TranscriptStatus.READY
            t.updated_at = utcnow()
            m = self._load_meeting(s, job.meeting_id)
            self._set_status(m, MeetingStatus.PROCESSING)
            s.add(t)
            s.add(m)
            s.commit()

        logger.info("Transcript fetched and saved for %s. Enqueuing summary...", job.meeting_id)
        self.queue.enqueue(JobName.SUMMARIZE_MEETING, {"meeting_id": job.meeting_id})

    def summarize_meeting(self, job: JobPayload) -> Optional[SummaryDocument]:
        with Session(self.engine) as s:
            m = self._load_meeting(s, job.meeting_id)
            if not self._accepts(m, JobName.SUMMARIZE_MEETING):
                return None
            t = self._transcript_for(s, job.meeting_id)
            if not t or t.status != TranscriptStatus.READY or not t.text_long:
                raise MissingTranscript(f"No transcript text found for meeting {job.meeting_id}")
            title, text, workspace_id = m.title, t.text_long, m.workspace_id

        logger.info("Starting LLM summarization for %s", job.meeting_id)
        doc = self.summarizer.summarize(title, text)
        data = doc.model_dump(mode="json")

        with Session(self.engine) as s:
            summary = self._summary_for(s, job.meeting_id) or Summary(meeting_id=job.meeting_id, exec_summary="")
            summary.exec_summary = doc.executive_summary
            summary.bullet_summary = data["bullet_summary"]
            summary.decisions = data["decisions"]
            summary.action_items = data["action_items"]
            summary.topics = data["topics"]
            summary.risks = data["risks"]
            summary.questions = data["questions"]
            summary.prompt_version = "v1"
            summary.created_at = utcnow()
            s.add(summary)

            # full replacement: nothing from a previous run may survive
            for old in s.exec(select(ActionItem).where(ActionItem.meeting_id == job.meeting_id)).all():
                s.delete(old)
            for item in doc.action_items:
                s.add(ActionItem(
                    meeting_id=job.meeting_id,
                    workspace_id=workspace_id,
                    description=item.task,
                    owner_user_id=None,  # the model gives names, not user ids
                    due_date=normalize_due_date(item.due_date),
                    confidence=item.confidence,
                    source_timestamp_seconds=item.timestamp_seconds,
                    source_quote=item.quote,
                ))

            m = self._load_meeting(s, job.meeting_id)
            self._set_status(m, MeetingStatus.READY)
            s.add(m)
            s.commit()

        logger.info("Summarization complete for %s. Meeting set to READY.", job.meeting_id)
        return doc

    def export_meeting(self, job: JobPayload) -> Optional[str]:
        if not job.export_id or not job.format:
            raise NotFound("Missing export_id or format")

        with Session(self.engine) as s:
            m = self._load_meeting(s, job.meeting_id)
            if not self._accepts(m, JobName.EXPORT_MEETING):
                return None
            if not s.get(Export, job.export_id):
                raise NotFound(f"Export not found: {job.export_id}")
            rendered = render(job.format, m, self._transcript_for(s, m.id), self._summary_for(s, m.id))
            path = export_object_path(m, job.export_id, rendered.extension)

        self.storage.put_bytes(self.settings.exports_bucket, path, rendered.content, rendered.content_type)

        with Session(self.engine) as s:
            exp = s.get(Export, job.export_id)
            if not exp:
                raise NotFound(f"Export not found: {job.export_id}")
            exp.object_path = path
            s.add(exp)
            s.commit()

        logger.info("Export %s complete for %s in %s format.", job.export_id, job.meeting_id, job.format)
        return path

    # ---------- triggers used by the API ----------

    def begin_processing(self, meeting_id: str) -> Meeting:
        with Session(self.engine) as s:
            m = self._load_meeting(s, meeting_id)
            if m.status != MeetingStatus.UPLOADED:
                raise InvalidTransition(f"Meeting {meeting_id} is {m.status.value}; only uploaded meetings can be processed")
            self._set_status(m, MeetingStatus.PROCESSING)
            s.add(m)
            s.commit()

        try:
            self.queue.enqueue(JobName.START_TRANSCRIPTION, {"meeting_id": meeting_id})
        except EnqueueError as e:
            self._mark_failed(meeting_id, e)
            raise

        with Session(self.engine) as s:
            return self._load_meeting(s, meeting_id)

    def retry_meeting(self, meeting_id: str) -> Meeting:
        with Session(self.engine) as s:
            m = self._load_meeting(s, meeting_id)
            if m.status != MeetingStatus.FAILED:
                raise InvalidTransition(f"Meeting {meeting_id} is {m.status.value}; only failed meetings can be retried")
            self._set_status(m, MeetingStatus.UPLOADED)
            s.add(m)
            s.commit()
        logger.info("Retrying meeting %s from the top", meeting_id)
        return self.begin_processing(meeting_id)

    def request_export(self, meeting_id: str, fmt: ExportFormat | str, created_by: Optional[str] = None) -> Export:
        try:
            export_format = ExportFormat(fmt)
        except ValueError:
            raise UnsupportedFormatError(f"Unsupported format: {fmt}") from None

        with Session(self.engine) as s:
            self._load_meeting(s, meeting_id)
            exp = Export(
                meeting_id=meeting_id,
                format=export_format,
                created_by=created_by,
                object_path=f"pending/{meeting_id}/{int(time.time() * 1000)}.{export_format.value}",
            )
            s.add(exp)
            s.commit()
            s.refresh(exp)

        self.queue.enqueue(JobName.EXPORT_MEETING, {
            "meeting_id": meeting_id,
            "export_id": exp.id,
            "format": export_format.value,
        })
        return exp

    def handle_transcription_webhook(self, transcript_id: str, status: str, error: Optional[str] = None) -> None:
        with Session(self.engine) as s:
            t = s.exec(select(Transcript).where(Transcript.assemblyai_transcript_id == transcript_id)).first()
            if not t:
                raise NotFound(f"Transcript not found: {transcript_id}")
            meeting_id = t.meeting_id

            if status == "error":
                logger.error("Transcription failed for %s: %s", meeting_id, error)
                t.status = TranscriptStatus.FAILED
                t.updated_at = utcnow()
                m = self._load_meeting(s, meeting_id)
                self._set_status(m, MeetingStatus.FAILED)
                m.failure_reason = safe_preview(
                    f"Transcription failed: {error or 'unknown provider error'}",
                    self.settings.failure_reason_max_len,
                )
                s.add(t)
                s.add(m)
                s.commit()
                return

        if status == "completed":
            logger.info("Transcription completed for %s", meeting_id)
            self.queue.enqueue(JobName.FETCH_TRANSCRIPT, {
                "meeting_id": meeting_id,
                "assemblyai_transcript_id": transcript_id,
            })
        else:
            logger.info("Ignoring webhook status %r for transcript %s", status, transcript_id)
