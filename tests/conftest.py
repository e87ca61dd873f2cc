import json
from types import SimpleNamespace

import pytest
from hatchet_sdk.exceptions import NonRetryableException
from sqlmodel import Session

from notepipe.config import Settings
from notepipe.db import init_db, make_engine
from notepipe.models import Meeting, MeetingStatus
from notepipe.services.pipeline import Pipeline
from notepipe.services.queue import JobQueue
from notepipe.services.summarizer import Summarizer
from notepipe.services.transcription import TranscriptResult

VALID_SUMMARY = {
    "executive_summary": "The team agreed the Q3 roadmap.",
    "bullet_summary": ["Roadmap agreed", "Launch moved to July"],
    "decisions": [
        {"decision": "Ship v2 in July", "owner": "Ana", "timestamp_seconds": 12.5, "quote": "Let's ship in July"},
    ],
    "action_items": [
        {"task": "Write launch post", "owner": "Ben", "due_date": "2024-07-01T17:00:00Z",
         "confidence": 0.9, "timestamp_seconds": 30, "quote": "I'll write it"},
        {"task": "Book venue", "owner": None, "due_date": "next week", "confidence": 0.6},
    ],
    "topics": [{"title": "Roadmap", "start_time_seconds": 0, "summary": "Q3 priorities"}],
    "risks": ["Venue availability"],
    "questions": [],
}


class FakeLLM:
    """Stands in for ``openai.OpenAI``. JSON-mode calls pop from ``json_responses``; the last one repeats."""

    def __init__(self, json_responses=None):
        self.calls = []
        self.json_responses = list(json_responses or [json.dumps(VALID_SUMMARY)])
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        if "response_format" in kwargs:
            content = self.json_responses.pop(0) if len(self.json_responses) > 1 else self.json_responses[0]
        else:
            content = f"summary of chunk {len(self.calls)}"
        if isinstance(content, Exception):
            raise content
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    @property
    def json_calls(self):
        return [c for c in self.calls if "response_format" in c]


class FakeTranscription:
    def __init__(self, text="Ana: let's ship in July. Ben: I'll write it."):
        self.text = text
        self.submitted = []
        self.fetched = []

    def submit(self, audio_url, callback_url, callback_secret, *, header_name="x-webhook-secret"):
        self.submitted.append((audio_url, callback_url, callback_secret, header_name))
        return f"tx-{len(self.submitted)}"

    def fetch_result(self, transcript_id):
        self.fetched.append(transcript_id)
        return TranscriptResult(self.text, [{"text": "Ana", "start": 0, "end": 300}], 0.93)

    def fetch_utterances(self, transcript_id):
        return [{"speaker": "A", "start": 0, "end": 4000, "text": self.text}]

    def close(self):
        pass


class FakeStorage:
    def __init__(self):
        self.objects = {}
        self.fail_puts = False

    def signed_url(self, bucket, key, expires_in=3600):
        return f"https://storage.example.com/{bucket}/{key}?expires={expires_in}"

    def put_bytes(self, bucket, key, data, content_type):
        if self.fail_puts:
            raise ConnectionError("storage unavailable")
        self.objects[(bucket, key)] = (data, content_type)
        return key


class FakeContext:
    def __init__(self, retry_count):
        self.retry_count = retry_count
        self.logs = []

    def log(self, line):
        self.logs.append(line)


class FakeTask:
    def __init__(self, hatchet, fn, options):
        self.hatchet = hatchet
        self.fn = fn
        self.options = options
        self.name = options["name"]

    def run_no_wait(self, input):
        if self.hatchet.unreachable:
            raise ConnectionError("hatchet engine unavailable")
        self.hatchet.queued.append((self, input))
        return SimpleNamespace(workflow_run_id=f"run-{len(self.hatchet.queued) + len(self.hatchet.finished)}")


class FakeHatchet:
    """Stands in for ``hatchet_sdk.Hatchet``. Runs are held in memory; ``drain`` replays the retry policy."""

    def __init__(self):
        self.tasks = {}
        self.queued = []
        self.finished = []
        self.unreachable = False

    def task(self, **options):
        def register(fn):
            task = FakeTask(self, fn, options)
            self.tasks[task.name] = task
            return task
        return register

    def worker(self, name, slots, workflows):
        return SimpleNamespace(name=name, slots=slots, workflows=workflows)

    def pending(self):
        return [(task.name.removeprefix("notepipe."), p.model_dump(exclude_none=True)) for task, p in self.queued]

    @property
    def failed(self):
        return [run for run in self.finished if run.error is not None]

    def drain(self):
        """Run queued stages, including ones they enqueue, until none remain. Returns attempts made."""
        attempts = 0
        while self.queued:
            task, payload = self.queued.pop(0)
            retries = task.options["retries"]
            for retry_count in range(retries + 1):
                attempts += 1
                ctx = FakeContext(retry_count)
                try:
                    task.fn(payload, ctx)
                except NonRetryableException as e:
                    error = e
                    break
                except Exception as e:
                    error = e
                else:
                    error = None
                    break
            self.finished.append(SimpleNamespace(
                name=task.name, payload=payload, attempts=retry_count + 1, error=error, logs=ctx.logs,
            ))
        return attempts


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        assemblyai_key="aai-test",
        llm_key="llm-test",
        webhook_base_url="https://hooks.example.com",
        webhook_secret="s3cret",
        queue_max_attempts=3,
        api_keys_csv="test-key",
        failure_tripwire="FAIL",
    )


@pytest.fixture
def engine(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def hatchet():
    return FakeHatchet()


@pytest.fixture
def queue(hatchet, settings):
    return JobQueue(hatchet, settings)


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def transcription():
    return FakeTranscription()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def pipeline(engine, queue, transcription, llm, storage, settings):
    summarizer = Summarizer(llm, "test-model", settings.summary_chunk_chars)
    return Pipeline(engine, queue, transcription, summarizer, storage, settings)


@pytest.fixture
def worker(hatchet, queue, pipeline):
    """The in-memory Hatchet with the pipeline bound as task body; call ``drain()`` to run queued stages."""
    queue.bind(pipeline.handle)
    return hatchet


@pytest.fixture
def make_meeting(engine):
    def _make(title="Weekly sync", status=MeetingStatus.UPLOADED, **kwargs):
        kwargs.setdefault("workspace_id", "ws-1")
        kwargs.setdefault("recording_object_path", "ws-1/recordings/sync.m4a")
        with Session(engine) as s:
            m = Meeting(title=title, status=status, **kwargs)
            s.add(m)
            s.commit()
            s.refresh(m)
            return m
    return _make


@pytest.fixture
def load(engine):
    """Fetch a fresh copy of a row by primary key."""
    def _load(model, pk):
        with Session(engine) as s:
            return s.get(model, pk)
    return _load
