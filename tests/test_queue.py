from datetime import timedelta

import pytest
from hatchet_sdk import ConcurrencyLimitStrategy
from hatchet_sdk.exceptions import NonRetryableException
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from notepipe.errors import EnqueueError, NotFound
from notepipe.models import JobName
from notepipe.schemas import JobPayload
from notepipe.services.queue import JobQueue, task_name

from conftest import FakeContext


def test_every_stage_is_a_task_with_retry_policy(hatchet, queue):
    assert sorted(hatchet.tasks) == sorted(task_name(n) for n in JobName)
    for task in hatchet.tasks.values():
        opts = task.options
        assert opts["input_validator"] is JobPayload
        assert opts["retries"] == 2  # three attempts in total
        assert opts["backoff_factor"] == 2.0
        assert opts["backoff_max_seconds"] == 60
        assert opts["execution_timeout"] == timedelta(seconds=900)
        assert opts["concurrency"].expression == "input.meeting_id"
        assert opts["concurrency"].max_runs == 1
        assert opts["concurrency"].limit_strategy == ConcurrencyLimitStrategy.GROUP_ROUND_ROBIN


def test_enqueue_triggers_a_run(hatchet, queue):
    run_id = queue.enqueue(JobName.FETCH_TRANSCRIPT, {"meeting_id": "m1", "assemblyai_transcript_id": "tx"})
    assert run_id == "run-1"
    assert hatchet.pending() == [("fetch_transcript", {"meeting_id": "m1", "assemblyai_transcript_id": "tx"})]


def test_enqueue_rejects_payload_without_meeting_id(hatchet, queue):
    with pytest.raises(ValidationError):
        queue.enqueue(JobName.START_TRANSCRIPTION, {"export_id": "e1"})
    assert hatchet.queued == []


def test_enqueue_wraps_unreachable_engine(hatchet, queue):
    hatchet.unreachable = True
    with pytest.raises(EnqueueError, match="Could not enqueue start_transcription"):
        queue.enqueue(JobName.START_TRANSCRIPTION, {"meeting_id": "m1"})


def test_worker_registers_every_stage(hatchet, queue, settings):
    worker = queue.worker()
    assert worker.name == "notepipe-worker"
    assert worker.slots == settings.queue_concurrency == 5
    assert [t.name for t in worker.workflows] == [task_name(n) for n in JobName]


def test_unbound_queue_refuses_to_run(queue):
    with pytest.raises(RuntimeError):
        queue.execute(JobName.SUMMARIZE_MEETING, JobPayload(meeting_id="m1"), FakeContext(0))


def test_failing_job_is_retried_until_exhausted(hatchet, queue):
    calls = []

    def handler(name, payload):
        calls.append((name, payload["meeting_id"]))
        if payload["meeting_id"] == "bad":
            raise RuntimeError("nope")

    queue.bind(handler)
    queue.enqueue(JobName.SUMMARIZE_MEETING, {"meeting_id": "good"})
    queue.enqueue(JobName.SUMMARIZE_MEETING, {"meeting_id": "bad"})

    assert hatchet.drain() == 4  # good once, bad three times
    assert calls.count(("summarize_meeting", "bad")) == 3
    [failed] = hatchet.failed
    assert failed.payload.meeting_id == "bad"
    assert failed.attempts == 3
    assert failed.logs == ["summarize_meeting for meeting bad: attempt 3/3"]


def test_non_retryable_error_fails_on_first_attempt(hatchet, queue):
    def handler(name, payload):
        raise NotFound(f"Meeting not found: {payload['meeting_id']}")

    queue.bind(handler)
    queue.enqueue(JobName.START_TRANSCRIPTION, {"meeting_id": "m1"})
    assert hatchet.drain() == 1

    [failed] = hatchet.failed
    assert isinstance(failed.error, NonRetryableException)
    assert isinstance(failed.error.__cause__, NotFound)


def test_transient_database_error_is_retried_and_later_jobs_still_run(hatchet, queue):
    seen = []

    def handler(name, payload):
        seen.append(payload["meeting_id"])
        if seen.count("m1") == 1 and payload["meeting_id"] == "m1":
            raise OperationalError("UPDATE meetings", {}, Exception("database is locked"))

    queue.bind(handler)
    queue.enqueue(JobName.SUMMARIZE_MEETING, {"meeting_id": "m1"})
    queue.enqueue(JobName.SUMMARIZE_MEETING, {"meeting_id": "m2"})

    hatchet.drain()
    assert seen == ["m1", "m1", "m2"]
    assert hatchet.failed == []


def test_single_attempt_setting_disables_retries(hatchet, settings):
    JobQueue(hatchet, settings.model_copy(update={"queue_max_attempts": 1}))
    assert {t.options["retries"] for t in hatchet.tasks.values()} == {0}
