# notepipe/services/queue.py
"""
Job queue on Hatchet.

Each pipeline stage is a standalone Hatchet task named ``notepipe.<stage>``.
The API process only triggers runs through ``JobQueue.enqueue``; the worker
process registers the same tasks, binds ``Pipeline.handle`` as the body and
lets Hatchet deliver them. Hatchet owns delivery, retries with exponential
backoff, worker slots and retention of failed runs. Runs of one stage are
serialised per meeting.

Errors that carry ``retryable = False`` are re-raised as
``NonRetryableException`` so Hatchet fails the run on the first attempt.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable, Optional

from hatchet_sdk import ConcurrencyExpression, ConcurrencyLimitStrategy, Context, Hatchet
from hatchet_sdk.exceptions import NonRetryableException

from ..config import Settings
from ..errors import EnqueueError
from ..models import JobName
from ..schemas import JobPayload
from ..utils.text import safe_preview

logger = logging.getLogger(__name__)

JobHandler = Callable[[str, dict[str, Any]], Any]


def task_name(name: JobName) -> str:
    return f"notepipe.{name.value}"


class JobQueue:
    def __init__(self, hatchet: Hatchet, settings: Settings):
        self.hatchet = hatchet
        self.max_attempts = max(1, settings.queue_max_attempts)
        self.slots = settings.queue_concurrency
        self.handler: Optional[JobHandler] = None
        self.tasks = {name: self._declare(name, settings) for name in JobName}

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobQueue":
        # token and host come from HATCHET_CLIENT_* in the environment
        return cls(Hatchet(debug=settings.env == "dev"), settings)

    def _declare(self, name: JobName, settings: Settings):
        def run(input: JobPayload, ctx: Context) -> dict[str, Any]:
            return self.execute(name, input, ctx)

        return self.hatchet.task(
            name=task_name(name),
            input_validator=JobPayload,
            retries=self.max_attempts - 1,
            backoff_factor=settings.queue_backoff_factor,
            backoff_max_seconds=settings.queue_backoff_max_seconds,
            execution_timeout=timedelta(seconds=settings.queue_execution_timeout),
            concurrency=ConcurrencyExpression(
                expression="input.meeting_id",
                max_runs=1,
                limit_strategy=ConcurrencyLimitStrategy.GROUP_ROUND_ROBIN,
            ),
        )(run)

    def bind(self, handler: JobHandler) -> None:
        self.handler = handler

    def enqueue(self, name: JobName | str, payload: dict[str, Any] | JobPayload) -> str:
        """Trigger one stage run without waiting for it. Returns the Hatchet run id."""
        if not isinstance(payload, JobPayload):
            payload = JobPayload.model_validate(payload)
        stage = JobName(name)
        try:
            ref = self.tasks[stage].run_no_wait(payload)
        except Exception as e:
            raise EnqueueError(f"Could not enqueue {stage.value}: {e}") from e
        logger.info("Enqueued %s run %s for meeting %s", stage.value, ref.workflow_run_id, payload.meeting_id)
        return ref.workflow_run_id

    def execute(self, name: JobName, payload: JobPayload, ctx: Context) -> dict[str, Any]:
        """Task body shared by every stage."""
        if self.handler is None:
            raise RuntimeError("No job handler bound to this queue")
        attempt = ctx.retry_count + 1
        ctx.log(f"{name.value} for meeting {payload.meeting_id}: attempt {attempt}/{self.max_attempts}")
        try:
            self.handler(name.value, payload.model_dump(exclude_none=True))
        except Exception as e:
            detail = safe_preview(f"{e.__class__.__name__}: {e}", 1000)
            if not getattr(e, "retryable", True):
                logger.error("Job %s for meeting %s failed permanently: %s", name.value, payload.meeting_id, detail)
                raise NonRetryableException(detail) from e
            if attempt < self.max_attempts:
                logger.warning("Job %s for meeting %s failed attempt %d/%d: %s",
                               name.value, payload.meeting_id, attempt, self.max_attempts, detail)
            else:
                logger.error("Job %s for meeting %s permanently failed after %d attempt(s): %s",
                             name.value, payload.meeting_id, attempt, detail)
            raise
        return {"stage": name.value, "meeting_id": payload.meeting_id}

    def worker(self, name: str = "notepipe-worker"):
        return self.hatchet.worker(name, slots=self.slots, workflows=list(self.tasks.values()))
