"""Job scheduler: one claim-and-run cycle per tick."""

from collections.abc import Awaitable, Callable
from enum import StrEnum

import structlog
from pydantic import BaseModel

from src.utils.logging import get_logger

from .errors import InvalidPayloadError, JobDeferred, PipelineError
from .job_store import JobStore
from .schemas import Job, JobPayload, JobResult, JobStatus, JobType

logger = get_logger(__name__)

JobHandler = Callable[[JobPayload], Awaitable[JobResult]]


class TickStatus(StrEnum):
    IDLE = "idle"
    COMPLETED = "completed"
    RETRYING = "retrying"
    FAILED = "failed"
    DEFERRED = "deferred"


class TickOutcome(BaseModel):
    """What a single scheduler tick did."""

    status: TickStatus
    job_id: str | None = None
    job_type: JobType | None = None
    error: str | None = None


class JobWorker:
    """Dequeues one due job per tick and applies its outcome.

    The tick is triggered from outside (cron, HTTP endpoint or the CLI worker
    loop). Concurrent ticks are safe because the store hands each job to a
    single caller; handlers are expected to be idempotent because execution
    is at-least-once.
    """

    def __init__(self, job_store: JobStore, handlers: dict[JobType, JobHandler]):
        self.job_store = job_store
        self.handlers = handlers

    async def tick(self) -> TickOutcome:
        """Process at most one due job to completion, deferral or failure."""
        job = await self.job_store.dequeue_next()
        if job is None:
            logger.debug("scheduler_tick_idle")
            return TickOutcome(status=TickStatus.IDLE)

        return await self.run(job)

    async def run(self, job: Job) -> TickOutcome:
        """Execute a claimed job and record the outcome in the store."""
        outcome = TickOutcome(status=TickStatus.COMPLETED, job_id=job.id, job_type=job.type)

        try:
            handler = self.handlers.get(job.type)
            if handler is None:
                raise InvalidPayloadError(f"Unknown job type: {job.type}")

            with structlog.contextvars.bound_contextvars(
                job_id=job.id, job_type=str(job.type)
            ):
                result = await handler(job.typed_payload())

        except JobDeferred as e:
            await self.job_store.defer(job.id, e.delay_seconds, e.reason, e.progress)
            outcome.status = TickStatus.DEFERRED
            return outcome

        except Exception as e:
            retryable = e.retryable if isinstance(e, PipelineError) else True
            message = str(e) or type(e).__name__
            logger.warning(
                "job_handler_failed",
                job_id=job.id,
                job_type=str(job.type),
                retryable=retryable,
                error_type=type(e).__name__,
                error=message,
            )
            status = await self.job_store.fail(job.id, message, retryable=retryable)
            outcome.status = (
                TickStatus.FAILED if status == JobStatus.FAILED else TickStatus.RETRYING
            )
            outcome.error = message
            return outcome

        await self.job_store.complete(job.id, result.model_dump(mode="json"))
        return outcome
