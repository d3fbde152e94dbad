"""Durable job queue backed by the Supabase ``jobs`` table."""

from datetime import UTC, datetime, timedelta
from typing import Any

from postgrest.exceptions import APIError
from supabase import Client

from src.utils.logging import get_logger

from .errors import DuplicateKeyError, NotFoundError
from .schemas import Job, JobStatus, JobType

logger = get_logger(__name__)

JOBS_TABLE = "jobs"

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"

# Due jobs inspected per claim attempt; a lost race moves on to the next one
CLAIM_CANDIDATES = 5

# Running jobs older than this are assumed to belong to a dead worker
DEFAULT_LEASE_SECONDS = 900


def retry_delay(retry_count: int) -> timedelta:
    """Backoff before the next attempt: 2^retry_count minutes."""
    return timedelta(minutes=2**retry_count)


def next_attempt(
    retry_count: int, max_retries: int, now: datetime
) -> tuple[JobStatus, int, datetime | None]:
    """Decide what a failed attempt turns a job into.

    Args:
        retry_count: Retry count before this failure.
        max_retries: Maximum attempts allowed for the job.
        now: Current time.

    Returns:
        Tuple of (new status, new retry count, next scheduled_at or None when
        the job failed terminally).
    """
    new_count = retry_count + 1
    if new_count < max_retries:
        return JobStatus.PENDING, new_count, now + retry_delay(new_count)
    return JobStatus.FAILED, new_count, None


class JobStore:
    """Row-level operations on the job queue.

    The store holds no scheduling logic beyond the claim and retry rules:
    ``dequeue_next`` hands a job to exactly one caller via a conditional
    update, and ``fail`` applies exponential backoff.
    """

    def __init__(self, client: Client, lease_seconds: float = DEFAULT_LEASE_SECONDS):
        self.client = client
        self.lease_seconds = lease_seconds

    async def enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        idempotency_key: str,
        max_retries: int = 3,
        not_before: datetime | None = None,
    ) -> str:
        """Insert a pending job.

        Args:
            job_type: Job type discriminant.
            payload: Payload map for the job type.
            idempotency_key: Globally unique key for this unit of work.
            max_retries: Maximum attempts before the job fails terminally.
            not_before: Earliest execution time (default: now).

        Returns:
            The new job id.

        Raises:
            DuplicateKeyError: If a job with the same key already exists.
        """
        scheduled_at = not_before or datetime.now(UTC)
        data = {
            "type": str(job_type),
            "payload": payload,
            "status": str(JobStatus.PENDING),
            "idempotency_key": idempotency_key,
            "max_retries": max_retries,
            "scheduled_at": scheduled_at.isoformat(),
        }

        try:
            response = self.client.table(JOBS_TABLE).insert(data).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                logger.info("job_already_enqueued", idempotency_key=idempotency_key)
                raise DuplicateKeyError(idempotency_key) from e
            logger.exception(
                "job_enqueue_failed",
                idempotency_key=idempotency_key,
                error_type=type(e).__name__,
            )
            raise

        job_id: str = response.data[0]["id"]
        logger.info(
            "job_enqueued",
            job_id=job_id,
            job_type=str(job_type),
            idempotency_key=idempotency_key,
            scheduled_at=scheduled_at.isoformat(),
        )
        return job_id

    async def enqueue_once(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        idempotency_key: str,
        max_retries: int = 3,
        not_before: datetime | None = None,
    ) -> str | None:
        """Enqueue a job, treating an existing key as success.

        Returns:
            The new job id, or None if the job was already scheduled.
        """
        try:
            return await self.enqueue(
                job_type, payload, idempotency_key, max_retries, not_before
            )
        except DuplicateKeyError:
            return None

    async def dequeue_next(self) -> Job | None:
        """Claim the next job to run.

        A ``running`` job whose lease has expired is claimed first: its worker
        died before recording an outcome, so it runs again. Otherwise the
        oldest due ``pending`` job is claimed. Both claims are conditional
        updates guarded on the row's current state, so two concurrent callers
        never both receive the same job.

        Returns:
            The claimed job (already ``running``), or None if nothing is due.
        """
        now = datetime.now(UTC)
        reclaimed = await self._reclaim_expired(now)
        if reclaimed is not None:
            return reclaimed

        response = (
            self.client.table(JOBS_TABLE)
            .select("id")
            .eq("status", str(JobStatus.PENDING))
            .lte("scheduled_at", now.isoformat())
            .order("scheduled_at")
            .order("created_at")
            .limit(CLAIM_CANDIDATES)
            .execute()
        )

        for candidate in response.data or []:
            claimed = (
                self.client.table(JOBS_TABLE)
                .update({"status": str(JobStatus.RUNNING), "started_at": now.isoformat()})
                .eq("id", candidate["id"])
                .eq("status", str(JobStatus.PENDING))
                .execute()
            )
            if claimed.data:
                job = Job.model_validate(claimed.data[0])
                logger.info(
                    "job_claimed",
                    job_id=job.id,
                    job_type=str(job.type),
                    retry_count=job.retry_count,
                )
                return job

            logger.debug("job_claim_lost", job_id=candidate["id"])

        return None

    async def _reclaim_expired(self, now: datetime) -> Job | None:
        """Take over a running job whose lease expired.

        The update is guarded on the ``started_at`` value that was read, so
        only one caller can renew a given lease.
        """
        cutoff = now - timedelta(seconds=self.lease_seconds)
        response = (
            self.client.table(JOBS_TABLE)
            .select("id, started_at")
            .eq("status", str(JobStatus.RUNNING))
            .lt("started_at", cutoff.isoformat())
            .order("started_at")
            .limit(CLAIM_CANDIDATES)
            .execute()
        )

        for candidate in response.data or []:
            claimed = (
                self.client.table(JOBS_TABLE)
                .update({"started_at": now.isoformat()})
                .eq("id", candidate["id"])
                .eq("status", str(JobStatus.RUNNING))
                .eq("started_at", candidate["started_at"])
                .execute()
            )
            if claimed.data:
                job = Job.model_validate(claimed.data[0])
                logger.warning(
                    "job_lease_expired_reclaimed",
                    job_id=job.id,
                    job_type=str(job.type),
                    previous_started_at=candidate["started_at"],
                )
                return job

            logger.debug("job_reclaim_lost", job_id=candidate["id"])

        return None

    async def get(self, job_id: str) -> Job:
        """Fetch a job by id.

        Raises:
            NotFoundError: If no such job exists.
        """
        response = self.client.table(JOBS_TABLE).select("*").eq("id", job_id).execute()
        if not response.data:
            raise NotFoundError(f"Job not found: {job_id}")
        return Job.model_validate(response.data[0])

    async def complete(self, job_id: str, result: dict[str, Any] | None = None) -> None:
        """Mark a job completed with its result."""
        now = datetime.now(UTC).isoformat()
        self.client.table(JOBS_TABLE).update(
            {
                "status": str(JobStatus.COMPLETED),
                "progress": 100,
                "completed_at": now,
                "result": result,
                "error_message": None,
            }
        ).eq("id", job_id).execute()
        logger.info("job_completed", job_id=job_id)

    async def fail(self, job_id: str, error: str, retryable: bool = True) -> JobStatus:
        """Record a failed attempt.

        Retryable failures go back to ``pending`` with exponential backoff
        until ``max_retries`` is reached; non-retryable failures are terminal
        straight away.

        Returns:
            The status the job ended up in.
        """
        job = await self.get(job_id)
        now = datetime.now(UTC)

        if retryable:
            status, retry_count, scheduled_at = next_attempt(
                job.retry_count, job.max_retries, now
            )
        else:
            status, retry_count, scheduled_at = JobStatus.FAILED, job.retry_count, None

        data: dict[str, Any] = {
            "status": str(status),
            "retry_count": retry_count,
            "error_message": error,
        }
        if scheduled_at is not None:
            data["scheduled_at"] = scheduled_at.isoformat()
        else:
            data["completed_at"] = now.isoformat()

        self.client.table(JOBS_TABLE).update(data).eq("id", job_id).execute()

        if status == JobStatus.PENDING:
            logger.warning(
                "job_retry_scheduled",
                job_id=job_id,
                retry_count=retry_count,
                max_retries=job.max_retries,
                scheduled_at=data["scheduled_at"],
                error=error,
            )
        else:
            logger.error(
                "job_failed",
                job_id=job_id,
                retry_count=retry_count,
                retryable=retryable,
                error=error,
            )
        return status

    async def defer(
        self,
        job_id: str,
        delay_seconds: float,
        reason: str,
        progress: int | None = None,
    ) -> None:
        """Put a running job back in the queue without counting a retry."""
        scheduled_at = datetime.now(UTC) + timedelta(seconds=delay_seconds)
        data: dict[str, Any] = {
            "status": str(JobStatus.PENDING),
            "scheduled_at": scheduled_at.isoformat(),
        }
        if progress is not None:
            data["progress"] = progress

        self.client.table(JOBS_TABLE).update(data).eq("id", job_id).execute()
        logger.info(
            "job_deferred",
            job_id=job_id,
            reason=reason,
            scheduled_at=scheduled_at.isoformat(),
        )
