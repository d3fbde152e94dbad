"""Error taxonomy for the content pipeline.

The scheduler maps these onto job state: retryable errors go through the
exponential backoff path, everything else fails the job terminally.
Exceptions that are not ``PipelineError`` are treated as transient.
"""


class PipelineError(Exception):
    """Base class for pipeline errors."""

    retryable: bool = True


class TransientError(PipelineError):
    """Network or timeout failure talking to a collaborator."""

    retryable = True


class InvalidPayloadError(PipelineError):
    """Malformed request or job payload."""

    retryable = False


class NotFoundError(PipelineError):
    """Unknown persona, video, channel or job."""

    retryable = False


class ConflictError(PipelineError):
    """The entity already exists (e.g. a persona for the same channel)."""

    retryable = False


class PartialDataError(PipelineError):
    """A unit of work produced nothing usable (e.g. zero captions)."""

    retryable = False


class EmbeddingBatchError(PipelineError):
    """Embedding candidates existed but none were embedded."""

    retryable = True


class ScrapeRunFailedError(PipelineError):
    """The external scrape-and-transcribe run ended in failure."""

    retryable = True


class DuplicateKeyError(PipelineError):
    """A job with the same idempotency key already exists."""

    retryable = False

    def __init__(self, idempotency_key: str):
        super().__init__(f"Job with idempotency key '{idempotency_key}' already exists")
        self.idempotency_key = idempotency_key


class JobDeferred(Exception):
    """Raised by a job handler to put its job back in the queue untouched.

    Deferral does not count as a retry. Used while an external run is still
    in progress and when a bounded page of work leaves more behind.
    """

    def __init__(self, reason: str, delay_seconds: float = 0, progress: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.delay_seconds = delay_seconds
        self.progress = progress


class ExtractionPending(JobDeferred):
    """The external caption run has not produced results yet."""
