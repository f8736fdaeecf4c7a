"""
Error taxonomy for the ingestion core.

Only ``NotFoundError`` and ``ValidationError`` are meant to reach callers.
``TransientIOError`` and ``AtomicUpdateFailure`` are raised by collaborators
and degraded to warnings by the scanner and the stage counter.
"""


class IngestError(Exception):
    """Base class for all media_ingest errors."""

    pass


class NotFoundError(IngestError, LookupError):
    """A job, stage, collection or path does not exist."""

    pass


class ValidationError(IngestError, ValueError):
    """Malformed request, flags or path. Raised before any side effect."""

    pass


class StageSealedError(ValidationError):
    """A stage total was already sealed with a different value."""

    def __init__(self, job_id: str, stage_name: str, sealed_total: int, requested: int):
        self.job_id = job_id
        self.stage_name = stage_name
        self.sealed_total = sealed_total
        self.requested = requested
        super().__init__(
            f"Stage '{stage_name}' of job {job_id} is sealed with total={sealed_total}, "
            f"refusing total={requested}"
        )


class InvalidTransitionError(ValidationError):
    """A requested status change would move a job backward."""

    pass


class TransientIOError(IngestError, OSError):
    """Archive or filesystem access failed; the affected candidate is skipped."""

    pass


class AtomicUpdateFailure(IngestError):
    """A counter increment could not be applied at the storage layer."""

    pass
