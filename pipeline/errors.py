"""
Errors surfaced by the graph-build pipeline.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    pass


class JobSubmissionError(PipelineError):
    """
    The queue rejected a job spec. A configuration fault: never retried, and it
    halts the owning pipeline immediately.
    """

    def __init__(self, job_name: str, message: str, code: Optional[str] = None):
        self.job_name = job_name
        self.code = code
        self.message = message
        prefix = f"{code}: " if code else ""
        super().__init__(f"job {job_name} rejected: {prefix}{message}")


class JobFailedPermanent(PipelineError):
    """A job kept failing until it ran out of attempts."""

    def __init__(self, job_id: str, kind: str, shard_id: str, attempts: int, error: Optional[str]):
        self.job_id = job_id
        self.kind = kind
        self.shard_id = shard_id
        self.attempts = attempts
        self.error = error
        super().__init__(
            f"{kind} job for shard {shard_id} failed after {attempts} attempt(s): {error or 'no reason given'}"
        )


class QueueUnavailable(PipelineError):
    """
    The queue throttled or failed a call on its side. Transient: the call is
    repeated on the next scheduler tick.
    """

    def __init__(self, operation: str, message: str, code: Optional[str] = None):
        self.operation = operation
        self.code = code
        self.message = message
        super().__init__(f"{operation} refused for now ({code or 'no code'}): {message}")


class JobPollError(PipelineError):
    """The queue could not report on one job. Counts as a failed attempt of that job."""

    def __init__(self, queue_job_id: str, message: str, code: Optional[str] = None):
        self.queue_job_id = queue_job_id
        self.code = code
        self.message = message
        prefix = f"{code}: " if code else ""
        super().__init__(f"cannot read status of {queue_job_id}: {prefix}{message}")
