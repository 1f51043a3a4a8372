from .job_state import (
    JobStateException,
    submit_job,
    mark_running,
    mark_succeeded,
    mark_failed,
    reject_submission,
    cancel_job,
)

__all__ = [
    "JobStateException",
    "submit_job",
    "mark_running",
    "mark_succeeded",
    "mark_failed",
    "reject_submission",
    "cancel_job",
]
