from datetime import datetime
from typing import Dict, FrozenSet, Optional

from pipeline.models import Job, JobState, JobTransition, Pipeline

class JobStateException(Exception):
    """Raised when an invalid job transition is attempted."""
    pass

ALLOWED_TRANSITIONS: Dict[JobState, FrozenSet[JobState]] = {
    JobState.PENDING: frozenset({JobState.SUBMITTED, JobState.CANCELLED}),
    JobState.SUBMITTED: frozenset({JobState.RUNNING, JobState.FAILED, JobState.CANCELLED}),
    JobState.RUNNING: frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED}),
    # a failed attempt goes straight back to the queue
    JobState.FAILED: frozenset({JobState.SUBMITTED, JobState.CANCELLED}),
    JobState.SUCCEEDED: frozenset(),
    JobState.CANCELLED: frozenset(),
}

def _transition(job: Job, new_state: JobState, now: Optional[datetime] = None, detail: Optional[str] = None) -> Job:
    if new_state not in ALLOWED_TRANSITIONS[job.state]:
        raise JobStateException(f"Cannot move job {job.id} from {job.state.value} to {new_state.value}")
    job.state = new_state
    job.history.append(JobTransition(state=new_state, at=now or datetime.utcnow(), attempt=job.attempt_count, detail=detail))
    return job

def submit_job(job: Job, pipeline: Pipeline, queue_job_id: str, now: Optional[datetime] = None) -> Job:
    """
    Called once the queue accepted the spec. Starts a new attempt.
    Dependencies must already be SUCCEEDED; the queue backend is never trusted to enforce order.
    """
    if not pipeline.dependencies_succeeded(job):
        raise JobStateException(f"Job {job.id} submitted before its dependencies succeeded")
    if job.state == JobState.FAILED and job.exhausted:
        raise JobStateException(f"Job {job.id} has no attempts left ({job.attempt_count}/{job.max_attempts})")

    job.attempt_count += 1
    job.queue_job_id = queue_job_id
    return _transition(job, JobState.SUBMITTED, now, detail=queue_job_id)

def mark_running(job: Job, pipeline: Pipeline, now: Optional[datetime] = None) -> Job:
    """
    The queue reports the container started. Re-checks the dependency invariant.
    """
    if not pipeline.dependencies_succeeded(job):
        raise JobStateException(f"Job {job.id} cannot run before its dependencies succeeded")
    if job.state == JobState.RUNNING:
        return job
    return _transition(job, JobState.RUNNING, now)

def mark_succeeded(job: Job, pipeline: Pipeline, now: Optional[datetime] = None) -> Job:
    # a fast job can finish between two polls; record the RUNNING it went through
    if job.state == JobState.SUBMITTED:
        mark_running(job, pipeline, now)
    return _transition(job, JobState.SUCCEEDED, now)

def mark_failed(job: Job, error: Optional[str], now: Optional[datetime] = None) -> Job:
    """
    Execution failure. The job stays retriable until attempt_count reaches max_attempts.
    """
    job.last_error = error
    return _transition(job, JobState.FAILED, now, detail=error)

def reject_submission(job: Job, error: str, now: Optional[datetime] = None) -> Job:
    """
    The queue refused the spec. Recorded as a permanent failure without consuming an attempt.
    """
    if job.state not in (JobState.PENDING, JobState.FAILED):
        raise JobStateException(f"Job {job.id} is {job.state.value}, it was not waiting for submission")
    job.submission_rejected = True
    job.last_error = error
    job.state = JobState.FAILED
    job.history.append(JobTransition(state=JobState.FAILED, at=now or datetime.utcnow(), attempt=job.attempt_count, detail=error))
    return job

def cancel_job(job: Job, now: Optional[datetime] = None) -> Job:
    if job.is_final:
        return job
    return _transition(job, JobState.CANCELLED, now, detail="cancelled")
