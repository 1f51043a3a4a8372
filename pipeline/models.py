"""
Purpose: Domain models for the graph-build pipeline.
What it does:
- Defines core data structures:
- Job (id, kind, shard, state, dependencies, attempts, queue job id, history)
- Pipeline (one shard-build run: a DAG of Jobs keyed by stable ids)

Defines enums/constants:
- JobKind = EXTRACT | PARTITION | CONTRACT | CUSTOMIZE
- JobState = PENDING | SUBMITTED | RUNNING | SUCCEEDED | FAILED | CANCELLED
- AlgorithmMode = CH | MLD
- PipelineState = PENDING | RUNNING | SUCCEEDED | FAILED | CANCELLED

Rule: No queue calls, no scheduling logic. Models only.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional


class JobKind(str, Enum):
    # values are the engine tool operation names (OSRM_OPERATION)
    EXTRACT = "extract"
    PARTITION = "partition"
    CONTRACT = "contract"
    CUSTOMIZE = "customize"


class JobState(str, Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class AlgorithmMode(str, Enum):
    """
    CH: extract -> contract
    MLD: extract -> partition -> customize
    """
    CH = "CH"
    MLD = "MLD"


class PipelineState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


STAGES: Dict[AlgorithmMode, List[JobKind]] = {
    AlgorithmMode.CH: [JobKind.EXTRACT, JobKind.CONTRACT],
    AlgorithmMode.MLD: [JobKind.EXTRACT, JobKind.PARTITION, JobKind.CUSTOMIZE],
}


@dataclass(frozen=True)
class JobTransition:
    state: JobState
    at: datetime
    attempt: int
    detail: Optional[str] = None


@dataclass
class Job:
    """
    One unit of batch work in a shard build.
    """
    id: str
    kind: JobKind
    shard_id: str
    dependencies: FrozenSet[str] = frozenset()
    max_attempts: int = 3

    state: JobState = JobState.PENDING
    attempt_count: int = 0
    queue_job_id: Optional[str] = None
    last_error: Optional[str] = None

    # the queue rejected the spec; never retried
    submission_rejected: bool = False

    # polling backoff (monotonic clock seconds)
    next_poll_at: float = 0.0
    poll_interval: float = 0.0

    history: List[JobTransition] = field(default_factory=list)

    @property
    def is_in_flight(self) -> bool:
        return self.state in (JobState.SUBMITTED, JobState.RUNNING)

    @property
    def exhausted(self) -> bool:
        """FAILED for good: out of attempts or rejected by the queue."""
        return self.state == JobState.FAILED and (
            self.submission_rejected or self.attempt_count >= self.max_attempts
        )

    @property
    def retriable(self) -> bool:
        return self.state == JobState.FAILED and not self.exhausted

    @property
    def is_final(self) -> bool:
        return self.state in (JobState.SUCCEEDED, JobState.CANCELLED) or self.exhausted


@dataclass
class Pipeline:
    """
    One shard-build run. Jobs are kept in insertion (topological) order.
    """
    id: str
    shard_id: str
    algorithm_mode: AlgorithmMode
    jobs: Dict[str, Job] = field(default_factory=dict)

    # versioned output prefix and the graph file the shard will serve
    output_location: Optional[str] = None
    artifact_location: Optional[str] = None

    cancel_requested: bool = False
    failure: Optional[Exception] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    @staticmethod
    def new_id(shard_id: str) -> str:
        return f"{shard_id}-{datetime.utcnow():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6]}"

    def add_job(self, kind: JobKind, depends_on: Optional[List[Job]] = None, max_attempts: int = 3) -> Job:
        job = Job(
            id=f"{self.id}:{kind.value}",
            kind=kind,
            shard_id=self.shard_id,
            dependencies=frozenset(dep.id for dep in depends_on or []),
            max_attempts=max_attempts,
        )
        if job.id in self.jobs:
            raise ValueError(f"duplicate job {job.id}")
        self.jobs[job.id] = job
        return job

    def dependents(self, job_id: str) -> List[Job]:
        return [job for job in self.jobs.values() if job_id in job.dependencies]

    def terminal_jobs(self) -> List[Job]:
        """Jobs nothing depends on (the DAG's sinks)."""
        return [job for job in self.jobs.values() if not self.dependents(job.id)]

    def dependencies_succeeded(self, job: Job) -> bool:
        return all(self.jobs[dep].state == JobState.SUCCEEDED for dep in job.dependencies)

    def ready_jobs(self) -> List[Job]:
        """Jobs that may be (re)submitted now."""
        if self.is_finished or self.cancel_requested:
            return []
        return [
            job for job in self.jobs.values()
            if (job.state == JobState.PENDING or job.retriable) and self.dependencies_succeeded(job)
        ]

    def in_flight_jobs(self) -> List[Job]:
        return [job for job in self.jobs.values() if job.is_in_flight]

    def failed_job(self) -> Optional[Job]:
        for job in self.jobs.values():
            if job.exhausted:
                return job
        return None

    @property
    def state(self) -> PipelineState:
        if self.failed_job() is not None:
            return PipelineState.FAILED
        if self.jobs and all(job.state == JobState.SUCCEEDED for job in self.terminal_jobs()):
            return PipelineState.SUCCEEDED
        if self.cancel_requested and all(job.is_final for job in self.jobs.values()):
            return PipelineState.CANCELLED
        if any(job.attempt_count > 0 for job in self.jobs.values()):
            return PipelineState.RUNNING
        return PipelineState.PENDING

    @property
    def is_finished(self) -> bool:
        return self.state in (PipelineState.SUCCEEDED, PipelineState.FAILED, PipelineState.CANCELLED)

    def raise_for_state(self) -> None:
        """Re-raise the failure that stopped this pipeline, if any."""
        if self.failure is not None:
            raise self.failure
