"""
Purpose: Orchestrator for shard graph builds (the "glue").
What it does:
Builds one pipeline (a small DAG of batch jobs) per shard, then drives every
pipeline from a single scheduler loop:
- submits jobs whose dependencies have SUCCEEDED
- polls in-flight jobs when due, backing off per job
- retries failed executions until max_attempts
- keeps the shared batch backend under max_in_flight_jobs
- reports each finished pipeline to the shard registry

A pipeline failure stays inside that pipeline: siblings keep running and
already-promoted shards are never rolled back.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Union

from pipeline.errors import JobFailedPermanent, JobPollError, JobSubmissionError, PipelineError, QueueUnavailable
from pipeline.jobspec import JobSpecBuilder
from pipeline.models import STAGES, AlgorithmMode, Job, JobState, Pipeline, PipelineState
from pipeline.policy import PipelinePolicy, default_pipeline_policy
from pipeline.queue_client import JobQueueClient
from pipeline.state_machines.job_state import (
    cancel_job,
    mark_failed,
    mark_running,
    mark_succeeded,
    reject_submission,
    submit_job,
)
from routing.errors import BackendTimeout
from shards.registry import ShardRegistry

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    def __init__(
        self,
        queue: JobQueueClient,
        registry: ShardRegistry,
        spec_builder: JobSpecBuilder,
        policy: Optional[PipelinePolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.queue = queue
        self.registry = registry
        self.spec_builder = spec_builder
        self.policy = policy or default_pipeline_policy()
        self.policy.validate()
        self.clock = clock
        self.sleep = sleep

        self._lock = threading.Lock()
        self._pipelines: Dict[str, Pipeline] = {}

    # --- Building ---

    def build_pipeline(self, shard_id: str, mode: Union[AlgorithmMode, str] = AlgorithmMode.CH) -> Pipeline:
        """
        CH:  extract -> contract
        MLD: extract -> partition -> customize
        """
        shard = self.registry.get(shard_id)
        mode = AlgorithmMode(mode)

        pipeline = Pipeline(id=Pipeline.new_id(shard_id), shard_id=shard_id, algorithm_mode=mode)
        previous: Optional[Job] = None
        for kind in STAGES[mode]:
            previous = pipeline.add_job(
                kind,
                depends_on=[previous] if previous else None,
                max_attempts=self.policy.max_attempts,
            )
        pipeline.output_location = self.spec_builder.output_location_for(pipeline)
        pipeline.artifact_location = self.spec_builder.artifact_location(shard, pipeline)

        with self._lock:
            self._pipelines[pipeline.id] = pipeline
        return pipeline

    def get(self, pipeline_id: str) -> Pipeline:
        with self._lock:
            try:
                return self._pipelines[pipeline_id]
            except KeyError:
                raise PipelineError(f"unknown pipeline {pipeline_id!r}") from None

    def cancel(self, pipeline_id: str) -> Pipeline:
        """
        Safe to call from any thread. The scheduler loop cancels the jobs on its next tick.
        """
        pipeline = self.get(pipeline_id)
        with self._lock:
            pipeline.cancel_requested = True
        logger.info("Cancellation requested for pipeline %s", pipeline_id)
        return pipeline

    # --- Running ---

    def run_pipeline(self, shard_id: str, mode: Union[AlgorithmMode, str] = AlgorithmMode.CH) -> Pipeline:
        return self.run_pipelines([shard_id], mode)[0]

    def run_pipelines(self, shard_ids: Iterable[str], mode: Union[AlgorithmMode, str] = AlgorithmMode.CH) -> List[Pipeline]:
        pipelines = [self.build_pipeline(shard_id, mode) for shard_id in shard_ids]
        self.run(pipelines)
        return pipelines

    def run(self, pipelines: List[Pipeline]) -> None:
        """
        Blocks until every pipeline is SUCCEEDED, FAILED or CANCELLED.
        """
        waiting = list(pipelines)
        active: List[Pipeline] = []

        while waiting or active:
            # 1. Pipelines cancelled before they were admitted never touch the registry
            for pipeline in [p for p in waiting if self._cancel_requested(p)]:
                self._cancel_jobs(pipeline)
                pipeline.finished_at = datetime.utcnow()
                waiting.remove(pipeline)
                logger.info("Pipeline %s cancelled before it started", pipeline.id)

            # 2. Admit up to max_parallel_pipelines
            while waiting and len(active) < self.policy.max_parallel_pipelines:
                pipeline = waiting.pop(0)
                self._start(pipeline)
                active.append(pipeline)

            now = self.clock()
            for pipeline in active:
                if self._cancel_requested(pipeline):
                    self._cancel_jobs(pipeline)
                else:
                    self._poll_due(pipeline, now)

            self._fire_ready(active, now)

            for pipeline in [p for p in active if p.is_finished]:
                self._finish(pipeline)
                active.remove(pipeline)

            if not active:
                continue

            wake_at = self._next_wake(active)
            if wake_at is None:
                raise PipelineError(f"scheduler stalled with {[p.id for p in active]} unfinished")
            delay = wake_at - self.clock()
            if delay > 0:
                self.sleep(delay)

    # --- Internals ---

    def _cancel_requested(self, pipeline: Pipeline) -> bool:
        with self._lock:
            return pipeline.cancel_requested

    def _start(self, pipeline: Pipeline) -> None:
        self.registry.begin_build(pipeline.shard_id)
        logger.info(
            "Starting pipeline %s (%s) for shard %s -> %s",
            pipeline.id,
            pipeline.algorithm_mode.value,
            pipeline.shard_id,
            pipeline.output_location,
        )

    def _in_flight_count(self, active: List[Pipeline]) -> int:
        return sum(len(pipeline.in_flight_jobs()) for pipeline in active)

    def _schedule_poll(self, job: Job, now: float) -> None:
        if job.poll_interval <= 0:
            job.poll_interval = self.policy.poll_initial_sec
        else:
            job.poll_interval = min(self.policy.poll_max_sec, job.poll_interval * self.policy.poll_backoff_factor)
        job.next_poll_at = now + job.poll_interval

    def _fire_ready(self, active: List[Pipeline], now: float) -> None:
        in_flight = self._in_flight_count(active)
        for pipeline in active:
            for job in pipeline.ready_jobs():
                if in_flight >= self.policy.max_in_flight_jobs:
                    return
                if job.next_poll_at > now:
                    continue
                if self._submit(pipeline, job, now):
                    in_flight += 1
                if pipeline.is_finished:
                    break

    def _submit(self, pipeline: Pipeline, job: Job, now: float) -> bool:
        shard = self.registry.get(pipeline.shard_id)
        try:
            spec = self.spec_builder.build(job, pipeline, shard)
        except ValueError as exc:
            self._reject(pipeline, job, JobSubmissionError(job.id, str(exc), code="InvalidJobSpec"))
            return False

        try:
            queue_job_id = self.queue.submit(spec)
        except JobSubmissionError as exc:
            self._reject(pipeline, job, exc)
            return False
        except (BackendTimeout, QueueUnavailable) as exc:
            logger.warning("Submitting %s failed for now, retrying next tick: %s", job.id, exc)
            job.next_poll_at = now + self.policy.poll_initial_sec
            return False

        submit_job(job, pipeline, queue_job_id)
        job.poll_interval = 0.0
        self._schedule_poll(job, now)
        logger.info("Job %s submitted as %s (attempt %d/%d)", job.id, queue_job_id, job.attempt_count, job.max_attempts)
        return True

    def _reject(self, pipeline: Pipeline, job: Job, error: JobSubmissionError) -> None:
        reject_submission(job, str(error))
        pipeline.failure = error
        logger.error("Job %s rejected by the queue, pipeline %s halted: %s", job.id, pipeline.id, error)

    def _poll_due(self, pipeline: Pipeline, now: float) -> None:
        for job in pipeline.in_flight_jobs():
            if job.next_poll_at > now:
                continue
            try:
                status = self.queue.poll(job.queue_job_id)
            except (BackendTimeout, QueueUnavailable) as exc:
                logger.warning("Polling %s failed for now, retrying next tick: %s", job.id, exc)
                self._schedule_poll(job, now)
                continue
            except JobPollError as exc:
                # the queue lost track of this attempt; stop it before any resubmission
                logger.error("Job %s cannot be polled: %s", job.id, exc)
                self._terminate(job)
                self._job_failed(pipeline, job, str(exc))
                continue

            if status.state == JobState.SUBMITTED:
                self._schedule_poll(job, now)
            elif status.state == JobState.RUNNING:
                if job.state == JobState.SUBMITTED:
                    mark_running(job, pipeline)
                    job.poll_interval = 0.0
                    logger.info("Job %s running", job.id)
                self._schedule_poll(job, now)
            elif status.state == JobState.SUCCEEDED:
                mark_succeeded(job, pipeline)
                logger.info("Job %s succeeded on attempt %d", job.id, job.attempt_count)
            elif status.state == JobState.FAILED:
                self._job_failed(pipeline, job, status.reason)

    def _job_failed(self, pipeline: Pipeline, job: Job, reason: Optional[str]) -> None:
        mark_failed(job, reason)
        if job.exhausted:
            pipeline.failure = JobFailedPermanent(
                job_id=job.id,
                kind=job.kind.value,
                shard_id=job.shard_id,
                attempts=job.attempt_count,
                error=reason,
            )
            logger.error("Job %s failed permanently: %s", job.id, pipeline.failure)
        else:
            logger.warning(
                "Job %s failed (attempt %d/%d), retrying: %s", job.id, job.attempt_count, job.max_attempts, reason
            )

    def _terminate(self, job: Job, reason: str = "status unreadable") -> None:
        try:
            self.queue.cancel(job.queue_job_id, reason)
        except BackendTimeout as exc:
            logger.warning("Could not cancel %s in the queue: %s", job.queue_job_id, exc)

    def _cancel_jobs(self, pipeline: Pipeline) -> None:
        for job in pipeline.jobs.values():
            if job.is_final:
                continue
            if job.is_in_flight and job.queue_job_id:
                self._terminate(job, f"pipeline {pipeline.id} stopped")
            cancel_job(job)

    def _finish(self, pipeline: Pipeline) -> None:
        pipeline.finished_at = datetime.utcnow()
        state = pipeline.state

        if state == PipelineState.SUCCEEDED:
            self.registry.promote(pipeline.shard_id, pipeline.artifact_location)
            logger.info("Pipeline %s succeeded", pipeline.id)
            return

        if state == PipelineState.FAILED:
            # leftover jobs of a failed pipeline will never run
            self._cancel_jobs(pipeline)
            if pipeline.failure is None:
                job = pipeline.failed_job()
                pipeline.failure = JobFailedPermanent(job.id, job.kind.value, job.shard_id, job.attempt_count, job.last_error)
            self.registry.record_failure(pipeline.shard_id, str(pipeline.failure))
            logger.error("Pipeline %s failed: %s", pipeline.id, pipeline.failure)
            return

        self.registry.record_cancellation(pipeline.shard_id, f"build {pipeline.id} cancelled")
        logger.info("Pipeline %s cancelled", pipeline.id)

    def _next_wake(self, active: List[Pipeline]) -> Optional[float]:
        if any(self._cancel_requested(pipeline) for pipeline in active):
            return self.clock()
        wake_times = [job.next_poll_at for pipeline in active for job in pipeline.in_flight_jobs()]
        if self._in_flight_count(active) < self.policy.max_in_flight_jobs:
            wake_times.extend(job.next_poll_at for pipeline in active for job in pipeline.ready_jobs())
        if not wake_times:
            return None
        return min(wake_times)
