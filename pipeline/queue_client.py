"""
Purpose: Adapter between the pipeline scheduler and the batch job queue.
What it does:
- JobQueueClient: the three calls the scheduler needs (submit, poll, cancel)
- AwsBatchQueueClient: the same calls over boto3's "batch" client

Rule: Maps backend statuses and errors onto pipeline terms. No scheduling here.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ParamValidationError,
    ReadTimeoutError,
)

from pipeline.errors import JobPollError, JobSubmissionError, QueueUnavailable
from pipeline.jobspec import JobSpec
from pipeline.models import JobState
from routing.errors import BackendTimeout

logger = logging.getLogger(__name__)

# AWS Batch status -> job state. Everything before the container starts counts as queued.
BATCH_STATUS_MAP = {
    "SUBMITTED": JobState.SUBMITTED,
    "PENDING": JobState.SUBMITTED,
    "RUNNABLE": JobState.SUBMITTED,
    "STARTING": JobState.SUBMITTED,
    "RUNNING": JobState.RUNNING,
    "SUCCEEDED": JobState.SUCCEEDED,
    "FAILED": JobState.FAILED,
}

# error codes the queue returns when it is overloaded rather than refusing the request
TRANSIENT_ERROR_CODES = frozenset({
    "TooManyRequestsException",
    "ThrottlingException",
    "Throttling",
    "RequestLimitExceeded",
    "ServerException",
})


def is_transient(exc: ClientError) -> bool:
    error = exc.response.get("Error", {})
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
    return error.get("Code") in TRANSIENT_ERROR_CODES or status >= 500


@dataclass(frozen=True)
class QueueJobStatus:
    state: JobState
    reason: Optional[str] = None


class JobQueueClient(ABC):
    @abstractmethod
    def submit(self, spec: JobSpec) -> str:
        """
        Returns the queue's job id. Raises JobSubmissionError when the spec is refused,
        QueueUnavailable when the queue is too busy to take it now.
        """

    @abstractmethod
    def poll(self, queue_job_id: str) -> QueueJobStatus:
        """
        Non-blocking status check. Raises QueueUnavailable when the queue is busy
        and JobPollError when it cannot report on this job.
        """

    @abstractmethod
    def cancel(self, queue_job_id: str, reason: str) -> bool:
        """Best effort. False when the queue no longer knows the job."""


class AwsBatchQueueClient(JobQueueClient):
    def __init__(self, region: str = "us-east-1", client: Any = None, timeout: float = 10.0):
        self.region = region
        self.timeout = timeout
        if client is None:
            config = BotoConfig(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"max_attempts": 2, "mode": "standard"},
            )
            client = boto3.session.Session().client("batch", region_name=region, config=config)
        self.client = client

    @property
    def endpoint(self) -> str:
        return f"batch.{self.region}"

    def submit(self, spec: JobSpec) -> str:
        try:
            spec.validate()
        except ValueError as exc:
            raise JobSubmissionError(spec.job_name, str(exc), code="InvalidJobSpec") from exc

        try:
            response = self.client.submit_job(
                jobName=spec.job_name,
                jobQueue=spec.job_queue,
                jobDefinition=spec.job_definition,
                containerOverrides=spec.container_overrides(),
            )
        except (ConnectTimeoutError, ReadTimeoutError, EndpointConnectionError) as exc:
            raise BackendTimeout(self.endpoint, self.timeout) from exc
        except ParamValidationError as exc:
            raise JobSubmissionError(spec.job_name, str(exc), code="ParamValidation") from exc
        except ClientError as exc:
            error = exc.response.get("Error", {})
            if is_transient(exc):
                raise QueueUnavailable("submit_job", error.get("Message", str(exc)), code=error.get("Code")) from exc
            raise JobSubmissionError(
                spec.job_name, error.get("Message", str(exc)), code=error.get("Code")
            ) from exc

        job_id = response["jobId"]
        logger.info("Submitted %s to %s as %s", spec.job_name, spec.job_queue, job_id)
        return job_id

    def poll(self, queue_job_id: str) -> QueueJobStatus:
        try:
            response = self.client.describe_jobs(jobs=[queue_job_id])
        except (ConnectTimeoutError, ReadTimeoutError, EndpointConnectionError) as exc:
            raise BackendTimeout(self.endpoint, self.timeout) from exc
        except ClientError as exc:
            error = exc.response.get("Error", {})
            if is_transient(exc):
                raise QueueUnavailable("describe_jobs", error.get("Message", str(exc)), code=error.get("Code")) from exc
            raise JobPollError(queue_job_id, error.get("Message", str(exc)), code=error.get("Code")) from exc

        jobs = response.get("jobs", [])
        if not jobs:
            return QueueJobStatus(JobState.FAILED, reason=f"job {queue_job_id} not found in queue")

        description = jobs[0]
        state = BATCH_STATUS_MAP.get(description.get("status"))
        if state is None:
            raise JobPollError(queue_job_id, f"unexpected batch status {description.get('status')!r}")

        reason = description.get("statusReason")
        if state == JobState.FAILED:
            container_reason = (description.get("container") or {}).get("reason")
            reason = container_reason or reason
        return QueueJobStatus(state, reason=reason)

    def cancel(self, queue_job_id: str, reason: str) -> bool:
        # terminate_job also cancels jobs that have not started yet
        try:
            self.client.terminate_job(jobId=queue_job_id, reason=reason)
        except (ConnectTimeoutError, ReadTimeoutError, EndpointConnectionError) as exc:
            raise BackendTimeout(self.endpoint, self.timeout) from exc
        except ClientError as exc:
            logger.warning("Could not cancel %s: %s", queue_job_id, exc)
            return False
        return True
