#Marks pipeline as a package.
#Re-exports the shard graph-build API (orchestrator, job specs, queue adapters, models).
#No business logic.

from .models import AlgorithmMode, Job, JobKind, JobState, Pipeline, PipelineState
from .errors import JobFailedPermanent, JobPollError, JobSubmissionError, PipelineError, QueueUnavailable
from .policy import PipelinePolicy, default_pipeline_policy, pipeline_policy_from_env
from .jobspec import JobSpec, JobSpecBuilder
from .queue_client import AwsBatchQueueClient, JobQueueClient, QueueJobStatus
from .orchestrator import PipelineOrchestrator

__all__ = [
    "AlgorithmMode",
    "Job",
    "JobKind",
    "JobState",
    "Pipeline",
    "PipelineState",
    "JobFailedPermanent",
    "JobSubmissionError",
    "PipelineError",
    "PipelinePolicy",
    "default_pipeline_policy",
    "pipeline_policy_from_env",
    "JobSpec",
    "JobSpecBuilder",
    "AwsBatchQueueClient",
    "JobQueueClient",
    "QueueJobStatus",
    "PipelineOrchestrator",
]
