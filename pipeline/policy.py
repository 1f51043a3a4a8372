"""
Purpose: Central configuration for shard-build pipelines (single source of truth).
What it does:

Stores all tunable thresholds/caps:

MAX_ATTEMPTS = 3

MAX_IN_FLIGHT_JOBS = 4 (shared across every shard pipeline)

MAX_PARALLEL_PIPELINES = 6

POLL_INITIAL_SEC = 15, POLL_MAX_SEC = 300, POLL_BACKOFF = 2.0

Rule: No logic here - just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class PipelinePolicy:
    """
    Central configuration for job scheduling.

    Notes:
    - the batch backend's submission rate is shared by every shard pipeline,
      so max_in_flight_jobs caps SUBMITTED + RUNNING jobs across all of them.
    - polls back off exponentially per job: initial, initial*factor, ... up to max.
    """

    # --- Retries ---
    max_attempts: int = 3

    # --- Shared batch backend ---
    max_in_flight_jobs: int = 4
    max_parallel_pipelines: int = 6

    # --- Polling ---
    poll_initial_sec: float = 15.0
    poll_max_sec: float = 300.0
    poll_backoff_factor: float = 2.0

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.max_in_flight_jobs < 1:
            raise ValueError("max_in_flight_jobs must be >= 1")
        if self.max_parallel_pipelines < 1:
            raise ValueError("max_parallel_pipelines must be >= 1")
        if self.poll_initial_sec <= 0 or self.poll_max_sec < self.poll_initial_sec:
            raise ValueError("need 0 < poll_initial_sec <= poll_max_sec")
        if self.poll_backoff_factor < 1.0:
            raise ValueError("poll_backoff_factor must be >= 1.0")


def default_pipeline_policy() -> PipelinePolicy:
    """
    Convenience factory for the default policy.
    """
    p = PipelinePolicy()
    p.validate()
    return p


def pipeline_policy_from_env() -> PipelinePolicy:
    """
    Reads overrides from the environment (or a .env file), e.g.
    PIPELINE_MAX_IN_FLIGHT_JOBS=8
    """
    load_dotenv()
    defaults = PipelinePolicy()
    p = PipelinePolicy(
        max_attempts=int(os.getenv("PIPELINE_MAX_ATTEMPTS", defaults.max_attempts)),
        max_in_flight_jobs=int(os.getenv("PIPELINE_MAX_IN_FLIGHT_JOBS", defaults.max_in_flight_jobs)),
        max_parallel_pipelines=int(os.getenv("PIPELINE_MAX_PARALLEL_PIPELINES", defaults.max_parallel_pipelines)),
        poll_initial_sec=float(os.getenv("PIPELINE_POLL_INITIAL_SEC", defaults.poll_initial_sec)),
        poll_max_sec=float(os.getenv("PIPELINE_POLL_MAX_SEC", defaults.poll_max_sec)),
        poll_backoff_factor=float(os.getenv("PIPELINE_POLL_BACKOFF", defaults.poll_backoff_factor)),
    )
    p.validate()
    return p
