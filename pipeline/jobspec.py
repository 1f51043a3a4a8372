"""
Purpose: Typed job specifications for the batch backend.
What it does:
- JobSpec: everything one container run needs (name, queue, definition,
  operation, input, output prefix, extra parameters), validated up front
  so a bad spec fails before it reaches the queue.
- JobSpecBuilder: derives the spec of each pipeline job from the shard
  and the build's versioned output prefix.

Rule: No queue calls here.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pipeline.models import Job, JobKind, Pipeline
from shards.models import Shard

JOB_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,127}$")

OSM_SUFFIX = ".osm.pbf"
GRAPH_SUFFIX = ".osrm"

REQUIRED_PARAMETERS: Dict[JobKind, tuple] = {
    JobKind.EXTRACT: ("PROFILE",),
    JobKind.PARTITION: (),
    JobKind.CONTRACT: (),
    JobKind.CUSTOMIZE: ("OSRM_FILE_BASE",),
}


@dataclass(frozen=True)
class JobSpec:
    job_name: str
    job_queue: str
    job_definition: str
    kind: JobKind
    input_location: str
    output_location: str
    parameters: Dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        if not JOB_NAME_RE.match(self.job_name):
            raise ValueError(
                f"invalid job name {self.job_name!r}: up to 128 letters, digits, hyphens and underscores"
            )
        if not self.job_queue:
            raise ValueError("job_queue is required")
        if not self.job_definition:
            raise ValueError("job_definition is required")
        if not self.output_location.startswith("s3://") or not self.output_location.endswith("/"):
            raise ValueError(f"output location must be an s3:// directory ending in '/': {self.output_location}")
        if not self.input_location.startswith(("s3://", "http://", "https://")):
            raise ValueError(f"input location must be s3:// or http(s)://: {self.input_location}")
        missing = [name for name in REQUIRED_PARAMETERS[self.kind] if not self.parameters.get(name)]
        if missing:
            raise ValueError(f"{self.kind.value} job {self.job_name} is missing {', '.join(missing)}")

    def environment(self) -> List[Dict[str, str]]:
        """Container environment in the shape the batch API expects."""
        env = {"OSRM_OPERATION": self.kind.value}
        # extract reads raw map data, every later stage reads the graph
        if self.kind == JobKind.EXTRACT:
            env["OSM_FILE"] = self.input_location
        else:
            env["OSRM_FILE"] = self.input_location
        env.update(self.parameters)
        env["OSRM_OUTPUT_DIR"] = self.output_location
        return [{"name": k, "value": str(v)} for k, v in env.items()]

    def container_overrides(self) -> Dict[str, list]:
        return {"environment": self.environment()}


def graph_base_name(input_location: str) -> str:
    """monaco-latest.osm.pbf -> monaco-latest"""
    name = posixpath.basename(input_location.rstrip("/"))
    if name.endswith(OSM_SUFFIX):
        return name[: -len(OSM_SUFFIX)]
    return name.split(".", 1)[0]


class JobSpecBuilder:
    """
    Builds specs for every job of a shard pipeline.

    Layout (same bucket as the slicing step):
      s3://<bucket>/slices/<shard>.osm.pbf            raw input (unless the shard names a source)
      s3://<bucket>/processed/<shard>/<pipeline id>/  one fresh prefix per build
    """

    def __init__(
        self,
        bucket: str,
        job_queue: str = "osrm-batch-queue",
        job_definition: str = "osrm-batch-job",
        profile: str = "bicycle_paved",
    ):
        if not bucket:
            raise ValueError("bucket is required")
        self.bucket = bucket.replace("s3://", "").strip("/")
        self.job_queue = job_queue
        self.job_definition = job_definition
        self.profile = profile

    def input_location_for(self, shard: Shard) -> str:
        return shard.source_location or f"s3://{self.bucket}/slices/{shard.id}{OSM_SUFFIX}"

    def output_location_for(self, pipeline: Pipeline) -> str:
        return f"s3://{self.bucket}/processed/{pipeline.shard_id}/{pipeline.id}/"

    def artifact_location(self, shard: Shard, pipeline: Pipeline) -> str:
        base = graph_base_name(self.input_location_for(shard))
        return f"{self.output_location_for(pipeline)}{base}{GRAPH_SUFFIX}"

    def build(self, job: Job, pipeline: Pipeline, shard: Shard, attempt: Optional[int] = None) -> JobSpec:
        output = self.output_location_for(pipeline)
        artifact = self.artifact_location(shard, pipeline)
        attempt = attempt if attempt is not None else job.attempt_count + 1

        parameters: Dict[str, str] = {}
        if job.kind == JobKind.EXTRACT:
            input_location = self.input_location_for(shard)
            parameters["PROFILE"] = self.profile
            parameters["ALGORITHM"] = pipeline.algorithm_mode.value
        else:
            input_location = artifact
        if job.kind == JobKind.CUSTOMIZE:
            parameters["OSRM_FILE_BASE"] = artifact[: -len(GRAPH_SUFFIX)]

        spec = JobSpec(
            job_name=f"osrm-{job.kind.value}-{pipeline.id}-{attempt}",
            job_queue=self.job_queue,
            job_definition=self.job_definition,
            kind=job.kind,
            input_location=input_location,
            output_location=output,
            parameters=parameters,
        )
        spec.validate()
        return spec
