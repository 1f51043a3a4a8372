"""
Rebuild routing graphs for one or more shards on the batch queue.

Usage:
    python scripts/run_pipelines.py --bucket my-osrm-bucket
    python scripts/run_pipelines.py --bucket my-osrm-bucket --shard slice_f_oceania --algorithm MLD
    python scripts/run_pipelines.py --bucket my-osrm-bucket --write-catalog shards/catalog/world.json

Every option falls back to the matching environment variable (or .env).
Exits 1 when any pipeline did not succeed.
"""

import logging
import os
import sys
from dataclasses import replace

import click
from dotenv import load_dotenv

from pipeline import (
    AlgorithmMode,
    AwsBatchQueueClient,
    JobSpecBuilder,
    PipelineOrchestrator,
    PipelineState,
    pipeline_policy_from_env,
)
from shards import ShardRegistry

logger = logging.getLogger("run_pipelines")

load_dotenv()


@click.command()
@click.option("--catalog", default=lambda: os.getenv("ROUTER_CATALOG_PATH") or None,
              type=click.Path(exists=True, dir_okay=False), help="Shard catalog (default: packaged world catalog)")
@click.option("--shard", "shard_ids", multiple=True, help="Shard id to rebuild; repeat for several (default: all)")
@click.option("--algorithm", default=lambda: os.getenv("ALGORITHM", "CH"),
              type=click.Choice([mode.value for mode in AlgorithmMode], case_sensitive=False))
@click.option("--bucket", default=lambda: os.getenv("S3_BUCKET"), required=True, help="S3 bucket holding slices/ and processed/")
@click.option("--profile", default=lambda: os.getenv("PROFILE", "bicycle_paved"), help="Routing profile for extract")
@click.option("--job-queue", default=lambda: os.getenv("JOB_QUEUE", "osrm-batch-queue"))
@click.option("--job-def", "job_definition", default=lambda: os.getenv("JOB_DEFINITION", "osrm-batch-job"))
@click.option("--region", default=lambda: os.getenv("AWS_REGION", "us-east-1"))
@click.option("--max-in-flight", type=int, default=None, help="Cap on SUBMITTED + RUNNING jobs across all shards")
@click.option("--write-catalog", type=click.Path(dir_okay=False), default=None,
              help="Save the catalog with updated readiness here when done")
def main(catalog, shard_ids, algorithm, bucket, profile, job_queue, job_definition, region, max_in_flight, write_catalog):
    """Run one graph-build pipeline per shard and report the outcome."""
    logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(message)s",
                        datefmt="%Y-%m-%d %H:%M:%S")

    registry = ShardRegistry.from_catalog_file(catalog)
    policy = pipeline_policy_from_env()
    if max_in_flight is not None:
        policy = replace(policy, max_in_flight_jobs=max_in_flight)

    orchestrator = PipelineOrchestrator(
        queue=AwsBatchQueueClient(region=region),
        registry=registry,
        spec_builder=JobSpecBuilder(bucket, job_queue=job_queue, job_definition=job_definition, profile=profile),
        policy=policy,
    )

    targets = list(shard_ids) or sorted(shard.id for shard in registry.shards())
    logger.info("Building %d shard(s) with %s: %s", len(targets), algorithm.upper(), ", ".join(targets))
    pipelines = orchestrator.run_pipelines(targets, AlgorithmMode(algorithm.upper()))

    failed = 0
    for pipeline in pipelines:
        line = f"{pipeline.shard_id}: {pipeline.state.value}"
        if pipeline.state == PipelineState.SUCCEEDED:
            line += f" -> {pipeline.artifact_location}"
        else:
            failed += 1
            if pipeline.failure is not None:
                line += f" ({pipeline.failure})"
        click.echo(line)

    if write_catalog:
        registry.save_catalog(write_catalog)
        logger.info("Catalog written to %s", write_catalog)

    if failed:
        logger.error("%d of %d pipeline(s) did not succeed", failed, len(pipelines))
        sys.exit(1)


if __name__ == "__main__":
    main()
