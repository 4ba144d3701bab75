"""Command line entry point: ``pathfinder worker | stats | pause | resume | clean``."""

import importlib
import json
import signal
import threading

import click

from pathfinder.core import CoreConfig
from pathfinder.jobs import BackendType, JobType, QueueManager
from pathfinder.routing import (
    GoogleDirectionsProvider,
    InMemoryCacheStore,
    InMemoryRouteRepository,
    QueueNotifier,
    RedisCacheStore,
    RouteCache,
    RouteOptimizationConsumer,
    RouteRepository,
    RouteService,
)

JOB_TYPES = click.Choice([t.value for t in JobType])


def load_object(path: str):
    """Import ``package.module:attribute``."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise click.BadParameter(f"Expected 'package.module:attribute', got {path!r}")
    try:
        return getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(f"Cannot load {path!r}: {e}") from e


@click.group()
@click.option(
    "--backend",
    type=click.Choice([b.value for b in BackendType]),
    default=None,
    help="Queue backend. Defaults to PATHFINDER_QUEUE__BACKEND.",
)
@click.pass_context
def main(ctx, backend: str | None):
    """Pathfinder route optimization queues."""
    ctx.obj = {"backend": backend}


def _manager(ctx) -> QueueManager:
    return QueueManager(backend=ctx.obj["backend"])


@main.command()
@click.option("-c", "--concurrency", type=click.IntRange(min=1), default=1, show_default=True, help="Consumer threads")
@click.option(
    "--repository",
    "repository_path",
    default=None,
    help="Route store factory as 'package.module:callable'. Defaults to an in-memory store.",
)
@click.option("--burst", is_flag=True, help="Process the jobs currently queued, then exit.")
@click.pass_context
def worker(ctx, concurrency: int, repository_path: str | None, burst: bool):
    """Run route optimization consumers."""
    if repository_path is None:
        repository: RouteRepository = InMemoryRouteRepository()
        click.echo("No --repository given; optimized routes are kept in memory only.", err=True)
    else:
        repository = load_object(repository_path)()
    manager = _manager(ctx)
    config = CoreConfig()

    provider = GoogleDirectionsProvider()
    if manager.backend == BackendType.REDIS:
        store = RedisCacheStore(url=config["PATHFINDER_REDIS"]["URL"])
    else:
        store = InMemoryCacheStore()
    service = RouteService(RouteCache(provider, store), repository)
    consumer = RouteOptimizationConsumer(service, QueueNotifier(manager))
    consumer.connect_to_manager(manager)

    try:
        if burst:
            processed = consumer.consume(block=False)
            click.echo(f"Processed {processed} job(s).")
            return

        stopped = threading.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, lambda *_: stopped.set())
        consumer.start(concurrency)
        click.echo(f"Worker started with {concurrency} thread(s). Press Ctrl+C to stop.")
        stopped.wait()
        click.echo("Shutting down...")
        consumer.stop(timeout=float(config["PATHFINDER_QUEUE"]["SHUTDOWN_TIMEOUT"]))
    finally:
        manager.close()


@main.command()
@click.argument("job_type", type=JOB_TYPES, required=False)
@click.pass_context
def stats(ctx, job_type: str | None):
    """Print queue statistics as JSON."""
    manager = _manager(ctx)
    try:
        if job_type is None:
            data = {name: s.model_dump() for name, s in manager.check_health().items()}
        else:
            data = manager.get_stats(job_type).model_dump()
    finally:
        manager.close(timeout=0)
    click.echo(json.dumps(data, indent=2))


@main.command()
@click.argument("job_type", type=JOB_TYPES, default=JobType.ROUTE_OPTIMIZATION.value)
@click.pass_context
def pause(ctx, job_type: str):
    """Stop handing out jobs from a queue."""
    manager = _manager(ctx)
    try:
        manager.pause_queue(job_type)
    finally:
        manager.close(timeout=0)
    click.echo(f"Paused queue {job_type}")


@main.command()
@click.argument("job_type", type=JOB_TYPES, default=JobType.ROUTE_OPTIMIZATION.value)
@click.pass_context
def resume(ctx, job_type: str):
    """Resume a paused queue."""
    manager = _manager(ctx)
    try:
        manager.resume_queue(job_type)
    finally:
        manager.close(timeout=0)
    click.echo(f"Resumed queue {job_type}")


@main.command()
@click.argument("job_type", type=JOB_TYPES, default=JobType.ROUTE_OPTIMIZATION.value)
@click.option("--max-age", type=float, default=None, help="Seconds. Defaults to PATHFINDER_QUEUE__CLEAN_MAX_AGE.")
@click.pass_context
def clean(ctx, job_type: str, max_age: float | None):
    """Remove finished jobs older than --max-age."""
    manager = _manager(ctx)
    try:
        removed = manager.clean_completed_jobs(job_type, max_age)
    finally:
        manager.close(timeout=0)
    click.echo(f"Removed {removed} job(s) from queue {job_type}")


if __name__ == "__main__":
    main()
