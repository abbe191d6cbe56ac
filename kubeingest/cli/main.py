"""kubeingest command-line interface."""

from __future__ import annotations

import asyncio
import json

import click

from kubeingest import __version__
from kubeingest.config import load_config
from kubeingest.errors import ConfigError, CycleFatalError
from kubeingest.fetcher import ResourceFetcher
from kubeingest.locator import build_cluster_locator
from kubeingest.locator.cluster_locator import ClusterLocator
from kubeingest.models.config import KubeIngestConfig
from kubeingest.observability.logging import setup_logging
from kubeingest.scheduler import IngestionScheduler
from kubeingest.sink import InMemoryCatalogSink, build_sink


def _load() -> KubeIngestConfig:
    try:
        config = load_config()
    except (ConfigError, ValueError) as exc:
        raise click.ClickException(f"invalid configuration: {exc}") from exc
    setup_logging(config.log.level)
    return config


def _locator(config: KubeIngestConfig) -> ClusterLocator:
    return build_cluster_locator(
        definitions=config.clusters,
        discovery_config=config.discovery,
        allowed_cluster_names=config.allowed_cluster_names,
    )


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """kubeingest - Kubernetes custom resources into a developer catalog."""


@cli.command("run")
def run() -> None:
    """Run the scheduler and the read API until SIGTERM/SIGINT."""
    from kubeingest.app import main

    asyncio.run(main())


@cli.command("once")
@click.option(
    "--deliver/--no-deliver",
    default=False,
    help="Send deltas to the configured sink instead of an in-memory one.",
)
@click.option("--full", is_flag=True, help="Print full deltas instead of counts.")
def once(deliver: bool, full: bool) -> None:
    """Run one cycle per cluster and print the resulting deltas as JSON."""
    config = _load()
    sched = config.scheduler
    scheduler = IngestionScheduler(
        locator=_locator(config),
        fetcher=ResourceFetcher(
            page_size=sched.page_size,
            kind_timeout=sched.kind_timeout_seconds,
            request_timeout=sched.request_timeout_seconds,
        ),
        sink=build_sink(config.sink) if deliver else InMemoryCatalogSink(),
        config=config,
    )
    try:
        results = asyncio.run(scheduler.run_once())
    except CycleFatalError as exc:
        raise click.ClickException(str(exc)) from exc

    report = []
    failed = False
    for result in results:
        failed = failed or result.state.value == "failed"
        delta = result.delta
        report.append(
            {
                "cluster": result.cluster.name,
                "state": result.state.value,
                "entities": len(result.entities),
                "graphs": len(result.graphs),
                "errors": [
                    {"scope": e.scope.value, "subject": e.subject, "cause": e.cause} for e in result.errors
                ],
                "delta": (delta.to_dict() if full else delta.summary()) if delta else None,
            }
        )
    click.echo(json.dumps(report, indent=2, sort_keys=True, default=str))
    if failed:
        raise SystemExit(1)


@cli.command("clusters")
def clusters() -> None:
    """List the clusters that would be ingested, without credentials."""
    config = _load()
    try:
        resolved = asyncio.run(_locator(config).resolve_clusters())
    except CycleFatalError as exc:
        raise click.ClickException(str(exc)) from exc

    if not resolved:
        click.echo("No clusters resolved.")
        return
    for cluster in resolved:
        click.echo(f"  {cluster.name:<30} {cluster.api_base_url}")
