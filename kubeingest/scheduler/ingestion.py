"""Ingestion Scheduler: periodic per-cluster fetch, build, normalize and emit.

One supervisor task tracks the cluster set; one task per cluster runs
cycles. A cycle moves through ``fetching -> building -> normalizing ->
emitting`` and ends ``idle``, or ``failed`` when it produced nothing it
could deliver. A failed cycle is retried on the next tick with backoff.

Delivery is at-least-once: the previous-result cache (and with it the
graphs served by the read API) only advances after the sink accepted the
delta, so a rejected delta is recomputed and re-sent next tick.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from kubeingest.cache.result_cache import EntityFingerprint, ResultCache
from kubeingest.errors import ConfigError, CycleFatalError, ErrorScope, SinkError
from kubeingest.fetcher.discovery import discover_selectors
from kubeingest.fetcher.resource_fetcher import ResourceFetcher
from kubeingest.graph.builder import GraphBuilder
from kubeingest.graph.models import ResourceGraph
from kubeingest.locator.cluster_locator import ClusterLocator
from kubeingest.models.config import KubeIngestConfig
from kubeingest.models.entities import CycleError, CycleState, EntityDelta, IngestionCycleResult, NormalizedEntity
from kubeingest.models.resources import ClusterRef, RawResource
from kubeingest.normalizer.entity_normalizer import EntityNormalizer, entity_id
from kubeingest.normalizer.filters import ResourceFilter
from kubeingest.observability.metrics import (
    cycle_duration_seconds,
    cycles_total,
    entities_emitted_total,
    fetch_errors_total,
    tracked_entities,
    validation_errors_total,
)
from kubeingest.scheduler.delta import compute_delta
from kubeingest.sink.base import CatalogSink

_log = structlog.get_logger(component="scheduler")

Authorize = Callable[[RawResource], bool]

_MAX_REPORTED_ERRORS = 10
_DELIVERY_GRACE_SECONDS = 10.0


@dataclass
class ClusterStatus:
    """Externally visible progress of one cluster."""

    name: str
    state: CycleState = CycleState.IDLE
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_success_at: datetime | None = None
    consecutive_failures: int = 0
    error_count: int = 0
    last_errors: list[CycleError] = field(default_factory=list)
    entity_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_finished_at": self.last_finished_at.isoformat() if self.last_finished_at else None,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "consecutive_failures": self.consecutive_failures,
            "error_count": self.error_count,
            "entity_count": self.entity_count,
            "last_errors": [
                {"scope": e.scope.value, "subject": e.subject, "cause": e.cause} for e in self.last_errors
            ],
        }


class _CycleAborted(Exception):
    """Internal: stop the current cycle, the reason is already recorded."""


class IngestionScheduler:
    """Runs ingestion cycles for every resolved cluster.

    Args:
        locator:  Resolves clusters and credentials every tick.
        fetcher:  Lists resources from one cluster.
        sink:     Receives non-empty deltas.
        config:   Full configuration; scheduler and ingestion sections are used.
        cache:    Previous-result cache. Created from config when omitted.
        rng:      Source of backoff jitter.
        delivery_grace:  Seconds stop() waits for deliveries already in flight.
    """

    def __init__(
        self,
        locator: ClusterLocator,
        fetcher: ResourceFetcher,
        sink: CatalogSink,
        config: KubeIngestConfig | None = None,
        cache: ResultCache | None = None,
        rng: random.Random | None = None,
        delivery_grace: float = _DELIVERY_GRACE_SECONDS,
    ) -> None:
        self._config = config or KubeIngestConfig()
        self._locator = locator
        self._fetcher = fetcher
        self._sink = sink
        self._cache = cache or ResultCache(max_clusters=self._config.scheduler.cache_max_clusters)
        self._rng = rng or random.Random()
        self._delivery_grace = delivery_grace
        self._builder = GraphBuilder()
        self._normalizer = EntityNormalizer(self._config.ingestion)
        self._filter = ResourceFilter(self._config.ingestion)

        self._status: dict[str, ClusterStatus] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._supervisor: asyncio.Task[None] | None = None
        self._deliveries: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._supervisor is not None and not self._supervisor.done()

    @property
    def cache(self) -> ResultCache:
        return self._cache

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the supervisor task. Calling start twice is a no-op."""
        if self.running:
            return
        self._supervisor = asyncio.create_task(self._supervise(), name="ingestion-supervisor")
        _log.info("scheduler_started", poll_interval=self._config.scheduler.poll_interval_seconds)

    async def stop(self) -> None:
        """Cancel the supervisor and every cluster task and wait for them to finish.

        A delivery already in progress gets ``delivery_grace`` seconds to
        complete and is cancelled after that; nothing new is emitted.
        """
        tasks = list(self._tasks.values())
        if self._supervisor is not None:
            tasks.append(self._supervisor)
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._supervisor = None
        await self._drain_deliveries()
        _log.info("scheduler_stopped")

    async def _drain_deliveries(self) -> None:
        if not self._deliveries:
            return
        done, pending = await asyncio.wait(set(self._deliveries), timeout=self._delivery_grace)
        for task in pending:
            task.cancel()
            _log.warning("delivery_abandoned", task=task.get_name(), grace_seconds=self._delivery_grace)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                _log.warning("delivery_failed_during_shutdown", task=task.get_name(), error=str(task.exception()))

    async def _shielded(self, name: str, delivery: Coroutine[Any, Any, None]) -> None:
        """Run *delivery* to completion even when the caller is cancelled.

        The task is tracked until it finishes so stop() can wait for it.
        """
        task = asyncio.create_task(delivery, name=f"deliver-{name}")
        self._deliveries.add(task)
        task.add_done_callback(self._delivery_done)
        await asyncio.shield(task)

    def _delivery_done(self, task: asyncio.Task[None]) -> None:
        self._deliveries.discard(task)
        if not task.cancelled():
            # retrieved here too, for deliveries whose caller was cancelled
            task.exception()

    async def _supervise(self) -> None:
        interval = self._config.scheduler.poll_interval_seconds
        while True:
            try:
                clusters = await self._locator.resolve_clusters()
            except CycleFatalError as exc:
                _log.error("cluster_resolution_failed", error=str(exc))
            else:
                await self._reconcile([c.name for c in clusters], self._locator.unavailable_clusters)
            await asyncio.sleep(interval)

    async def _reconcile(self, names: list[str], unavailable: set[str] | None = None) -> None:
        """Start tasks for new clusters; stop and retire clusters that are gone.

        Clusters in *unavailable* are missing only because their source could
        not be asked this tick. Their tasks keep running and their entities
        stay in the catalog.
        """
        kept = set(names) | (unavailable or set())
        for name in names:
            task = self._tasks.get(name)
            if task is None or task.done():
                self._tasks[name] = asyncio.create_task(self._cluster_loop(name), name=f"ingest-{name}")
                _log.info("cluster_task_started", cluster=name)

        for name in [n for n in self._tasks if n not in kept]:
            task = self._tasks.pop(name)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            _log.info("cluster_task_stopped", cluster=name)

        for name in self._cache.clusters():
            if name in kept or name in self._tasks:
                continue
            await self._retire(name)
        for name in sorted((unavailable or set()) - set(names)):
            if name in self._cache:
                _log.warning("cluster_retire_deferred", cluster=name, reason="cluster source unavailable")

    async def _cluster_loop(self, name: str) -> None:
        while True:
            await self.run_cycle(name)
            await asyncio.sleep(self.next_delay(name))

    async def _retire(self, name: str) -> None:
        """Remove every entity of a vanished cluster from the sink."""
        entry = self._cache.get(name)
        if entry is None:
            return
        delta = EntityDelta(cluster=name, removed=list(entry.fingerprints))
        try:
            if not delta.is_empty:
                await self._shielded(name, self._sink.apply(delta))
        except SinkError as exc:
            _log.warning("cluster_retire_failed", cluster=name, error=str(exc))
            return
        self._cache.drop(name)
        self._status.pop(name, None)
        tracked_entities.labels(cluster=name).set(0)
        entities_emitted_total.labels(cluster=name, change="removed").inc(len(delta.removed))
        _log.info("cluster_retired", cluster=name, removed=len(delta.removed))

    def next_delay(self, name: str) -> float:
        """Seconds until *name*'s next cycle: the poll interval plus jittered backoff after failures."""
        sched = self._config.scheduler
        status = self._status.get(name)
        failures = status.consecutive_failures if status else 0
        if failures == 0:
            return float(sched.poll_interval_seconds)
        backoff = min(sched.backoff_base_seconds * (2 ** (failures - 1)), sched.backoff_max_seconds)
        return sched.poll_interval_seconds + self._rng.uniform(backoff / 2, backoff)

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def run_once(self) -> list[IngestionCycleResult]:
        """Run one cycle for every currently resolved cluster, concurrently.

        Raises:
            CycleFatalError: no cluster could be resolved.
        """
        clusters = await self._locator.resolve_clusters()
        return list(await asyncio.gather(*(self.run_cycle_for(c) for c in clusters)))

    async def run_cycle(self, name: str) -> IngestionCycleResult:
        """Re-resolve cluster *name* and run one cycle for it.

        Never raises except CancelledError; failures are recorded on the result.
        """
        try:
            clusters = await self._locator.resolve_clusters()
        except CycleFatalError as exc:
            return self._unresolved(name, CycleError.from_exception(exc))
        for cluster in clusters:
            if cluster.name == name:
                return await self.run_cycle_for(cluster)
        if name in self._locator.unavailable_clusters:
            reason = f"cluster {name!r} cannot be resolved while its discovery source is unavailable"
        else:
            reason = f"cluster {name!r} no longer resolves"
        missing = ConfigError(reason, subject=name, scope=ErrorScope.CLUSTER)
        return self._unresolved(name, CycleError.from_exception(missing))

    async def run_cycle_for(self, cluster: ClusterRef) -> IngestionCycleResult:
        """Run one cycle for an already resolved *cluster*."""
        status = self._status.setdefault(cluster.name, ClusterStatus(name=cluster.name))
        result = IngestionCycleResult(cluster=cluster, started_at=datetime.now(tz=UTC))
        status.last_started_at = result.started_at
        started = time.monotonic()
        log = _log.bind(cluster=cluster.name)

        try:
            await self._execute(cluster, result, status)
        except _CycleAborted:
            result.state = CycleState.FAILED
        except asyncio.CancelledError:
            status.state = CycleState.IDLE
            log.info("cycle_cancelled")
            raise
        except Exception as exc:
            log.exception("cycle_unexpected_error", error=str(exc))
            result.errors.append(CycleError(ErrorScope.CYCLE, cluster.name, f"unexpected error: {exc}"))
            result.state = CycleState.FAILED

        if result.delta is None:
            result.delta = EntityDelta(cluster=cluster.name)
        self._finish(result, status, time.monotonic() - started)
        return result

    async def _execute(self, cluster: ClusterRef, result: IngestionCycleResult, status: ClusterStatus) -> None:
        name = cluster.name
        self._transition(result, status, CycleState.FETCHING)
        try:
            async with self._fetcher.open(cluster) as api:
                discovery = await discover_selectors(self._fetcher, cluster, self._config.ingestion, api=api)
                selectors = discovery.selectors
                outcome = await self._fetcher.fetch_all(cluster, selectors, api=api)
        except (OSError, ValueError) as exc:
            result.errors.append(CycleError(ErrorScope.CLUSTER, name, f"cannot open cluster client: {exc}"))
            raise _CycleAborted from exc

        result.errors.extend(discovery.errors)
        result.errors.extend(outcome.errors)
        result.failed_kinds = {s.kind_key for s in outcome.failed}
        for selector in outcome.failed:
            fetch_errors_total.labels(cluster=name, kind=selector.kind).inc()
        if selectors and len(outcome.failed) == len(selectors):
            result.errors.append(CycleError(ErrorScope.CLUSTER, name, "every kind failed to fetch"))
            raise _CycleAborted

        self._transition(result, status, CycleState.BUILDING)
        resources = self._filter.apply(outcome.resources)
        result.graphs = self._builder.build(resources)

        self._transition(result, status, CycleState.NORMALIZING)
        entities, normalize_errors = self._normalizer.normalize_graphs(result.graphs)
        result.entities = entities
        result.errors.extend(normalize_errors)
        invalid = sum(1 for e in result.errors if e.scope is ErrorScope.RESOURCE)
        if invalid:
            validation_errors_total.labels(cluster=name).inc(invalid)

        self._transition(result, status, CycleState.EMITTING)
        previous = self._cache.fingerprints(name)
        protected = set(result.failed_kinds)
        if discovery.incomplete:
            # kinds a failed discovery listing may have hidden keep their entities
            fetched = {s.kind_key for s in selectors} - protected
            protected |= {fp.kind_key for fp in previous.values() if fp.kind_key not in fetched}
        delta, retained = compute_delta(name, previous, entities, protected)

        emitted = {e.id for e in entities}
        entity_ids: dict[str, str] = {}
        for graph in result.graphs:
            for node in graph.nodes:
                eid = entity_id(node.resource)
                if eid in emitted:
                    entity_ids.setdefault(node.id, eid)

        try:
            await self._shielded(name, self._deliver(name, delta, entities, result.graphs, entity_ids, retained))
        except SinkError as exc:
            _log.warning("delta_delivery_failed", cluster=name, sink=self._sink.sink_name, error=str(exc))
            result.record(exc)
            raise _CycleAborted from exc

        result.delta = delta
        result.state = CycleState.IDLE

    async def _deliver(
        self,
        name: str,
        delta: EntityDelta,
        entities: list[NormalizedEntity],
        graphs: list[ResourceGraph],
        entity_ids: dict[str, str],
        retained: dict[str, EntityFingerprint],
    ) -> None:
        if not delta.is_empty:
            await self._sink.apply(delta)
            for change, count in delta.summary().items():
                if count:
                    entities_emitted_total.labels(cluster=name, change=change).inc(count)
        self._cache.store(name, entities, graphs, entity_ids, retained)
        tracked_entities.labels(cluster=name).set(len(entities) + len(retained))

    @staticmethod
    def _transition(result: IngestionCycleResult, status: ClusterStatus, state: CycleState) -> None:
        result.state = state
        status.state = state

    def _unresolved(self, name: str, error: CycleError) -> IngestionCycleResult:
        _log.warning("cluster_unresolved", cluster=name, error=error.cause)
        status = self._status.setdefault(name, ClusterStatus(name=name))
        now = datetime.now(tz=UTC)
        result = IngestionCycleResult(
            cluster=ClusterRef(name=name, api_base_url=""),
            errors=[error],
            state=CycleState.FAILED,
            started_at=now,
            delta=EntityDelta(cluster=name),
        )
        self._finish(result, status, 0.0)
        return result

    def _finish(self, result: IngestionCycleResult, status: ClusterStatus, duration: float) -> None:
        name = result.cluster.name
        result.finished_at = datetime.now(tz=UTC)
        status.last_finished_at = result.finished_at
        status.error_count = len(result.errors)
        status.last_errors = result.errors[-_MAX_REPORTED_ERRORS:]

        if result.state is CycleState.FAILED:
            status.state = CycleState.FAILED
            status.consecutive_failures += 1
            outcome = "failed"
        else:
            status.state = CycleState.IDLE
            status.consecutive_failures = 0
            status.last_success_at = result.finished_at
            status.entity_count = len(result.entities)
            outcome = "partial" if result.errors else "success"

        cycles_total.labels(cluster=name, outcome=outcome).inc()
        cycle_duration_seconds.labels(cluster=name).observe(duration)
        delta = result.delta or EntityDelta(cluster=name)
        _log.info(
            "cycle_completed",
            cluster=name,
            outcome=outcome,
            entities=len(result.entities),
            errors=len(result.errors),
            duration_seconds=round(duration, 3),
            **delta.summary(),
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def status(self) -> dict[str, ClusterStatus]:
        return dict(self._status)

    def get_graph(self, root_entity_id: str, authorize: Authorize | None = None) -> ResourceGraph | None:
        """Last delivered graph rooted at *root_entity_id*, filtered by *authorize*.

        Unauthorized nodes are dropped with their subtrees; an unauthorized
        root yields None.
        """
        graph = self._cache.find_graph(root_entity_id)
        if graph is None or authorize is None:
            return graph
        return graph.filtered(authorize)

    def entity_ids(self, cluster: str) -> dict[str, str]:
        """uid to entity id for the last delivered cycle of *cluster*."""
        entry = self._cache.get(cluster)
        return dict(entry.entity_ids) if entry else {}

