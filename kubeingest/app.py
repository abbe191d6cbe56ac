"""Application bootstrap for kubeingest.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config -> logging -> cluster locator -> fetcher -> sink
              -> scheduler -> REST

Shutdown stops components in reverse startup order. Each component's stop
error is caught and logged independently so that one failing teardown does
not prevent the rest from shutting down cleanly.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubeingest.config import load_config
from kubeingest.models.config import KubeIngestConfig
from kubeingest.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from kubeingest.api.app import AuthorizeHook
    from kubeingest.fetcher.resource_fetcher import ResourceFetcher
    from kubeingest.locator.cluster_locator import ClusterLocator
    from kubeingest.scheduler.ingestion import IngestionScheduler
    from kubeingest.sink.base import CatalogSink

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubeIngestApp:
    """Application root. Owns every component and coordinates their lifecycle.

    Calling ``stop()`` on an app that was never started, or already
    stopped, is safe.

    Args:
        authorize: Optional permission hook handed to the read API.
    """

    def __init__(self, authorize: AuthorizeHook | None = None) -> None:
        self.config: KubeIngestConfig | None = None
        self._authorize = authorize

        self._locator: ClusterLocator | None = None
        self._fetcher: ResourceFetcher | None = None
        self._sink: CatalogSink | None = None
        self._scheduler: IngestionScheduler | None = None
        self._rest_server: object | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        The caller (main()) re-raises this as a non-zero exit.
        """
        # --- 1. Configuration -------------------------------------------
        try:
            self.config = load_config()
        except Exception as exc:
            raise _ComponentError("config", exc) from exc

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("kubeingest starting", version=_kubeingest_version())

        # --- 3. Cluster locator ------------------------------------------
        self._start_locator()

        # --- 4. Resource fetcher -----------------------------------------
        self._start_fetcher()

        # --- 5. Catalog sink ---------------------------------------------
        self._start_sink()

        # --- 6. Ingestion scheduler --------------------------------------
        await self._start_scheduler()

        # --- 7. REST API ------------------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info("kubeingest started", port=self.config.api.port)

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    def _start_locator(self) -> None:
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting cluster locator")
        try:
            from kubeingest.locator import build_cluster_locator

            self._locator = build_cluster_locator(
                definitions=self.config.clusters,
                discovery_config=self.config.discovery,
                allowed_cluster_names=self.config.allowed_cluster_names,
            )
            self._log.info(
                "cluster locator started",
                static_clusters=len(self.config.clusters),
                discovery=bool(self.config.discovery.url),
            )
        except Exception as exc:
            raise _ComponentError("locator", exc) from exc

    def _start_fetcher(self) -> None:
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting resource fetcher")
        try:
            from kubeingest.fetcher import ResourceFetcher

            sched = self.config.scheduler
            self._fetcher = ResourceFetcher(
                page_size=sched.page_size,
                kind_timeout=sched.kind_timeout_seconds,
                request_timeout=sched.request_timeout_seconds,
            )
            self._log.info("resource fetcher started", page_size=sched.page_size)
        except Exception as exc:
            raise _ComponentError("fetcher", exc) from exc

    def _start_sink(self) -> None:
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting catalog sink")
        try:
            from kubeingest.sink import build_sink

            self._sink = build_sink(self.config.sink)
            self._log.info("catalog sink started", sink=self._sink.sink_name)
        except Exception as exc:
            raise _ComponentError("sink", exc) from exc

    async def _start_scheduler(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self._locator is not None
        assert self._fetcher is not None
        assert self._sink is not None
        self._log.debug("starting ingestion scheduler")
        try:
            from kubeingest.scheduler import IngestionScheduler

            scheduler = IngestionScheduler(
                locator=self._locator,
                fetcher=self._fetcher,
                sink=self._sink,
                config=self.config,
            )
            await scheduler.start()
            self._scheduler = scheduler
            self._log.info("ingestion scheduler started")
        except Exception as exc:
            raise _ComponentError("scheduler", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        assert self._scheduler is not None
        self._log.debug("starting rest api")
        try:
            import uvicorn

            from kubeingest.api import build_app

            fastapi_app = build_app(
                scheduler=self._scheduler,
                authorize=self._authorize,
                config=self.config,
            )
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kubeingest shutting down")

        self._running = False

        # Scheduler first: no new cycles start while the API is still up.
        await self._stop_component("scheduler", self._scheduler)

        rest = self._rest_server
        if rest is not None:
            rest.should_exit = True  # type: ignore[attr-defined]
        for task in reversed(self._background_tasks):
            if not task.done():
                try:
                    await asyncio.wait_for(asyncio.shield(task), timeout=_SHUTDOWN_GRACE_SECONDS)
                except TimeoutError:
                    task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()
        self._rest_server = None

        log.info("kubeingest stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))


def _kubeingest_version() -> str:
    from kubeingest import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubeIngestApp()
    loop = asyncio.get_running_loop()

    shutdown_triggered = False

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        while app.running:
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()
