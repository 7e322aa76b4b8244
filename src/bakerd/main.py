"""Entry point for the baker daemon.

Wires all components together, optionally embeds the read-only API, and
starts the scheduler. When the API is enabled (default), the jobs and the API
share a single asyncio event loop via uvicorn's programmatic API and
FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown. A storage engine failure stops
the scheduler and the process exits with status 1 so a supervisor restarts it.

Component wiring order (in _build_components):
1. Database and Store
2. NodeClient (HttpNodeClient)
3. ReconciliationEngine and IngestionPipeline (block fetcher job)
4. PriceClient and PriceRefresher (price refresher job)
5. StatusChecker (status checker job)
6. Scheduler
"""

import asyncio
import signal
import sys
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from bakerd.config import AppSettings
from bakerd.ingestion.pipeline import IngestionPipeline
from bakerd.ingestion.reconciliation import ReconciliationEngine
from bakerd.jobs.price import PriceRefresher
from bakerd.jobs.scheduler import Scheduler
from bakerd.jobs.status import StatusChecker
from bakerd.logging import get_logger, setup_logging
from bakerd.models import Pair
from bakerd.node.http_client import HttpNodeClient
from bakerd.prices.client import CcxtPriceClient
from bakerd.storage.database import Database
from bakerd.storage.store import Store


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all daemon components from settings.

    Note: Does NOT open the database or the node session -- that happens in
    _start_components, from the lifespan (API mode) or run() (headless mode).

    Args:
        settings: Application-wide settings.

    Returns:
        Dict mapping component names to instances.
    """
    database = Database(settings.storage.db_path)
    store = Store(database)
    node = HttpNodeClient(settings.node)

    reconciler = ReconciliationEngine(node, store)
    pipeline = IngestionPipeline(node, store, reconciler, settings.ingestion)

    price_client = CcxtPriceClient(settings.price)
    pairs = [Pair.parse(p) for p in settings.price.pairs]
    price_refresher = PriceRefresher(price_client, store, pairs)

    status_checker = StatusChecker(node, store, settings.status)

    scheduler = Scheduler(shutdown_timeout=settings.jobs.shutdown_timeout)
    scheduler.add_job(pipeline, settings.jobs.block_fetcher_interval)
    scheduler.add_job(price_refresher, settings.jobs.price_refresher_interval)
    scheduler.add_job(status_checker, settings.jobs.status_checker_interval)

    return {
        "database": database,
        "store": store,
        "node": node,
        "reconciler": reconciler,
        "pipeline": pipeline,
        "price_client": price_client,
        "price_refresher": price_refresher,
        "status_checker": status_checker,
        "scheduler": scheduler,
    }


async def _start_components(components: dict[str, Any]) -> None:
    await components["database"].connect()
    await components["node"].connect()
    await components["scheduler"].start()


async def _stop_components(components: dict[str, Any]) -> None:
    """Stop jobs first, then release clients. The database is closed last."""
    await components["scheduler"].stop()
    await components["node"].close()
    await components["price_client"].close()
    await components["database"].close()


def _setup_signal_handlers(scheduler: Scheduler) -> None:
    """Register SIGINT/SIGTERM to stop the scheduler gracefully.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("bakerd.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        asyncio.create_task(scheduler.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the daemon lifecycle within the FastAPI application.

    On startup: opens the database and node session, exposes the store and
    scheduler to the routes, starts the scheduler, and watches it so that a
    fatal stop also stops the server.

    On shutdown: stops the scheduler and releases all resources.
    """
    logger = get_logger("bakerd.main")
    components = app.state.components

    await _start_components(components)
    app.state.store = components["store"]
    app.state.scheduler = components["scheduler"]

    async def _watch_scheduler() -> None:
        error = await components["scheduler"].wait_closed()
        if error is not None:
            logger.critical("scheduler_failed", error=str(error))
            app.state.server.should_exit = True

    watcher = asyncio.create_task(_watch_scheduler())
    logger.info("lifespan_started")

    yield

    watcher.cancel()
    try:
        await watcher
    except asyncio.CancelledError:
        pass

    await _stop_components(components)
    logger.info("bakerd_stopped")


async def run() -> int:
    """Run the daemon until it is signalled or fails. Returns the exit status.

    When the API is enabled (API_ENABLED=true, the default), uvicorn serves
    the API and handles SIGINT/SIGTERM itself; the lifespan manages component
    startup and shutdown. Otherwise the scheduler runs headless.
    """
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("bakerd.main")

    components = _build_components(settings)
    scheduler: Scheduler = components["scheduler"]

    if settings.api.enabled:
        from bakerd.api.app import create_app

        app = create_app(lifespan=lifespan)
        app.state.components = components

        logger.info("starting_with_api", host=settings.api.host, port=settings.api.port)

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",
        )
        server = uvicorn.Server(config)
        app.state.server = server
        await server.serve()
    else:
        logger.info("starting_without_api", node=settings.node.uri)
        try:
            await _start_components(components)
            _setup_signal_handlers(scheduler)
            await scheduler.wait_closed()
        finally:
            await _stop_components(components)
            logger.info("bakerd_stopped")

    if scheduler.fatal_error is not None:
        logger.critical("bakerd_exiting_on_storage_failure", error=str(scheduler.fatal_error))
        return 1
    return 0


def main() -> None:
    """Synchronous entry point."""
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
