import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version

import anyio
import uvicorn
from fastapi import FastAPI

from wgsync.api.deps import get_reconciler
from wgsync.api.routers import health, metrics, peers, stats
from wgsync.cli.migrate_db import migrate_db
from wgsync.observability import configure_logging, install_http_observability
from wgsync.services.stats import StatsPoller
from wgsync.settings import get_settings

logger = logging.getLogger("wgsync.api")


@asynccontextmanager
async def lifespan(_: FastAPI):
    # Migrations are sync (Alembic). Run them before serving any traffic.
    if settings.migrate_on_startup:
        await anyio.to_thread.run_sync(migrate_db)

    reconciler = get_reconciler()
    if settings.resync_on_startup:
        result = await reconciler.resync()
        if result.warnings:
            logger.warning("startup_resync_incomplete warnings=%s", "; ".join(result.warnings))

    poller = StatsPoller(reconciler.stats, interval_seconds=settings.stats_interval_seconds)
    if settings.stats_enabled:
        poller.start()
    try:
        yield
    finally:
        await poller.stop()
        await reconciler.store.dispose()


settings = get_settings()
configure_logging(settings.log_level)


def _app_version() -> str:
    try:
        return pkg_version("wgsync")
    except PackageNotFoundError:
        return "dev"


app = FastAPI(title="wgsync", version=_app_version(), lifespan=lifespan)
install_http_observability(app, component="api")

app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(peers.router)
app.include_router(stats.router)


def run() -> None:
    uvicorn.run(
        "wgsync.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
