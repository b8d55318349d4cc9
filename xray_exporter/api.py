"""
FastAPI application exposing Xray metrics.

Endpoints
---------
- GET /metrics   -> Prometheus text exposition
- GET /health    -> Exporter status (poll loop state, last success)

The poll loop thread is started and stopped with the application
lifespan.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from xray_exporter import __version__
from xray_exporter.collector import PollScheduler
from xray_exporter.config import Settings
from xray_exporter.exposition import build_registry
from xray_exporter.schemas import HealthOut
from xray_exporter.stats_client import StatsSource
from xray_exporter.store import MetricStateStore


def create_app(
    settings: Settings,
    source: StatsSource,
    registry: Optional[CollectorRegistry] = None,
) -> FastAPI:
    """
    Wire store, poll loop and collectors into a FastAPI app.

    Everything hangs off `app.state` so routes (and tests) can reach it:
    `store`, `scheduler`, `registry`, `source`.
    """
    store = MetricStateStore()
    scheduler = PollScheduler(source, store, settings)
    if registry is None:
        registry = build_registry(store, source, settings.traffic_mode)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler.start()
        try:
            yield
        finally:
            # Waits for an in-flight poll; each of its calls is bounded by
            # the RPC timeout. The source is closed only once nothing uses it.
            scheduler.stop()
            close = getattr(source, "close", None)
            if close is not None:
                close()

    app = FastAPI(
        title="Xray Stats Exporter",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.source = source
    app.state.store = store
    app.state.scheduler = scheduler
    app.state.registry = registry

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------

    # Plain `def` routes run in the threadpool; a pull-mode scrape blocks on
    # one upstream call and must not stall the event loop.

    @app.get("/metrics")
    def metrics(request: Request) -> Response:
        """Render every registered collector; always 200, even with Xray down."""
        body = generate_latest(request.app.state.registry)
        return Response(content=body, media_type=CONTENT_TYPE_LATEST)

    @app.get("/health", response_model=HealthOut)
    def health(request: Request) -> HealthOut:
        """Liveness plus a summary of the poll loop."""
        scheduler: PollScheduler = request.app.state.scheduler
        snapshot = request.app.state.store.snapshot()

        last_success = None
        if scheduler.last_success is not None:
            last_success = datetime.fromtimestamp(scheduler.last_success, tz=timezone.utc)

        return HealthOut(
            status="ok" if snapshot.up else "degraded",
            state=scheduler.state.value,
            up=snapshot.up,
            consecutive_failures=scheduler.consecutive_failures,
            last_success=last_success,
            online_entries=len(snapshot.online),
            traffic_mode=request.app.state.settings.traffic_mode,
        )

    return app
