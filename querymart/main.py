"""
querymart - FastAPI application.

Serves the mined data and runs the extraction scheduler in the background.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST

from querymart import __version__
from querymart.api.routes import analyze, connections, queries, scheduler
from querymart.core.config import Settings, settings
from querymart.core.logger import get_logger
from querymart.core.metrics import MetricsContext
from querymart.db.session import Sink
from querymart.services.catalog import Catalog
from querymart.services.classifier import Classifier
from querymart.services.cron import Clock, utc_now
from querymart.services.health import HealthRegistry, HealthResult
from querymart.services.jobs import ConnectionsJob
from querymart.services.scheduler import build_scheduler
from querymart.services.source import MySQLSource, SourceDb

logger = get_logger(__name__)


def create_app(
    config: Optional[Settings] = None,
    sink: Optional[Sink] = None,
    source: Optional[SourceDb] = None,
    metrics: Optional[MetricsContext] = None,
    catalog: Optional[Catalog] = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """
    Build the application around its collaborators.

    Without a source only the read endpoints are available. The scheduler
    is built and started on startup when config.enable_scheduler is set.
    """
    config = config if config is not None else settings
    owns_sink = sink is None
    sink = sink if sink is not None else Sink(config.sink_url)
    metrics = metrics if metrics is not None else MetricsContext()
    health = HealthRegistry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup and shutdown."""
        logger.info("Starting querymart...")
        sink.initialize()
        if sink.check_connection():
            logger.info("Sink database connection successful")
        else:
            logger.warning("Sink database connection failed")

        if source is not None and config.enable_scheduler:
            app.state.scheduler = build_scheduler(config, sink, source, metrics, health, clock)
            app.state.scheduler.start()

        yield

        logger.info("Shutting down querymart...")
        if app.state.scheduler is not None and app.state.scheduler.is_running:
            app.state.scheduler.stop()
        if owns_sink:
            sink.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="querymart",
        description="Incremental slow-log mining and anti-pattern detection",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.sink = sink
    app.state.metrics = metrics
    app.state.health = health
    app.state.classifier = Classifier(catalog, config.sql_dialect)
    app.state.scheduler = None
    app.state.connections_on_demand = None
    if source is not None:
        on_demand = ConnectionsJob(sink, source, 0, metrics=metrics, clock=clock)
        health.register_cron(on_demand)
        app.state.connections_on_demand = on_demand

    def check_sink() -> HealthResult:
        if sink.check_connection():
            return HealthResult(True, "connected")
        return HealthResult(False, "disconnected")

    health.register("sink", check_sink)

    app.include_router(queries.router)
    app.include_router(connections.router)
    app.include_router(analyze.router)
    app.include_router(scheduler.router)

    @app.get("/")
    def root():
        """Root endpoint."""
        return {
            "app": "querymart",
            "version": __version__,
            "description": "Incremental slow-log mining and anti-pattern detection",
            "docs": "/docs",
        }

    @app.get("/health")
    def health_check():
        """Sink connectivity and the failure ratio of every job."""
        results = health.run_all()
        healthy = all(result.healthy for result in results.values())
        return {
            "status": "healthy" if healthy else "degraded",
            "checks": {name: result.to_dict() for name, result in results.items()},
        }

    @app.get("/metrics")
    def prometheus_metrics():
        return Response(content=metrics.render(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app(source=MySQLSource())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "querymart.main:app",
        host="0.0.0.0",
        port=settings.api_port,
    )
