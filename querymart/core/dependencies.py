"""
FastAPI dependencies.

The application keeps its collaborators on app.state (see main.create_app);
these functions hand them to the routes.
"""
from datetime import datetime
from typing import Optional, Tuple

from fastapi import HTTPException, Query, Request, status

from querymart.core.metrics import MetricsContext
from querymart.db.session import Sink
from querymart.services.classifier import Classifier
from querymart.services.jobs import ConnectionsJob
from querymart.services.scheduler import JobScheduler


def get_sink(request: Request) -> Sink:
    return request.app.state.sink


def get_metrics(request: Request) -> MetricsContext:
    return request.app.state.metrics


def get_classifier(request: Request) -> Classifier:
    return request.app.state.classifier


def get_scheduler(request: Request) -> Optional[JobScheduler]:
    return request.app.state.scheduler


def get_on_demand_connections(request: Request) -> ConnectionsJob:
    """
    On-demand connection sampler.

    Raises:
        HTTPException 503: no source database is configured
    """
    job = request.app.state.connections_on_demand
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No source database configured",
        )
    return job


def get_window(
    start: datetime = Query(..., description="Window start, inclusive, with UTC offset"),
    end: datetime = Query(..., description="Window end, exclusive, with UTC offset"),
) -> Tuple[datetime, datetime]:
    """
    Time window from query parameters.

    Raises:
        HTTPException 400: a bound has no UTC offset or end is before start
    """
    for name, value in (("start", start), ("end", end)):
        if value.tzinfo is None or value.utcoffset() is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"'{name}' must include a UTC offset",
            )
    if end < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="'end' must not be before 'start'",
        )
    return start, end
