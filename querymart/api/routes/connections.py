"""
Connection sampling API Routes.
"""
from datetime import datetime
from typing import Tuple

from fastapi import APIRouter, Depends, HTTPException

from querymart.api.schemas.connections import ConnectionSampleListResponse, ConnectionSampleSchema
from querymart.core.dependencies import get_on_demand_connections, get_sink, get_window
from querymart.core.logger import get_logger
from querymart.db.session import Sink
from querymart.services.jobs import ConnectionsJob

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/connections", tags=["Connections"])


@router.post("/sample", response_model=ConnectionSampleSchema)
def sample_connections(job: ConnectionsJob = Depends(get_on_demand_connections)) -> ConnectionSampleSchema:
    """
    Sample the source connection count now and store it.

    Runs synchronously on the request thread.
    """
    sample = job.sample_now()
    if sample is None:
        logger.error(f"On-demand connection sample failed: {job.last_error}")
        raise HTTPException(status_code=503, detail=f"Sampling failed: {job.last_error}")
    return ConnectionSampleSchema.model_validate(sample)


@router.get("", response_model=ConnectionSampleListResponse)
def list_connection_samples(
    window: Tuple[datetime, datetime] = Depends(get_window),
    sink: Sink = Depends(get_sink),
) -> ConnectionSampleListResponse:
    start, end = window
    rows = sink.select_connection_samples(start, end)
    return ConnectionSampleListResponse(
        start=start,
        end=end,
        total=len(rows),
        items=[ConnectionSampleSchema.model_validate(row) for row in rows],
    )
