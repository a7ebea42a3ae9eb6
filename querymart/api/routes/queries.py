"""
Mined queries API Routes.
"""
from datetime import datetime
from typing import Tuple

from fastapi import APIRouter, Depends, HTTPException

from querymart.api.schemas.queries import (
    BadQueryListResponse,
    BadQuerySchema,
    UserQueryListResponse,
    UserQuerySchema,
)
from querymart.core.dependencies import get_sink, get_window
from querymart.core.logger import get_logger
from querymart.db.session import Sink

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Queries"])


@router.get("/queries", response_model=UserQueryListResponse)
def list_queries(
    window: Tuple[datetime, datetime] = Depends(get_window),
    sink: Sink = Depends(get_sink),
) -> UserQueryListResponse:
    """
    Executions logged in [start, end), oldest first.
    """
    start, end = window
    rows = sink.select_user_queries(start, end)
    return UserQueryListResponse(
        start=start,
        end=end,
        total=len(rows),
        items=[UserQuerySchema.model_validate(row) for row in rows],
    )


@router.get("/queries/{query_id}", response_model=UserQuerySchema)
def get_query(query_id: int, sink: Sink = Depends(get_sink)) -> UserQuerySchema:
    row = sink.select_user_query(query_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Query {query_id} not found")
    return UserQuerySchema.model_validate(row)


@router.get("/bad-queries", response_model=BadQueryListResponse)
def list_bad_queries(
    window: Tuple[datetime, datetime] = Depends(get_window),
    sink: Sink = Depends(get_sink),
) -> BadQueryListResponse:
    """
    Flagged executions logged in [start, end), with their anti-pattern labels.
    """
    start, end = window
    rows = sink.select_bad_queries(start, end)
    return BadQueryListResponse(
        start=start,
        end=end,
        total=len(rows),
        items=[BadQuerySchema.model_validate(row) for row in rows],
    )
