"""
Pydantic schemas for connection samples.
"""
from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class ConnectionSampleSchema(BaseModel):
    id: int
    log_time: datetime = Field(..., description="Sampling time (UTC)")
    num_connections: int = Field(..., description="Threads_connected at sampling time")

    model_config = ConfigDict(from_attributes=True)


class ConnectionSampleListResponse(BaseModel):
    start: datetime
    end: datetime
    total: int
    items: List[ConnectionSampleSchema]
