"""
Pydantic schemas for mined query API responses.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserQuerySchema(BaseModel):
    """One sampled execution from the slow log."""
    id: int
    user_host: Optional[str] = Field(None, description="Account that ran the query")
    ip_address: Optional[str] = Field(None, description="Client address")
    connection_id: Optional[str] = Field(None, description="Server thread id of the session")
    query: Optional[str] = Field(None, description="SQL text")
    query_time: Optional[float] = Field(None, description="Execution time in seconds")
    lock_time: Optional[float] = Field(None, description="Lock wait time in seconds")
    rows_sent: Optional[int] = Field(None, description="Rows returned to the client")
    rows_examined: Optional[int] = Field(None, description="Rows read by the server")
    log_time: datetime = Field(..., description="When the execution was logged (UTC)")
    digest_hash: Optional[str] = Field(None, description="SHA-256 of the query digest")

    model_config = ConfigDict(from_attributes=True)


class UserQueryListResponse(BaseModel):
    start: datetime
    end: datetime
    total: int
    items: List[UserQuerySchema]


class BadQuerySchema(BaseModel):
    """An execution flagged by the classifier."""
    id: int
    user_host: Optional[str] = None
    connection_id: Optional[str] = None
    query: Optional[str] = None
    query_time: Optional[float] = None
    log_time: datetime
    digest_hash: Optional[str] = None
    labels: List[str] = Field(..., description="Anti-pattern labels", validation_alias="label_list")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class BadQueryListResponse(BaseModel):
    start: datetime
    end: datetime
    total: int
    items: List[BadQuerySchema]
