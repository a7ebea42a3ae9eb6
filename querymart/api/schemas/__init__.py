"""
Pydantic schemas for request/response validation.
"""
from querymart.api.schemas.queries import (
    UserQuerySchema,
    UserQueryListResponse,
    BadQuerySchema,
    BadQueryListResponse,
)
from querymart.api.schemas.connections import (
    ConnectionSampleSchema,
    ConnectionSampleListResponse,
)
from querymart.api.schemas.analyze import (
    AnalyzeRequest,
    AnalyzeResponse,
    LabelSchema,
)

__all__ = [
    # Query schemas
    "UserQuerySchema",
    "UserQueryListResponse",
    "BadQuerySchema",
    "BadQueryListResponse",
    # Connection schemas
    "ConnectionSampleSchema",
    "ConnectionSampleListResponse",
    # Analysis schemas
    "AnalyzeRequest",
    "AnalyzeResponse",
    "LabelSchema",
]
