"""
Pydantic schemas for on-demand classification.
"""
from typing import List

from pydantic import BaseModel, Field


class AnalyzeRequest(BaseModel):
    sql: str = Field(..., min_length=1, description="A single SQL statement")


class LabelSchema(BaseModel):
    """Anti-pattern found in the statement."""
    label: str = Field(..., description="Anti-pattern name, e.g. TOO_MANY_JOINS")
    priority: str = Field(..., description="LOW, MEDIUM, HIGH or CRITICAL")
    description: str


class AnalyzeResponse(BaseModel):
    sql: str
    digest_hash: str = Field(..., description="SHA-256 of the statement digest")
    labels: List[LabelSchema]
    num_joins: int = Field(..., description="Join operators in the optimized plan")
    plan: str = Field(..., description="Optimized logical plan, one operator per line")
