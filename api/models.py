"""
Pydantic models for API request/response schemas
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from card_valuation.models import IdentificationResult, Stage, StageStatus, WorkflowStatus


class StageSummary(BaseModel):
    """Outcome of one pipeline stage"""
    stage: Stage
    status: StageStatus
    attempts: int
    error: Optional[str] = None
    completed_at: datetime


class ExecutionInfo(BaseModel):
    """Stored execution with per-stage progress"""
    execution_id: str
    image_ref: str
    status: WorkflowStatus
    created_at: datetime
    updated_at: datetime
    stages: List[StageSummary] = Field(default_factory=list)
    result: Optional[IdentificationResult] = Field(
        None, description="Final result, present once the AGGREGATING stage has completed"
    )


class QueueStatusResponse(BaseModel):
    """Identification queue occupancy"""
    active: int
    waiting: int
    max_concurrent: int
    available_slots: int
