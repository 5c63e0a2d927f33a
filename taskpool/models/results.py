"""Structured results returned across the engine boundary."""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field

from taskpool.models.task import Task


class ErrorKind(str, Enum):
    """Failure categories reported to callers."""
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_STATE = "invalid_state"
    ALREADY_COMPLETED = "already_completed"
    CONFLICT = "conflict"
    INVALID_INPUT = "invalid_input"
    STORE_UNAVAILABLE = "store_unavailable"


class OperationResult(BaseModel):
    """Outcome of a public engine operation. Callers branch on `success`."""

    success: bool
    message: Optional[str] = None
    error: Optional[ErrorKind] = None
    points_earned: Optional[int] = None

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    @classmethod
    def ok(cls, message: Optional[str] = None, points_earned: Optional[int] = None) -> "OperationResult":
        return cls(success=True, message=message, points_earned=points_earned)

    @classmethod
    def failed(cls, error: ErrorKind, message: str) -> "OperationResult":
        return cls(success=False, error=error, message=message)


class PoolTask(BaseModel):
    """A task listed in the project's task pool, with its stage context."""

    task: Task
    stage_title: str = ""
    stage_order: int = 0


class StageTaskStats(BaseModel):
    """Completion figures for one stage, read from its counters."""

    stage_id: str
    stage_title: str = ""
    order: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    completion_rate: float = Field(0.0, description="Completed share as a percentage (0-100)")


class ProjectTaskStats(BaseModel):
    """Task counts for a project, computed from the task collection."""

    total_tasks: int = 0
    available_tasks: int = 0
    assigned_tasks: int = 0
    completed_tasks: int = 0
    overdue_tasks: int = 0
    completion_rate: float = Field(0.0, description="Completed share as a percentage (0-100)")
    stage_count: int = 0
    stage_breakdown: List[StageTaskStats] = Field(default_factory=list, description="Per-stage figures in stage order")


class SweepReport(BaseModel):
    """Summary of one deadline sweep."""

    stages_processed: int = 0
    stages_failed: int = 0
    tasks_marked_overdue: int = 0
    failed_stage_ids: List[str] = Field(default_factory=list)
