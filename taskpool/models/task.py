"""Task data model for taskpool."""

from datetime import datetime
from typing import Optional
from enum import Enum
from pydantic import BaseModel, Field

from taskpool.models.constants import DEFAULT_POINTS


class TaskStatus(str, Enum):
    """Task status enumeration."""
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    OVERDUE = "overdue"  # Soft deadline passed while assigned; others may take it over


# Statuses in which a task carries a non-empty assignee
HELD_STATUSES = (TaskStatus.ASSIGNED, TaskStatus.OVERDUE, TaskStatus.COMPLETED)


class Task(BaseModel):
    """Canonical Task model."""

    id: str = Field(..., description="Unique task identifier (UUID v4)")
    project_id: str = Field(..., description="Project the task belongs to")
    stage_id: str = Field(..., description="Stage the task belongs to")
    title: str = Field("New Task", description="Task title")
    description: Optional[str] = Field(None, description="Task description")
    order: int = Field(0, description="Position of the task within its stage")
    status: TaskStatus = Field(TaskStatus.AVAILABLE, description="Task status")
    assignee: str = Field("", description="Assigned user ID (empty when available)")
    soft_deadline: Optional[datetime] = Field(
        None,
        description="After this point an assigned task may be reassigned to someone else",
    )
    hard_deadline: Optional[datetime] = Field(None, description="Terminal target date (informational)")
    points: int = Field(DEFAULT_POINTS, ge=1, description="Points awarded in full on completion")
    completion_percentage: int = Field(0, ge=0, le=100, description="Self-reported progress (informational)")
    assigned_at: Optional[datetime] = Field(None, description="When the current assignee took the task")
    completed_at: Optional[datetime] = Field(None, description="When the task was completed")
    can_be_reassigned: bool = Field(False, description="True only while the task is overdue")
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Task creation timestamp")
    updated_at: datetime = Field(default_factory=datetime.utcnow, description="Task last update timestamp")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    def is_past_soft_deadline(self, now: datetime) -> bool:
        """Whether `now` is strictly after the soft deadline.

        Tasks without a soft deadline never pass it.
        """
        if self.soft_deadline is None:
            return False
        return now > self.soft_deadline
