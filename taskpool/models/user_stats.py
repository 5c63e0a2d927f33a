"""Per-user performance statistics for taskpool."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class UserStats(BaseModel):
    """Leaderboard row for one user within one project."""

    project_id: str = Field(..., description="Project the stats are scoped to")
    user_id: str = Field(..., description="User identifier")
    total_points: int = Field(0, ge=0, description="Sum of points over completed tasks")
    tasks_completed: int = Field(0, ge=0, description="Number of completed tasks")
    tasks_assigned: int = Field(0, ge=0, description="Number of assignments taken")
    average_completion_time: float = Field(0.0, ge=0.0, description="Mean completion time in hours")
    streak: int = Field(0, ge=0, description="Consecutive completions")
    created_at: Optional[datetime] = Field(None, description="First activity (leaderboard tie-break)")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")
