"""Stage and Project data models for taskpool."""

from datetime import datetime
from pydantic import BaseModel, Field


class Project(BaseModel):
    """A project: an ordered list of stages."""

    id: str = Field(..., description="Unique project identifier")
    title: str = Field(..., description="Project title")
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Project creation timestamp")


class Stage(BaseModel):
    """A stage within a project.

    `total_tasks` and `tasks_completed` are denormalized counters maintained by
    every operation that creates, deletes or completes a task.
    """

    id: str = Field(..., description="Unique stage identifier")
    project_id: str = Field(..., description="Owning project")
    title: str = Field("", description="Stage title")
    order: int = Field(0, ge=0, description="0-based position within the project")
    total_tasks: int = Field(0, ge=0, description="Number of tasks in the stage")
    tasks_completed: int = Field(0, ge=0, description="Number of completed tasks in the stage")
