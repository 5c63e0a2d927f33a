"""SQLAlchemy database models for taskpool."""

from datetime import datetime
import uuid
from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, ForeignKey, Index

from typing import Union, TypeVar, Type
from taskpool.database.database import Base
from taskpool.models.task import TaskStatus
from taskpool.models.constants import DEFAULT_POINTS

T = TypeVar('T')


def enum_to_value(enum_obj: Union[str, T]) -> str:
    """Convert enum to string value (handles both enum and string).
    
    Args:
        enum_obj: Enum instance or string value
        
    Returns:
        String value of the enum, or the string itself if already a string
    """
    if hasattr(enum_obj, 'value'):
        return enum_obj.value
    return str(enum_obj)


def value_to_enum(value: str, enum_class: Type[T], default: T) -> T:
    """Convert string to enum with fallback to default.
    
    Args:
        value: String value to convert
        enum_class: Enum class to convert to
        default: Default enum value if conversion fails
        
    Returns:
        Enum instance, or default if conversion fails
    """
    if not value:
        return default
    try:
        return enum_class(value.lower())
    except (ValueError, AttributeError):
        return default


class ProjectDB(Base):
    """Database model for Project."""

    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from taskpool.models.stage import Project
        return Project(id=self.id, title=self.title, created_at=self.created_at)

    @classmethod
    def from_pydantic(cls, project):
        """Create database model from Pydantic model."""
        return cls(id=project.id, title=project.title, created_at=project.created_at)


class StageDB(Base):
    """Database model for Stage."""

    __tablename__ = "stages"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False, default="")
    order = Column(Integer, nullable=False, default=0)

    # Denormalized counters (kept consistent by every task mutation)
    total_tasks = Column(Integer, nullable=False, default=0)
    tasks_completed = Column(Integer, nullable=False, default=0)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from taskpool.models.stage import Stage
        return Stage(
            id=self.id,
            project_id=self.project_id,
            title=self.title,
            order=self.order,
            total_tasks=self.total_tasks,
            tasks_completed=self.tasks_completed,
        )

    @classmethod
    def from_pydantic(cls, stage):
        """Create database model from Pydantic model."""
        return cls(
            id=stage.id,
            project_id=stage.project_id,
            title=stage.title,
            order=stage.order,
            total_tasks=stage.total_tasks,
            tasks_completed=stage.tasks_completed,
        )


class TaskDB(Base):
    """Database model for Task."""

    __tablename__ = "tasks"
    __table_args__ = (
        # Serves the sweeper query: status = assigned AND soft_deadline < now
        Index("ix_tasks_status_soft_deadline", "status", "soft_deadline"),
    )

    # Primary key
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # Ownership
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    stage_id = Column(String, ForeignKey("stages.id", ondelete="CASCADE"), nullable=False, index=True)

    # Basic fields
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    order = Column(Integer, nullable=False, default=0)

    # State machine
    status = Column(String, nullable=False, default=TaskStatus.AVAILABLE.value, index=True)
    assignee = Column(String, nullable=False, default="", index=True)
    can_be_reassigned = Column(Boolean, nullable=False, default=False)

    # Deadlines
    soft_deadline = Column(DateTime, nullable=True)
    hard_deadline = Column(DateTime, nullable=True)

    # Scoring
    points = Column(Integer, nullable=False, default=DEFAULT_POINTS)
    completion_percentage = Column(Integer, nullable=False, default=0)

    # Timestamps
    assigned_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from taskpool.models.task import Task

        return Task(
            id=self.id,
            project_id=self.project_id,
            stage_id=self.stage_id,
            title=self.title,
            description=self.description,
            order=self.order,
            status=value_to_enum(self.status, TaskStatus, TaskStatus.AVAILABLE),
            assignee=self.assignee or "",
            soft_deadline=self.soft_deadline,
            hard_deadline=self.hard_deadline,
            points=self.points or DEFAULT_POINTS,
            completion_percentage=self.completion_percentage or 0,
            assigned_at=self.assigned_at,
            completed_at=self.completed_at,
            can_be_reassigned=bool(self.can_be_reassigned),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_pydantic(cls, task):
        """Create database model from Pydantic model."""
        return cls(
            id=task.id,
            project_id=task.project_id,
            stage_id=task.stage_id,
            title=task.title,
            description=task.description,
            order=task.order,
            status=enum_to_value(task.status),
            assignee=task.assignee,
            soft_deadline=task.soft_deadline,
            hard_deadline=task.hard_deadline,
            points=task.points,
            completion_percentage=task.completion_percentage,
            assigned_at=task.assigned_at,
            completed_at=task.completed_at,
            can_be_reassigned=task.can_be_reassigned,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )


class UserStatsDB(Base):
    """Database model for per-project user statistics."""

    __tablename__ = "user_stats"

    # Composite primary key: one row per project/user.
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, primary_key=True)

    total_points = Column(Integer, nullable=False, default=0)
    tasks_completed = Column(Integer, nullable=False, default=0)
    tasks_assigned = Column(Integer, nullable=False, default=0)
    average_completion_time = Column(Float, nullable=False, default=0.0)
    streak = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from taskpool.models.user_stats import UserStats
        return UserStats(
            project_id=self.project_id,
            user_id=self.user_id,
            total_points=self.total_points,
            tasks_completed=self.tasks_completed,
            tasks_assigned=self.tasks_assigned,
            average_completion_time=self.average_completion_time,
            streak=self.streak,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
