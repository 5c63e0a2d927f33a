"""Data models for taskpool."""

from taskpool.models.task import Task, TaskStatus
from taskpool.models.stage import Stage, Project
from taskpool.models.user_stats import UserStats
from taskpool.models.results import (
    ErrorKind,
    OperationResult,
    PoolTask,
    StageTaskStats,
    ProjectTaskStats,
    SweepReport,
)

__all__ = [
    "Task",
    "TaskStatus",
    "Stage",
    "Project",
    "UserStats",
    "ErrorKind",
    "OperationResult",
    "PoolTask",
    "StageTaskStats",
    "ProjectTaskStats",
    "SweepReport",
]
