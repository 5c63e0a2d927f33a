"""Task pool and stage progression engine for taskpool."""

from taskpool.engine.task_pool import TaskPoolManager
from taskpool.engine.leaderboard import LeaderboardAggregator, running_mean, completion_hours
from taskpool.engine.stage_progression import StageProgressionTracker, compute_stage_locks
from taskpool.engine.deadline_sweeper import DeadlineSweeper
from taskpool.engine.stage_catalog import StageCatalog

__all__ = [
    "TaskPoolManager",
    "LeaderboardAggregator",
    "running_mean",
    "completion_hours",
    "StageProgressionTracker",
    "compute_stage_locks",
    "DeadlineSweeper",
    "StageCatalog",
]
