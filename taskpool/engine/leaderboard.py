"""Leaderboard aggregation for taskpool.

Per-user statistics are denormalized: they are folded in incrementally by the
task pool's assign/unassign/complete transitions (see
`UserStatsRepository`) and only read here.
"""

import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session

from taskpool.models.user_stats import UserStats
from taskpool.models.constants import SECONDS_PER_HOUR
from taskpool.database.repository import UserStatsRepository
from taskpool.errors import InvalidInputError

logger = logging.getLogger(__name__)


def running_mean(previous_mean, count, sample):
    """Fold `sample` into a mean over `count - 1` earlier samples.

    Uses the incremental form `mean + (sample - mean) / count`, which is
    algebraically equal to `(mean * (count - 1) + sample) / count` but does not
    grow an intermediate sum. Works on plain numbers and on SQLAlchemy column
    expressions alike.

    Args:
        previous_mean: Mean of the first `count - 1` samples
        count: Number of samples including `sample` (>= 1)
        sample: The new value

    Returns:
        Mean of all `count` samples
    """
    return previous_mean + (sample - previous_mean) / count


def completion_hours(assigned_at: Optional[datetime], completed_at: datetime) -> float:
    """Hours between assignment and completion, never negative.

    Tasks without an assignment timestamp count as completed instantly.
    """
    if assigned_at is None:
        return 0.0
    seconds = (completed_at - assigned_at).total_seconds()
    return max(0.0, seconds / SECONDS_PER_HOUR)


class LeaderboardAggregator:
    """Read side of the per-user statistics."""

    def __init__(self, db: Session):
        self.db = db
        self.stats = UserStatsRepository(db)

    def get_leaderboard(self, project_id: str, limit: Optional[int] = None) -> List[UserStats]:
        """All stats rows of a project, highest points first.

        Ties keep arrival order (first activity in the project). `limit=0` yields
        an empty list.

        Raises:
            InvalidInputError: if `limit` is negative
        """
        if limit is not None and limit < 0:
            raise InvalidInputError("Leaderboard limit must be non-negative")
        rows = self.stats.list_for_project(project_id, limit=limit)
        logger.debug(f"Leaderboard for project {project_id}: {len(rows)} rows")
        return rows

    def get_user_stats(self, project_id: str, user_id: str) -> UserStats:
        """Stats for one user; a zeroed, unsaved row if the user has no activity yet."""
        stats = self.stats.get(project_id, user_id)
        if stats is None:
            return UserStats(project_id=project_id, user_id=user_id)
        return stats
