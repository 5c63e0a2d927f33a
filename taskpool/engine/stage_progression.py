"""Stage gating for taskpool.

A stage is locked until the stage before it has every task completed. Lock
state is derived on demand from the stage counters and never stored.
"""

from typing import List
from sqlalchemy.orm import Session

from taskpool.models.stage import Stage
from taskpool.database.repository import StageRepository


def compute_stage_locks(stages: List[Stage]) -> List[bool]:
    """Lock flags for stages already sorted by `order`.

    The first stage is never locked. A stage with no tasks counts as complete
    and never blocks the next one.

    Args:
        stages: Stages of one project in ascending order

    Returns:
        List of booleans, one per stage
    """
    locked: List[bool] = []
    for index, stage in enumerate(stages):
        if index == 0:
            locked.append(False)
            continue
        previous = stages[index - 1]
        locked.append(previous.tasks_completed < previous.total_tasks)
    return locked


class StageProgressionTracker:
    """Reads a project's stages and reports which ones are locked."""

    def __init__(self, db: Session):
        self.stages = StageRepository(db)

    def get_stage_lock_status(self, project_id: str) -> List[bool]:
        """Lock flags for the project's stages in order (empty for unknown projects)."""
        return compute_stage_locks(self.stages.list_for_project(project_id))
