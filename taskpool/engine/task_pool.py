"""Task pool state machine for taskpool.

Tasks move through:

    available --assign--> assigned --complete--> completed
    assigned --unassign (assignee only)--> available
    assigned/overdue --update_progress (assignee only)--> unchanged status
    assigned --deadline sweep--> overdue --assign--> assigned (reassignment)

Every operation is one unit of work: the task is read, validated, written with
a compare-and-swap on the state that was read, and the stage/user counters it
drives are updated in the same transaction before a single commit.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from taskpool.models.task import Task, TaskStatus
from taskpool.models.results import OperationResult, PoolTask, ErrorKind
from taskpool.models.constants import MIN_COMPLETION_PERCENTAGE, MAX_COMPLETION_PERCENTAGE
from taskpool.database.repository import TaskRepository, StageRepository, UserStatsRepository
from taskpool.engine.leaderboard import completion_hours
from taskpool.errors import (
    TaskPoolError,
    ConflictError,
    NotFoundError,
    ForbiddenError,
    InvalidStateError,
    AlreadyCompletedError,
    InvalidInputError,
)

logger = logging.getLogger(__name__)

# A lost compare-and-swap is retried once against fresh state
MAX_ATTEMPTS = 2


class TaskPoolManager:
    """Assignment, unassignment and completion of pooled tasks."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.clock = clock
        self.tasks = TaskRepository(db)
        self.stages = StageRepository(db)
        self.stats = UserStatsRepository(db)

    def _run(self, action: str, task_id: str, operation: Callable[[], OperationResult]) -> OperationResult:
        """Execute `operation` as one committed unit, translating domain errors."""
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                result = operation()
                self.db.commit()
                return result
            except ConflictError as e:
                self.db.rollback()
                if attempt < MAX_ATTEMPTS:
                    logger.warning(f"Lost race on {action} of task {task_id}; retrying with fresh state")
                    continue
                logger.warning(f"Giving up {action} of task {task_id}: {e.message}")
                return OperationResult.failed(e.kind, e.message)
            except TaskPoolError as e:
                self.db.rollback()
                logger.warning(f"Rejected {action} of task {task_id}: {e.message}")
                return OperationResult.failed(e.kind, e.message)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Store failure during {action} of task {task_id}: {type(e).__name__}: {str(e)}")
                return OperationResult.failed(ErrorKind.STORE_UNAVAILABLE, f"Could not {action} task: {str(e)}")
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to {action} task {task_id}: {type(e).__name__}: {str(e)}")
                raise

    def _load(self, project_id: str, stage_id: str, task_id: str) -> Task:
        task = self.tasks.get(project_id, stage_id, task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    @staticmethod
    def _require_user(user_id: str) -> None:
        if not user_id:
            raise InvalidInputError("User ID is required")

    def assign_task(self, task_id: str, project_id: str, stage_id: str, user_id: str) -> OperationResult:
        """Give a task to `user_id`.

        Allowed from available, from overdue, and from assigned once the soft
        deadline has passed (the sweep need not have run yet). Reassignment does
        not touch the previous assignee's `tasks_assigned`.
        """
        def operation() -> OperationResult:
            self._require_user(user_id)
            task = self._load(project_id, stage_id, task_id)
            now = self.clock()

            if task.status == TaskStatus.COMPLETED:
                raise InvalidStateError("Task is not available for assignment")
            if task.status == TaskStatus.ASSIGNED and not task.is_past_soft_deadline(now):
                raise InvalidStateError("Task is currently assigned and not overdue")

            self.tasks.transition(task, {
                "status": TaskStatus.ASSIGNED,
                "assignee": user_id,
                "assigned_at": now,
                "can_be_reassigned": False,
            }, now=now)
            self.stats.record_assignment(project_id, user_id, now)

            if task.assignee and task.assignee != user_id:
                logger.info(f"Task {task_id} reassigned from {task.assignee} to {user_id}")
            else:
                logger.info(f"Task {task_id} assigned to {user_id}")
            return OperationResult.ok("Task assigned successfully")

        return self._run("assign", task_id, operation)

    def unassign_task(self, task_id: str, project_id: str, stage_id: str, user_id: str) -> OperationResult:
        """Return a task to the pool. Only its current assignee may do this."""
        def operation() -> OperationResult:
            self._require_user(user_id)
            task = self._load(project_id, stage_id, task_id)
            now = self.clock()

            if task.assignee != user_id:
                raise ForbiddenError("You are not assigned to this task")
            if task.status == TaskStatus.COMPLETED:
                # Would orphan the stage/user completion counters
                raise InvalidStateError("Completed tasks cannot be unassigned")

            self.tasks.transition(task, {
                "status": TaskStatus.AVAILABLE,
                "assignee": "",
                "assigned_at": None,
                "can_be_reassigned": False,
            }, now=now)
            self.stats.record_unassignment(project_id, user_id, now)

            logger.info(f"Task {task_id} unassigned by {user_id}")
            return OperationResult.ok("Task unassigned successfully")

        return self._run("unassign", task_id, operation)

    def complete_task(self, task_id: str, project_id: str, stage_id: str, user_id: str) -> OperationResult:
        """Mark a task completed by its assignee and award its points.

        The task, its stage's `tasks_completed` and the user's stats are
        committed together.
        """
        def operation() -> OperationResult:
            self._require_user(user_id)
            task = self._load(project_id, stage_id, task_id)
            now = self.clock()

            if task.assignee != user_id:
                raise ForbiddenError("You are not assigned to this task")
            if task.status == TaskStatus.COMPLETED:
                raise AlreadyCompletedError("Task is already completed")

            hours = completion_hours(task.assigned_at, now)
            self.tasks.transition(task, {
                "status": TaskStatus.COMPLETED,
                "completed_at": now,
                "can_be_reassigned": False,
            }, now=now)
            self.stages.record_completion(task.stage_id)
            self.stats.record_completion(project_id, user_id, task.points, hours, now)

            logger.info(f"Task {task_id} completed by {user_id} in {hours:.2f}h (+{task.points} points)")
            return OperationResult.ok("Task completed successfully", points_earned=task.points)

        return self._run("complete", task_id, operation)

    def update_progress(
        self,
        task_id: str,
        project_id: str,
        stage_id: str,
        user_id: str,
        completion_percentage: int,
    ) -> OperationResult:
        """Record self-reported progress on a task held by the caller.

        Only the current assignee may report progress, and not once the task is
        completed. Progress is informational and never completes the task.
        """
        def operation() -> OperationResult:
            self._require_user(user_id)
            if not MIN_COMPLETION_PERCENTAGE <= completion_percentage <= MAX_COMPLETION_PERCENTAGE:
                raise InvalidInputError("Completion percentage must be between 0 and 100")
            task = self._load(project_id, stage_id, task_id)

            if task.assignee != user_id:
                raise ForbiddenError("You are not assigned to this task")
            if task.status == TaskStatus.COMPLETED:
                raise InvalidStateError("Progress of a completed task cannot change")

            self.tasks.transition(task, {"completion_percentage": completion_percentage}, now=self.clock())

            logger.debug(f"Task {task_id} progress set to {completion_percentage}% by {user_id}")
            return OperationResult.ok("Progress updated successfully")

        return self._run("update", task_id, operation)

    def get_available_tasks(self, project_id: str) -> List[PoolTask]:
        """Tasks anyone may pick up: available ones, and overdue ones open for reassignment."""
        rows = self.tasks.list_with_stage(project_id, statuses=[TaskStatus.AVAILABLE, TaskStatus.OVERDUE])
        return [
            PoolTask(task=task, stage_title=title, stage_order=order)
            for task, title, order in rows
            if not task.assignee or task.can_be_reassigned
        ]

    def get_overdue_tasks(self, project_id: str, now: Optional[datetime] = None) -> List[PoolTask]:
        """Uncompleted tasks whose soft deadline has passed.

        Includes assigned tasks the sweep has not flipped yet, since those are
        already open for reassignment.
        """
        now = now or self.clock()
        rows = self.tasks.list_with_stage(
            project_id,
            statuses=[TaskStatus.AVAILABLE, TaskStatus.ASSIGNED, TaskStatus.OVERDUE],
        )
        return [
            PoolTask(task=task, stage_title=title, stage_order=order)
            for task, title, order in rows
            if task.is_past_soft_deadline(now)
        ]
