"""Repository layer for database operations.

Repositories stage changes on the session; they do not commit. The engine owns
the unit of work so that a task transition and the counters it drives are
committed (or rolled back) together.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy import and_, or_, asc, desc

from taskpool.models.task import Task, TaskStatus
from taskpool.models.stage import Project, Stage
from taskpool.models.user_stats import UserStats
from taskpool.database.models import ProjectDB, StageDB, TaskDB, UserStatsDB, enum_to_value
from taskpool.errors import ConflictError, InvalidStateError

logger = logging.getLogger(__name__)


class ProjectRepository:
    """Repository for Project database operations."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, project: Project) -> Project:
        """Stage a new project."""
        self.db.add(ProjectDB.from_pydantic(project))
        self.db.flush()
        logger.debug(f"Added project {project.id}: {project.title[:50]}")
        return project

    def get(self, project_id: str) -> Optional[Project]:
        """Get project by ID."""
        project_db = self.db.query(ProjectDB).filter(ProjectDB.id == project_id).first()
        return project_db.to_pydantic() if project_db else None


class StageRepository:
    """Repository for Stage database operations."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, stage: Stage) -> Stage:
        """Stage a new stage row."""
        self.db.add(StageDB.from_pydantic(stage))
        self.db.flush()
        logger.debug(f"Added stage {stage.id} to project {stage.project_id} at order {stage.order}")
        return stage

    def get(self, project_id: str, stage_id: str) -> Optional[Stage]:
        """Get a stage by ID within a project."""
        stage_db = self.db.query(StageDB).filter(
            StageDB.id == stage_id,
            StageDB.project_id == project_id,
        ).first()
        return stage_db.to_pydantic() if stage_db else None

    def list_for_project(self, project_id: str) -> List[Stage]:
        """Get all stages of a project sorted by order."""
        stages_db = self.db.query(StageDB).filter(
            StageDB.project_id == project_id,
        ).order_by(asc(StageDB.order), asc(StageDB.id)).all()
        return [stage_db.to_pydantic() for stage_db in stages_db]

    def next_order(self, project_id: str) -> int:
        """Order value for a stage appended at the end of the project."""
        stages = self.list_for_project(project_id)
        return (stages[-1].order + 1) if stages else 0

    def set_order(self, stage_id: str, order: int) -> None:
        self.db.query(StageDB).filter(StageDB.id == stage_id).update(
            {StageDB.order: order}, synchronize_session=False
        )

    def add_task_slot(self, stage_id: str) -> None:
        """Increment `total_tasks` for a newly created task."""
        affected = self.db.query(StageDB).filter(StageDB.id == stage_id).update(
            {StageDB.total_tasks: StageDB.total_tasks + 1}, synchronize_session=False
        )
        if not affected:
            raise ConflictError(f"Stage {stage_id} disappeared while adding a task")

    def remove_task_slot(self, stage_id: str, was_completed: bool) -> None:
        """Decrement counters for a deleted task, never below zero."""
        values = {StageDB.total_tasks: StageDB.total_tasks - 1}
        if was_completed:
            values[StageDB.tasks_completed] = StageDB.tasks_completed - 1
        conditions = [StageDB.id == stage_id, StageDB.total_tasks > 0]
        if was_completed:
            conditions.append(StageDB.tasks_completed > 0)
        affected = self.db.query(StageDB).filter(*conditions).update(values, synchronize_session=False)
        if not affected:
            raise ConflictError(f"Stage {stage_id} counters changed while removing a task")

    def record_completion(self, stage_id: str) -> None:
        """Increment `tasks_completed`, refusing to exceed `total_tasks`."""
        affected = self.db.query(StageDB).filter(
            StageDB.id == stage_id,
            StageDB.tasks_completed < StageDB.total_tasks,
        ).update(
            {StageDB.tasks_completed: StageDB.tasks_completed + 1}, synchronize_session=False
        )
        if not affected:
            raise InvalidStateError(f"Stage {stage_id} has no uncompleted task slots left")

    def delete(self, stage_id: str) -> bool:
        """Delete a stage together with its tasks."""
        self.db.query(TaskDB).filter(TaskDB.stage_id == stage_id).delete(synchronize_session=False)
        affected = self.db.query(StageDB).filter(StageDB.id == stage_id).delete(synchronize_session=False)
        logger.debug(f"Deleted stage {stage_id} ({affected} row)")
        return bool(affected)


class TaskRepository:
    """Repository for Task database operations."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, task: Task) -> Task:
        """Stage a new task."""
        self.db.add(TaskDB.from_pydantic(task))
        self.db.flush()
        logger.debug(f"Added task {task.id}: {task.title[:50]}")
        return task

    def get(self, project_id: str, stage_id: str, task_id: str) -> Optional[Task]:
        """Get a task by ID within its project and stage."""
        task_db = self.db.query(TaskDB).filter(
            TaskDB.id == task_id,
            TaskDB.project_id == project_id,
            TaskDB.stage_id == stage_id,
        ).first()
        return task_db.to_pydantic() if task_db else None

    def next_order(self, stage_id: str) -> int:
        """Order value for a task appended at the end of a stage."""
        last = self.db.query(TaskDB.order).filter(
            TaskDB.stage_id == stage_id,
        ).order_by(desc(TaskDB.order)).first()
        return (last[0] + 1) if last else 0

    def _observed(self, observed: Task) -> list:
        """Filter conditions requiring the row to still match an earlier read.

        Status alone is not enough: an assigned-past-deadline task reassigned
        to someone else stays `assigned`, so the assignee and assignment time
        are part of the compare-and-swap key.
        """
        conditions = [
            TaskDB.id == observed.id,
            TaskDB.status == enum_to_value(observed.status),
            TaskDB.assignee == observed.assignee,
        ]
        if observed.assigned_at is None:
            conditions.append(TaskDB.assigned_at.is_(None))
        else:
            conditions.append(TaskDB.assigned_at == observed.assigned_at)
        return conditions

    def transition(self, observed: Task, values: dict, now: Optional[datetime] = None) -> None:
        """Compare-and-swap update of a task read earlier in the unit of work.

        Applies `values` only if the task's status, assignee and assignment time
        still match `observed`.

        Raises:
            ConflictError: if the task changed (or vanished) since it was read.
        """
        columns = {
            getattr(TaskDB, name): enum_to_value(value) if name == "status" else value
            for name, value in values.items()
        }
        columns[TaskDB.updated_at] = now or datetime.utcnow()

        affected = self.db.query(TaskDB).filter(*self._observed(observed)).update(
            columns, synchronize_session=False
        )
        if not affected:
            raise ConflictError(f"Task {observed.id} changed since it was read")
        logger.debug(f"Task {observed.id}: {enum_to_value(observed.status)} -> {enum_to_value(values.get('status', observed.status))}")

    def delete(self, observed: Task) -> None:
        """Delete a task if it is unchanged since it was read."""
        affected = self.db.query(TaskDB).filter(*self._observed(observed)).delete(synchronize_session=False)
        if not affected:
            raise ConflictError(f"Task {observed.id} changed since it was read")
        logger.debug(f"Deleted task {observed.id}")

    def list_with_stage(self, project_id: str, statuses: Optional[List[TaskStatus]] = None) -> List[Tuple[Task, str, int]]:
        """Tasks of a project with their stage title and order.

        Sorted by stage order, then task order.
        """
        query = self.db.query(TaskDB, StageDB.title, StageDB.order).join(
            StageDB, TaskDB.stage_id == StageDB.id
        ).filter(TaskDB.project_id == project_id)
        if statuses:
            query = query.filter(TaskDB.status.in_([enum_to_value(s) for s in statuses]))
        rows = query.order_by(asc(StageDB.order), asc(TaskDB.order), asc(TaskDB.id)).all()
        return [(task_db.to_pydantic(), title, order) for task_db, title, order in rows]

    def find_overdue_candidates(
        self,
        now: datetime,
        limit: int,
        after: Optional[Tuple[str, str]] = None,
    ) -> List[Task]:
        """Assigned tasks whose soft deadline is before `now`, across all projects.

        Keyset-paginated on (stage_id, id): pass the last (stage_id, id) of the
        previous page as `after`.
        """
        query = self.db.query(TaskDB).filter(
            TaskDB.status == TaskStatus.ASSIGNED.value,
            TaskDB.soft_deadline.isnot(None),
            TaskDB.soft_deadline < now,
        )
        if after is not None:
            last_stage_id, last_task_id = after
            query = query.filter(
                or_(
                    TaskDB.stage_id > last_stage_id,
                    and_(TaskDB.stage_id == last_stage_id, TaskDB.id > last_task_id),
                )
            )
        tasks_db = query.order_by(asc(TaskDB.stage_id), asc(TaskDB.id)).limit(limit).all()
        return [task_db.to_pydantic() for task_db in tasks_db]


class UserStatsRepository:
    """Repository for per-project user statistics.

    All numeric updates are SQL-side expressions so that concurrent updates to
    the same row never lose increments.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, project_id: str, user_id: str) -> Optional[UserStats]:
        """Get stats for a user within a project."""
        stats_db = self.db.query(UserStatsDB).filter(
            UserStatsDB.project_id == project_id,
            UserStatsDB.user_id == user_id,
        ).first()
        return stats_db.to_pydantic() if stats_db else None

    def list_for_project(self, project_id: str, limit: Optional[int] = None) -> List[UserStats]:
        """Stats rows sorted by points (desc), then arrival order."""
        query = self.db.query(UserStatsDB).filter(
            UserStatsDB.project_id == project_id,
        ).order_by(
            desc(UserStatsDB.total_points),
            asc(UserStatsDB.created_at),
            asc(UserStatsDB.user_id),
        )
        if limit is not None:
            query = query.limit(limit)
        return [stats_db.to_pydantic() for stats_db in query.all()]

    def _update(self, project_id: str, user_id: str, values: dict, *conditions) -> int:
        return self.db.query(UserStatsDB).filter(
            UserStatsDB.project_id == project_id,
            UserStatsDB.user_id == user_id,
            *conditions,
        ).update(values, synchronize_session=False)

    def _insert(self, row: UserStatsDB) -> None:
        """Insert a lazily-created row.

        A concurrent first insert for the same user surfaces as a ConflictError
        so the caller's unit of work is retried against the existing row.
        """
        try:
            self.db.add(row)
            self.db.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"Stats row for {row.user_id} in project {row.project_id} was created concurrently"
            ) from e
        logger.debug(f"Created stats row for {row.user_id} in project {row.project_id}")

    def record_assignment(self, project_id: str, user_id: str, now: datetime) -> None:
        """Increment `tasks_assigned`, creating the row if absent."""
        affected = self._update(project_id, user_id, {
            UserStatsDB.tasks_assigned: UserStatsDB.tasks_assigned + 1,
            UserStatsDB.updated_at: now,
        })
        if affected:
            return
        self._insert(UserStatsDB(
            project_id=project_id,
            user_id=user_id,
            total_points=0,
            tasks_completed=0,
            tasks_assigned=1,
            average_completion_time=0.0,
            streak=0,
            created_at=now,
            updated_at=now,
        ))

    def record_unassignment(self, project_id: str, user_id: str, now: datetime) -> None:
        """Decrement `tasks_assigned`, flooring at zero. Missing rows are left alone."""
        self._update(
            project_id,
            user_id,
            {
                UserStatsDB.tasks_assigned: UserStatsDB.tasks_assigned - 1,
                UserStatsDB.updated_at: now,
            },
            UserStatsDB.tasks_assigned > 0,
        )

    def record_completion(self, project_id: str, user_id: str, points: int, hours: float, now: datetime) -> None:
        """Fold one completion into the user's aggregates, creating the row if absent."""
        from taskpool.engine.leaderboard import running_mean

        # SET expressions are evaluated against the pre-update row.
        affected = self._update(project_id, user_id, {
            UserStatsDB.total_points: UserStatsDB.total_points + points,
            UserStatsDB.tasks_completed: UserStatsDB.tasks_completed + 1,
            UserStatsDB.average_completion_time: running_mean(
                UserStatsDB.average_completion_time,
                UserStatsDB.tasks_completed + 1,
                hours,
            ),
            UserStatsDB.streak: UserStatsDB.streak + 1,
            UserStatsDB.updated_at: now,
        })
        if affected:
            return
        self._insert(UserStatsDB(
            project_id=project_id,
            user_id=user_id,
            total_points=points,
            tasks_completed=1,
            tasks_assigned=1,
            average_completion_time=hours,
            streak=1,
            created_at=now,
            updated_at=now,
        ))
