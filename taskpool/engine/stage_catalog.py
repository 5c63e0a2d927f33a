"""Project, stage and task lifecycle for taskpool.

Creating and deleting tasks moves the stage's denormalized counters, so these
operations run as single units of work like the task pool transitions.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from taskpool.models.task import Task, TaskStatus
from taskpool.models.stage import Project, Stage
from taskpool.models.results import OperationResult, ProjectTaskStats, StageTaskStats
from taskpool.models.constants import DEFAULT_POINTS, DEFAULT_TASK_TITLE
from taskpool.database.repository import ProjectRepository, StageRepository, TaskRepository
from taskpool.errors import (
    TaskPoolError,
    NotFoundError,
    InvalidInputError,
    InvalidStateError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to naive UTC (the storage convention)."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _percentage(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


class StageCatalog:
    """Creates, edits and deletes projects, stages and tasks."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.clock = clock
        self.projects = ProjectRepository(db)
        self.stages = StageRepository(db)
        self.tasks = TaskRepository(db)

    def _commit(self, action: str, subject: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to {action} {subject}: {type(e).__name__}: {str(e)}")
            raise StoreUnavailableError(f"Could not {action} {subject}: {str(e)}") from e

    def _reject(self, action: str, subject: str, error: TaskPoolError) -> OperationResult:
        self.db.rollback()
        logger.warning(f"Rejected {action} of {subject}: {error.message}")
        return OperationResult.failed(error.kind, error.message)

    def _store_failure(self, action: str, subject: str, error: SQLAlchemyError) -> StoreUnavailableError:
        self.db.rollback()
        logger.error(f"Failed to {action} {subject}: {type(error).__name__}: {str(error)}")
        return StoreUnavailableError(f"Could not {action} {subject}: {str(error)}")

    def _require_project(self, project_id: str) -> Project:
        project = self.projects.get(project_id)
        if project is None:
            raise NotFoundError("Project not found")
        return project

    def _require_stage(self, project_id: str, stage_id: str) -> Stage:
        stage = self.stages.get(project_id, stage_id)
        if stage is None:
            raise NotFoundError("Stage not found")
        return stage

    def create_project(self, title: str) -> Project:
        """Create an empty project.

        Raises:
            InvalidInputError: if the title is blank
            StoreUnavailableError: if the database write fails
        """
        if not title or not title.strip():
            raise InvalidInputError("Project title cannot be empty")
        project = Project(id=str(uuid.uuid4()), title=title.strip(), created_at=self.clock())
        try:
            self.projects.add(project)
        except SQLAlchemyError as e:
            raise self._store_failure("create", f"project {project.id}", e) from e
        self._commit("create", f"project {project.id}")
        logger.info(f"Created project {project.id}: {project.title[:50]}")
        return project

    def create_stage(self, project_id: str, title: str, order: Optional[int] = None) -> Stage:
        """Add a stage with zeroed counters, appended at the end unless `order` is given."""
        try:
            self._require_project(project_id)
            if order is None:
                order = self.stages.next_order(project_id)
            if order < 0:
                raise InvalidInputError("Stage order must be non-negative")
            stage = self.stages.add(Stage(
                id=str(uuid.uuid4()),
                project_id=project_id,
                title=title,
                order=order,
            ))
        except SQLAlchemyError as e:
            raise self._store_failure("create", f"stage in project {project_id}", e) from e
        self._commit("create", f"stage {stage.id}")
        logger.info(f"Created stage {stage.id} in project {project_id} at order {order}")
        return stage

    def get_stages(self, project_id: str) -> List[Stage]:
        return self.stages.list_for_project(project_id)

    def reorder_stages(self, project_id: str, ordered_stage_ids: List[str]) -> OperationResult:
        """Rewrite stage order as 0..n-1 following `ordered_stage_ids`.

        The ids must be exactly the project's stages.
        """
        subject = f"stages of project {project_id}"
        try:
            self._require_project(project_id)
            current = {stage.id for stage in self.stages.list_for_project(project_id)}
            if len(ordered_stage_ids) != len(set(ordered_stage_ids)) or set(ordered_stage_ids) != current:
                raise InvalidInputError("Stage ids must list every stage of the project exactly once")
            for order, stage_id in enumerate(ordered_stage_ids):
                self.stages.set_order(stage_id, order)
            self._commit("reorder", subject)
        except TaskPoolError as e:
            return self._reject("reorder", subject, e)
        except SQLAlchemyError as e:
            return self._reject("reorder", subject, self._store_failure("reorder", subject, e))
        logger.info(f"Reordered {len(ordered_stage_ids)} stages in project {project_id}")
        return OperationResult.ok("Stages reordered successfully")

    def delete_stage(self, project_id: str, stage_id: str) -> OperationResult:
        """Delete a stage and all of its tasks."""
        subject = f"stage {stage_id}"
        try:
            self._require_stage(project_id, stage_id)
            self.stages.delete(stage_id)
            self._commit("delete", subject)
        except TaskPoolError as e:
            return self._reject("delete", subject, e)
        except SQLAlchemyError as e:
            return self._reject("delete", subject, self._store_failure("delete", subject, e))
        logger.info(f"Deleted stage {stage_id} from project {project_id}")
        return OperationResult.ok("Stage deleted successfully")

    def create_task(
        self,
        project_id: str,
        stage_id: str,
        title: str = DEFAULT_TASK_TITLE,
        description: Optional[str] = None,
        soft_deadline: Optional[datetime] = None,
        hard_deadline: Optional[datetime] = None,
        points: int = DEFAULT_POINTS,
    ) -> Task:
        """Create an available task and count it in the stage's `total_tasks`."""
        if points < 1:
            raise InvalidInputError("Points must be a positive integer")
        now = self.clock()
        try:
            self._require_stage(project_id, stage_id)
            task = Task(
                id=str(uuid.uuid4()),
                project_id=project_id,
                stage_id=stage_id,
                title=title or DEFAULT_TASK_TITLE,
                description=description,
                order=self.tasks.next_order(stage_id),
                status=TaskStatus.AVAILABLE,
                assignee="",
                soft_deadline=to_naive_utc(soft_deadline),
                hard_deadline=to_naive_utc(hard_deadline),
                points=points,
                created_at=now,
                updated_at=now,
            )
            self.tasks.add(task)
            self.stages.add_task_slot(stage_id)
        except TaskPoolError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            raise self._store_failure("create", f"task in stage {stage_id}", e) from e
        self._commit("create", f"task {task.id}")
        logger.info(f"Created task {task.id} in stage {stage_id} ({points} points)")
        return task

    def update_task(
        self,
        project_id: str,
        stage_id: str,
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        soft_deadline: Optional[datetime] = None,
        hard_deadline: Optional[datetime] = None,
        points: Optional[int] = None,
    ) -> OperationResult:
        """Edit a task's descriptive fields.

        Points are ignored unless positive, and cannot change once the task is
        completed (they were awarded at completion). Progress is reported by the
        assignee through `TaskPoolManager.update_progress`.
        """
        subject = f"task {task_id}"
        try:
            task = self.tasks.get(project_id, stage_id, task_id)
            if task is None:
                raise NotFoundError("Task not found")

            values = {}
            if title is not None:
                values["title"] = title
            if description is not None:
                values["description"] = description
            if soft_deadline is not None:
                values["soft_deadline"] = to_naive_utc(soft_deadline)
            if hard_deadline is not None:
                values["hard_deadline"] = to_naive_utc(hard_deadline)
            if points is not None and points > 0:
                if task.status == TaskStatus.COMPLETED and points != task.points:
                    raise InvalidStateError("Points of a completed task cannot change")
                values["points"] = points

            if values:
                self.tasks.transition(task, values, now=self.clock())
            self._commit("update", subject)
        except TaskPoolError as e:
            return self._reject("update", subject, e)
        except SQLAlchemyError as e:
            return self._reject("update", subject, self._store_failure("update", subject, e))
        logger.debug(f"Updated task {task_id}: {sorted(values)}")
        return OperationResult.ok("Task updated successfully")

    def delete_task(self, project_id: str, stage_id: str, task_id: str) -> OperationResult:
        """Delete a task and release its slot in the stage counters."""
        subject = f"task {task_id}"
        try:
            task = self.tasks.get(project_id, stage_id, task_id)
            if task is None:
                raise NotFoundError("Task not found")
            self.tasks.delete(task)
            self.stages.remove_task_slot(stage_id, was_completed=task.status == TaskStatus.COMPLETED)
            self._commit("delete", subject)
        except TaskPoolError as e:
            return self._reject("delete", subject, e)
        except SQLAlchemyError as e:
            return self._reject("delete", subject, self._store_failure("delete", subject, e))
        logger.info(f"Deleted task {task_id} from stage {stage_id}")
        return OperationResult.ok("Task deleted successfully")

    def get_project_stats(self, project_id: str, now: Optional[datetime] = None) -> ProjectTaskStats:
        """Task counts for a project, computed from the tasks themselves.

        `assigned_tasks` counts tasks held by someone and not completed; those
        past their soft deadline are also counted in `overdue_tasks`. The
        per-stage breakdown comes from the stage counters.
        """
        now = now or self.clock()
        stages = self.stages.list_for_project(project_id)
        stats = ProjectTaskStats(
            stage_count=len(stages),
            stage_breakdown=[
                StageTaskStats(
                    stage_id=stage.id,
                    stage_title=stage.title,
                    order=stage.order,
                    total_tasks=stage.total_tasks,
                    completed_tasks=stage.tasks_completed,
                    completion_rate=_percentage(stage.tasks_completed, stage.total_tasks),
                )
                for stage in stages
            ],
        )
        for task, _, _ in self.tasks.list_with_stage(project_id):
            stats.total_tasks += 1
            if task.status == TaskStatus.COMPLETED:
                stats.completed_tasks += 1
            elif task.assignee:
                stats.assigned_tasks += 1
                if task.status == TaskStatus.OVERDUE or task.is_past_soft_deadline(now):
                    stats.overdue_tasks += 1
            else:
                stats.available_tasks += 1
        stats.completion_rate = _percentage(stats.completed_tasks, stats.total_tasks)
        return stats
