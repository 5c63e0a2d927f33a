"""Tests for the overdue deadline sweep."""

import pytest
from datetime import timedelta

from taskpool.database.repository import TaskRepository
from taskpool.engine.deadline_sweeper import DeadlineSweeper, get_sweep_page_size
from taskpool.models.task import TaskStatus
from taskpool.models.results import ErrorKind
from taskpool.models.constants import DEFAULT_SWEEP_PAGE_SIZE


def _reload(db_session, task):
    return TaskRepository(db_session).get(task.project_id, task.stage_id, task.id)


def _assign(task_pool, task, user_id="user-1"):
    assert task_pool.assign_task(task.id, task.project_id, task.stage_id, user_id).success


class TestSweepOverdueTasks:
    """Test sweep_overdue_tasks()."""

    def test_marks_past_deadline_task_overdue(self, sweeper, task_pool, task, db_session, clock):
        """Overdue keeps the assignee and opens the task for reassignment."""
        _assign(task_pool, task)
        clock.advance(days=3)

        result, report = sweeper.sweep_overdue_tasks()

        assert result.success is True
        assert report.tasks_marked_overdue == 1
        assert report.stages_processed == 1
        assert report.stages_failed == 0
        stored = _reload(db_session, task)
        assert stored.status == TaskStatus.OVERDUE
        assert stored.can_be_reassigned is True
        assert stored.assignee == "user-1"

    def test_reassignment_after_sweep(self, sweeper, task_pool, task, db_session, clock, leaderboard):
        _assign(task_pool, task)
        clock.advance(days=3)
        sweeper.sweep_overdue_tasks()

        result = task_pool.assign_task(task.id, task.project_id, task.stage_id, "user-2")

        assert result.success is True
        stored = _reload(db_session, task)
        assert stored.status == TaskStatus.ASSIGNED
        assert stored.assignee == "user-2"
        assert stored.can_be_reassigned is False
        assert leaderboard.get_user_stats(task.project_id, "user-2").tasks_assigned == 1
        assert leaderboard.get_user_stats(task.project_id, "user-1").tasks_assigned == 1

    def test_sweep_is_idempotent(self, sweeper, task_pool, task, db_session, clock):
        _assign(task_pool, task)
        clock.advance(days=3)
        sweeper.sweep_overdue_tasks()
        first = _reload(db_session, task)

        result, report = sweeper.sweep_overdue_tasks()

        assert result.success is True
        assert report.tasks_marked_overdue == 0
        second = _reload(db_session, task)
        assert second.status == TaskStatus.OVERDUE
        assert second.updated_at == first.updated_at

    def test_leaves_other_tasks_untouched(self, sweeper, task_pool, make_task, db_session, clock):
        """Only assigned tasks past their soft deadline are flipped."""
        not_due = make_task(soft_deadline=clock.now + timedelta(days=10))
        no_deadline = make_task(soft_deadline=None)
        completed = make_task()
        available = make_task()
        for task in (not_due, no_deadline, completed):
            _assign(task_pool, task)
        task_pool.complete_task(completed.id, completed.project_id, completed.stage_id, "user-1")
        clock.advance(days=3)

        result, report = sweeper.sweep_overdue_tasks()

        assert report.tasks_marked_overdue == 0
        assert _reload(db_session, not_due).status == TaskStatus.ASSIGNED
        assert _reload(db_session, no_deadline).status == TaskStatus.ASSIGNED
        assert _reload(db_session, completed).status == TaskStatus.COMPLETED
        assert _reload(db_session, available).status == TaskStatus.AVAILABLE

    def test_deadline_boundary_is_exclusive(self, sweeper, task_pool, make_task, db_session, clock):
        task = make_task(soft_deadline=clock.now + timedelta(hours=1))
        _assign(task_pool, task)
        clock.advance(hours=1)

        sweeper.sweep_overdue_tasks()
        assert _reload(db_session, task).status == TaskStatus.ASSIGNED

        clock.advance(seconds=1)
        sweeper.sweep_overdue_tasks()
        assert _reload(db_session, task).status == TaskStatus.OVERDUE

    def test_sweeps_every_project(self, sweeper, catalog, task_pool, make_task, db_session, clock, now):
        other_project = catalog.create_project("Other Project")
        other_stage = catalog.create_stage(other_project.id, "Other Stage")
        foreign = catalog.create_task(other_project.id, other_stage.id, soft_deadline=now + timedelta(days=1))
        local = make_task()
        _assign(task_pool, foreign)
        _assign(task_pool, local)
        clock.advance(days=3)

        result, report = sweeper.sweep_overdue_tasks()

        assert report.tasks_marked_overdue == 2
        assert report.stages_processed == 2
        assert _reload(db_session, foreign).status == TaskStatus.OVERDUE
        assert _reload(db_session, local).status == TaskStatus.OVERDUE

    def test_pages_through_candidates(self, db_session, catalog, task_pool, make_task, project, clock):
        """Small pages still cover every candidate across stages."""
        second_stage = catalog.create_stage(project.id, "Stage 2")
        tasks = [make_task() for _ in range(3)] + [make_task(stage_id=second_stage.id) for _ in range(2)]
        for task in tasks:
            _assign(task_pool, task)
        clock.advance(days=3)

        result, report = DeadlineSweeper(db_session, clock=clock, page_size=2).sweep_overdue_tasks()

        assert result.success is True
        assert report.tasks_marked_overdue == 5
        assert report.stages_failed == 0
        for task in tasks:
            assert _reload(db_session, task).status == TaskStatus.OVERDUE

    def test_failing_stage_does_not_abort_others(self, sweeper, catalog, task_pool, make_task, project, stage, db_session, clock, monkeypatch):
        second_stage = catalog.create_stage(project.id, "Stage 2")
        broken = make_task()
        healthy = make_task(stage_id=second_stage.id)
        _assign(task_pool, broken)
        _assign(task_pool, healthy)
        clock.advance(days=3)

        original_transition = sweeper.tasks.transition

        def transition(observed, values, now=None):
            if observed.stage_id == stage.id:
                raise RuntimeError("disk I/O error")
            return original_transition(observed, values, now=now)

        monkeypatch.setattr(sweeper.tasks, "transition", transition)

        result, report = sweeper.sweep_overdue_tasks()

        assert result.success is True
        assert report.stages_failed == 1
        assert report.failed_stage_ids == [stage.id]
        assert report.stages_processed == 1
        assert report.tasks_marked_overdue == 1
        assert _reload(db_session, broken).status == TaskStatus.ASSIGNED
        assert _reload(db_session, healthy).status == TaskStatus.OVERDUE

    def test_query_failure_is_reported(self, sweeper, monkeypatch):
        def broken_query(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(sweeper.tasks, "find_overdue_candidates", broken_query)

        result, report = sweeper.sweep_overdue_tasks()

        assert result.success is False
        assert result.error == ErrorKind.STORE_UNAVAILABLE
        assert report.tasks_marked_overdue == 0

    def test_original_assignee_completes_overdue_task(self, sweeper, task_pool, task, db_session, clock, stage, leaderboard):
        _assign(task_pool, task)
        clock.advance(days=3)
        sweeper.sweep_overdue_tasks()

        result = task_pool.complete_task(task.id, task.project_id, task.stage_id, "user-1")

        assert result.success is True
        assert result.points_earned == 2
        assert _reload(db_session, task).status == TaskStatus.COMPLETED
        assert leaderboard.get_user_stats(task.project_id, "user-1").total_points == 2


class TestSweepPageSize:
    """Test SWEEP_PAGE_SIZE configuration."""

    def test_default(self, monkeypatch):
        monkeypatch.delenv("SWEEP_PAGE_SIZE", raising=False)
        assert get_sweep_page_size() == DEFAULT_SWEEP_PAGE_SIZE

    def test_from_environment(self, monkeypatch, db_session):
        monkeypatch.setenv("SWEEP_PAGE_SIZE", "25")
        assert get_sweep_page_size() == 25
        assert DeadlineSweeper(db_session).page_size == 25

    def test_explicit_page_size_wins(self, monkeypatch, db_session):
        monkeypatch.setenv("SWEEP_PAGE_SIZE", "25")
        assert DeadlineSweeper(db_session, page_size=7).page_size == 7
