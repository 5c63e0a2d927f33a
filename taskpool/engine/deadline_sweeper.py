"""Deadline sweep for taskpool.

Flips assigned tasks whose soft deadline has passed to overdue so that other
users may take them over. The assignee is kept, so the original holder can
still complete the task.

Candidates come from one indexed query (`status = assigned AND soft_deadline <
now`) paged across all projects; each stage's batch is committed on its own, and
a failing stage is logged and skipped without aborting the rest.

Intended to be run by an external scheduler:

    python -m taskpool.engine.deadline_sweeper
"""

import logging
import os
import sys
from datetime import datetime
from itertools import groupby
from typing import Callable, List, Optional, Tuple
from sqlalchemy.orm import Session

from taskpool.models.task import Task, TaskStatus
from taskpool.models.results import OperationResult, ErrorKind, SweepReport
from taskpool.models.constants import DEFAULT_SWEEP_PAGE_SIZE
from taskpool.database.repository import TaskRepository
from taskpool.errors import ConflictError

logger = logging.getLogger(__name__)


def get_sweep_page_size() -> int:
    return int(os.getenv("SWEEP_PAGE_SIZE", str(DEFAULT_SWEEP_PAGE_SIZE)))


class DeadlineSweeper:
    """Marks overdue tasks across every project."""

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = datetime.utcnow,
        page_size: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        self.page_size = page_size or get_sweep_page_size()
        self.tasks = TaskRepository(db)

    def sweep_overdue_tasks(self) -> Tuple[OperationResult, SweepReport]:
        """Run one sweep.

        Returns:
            (result, report). `result.success` is False only when the candidate
            query itself fails; per-stage failures are reported in `report`.
        """
        now = self.clock()
        report = SweepReport()
        after: Optional[Tuple[str, str]] = None

        while True:
            try:
                page = self.tasks.find_overdue_candidates(now, limit=self.page_size, after=after)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Overdue sweep query failed: {type(e).__name__}: {str(e)}")
                return OperationResult.failed(ErrorKind.STORE_UNAVAILABLE, f"Sweep query failed: {str(e)}"), report
            if not page:
                break
            after = (page[-1].stage_id, page[-1].id)

            # A stage may straddle two pages; each part is still committed atomically.
            for stage_id, stage_tasks in groupby(page, key=lambda t: t.stage_id):
                self._sweep_stage(stage_id, list(stage_tasks), now, report)

            if len(page) < self.page_size:
                break

        logger.info(
            f"Overdue sweep done: {report.tasks_marked_overdue} tasks in "
            f"{report.stages_processed} stages ({report.stages_failed} stages failed)"
        )
        return OperationResult.ok("Overdue sweep completed"), report

    def _sweep_stage(self, stage_id: str, tasks: List[Task], now: datetime, report: SweepReport) -> None:
        marked = 0
        try:
            for task in tasks:
                try:
                    self.tasks.transition(task, {
                        "status": TaskStatus.OVERDUE,
                        "can_be_reassigned": True,
                    }, now=now)
                    marked += 1
                except ConflictError:
                    # Completed, unassigned or reassigned since the query; nothing to flip.
                    logger.debug(f"Task {task.id} changed before sweep; skipped")
            self.db.commit()
        except Exception:
            self.db.rollback()
            report.stages_failed += 1
            report.failed_stage_ids.append(stage_id)
            logger.exception(f"Overdue sweep failed for stage {stage_id}; continuing")
            return
        report.stages_processed += 1
        report.tasks_marked_overdue += marked
        if marked:
            logger.info(f"Marked {marked} tasks overdue in stage {stage_id}")


def main() -> int:
    from dotenv import load_dotenv
    from taskpool.database.database import SessionLocal, init_db

    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()
    db = SessionLocal()
    try:
        result, report = DeadlineSweeper(db).sweep_overdue_tasks()
    finally:
        db.close()
    if not result.success:
        logger.error(result.message)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
