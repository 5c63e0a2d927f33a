"""FastAPI web application for taskpool."""

from datetime import datetime
from typing import List, Optional
from fastapi import FastAPI, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from taskpool.database.database import get_db
from taskpool.auth.dependencies import get_current_user_id
from taskpool.models.task import Task
from taskpool.models.stage import Project, Stage
from taskpool.models.user_stats import UserStats
from taskpool.models.results import OperationResult, PoolTask, ProjectTaskStats, SweepReport, ErrorKind
from taskpool.models.constants import DEFAULT_POINTS, DEFAULT_TASK_TITLE
from taskpool.engine import (
    TaskPoolManager,
    LeaderboardAggregator,
    StageProgressionTracker,
    DeadlineSweeper,
    StageCatalog,
)
from taskpool.errors import TaskPoolError


# Initialize FastAPI app
app = FastAPI(
    title="taskpool API",
    description="Task pool, leaderboard and stage progression for staged team projects",
    version="0.1.0"
)


# Request models
class ProjectCreateRequest(BaseModel):
    title: str


class StageCreateRequest(BaseModel):
    title: str = ""
    order: Optional[int] = Field(None, ge=0, description="Defaults to the end of the project")


class StageOrderRequest(BaseModel):
    stage_ids: List[str] = Field(..., description="Every stage id of the project in the new order")


class TaskCreateRequest(BaseModel):
    title: str = DEFAULT_TASK_TITLE
    description: Optional[str] = None
    soft_deadline: Optional[datetime] = None
    hard_deadline: Optional[datetime] = None
    points: int = Field(DEFAULT_POINTS, ge=1)


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    soft_deadline: Optional[datetime] = None
    hard_deadline: Optional[datetime] = None
    points: Optional[int] = None


class ProgressUpdateRequest(BaseModel):
    completion_percentage: int = Field(..., ge=0, le=100)


# Response models
class SweepResponse(BaseModel):
    """Response for the overdue sweep."""
    result: OperationResult
    report: SweepReport


_ERROR_STATUS = {
    ErrorKind.NOT_FOUND.value: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_INPUT.value: status.HTTP_400_BAD_REQUEST,
    ErrorKind.STORE_UNAVAILABLE.value: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _raise_for(error: TaskPoolError):
    """Map a catalog error (raised by create operations) to an HTTP error."""
    raise HTTPException(
        status_code=_ERROR_STATUS.get(error.kind.value, status.HTTP_409_CONFLICT),
        detail=error.message,
    )


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}


@app.post("/projects", response_model=Project, status_code=status.HTTP_201_CREATED)
def create_project(
    request: ProjectCreateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Create a project."""
    try:
        return StageCatalog(db).create_project(request.title)
    except TaskPoolError as e:
        _raise_for(e)


@app.post("/projects/{project_id}/stages", response_model=Stage, status_code=status.HTTP_201_CREATED)
def create_stage(
    project_id: str,
    request: StageCreateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Add a stage to a project."""
    try:
        return StageCatalog(db).create_stage(project_id, request.title, order=request.order)
    except TaskPoolError as e:
        _raise_for(e)


@app.get("/projects/{project_id}/stages", response_model=List[Stage])
def list_stages(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """List a project's stages in order."""
    return StageCatalog(db).get_stages(project_id)


@app.put("/projects/{project_id}/stages/order", response_model=OperationResult)
def reorder_stages(
    project_id: str,
    request: StageOrderRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Reorder a project's stages."""
    return StageCatalog(db).reorder_stages(project_id, request.stage_ids)


@app.get("/projects/{project_id}/stages/lock-status", response_model=List[bool])
def get_stage_lock_status(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Which of the project's stages are locked, in stage order."""
    return StageProgressionTracker(db).get_stage_lock_status(project_id)


@app.delete("/projects/{project_id}/stages/{stage_id}", response_model=OperationResult)
def delete_stage(
    project_id: str,
    stage_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Delete a stage and its tasks."""
    return StageCatalog(db).delete_stage(project_id, stage_id)


@app.post(
    "/projects/{project_id}/stages/{stage_id}/tasks",
    response_model=Task,
    status_code=status.HTTP_201_CREATED,
)
def create_task(
    project_id: str,
    stage_id: str,
    request: TaskCreateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Create an available task in a stage."""
    try:
        return StageCatalog(db).create_task(
            project_id,
            stage_id,
            title=request.title,
            description=request.description,
            soft_deadline=request.soft_deadline,
            hard_deadline=request.hard_deadline,
            points=request.points,
        )
    except TaskPoolError as e:
        _raise_for(e)


@app.patch("/projects/{project_id}/stages/{stage_id}/tasks/{task_id}", response_model=OperationResult)
def update_task(
    project_id: str,
    stage_id: str,
    task_id: str,
    request: TaskUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Edit a task's descriptive fields."""
    return StageCatalog(db).update_task(
        project_id,
        stage_id,
        task_id,
        title=request.title,
        description=request.description,
        soft_deadline=request.soft_deadline,
        hard_deadline=request.hard_deadline,
        points=request.points,
    )


@app.delete("/projects/{project_id}/stages/{stage_id}/tasks/{task_id}", response_model=OperationResult)
def delete_task(
    project_id: str,
    stage_id: str,
    task_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Delete a task."""
    return StageCatalog(db).delete_task(project_id, stage_id, task_id)


@app.post("/projects/{project_id}/stages/{stage_id}/tasks/{task_id}/assign", response_model=OperationResult)
def assign_task(
    project_id: str,
    stage_id: str,
    task_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Take a task from the pool (or over from an overdue assignee)."""
    return TaskPoolManager(db).assign_task(task_id, project_id, stage_id, user_id)


@app.post("/projects/{project_id}/stages/{stage_id}/tasks/{task_id}/unassign", response_model=OperationResult)
def unassign_task(
    project_id: str,
    stage_id: str,
    task_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Return a task to the pool."""
    return TaskPoolManager(db).unassign_task(task_id, project_id, stage_id, user_id)


@app.post("/projects/{project_id}/stages/{stage_id}/tasks/{task_id}/complete", response_model=OperationResult)
def complete_task(
    project_id: str,
    stage_id: str,
    task_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Complete a task held by the caller."""
    return TaskPoolManager(db).complete_task(task_id, project_id, stage_id, user_id)


@app.put("/projects/{project_id}/stages/{stage_id}/tasks/{task_id}/progress", response_model=OperationResult)
def update_progress(
    project_id: str,
    stage_id: str,
    task_id: str,
    request: ProgressUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Report progress on a task held by the caller."""
    return TaskPoolManager(db).update_progress(
        task_id, project_id, stage_id, user_id, request.completion_percentage
    )


@app.get("/projects/{project_id}/tasks/available", response_model=List[PoolTask])
def get_available_tasks(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Tasks open for assignment."""
    return TaskPoolManager(db).get_available_tasks(project_id)


@app.get("/projects/{project_id}/tasks/overdue", response_model=List[PoolTask])
def get_overdue_tasks(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Uncompleted tasks past their soft deadline."""
    return TaskPoolManager(db).get_overdue_tasks(project_id)


@app.get("/projects/{project_id}/leaderboard", response_model=List[UserStats])
def get_leaderboard(
    project_id: str,
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """User stats ordered by total points."""
    return LeaderboardAggregator(db).get_leaderboard(project_id, limit=limit)


@app.get("/projects/{project_id}/users/{member_id}/stats", response_model=UserStats)
def get_user_stats(
    project_id: str,
    member_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Stats for one project member."""
    return LeaderboardAggregator(db).get_user_stats(project_id, member_id)


@app.get("/projects/{project_id}/stats", response_model=ProjectTaskStats)
def get_project_stats(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Task counts for a project."""
    return StageCatalog(db).get_project_stats(project_id)


@app.post("/admin/sweep-overdue", response_model=SweepResponse)
def sweep_overdue_tasks(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Run the overdue sweep now (normally triggered by a scheduler)."""
    result, report = DeadlineSweeper(db).sweep_overdue_tasks()
    if not result.success:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result.message)
    return SweepResponse(result=result, report=report)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
