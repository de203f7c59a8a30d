"""Tasks API endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ... import crud, models, schemas
from ...database import get_db
from ...events import EventDispatcher
from ..dependencies import get_current_user, get_dispatcher

logger = logging.getLogger("taskhub-core.tasks")

router = APIRouter(tags=["tasks"])


# Fixed paths are declared before /{task_id}

@router.get("/my-tasks", response_model=schemas.Envelope[list[schemas.TaskResponse]])
def get_my_tasks(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Active tasks assigned to the caller, soonest due first."""
    return schemas.envelope(crud.get_my_tasks(db, current_user))


@router.patch("/bulk-update-positions", response_model=schemas.Envelope[schemas.BulkPositionResult])
def bulk_update_positions(
    payload: schemas.BulkPositionUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    """
    Reorder tasks on a board.

    Items are applied independently; failures are reported per item and do
    not revert the items that succeeded.
    """
    result = crud.bulk_update_positions(db, current_user, payload.updates, dispatcher=dispatcher)
    message = "Task positions updated"
    if result["failed"]:
        message = f"{len(result['updated'])} updated, {len(result['failed'])} failed"
    return schemas.envelope(result, message=message)


@router.get("/project/{project_id}", response_model=schemas.Envelope[list[schemas.TaskResponse]])
def list_project_tasks(
    project_id: UUID,
    status: Optional[models.TaskStatus] = Query(None, description="Filter by status"),
    sprint_id: Optional[UUID] = Query(None, description="Filter by sprint"),
    assigned_to: Optional[UUID] = Query(None, description="Filter by assignee"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    tasks = crud.get_project_tasks(
        db,
        current_user,
        project_id,
        status_filter=status,
        sprint_id=sprint_id,
        assigned_to=assigned_to,
    )
    return schemas.envelope(tasks)


@router.post("/project/{project_id}", response_model=schemas.Envelope[schemas.TaskResponse], status_code=201)
def create_task(
    project_id: UUID,
    task: schemas.TaskCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    """
    Create a task (Project Managers only).

    - **title**: Task title
    - **due_date**: Required due date
    - **sprint_id**: Must be an active sprint of the same project
    - **assigned_to**: Must be an active project participant
    """
    result = crud.create_task(db, current_user, project_id, task.model_dump(), dispatcher=dispatcher)
    return schemas.envelope(result, message="Task created successfully")


@router.get("/{task_id}", response_model=schemas.Envelope[schemas.TaskResponse])
def get_task(
    task_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.envelope(crud.get_task(db, current_user, task_id))


@router.put("/{task_id}", response_model=schemas.Envelope[schemas.TaskResponse])
def update_task(
    task_id: UUID,
    task_update: schemas.TaskUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    """Update a task. Team members can only change status and actual_hours."""
    result = crud.update_task(
        db,
        current_user,
        task_id,
        task_update.model_dump(exclude_unset=True),
        dispatcher=dispatcher,
    )
    return schemas.envelope(result, message="Task updated successfully")


@router.delete("/{task_id}", response_model=schemas.Envelope[schemas.TaskResponse])
def delete_task(
    task_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    result = crud.delete_task(db, current_user, task_id, dispatcher=dispatcher)
    return schemas.envelope(result, message="Task deleted successfully")


@router.patch("/{task_id}/status", response_model=schemas.Envelope[schemas.TaskResponse])
def update_task_status(
    task_id: UUID,
    payload: schemas.TaskStatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    """Move a task to a status column, optionally setting its position."""
    result = crud.update_task_status(
        db,
        current_user,
        task_id,
        payload.status,
        position=payload.position,
        dispatcher=dispatcher,
    )
    return schemas.envelope(result)


@router.post("/{task_id}/comments", response_model=schemas.Envelope[schemas.TaskResponse], status_code=201)
def add_comment(
    task_id: UUID,
    comment: schemas.CommentCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    result = crud.add_comment(db, current_user, task_id, comment.text, dispatcher=dispatcher)
    return schemas.envelope(result, message="Comment added successfully")
