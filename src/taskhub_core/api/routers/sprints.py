"""Sprints API endpoints."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ... import analytics, crud, models, schemas
from ...database import get_db
from ..dependencies import get_current_user

logger = logging.getLogger("taskhub-core.sprints")

router = APIRouter(tags=["sprints"])


@router.get("/project/{project_id}", response_model=schemas.Envelope[list[schemas.SprintResponse]])
def list_sprints(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.envelope(crud.get_sprints(db, current_user, project_id))


@router.post("/project/{project_id}", response_model=schemas.Envelope[schemas.SprintResponse], status_code=201)
def create_sprint(
    project_id: UUID,
    sprint: schemas.SprintCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Create a sprint (Project Managers only).

    - **start_date** / **end_date**: end must be strictly after start
    """
    result = crud.create_sprint(db, current_user, project_id, sprint.model_dump())
    return schemas.envelope(result, message="Sprint created successfully")


@router.get("/{sprint_id}", response_model=schemas.Envelope[schemas.SprintResponse])
def get_sprint(
    sprint_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.envelope(crud.get_sprint(db, current_user, sprint_id))


@router.put("/{sprint_id}", response_model=schemas.Envelope[schemas.SprintResponse])
def update_sprint(
    sprint_id: UUID,
    sprint_update: schemas.SprintUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    result = crud.update_sprint(db, current_user, sprint_id, sprint_update.model_dump(exclude_unset=True))
    return schemas.envelope(result, message="Sprint updated successfully")


@router.delete("/{sprint_id}", response_model=schemas.Envelope[dict])
def delete_sprint(
    sprint_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Soft-delete a sprint; its tasks stay active and lose the sprint reference."""
    affected = crud.delete_sprint(db, current_user, sprint_id)
    return schemas.envelope({"cascade": affected}, message="Sprint deleted successfully")


@router.get("/{sprint_id}/stats", response_model=schemas.Envelope[schemas.SprintStatsResponse])
def get_sprint_stats(
    sprint_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.envelope(analytics.sprint_stats(db, current_user, sprint_id))


@router.get("/{sprint_id}/tasks", response_model=schemas.Envelope[list[schemas.TaskResponse]])
def get_sprint_tasks(
    sprint_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.envelope(crud.get_sprint_tasks(db, current_user, sprint_id))
