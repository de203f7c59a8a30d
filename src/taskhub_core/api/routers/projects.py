"""Projects API endpoints."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ... import analytics, crud, models, schemas
from ...database import get_db
from ...events import EventDispatcher
from ..dependencies import get_current_user, get_dispatcher

logger = logging.getLogger("taskhub-core.projects")

router = APIRouter(tags=["projects"])


@router.get("", response_model=schemas.Envelope[list[schemas.ProjectResponse]])
def list_projects(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """List active projects the caller created or is a member of."""
    return schemas.envelope(crud.get_projects(db, current_user))


@router.post("", response_model=schemas.Envelope[schemas.ProjectResponse], status_code=201)
def create_project(
    project: schemas.ProjectCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Create a new project (Project Managers only).

    - **name**: Project name
    - **description**: Optional description
    - **status**: Project status (default: Planning)
    - **start_date**: Defaults to now
    - **members**: Additional members; the creator is always the first member
    """
    result = crud.create_project(
        db=db,
        principal=current_user,
        name=project.name,
        description=project.description,
        status=project.status,
        start_date=project.start_date,
        end_date=project.end_date,
        members=project.members,
    )
    return schemas.envelope(result, message="Project created successfully")


@router.get("/{project_id}", response_model=schemas.Envelope[schemas.ProjectResponse])
def get_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.envelope(crud.get_project(db, current_user, project_id))


@router.put("/{project_id}", response_model=schemas.Envelope[schemas.ProjectResponse])
def update_project(
    project_id: UUID,
    project_update: schemas.ProjectUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    """Update a project. Only provided fields change."""
    result = crud.update_project(
        db,
        current_user,
        project_id,
        project_update.model_dump(exclude_unset=True),
        dispatcher=dispatcher,
    )
    return schemas.envelope(result, message="Project updated successfully")


@router.delete("/{project_id}", response_model=schemas.Envelope[dict])
def delete_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    """Soft-delete a project and deactivate its tasks (creator only)."""
    affected = crud.delete_project(db, current_user, project_id, dispatcher=dispatcher)
    return schemas.envelope({"cascade": affected}, message="Project deleted successfully")


@router.post("/{project_id}/members", response_model=schemas.Envelope[schemas.ProjectResponse])
def add_member(
    project_id: UUID,
    member: schemas.ProjectMemberInput,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    result = crud.add_member(db, current_user, project_id, member.user_id, member.role, dispatcher=dispatcher)
    return schemas.envelope(result, message="Member added successfully")


@router.delete("/{project_id}/members/{user_id}", response_model=schemas.Envelope[schemas.ProjectResponse])
def remove_member(
    project_id: UUID,
    user_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    result = crud.remove_member(db, current_user, project_id, user_id, dispatcher=dispatcher)
    return schemas.envelope(result, message="Member removed successfully")


@router.get("/{project_id}/stats", response_model=schemas.Envelope[dict])
def get_project_stats(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.envelope(analytics.project_stats(db, current_user, project_id))
