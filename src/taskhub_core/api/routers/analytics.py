"""Analytics API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ... import analytics, models, schemas
from ...database import get_db
from ..dependencies import get_current_user

router = APIRouter(tags=["analytics"])


@router.get("", response_model=schemas.Envelope[dict])
def get_overview(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.envelope(analytics.overview(db, current_user))


@router.get("/dashboard", response_model=schemas.Envelope[dict])
def get_dashboard(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.envelope(analytics.dashboard(db, current_user))


@router.get("/project/{project_id}", response_model=schemas.Envelope[dict])
def get_project_analytics(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.envelope(analytics.project_analytics(db, current_user, project_id))


@router.get("/team-performance/{project_id}", response_model=schemas.Envelope[list[dict]])
def get_team_performance(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Per-member workload and completion (Project Managers only)."""
    return schemas.envelope(analytics.team_performance(db, current_user, project_id))
