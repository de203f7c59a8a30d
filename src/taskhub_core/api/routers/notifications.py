"""Notifications API endpoints."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ... import crud, models, schemas
from ...database import get_db
from ..dependencies import get_current_user

logger = logging.getLogger("taskhub-core.notifications")

router = APIRouter(tags=["notifications"])


@router.get("", response_model=schemas.Envelope[schemas.NotificationList])
def list_notifications(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """The caller's 50 most recent notifications and their unread count."""
    items, unread = crud.get_notifications(db, current_user)
    return schemas.envelope({"items": items, "unread_count": unread})


@router.put("/read-all", response_model=schemas.Envelope[dict])
def mark_all_read(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    count = crud.mark_all_notifications_read(db, current_user)
    return schemas.envelope({"updated": count}, message="All notifications marked as read")


@router.put("/{notification_id}/read", response_model=schemas.Envelope[schemas.NotificationResponse])
def mark_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.envelope(crud.mark_notification_read(db, current_user, notification_id))


@router.delete("/{notification_id}", response_model=schemas.Envelope[dict])
def delete_notification(
    notification_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    crud.delete_notification(db, current_user, notification_id)
    return schemas.envelope(message="Notification deleted")
