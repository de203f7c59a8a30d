"""CRUD operations and entity lifecycle rules.

Every mutating function follows the same order: load the target (404 when it
or its owning project is missing or inactive), authorize it through
access_control, validate cross-entity references, write and commit, then
hand an event to the dispatcher. Nothing is written before validation and
authorization succeed.
"""
import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas
from .access_control import (
    Operation,
    authorize,
    find_membership,
    is_creator,
    is_participant,
    require,
    restrict_task_update,
)
from .cascade import deactivate
from .errors import (
    AuthenticationError,
    ConflictError,
    ConsistencyError,
    NotFoundError,
    PartialFailureError,
    TaskHubError,
    ValidationError,
)
from .events import Event, EventDispatcher, EventType, project_channel
from .security import hash_password, verify_password

logger = logging.getLogger("taskhub-core.crud")

NOTIFICATION_LIST_LIMIT = 50


def _emit(dispatcher: Optional[EventDispatcher], event: Event) -> None:
    if dispatcher is None:
        return
    dispatcher.publish(project_channel(event.project_id), event)


def _task_payload(task: models.Task) -> dict[str, Any]:
    return schemas.TaskResponse.model_validate(task).model_dump(mode="json")


# User CRUD

def get_user(db: Session, user_id: UUID) -> Optional[models.User]:
    return db.get(models.User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email.strip().lower()).first()


def register_user(
    db: Session,
    name: str,
    email: str,
    password: str,
    role: models.UserRole = models.UserRole.TEAM_MEMBER,
) -> models.User:
    """
    Create a password account.

    Raises:
        ConflictError: If the email is already registered
    """
    if get_user_by_email(db, email):
        raise ConflictError("User already exists with this email")

    user = models.User(
        name=name.strip(),
        email=email.strip().lower(),
        password_hash=hash_password(password),
        role=models.UserRole(role).value,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Registered user {user.email} ({user.role})")
    return user


def authenticate_user(db: Session, email: str, password: str) -> models.User:
    """
    Verify credentials.

    Raises:
        AuthenticationError: Unknown email, wrong password or deactivated account
    """
    user = get_user_by_email(db, email)
    if not user:
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        logger.warning(f"Login attempt for deactivated account {user.id}")
        raise AuthenticationError("Account is deactivated. Please contact administrator.")

    if not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")

    return user


def update_profile(
    db: Session,
    user: models.User,
    name: Optional[str] = None,
    email: Optional[str] = None,
    avatar: Optional[str] = None,
) -> models.User:
    """Update the caller's own profile fields."""
    if email is not None:
        email = email.strip().lower()
        if email != user.email:
            if get_user_by_email(db, email):
                raise ConflictError("Email already in use")
            user.email = email
    if name is not None:
        user.name = name.strip()
    if avatar is not None:
        user.avatar = avatar

    db.commit()
    db.refresh(user)
    return user


def update_password(db: Session, user: models.User, current_password: str, new_password: str) -> models.User:
    """
    Change a password after verifying the current one.

    Raises:
        AuthenticationError: If the current password does not match
    """
    if not verify_password(current_password, user.password_hash):
        raise AuthenticationError("Current password is incorrect")

    user.password_hash = hash_password(new_password)
    db.commit()
    db.refresh(user)
    logger.info(f"Password changed for user {user.id}")
    return user


def list_users(db: Session, principal: models.User) -> list[models.User]:
    require(principal, None, Operation.USER_LIST)
    return (
        db.query(models.User)
        .filter(models.User.is_active.is_(True))
        .order_by(models.User.name)
        .all()
    )


def deactivate_user(db: Session, principal: models.User, user_id: UUID) -> models.User:
    """Administratively deactivate a user. Users are never hard-deleted."""
    require(principal, None, Operation.USER_DEACTIVATE)

    user = get_user(db, user_id)
    if not user:
        raise NotFoundError("User not found")
    if user.id == principal.id:
        raise ValidationError("You cannot deactivate your own account")

    user.is_active = False
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.id} deactivated by {principal.id}")
    return user


def login_or_register_oauth_user(
    db: Session,
    google_id: str,
    email: str,
    name: str,
    avatar: str = "",
) -> models.User:
    """
    Resolve a Google identity to a local user.

    Lookup order is google_id, then email (linking the Google identity to the
    existing account). Unknown identities become new Team Members. An invalid
    stored role is coerced to Team Member.

    Raises:
        AuthenticationError: If the matched account is deactivated
    """
    user = db.query(models.User).filter(models.User.google_id == google_id).first()
    if user is None:
        user = get_user_by_email(db, email)
        if user is not None:
            user.google_id = google_id
            if not user.avatar and avatar:
                user.avatar = avatar

    if user is None:
        user = models.User(
            name=(name or email.split("@")[0])[:50],
            email=email.strip().lower(),
            google_id=google_id,
            avatar=avatar or "",
            role=models.UserRole.TEAM_MEMBER.value,
        )
        db.add(user)
        logger.info(f"Registered OAuth user {user.email}")
    else:
        coerced = models.UserRole.coerce(user.role).value
        if coerced != user.role:
            logger.warning(f"Coerced invalid role '{user.role}' to '{coerced}' for user {user.id}")
            user.role = coerced

    db.commit()
    db.refresh(user)

    if not user.is_active:
        raise AuthenticationError("Account is deactivated. Please contact administrator.")
    return user


# Project CRUD

def _get_active_project(db: Session, project_id: UUID) -> models.Project:
    project = db.get(models.Project, project_id)
    if not project or not project.is_active:
        raise NotFoundError("Project not found")
    return project


def get_project(
    db: Session,
    principal: models.User,
    project_id: UUID,
    operation: Operation = Operation.PROJECT_READ,
) -> models.Project:
    """
    Load an active project and authorize an operation on it.

    Raises:
        NotFoundError: Missing or soft-deleted project
        AuthorizationError: Principal fails a gate for the operation
    """
    project = _get_active_project(db, project_id)
    require(principal, project, operation)
    return project


def _participant_project_ids(principal: models.User):
    return select(models.ProjectMember.project_id).where(
        models.ProjectMember.user_id == principal.id
    )


def get_projects(db: Session, principal: models.User) -> list[models.Project]:
    """Active projects the principal created or is a member of, newest first."""
    return (
        db.query(models.Project)
        .filter(
            models.Project.is_active.is_(True),
            or_(
                models.Project.created_by == principal.id,
                models.Project.id.in_(_participant_project_ids(principal)),
            ),
        )
        .order_by(models.Project.created_at.desc())
        .all()
    )


def create_project(
    db: Session,
    principal: models.User,
    name: str,
    description: str = "",
    status: models.ProjectStatus = models.ProjectStatus.PLANNING,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    members: Optional[list[schemas.ProjectMemberInput]] = None,
) -> models.Project:
    """
    Create a project with the creator as its first Project Manager member.

    Supplied members are appended in order; the creator and repeated users
    are skipped.

    Raises:
        AuthorizationError: Principal is not a Project Manager
        NotFoundError: A supplied member does not exist or is inactive
        ConsistencyError: end_date precedes start_date
    """
    require(principal, None, Operation.PROJECT_CREATE)

    start_date = start_date or models.utcnow()
    if end_date is not None and end_date < start_date:
        raise ConsistencyError("invalid date range")

    requested = []
    seen = {principal.id}
    for entry in members or []:
        if entry.user_id in seen:
            continue
        user = get_user(db, entry.user_id)
        if not user or not user.is_active:
            raise NotFoundError(f"User {entry.user_id} not found")
        seen.add(entry.user_id)
        requested.append(entry)

    project = models.Project(
        name=name.strip(),
        description=description,
        status=status,
        start_date=start_date,
        end_date=end_date,
        created_by=principal.id,
    )
    project.members.append(models.ProjectMember(
        user_id=principal.id,
        role=models.ProjectRole.PROJECT_MANAGER,
    ))
    for entry in requested:
        project.members.append(models.ProjectMember(user_id=entry.user_id, role=entry.role))

    db.add(project)
    db.commit()
    db.refresh(project)
    logger.info(f"Created project '{project.name}' (ID: {project.id}) with {len(project.members)} members")
    return project


def update_project(
    db: Session,
    principal: models.User,
    project_id: UUID,
    changes: dict[str, Any],
    dispatcher: Optional[EventDispatcher] = None,
) -> models.Project:
    """Apply explicitly provided project fields and notify members."""
    project = get_project(db, principal, project_id, Operation.PROJECT_UPDATE)

    for field in ("name", "description", "status", "start_date"):
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be null")

    start_date = changes.get("start_date", project.start_date)
    end_date = changes.get("end_date", project.end_date)
    if end_date is not None and end_date < start_date:
        raise ConsistencyError("invalid date range")

    for field, value in changes.items():
        setattr(project, field, value)

    db.commit()
    db.refresh(project)
    logger.info(f"Updated project {project.id}: {sorted(changes)}")

    _emit(dispatcher, Event(
        type=EventType.PROJECT_UPDATED,
        project_id=project.id,
        actor_id=principal.id,
        message=f"Project '{project.name}' was updated",
        recipients=[member.user_id for member in project.members],
        payload={"fields": sorted(changes)},
    ))
    return project


def delete_project(
    db: Session,
    principal: models.User,
    project_id: UUID,
    dispatcher: Optional[EventDispatcher] = None,
) -> dict[str, int]:
    """
    Soft-delete a project and deactivate all of its tasks.

    An already inactive project is invisible to everyone except its creator,
    for whom the delete re-runs the cascade (completing an interrupted one).
    Deactivating an active project emits PROJECT_DELETED, even when the task
    cascade then fails; re-runs emit nothing.

    Raises:
        NotFoundError: Missing project, or inactive and principal is not the creator
        AuthorizationError: Principal is not the creator
        PartialFailureError: Task deactivation failed after the project was deactivated
    """
    project = db.get(models.Project, project_id)
    if not project:
        raise NotFoundError("Project not found")

    if not project.is_active and not is_creator(principal, project):
        raise NotFoundError("Project not found")

    require(principal, project, Operation.PROJECT_DELETE)

    if not project.is_active:
        return deactivate(db, project)

    event = Event(
        type=EventType.PROJECT_DELETED,
        project_id=project.id,
        actor_id=principal.id,
        message=f"Project '{project.name}' was deleted",
        severity=models.NotificationSeverity.WARNING,
        recipients=[member.user_id for member in project.members],
    )
    try:
        affected = deactivate(db, project)
    except PartialFailureError:
        _emit(dispatcher, event)
        raise
    _emit(dispatcher, event)
    return affected


def add_member(
    db: Session,
    principal: models.User,
    project_id: UUID,
    user_id: UUID,
    role: models.ProjectRole = models.ProjectRole.TEAM_MEMBER,
    dispatcher: Optional[EventDispatcher] = None,
) -> models.Project:
    """
    Append a member to a project.

    Raises:
        NotFoundError: Project or user missing, or user inactive
        ConflictError: User is already a member
    """
    project = get_project(db, principal, project_id, Operation.MEMBER_ADD)

    user = get_user(db, user_id)
    if not user or not user.is_active:
        raise NotFoundError("User not found")
    if find_membership(project, user_id) is not None or is_creator(user, project):
        raise ConflictError("User is already a member of this project")

    project.members.append(models.ProjectMember(user_id=user_id, role=role))
    db.commit()
    db.refresh(project)
    logger.info(f"Added user {user_id} to project {project.id} as {models.ProjectRole(role).value}")

    _emit(dispatcher, Event(
        type=EventType.MEMBER_ADDED,
        project_id=project.id,
        actor_id=principal.id,
        message=f"You have been added to project '{project.name}'",
        recipients=[user_id],
        payload={"user_id": str(user_id)},
    ))
    return project


def remove_member(
    db: Session,
    principal: models.User,
    project_id: UUID,
    user_id: UUID,
    dispatcher: Optional[EventDispatcher] = None,
) -> models.Project:
    """
    Remove a member from a project.

    The creator can never be removed: other principals are denied, and the
    creator gets a ConsistencyError.
    """
    project = _get_active_project(db, project_id)

    if user_id == project.created_by:
        require(principal, project, Operation.MEMBER_REMOVE_CREATOR)
        raise ConsistencyError("Cannot remove project creator")

    require(principal, project, Operation.MEMBER_REMOVE)

    membership = find_membership(project, user_id)
    if membership is None:
        raise NotFoundError("Member not found")

    project.members.remove(membership)
    db.commit()
    db.refresh(project)
    logger.info(f"Removed user {user_id} from project {project.id}")

    _emit(dispatcher, Event(
        type=EventType.MEMBER_REMOVED,
        project_id=project.id,
        actor_id=principal.id,
        message=f"You have been removed from project '{project.name}'",
        severity=models.NotificationSeverity.WARNING,
        recipients=[user_id],
        payload={"user_id": str(user_id)},
    ))
    return project


# Task CRUD

def _get_active_task(db: Session, task_id: UUID) -> models.Task:
    task = db.get(models.Task, task_id)
    if not task or not task.is_active or not task.project.is_active:
        raise NotFoundError("Task not found")
    return task


def next_task_position(db: Session, project_id: UUID) -> int:
    """One past the highest position of any task in the project, active or not."""
    highest = (
        db.query(func.max(models.Task.position))
        .filter(models.Task.project_id == project_id)
        .scalar()
    )
    return (highest if highest is not None else -1) + 1


def _validate_task_references(
    db: Session,
    project: models.Project,
    sprint_id: Optional[UUID],
    assigned_to: Optional[UUID],
) -> None:
    """
    Check sprint and assignee references against the owning project.

    Raises:
        ConsistencyError: Sprint is not an active sprint of the project, or the
            assignee is not an active participant
    """
    if sprint_id is not None:
        sprint = db.get(models.Sprint, sprint_id)
        if not sprint or not sprint.is_active or sprint.project_id != project.id:
            raise ConsistencyError("Sprint must be an active sprint of the same project")

    if assigned_to is not None:
        assignee = get_user(db, assigned_to)
        if not assignee or not assignee.is_active or not is_participant(assignee, project):
            raise ConsistencyError("Assignee must be an active project participant")


def _apply_status(task: models.Task, status: models.TaskStatus) -> bool:
    """Set status and maintain completed_at. Returns True when the task just became Done."""
    status = models.TaskStatus(status)
    was_done = task.status == models.TaskStatus.DONE
    task.status = status
    if status == models.TaskStatus.DONE and not was_done:
        task.completed_at = models.utcnow()
        return True
    if status != models.TaskStatus.DONE:
        task.completed_at = None
    return False


def create_task(
    db: Session,
    principal: models.User,
    project_id: UUID,
    data: dict[str, Any],
    dispatcher: Optional[EventDispatcher] = None,
) -> models.Task:
    """
    Create a task at the end of the project's ordering.

    Args:
        data: Validated TaskCreate fields

    Raises:
        NotFoundError: Project missing or inactive
        AuthorizationError: Principal fails the manager or participant gate
        ConsistencyError: Invalid sprint or assignee reference
    """
    project = get_project(db, principal, project_id, Operation.TASK_CREATE)
    _validate_task_references(db, project, data.get("sprint_id"), data.get("assigned_to"))

    status = data.pop("status", models.TaskStatus.TODO)
    task = models.Task(
        **data,
        project_id=project.id,
        created_by=principal.id,
        position=next_task_position(db, project.id),
    )
    task.status = models.TaskStatus.TODO
    _apply_status(task, status)

    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info(f"Created task '{task.title}' (ID: {task.id}) in project {project.id} at position {task.position}")

    _emit(dispatcher, Event(
        type=EventType.TASK_CREATED,
        project_id=project.id,
        actor_id=principal.id,
        task_id=task.id,
        message=f"New task assigned: {task.title}",
        recipients=[task.assigned_to],
        payload=_task_payload(task),
    ))
    return task


def get_task(db: Session, principal: models.User, task_id: UUID) -> models.Task:
    task = _get_active_task(db, task_id)
    require(principal, task, Operation.TASK_READ)
    return task


def get_project_tasks(
    db: Session,
    principal: models.User,
    project_id: UUID,
    status_filter: Optional[models.TaskStatus] = None,
    sprint_id: Optional[UUID] = None,
    assigned_to: Optional[UUID] = None,
) -> list[models.Task]:
    """Active tasks of a project ordered by position, then creation time."""
    project = get_project(db, principal, project_id, Operation.PROJECT_READ)

    query = db.query(models.Task).filter(
        models.Task.project_id == project.id,
        models.Task.is_active.is_(True),
    )
    if status_filter:
        query = query.filter(models.Task.status == status_filter)
    if sprint_id:
        query = query.filter(models.Task.sprint_id == sprint_id)
    if assigned_to:
        query = query.filter(models.Task.assigned_to == assigned_to)

    return query.order_by(models.Task.position, models.Task.created_at).all()


def get_my_tasks(db: Session, principal: models.User) -> list[models.Task]:
    """Active tasks assigned to the principal in active projects, soonest due first."""
    return (
        db.query(models.Task)
        .join(models.Project, models.Task.project_id == models.Project.id)
        .filter(
            models.Task.assigned_to == principal.id,
            models.Task.is_active.is_(True),
            models.Project.is_active.is_(True),
        )
        .order_by(models.Task.due_date, models.Task.created_at)
        .all()
    )


def _task_updated_event(
    principal: models.User,
    task: models.Task,
    became_done: bool,
    fields: list[str],
) -> Event:
    if became_done:
        message = f"Task completed: {task.title}"
        severity = models.NotificationSeverity.SUCCESS
    else:
        message = f"Task updated: {task.title}"
        severity = models.NotificationSeverity.INFO
    payload = _task_payload(task)
    payload["changed_fields"] = fields
    return Event(
        type=EventType.TASK_UPDATED,
        project_id=task.project_id,
        actor_id=principal.id,
        task_id=task.id,
        message=message,
        severity=severity,
        recipients=[task.assigned_to, task.created_by],
        payload=payload,
    )


def update_task(
    db: Session,
    principal: models.User,
    task_id: UUID,
    changes: dict[str, Any],
    dispatcher: Optional[EventDispatcher] = None,
) -> models.Task:
    """
    Update a task.

    Non-manager participants silently lose every field except status and
    actual_hours.

    Args:
        changes: Explicitly provided fields only (exclude_unset)
    """
    task = _get_active_task(db, task_id)
    decision = require(principal, task, Operation.TASK_UPDATE)
    changes = restrict_task_update(decision, changes)
    if not changes:
        logger.debug(f"No permitted changes for task {task.id}")
        return task

    for field in ("title", "status", "priority", "due_date", "estimated_hours", "actual_hours", "description"):
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be null")

    _validate_task_references(
        db,
        task.project,
        changes.get("sprint_id"),
        changes.get("assigned_to"),
    )

    became_done = False
    for field, value in changes.items():
        if field == "status":
            became_done = _apply_status(task, value)
        else:
            setattr(task, field, value)

    db.commit()
    db.refresh(task)
    logger.info(f"Updated task {task.id}: {sorted(changes)}")

    _emit(dispatcher, _task_updated_event(principal, task, became_done, sorted(changes)))
    return task


def update_task_status(
    db: Session,
    principal: models.User,
    task_id: UUID,
    status: Optional[models.TaskStatus],
    position: Optional[int] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> models.Task:
    """Move a task to a status column and/or a position. Siblings are not renumbered."""
    task = _get_active_task(db, task_id)
    require(principal, task, Operation.TASK_STATUS_UPDATE)

    became_done = False
    fields = []
    if status is not None:
        became_done = _apply_status(task, status)
        fields.append("status")
    if position is not None:
        task.position = position
        fields.append("position")

    db.commit()
    db.refresh(task)
    logger.debug(f"Task {task.id} moved to {task.status.value} at position {task.position}")

    _emit(dispatcher, _task_updated_event(principal, task, became_done, fields))
    return task


def bulk_update_positions(
    db: Session,
    principal: models.User,
    items: list[schemas.PositionUpdateItem],
    dispatcher: Optional[EventDispatcher] = None,
) -> dict[str, list]:
    """
    Apply position (and optional status) updates item by item.

    Each item is authorized and committed on its own; a failing item is
    reported and never reverts the others.

    Returns:
        {"updated": [task ids], "failed": [{"id", "message"}]}
    """
    updated: list[UUID] = []
    failed: list[dict[str, str]] = []

    for item in items:
        try:
            task_id = UUID(item.id)
        except ValueError:
            failed.append({"id": item.id, "message": "Invalid task id"})
            continue

        try:
            update_task_status(
                db,
                principal,
                task_id,
                item.status,
                position=item.position,
                dispatcher=dispatcher,
            )
            updated.append(task_id)
        except TaskHubError as e:
            failed.append({"id": item.id, "message": e.message})
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to update position of task {item.id}: {e}", exc_info=True)
            failed.append({"id": item.id, "message": "Database error"})

    if failed:
        logger.warning(f"Bulk position update: {len(updated)} updated, {len(failed)} failed")
    return {"updated": updated, "failed": failed}


def delete_task(
    db: Session,
    principal: models.User,
    task_id: UUID,
    dispatcher: Optional[EventDispatcher] = None,
) -> models.Task:
    """Soft-delete a task."""
    task = _get_active_task(db, task_id)
    require(principal, task, Operation.TASK_DELETE)

    task.is_active = False
    db.commit()
    db.refresh(task)
    logger.info(f"Deleted task {task.id}")

    _emit(dispatcher, Event(
        type=EventType.TASK_DELETED,
        project_id=task.project_id,
        actor_id=principal.id,
        task_id=task.id,
        message=f"Task deleted: {task.title}",
        severity=models.NotificationSeverity.WARNING,
        recipients=[task.assigned_to],
        payload={"id": str(task.id)},
    ))
    return task


def add_comment(
    db: Session,
    principal: models.User,
    task_id: UUID,
    text: str,
    dispatcher: Optional[EventDispatcher] = None,
) -> models.Task:
    """Append a comment authored by the principal."""
    task = _get_active_task(db, task_id)
    require(principal, task, Operation.TASK_COMMENT)

    comment = models.TaskComment(task_id=task.id, user_id=principal.id, text=text.strip())
    db.add(comment)
    db.commit()
    db.refresh(task)
    logger.debug(f"Comment {comment.id} added to task {task.id}")

    _emit(dispatcher, Event(
        type=EventType.COMMENT_ADDED,
        project_id=task.project_id,
        actor_id=principal.id,
        task_id=task.id,
        message=f"{principal.name} commented on: {task.title}",
        recipients=[task.assigned_to, task.created_by],
        payload={"comment_id": str(comment.id), "text": comment.text},
    ))
    return task


# Sprint CRUD

def _get_active_sprint(db: Session, sprint_id: UUID) -> models.Sprint:
    sprint = db.get(models.Sprint, sprint_id)
    if not sprint or not sprint.is_active or not sprint.project.is_active:
        raise NotFoundError("Sprint not found")
    return sprint


def _validate_date_range(start_date: datetime, end_date: datetime) -> None:
    if end_date <= start_date:
        raise ConsistencyError("invalid date range")


def create_sprint(
    db: Session,
    principal: models.User,
    project_id: UUID,
    data: dict[str, Any],
) -> models.Sprint:
    """
    Create a sprint.

    Raises:
        ConsistencyError: end_date is not strictly after start_date
    """
    project = get_project(db, principal, project_id, Operation.SPRINT_CREATE)
    _validate_date_range(data["start_date"], data["end_date"])

    sprint = models.Sprint(**data, project_id=project.id, created_by=principal.id)
    db.add(sprint)
    db.commit()
    db.refresh(sprint)
    logger.info(f"Created sprint '{sprint.name}' (ID: {sprint.id}) in project {project.id}")
    return sprint


def get_sprints(db: Session, principal: models.User, project_id: UUID) -> list[models.Sprint]:
    project = get_project(db, principal, project_id, Operation.SPRINT_READ)
    return (
        db.query(models.Sprint)
        .filter(models.Sprint.project_id == project.id, models.Sprint.is_active.is_(True))
        .order_by(models.Sprint.start_date)
        .all()
    )


def get_sprint(db: Session, principal: models.User, sprint_id: UUID) -> models.Sprint:
    sprint = _get_active_sprint(db, sprint_id)
    require(principal, sprint, Operation.SPRINT_READ)
    return sprint


def update_sprint(
    db: Session,
    principal: models.User,
    sprint_id: UUID,
    changes: dict[str, Any],
) -> models.Sprint:
    """Update a sprint; the merged date range is re-validated."""
    sprint = _get_active_sprint(db, sprint_id)
    require(principal, sprint, Operation.SPRINT_UPDATE)

    for field in ("name", "start_date", "end_date", "status"):
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be null")

    _validate_date_range(
        changes.get("start_date", sprint.start_date),
        changes.get("end_date", sprint.end_date),
    )

    for field, value in changes.items():
        setattr(sprint, field, value)

    db.commit()
    db.refresh(sprint)
    logger.info(f"Updated sprint {sprint.id}: {sorted(changes)}")
    return sprint


def delete_sprint(db: Session, principal: models.User, sprint_id: UUID) -> dict[str, int]:
    """
    Soft-delete a sprint and detach its tasks (tasks stay active).

    Deleting an inactive sprint re-runs the detach for authorized managers.
    """
    sprint = db.get(models.Sprint, sprint_id)
    if not sprint or not sprint.project.is_active:
        raise NotFoundError("Sprint not found")

    if not sprint.is_active and not authorize(principal, sprint, Operation.SPRINT_DELETE):
        raise NotFoundError("Sprint not found")

    require(principal, sprint, Operation.SPRINT_DELETE)
    return deactivate(db, sprint)


def get_sprint_tasks(db: Session, principal: models.User, sprint_id: UUID) -> list[models.Task]:
    sprint = get_sprint(db, principal, sprint_id)
    return (
        db.query(models.Task)
        .filter(models.Task.sprint_id == sprint.id, models.Task.is_active.is_(True))
        .order_by(models.Task.position, models.Task.created_at)
        .all()
    )


# Notification CRUD

def get_notifications(
    db: Session,
    principal: models.User,
    limit: int = NOTIFICATION_LIST_LIMIT,
) -> tuple[list[models.Notification], int]:
    """
    Most recent notifications of the principal.

    Returns:
        Tuple of (notifications, unread count)
    """
    items = (
        db.query(models.Notification)
        .filter(models.Notification.user_id == principal.id)
        .order_by(models.Notification.created_at.desc())
        .limit(limit)
        .all()
    )
    unread = (
        db.query(func.count(models.Notification.id))
        .filter(
            models.Notification.user_id == principal.id,
            models.Notification.read.is_(False),
        )
        .scalar()
    )
    return items, unread


def _get_notification(
    db: Session,
    principal: models.User,
    notification_id: UUID,
    operation: Operation,
) -> models.Notification:
    notification = db.get(models.Notification, notification_id)
    if not notification:
        raise NotFoundError("Notification not found")
    require(principal, notification, operation)
    return notification


def mark_notification_read(db: Session, principal: models.User, notification_id: UUID) -> models.Notification:
    notification = _get_notification(db, principal, notification_id, Operation.NOTIFICATION_READ)
    notification.read = True
    db.commit()
    db.refresh(notification)
    return notification


def mark_all_notifications_read(db: Session, principal: models.User) -> int:
    """Mark every unread notification of the principal as read. Returns the count."""
    count = (
        db.query(models.Notification)
        .filter(
            models.Notification.user_id == principal.id,
            models.Notification.read.is_(False),
        )
        .update({models.Notification.read: True}, synchronize_session="fetch")
    )
    db.commit()
    return count


def delete_notification(db: Session, principal: models.User, notification_id: UUID) -> None:
    notification = _get_notification(db, principal, notification_id, Operation.NOTIFICATION_DELETE)
    db.delete(notification)
    db.commit()
