"""Read-only statistics derived from projects, tasks and sprints.

Every function scopes its input to projects the principal may read and takes
an optional `now`; time windows are always measured against the current
call's clock.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import crud, models
from .access_control import Operation

logger = logging.getLogger("taskhub-core.analytics")

TREND_DAYS = 30


def completion_rate(completed: int, total: int) -> int:
    """Percentage of completed items, rounded half-up; 0 when there are no items."""
    if total <= 0:
        return 0
    # Integer arithmetic so that exact halves (e.g. 1/8 = 12.5%) round up
    return (200 * completed + total) // (2 * total)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def sprint_time_progress(now: datetime, start: datetime, end: datetime) -> int:
    """Elapsed share of the sprint window in percent, clamped to 0..100."""
    total = (end - start).total_seconds()
    if total <= 0:
        return 100 if now >= end else 0
    elapsed = (now - start).total_seconds()
    return max(0, min(100, _round_half_up(elapsed / total * 100)))


def days_remaining(now: datetime, end: datetime) -> int:
    """Whole days until the end date, rounded up; 0 once it has passed."""
    return max(0, math.ceil((end - now).total_seconds() / 86400))


def is_delayed(task: models.Task, now: datetime) -> bool:
    return task.status != models.TaskStatus.DONE and task.due_date < now


def _zero_filled(enum_cls) -> dict[str, int]:
    return {member.value: 0 for member in enum_cls}


def summarize_tasks(tasks: Iterable[models.Task], now: datetime) -> dict[str, Any]:
    """
    Aggregate counts for a set of tasks.

    Every status and priority value is present in the breakdowns, zero-filled.
    """
    by_status = _zero_filled(models.TaskStatus)
    by_priority = _zero_filled(models.TaskPriority)
    total = completed = delayed = last_7 = last_30 = 0
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)

    for task in tasks:
        total += 1
        by_status[models.TaskStatus(task.status).value] += 1
        by_priority[models.TaskPriority(task.priority).value] += 1
        if task.status == models.TaskStatus.DONE:
            completed += 1
            if task.completed_at is not None:
                if task.completed_at >= week_ago:
                    last_7 += 1
                if task.completed_at >= month_ago:
                    last_30 += 1
        elif task.due_date < now:
            delayed += 1

    return {
        "total_tasks": total,
        "completed_tasks": completed,
        "completion_rate": completion_rate(completed, total),
        "delayed_tasks": delayed,
        "by_status": by_status,
        "by_priority": by_priority,
        "completed_last_7_days": last_7,
        "completed_last_30_days": last_30,
    }


def _active_tasks(db: Session, project_ids: list[UUID]) -> list[models.Task]:
    if not project_ids:
        return []
    return (
        db.query(models.Task)
        .filter(models.Task.project_id.in_(project_ids), models.Task.is_active.is_(True))
        .all()
    )


def overview(db: Session, principal: models.User, now: Optional[datetime] = None) -> dict[str, Any]:
    """Totals across every active project the principal participates in."""
    now = now or models.utcnow()
    projects = crud.get_projects(db, principal)
    tasks = _active_tasks(db, [p.id for p in projects])
    summary = summarize_tasks(tasks, now)

    member_ids = {member.user_id for project in projects for member in project.members}
    total_projects = len(projects)

    return {
        "total_projects": total_projects,
        "active_projects": sum(1 for p in projects if p.status == models.ProjectStatus.ACTIVE),
        "total_members": len(member_ids),
        "avg_tasks_per_project": _round_half_up(len(tasks) / total_projects) if total_projects else 0,
        "avg_members_per_project": (
            _round_half_up(sum(len(p.members) for p in projects) / total_projects)
            if total_projects else 0
        ),
        **summary,
    }


def dashboard(db: Session, principal: models.User, now: Optional[datetime] = None) -> dict[str, Any]:
    """Personal dashboard: project totals plus the principal's own workload."""
    now = now or models.utcnow()
    projects = crud.get_projects(db, principal)
    project_ids = [p.id for p in projects]
    tasks = _active_tasks(db, project_ids)
    summary = summarize_tasks(tasks, now)

    my_tasks = [t for t in tasks if t.assigned_to == principal.id]
    my_completed = sum(1 for t in my_tasks if t.status == models.TaskStatus.DONE)
    week_ago = now - timedelta(days=7)

    active_sprints = 0
    if project_ids:
        active_sprints = (
            db.query(models.Sprint)
            .filter(
                models.Sprint.project_id.in_(project_ids),
                models.Sprint.is_active.is_(True),
                models.Sprint.status == models.SprintStatus.ACTIVE,
            )
            .count()
        )

    return {
        "total_projects": len(projects),
        "my_tasks": len(my_tasks),
        "my_completed_tasks": my_completed,
        "my_completion_rate": completion_rate(my_completed, len(my_tasks)),
        "active_sprints": active_sprints,
        "recent_tasks": sum(1 for t in tasks if t.created_at >= week_ago),
        **summary,
    }


def project_stats(
    db: Session,
    principal: models.User,
    project_id: UUID,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Task summary for one project."""
    now = now or models.utcnow()
    project = crud.get_project(db, principal, project_id, Operation.PROJECT_READ)
    summary = summarize_tasks(_active_tasks(db, [project.id]), now)
    summary["member_count"] = len(project.members)
    return summary


def _member_rows(project: models.Project, tasks: list[models.Task], now: datetime) -> list[dict[str, Any]]:
    rows = []
    for member in project.members:
        assigned = [t for t in tasks if t.assigned_to == member.user_id]
        completed = sum(1 for t in assigned if t.status == models.TaskStatus.DONE)
        rows.append({
            "user_id": str(member.user_id),
            "name": member.name,
            "role": models.ProjectRole(member.role).value,
            "assigned_tasks": len(assigned),
            "completed_tasks": completed,
            "in_progress_tasks": sum(1 for t in assigned if t.status == models.TaskStatus.IN_PROGRESS),
            "high_priority_tasks": sum(1 for t in assigned if t.priority == models.TaskPriority.HIGH),
            "delayed_tasks": sum(1 for t in assigned if is_delayed(t, now)),
            "estimated_hours": sum(t.estimated_hours for t in assigned),
            "actual_hours": sum(t.actual_hours for t in assigned),
            "completion_rate": completion_rate(completed, len(assigned)),
        })
    return rows


def completion_trend(tasks: list[models.Task], now: datetime, days: int = TREND_DAYS) -> list[dict[str, Any]]:
    """Completed-task counts per calendar day for the trailing window, oldest first."""
    today = now.date()
    counts = {today - timedelta(days=offset): 0 for offset in range(days - 1, -1, -1)}
    for task in tasks:
        if task.status != models.TaskStatus.DONE or task.completed_at is None:
            continue
        day = task.completed_at.date()
        if day in counts:
            counts[day] += 1
    return [{"date": day.isoformat(), "completed": count} for day, count in counts.items()]


def _sprint_row(sprint: models.Sprint, tasks: list[models.Task], now: datetime) -> dict[str, Any]:
    sprint_tasks = [t for t in tasks if t.sprint_id == sprint.id]
    completed = sum(1 for t in sprint_tasks if t.status == models.TaskStatus.DONE)
    return {
        "sprint_id": str(sprint.id),
        "name": sprint.name,
        "status": models.SprintStatus(sprint.status).value,
        "total_tasks": len(sprint_tasks),
        "completed_tasks": completed,
        "completion_rate": completion_rate(completed, len(sprint_tasks)),
        "time_progress": sprint_time_progress(now, sprint.start_date, sprint.end_date),
    }


def project_analytics(
    db: Session,
    principal: models.User,
    project_id: UUID,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Project summary with per-member and per-sprint breakdowns and a daily completion trend."""
    now = now or models.utcnow()
    project = crud.get_project(db, principal, project_id, Operation.PROJECT_READ)
    tasks = _active_tasks(db, [project.id])
    sprints = (
        db.query(models.Sprint)
        .filter(models.Sprint.project_id == project.id, models.Sprint.is_active.is_(True))
        .order_by(models.Sprint.start_date)
        .all()
    )

    return {
        "project_id": str(project.id),
        "summary": summarize_tasks(tasks, now),
        "member_stats": _member_rows(project, tasks, now),
        "sprint_stats": [_sprint_row(sprint, tasks, now) for sprint in sprints],
        "completion_trend": completion_trend(tasks, now),
    }


def team_performance(
    db: Session,
    principal: models.User,
    project_id: UUID,
    now: Optional[datetime] = None,
) -> list[dict[str, Any]]:
    """Per-member workload for managers, best completion rate first."""
    now = now or models.utcnow()
    project = crud.get_project(db, principal, project_id, Operation.PROJECT_TEAM_PERFORMANCE)
    rows = _member_rows(project, _active_tasks(db, [project.id]), now)
    return sorted(rows, key=lambda row: row["completion_rate"], reverse=True)


def sprint_stats(
    db: Session,
    principal: models.User,
    sprint_id: UUID,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Sprint progress.

    Time progress and task completion are computed independently; a sprint
    can be 90% through its window with 10% of its tasks done.
    """
    now = now or models.utcnow()
    sprint = crud.get_sprint(db, principal, sprint_id)
    tasks = crud.get_sprint_tasks(db, principal, sprint.id)

    by_status = _zero_filled(models.TaskStatus)
    for task in tasks:
        by_status[models.TaskStatus(task.status).value] += 1
    completed = by_status[models.TaskStatus.DONE.value]

    return {
        "total_tasks": len(tasks),
        "completed_tasks": completed,
        "completion_rate": completion_rate(completed, len(tasks)),
        "time_progress": sprint_time_progress(now, sprint.start_date, sprint.end_date),
        "days_remaining": days_remaining(now, sprint.end_date),
        "by_status": by_status,
    }
