"""API routers for TaskHub Core."""

from . import auth, projects, tasks, sprints, notifications, analytics, ai, realtime

__all__ = ["auth", "projects", "tasks", "sprints", "notifications", "analytics", "ai", "realtime"]
