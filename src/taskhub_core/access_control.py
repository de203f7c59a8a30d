"""Access-control evaluation for projects, tasks, sprints and notifications.

Every protected operation is mapped to an ordered list of gates:
- Manager: global Project Manager, project-role Project Manager, or the
  project creator acting on their own project
- Participant: project creator or member
- Field restriction: non-manager participants may only touch status and
  actual hours on task updates
- Creator: project creator only
- Recipient: notification recipient only

Gates run in the fixed order above and the first failing gate decides the
outcome. Evaluation is pure; `require` is the raising wrapper used by the
lifecycle layer.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

from . import models
from .errors import AuthorizationError

logger = logging.getLogger("taskhub-core.access_control")

# Fields a non-manager participant may change on a task
TEAM_MEMBER_TASK_FIELDS = frozenset({"status", "actual_hours"})


class Operation(str, enum.Enum):
    """Protected operations."""

    PROJECT_CREATE = "project:create"
    PROJECT_READ = "project:read"
    PROJECT_UPDATE = "project:update"
    PROJECT_DELETE = "project:delete"
    PROJECT_TEAM_PERFORMANCE = "project:team_performance"
    MEMBER_ADD = "member:add"
    MEMBER_REMOVE = "member:remove"
    MEMBER_REMOVE_CREATOR = "member:remove_creator"
    TASK_CREATE = "task:create"
    TASK_READ = "task:read"
    TASK_UPDATE = "task:update"
    TASK_STATUS_UPDATE = "task:status_update"
    TASK_DELETE = "task:delete"
    TASK_COMMENT = "task:comment"
    SPRINT_CREATE = "sprint:create"
    SPRINT_READ = "sprint:read"
    SPRINT_UPDATE = "sprint:update"
    SPRINT_DELETE = "sprint:delete"
    NOTIFICATION_READ = "notification:read"
    NOTIFICATION_DELETE = "notification:delete"
    USER_LIST = "user:list"
    USER_DEACTIVATE = "user:deactivate"


class Gate(int, enum.Enum):
    """Authorization gates; the value is the evaluation precedence."""

    MANAGER = 1
    PARTICIPANT = 2
    FIELD_RESTRICTION = 3
    CREATOR = 4
    RECIPIENT = 5


# Operation → gates it must pass (evaluated in Gate precedence order)
OPERATION_GATES: dict[Operation, list[Gate]] = {
    Operation.PROJECT_CREATE: [Gate.MANAGER],
    Operation.PROJECT_READ: [Gate.PARTICIPANT],
    Operation.PROJECT_UPDATE: [Gate.MANAGER, Gate.PARTICIPANT],
    Operation.PROJECT_DELETE: [Gate.CREATOR],
    Operation.PROJECT_TEAM_PERFORMANCE: [Gate.MANAGER, Gate.PARTICIPANT],
    Operation.MEMBER_ADD: [Gate.MANAGER, Gate.PARTICIPANT],
    Operation.MEMBER_REMOVE: [Gate.MANAGER, Gate.PARTICIPANT],
    Operation.MEMBER_REMOVE_CREATOR: [Gate.CREATOR],
    Operation.TASK_CREATE: [Gate.MANAGER, Gate.PARTICIPANT],
    Operation.TASK_READ: [Gate.PARTICIPANT],
    Operation.TASK_UPDATE: [Gate.PARTICIPANT, Gate.FIELD_RESTRICTION],
    Operation.TASK_STATUS_UPDATE: [Gate.PARTICIPANT],
    Operation.TASK_DELETE: [Gate.MANAGER, Gate.PARTICIPANT],
    Operation.TASK_COMMENT: [Gate.PARTICIPANT],
    Operation.SPRINT_CREATE: [Gate.MANAGER, Gate.PARTICIPANT],
    Operation.SPRINT_READ: [Gate.PARTICIPANT],
    Operation.SPRINT_UPDATE: [Gate.MANAGER, Gate.PARTICIPANT],
    Operation.SPRINT_DELETE: [Gate.MANAGER, Gate.PARTICIPANT],
    Operation.NOTIFICATION_READ: [Gate.RECIPIENT],
    Operation.NOTIFICATION_DELETE: [Gate.RECIPIENT],
    Operation.USER_LIST: [Gate.MANAGER],
    Operation.USER_DEACTIVATE: [Gate.MANAGER],
}


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check.

    `writable_fields` is None when the principal may write every field.
    """

    allowed: bool
    reason: Optional[str] = None
    writable_fields: Optional[frozenset[str]] = None

    @classmethod
    def allow(cls, writable_fields: Optional[frozenset[str]] = None) -> "Decision":
        return cls(allowed=True, writable_fields=writable_fields)

    @classmethod
    def deny(cls, reason: str) -> "Decision":
        return cls(allowed=False, reason=reason)

    def __bool__(self) -> bool:
        return self.allowed


def has_global_manager_role(principal: models.User) -> bool:
    return models.UserRole.coerce(principal.role) == models.UserRole.PROJECT_MANAGER


def is_creator(principal: models.User, project: models.Project) -> bool:
    return project.created_by == principal.id


def find_membership(project: models.Project, user_id) -> Optional[models.ProjectMember]:
    """Return the membership row for user_id, if any."""
    for member in project.members:
        if member.user_id == user_id:
            return member
    return None


def is_participant(principal: models.User, project: models.Project) -> bool:
    """Creator or member of the project."""
    return is_creator(principal, project) or find_membership(project, principal.id) is not None


def is_manager(principal: models.User, project: Optional[models.Project] = None) -> bool:
    """
    Check the manager gate.

    Without a project only the global role counts. With a project, the
    project-scoped role and creatorship also qualify.
    """
    if has_global_manager_role(principal):
        return True
    if project is None:
        return False
    if is_creator(principal, project):
        return True
    membership = find_membership(project, principal.id)
    return membership is not None and membership.role == models.ProjectRole.PROJECT_MANAGER


def _owning_project(target: Any) -> Optional[models.Project]:
    """Resolve the authorization root for a target entity."""
    if isinstance(target, models.Project):
        return target
    if isinstance(target, (models.Task, models.Sprint)):
        return target.project
    return None


def _check_gate(
    gate: Gate,
    principal: models.User,
    target: Any,
    project: Optional[models.Project],
) -> Decision:
    if gate == Gate.MANAGER:
        if is_manager(principal, project):
            return Decision.allow()
        return Decision.deny("project manager role required")

    if gate == Gate.PARTICIPANT:
        if project is not None and is_participant(principal, project):
            return Decision.allow()
        return Decision.deny("not a project participant")

    if gate == Gate.FIELD_RESTRICTION:
        if is_manager(principal, project):
            return Decision.allow()
        return Decision.allow(writable_fields=TEAM_MEMBER_TASK_FIELDS)

    if gate == Gate.CREATOR:
        if project is not None and is_creator(principal, project):
            return Decision.allow()
        return Decision.deny("only the project creator may perform this operation")

    if gate == Gate.RECIPIENT:
        if target is not None and getattr(target, "user_id", None) == principal.id:
            return Decision.allow()
        return Decision.deny("not the notification recipient")

    raise ValueError(f"Unknown gate: {gate}")


def authorize(principal: models.User, target: Any, operation: Operation) -> Decision:
    """
    Decide whether principal may perform operation on target.

    Args:
        principal: Authenticated user
        target: Project, Task, Sprint, Notification, or None for global operations
        operation: Operation being attempted

    Returns:
        Decision; an Allow may carry a writable-field restriction
    """
    gates = sorted(OPERATION_GATES[operation])
    project = _owning_project(target)

    writable_fields = None
    for gate in gates:
        decision = _check_gate(gate, principal, target, project)
        if not decision.allowed:
            return decision
        if decision.writable_fields is not None:
            writable_fields = decision.writable_fields

    return Decision.allow(writable_fields=writable_fields)


def require(principal: models.User, target: Any, operation: Operation) -> Decision:
    """
    Authorize and raise on denial.

    Raises:
        AuthorizationError: If any gate denies the operation
    """
    decision = authorize(principal, target, operation)
    if not decision.allowed:
        logger.warning(
            f"Denied {operation.value} for user {principal.id}: {decision.reason}"
        )
        raise AuthorizationError(f"Not authorized: {decision.reason}")
    return decision


def restrict_task_update(decision: Decision, changes: dict[str, Any]) -> dict[str, Any]:
    """Drop the fields the decision does not allow writing."""
    if decision.writable_fields is None:
        return dict(changes)

    allowed = {k: v for k, v in changes.items() if k in decision.writable_fields}
    dropped = sorted(set(changes) - set(allowed))
    if dropped:
        logger.debug(f"Dropped restricted task fields: {dropped}")
    return allowed
