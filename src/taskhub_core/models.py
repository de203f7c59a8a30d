"""SQLAlchemy database models."""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Float,
    DateTime,
    ForeignKey,
    Enum,
    CheckConstraint,
    Boolean,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import relationship
from sqlalchemy.ext.declarative import declarative_base

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Current time as naive UTC, the convention for every stored timestamp."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRole(str, enum.Enum):
    """Global user role."""

    PROJECT_MANAGER = "Project Manager"
    TEAM_MEMBER = "Team Member"

    @classmethod
    def coerce(cls, value) -> "UserRole":
        """Map a stored role to a valid role; unknown legacy values become Team Member."""
        try:
            return cls(value)
        except ValueError:
            return cls.TEAM_MEMBER


class ProjectRole(str, enum.Enum):
    """Project member role enum, scoped to one project."""

    PROJECT_MANAGER = "Project Manager"
    TEAM_MEMBER = "Team Member"


class ProjectStatus(str, enum.Enum):
    """Project status enum."""

    PLANNING = "Planning"
    ACTIVE = "Active"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"
    ARCHIVED = "Archived"


class TaskStatus(str, enum.Enum):
    """Task workflow column. Any status is reachable from any status."""

    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    REVIEW = "Review"
    DONE = "Done"


class TaskPriority(str, enum.Enum):
    """Task priority enum."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class SprintStatus(str, enum.Enum):
    """Sprint status enum."""

    PLANNING = "Planning"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class NotificationSeverity(str, enum.Enum):
    """Notification severity enum."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class User(Base):
    """
    User account.

    Users register with a password or sign in through Google OAuth, in which
    case no credential hash is stored. Users are deactivated, never deleted.
    """

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(50), nullable=False)
    password_hash = Column(String(255), nullable=True)
    # Stored as text so that legacy values survive loading and can be coerced
    role = Column(String(32), nullable=False, default=UserRole.TEAM_MEMBER.value, index=True)
    google_id = Column(String(255), nullable=True, unique=True)
    avatar = Column(String(500), nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class Project(Base):
    """
    Project: the authorization root for its tasks and sprints.

    The creator is immutable and always authorized. Membership order is kept
    by the `position` column of ProjectMember.
    """

    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid4)

    # Core fields
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(
        Enum(ProjectStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ProjectStatus.PLANNING,
        index=True
    )
    start_date = Column(DateTime, nullable=False, default=utcnow)
    end_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Audit fields
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    creator = relationship("User", foreign_keys=[created_by])
    members = relationship(
        "ProjectMember",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="ProjectMember.position",
        collection_class=ordering_list("position"),
    )

    def __repr__(self) -> str:
        return f"<Project {self.name}>"


class ProjectMember(Base):
    """
    Junction table linking users to projects with roles.

    A user appears at most once per project.
    """

    __tablename__ = "project_members"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(
        Enum(ProjectRole, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ProjectRole.TEAM_MEMBER,
    )
    position = Column(Integer, nullable=False, default=0)
    joined_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    project = relationship("Project", back_populates="members")
    user = relationship("User")

    # Constraints
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="unique_project_user"),
    )

    @property
    def name(self) -> Optional[str]:
        return self.user.name if self.user else None

    @property
    def email(self) -> Optional[str]:
        return self.user.email if self.user else None

    @property
    def avatar(self) -> Optional[str]:
        return self.user.avatar if self.user else None

    def __repr__(self) -> str:
        return f"<ProjectMember {self.user_id} ({self.role})>"


class Sprint(Base):
    """Time-boxed iteration inside a project."""

    __tablename__ = "sprints"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    goal = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    status = Column(
        Enum(SprintStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=SprintStatus.PLANNING,
        index=True
    )
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Audit fields
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    project = relationship("Project")
    creator = relationship("User", foreign_keys=[created_by])

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="sprint_end_after_start"),
    )

    def __repr__(self) -> str:
        return f"<Sprint {self.name}>"


class Task(Base):
    """Work item on a project board.

    Position orders tasks within a status column; duplicates are tolerated
    and resolved by creation time.
    """

    __tablename__ = "tasks"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    sprint_id = Column(Uuid, ForeignKey("sprints.id", ondelete="SET NULL"), nullable=True, index=True)

    # Core task fields
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(Enum(TaskStatus, values_callable=lambda obj: [e.value for e in obj]), nullable=False, default=TaskStatus.TODO, index=True)
    priority = Column(Enum(TaskPriority, values_callable=lambda obj: [e.value for e in obj]), nullable=False, default=TaskPriority.MEDIUM, index=True)
    assigned_to = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    due_date = Column(DateTime, nullable=False, index=True)
    estimated_hours = Column(Float, nullable=False, default=0)
    actual_hours = Column(Float, nullable=False, default=0)
    position = Column(Integer, nullable=False, default=0, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Audit fields
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    project = relationship("Project")
    sprint = relationship("Sprint")
    assignee = relationship("User", foreign_keys=[assigned_to])
    creator = relationship("User", foreign_keys=[created_by])
    comments = relationship(
        "TaskComment",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskComment.created_at",
    )

    __table_args__ = (
        CheckConstraint("estimated_hours >= 0", name="task_estimated_hours_non_negative"),
        CheckConstraint("actual_hours >= 0", name="task_actual_hours_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Task {self.title[:30]}>"


class TaskComment(Base):
    """Append-only task comment."""

    __tablename__ = "task_comments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    task = relationship("Task", back_populates="comments")
    author = relationship("User")

    @property
    def author_name(self) -> Optional[str]:
        return self.author.name if self.author else None

    def __repr__(self) -> str:
        return f"<TaskComment {self.task_id}>"


class Notification(Base):
    """Per-user notification produced by lifecycle events."""

    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    severity = Column(
        Enum(NotificationSeverity, values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=NotificationSeverity.INFO,
    )
    message = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False, index=True)
    related_project_id = Column(Uuid, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    related_task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    related_project = relationship("Project")
    related_task = relationship("Task")

    def __repr__(self) -> str:
        return f"<Notification {self.user_id}: {self.message[:30]}>"
