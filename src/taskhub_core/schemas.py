"""Pydantic schemas for request/response validation."""
from datetime import datetime, timezone
from typing import Annotated, Any, Generic, Optional, TypeVar
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field

from .models import (
    UserRole,
    ProjectRole,
    ProjectStatus,
    TaskStatus,
    TaskPriority,
    SprintStatus,
    NotificationSeverity,
)


def _to_naive_utc(value: datetime) -> datetime:
    """Normalize to naive UTC, the storage convention."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UTCDateTime = Annotated[datetime, AfterValidator(_to_naive_utc)]

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """Uniform response body: {success, message?, data?, errors?}."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    errors: Optional[list[Any]] = None


def envelope(data: Any = None, message: Optional[str] = None) -> dict:
    """Successful response body."""
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


# User Schemas

class UserRegister(BaseModel):
    """Schema for registering a user with a password."""

    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: UserRole = UserRole.TEAM_MEMBER


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    """Schema for updating the caller's own profile."""

    name: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    avatar: Optional[str] = Field(None, max_length=500)


class PasswordUpdate(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)


class UserResponse(BaseModel):
    """Schema for user response. Never includes the credential hash."""

    id: UUID
    name: str
    email: str
    role: str
    avatar: str
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class AuthResponse(BaseModel):
    token: str
    user: UserResponse


# Project Schemas

class ProjectMemberInput(BaseModel):
    """Member supplied when creating a project or adding a member."""

    user_id: UUID
    role: ProjectRole = ProjectRole.TEAM_MEMBER


class ProjectCreate(BaseModel):
    """Schema for creating a project."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    status: ProjectStatus = ProjectStatus.PLANNING
    start_date: Optional[UTCDateTime] = None
    end_date: Optional[UTCDateTime] = None
    members: list[ProjectMemberInput] = Field(default_factory=list)


class ProjectUpdate(BaseModel):
    """Schema for updating a project. Unset fields are left unchanged."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    status: Optional[ProjectStatus] = None
    start_date: Optional[UTCDateTime] = None
    end_date: Optional[UTCDateTime] = None


class ProjectMemberResponse(BaseModel):
    user_id: UUID
    name: Optional[str] = None
    email: Optional[str] = None
    avatar: Optional[str] = None
    role: ProjectRole
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ProjectResponse(BaseModel):
    """Schema for project response."""

    id: UUID
    name: str
    description: str
    status: ProjectStatus
    start_date: datetime
    end_date: Optional[datetime] = None
    created_by: UUID
    is_active: bool
    members: list[ProjectMemberResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# Task Schemas

class TaskCreate(BaseModel):
    """Schema for creating a task. The project comes from the URL."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)
    sprint_id: Optional[UUID] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to: Optional[UUID] = None
    due_date: UTCDateTime
    estimated_hours: float = Field(0, ge=0)


class TaskUpdate(BaseModel):
    """Schema for updating a task.

    Only explicitly provided fields are applied; non-manager participants
    are limited to status and actual_hours.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    sprint_id: Optional[UUID] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[UUID] = None
    due_date: Optional[UTCDateTime] = None
    estimated_hours: Optional[float] = Field(None, ge=0)
    actual_hours: Optional[float] = Field(None, ge=0)


class TaskStatusUpdate(BaseModel):
    status: TaskStatus
    position: Optional[int] = Field(None, ge=0)


class PositionUpdateItem(BaseModel):
    # Kept as a string so one malformed id fails only its own item
    id: str
    position: int = Field(..., ge=0)
    status: Optional[TaskStatus] = None


class BulkPositionUpdate(BaseModel):
    updates: list[PositionUpdateItem] = Field(..., min_length=1)


class BulkItemFailure(BaseModel):
    id: str
    message: str


class BulkPositionResult(BaseModel):
    updated: list[UUID] = Field(default_factory=list)
    failed: list[BulkItemFailure] = Field(default_factory=list)


class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=1000)


class CommentResponse(BaseModel):
    id: UUID
    user_id: UUID
    author_name: Optional[str] = None
    text: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TaskResponse(BaseModel):
    """Schema for task response."""

    id: UUID
    project_id: UUID
    sprint_id: Optional[UUID] = None
    title: str
    description: str
    status: TaskStatus
    priority: TaskPriority
    assigned_to: Optional[UUID] = None
    created_by: UUID
    due_date: datetime
    estimated_hours: float
    actual_hours: float
    position: int
    is_active: bool
    completed_at: Optional[datetime] = None
    comments: list[CommentResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# Sprint Schemas

class SprintCreate(BaseModel):
    """Schema for creating a sprint. The project comes from the URL."""

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    goal: Optional[str] = Field(None, max_length=500)
    start_date: UTCDateTime
    end_date: UTCDateTime
    status: SprintStatus = SprintStatus.PLANNING


class SprintUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    goal: Optional[str] = Field(None, max_length=500)
    start_date: Optional[UTCDateTime] = None
    end_date: Optional[UTCDateTime] = None
    status: Optional[SprintStatus] = None


class SprintResponse(BaseModel):
    """Schema for sprint response."""

    id: UUID
    project_id: UUID
    name: str
    description: Optional[str] = None
    goal: Optional[str] = None
    start_date: datetime
    end_date: datetime
    status: SprintStatus
    created_by: UUID
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class SprintStatsResponse(BaseModel):
    total_tasks: int
    completed_tasks: int
    completion_rate: int
    time_progress: int
    days_remaining: int
    by_status: dict[str, int]


# Notification Schemas

class NotificationResponse(BaseModel):
    id: UUID
    severity: NotificationSeverity
    message: str
    read: bool
    related_project_id: Optional[UUID] = None
    related_task_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class NotificationList(BaseModel):
    items: list[NotificationResponse]
    unread_count: int


# AI Schemas

class GenerateTasksRequest(BaseModel):
    project_id: UUID
    description: str = Field(..., min_length=1, max_length=4000)


class GeneratedTask(BaseModel):
    title: str
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM

    model_config = ConfigDict(use_enum_values=True)


class SuggestPriorityRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)
    due_date: Optional[UTCDateTime] = None


class PrioritySuggestion(BaseModel):
    priority: TaskPriority
    reasoning: str

    model_config = ConfigDict(use_enum_values=True)


class SprintPlanRequest(BaseModel):
    project_id: UUID
    sprint_duration_days: int = Field(14, ge=1, le=60)
    # Defaults to the project's member count
    team_size: Optional[int] = Field(None, ge=1, le=100)


class SprintPlan(BaseModel):
    sprint_goal: str
    recommended_tasks: list[str] = Field(default_factory=list)
    task_distribution: str = ""


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)
    context: Optional[str] = Field(None, max_length=8000)


class ChatResponse(BaseModel):
    reply: str
