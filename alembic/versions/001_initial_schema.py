"""Initial schema: users, projects, members, sprints, tasks, comments, notifications.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

project_status = sa.Enum('Planning', 'Active', 'On Hold', 'Completed', 'Archived', name='projectstatus')
project_role = sa.Enum('Project Manager', 'Team Member', name='projectrole')
sprint_status = sa.Enum('Planning', 'Active', 'Completed', 'Cancelled', name='sprintstatus')
task_status = sa.Enum('To Do', 'In Progress', 'Review', 'Done', name='taskstatus')
task_priority = sa.Enum('Low', 'Medium', 'High', name='taskpriority')
notification_severity = sa.Enum('info', 'success', 'warning', 'error', name='notificationseverity')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('password_hash', sa.String(255)),
        sa.Column('role', sa.String(32), nullable=False, server_default='Team Member'),
        sa.Column('google_id', sa.String(255), unique=True),
        sa.Column('avatar', sa.String(500), nullable=False, server_default=''),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_is_active', 'users', ['is_active'])

    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text, nullable=False, server_default=''),
        sa.Column('status', project_status, nullable=False, server_default='Planning'),
        sa.Column('start_date', sa.DateTime, nullable=False),
        sa.Column('end_date', sa.DateTime),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.Uuid, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_projects_status', 'projects', ['status'])
    op.create_index('ix_projects_is_active', 'projects', ['is_active'])
    op.create_index('ix_projects_created_by', 'projects', ['created_by'])
    op.create_index('ix_projects_created_at', 'projects', ['created_at'])

    op.create_table(
        'project_members',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', project_role, nullable=False, server_default='Team Member'),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('joined_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('project_id', 'user_id', name='unique_project_user'),
    )
    op.create_index('ix_project_members_project_id', 'project_members', ['project_id'])
    op.create_index('ix_project_members_user_id', 'project_members', ['user_id'])

    op.create_table(
        'sprints',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('goal', sa.Text),
        sa.Column('start_date', sa.DateTime, nullable=False),
        sa.Column('end_date', sa.DateTime, nullable=False),
        sa.Column('status', sprint_status, nullable=False, server_default='Planning'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.Uuid, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('end_date > start_date', name='sprint_end_after_start'),
    )
    op.create_index('ix_sprints_project_id', 'sprints', ['project_id'])
    op.create_index('ix_sprints_status', 'sprints', ['status'])
    op.create_index('ix_sprints_is_active', 'sprints', ['is_active'])
    op.create_index('ix_sprints_created_at', 'sprints', ['created_at'])

    op.create_table(
        'tasks',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sprint_id', sa.Uuid, sa.ForeignKey('sprints.id', ondelete='SET NULL')),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=False, server_default=''),
        sa.Column('status', task_status, nullable=False, server_default='To Do'),
        sa.Column('priority', task_priority, nullable=False, server_default='Medium'),
        sa.Column('assigned_to', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('due_date', sa.DateTime, nullable=False),
        sa.Column('estimated_hours', sa.Float, nullable=False, server_default='0'),
        sa.Column('actual_hours', sa.Float, nullable=False, server_default='0'),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.Uuid, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime),
        sa.CheckConstraint('estimated_hours >= 0', name='task_estimated_hours_non_negative'),
        sa.CheckConstraint('actual_hours >= 0', name='task_actual_hours_non_negative'),
    )
    for column in ('project_id', 'sprint_id', 'status', 'priority', 'assigned_to',
                   'due_date', 'position', 'is_active', 'created_at'):
        op.create_index(f'ix_tasks_{column}', 'tasks', [column])

    op.create_table(
        'task_comments',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('task_id', sa.Uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('text', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_task_comments_task_id', 'task_comments', ['task_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('severity', notification_severity, nullable=False, server_default='info'),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('read', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('related_project_id', sa.Uuid, sa.ForeignKey('projects.id', ondelete='SET NULL')),
        sa.Column('related_task_id', sa.Uuid, sa.ForeignKey('tasks.id', ondelete='SET NULL')),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_read', 'notifications', ['read'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('task_comments')
    op.drop_table('tasks')
    op.drop_table('sprints')
    op.drop_table('project_members')
    op.drop_table('projects')
    op.drop_table('users')

    # Drop enums (PostgreSQL only; no-op elsewhere)
    bind = op.get_bind()
    for enum in (notification_severity, task_priority, task_status, sprint_status, project_role, project_status):
        enum.drop(bind, checkfirst=True)
