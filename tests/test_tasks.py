"""Tests for task ordering, updates, status transitions and comments."""
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from taskhub_core import crud, models, schemas
from taskhub_core.errors import AuthorizationError, ConsistencyError, NotFoundError, ValidationError
from taskhub_core.events import EventType

from conftest import due_in


class TestTaskCreation:
    """Test task creation and position assignment."""

    def test_positions_increase_monotonically(self, db, project, make_task):
        """Test that each new task lands one past the highest position."""
        tasks = [make_task(project, f"Task {i}") for i in range(3)]
        assert [t.position for t in tasks] == [0, 1, 2]

    def test_positions_count_inactive_tasks(self, db, project, manager, make_task):
        """Test that soft-deleted tasks still reserve their position."""
        make_task(project, "First")
        last = make_task(project, "Second")
        crud.delete_task(db, manager, last.id)

        assert make_task(project, "Third").position == 2

    def test_positions_are_per_project(self, db, project, manager, make_task):
        """Test that ordering restarts in another project."""
        make_task(project, "First")
        other = crud.create_project(db, manager, name="Other")
        assert make_task(other, "Elsewhere").position == 0

    def test_defaults(self, db, project, manager, make_task):
        """Test status, priority, hours and creator defaults."""
        task = make_task(project, "Write docs")

        assert task.status == models.TaskStatus.TODO
        assert task.priority == models.TaskPriority.MEDIUM
        assert task.estimated_hours == 0
        assert task.actual_hours == 0
        assert task.created_by == manager.id
        assert task.completed_at is None
        assert task.is_active

    def test_created_done_sets_completed_at(self, db, project, make_task):
        """Test that a task created as Done is stamped as completed."""
        task = make_task(project, "Already done", status=models.TaskStatus.DONE)
        assert task.completed_at is not None

    def test_team_member_cannot_create(self, db, project, member, make_task):
        """Test that task creation needs a manager."""
        with pytest.raises(AuthorizationError):
            make_task(project, "Nope", principal=member)

    def test_assignment_notifies_assignee(self, db, project, member, make_task, dispatcher):
        """Test that the assignee is the notification recipient."""
        make_task(project, "Assigned", dispatcher=dispatcher, assigned_to=member.id)

        event = dispatcher.of_type(EventType.TASK_CREATED)[0]
        assert event.recipients == [member.id]
        assert event.message == "New task assigned: Assigned"
        assert event.payload["title"] == "Assigned"

    def test_assignee_must_be_participant(self, db, project, outsider, make_task):
        """Test that assigning a non-participant is rejected."""
        with pytest.raises(ConsistencyError) as exc_info:
            make_task(project, "Bad", assigned_to=outsider.id)
        assert exc_info.value.message == "Assignee must be an active project participant"

    def test_sprint_must_belong_to_project(self, db, project, manager, make_task):
        """Test that a sprint of another project is rejected."""
        other = crud.create_project(db, manager, name="Other")
        sprint = crud.create_sprint(db, manager, other.id, {
            "name": "Sprint 1", "start_date": due_in(0), "end_date": due_in(14),
        })
        with pytest.raises(ConsistencyError):
            make_task(project, "Bad", sprint_id=sprint.id)

    def test_inactive_project_is_not_found(self, db, project, manager, make_task):
        """Test that tasks cannot be created in a deleted project."""
        crud.delete_project(db, manager, project.id)
        with pytest.raises(NotFoundError):
            make_task(project, "Late")


class TestTaskUpdate:
    """Test task updates and the team-member field restriction."""

    def test_manager_updates_any_field(self, db, project, manager, member, make_task):
        """Test that a manager may rewrite the task."""
        task = make_task(project, "Original")
        updated = crud.update_task(db, manager, task.id, {
            "title": "Renamed",
            "priority": models.TaskPriority.HIGH,
            "assigned_to": member.id,
        })

        assert updated.title == "Renamed"
        assert updated.priority == models.TaskPriority.HIGH
        assert updated.assigned_to == member.id

    def test_team_member_fields_silently_dropped(self, db, project, member, make_task):
        """Test that a team member can only change status and actual hours."""
        task = make_task(project, "Original", assigned_to=member.id)
        updated = crud.update_task(db, member, task.id, {
            "title": "Hijacked",
            "priority": models.TaskPriority.HIGH,
            "status": models.TaskStatus.IN_PROGRESS,
            "actual_hours": 2.5,
        })

        assert updated.title == "Original"
        assert updated.priority == models.TaskPriority.MEDIUM
        assert updated.status == models.TaskStatus.IN_PROGRESS
        assert updated.actual_hours == 2.5

    def test_fully_restricted_update_is_a_no_op(self, db, project, member, make_task, dispatcher):
        """Test that an update with nothing left after restriction neither commits nor emits."""
        task = make_task(project, "Original", assigned_to=member.id)
        before = task.updated_at

        updated = crud.update_task(db, member, task.id, {"title": "Hijacked"}, dispatcher=dispatcher)

        assert updated.title == "Original"
        assert updated.updated_at == before
        assert dispatcher.events == []

    def test_outsider_is_forbidden(self, db, project, outsider, make_task):
        """Test that non-participants cannot update."""
        task = make_task(project, "Private")
        with pytest.raises(AuthorizationError):
            crud.update_task(db, outsider, task.id, {"status": models.TaskStatus.DONE})

    def test_null_required_field_rejected(self, db, project, manager, make_task):
        """Test that required fields cannot be cleared."""
        task = make_task(project, "Keep title")
        with pytest.raises(ValidationError):
            crud.update_task(db, manager, task.id, {"title": None})

    def test_unassign_with_null(self, db, project, manager, member, make_task):
        """Test that nullable references may be cleared."""
        task = make_task(project, "Assigned", assigned_to=member.id)
        updated = crud.update_task(db, manager, task.id, {"assigned_to": None})
        assert updated.assigned_to is None

    def test_completion_event_recipients(self, db, project, manager, member, make_task, dispatcher):
        """Test that completing a task notifies creator and assignee, minus the actor."""
        task = make_task(project, "Ship it", assigned_to=member.id)
        crud.update_task(db, member, task.id, {"status": models.TaskStatus.DONE}, dispatcher=dispatcher)

        event = dispatcher.of_type(EventType.TASK_UPDATED)[0]
        assert event.message == "Task completed: Ship it"
        assert event.severity == models.NotificationSeverity.SUCCESS
        assert event.recipients == [manager.id]

    def test_deleted_task_is_not_found(self, db, project, manager, make_task):
        """Test that soft-deleted tasks are invisible."""
        task = make_task(project, "Gone")
        crud.delete_task(db, manager, task.id)
        with pytest.raises(NotFoundError):
            crud.get_task(db, manager, task.id)
        with pytest.raises(NotFoundError):
            crud.update_task(db, manager, task.id, {"title": "x"})


class TestStatusTransitions:
    """Test completed_at maintenance and board moves."""

    def test_done_sets_and_reopen_clears_completed_at(self, db, project, member, make_task):
        """Test the completed_at lifecycle."""
        task = make_task(project, "Cycle", assigned_to=member.id)

        done = crud.update_task_status(db, member, task.id, models.TaskStatus.DONE)
        assert done.completed_at is not None
        stamped = done.completed_at

        again = crud.update_task_status(db, member, task.id, models.TaskStatus.DONE)
        assert again.completed_at == stamped

        reopened = crud.update_task_status(db, member, task.id, models.TaskStatus.REVIEW)
        assert reopened.completed_at is None

    def test_move_updates_position_without_renumbering(self, db, project, member, make_task):
        """Test that moving one task leaves the others alone."""
        first = make_task(project, "First")
        second = make_task(project, "Second")

        crud.update_task_status(db, member, second.id, models.TaskStatus.IN_PROGRESS, position=0)

        db.expire_all()
        assert db.get(models.Task, second.id).position == 0
        assert db.get(models.Task, first.id).position == 0

    def test_position_only_move(self, db, project, member, make_task):
        """Test that a move without status keeps the column."""
        task = make_task(project, "Stay", status=models.TaskStatus.REVIEW)
        moved = crud.update_task_status(db, member, task.id, None, position=5)
        assert moved.status == models.TaskStatus.REVIEW
        assert moved.position == 5


class TestBulkPositions:
    """Test best-effort bulk reordering."""

    def test_valid_items_applied_and_failures_reported(self, db, project, manager, make_task):
        """Test that one bad item never reverts the others."""
        first = make_task(project, "First")
        second = make_task(project, "Second")
        missing = str(uuid4())

        result = crud.bulk_update_positions(db, manager, [
            schemas.PositionUpdateItem(id=str(first.id), position=1),
            schemas.PositionUpdateItem(id="not-a-uuid", position=0),
            schemas.PositionUpdateItem(id=missing, position=0),
            schemas.PositionUpdateItem(id=str(second.id), position=0, status=models.TaskStatus.DONE),
        ])

        assert result["updated"] == [first.id, second.id]
        assert result["failed"] == [
            {"id": "not-a-uuid", "message": "Invalid task id"},
            {"id": missing, "message": "Task not found"},
        ]
        db.expire_all()
        assert db.get(models.Task, first.id).position == 1
        moved = db.get(models.Task, second.id)
        assert moved.position == 0
        assert moved.status == models.TaskStatus.DONE
        assert moved.completed_at is not None

    def test_unauthorized_items_fail(self, db, project, outsider, make_task):
        """Test that each item is authorized individually."""
        task = make_task(project, "Private")
        result = crud.bulk_update_positions(db, outsider, [
            schemas.PositionUpdateItem(id=str(task.id), position=3),
        ])

        assert result["updated"] == []
        assert result["failed"][0]["message"].startswith("Not authorized")
        db.expire_all()
        assert db.get(models.Task, task.id).position == 0

    def test_database_error_is_reported_per_item(self, db, project, manager, make_task, monkeypatch):
        """Test that a failed commit is rolled back and the remaining items still apply."""
        first = make_task(project, "First")
        second = make_task(project, "Second")
        real_commit = db.commit
        calls = []

        def flaky_commit():
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("UPDATE tasks", {}, Exception("database is locked"))
            real_commit()

        with monkeypatch.context() as patch:
            patch.setattr(db, "commit", flaky_commit)
            result = crud.bulk_update_positions(db, manager, [
                schemas.PositionUpdateItem(id=str(first.id), position=5),
                schemas.PositionUpdateItem(id=str(second.id), position=7),
            ])

        assert result["updated"] == [second.id]
        assert result["failed"] == [{"id": str(first.id), "message": "Database error"}]
        db.expire_all()
        assert db.get(models.Task, first.id).position == 0
        assert db.get(models.Task, second.id).position == 7


class TestTaskQueries:
    """Test listing tasks."""

    def test_project_tasks_ordered_and_filtered(self, db, project, manager, member, make_task):
        """Test ordering by position and the status and assignee filters."""
        a = make_task(project, "A")
        b = make_task(project, "B", assigned_to=member.id, status=models.TaskStatus.REVIEW)
        gone = make_task(project, "Gone")
        crud.delete_task(db, manager, gone.id)
        crud.update_task_status(db, manager, a.id, None, position=10)

        assert [t.title for t in crud.get_project_tasks(db, member, project.id)] == ["B", "A"]
        assert [t.id for t in crud.get_project_tasks(
            db, member, project.id, status_filter=models.TaskStatus.REVIEW)] == [b.id]
        assert [t.id for t in crud.get_project_tasks(
            db, member, project.id, assigned_to=member.id)] == [b.id]

    def test_my_tasks_skip_deleted_projects(self, db, project, manager, member, make_task):
        """Test that my-tasks hides tasks of soft-deleted projects."""
        other = crud.create_project(db, manager, name="Other", members=[
            schemas.ProjectMemberInput(user_id=member.id),
        ])
        later = make_task(project, "Later", assigned_to=member.id, due_date=due_in(10))
        sooner = make_task(project, "Sooner", assigned_to=member.id, due_date=due_in(1))
        make_task(other, "Doomed", assigned_to=member.id)
        crud.delete_project(db, manager, other.id)

        assert [t.id for t in crud.get_my_tasks(db, member)] == [sooner.id, later.id]


class TestComments:
    """Test task comments."""

    def test_participant_comments(self, db, project, manager, member, make_task, dispatcher):
        """Test that a comment is stored and notifies the other parties."""
        task = make_task(project, "Discuss", assigned_to=member.id)
        task = crud.add_comment(db, member, task.id, "  Looks fine  ", dispatcher=dispatcher)

        assert [c.text for c in task.comments] == ["Looks fine"]
        assert task.comments[0].author_name == "Member"
        event = dispatcher.of_type(EventType.COMMENT_ADDED)[0]
        assert event.recipients == [manager.id]

    def test_outsider_cannot_comment(self, db, project, outsider, make_task):
        """Test the participant gate on comments."""
        task = make_task(project, "Discuss")
        with pytest.raises(AuthorizationError):
            crud.add_comment(db, outsider, task.id, "hi")
