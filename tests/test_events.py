"""Tests for events, the notification gateway, the channel broker and notification CRUD."""
import asyncio
from uuid import uuid4

import pytest

from taskhub_core import crud, models
from taskhub_core.errors import AuthorizationError, NotFoundError
from taskhub_core.events import Event, EventType, NotificationGateway, recipients_excluding
from taskhub_core.realtime import ChannelBroker


class RecordingBroker:
    def __init__(self, fail=False):
        self.fail = fail
        self.messages = []
        self.revoked = []
        self.closed = []

    def publish(self, channel, message):
        if self.fail:
            raise RuntimeError("broker down")
        self.messages.append((channel, message))

    def unsubscribe_user(self, channel, user_id):
        self.revoked.append((channel, user_id))
        return 1

    def close_channel(self, channel):
        self.closed.append(channel)
        return 1


def _event(project_id, actor_id, recipients, **kwargs):
    return Event(
        type=EventType.TASK_UPDATED,
        project_id=project_id,
        actor_id=actor_id,
        message="Task updated: Demo",
        recipients=recipients,
        **kwargs,
    )


class TestEvent:
    """Test event construction."""

    def test_recipients_exclude_actor_none_and_duplicates(self):
        """Test recipient normalization keeps first-seen order."""
        actor, a, b = uuid4(), uuid4(), uuid4()
        assert recipients_excluding(actor, a, None, actor, b, a) == [a, b]

        event = _event(uuid4(), actor, [actor, None, a])
        assert event.recipients == [a]

    def test_to_message(self):
        """Test the JSON-ready broadcast form."""
        project_id, actor = uuid4(), uuid4()
        message = _event(project_id, actor, [], payload={"k": "v"}).to_message()

        assert message == {
            "type": "task_updated",
            "project_id": str(project_id),
            "task_id": None,
            "actor_id": str(actor),
            "message": "Task updated: Demo",
            "severity": "info",
            "data": {"k": "v"},
        }


class TestNotificationGateway:
    """Test notification persistence and fan-out."""

    def test_persists_and_broadcasts(self, db, session_factory, project, manager, member):
        """Test one notification per recipient plus channel and user fan-out."""
        broker = RecordingBroker()
        gateway = NotificationGateway(session_factory, broker)

        gateway.publish(f"project:{project.id}", _event(project.id, manager.id, [member.id, manager.id]))

        stored = db.query(models.Notification).all()
        assert len(stored) == 1
        assert stored[0].user_id == member.id
        assert stored[0].related_project_id == project.id
        assert not stored[0].read
        assert [channel for channel, _ in broker.messages] == [f"project:{project.id}", f"user:{member.id}"]

    def test_broker_failure_is_swallowed(self, db, session_factory, project, manager, member):
        """Test that a failing broker neither raises nor loses the notification."""
        gateway = NotificationGateway(session_factory, RecordingBroker(fail=True))

        gateway.publish("project:x", _event(project.id, manager.id, [member.id]))

        assert db.query(models.Notification).count() == 1

    def test_persistence_failure_still_broadcasts(self, project, manager):
        """Test that a storage failure is logged and the broadcast still happens."""
        def broken_factory():
            raise RuntimeError("no database")

        broker = RecordingBroker()
        gateway = NotificationGateway(broken_factory, broker)
        gateway.publish("project:x", _event(project.id, manager.id, [uuid4()]))

        assert len(broker.messages) == 2

    def test_member_removal_revokes_before_broadcast(self, session_factory, project, manager, member):
        """Test that the removed member loses the project channel and still gets a direct notice."""
        events = []

        class OrderedBroker(RecordingBroker):
            def publish(self, channel, message):
                events.append(("publish", channel))
                super().publish(channel, message)

            def unsubscribe_user(self, channel, user_id):
                events.append(("revoke", channel))
                return super().unsubscribe_user(channel, user_id)

        broker = OrderedBroker()
        gateway = NotificationGateway(session_factory, broker)
        channel = f"project:{project.id}"

        gateway.publish(channel, Event(
            type=EventType.MEMBER_REMOVED,
            project_id=project.id,
            actor_id=manager.id,
            message="You have been removed",
            recipients=[member.id],
            payload={"user_id": str(member.id)},
        ))

        assert broker.revoked == [(channel, str(member.id))]
        assert events == [("revoke", channel), ("publish", channel), ("publish", f"user:{member.id}")]
        assert broker.closed == []

    def test_project_deletion_closes_channel(self, session_factory, project, manager, member):
        """Test that members are told about the deletion before the channel closes."""
        broker = RecordingBroker()
        gateway = NotificationGateway(session_factory, broker)
        channel = f"project:{project.id}"

        gateway.publish(channel, Event(
            type=EventType.PROJECT_DELETED,
            project_id=project.id,
            actor_id=manager.id,
            message="Project 'Apollo' was deleted",
            recipients=[member.id],
        ))

        assert [c for c, _ in broker.messages] == [channel, f"user:{member.id}"]
        assert broker.closed == [channel]

    def test_channel_closed_even_if_broadcast_fails(self, session_factory, project, manager):
        broker = RecordingBroker(fail=True)
        NotificationGateway(session_factory, broker).publish("project:x", Event(
            type=EventType.PROJECT_DELETED,
            project_id=project.id,
            actor_id=manager.id,
            message="Project 'Apollo' was deleted",
        ))
        assert broker.closed == ["project:x"]

    def test_mutation_creates_notification(self, db, session_factory, project, manager, member, make_task):
        """Test the full path from a task mutation to a stored notification."""
        make_task(project, "Wire it", dispatcher=NotificationGateway(session_factory), assigned_to=member.id)

        items, unread = crud.get_notifications(db, member)
        assert unread == 1
        assert items[0].message == "New task assigned: Wire it"
        assert crud.get_notifications(db, manager) == ([], 0)


class TestChannelBroker:
    """Test the in-process real-time broker."""

    def test_publish_reaches_subscribers(self):
        """Test delivery, the channel key and unsubscribe."""
        broker = ChannelBroker()

        async def scenario():
            queue = asyncio.Queue()
            broker.subscribe("project:1", queue)
            delivered = broker.publish("project:1", {"type": "task_created"})
            message = await asyncio.wait_for(queue.get(), timeout=1)
            broker.unsubscribe_all(queue)
            return delivered, message

        delivered, message = asyncio.run(scenario())
        assert delivered == 1
        assert message == {"channel": "project:1", "type": "task_created"}
        assert broker.subscriber_count("project:1") == 0

    def test_publish_without_subscribers(self):
        """Test that publishing to an empty channel is a no-op."""
        assert ChannelBroker().publish("project:none", {"type": "x"}) == 0

    def test_unsubscribe_user_only_drops_that_user(self):
        """Test that revoking one user's access leaves other subscribers in place."""
        broker = ChannelBroker()
        alice, bob = uuid4(), uuid4()

        async def scenario():
            alice_tabs = [asyncio.Queue(), asyncio.Queue()]
            bob_queue = asyncio.Queue()
            for queue in alice_tabs:
                broker.subscribe("project:1", queue, user_id=alice)
            broker.subscribe("project:1", bob_queue, user_id=bob)
            broker.subscribe(f"user:{alice}", alice_tabs[0], user_id=alice)

            removed = broker.unsubscribe_user("project:1", alice)
            broker.publish("project:1", {"type": "task_created"})
            await asyncio.sleep(0)
            return removed, bob_queue.qsize(), [queue.qsize() for queue in alice_tabs]

        removed, bob_pending, alice_pending = asyncio.run(scenario())
        assert removed == 2
        assert bob_pending == 1
        assert alice_pending == [0, 0]
        assert broker.subscriber_count("project:1") == 1
        assert broker.subscriber_count(f"user:{alice}") == 1
        assert broker.unsubscribe_user("project:1", uuid4()) == 0

    def test_close_channel(self):
        broker = ChannelBroker()

        async def scenario():
            queues = [asyncio.Queue(), asyncio.Queue()]
            for queue in queues:
                broker.subscribe("project:1", queue, user_id=uuid4())
            return broker.close_channel("project:1")

        assert asyncio.run(scenario()) == 2
        assert broker.subscriber_count("project:1") == 0
        assert broker.publish("project:1", {"type": "x"}) == 0
        assert broker.close_channel("project:1") == 0


class TestNotificationCrud:
    """Test the recipient's notification operations."""

    @pytest.fixture
    def notifications(self, db, member):
        items = [
            models.Notification(user_id=member.id, message=f"n{i}")
            for i in range(3)
        ]
        db.add_all(items)
        db.commit()
        return items

    def test_mark_read_and_unread_count(self, db, member, notifications):
        """Test that marking one read lowers the unread count."""
        crud.mark_notification_read(db, member, notifications[0].id)
        _, unread = crud.get_notifications(db, member)
        assert unread == 2

    def test_mark_all_read(self, db, member, notifications):
        """Test the bulk read count."""
        assert crud.mark_all_notifications_read(db, member) == 3
        assert crud.get_notifications(db, member)[1] == 0
        assert crud.mark_all_notifications_read(db, member) == 0

    def test_other_users_are_forbidden(self, db, manager, notifications):
        """Test that even a Project Manager cannot touch another user's notification."""
        with pytest.raises(AuthorizationError):
            crud.mark_notification_read(db, manager, notifications[0].id)
        with pytest.raises(AuthorizationError):
            crud.delete_notification(db, manager, notifications[0].id)

    def test_delete(self, db, member, notifications):
        """Test that deletion is permanent."""
        target_id = notifications[0].id
        crud.delete_notification(db, member, target_id)
        with pytest.raises(NotFoundError):
            crud.mark_notification_read(db, member, target_id)
        assert len(crud.get_notifications(db, member)[0]) == 2

    def test_list_is_capped(self, db, member):
        """Test that at most fifty notifications are returned."""
        db.add_all(models.Notification(user_id=member.id, message=f"n{i}") for i in range(55))
        db.commit()
        items, unread = crud.get_notifications(db, member)
        assert len(items) == 50
        assert unread == 55
