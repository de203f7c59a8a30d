"""In-process publish/subscribe broker for WebSocket fan-out.

Subscribers are asyncio queues owned by a WebSocket connection's event
loop. Publishers may run on any thread (sync endpoints execute in the
FastAPI thread pool), so delivery goes through `call_soon_threadsafe`.
Each subscription remembers the user that owns the queue so access can be
revoked per user when a membership ends.
"""
import asyncio
import logging
import threading
from typing import Any, NamedTuple, Optional

logger = logging.getLogger("taskhub-core.realtime")


class _Subscription(NamedTuple):
    loop: asyncio.AbstractEventLoop
    user_id: Optional[str]


class ChannelBroker:
    """Channel name → subscribed queues."""

    def __init__(self):
        self._lock = threading.Lock()
        self._channels: dict[str, dict[asyncio.Queue, _Subscription]] = {}

    def subscribe(self, channel: str, queue: asyncio.Queue, user_id=None) -> None:
        """Subscribe a queue; must be called from the queue's event loop."""
        loop = asyncio.get_running_loop()
        owner = str(user_id) if user_id is not None else None
        with self._lock:
            self._channels.setdefault(channel, {})[queue] = _Subscription(loop, owner)
        logger.debug(f"Subscribed to {channel}")

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        with self._lock:
            subscribers = self._channels.get(channel)
            if subscribers is None:
                return
            subscribers.pop(queue, None)
            if not subscribers:
                del self._channels[channel]
        logger.debug(f"Unsubscribed from {channel}")

    def unsubscribe_all(self, queue: asyncio.Queue) -> None:
        with self._lock:
            channels = [name for name, subs in self._channels.items() if queue in subs]
        for channel in channels:
            self.unsubscribe(channel, queue)

    def unsubscribe_user(self, channel: str, user_id) -> int:
        """
        Drop every queue a user holds on a channel.

        Returns:
            Number of subscriptions removed
        """
        owner = str(user_id)
        with self._lock:
            subscribers = self._channels.get(channel, {})
            queues = [queue for queue, sub in subscribers.items() if sub.user_id == owner]
            for queue in queues:
                del subscribers[queue]
            if channel in self._channels and not subscribers:
                del self._channels[channel]
        if queues:
            logger.info(f"Revoked {len(queues)} subscription(s) of user {owner} on {channel}")
        return len(queues)

    def close_channel(self, channel: str) -> int:
        """Drop every subscriber of a channel. Returns the number removed."""
        with self._lock:
            subscribers = self._channels.pop(channel, {})
        if subscribers:
            logger.info(f"Closed {channel} with {len(subscribers)} subscriber(s)")
        return len(subscribers)

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._channels.get(channel, {}))

    def publish(self, channel: str, message: dict[str, Any]) -> int:
        """
        Deliver a message to every subscriber of a channel.

        Returns:
            Number of queues the message was scheduled on
        """
        with self._lock:
            targets = [(queue, sub.loop) for queue, sub in self._channels.get(channel, {}).items()]

        delivered = 0
        for queue, loop in targets:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, {"channel": channel, **message})
                delivered += 1
            except RuntimeError:
                # Loop already closed; the connection is gone
                self.unsubscribe(channel, queue)
        return delivered
