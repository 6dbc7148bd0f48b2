"""NotifyManager for room-topic subscriptions and event broadcasting."""

import asyncio
import logging

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncGenerator
from uuid import uuid4

from chat_serv.models.api_models import Message

from chat_serv.config import settings


@dataclass
class Event:
    """Event to be sent to subscribers."""

    type: str
    data: dict[str, Any]

    def to_frame(self) -> dict[str, Any]:
        return {"event": self.type, "data": self.data}


@dataclass
class Subscriber:
    """One live client connection."""

    user_id: int
    queue: asyncio.Queue

    id: str = field(default_factory=lambda: uuid4().hex)
    topics: set[str] = field(default_factory=set)


class NotifyManager:
    """Publish/subscribe bus keyed by topic. Delivery is best-effort, without replay."""

    def __init__(self, queue_size: int | None = None):
        """Initialize NotifyManager."""

        self.logger = logging.getLogger("notify-manager")
        self.logger.setLevel(settings.logging_level)

        self.queue_size = queue_size or settings.notify_queue_size

        # subscriber_id -> subscriber
        self._subscribers: dict[str, Subscriber] = {}
        # topic -> {subscriber_id}
        self._topics: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def chat_room_topic(chat_room_id: int) -> str:
        return f"chat_room:{chat_room_id}"

    # Subscriptions

    async def open_subscriber(self, user_id: int) -> Subscriber:
        """Register a new subscriber without topics."""

        subscriber = Subscriber(user_id=user_id, queue=asyncio.Queue(maxsize=self.queue_size))

        async with self._lock:
            self._subscribers[subscriber.id] = subscriber

        self.logger.info(f"User {user_id} subscribed as {subscriber.id[:8]}")

        return subscriber

    async def close_subscriber(self, subscriber: Subscriber) -> None:
        """Unregister subscriber and drop it from every topic."""

        async with self._lock:
            self._subscribers.pop(subscriber.id, None)

            for topic in subscriber.topics:
                self._discard(topic, subscriber.id)

            subscriber.topics.clear()

        self.logger.info(f"User {subscriber.user_id} unsubscribed {subscriber.id[:8]}")

    @asynccontextmanager
    async def subscription(self, user_id: int):
        """
        Subscriber bound to the lifetime of a block.

        Usage:
            async with notify_man.subscription(user_id) as subscriber:
                await notify_man.join_topic(subscriber, topic)
                async for event in notify_man.events(subscriber):
                    ...
        """

        subscriber = await self.open_subscriber(user_id)

        try:
            yield subscriber

        finally:
            await self.close_subscriber(subscriber)

    async def join_topic(self, subscriber: Subscriber, topic: str) -> None:
        """Add subscriber to topic."""

        async with self._lock:
            if subscriber.id not in self._subscribers:
                return

            self._topics.setdefault(topic, set()).add(subscriber.id)
            subscriber.topics.add(topic)

        self.logger.debug(f"Subscriber {subscriber.id[:8]} joined {topic}")

    async def leave_topic(self, subscriber: Subscriber, topic: str) -> None:
        """Remove subscriber from topic."""

        async with self._lock:
            self._discard(topic, subscriber.id)
            subscriber.topics.discard(topic)

    async def drop_user_from_topic(self, user_id: int, topic: str) -> None:
        """Remove every connection of user from topic."""

        async with self._lock:
            for subscriber_id in list(self._topics.get(topic, ())):
                subscriber = self._subscribers.get(subscriber_id)

                if subscriber and subscriber.user_id == user_id:
                    self._discard(topic, subscriber_id)
                    subscriber.topics.discard(topic)

    def _discard(self, topic: str, subscriber_id: str) -> None:
        members = self._topics.get(topic)
        if members is None:
            return

        members.discard(subscriber_id)
        if not members:
            del self._topics[topic]

    async def events(self, subscriber: Subscriber) -> AsyncGenerator[Event, None]:
        """Yield events queued for subscriber until it is closed."""

        while True:
            event = await subscriber.queue.get()
            if event is None:
                return

            yield event

    async def close(self) -> None:
        """Wake every listener and forget all subscriptions."""

        async with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
            self._topics.clear()

        for subscriber in subscribers:
            subscriber.topics.clear()
            self._deliver(subscriber, None)

    def topic_size(self, topic: str) -> int:
        """Number of subscribers on topic."""

        return len(self._topics.get(topic, ()))

    # Publishing

    def _deliver(self, subscriber: Subscriber, event: Event | None) -> None:
        """Queue event, dropping the oldest one if the subscriber is lagging."""

        try:
            subscriber.queue.put_nowait(event)

        except asyncio.QueueFull:
            dropped = subscriber.queue.get_nowait()
            subscriber.queue.put_nowait(event)

            self.logger.warning(
                f"Subscriber {subscriber.id[:8]} of user {subscriber.user_id} is lagging, "
                f"dropped '{dropped.type if dropped else None}' event"
            )

    async def publish(self, topic: str, event: Event) -> int:
        """Send event to every subscriber of topic. Returns number of receivers."""

        subscriber_ids = list(self._topics.get(topic, ()))

        delivered = 0
        for subscriber_id in subscriber_ids:
            subscriber = self._subscribers.get(subscriber_id)
            if subscriber is None:
                continue

            self._deliver(subscriber, event)
            delivered += 1

        self.logger.debug(f"Event '{event.type}' published to {topic} ({delivered} receivers)")

        return delivered

    async def broadcast(self, event: Event) -> int:
        """Send event to every connected subscriber."""

        subscribers = list(self._subscribers.values())

        for subscriber in subscribers:
            self._deliver(subscriber, event)

        return len(subscribers)

    async def publish_to_room(self, chat_room_id: int, event: Event) -> int:
        return await self.publish(self.chat_room_topic(chat_room_id), event)

    # Public event senders

    async def send_new_message(self, message: Message) -> None:
        """Send newMessage event to chat room."""

        event = Event(type="newMessage", data=message.model_dump(mode="json", by_alias=True))
        await self.publish_to_room(message.chat_room_id, event)

    async def send_message_edited(self, message: Message) -> None:
        """Send messageEdited event to chat room."""

        event = Event(type="messageEdited", data=message.model_dump(mode="json", by_alias=True))
        await self.publish_to_room(message.chat_room_id, event)

    async def send_message_deleted(self, chat_room_id: int, message_id: int, deleted_by: int) -> None:
        """Send messageDeleted event to chat room."""

        event = Event(
            type="messageDeleted",
            data={"chatRoomId": chat_room_id, "messageId": message_id, "deletedBy": deleted_by}
        )
        await self.publish_to_room(chat_room_id, event)

    async def send_conversation_updated(
        self,
        chat_room_id: int,
        last_message_snippet: str,
        last_message_time: datetime
    ) -> None:
        """Send conversationUpdated event with the new last-message snippet."""

        event = Event(
            type="conversationUpdated",
            data={
                "chatRoomId": chat_room_id,
                "lastMessageSnippet": last_message_snippet,
                "lastMessageTime": last_message_time.isoformat()
            }
        )
        await self.publish_to_room(chat_room_id, event)

    async def send_read_updated(self, chat_room_id: int, user_id: int, last_read_at: datetime) -> None:
        """Send conversationUpdated event after a member read the room."""

        event = Event(
            type="conversationUpdated",
            data={"chatRoomId": chat_room_id, "userId": user_id, "lastReadAt": last_read_at.isoformat()}
        )
        await self.publish_to_room(chat_room_id, event)

    async def send_join_request_handled(self, chat_room_id: int, user_id: int, status: str, handled_by: int) -> None:
        """Send joinRequestHandled event to chat room."""

        event = Event(
            type="joinRequestHandled",
            data={"chatRoomId": chat_room_id, "userId": user_id, "status": status, "handledBy": handled_by}
        )
        await self.publish_to_room(chat_room_id, event)

    async def send_member_removed(self, chat_room_id: int, removed_user_id: int, remover_user_id: int) -> None:
        """Send memberRemoved event and detach the removed user from the room."""

        event = Event(
            type="memberRemoved",
            data={"chatRoomId": chat_room_id, "removedUserId": removed_user_id, "removedBy": remover_user_id}
        )
        await self.publish_to_room(chat_room_id, event)

        await self.drop_user_from_topic(removed_user_id, self.chat_room_topic(chat_room_id))

    async def send_ownership_transferred(self, chat_room_id: int, old_owner_id: int, new_owner_id: int) -> None:
        """Send ownershipTransferred event to chat room."""

        event = Event(
            type="ownershipTransferred",
            data={"chatRoomId": chat_room_id, "oldOwnerId": old_owner_id, "newOwnerId": new_owner_id}
        )
        await self.publish_to_room(chat_room_id, event)
