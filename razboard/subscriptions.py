"""Topic subscriptions: token hand-out, live queues and fan-out of changes."""

from __future__ import annotations

import logging
import secrets
import string
import threading
from collections import deque
from collections.abc import Iterable, Iterator
from datetime import datetime

from .models import (
    Event,
    Message,
    MessageEvent,
    OpType,
    SubscribeTopicRequest,
    SubscriptionNodeRequest,
)

log = logging.getLogger(__name__)

TOKEN_ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits
TOKEN_LENGTH = 16
SUBSCRIPTION_CAPACITY = 100


def generate_subscription_token(length: int = TOKEN_LENGTH) -> str:
    """Return a random alphanumeric token of ``length`` characters."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def make_message_event(
    message: Message, sequence_number: int, event_at: datetime, op: OpType
) -> MessageEvent:
    return MessageEvent(
        sequence_number=sequence_number, event_at=event_at, message=message, op=op
    )


class Subscription:
    """A bounded queue of message events for one subscriber."""

    def __init__(
        self,
        user_id: int,
        topic_ids: Iterable[int],
        capacity: int = SUBSCRIPTION_CAPACITY,
    ) -> None:
        self.user_id = user_id
        self.topic_ids = tuple(topic_ids)
        self._capacity = capacity
        self._items: deque[MessageEvent] = deque()
        self._closed = False
        self._cond = threading.Condition()

    def put(self, event: MessageEvent) -> bool:
        """Enqueue without blocking; return False if full or closed."""
        with self._cond:
            if self._closed or len(self._items) >= self._capacity:
                return False
            self._items.append(event)
            self._cond.notify()
            return True

    def close(self) -> None:
        """Stop accepting events; iteration ends once the queue drains."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __iter__(self) -> Iterator[MessageEvent]:
        while True:
            with self._cond:
                while not self._items and not self._closed:
                    self._cond.wait()
                if not self._items:
                    return
                event = self._items.popleft()
            yield event


class SubscriptionManager:
    """Tracks pending subscription tokens and active subscriptions."""

    def __init__(self) -> None:
        self._avail_lock = threading.Lock()
        self._available: dict[str, SubscriptionNodeRequest] = {}
        self._lock = threading.Lock()
        self._active: dict[str, Subscription] = {}
        self._by_topic: dict[int, list[Subscription]] = {}

    def add_event_if_not_none(self, event: Event | None, message: Message | None) -> None:
        if event is None or message is None:
            return
        sub_event = make_message_event(message, event.sequence_number, event.event_at, event.op)
        self.add_message_event(sub_event, message.topic_id)

    def add_message_event(self, event: MessageEvent, topic_id: int) -> None:
        with self._lock:
            subscribers = list(self._by_topic.get(topic_id, ()))
        for sub in subscribers:
            if not sub.put(event):
                log.warning(
                    "Dropping message for user due to full channel",
                    extra={"user_id": sub.user_id, "topic_id": topic_id},
                )

    def add_subscription_request(self, request: SubscriptionNodeRequest) -> str:
        """Store the request under a fresh token and return the token."""
        token = generate_subscription_token()
        with self._avail_lock:
            self._available[token] = request
        return token

    def validate_token(self, token: str, user_id: int) -> bool:
        """Consume the token if it exists and belongs to ``user_id``."""
        with self._avail_lock:
            request = self._available.get(token)
            if request is None or request.user_id != user_id:
                return False
            del self._available[token]
            return True

    def open_subscription(self, request: SubscribeTopicRequest) -> Subscription:
        subscription = Subscription(request.user_id, request.topic_id)
        with self._lock:
            self._active[request.subscribe_token] = subscription
            for topic_id in subscription.topic_ids:
                self._by_topic.setdefault(topic_id, []).append(subscription)
        return subscription

    def clear_subscription(self, token: str) -> None:
        with self._lock:
            subscription = self._active.pop(token, None)
            if subscription is None:
                return
            subscription.close()
            for topic_id in subscription.topic_ids:
                subs = self._by_topic.get(topic_id, [])
                for i, sub in enumerate(subs):
                    if sub is subscription:
                        del subs[i]
                        break