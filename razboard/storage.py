"""In-memory store of users, topics, messages and likes."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from datetime import datetime

from .models import Message, Topic, User


class StorageError(Exception):
    """Base class of storage failures."""

    default_message = "storage error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class TopicNotFoundError(StorageError):
    default_message = "topic not found"


class UserNotFoundError(StorageError):
    default_message = "user not found"


class MessageNotFoundError(StorageError):
    default_message = "message not found"


class UserNotAuthorError(StorageError):
    default_message = "user is not the author of the message"


class UserAlreadyLikedError(StorageError):
    default_message = "user has already liked the message"


class InvalidLimitError(StorageError):
    default_message = "invalid limit specified"


class Storage:
    """Thread-safe message board state."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: dict[int, User] = {}
        self._topics: dict[int, Topic] = {}
        self._messages: dict[int, dict[int, Message]] = {}
        self._likes: dict[int, set[int]] = {}  # message id -> user ids
        self._next_message_id: dict[int, int] = {}
        self._next_user_id = 1
        self._next_topic_id = 1

    # --- counts -----------------------------------------------------------

    def message_count(self) -> int:
        with self._lock:
            return sum(len(messages) for messages in self._messages.values())

    def topic_count(self) -> int:
        with self._lock:
            return len(self._topics)

    def user_count(self) -> int:
        with self._lock:
            return len(self._users)

    # --- users ------------------------------------------------------------

    def create_user(self, name: str) -> User:
        with self._lock:
            user = User(id=self._next_user_id, name=name)
            self._users[user.id] = user
            self._next_user_id += 1
            return user

    def get_user(self, user_id: int) -> User:
        with self._lock:
            try:
                return self._users[user_id]
            except KeyError:
                raise UserNotFoundError() from None

    def user_exists(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._users

    # --- topics -----------------------------------------------------------

    def create_topic(self, name: str) -> Topic:
        with self._lock:
            topic = Topic(id=self._next_topic_id, name=name)
            self._topics[topic.id] = topic
            self._next_topic_id += 1
            self._messages[topic.id] = {}
            self._next_message_id[topic.id] = 1
            return topic

    def list_topics(self) -> list[Topic]:
        with self._lock:
            return list(self._topics.values())

    # --- messages ---------------------------------------------------------

    def _check_topic_and_user(self, topic_id: int, user_id: int) -> None:
        if topic_id not in self._topics:
            raise TopicNotFoundError()
        if user_id not in self._users:
            raise UserNotFoundError()

    def _authored_message(self, topic_id: int, user_id: int, message_id: int) -> Message:
        self._check_topic_and_user(topic_id, user_id)
        message = self._messages[topic_id].get(message_id)
        if message is None:
            raise MessageNotFoundError()
        if message.user_id != user_id:
            raise UserNotAuthorError()
        return message

    def post_message(
        self, topic_id: int, user_id: int, text: str, created_at: datetime
    ) -> Message:
        with self._lock:
            self._check_topic_and_user(topic_id, user_id)
            message = Message(
                id=self._next_message_id[topic_id],
                topic_id=topic_id,
                user_id=user_id,
                text=text,
                created_at=created_at,
            )
            self._messages[topic_id][message.id] = message
            self._next_message_id[topic_id] += 1
            return message

    def update_message(
        self, topic_id: int, user_id: int, message_id: int, text: str
    ) -> Message:
        with self._lock:
            message = self._authored_message(topic_id, user_id, message_id)
            message.text = text
            return message

    def delete_message(self, topic_id: int, user_id: int, message_id: int) -> Message:
        with self._lock:
            message = self._authored_message(topic_id, user_id, message_id)
            del self._messages[topic_id][message_id]
            return message

    def like_message(self, topic_id: int, user_id: int, message_id: int) -> Message:
        with self._lock:
            self._check_topic_and_user(topic_id, user_id)
            message = self._messages[topic_id].get(message_id)
            if message is None:
                raise MessageNotFoundError()
            likers = self._likes.setdefault(message_id, set())
            if user_id in likers:
                raise UserAlreadyLikedError()
            likers.add(user_id)
            message.likes += 1
            return message

    def _topic_messages(self, topic_id: int, start: int, stop: int) -> list[Message]:
        messages = self._messages[topic_id]
        stop = min(stop, self._next_message_id[topic_id])
        return [messages[i] for i in range(start, stop) if i in messages]

    def get_messages(self, topic_id: int, from_message_id: int, limit: int) -> list[Message]:
        """Return up to ``limit`` id slots of messages starting at ``from_message_id``."""
        with self._lock:
            if limit <= 0:
                raise InvalidLimitError()
            if topic_id not in self._topics:
                raise TopicNotFoundError()
            if topic_id not in self._messages:
                return []
            return self._topic_messages(topic_id, from_message_id, from_message_id + limit)

    def get_messages_from_topics(
        self,
        topic_ids: Iterable[int],
        from_message_id: int,
        callback: Callable[[], None] | None = None,
    ) -> list[Message]:
        """Return all messages of the topics; ``callback`` runs while the lock is held."""
        with self._lock:
            result: list[Message] = []
            for topic_id in topic_ids:
                if topic_id not in self._topics:
                    raise TopicNotFoundError()
                if topic_id not in self._messages:
                    continue
                result.extend(
                    self._topic_messages(
                        topic_id, from_message_id, self._next_message_id[topic_id]
                    )
                )
            if callback is not None:
                callback()
            return result