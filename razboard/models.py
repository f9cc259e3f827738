"""Data types exchanged between clients, chain nodes and the control plane."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OpType(enum.Enum):
    """Kind of write operation carried by an event."""

    POST = "OP_POST"
    UPDATE = "OP_UPDATE"
    DELETE = "OP_DELETE"
    LIKE = "OP_LIKE"
    CREATE_USER = "OP_CREATE_USER"
    CREATE_TOPIC = "OP_CREATE_TOPIC"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class User:
    id: int
    name: str


@dataclass(frozen=True)
class Topic:
    id: int
    name: str


@dataclass
class Message:
    """A message in a topic; text and likes change in place."""

    id: int
    topic_id: int
    user_id: int
    text: str
    created_at: datetime = field(default_factory=_now)
    likes: int = 0


@dataclass(frozen=True)
class NodeInfo:
    node_id: str
    address: str


@dataclass(frozen=True)
class PostMessageRequest:
    topic_id: int = 0
    user_id: int = 0
    text: str = ""


@dataclass(frozen=True)
class UpdateMessageRequest:
    topic_id: int = 0
    user_id: int = 0
    message_id: int = 0
    text: str = ""


@dataclass(frozen=True)
class DeleteMessageRequest:
    topic_id: int = 0
    user_id: int = 0
    message_id: int = 0


@dataclass(frozen=True)
class LikeMessageRequest:
    topic_id: int = 0
    user_id: int = 0
    message_id: int = 0


@dataclass(frozen=True)
class CreateUserRequest:
    name: str = ""


@dataclass(frozen=True)
class CreateTopicRequest:
    name: str = ""


@dataclass(frozen=True)
class GetMessagesRequest:
    topic_id: int = 0
    from_message_id: int = 0
    limit: int = 0


@dataclass(frozen=True)
class SubscribeTopicRequest:
    topic_id: tuple[int, ...] = ()
    user_id: int = 0
    from_message_id: int = 0
    subscribe_token: str = ""


@dataclass(frozen=True)
class SubscriptionNodeRequest:
    user_id: int = 0
    topic_id: tuple[int, ...] = ()


@dataclass(frozen=True)
class Event:
    """A replicated write; exactly one payload field matches ``op``."""

    op: OpType
    sequence_number: int = 0
    event_at: datetime = field(default_factory=_now)
    post_message: PostMessageRequest | None = None
    update_message: UpdateMessageRequest | None = None
    delete_message: DeleteMessageRequest | None = None
    like_message: LikeMessageRequest | None = None
    create_user: CreateUserRequest | None = None
    create_topic: CreateTopicRequest | None = None


@dataclass(frozen=True)
class MessageEvent:
    """A change to a message as delivered to subscribers."""

    sequence_number: int
    event_at: datetime
    message: Message
    op: OpType