"""Applying replicated write events to the local store."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from .models import Event, Message, OpType, Topic, User
from .storage import Storage, StorageError
from .subscriptions import SubscriptionManager


@dataclass
class ApplicationResult:
    """Outcome of applying one event: the affected object or the storage error."""

    message: Message | None = None
    user: User | None = None
    topic: Topic | None = None
    error: StorageError | None = None


class UnknownOperationError(ValueError):
    """The event carries an operation that cannot be applied."""


def _notify(subscriptions: SubscriptionManager | None, event: Event, message: Message) -> None:
    if subscriptions is not None:
        subscriptions.add_event_if_not_none(event, message)


def _post(storage: Storage, event: Event) -> ApplicationResult:
    req = event.post_message
    return ApplicationResult(
        message=storage.post_message(req.topic_id, req.user_id, req.text, event.event_at)
    )


def _update(storage: Storage, event: Event) -> ApplicationResult:
    req = event.update_message
    return ApplicationResult(
        message=storage.update_message(req.topic_id, req.user_id, req.message_id, req.text)
    )


def _delete(storage: Storage, event: Event) -> ApplicationResult:
    req = event.delete_message
    return ApplicationResult(
        message=storage.delete_message(req.topic_id, req.user_id, req.message_id)
    )


def _like(storage: Storage, event: Event) -> ApplicationResult:
    req = event.like_message
    return ApplicationResult(
        message=storage.like_message(req.topic_id, req.user_id, req.message_id)
    )


def _create_user(storage: Storage, event: Event) -> ApplicationResult:
    return ApplicationResult(user=storage.create_user(event.create_user.name))


def _create_topic(storage: Storage, event: Event) -> ApplicationResult:
    return ApplicationResult(topic=storage.create_topic(event.create_topic.name))


_HANDLERS: dict[OpType, Callable[[Storage, Event], ApplicationResult]] = {
    OpType.POST: _post,
    OpType.UPDATE: _update,
    OpType.DELETE: _delete,
    OpType.LIKE: _like,
    OpType.CREATE_USER: _create_user,
    OpType.CREATE_TOPIC: _create_topic,
}


def apply_event(
    storage: Storage,
    subscriptions: SubscriptionManager | None,
    event: Event,
) -> ApplicationResult:
    """Apply ``event`` to ``storage`` and tell subscribers about changed messages.

    Storage failures are returned in the result; an unknown operation raises.
    """
    handler = _HANDLERS.get(event.op) if isinstance(event.op, OpType) else None
    if handler is None:
        raise UnknownOperationError(f"unknown event operation: {event.op!r}")
    try:
        result = handler(storage, event)
    except StorageError as exc:
        return ApplicationResult(error=exc)
    if result.message is not None:
        _notify(subscriptions, event, result.message)
    return result