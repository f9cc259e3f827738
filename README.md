# razboard

`razboard` is the node side of a small discussion board that keeps its data
consistent across several servers using chain replication. Writes enter at
the head of the chain, travel down to the tail, and are acknowledged back up
the chain. Only then are they applied and answered. Reads are served by the
tail.

The package has no third-party dependencies.

## What is inside

- `razboard.models`: plain data types such as `User`, `Topic`, `Message`,
  the request types, `Event`, `MessageEvent` and the `OpType` enumeration.
- `razboard.storage`: `Storage`, the in-memory store for users, topics,
  messages and likes. It signals failures with `TopicNotFoundError`,
  `UserNotFoundError`, `MessageNotFoundError`, `UserNotAuthorError`,
  `UserAlreadyLikedError` and `InvalidLimitError`. All of them derive from
  `StorageError`.
- `razboard.event_buffer`: `EventBuffer`, the ordered log of events with the
  last received and last acknowledged sequence numbers.
- `razboard.ack_sync`: `AckSynchronization`, which lets a writer at the head
  wait for the acknowledgement of its event.
- `razboard.subscriptions`: `SubscriptionManager` and `Subscription`, which
  hand out one-time subscription tokens and stream message events per topic.
- `razboard.status`: `StatusCode`, `RpcError`, `handle_storage_error` and
  `is_retryable`, which map storage failures to RPC-style status codes.
- `razboard.control_plane`: `ControlPlaneSession`, which fails over between
  control-plane servers, and `HeartbeatLoop`.
- `razboard.apply`: `apply_event`, which applies one replicated event to the
  store.
- `razboard.replication`: `ChainReplicator`, which forwards events,
  propagates acknowledgements and resynchronises when neighbours change.
- `razboard.node`: `Node`, the board's service surface. It covers posting,
  updating, deleting and liking messages, topics, users, subscriptions and
  statistics.
- `razboard.stats` and `razboard.log_view`: status snapshots and coloured
  log rendering for a terminal dashboard.

## Using the store directly

```python
from datetime import datetime, timezone

from razboard.storage import Storage, UserAlreadyLikedError

store = Storage()
alice = store.create_user("alice")
bob = store.create_user("bob")
topic = store.create_topic("general")

msg = store.post_message(topic.id, alice.id, "hello", datetime.now(timezone.utc))
store.like_message(topic.id, bob.id, msg.id)

try:
    store.like_message(topic.id, bob.id, msg.id)
except UserAlreadyLikedError:
    pass  # a user may like a message only once

print([m.text for m in store.get_messages(topic.id, 1, 10)])
```

Identifiers begin at 1. Message identifiers are counted separately in each
topic. Only the author of a message may update or delete it.

## Roles in the chain

A node with no predecessor is the head and accepts writes. A node with no
successor is the tail and serves reads. A node with neither is the whole
chain. `Node.require_head` and `Node.require_tail` raise an `RpcError` with
`StatusCode.FAILED_PRECONDITION` when a request reaches the wrong node.