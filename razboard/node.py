"""A chain-replicated message board node: client API, neighbours and statistics."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from typing import Any

from .apply import ApplicationResult
from .control_plane import (
    HEARTBEAT_INTERVAL,
    ControlPlaneSession,
    HeartbeatLoop,
    unregister,
)
from .models import (
    CreateTopicRequest,
    CreateUserRequest,
    DeleteMessageRequest,
    Event,
    GetMessagesRequest,
    LikeMessageRequest,
    Message,
    MessageEvent,
    NodeInfo,
    OpType,
    PostMessageRequest,
    SubscribeTopicRequest,
    SubscriptionNodeRequest,
    Topic,
    UpdateMessageRequest,
    User,
)
from .replication import ChainReplicator
from .stats import ServerStatsSnapshot, role_for
from .status import RpcError, StatusCode, handle_storage_error
from .storage import Storage, StorageError
from .subscriptions import SubscriptionManager, make_message_event

log = logging.getLogger(__name__)


def _no_transport(address: str) -> Any:
    raise ConnectionError(f"no transport configured to reach {address}")


def _invalid(message: str) -> RpcError:
    return RpcError(StatusCode.INVALID_ARGUMENT, message)


class Node:
    """One node of the replication chain.

    Writes are accepted only at the head and reads only at the tail.
    ``connect_node`` turns a neighbour's address into a chain client (see
    :class:`ChainReplicator`). With a ``control_plane`` session the node
    registers itself on creation and sends heartbeats until shut down; the
    session's clients offer ``register_node(node_info)`` returning an object
    with ``predecessor`` and ``successor`` attributes, ``heartbeat`` and
    ``unregister_node``.
    """

    def __init__(
        self,
        name: str,
        address: str,
        *,
        control_plane: ControlPlaneSession | None = None,
        connect_node: Callable[[str], Any] = _no_transport,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        write_timeout: float | None = None,
    ) -> None:
        self.node_info = NodeInfo(node_id=name, address=address)
        self.storage = Storage()
        self.subscriptions = SubscriptionManager()
        self.replicator = ChainReplicator(self.storage, self.subscriptions, connect_node)
        self.write_timeout = write_timeout
        self.control_plane = control_plane
        self._heartbeat: HeartbeatLoop | None = None
        self._shut_down = False

        if control_plane is not None:
            self._register()

        self.replicator.start()

        if control_plane is not None:
            self._heartbeat = HeartbeatLoop(control_plane, self.node_info, heartbeat_interval)
            self._heartbeat.start()

    def _register(self) -> None:
        log.info("Attempting to register node with control plane")
        neighbors = self.control_plane.request(
            lambda client: client.register_node(self.node_info)
        )
        log.info(
            "Registered node %s (%s) with control plane",
            self.node_info.node_id,
            self.node_info.address,
        )
        predecessor = getattr(neighbors, "predecessor", None)
        successor = getattr(neighbors, "successor", None)
        if predecessor is not None:
            self.replicator.set_predecessor(predecessor)
            log.info("Set predecessor %s (%s)", predecessor.node_id, predecessor.address)
        else:
            log.info("No predecessor (this node is HEAD)")
        if successor is not None:
            raise RuntimeError("New node cannot have a successor at registration")
        log.info("No successor (this node is TAIL)")

    # --- role -------------------------------------------------------------

    def is_head(self) -> bool:
        return self.replicator.is_head()

    def is_tail(self) -> bool:
        return self.replicator.is_tail()

    def require_head(self) -> None:
        if not self.is_head():
            raise RpcError(StatusCode.FAILED_PRECONDITION, "write operation requires HEAD node")

    def require_tail(self) -> None:
        if not self.is_tail():
            raise RpcError(StatusCode.FAILED_PRECONDITION, "read operation requires TAIL node")

    # --- logging ----------------------------------------------------------

    @staticmethod
    def _log_event(event: Event, message: str) -> None:
        log.info(
            message,
            extra={"operation": str(event.op), "sequence_number": event.sequence_number},
        )

    # --- writes -----------------------------------------------------------

    def _write(self, op: OpType, request: Any) -> ApplicationResult:
        event = self.replicator.event_buffer.create_event(op, request)
        self._log_event(event, "Received new event")
        result = self.replicator.replicate_and_wait(event, self.write_timeout)
        self._log_event(event, "Commiting event")
        if result.error is not None:
            raise handle_storage_error(result.error)
        return result

    @staticmethod
    def _check_ids(request: Any, *names: str) -> None:
        for name in names:
            if getattr(request, name) <= 0:
                raise _invalid(f"{name} must be positive")

    def post_message(self, request: PostMessageRequest) -> Message:
        self.require_head()
        if not request.text:
            raise _invalid("text cannot be empty")
        self._check_ids(request, "topic_id", "user_id")
        return self._write(OpType.POST, request).message

    def update_message(self, request: UpdateMessageRequest) -> Message:
        self.require_head()
        if not request.text:
            raise _invalid("text cannot be empty")
        self._check_ids(request, "topic_id", "user_id", "message_id")
        return self._write(OpType.UPDATE, request).message

    def delete_message(self, request: DeleteMessageRequest) -> None:
        self.require_head()
        self._check_ids(request, "topic_id", "user_id", "message_id")
        self._write(OpType.DELETE, request)

    def like_message(self, request: LikeMessageRequest) -> Message:
        self.require_head()
        self._check_ids(request, "topic_id", "user_id", "message_id")
        return self._write(OpType.LIKE, request).message

    def create_topic(self, request: CreateTopicRequest) -> Topic:
        self.require_head()
        if not request.name:
            raise _invalid("name cannot be empty")
        return self._write(OpType.CREATE_TOPIC, request).topic

    def create_user(self, request: CreateUserRequest) -> User:
        self.require_head()
        if not request.name:
            raise _invalid("name cannot be empty")
        return self._write(OpType.CREATE_USER, request).user

    # --- reads ------------------------------------------------------------

    def get_messages(self, request: GetMessagesRequest) -> list[Message]:
        self.require_tail()
        if request.topic_id <= 0:
            raise _invalid("topic_id must be positive")
        if request.limit <= 0:
            raise _invalid("limit must be positive")
        try:
            return self.storage.get_messages(
                request.topic_id, request.from_message_id, request.limit
            )
        except StorageError as exc:
            raise handle_storage_error(exc) from exc

    def list_topics(self) -> list[Topic]:
        self.require_tail()
        return self.storage.list_topics()

    def get_user(self, user_id: int) -> User:
        self.require_tail()
        if user_id <= 0:
            raise _invalid("user_id must be positive")
        try:
            return self.storage.get_user(user_id)
        except StorageError as exc:
            raise handle_storage_error(exc) from exc

    # --- subscriptions ----------------------------------------------------

    def add_subscription_request(self, request: SubscriptionNodeRequest) -> str:
        """Record a subscription granted by the control plane; return its token."""
        if not self.storage.user_exists(request.user_id):
            raise RpcError(StatusCode.NOT_FOUND, "user not found")
        return self.subscriptions.add_subscription_request(request)

    def subscribe_topic(self, request: SubscribeTopicRequest) -> Iterator[MessageEvent]:
        """Validate the token and return a stream of past, then live, message events.

        Closing the returned generator ends the subscription.
        """
        if not self.subscriptions.validate_token(request.subscribe_token, request.user_id):
            raise _invalid("invalid subscription token")

        opened = []
        try:
            past = self.storage.get_messages_from_topics(
                request.topic_id,
                request.from_message_id,
                lambda: opened.append(self.subscriptions.open_subscription(request)),
            )
        except StorageError as exc:
            self.subscriptions.clear_subscription(request.subscribe_token)
            raise handle_storage_error(exc) from exc

        return self._stream(request.subscribe_token, past, opened[0])

    def _stream(self, token: str, past: list[Message], live: Iterator[MessageEvent]):
        try:
            for message in past:
                yield make_message_event(message, 0, message.created_at, OpType.POST)
            yield from live
        finally:
            self.subscriptions.clear_subscription(token)

    # --- chain ------------------------------------------------------------

    def replicate_event(self, event: Event) -> None:
        """Accept an event forwarded by the predecessor."""
        self.replicator.buffer_event(event)

    def acknowledge_event(self, sequence_number: int) -> None:
        """Accept an ACK sent back by the successor."""
        self.replicator.buffer_ack(sequence_number)

    def set_predecessor(self, node_info: NodeInfo | None) -> None:
        log.info("SetPredecessor called with %s", node_info)
        self.replicator.set_predecessor(node_info)

    def set_successor(self, node_info: NodeInfo | None) -> threading.Thread:
        """Switch successor in the background; return the thread doing it."""
        log.info("SetSuccessor called with %s", node_info)
        thread = threading.Thread(
            target=self.replicator.set_successor,
            args=(node_info,),
            name="set-successor",
            daemon=True,
        )
        thread.start()
        return thread

    def get_last_sequence_numbers(self) -> tuple[int, int]:
        """``(last_received, last_acknowledged)`` sequence numbers."""
        return self.replicator.last_sequence_numbers()

    # --- status -----------------------------------------------------------

    def stats(self) -> ServerStatsSnapshot:
        predecessor = self.replicator.predecessor_address()
        successor = self.replicator.successor_address()
        cp_addr = None
        if self.control_plane is not None:
            cp_addr = self.control_plane.current_address()
        processed, applied = self.replicator.event_buffer.last_received_and_applied()
        return ServerStatsSnapshot(
            node_id=self.node_info.node_id,
            node_addr=self.node_info.address,
            role=role_for(predecessor is not None, successor is not None),
            control_plane_addr=cp_addr or "N/A",
            predecessor_addr=predecessor or "",
            successor_addr=successor or "",
            events_processed=processed,
            events_applied=applied,
            messages_stored=self.storage.message_count(),
            topics_count=self.storage.topic_count(),
            users_count=self.storage.user_count(),
        )

    def shutdown(self) -> None:
        """Stop heartbeats, unregister from the control plane and stop workers."""
        if self._shut_down:
            return
        self._shut_down = True
        if self._heartbeat is not None:
            self._heartbeat.stop()
        if self.control_plane is not None:
            unregister(self.control_plane, self.node_info)
        self.replicator.stop()