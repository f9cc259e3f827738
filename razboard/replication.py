"""Chain replication: forwarding events to the successor and ACKs to the predecessor."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .ack_sync import AckSynchronization
from .apply import ApplicationResult, apply_event
from .event_buffer import EventBuffer
from .models import Event, NodeInfo
from .storage import Storage
from .subscriptions import SubscriptionManager

log = logging.getLogger(__name__)

RPC_TIMEOUT = 10.0


@dataclass
class NodeConnection:
    """A client to a neighbouring chain node and the address it talks to."""

    address: str
    client: Any

    def close(self) -> None:
        close = getattr(self.client, "close", None)
        if callable(close):
            close()


class _Worker:
    """A background thread that runs ``work`` at start and on every wake-up."""

    def __init__(self, name: str, work: Callable[[], None]) -> None:
        self._name = name
        self._work = work
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def wake(self) -> None:
        self._wake.set()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop,), name=self._name, daemon=True
        )
        self._thread.start()

    def _run(self, stop: threading.Event) -> None:
        log.info("Starting %s", self._name)
        try:
            self._work()
            while True:
                self._wake.wait()
                if stop.is_set():
                    return
                self._wake.clear()
                self._work()
        finally:
            log.info("Stopping %s", self._name)

    def stop(self) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop.set()
        self._wake.set()
        if thread is not threading.current_thread():
            thread.join()
        self._thread = None


class ChainReplicator:
    """Replication state of one chain node.

    ``connect`` turns a neighbour's address into a client offering
    ``replicate_event(event, timeout=)``, ``acknowledge_event(seq, timeout=)``,
    ``get_last_sequence_numbers()`` returning ``(last_received, last_acked)``
    and optionally ``close()``.
    """

    def __init__(
        self,
        storage: Storage,
        subscriptions: SubscriptionManager | None,
        connect: Callable[[str], Any],
        *,
        event_buffer: EventBuffer | None = None,
        ack_sync: AckSynchronization | None = None,
        rpc_timeout: float = RPC_TIMEOUT,
    ) -> None:
        self.storage = storage
        self.subscriptions = subscriptions
        self.event_buffer = event_buffer if event_buffer is not None else EventBuffer()
        self.ack_sync = ack_sync if ack_sync is not None else AckSynchronization()
        self.rpc_timeout = rpc_timeout
        self._connect = connect

        self._conn_lock = threading.Lock()
        self._predecessor: NodeConnection | None = None
        self._successor: NodeConnection | None = None

        self._ack_lock = threading.Lock()
        self._ack_queue: dict[int, Event] = {}
        self._next_ack_seq = 0

        self._event_lock = threading.Lock()
        self._event_queue: dict[int, Event] = {}
        self._next_event_seq = 0

        self._sync_lock = threading.Lock()
        self._ack_worker_lock = threading.Lock()
        self._sender = _Worker("event replicator", self._replicate_next_events)
        self._ack_processor = _Worker("ACK processor", self._process_next_acks)

    # --- lifecycle --------------------------------------------------------

    def start(self) -> None:
        self._sender.start()
        self._ack_processor.start()

    def stop(self) -> None:
        self._sender.stop()
        self._ack_processor.stop()
        with self._conn_lock:
            for conn in (self._predecessor, self._successor):
                if conn is not None:
                    conn.close()
            self._predecessor = self._successor = None

    # --- neighbours -------------------------------------------------------

    def is_head(self) -> bool:
        with self._conn_lock:
            return self._predecessor is None

    def is_tail(self) -> bool:
        with self._conn_lock:
            return self._successor is None

    def predecessor_address(self) -> str | None:
        with self._conn_lock:
            return None if self._predecessor is None else self._predecessor.address

    def successor_address(self) -> str | None:
        with self._conn_lock:
            return None if self._successor is None else self._successor.address

    def _predecessor_client(self) -> Any:
        with self._conn_lock:
            return None if self._predecessor is None else self._predecessor.client

    def _successor_client(self) -> Any:
        with self._conn_lock:
            return None if self._successor is None else self._successor.client

    def _open(self, node_info: NodeInfo | None) -> NodeConnection | None:
        if node_info is None:
            return None
        return NodeConnection(node_info.address, self._connect(node_info.address))

    def set_predecessor(self, node_info: NodeInfo | None) -> None:
        """Replace the predecessor; pending out-of-order events are dropped."""
        with self._ack_worker_lock:
            self._ack_processor.stop()
            with self._event_lock, self._conn_lock:
                if self._predecessor is not None:
                    self._predecessor.close()
                self._predecessor = None
                self._predecessor = self._open(node_info)
                if node_info is not None:
                    # The new predecessor resends what we have not seen yet.
                    self._event_queue.clear()
            log.info("Predecessor set to %s", node_info)
            self._ack_processor.start()

    def set_successor(self, node_info: NodeInfo | None) -> None:
        """Replace the successor and catch up with it; blocks until done."""
        log.info("Successor set to %s", node_info)
        with self._sync_lock:
            self._sender.stop()
            with self._conn_lock:
                if self._successor is not None:
                    self._successor.close()
                self._successor = None
                self._successor = self._open(node_info)
            if node_info is None:
                log.info("This node is TAIL, applying all unacknowledged events")
                self.apply_all_unacknowledged()
            else:
                log.info("Starting sync with successor")
                self.sync_with_successor()
            self._sender.start()

    # --- events downstream ------------------------------------------------

    def buffer_event(self, event: Event) -> None:
        """Queue an event for in-order forwarding to the successor."""
        with self._event_lock:
            log.info(
                "Received new event %s #%d", event.op, event.sequence_number
            )
            if event.sequence_number < self._next_event_seq:
                log.warning(
                    "Received event %d already forwarded (next expected %d)",
                    event.sequence_number,
                    self._next_event_seq,
                )
                return
            self._event_queue[event.sequence_number] = event
        self._sender.wake()

    def _replicate_next_events(self) -> None:
        while True:
            with self._event_lock:
                event = self._event_queue.pop(self._next_event_seq, None)
                if event is None:
                    return
                self._next_event_seq += 1
                self.event_buffer.add_event(event)
            log.info("Replicating event %d to successor", event.sequence_number)
            self._replicate_event(event)

    def _replicate_event(self, event: Event) -> None:
        client = self._successor_client()
        if client is None:
            self.buffer_ack(event.sequence_number)
            return
        try:
            client.replicate_event(event, timeout=self.rpc_timeout)
        except Exception as exc:
            log.error(
                "Failed to replicate event %d to successor: %s", event.sequence_number, exc
            )
        else:
            log.info("Event %d replicated to successor", event.sequence_number)

    # --- ACKs upstream ----------------------------------------------------

    def buffer_ack(self, sequence_number: int) -> None:
        """Queue the ACK of an event for in-order processing."""
        with self._ack_lock:
            log.info("Received ACK for event %d", sequence_number)
            if sequence_number < self._next_ack_seq:
                log.warning(
                    "Received ACK for already acknowledged event %d", sequence_number
                )
                return
            event = self.event_buffer.get_event(sequence_number)
            if event is None:
                raise KeyError(f"no event with sequence number {sequence_number}")
            self._ack_queue[sequence_number] = event
        self._ack_processor.wake()

    def _process_next_acks(self) -> None:
        while True:
            with self._ack_lock:
                event = self._ack_queue.pop(self._next_ack_seq, None)
                if event is None:
                    return
                self._next_ack_seq += 1
            log.info("Processing ACK %d", event.sequence_number)
            self.event_buffer.acknowledge_event(event.sequence_number)
            self._acknowledge(event)

    def _acknowledge(self, event: Event) -> None:
        result = apply_event(self.storage, self.subscriptions, event)
        client = self._predecessor_client()
        if client is None:
            self.ack_sync.signal(event.sequence_number, result)
            log.info("ACK %d reached HEAD", event.sequence_number)
            return
        try:
            client.acknowledge_event(event.sequence_number, timeout=self.rpc_timeout)
        except Exception as exc:
            log.error(
                "Failed to propagate ACK %d to predecessor: %s", event.sequence_number, exc
            )
        else:
            log.info("ACK %d propagated to predecessor", event.sequence_number)

    def replicate_and_wait(
        self, event: Event, timeout: float | None = None
    ) -> ApplicationResult:
        """Send ``event`` down the chain and block until it is applied here."""
        self.ack_sync.open(event.sequence_number)
        try:
            self.buffer_event(event)
            return self.ack_sync.wait(event.sequence_number, timeout)
        finally:
            self.ack_sync.close(event.sequence_number)

    # --- catching up ------------------------------------------------------

    def last_sequence_numbers(self) -> tuple[int, int]:
        """``(last_received, last_applied)`` sequence numbers."""
        return self.event_buffer.last_received_and_applied()

    def sync_with_successor(self) -> None:
        """Take over ACKs the successor has and resend events it lacks."""
        client = self._successor_client()
        if client is None:
            return
        try:
            succ_received, succ_acked = client.get_last_sequence_numbers()
        except Exception as exc:
            log.error("Failed to get last sequence numbers from successor: %s", exc)
            return

        last_acked = self.event_buffer.last_applied()
        last_received = self.event_buffer.last_received()

        for seq in range(last_acked + 1, succ_acked + 1):
            self.buffer_ack(seq)
        log.info("ACKs synced with successor up to %d", succ_acked)

        for seq in range(succ_received + 1, last_received + 1):
            event = self.event_buffer.get_event(seq)
            log.info("Replicating missing event %d to successor", seq)
            self._replicate_event(event)
        log.info("Missing events sent to successor up to %d", last_received)

    def apply_all_unacknowledged(self) -> None:
        """As the new tail, acknowledge every event received so far."""
        last_received = self.event_buffer.last_received()
        for seq in range(self.event_buffer.last_applied() + 1, last_received + 1):
            self.buffer_ack(seq)
        log.info("All events acknowledged up to %d", last_received)