"""Hand-off of application results to writers waiting on an event."""

from __future__ import annotations

import queue
import threading
from typing import Any


class AckSynchronization:
    """One single-slot mailbox per sequence number awaiting its ACK."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._mailboxes: dict[int, queue.Queue] = {}

    def open(self, sequence_number: int) -> queue.Queue:
        """Register interest in the ACK of ``sequence_number``."""
        mailbox: queue.Queue = queue.Queue(maxsize=1)
        with self._lock:
            self._mailboxes[sequence_number] = mailbox
        return mailbox

    def signal(self, sequence_number: int, result: Any) -> None:
        """Deliver ``result`` if someone is waiting for this event."""
        with self._lock:
            mailbox = self._mailboxes.get(sequence_number)
        if mailbox is None:
            return
        try:
            mailbox.put_nowait(result)
        except queue.Full:
            pass

    def close(self, sequence_number: int) -> None:
        with self._lock:
            self._mailboxes.pop(sequence_number, None)

    def wait(self, sequence_number: int, timeout: float | None = None) -> Any:
        """Block until the result for ``sequence_number`` arrives."""
        with self._lock:
            mailbox = self._mailboxes.get(sequence_number)
        if mailbox is None:
            raise KeyError(f"ACK channel not found for sequence number {sequence_number}")
        try:
            return mailbox.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(
                f"no ACK for sequence number {sequence_number} within {timeout}s"
            ) from None