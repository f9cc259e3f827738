"""Talking to a replicated control plane: fail-over requests and heartbeats."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, TypeVar

from .models import NodeInfo
from .status import is_retryable

log = logging.getLogger(__name__)

T = TypeVar("T")

HEARTBEAT_INTERVAL = 5.0
UNREGISTER_TIMEOUT = 5.0


class ControlPlaneUnavailableError(ConnectionError):
    """No control plane server could serve the request."""


@dataclass
class _Connection:
    address: str
    client: Any


def _close_client(client: Any) -> None:
    close = getattr(client, "close", None)
    if callable(close):
        close()


class ControlPlaneSession:
    """Sends requests to the control plane, failing over between its servers.

    ``connect`` turns an address into a client object; the client is closed
    with its ``close()`` method when it is no longer used.
    """

    def __init__(self, addresses: Iterable[str], connect: Callable[[str], Any]) -> None:
        self._addresses = tuple(addresses)
        self._connect = connect
        self._lock = threading.Lock()
        self._current: _Connection | None = None

    def request(self, call: Callable[[Any], T]) -> T:
        """Run ``call`` against the current server, else against each server in turn."""
        with self._lock:
            current = self._current

        if current is not None:
            try:
                return call(current.client)
            except Exception as exc:
                if not is_retryable(exc):
                    log.debug("Request failed with non-retryable error: %s", exc)
                    raise
                log.debug("Request failed with retryable error, trying other servers: %s", exc)

        last_error: Exception | None = None
        for address in self._addresses:
            log.debug("Trying control plane server %s", address)
            try:
                client = self._connect(address)
            except Exception as exc:
                log.debug("Failed to connect to control plane server %s: %s", address, exc)
                last_error = exc
                continue

            try:
                result = call(client)
            except Exception as exc:
                _close_client(client)
                if not is_retryable(exc):
                    log.debug("Request to %s failed with non-retryable error: %s", address, exc)
                    raise
                log.debug("Request to %s failed, trying next server: %s", address, exc)
                last_error = exc
                continue

            log.info("Successfully connected to control plane at %s", address)
            with self._lock:
                old = self._current
                self._current = _Connection(address, client)
            if old is not None:
                _close_client(old.client)
            return result

        if last_error is not None:
            log.error("All control plane servers failed: %s", last_error)
            raise ControlPlaneUnavailableError(
                f"all control plane servers failed: {last_error}"
            ) from last_error
        raise ControlPlaneUnavailableError("no control plane servers available")

    def current_address(self) -> str | None:
        """Address of the server last used successfully, if any."""
        with self._lock:
            return None if self._current is None else self._current.address

    def close(self) -> None:
        with self._lock:
            current, self._current = self._current, None
        if current is not None:
            _close_client(current.client)


class HeartbeatLoop:
    """Periodically tells the control plane that this node is alive."""

    def __init__(
        self,
        session: ControlPlaneSession,
        node_info: NodeInfo,
        interval: float = HEARTBEAT_INTERVAL,
    ) -> None:
        self.session = session
        self.node_info = node_info
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def send(self) -> None:
        """Send one heartbeat; raises if no server accepts it."""
        self.session.request(
            lambda client: client.heartbeat(self.node_info, timeout=self.interval / 2)
        )

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.send()
            except Exception as exc:
                log.warning("Failed to send heartbeat to control plane: %s", exc)
            else:
                log.debug("Heartbeat sent to control plane")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="heartbeat", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None


def unregister(session: ControlPlaneSession, node_info: NodeInfo) -> bool:
    """Remove the node from the control plane; return whether it succeeded."""
    log.warning("Shutting down node %s", node_info.node_id)
    try:
        session.request(
            lambda client: client.unregister_node(node_info, timeout=UNREGISTER_TIMEOUT)
        )
    except Exception as exc:
        log.error("Failed to unregister node from control plane: %s", exc)
        return False
    log.info("Successfully unregistered node from control plane")
    return True