"""Server statistics snapshots and their rendering for the status header."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

_ROLE_COLORS = {
    "HEAD": "green",
    "TAIL": "blue",
    "MIDDLE": "yellow",
    "SINGLE": "orange",
}


@dataclass(frozen=True)
class ServerStatsSnapshot:
    """A point-in-time view of a node's state."""

    node_id: str
    node_addr: str
    role: str
    control_plane_addr: str
    predecessor_addr: str
    successor_addr: str
    events_processed: int
    events_applied: int
    messages_stored: int
    topics_count: int
    users_count: int


def role_for(has_predecessor: bool, has_successor: bool) -> str:
    """Chain role implied by which neighbours a node has."""
    if has_predecessor:
        return "MIDDLE" if has_successor else "TAIL"
    return "HEAD" if has_successor else "SINGLE"


def role_color(role: str) -> str:
    return _ROLE_COLORS.get(role, "gray")


def _format_duration(duration: timedelta) -> str:
    total = max(0, int(duration.total_seconds()))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{minutes}m{seconds}s"
    return f"{seconds}s"


def _neighbour(address: str) -> str:
    return f"[green]{address}[-]" if address else "[gray]none[-]"


def render_stats(snapshot: ServerStatsSnapshot, uptime: timedelta, threads: int) -> str:
    """Three-line marked-up status header."""
    lines = [
        f"[white]Node:[-] [cyan]{snapshot.node_id}[-] [darkgray]({snapshot.node_addr})[-]"
        f" | [white]Role:[-] [{role_color(snapshot.role)}]{snapshot.role}[-]",
        f"[white]Uptime:[-] [green]{_format_duration(uptime)}[-]"
        f" | [white]Events:[-] [yellow]{snapshot.events_processed}/{snapshot.events_applied}[-]"
        f" | [white]Messages:[-] [yellow]{snapshot.messages_stored}[-]"
        f" | [white]Goroutines:[-] [cyan]{threads}[-]",
        f"[white]Pred:[-] {_neighbour(snapshot.predecessor_addr)}"
        f" | [white]Succ:[-] {_neighbour(snapshot.successor_addr)}"
        f" | [white]CP:[-] [blue]{snapshot.control_plane_addr}[-]",
    ]
    return "\n".join(lines)


def render_initializing(uptime: timedelta) -> str:
    """Header shown before the node can report its statistics."""
    return (
        "[white]Node:[-] [gray]INITIALIZING[-]\n"
        f"[white]Uptime:[-] [green]{_format_duration(uptime)}[-]\n"
        "[white]CP:[-] [blue]N/A[-]"
    )


class Stats:
    """Start time plus an optional source of snapshots."""

    def __init__(
        self,
        control_plane_addr: str = "",
        provider: Callable[[], ServerStatsSnapshot] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.control_plane_addr = control_plane_addr
        self.provider = provider
        self._clock = clock
        self._started = clock()

    def uptime(self) -> timedelta:
        """Time since start, truncated to whole seconds."""
        return timedelta(seconds=int(self._clock() - self._started))


class StatsCollector:
    """Renders the statistics header to ``display`` once per interval."""

    def __init__(
        self,
        stats: Stats,
        display: Callable[[str], None],
        interval: float = 1.0,
        thread_count: Callable[[], int] = threading.active_count,
    ) -> None:
        self.stats = stats
        self.display = display
        self.interval = interval
        self._thread_count = thread_count
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def refresh(self) -> str:
        """Render the current header, pass it to ``display`` and return it."""
        provider = self.stats.provider
        if provider is None:
            text = render_initializing(self.stats.uptime())
        else:
            text = render_stats(provider(), self.stats.uptime(), self._thread_count())
        self.display(text)
        return text

    def _run(self) -> None:
        self.refresh()
        while not self._stop.wait(self.interval):
            self.refresh()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="stats", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None