import threading

import pytest

from razboard.control_plane import (
    ControlPlaneSession,
    ControlPlaneUnavailableError,
    HeartbeatLoop,
    unregister,
)
from razboard.models import NodeInfo
from razboard.status import RpcError, StatusCode

NODE = NodeInfo(node_id="node-a", address="localhost:6001")


class FakeClient:
    def __init__(self, address, failures=()):
        self.address = address
        self.failures = list(failures)
        self.calls = []
        self.closed = False

    def _handle(self, name, node_info, timeout):
        self.calls.append((name, node_info, timeout))
        if self.failures:
            raise self.failures.pop(0)
        return (name, self.address)

    def register_node(self, node_info, timeout=None):
        return self._handle("register_node", node_info, timeout)

    def heartbeat(self, node_info, timeout=None):
        return self._handle("heartbeat", node_info, timeout)

    def unregister_node(self, node_info, timeout=None):
        return self._handle("unregister_node", node_info, timeout)

    def close(self):
        self.closed = True


class FakeNetwork:
    def __init__(self, failures=None, unreachable=()):
        self.failures = failures or {}
        self.unreachable = set(unreachable)
        self.clients = []

    def __call__(self, address):
        if address in self.unreachable:
            raise OSError(f"cannot reach {address}")
        client = FakeClient(address, self.failures.get(address, ()))
        self.clients.append(client)
        return client


def register(client):
    return client.register_node(NODE)


def test_first_server_is_used_and_remembered():
    network = FakeNetwork()
    session = ControlPlaneSession(["cp1:1", "cp2:2"], network)
    assert session.current_address() is None
    assert session.request(register) == ("register_node", "cp1:1")
    assert session.current_address() == "cp1:1"


def test_current_connection_is_reused():
    network = FakeNetwork()
    session = ControlPlaneSession(["cp1:1", "cp2:2"], network)
    session.request(register)
    session.request(register)
    assert len(network.clients) == 1
    assert len(network.clients[0].calls) == 2


def test_retryable_error_moves_to_next_server():
    network = FakeNetwork(
        failures={"cp1:1": [RpcError(StatusCode.FAILED_PRECONDITION, "not leader")]}
    )
    session = ControlPlaneSession(["cp1:1", "cp2:2"], network)
    assert session.request(register) == ("register_node", "cp2:2")
    assert session.current_address() == "cp2:2"
    assert network.clients[0].closed
    assert not network.clients[1].closed


def test_non_retryable_error_is_raised_without_trying_others():
    network = FakeNetwork(failures={"cp1:1": [RpcError(StatusCode.NOT_FOUND, "missing")]})
    session = ControlPlaneSession(["cp1:1", "cp2:2"], network)
    with pytest.raises(RpcError) as info:
        session.request(register)
    assert info.value.code is StatusCode.NOT_FOUND
    assert [c.address for c in network.clients] == ["cp1:1"]
    assert session.current_address() is None


def test_unreachable_server_is_skipped():
    network = FakeNetwork(unreachable={"cp1:1"})
    session = ControlPlaneSession(["cp1:1", "cp2:2"], network)
    assert session.request(register) == ("register_node", "cp2:2")


def test_all_servers_failing_raises_with_last_error():
    last = RpcError(StatusCode.UNAVAILABLE, "down")
    network = FakeNetwork(
        failures={"cp2:2": [last]},
        unreachable={"cp1:1"},
    )
    session = ControlPlaneSession(["cp1:1", "cp2:2"], network)
    with pytest.raises(ControlPlaneUnavailableError) as info:
        session.request(register)
    assert info.value.__cause__ is last
    assert "all control plane servers failed" in str(info.value)


def test_no_servers_configured():
    session = ControlPlaneSession([], FakeNetwork())
    with pytest.raises(ControlPlaneUnavailableError, match="no control plane servers available"):
        session.request(register)


def test_failing_current_connection_is_replaced_and_closed():
    network = FakeNetwork()
    session = ControlPlaneSession(["cp1:1", "cp2:2"], network)
    session.request(register)
    first = network.clients[0]
    first.failures.append(RpcError(StatusCode.UNAVAILABLE, "gone"))
    assert session.request(register) == ("register_node", "cp1:1")
    assert first.closed
    assert len(network.clients) == 2
    assert not network.clients[1].closed


def test_close_drops_connection():
    network = FakeNetwork()
    session = ControlPlaneSession(["cp1:1"], network)
    session.request(register)
    session.close()
    assert network.clients[0].closed
    assert session.current_address() is None


def test_heartbeat_send_uses_node_info_and_half_interval():
    network = FakeNetwork()
    session = ControlPlaneSession(["cp1:1"], network)
    loop = HeartbeatLoop(session, NODE, interval=4.0)
    loop.send()
    name, node_info, timeout = network.clients[0].calls[0]
    assert name == "heartbeat"
    assert node_info == NODE
    assert timeout == pytest.approx(2.0)


def test_heartbeat_send_propagates_failure():
    session = ControlPlaneSession([], FakeNetwork())
    loop = HeartbeatLoop(session, NODE)
    with pytest.raises(ControlPlaneUnavailableError):
        loop.send()


def test_heartbeat_loop_runs_until_stopped():
    beats = threading.Event()

    class BeatingClient(FakeClient):
        def heartbeat(self, node_info, timeout=None):
            beats.set()
            return super().heartbeat(node_info, timeout)

    session = ControlPlaneSession(["cp1:1"], BeatingClient)
    loop = HeartbeatLoop(session, NODE, interval=0.01)
    loop.start()
    try:
        assert beats.wait(2.0)
    finally:
        loop.stop()
    assert session.current_address() == "cp1:1"


def test_unregister_success_and_failure():
    network = FakeNetwork()
    session = ControlPlaneSession(["cp1:1"], network)
    assert unregister(session, NODE) is True
    assert network.clients[0].calls[0][0] == "unregister_node"
    assert unregister(ControlPlaneSession([], FakeNetwork()), NODE) is False