"""End-to-end tests for ControlServer over real sockets."""

import json
import socket
import threading

import pytest

from syncserver import BindError, ControlServer, SyncParameters
from syncserver.client import SyncClient


def connect(server):
    client = SyncClient("127.0.0.1", server.port)
    client.connect()
    return client


def test_bound_port_is_reported(server):
    assert server.address == "127.0.0.1"
    assert server.port > 0
    assert server.is_serving


def test_client_receives_snapshot_then_silence(server, wait_until):
    client = connect(server)
    try:
        raw = client.receive_raw()
        assert raw["clock"] == "0.0.0.0:5637"
        assert raw["latency"] == 0

        # Nothing else arrives while the connection stays open
        client.socket.settimeout(0.3)
        with pytest.raises(socket.timeout):
            client.socket.recv(1)
        assert wait_until(lambda: server.active_connections == 1)
    finally:
        client.disconnect()


def test_payload_is_pretty_printed_json(server):
    with socket.create_connection(("127.0.0.1", server.port), timeout=5) as sock:
        data = b""
        while True:
            data += sock.recv(4096)
            try:
                snapshot = json.loads(data.decode("utf-8"))
                break
            except ValueError:
                continue
    assert b"\n" in data
    assert SyncParameters.from_dict(snapshot) == server.get_sync_parameters()


def test_update_reaches_new_clients_only(server):
    early = connect(server)
    try:
        assert early.receive_snapshot().latency == 0

        server.set_sync_parameters(server.get_sync_parameters().replace(latency=42))

        late = connect(server)
        try:
            assert late.receive_snapshot().latency == 42
        finally:
            late.disconnect()

        early.socket.settimeout(0.3)
        with pytest.raises(socket.timeout):
            early.socket.recv(1)
    finally:
        early.disconnect()


def test_closing_client_releases_handler(server, wait_until):
    clients = [connect(server) for _ in range(5)]
    for client in clients:
        client.receive_raw()
    assert wait_until(lambda: server.active_connections == 5)

    for client in clients:
        client.disconnect()
    assert wait_until(lambda: server.active_connections == 0)


def test_client_bytes_are_ignored(server, wait_until):
    client = connect(server)
    try:
        client.receive_raw()
        client.socket.sendall(b"hello server\n" * 100)
        client.socket.settimeout(0.3)
        with pytest.raises(socket.timeout):
            client.socket.recv(1)
        assert server.active_connections == 1
    finally:
        client.disconnect()
    assert wait_until(lambda: server.active_connections == 0)


def test_port_in_use_raises_bind_error(server, sync_params):
    with pytest.raises(BindError) as excinfo:
        ControlServer("127.0.0.1", server.port, sync_params)
    assert excinfo.value.port == server.port
    assert isinstance(excinfo.value.cause, OSError)
    assert excinfo.value.__cause__ is excinfo.value.cause


def test_invalid_address_raises_bind_error(sync_params):
    with pytest.raises(BindError) as excinfo:
        ControlServer("not-an-address", 0, sync_params)
    assert isinstance(excinfo.value.cause, ValueError)


@pytest.mark.parametrize("port", [-1, 65536, "5000"])
def test_port_out_of_range_rejected(sync_params, port):
    with pytest.raises(ValueError):
        ControlServer("127.0.0.1", port, sync_params)


def test_stop_refuses_new_connections(sync_params):
    srv = ControlServer("127.0.0.1", 0, sync_params, poll_interval=0.05)
    port = srv.port
    srv.stop()
    assert not srv.is_serving
    assert srv.wait(timeout=1.0)
    with pytest.raises(ConnectionRefusedError):
        socket.create_connection(("127.0.0.1", port), timeout=1)
    # stop is idempotent
    srv.stop()


def test_stop_leaves_open_connections_alone(sync_params, wait_until):
    srv = ControlServer("127.0.0.1", 0, sync_params, poll_interval=0.05)
    client = connect(srv)
    try:
        client.receive_raw()
        srv.stop()
        client.socket.settimeout(0.3)
        with pytest.raises(socket.timeout):
            client.socket.recv(1)
        assert srv.active_connections == 1
    finally:
        client.disconnect()
    assert wait_until(lambda: srv.active_connections == 0)


def test_stop_can_close_open_connections(sync_params, wait_until):
    srv = ControlServer("127.0.0.1", 0, sync_params, poll_interval=0.05)
    client = connect(srv)
    try:
        client.receive_raw()
        srv.stop(close_connections=True)
        assert client.wait_for_close(timeout=2.0) == b""
        assert wait_until(lambda: srv.active_connections == 0)
    finally:
        client.disconnect()


def test_context_manager_stops_server(sync_params):
    with ControlServer("127.0.0.1", 0, sync_params, poll_interval=0.05) as srv:
        assert srv.is_serving
    assert not srv.is_serving


def test_dict_parameters_are_served_as_given():
    params = {"clock": "10.0.0.1:5637", "latency": 5, "extra": {"room": "lobby"}}
    with ControlServer("127.0.0.1", 0, params, poll_interval=0.05) as srv:
        params["latency"] = 999
        client = connect(srv)
        try:
            raw = client.receive_raw()
        finally:
            client.disconnect()
        srv.stop(close_connections=True)
    assert raw == {"clock": "10.0.0.1:5637", "latency": 5, "extra": {"room": "lobby"}}


def test_unserializable_parameters_keep_connection_open(wait_until):
    with ControlServer("127.0.0.1", 0, object(), poll_interval=0.05) as srv:
        client = connect(srv)
        try:
            client.socket.settimeout(0.3)
            with pytest.raises(socket.timeout):
                client.socket.recv(1)
            assert srv.active_connections == 1
        finally:
            client.disconnect()
        assert wait_until(lambda: srv.active_connections == 0)


class BrokenParameters:
    def to_dict(self):
        raise AttributeError("missing field")


def test_raising_to_dict_keeps_connection_open(wait_until):
    with ControlServer("127.0.0.1", 0, BrokenParameters(), poll_interval=0.05) as srv:
        client = connect(srv)
        try:
            client.socket.settimeout(0.3)
            with pytest.raises(socket.timeout):
                client.socket.recv(1)
            assert srv.active_connections == 1
        finally:
            client.disconnect()
        assert wait_until(lambda: srv.active_connections == 0)


def test_concurrent_updates_never_tear_payloads(server):
    values = [SyncParameters(clock=f"10.0.0.{i}:{5000 + i}", latency=i) for i in range(1, 20)]
    stop = threading.Event()

    def updater():
        while not stop.is_set():
            for value in values:
                server.set_sync_parameters(value)

    thread = threading.Thread(target=updater, daemon=True)
    thread.start()
    try:
        valid = set(values) | {SyncParameters(clock="0.0.0.0:5637", latency=0)}
        for _ in range(30):
            client = connect(server)
            try:
                snapshot = client.receive_snapshot()
            finally:
                client.disconnect()
            assert snapshot in valid
            assert snapshot.clock_port == 5000 + snapshot.latency or snapshot.latency == 0
    finally:
        stop.set()
        thread.join(timeout=2.0)


def test_example_scenario():
    params = SyncParameters(clock="0.0.0.0:5637", latency=0)
    try:
        srv = ControlServer("127.0.0.1", 5000, params, poll_interval=0.05)
    except BindError:
        pytest.skip("port 5000 is busy on this host")

    try:
        with SyncClient("127.0.0.1", 5000) as client:
            raw = client.receive_raw()
            assert raw["clock"] == "0.0.0.0:5637"
            assert raw["latency"] == 0
            client.socket.settimeout(0.3)
            with pytest.raises(socket.timeout):
                client.socket.recv(1)
    finally:
        srv.stop(close_connections=True)


def test_from_config(tmp_path):
    from syncserver.config import AppConfig, ServerConfig

    config = AppConfig(
        server=ServerConfig(address="127.0.0.1", port=0, poll_interval=0.05),
        sync=SyncParameters(clock="192.168.1.2:5637", latency=10),
    )
    with ControlServer.from_config(config) as srv:
        with SyncClient("127.0.0.1", srv.port) as client:
            assert client.receive_snapshot() == config.sync
        srv.stop(close_connections=True)
