import socket
import time

import pytest

from sampcef import network
from sampcef.network import (
    INCOMING_PACKET_SIZE,
    CertStrategy,
    Connected,
    Disconnect,
    Message,
    Socket,
)


def _next_event(sock, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        event = sock.recv()
        if event is not None:
            return event
        time.sleep(0.01)
    raise AssertionError("no event arrived")


def _free_port():
    with socket.socket() as probe:
        probe.bind(("127.0.0.1", 0))
        return probe.getsockname()[1]


@pytest.fixture
def server():
    sock = Socket.new_server(("127.0.0.1", 0), CertStrategy.SELF_SIGNED)
    try:
        yield sock
    finally:
        sock.close()


@pytest.fixture
def client():
    sock = Socket.new_client(("127.0.0.1", 0))
    try:
        yield sock
    finally:
        sock.close()


@pytest.fixture
def pair(server, client):
    client_peer = client.connect(server.local_address())
    _next_event(client)
    server_event = _next_event(server)
    return server, client, client_peer, server_event.peer_id


def test_server_binds_a_real_port(server):
    host, port = server.local_address()
    assert host == "127.0.0.1"
    assert port > 0


def test_idle_socket_has_no_events(server):
    assert server.recv() is None


def test_connect_reports_connected_on_both_sides(server, client):
    peer = client.connect(server.local_address())
    client_event = _next_event(client)
    server_event = _next_event(server)
    assert client_event == Connected(peer, server.local_address())
    assert isinstance(server_event, Connected)
    assert server_event.addr[0] == "127.0.0.1"


def test_client_to_server_message(pair):
    server, client, client_peer, server_peer = pair
    client.send_message(client_peer, b"hello")
    assert _next_event(server) == Message(server_peer, b"hello")


def test_server_to_client_message(pair):
    server, client, client_peer, server_peer = pair
    server.send_message(server_peer, b"\x00\x01\x02")
    assert _next_event(client) == Message(client_peer, b"\x00\x01\x02")


def test_messages_keep_their_order(pair):
    server, client, client_peer, server_peer = pair
    payloads = [bytes([n]) * (n + 1) for n in range(20)]
    for payload in payloads:
        client.send_message(client_peer, payload)
    received = [_next_event(server) for _ in payloads]
    assert [event.data for event in received] == payloads
    assert {event.peer_id for event in received} == {server_peer}


def test_empty_message_round_trip(pair):
    server, client, client_peer, server_peer = pair
    client.send_message(client_peer, b"")
    assert _next_event(server) == Message(server_peer, b"")


def test_oversized_message_is_dropped(pair):
    server, client, client_peer, server_peer = pair
    client.send_message(client_peer, b"x" * (INCOMING_PACKET_SIZE + 1))
    client.send_message(client_peer, b"small")
    assert _next_event(server, timeout=30.0) == Message(server_peer, b"small")


def test_disconnect_notifies_both_sides(pair):
    server, client, client_peer, server_peer = pair
    client.disconnect(client_peer)
    client_event = _next_event(client)
    server_event = _next_event(server)
    assert client_event == Disconnect(client_peer, server.local_address())
    assert isinstance(server_event, Disconnect)
    assert server_event.peer_id == server_peer


def test_closing_client_disconnects_it_from_server(pair):
    server, client, _client_peer, server_peer = pair
    client.close()
    event = _next_event(server)
    assert isinstance(event, Disconnect)
    assert event.peer_id == server_peer


def test_connect_to_closed_port_reports_error(client):
    peer = client.connect(("127.0.0.1", _free_port()))
    assert _next_event(client) == network.ConnectionError(peer)


def test_server_socket_cannot_connect_out(server):
    peer = server.connect(("127.0.0.1", _free_port()))
    assert _next_event(server) == network.ConnectionError(peer)


def test_peer_ids_are_distinct(client):
    first = client.connect(("127.0.0.1", _free_port()))
    second = client.connect(("127.0.0.1", _free_port()))
    assert first != second
    events = {_next_event(client), _next_event(client)}
    assert events == {network.ConnectionError(first), network.ConnectionError(second)}


def test_send_after_disconnect_is_ignored(pair):
    server, client, client_peer, _server_peer = pair
    client.disconnect(client_peer)
    _next_event(client)
    client.send_message(client_peer, b"late")
    time.sleep(0.1)
    assert isinstance(_next_event(server), Disconnect)
    assert server.recv() is None


def test_bind_to_busy_port_raises():
    with socket.socket() as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen()
        with pytest.raises(OSError):
            Socket.new_server(busy.getsockname()[:2], CertStrategy.SELF_SIGNED)