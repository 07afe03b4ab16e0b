import pytest

from sampcef.events import BrowserCreatedEvent, EmitEventReceived, PlayerConnected
from sampcef.packets import (
    BrowserCreated,
    CreateBrowser,
    DestroyBrowser,
    EmitEvent,
    EventValue,
    JoinResponse,
    LoadUrl,
    Packet,
    PacketId,
    RequestJoin,
    SetAudioSettings,
    to_packet,
)
from sampcef.server import OutgoingDisconnect, OutgoingPacket, Server

IP = "10.0.0.5"
ADDR = (IP, 50000)
PLAYER = 3
PEER = 11


def _unpack(item):
    assert isinstance(item, OutgoingPacket)
    return Packet.decode(item.data)


@pytest.fixture
def server():
    return Server()


@pytest.fixture
def connected(server):
    server.allow_connection(PLAYER, IP)
    server.handle_new_connection(PEER, ADDR)
    server.drain_outgoing()
    return server


def test_unknown_address_is_disconnected(server):
    server.handle_new_connection(PEER, ADDR)
    assert server.drain_outgoing() == [OutgoingDisconnect(PEER)]
    assert server.has_plugin(PLAYER) is False


def test_allowed_address_gets_open_connection(server):
    server.allow_connection(PLAYER, IP)
    server.handle_new_connection(PEER, ADDR)
    (item,) = server.drain_outgoing()
    assert item.peer == PEER
    assert _unpack(item).packet_id == PacketId.OPEN_CONNECTION
    assert server.has_plugin(PLAYER) is True
    assert server.clients[PEER].is_connected() is False


def test_second_connection_for_same_player_is_refused(connected):
    connected.handle_new_connection(PEER + 1, (IP, 50001))
    assert connected.drain_outgoing() == [OutgoingDisconnect(PEER + 1)]
    assert list(connected.clients) == [PEER]


def test_request_join_marks_connected(connected):
    connected.handle_client_packet(PEER, to_packet(RequestJoin(plugin_version=1)))
    assert connected.clients[PEER].is_connected() is True
    assert list(connected.poll_events()) == [PlayerConnected(PLAYER)]
    (item,) = connected.drain_outgoing()
    packet = _unpack(item)
    assert packet.packet_id == PacketId.JOIN_RESPONSE
    assert JoinResponse.decode(packet.payload) == JoinResponse(success=True)


def test_packets_from_unknown_peer_are_ignored(server):
    server.handle_client_packet(PEER, to_packet(RequestJoin(plugin_version=1)))
    assert list(server.poll_events()) == []
    assert server.drain_outgoing() == []


def test_emit_event_with_args(connected):
    message = EmitEvent(event_name="ping", args="1,2")
    connected.handle_client_packet(PEER, to_packet(message))
    assert list(connected.poll_events()) == [EmitEventReceived(PLAYER, "ping", "1,2")]


def test_emit_event_without_args_is_dropped(connected):
    connected.handle_client_packet(PEER, to_packet(EmitEvent(event_name="ping")))
    assert list(connected.poll_events()) == []


def test_browser_created_event(connected):
    message = BrowserCreated(browser_id=4, status_code=200)
    connected.handle_client_packet(PEER, to_packet(message))
    assert list(connected.poll_events()) == [BrowserCreatedEvent(PLAYER, 4, 200)]


def test_malformed_payload_is_ignored(connected):
    bad = Packet(packet_id=PacketId.REQUEST_JOIN, payload=b"\x05\x08")
    connected.handle_client_packet(PEER, bad)
    assert list(connected.poll_events()) == []
    assert connected.clients[PEER].is_connected() is False


def test_create_browser_packet(connected):
    connected.create_browser(PLAYER, 7, "http://localhost/", True, False)
    (item,) = connected.drain_outgoing()
    packet = _unpack(item)
    assert packet.packet_id == PacketId.CREATE_BROWSER
    assert CreateBrowser.decode(packet.payload) == CreateBrowser(
        browser_id=7, url="http://localhost/", hidden=True, focused=False
    )


def test_negative_browser_id_wraps(connected):
    connected.destroy_browser(PLAYER, -1)
    (item,) = connected.drain_outgoing()
    assert DestroyBrowser.decode(_unpack(item).payload).browser_id == 0xFFFFFFFF


def test_send_to_unknown_player_does_nothing(connected):
    connected.load_url(PLAYER + 1, 1, "http://localhost/")
    assert connected.drain_outgoing() == []


def test_load_url_and_audio(connected):
    connected.load_url(PLAYER, 2, "http://localhost/page")
    connected.set_audio_settings(PLAYER, 2, 50.0, 10.0)
    first, second = connected.drain_outgoing()
    assert LoadUrl.decode(_unpack(first).payload) == LoadUrl(2, "http://localhost/page")
    assert SetAudioSettings.decode(_unpack(second).payload) == SetAudioSettings(2, 50.0, 10.0)


def test_emit_event_to_client(connected):
    args = [EventValue(string_value="a"), EventValue(integer_value=5)]
    connected.emit_event(PLAYER, "update", args)
    (item,) = connected.drain_outgoing()
    packet = _unpack(item)
    assert packet.packet_id == PacketId.EMIT_EVENT
    decoded = EmitEvent.decode(packet.payload)
    assert decoded.event_name == "update"
    assert decoded.args is None
    assert decoded.arguments == args


def test_remove_connection(connected):
    connected.remove_connection(PLAYER, IP)
    assert connected.drain_outgoing() == [OutgoingDisconnect(PEER)]
    assert connected.has_plugin(PLAYER) is False
    assert connected.allowed == {}


def test_allow_connection_drops_existing_client(connected):
    connected.allow_connection(PLAYER, "10.0.0.6")
    assert connected.clients == {}
    connected.handle_new_connection(PEER + 2, ("10.0.0.6", 1))
    assert connected.has_plugin(PLAYER) is True


def test_handle_timeout_removes_client(connected):
    connected.handle_timeout(PEER)
    assert connected.has_plugin(PLAYER) is False
    connected.handle_timeout(PEER)
    assert connected.clients == {}