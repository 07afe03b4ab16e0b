"""The CEF server: tracks which players may connect and relays browser packets."""

from __future__ import annotations

import ipaddress
import logging
import queue
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Hashable, Optional, Union

from sampcef.client import Client, State
from sampcef.events import (
    BrowserCreatedEvent,
    EmitEventReceived,
    PlayerConnected,
    ServerEvent,
)
from sampcef.network import CertStrategy, Connected, Disconnect
from sampcef.network import Message as SocketMessage
from sampcef.network import Socket
from sampcef.packets import (
    AlwaysListenKeys,
    AppendToObject,
    BrowserCreated,
    CreateBrowser,
    CreateExternalBrowser,
    DestroyBrowser,
    EmitEvent,
    EventValue,
    FocusBrowser,
    HideBrowser,
    JoinResponse,
    LoadUrl,
    Message,
    OpenConnection,
    Packet,
    PacketId,
    RemoveFromObject,
    RequestJoin,
    SetAudioSettings,
    ToggleDevTools,
    try_into_packet,
)
from sampcef.wire import DecodeError

logger = logging.getLogger(__name__)

Address = tuple[str, int]
IpLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]

_POLL_INTERVAL = 0.005
_UINT32_MASK = 0xFFFFFFFF


@dataclass(frozen=True)
class OutgoingPacket:
    """Encoded packet bytes waiting to be sent to ``peer``."""

    peer: Hashable
    data: bytes


@dataclass(frozen=True)
class OutgoingDisconnect:
    """A request to close the connection to ``peer``."""

    peer: Hashable


Outgoing = Union[OutgoingPacket, OutgoingDisconnect]


def _ip(addr: IpLike) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
    return ipaddress.ip_address(str(addr))


def _u32(value: int) -> int:
    return value & _UINT32_MASK


class Server:
    """State of the browser channel, shared by the game and network threads.

    A bare ``Server()`` holds the state only; :meth:`start` also binds a
    listening socket and runs the network loop on a background thread.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._events: "queue.Queue[ServerEvent]" = queue.Queue()
        self._outgoing: "queue.Queue[Outgoing]" = queue.Queue()
        self.allowed: dict[Any, int] = {}
        self.clients: dict[Hashable, Client] = {}
        self._socket: Optional[Socket] = None
        self._thread: Optional[threading.Thread] = None
        self._stopping = threading.Event()

    @classmethod
    def start(cls, addr: Address) -> "Server":
        """Listen on ``addr`` and serve connections on a background thread."""
        server = cls()
        server._socket = Socket.new_server(tuple(addr), CertStrategy.SELF_SIGNED)  # type: ignore[arg-type]
        server._thread = threading.Thread(
            target=server._run, name="sampcef-server", daemon=True
        )
        server._thread.start()
        return server

    def stop(self) -> None:
        """Stop the network loop and close the socket."""
        self._stopping.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    def __enter__(self) -> "Server":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    def _run(self) -> None:
        sock = self._socket
        assert sock is not None
        while not self._stopping.is_set():
            while (event := sock.recv()) is not None:
                self._dispatch(event)
            for item in self.drain_outgoing():
                match item:
                    case OutgoingPacket(peer=peer, data=data):
                        sock.send_message(peer, data)  # type: ignore[arg-type]
                    case OutgoingDisconnect(peer=peer):
                        logger.debug("socket::disconnect %r", peer)
                        sock.disconnect(peer)  # type: ignore[arg-type]
            self._stopping.wait(_POLL_INTERVAL)

    def _dispatch(self, event: Any) -> None:
        match event:
            case SocketMessage(peer_id=peer, data=data):
                try:
                    packet = Packet.decode(data)
                except DecodeError:
                    return
                self.handle_client_packet(peer, packet)
            case Connected(peer_id=peer, addr=addr):
                self.handle_new_connection(peer, addr)
            case Disconnect(peer_id=peer):
                self.handle_timeout(peer)
            case _:
                pass

    # packets from the browser clients

    def handle_client_packet(self, peer: Hashable, packet: Packet) -> None:
        """Handle a packet from ``peer``; packets from unknown peers are dropped."""
        with self._lock:
            if peer not in self.clients:
                return
            handlers = {
                PacketId.REQUEST_JOIN: (RequestJoin, self._handle_auth),
                PacketId.EMIT_EVENT: (EmitEvent, self._handle_emit_event),
                PacketId.BROWSER_CREATED: (BrowserCreated, self._handle_browser_created),
            }
            entry = handlers.get(packet.packet_id)
            if entry is None:
                return
            message_type, handler = entry
            try:
                message = message_type.decode(packet.payload)
            except DecodeError:
                return
            handler(peer, message)

    def _handle_auth(self, peer: Hashable, _request: RequestJoin) -> None:
        client = self.clients[peer]
        client.state = State.CONNECTED
        self._events.put(PlayerConnected(client.id))
        self._queue_message(peer, JoinResponse(success=True, current_version=None))

    def _handle_emit_event(self, peer: Hashable, packet: EmitEvent) -> None:
        client = self.clients[peer]
        if packet.args is not None:
            self._events.put(
                EmitEventReceived(
                    player_id=client.id, event=packet.event_name, arguments=packet.args
                )
            )

    def _handle_browser_created(self, peer: Hashable, packet: BrowserCreated) -> None:
        client = self.clients[peer]
        self._events.put(
            BrowserCreatedEvent(
                player_id=client.id, browser_id=packet.browser_id, code=packet.status_code
            )
        )

    def handle_timeout(self, peer: Hashable) -> None:
        """Forget the client behind ``peer`` after its connection dropped."""
        with self._lock:
            logger.debug("handle_timeout %r", peer)
            self.clients.pop(peer, None)

    def handle_new_connection(self, peer: Hashable, addr: Address) -> None:
        """Accept ``peer`` if its IP was allowed and its player has no connection yet."""
        with self._lock:
            logger.debug("handle_new_connection %r %r", peer, addr)
            try:
                ip = _ip(addr[0])
            except ValueError:
                ip = None
            player_id = self.allowed.get(ip)
            if (
                peer not in self.clients
                and player_id is not None
                and self._peer_by_id(player_id) is None
            ):
                self.clients[peer] = Client(player_id, peer, tuple(addr))  # type: ignore[arg-type]
                self._queue_message(peer, OpenConnection())
                return
            self._outgoing.put(OutgoingDisconnect(peer))

    # game server side

    def allow_connection(self, player_id: int, addr: IpLike) -> None:
        """Let ``player_id`` connect from ``addr``, dropping any previous client."""
        with self._lock:
            peer = self._peer_by_id(player_id)
            if peer is not None:
                self.clients.pop(peer, None)
            self.allowed[_ip(addr)] = player_id

    def remove_connection(self, player_id: int, addr: Optional[IpLike] = None) -> None:
        """Disconnect ``player_id`` and stop allowing its address."""
        with self._lock:
            peer = self._peer_by_id(player_id)
            if peer is not None:
                client = self.clients.pop(peer, None)
                if client is not None:
                    try:
                        self.allowed.pop(_ip(client.addr[0]), None)
                    except ValueError:
                        pass
                    self._outgoing.put(OutgoingDisconnect(client.peer))
            if addr is not None:
                self.allowed.pop(_ip(addr), None)

    def create_browser(
        self, player_id: int, browser_id: int, url: str, hidden: bool, focused: bool
    ) -> None:
        self._send_packet(
            player_id,
            CreateBrowser(browser_id=_u32(browser_id), url=url, hidden=hidden, focused=focused),
        )

    def destroy_browser(self, player_id: int, browser_id: int) -> None:
        self._send_packet(player_id, DestroyBrowser(browser_id=_u32(browser_id)))

    def hide_browser(self, player_id: int, browser_id: int, hide: bool) -> None:
        self._send_packet(player_id, HideBrowser(browser_id=_u32(browser_id), hide=hide))

    def focus_browser(self, player_id: int, browser_id: int, focused: bool) -> None:
        self._send_packet(
            player_id, FocusBrowser(browser_id=_u32(browser_id), focused=focused)
        )

    def emit_event(
        self, player_id: int, event: str, arguments: Iterable[EventValue]
    ) -> None:
        self._send_packet(
            player_id, EmitEvent(event_name=event, args=None, arguments=list(arguments))
        )

    def always_listen_keys(self, player_id: int, browser_id: int, listen: bool) -> None:
        self._send_packet(
            player_id, AlwaysListenKeys(browser_id=_u32(browser_id), listen=listen)
        )

    def has_plugin(self, player_id: int) -> bool:
        """Whether ``player_id`` has an open browser-channel connection."""
        with self._lock:
            return self._peer_by_id(player_id) is not None

    def create_external_browser(
        self, player_id: int, browser_id: int, texture: str, url: str, scale: int
    ) -> None:
        self._send_packet(
            player_id,
            CreateExternalBrowser(
                browser_id=_u32(browser_id), url=url, texture=texture, scale=scale
            ),
        )

    def append_to_object(self, player_id: int, browser_id: int, object_id: int) -> None:
        self._send_packet(
            player_id, AppendToObject(browser_id=_u32(browser_id), object_id=object_id)
        )

    def remove_from_object(self, player_id: int, browser_id: int, object_id: int) -> None:
        self._send_packet(
            player_id, RemoveFromObject(browser_id=_u32(browser_id), object_id=object_id)
        )

    def toggle_dev_tools(self, player_id: int, browser_id: int, enabled: bool) -> None:
        self._send_packet(
            player_id, ToggleDevTools(browser_id=_u32(browser_id), enabled=enabled)
        )

    def set_audio_settings(
        self,
        player_id: int,
        browser_id: int,
        max_distance: float,
        reference_distance: float,
    ) -> None:
        self._send_packet(
            player_id,
            SetAudioSettings(
                browser_id=_u32(browser_id),
                max_distance=max_distance,
                reference_distance=reference_distance,
            ),
        )

    def load_url(self, player_id: int, browser_id: int, url: str) -> None:
        self._send_packet(player_id, LoadUrl(browser_id=_u32(browser_id), url=url))

    def drain_outgoing(self) -> list[Outgoing]:
        """Take every packet and disconnect request waiting to go out."""
        items: list[Outgoing] = []
        while True:
            try:
                items.append(self._outgoing.get_nowait())
            except queue.Empty:
                return items

    def poll_events(self) -> Iterator[ServerEvent]:
        """Yield the events that are pending for the game script, without blocking."""
        while True:
            try:
                yield self._events.get_nowait()
            except queue.Empty:
                return

    # helpers

    def _queue_message(self, peer: Hashable, message: Message) -> None:
        try:
            data = try_into_packet(message)
        except (ValueError, TypeError) as err:
            logger.debug("cannot encode %r: %s", message, err)
            return
        self._outgoing.put(OutgoingPacket(peer, data))

    def _send_packet(self, player_id: int, message: Message) -> None:
        with self._lock:
            peer = self._peer_by_id(player_id)
            if peer is None:
                return
            self._queue_message(self.clients[peer].peer, message)

    def _peer_by_id(self, player_id: int) -> Optional[Hashable]:
        return next(
            (peer for peer, client in self.clients.items() if client.id == player_id),
            None,
        )