"""Message transport between the game server and browser clients.

A :class:`Socket` runs its I/O on a background thread. Connections are TLS
streams carrying length-prefixed messages; the owner polls :meth:`Socket.recv`
for events and sends with :meth:`Socket.send_message`.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import queue
import socket
import ssl
import struct
import threading
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, Optional, Union

from sampcef.tls import SERVER_NAME, make_insecure_client, make_self_signed

Address = tuple[str, int]

INCOMING_PACKET_SIZE = 10 * 1024 * 1024
KEEP_ALIVE_INTERVAL = 1

_FRAME_HEADER = struct.Struct(">I")
_DISCARD_CHUNK = 64 * 1024
_CALL_TIMEOUT = 10.0


class CertStrategy(enum.Enum):
    """How a listening socket obtains its certificate."""

    SELF_SIGNED = "self-signed"


@dataclass(frozen=True)
class Connected:
    peer_id: int
    addr: Address


@dataclass(frozen=True)
class Message:
    peer_id: int
    data: bytes


@dataclass(frozen=True)
class Disconnect:
    peer_id: int
    addr: Address


@dataclass(frozen=True)
class ConnectionError:  # noqa: A001 - the event is named after what happened
    peer_id: int


Event = Union[Connected, Message, Disconnect, ConnectionError]


class _Link:
    """Worker-side state of one open connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self.outgoing: asyncio.Queue[bytes] = asyncio.Queue()

    def close(self) -> None:
        if not self.writer.is_closing():
            self.writer.close()


@dataclass(frozen=True)
class _Established:
    peer_id: int
    addr: Address
    link: _Link


@dataclass(frozen=True)
class _PeerGone:
    peer_id: int


@dataclass
class _Peer:
    addr: Address
    link: _Link


class _PeerIds:
    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._counter)


def _enable_keepalive(sock: Any) -> None:
    if sock is None:
        return
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        for name in ("TCP_KEEPIDLE", "TCP_KEEPINTVL"):
            option = getattr(socket, name, None)
            if option is not None:
                sock.setsockopt(socket.IPPROTO_TCP, option, KEEP_ALIVE_INTERVAL)
    except OSError:
        pass


async def _discard(reader: asyncio.StreamReader, size: int) -> None:
    while size:
        chunk = await reader.read(min(size, _DISCARD_CHUNK))
        if not chunk:
            raise asyncio.IncompleteReadError(b"", size)
        size -= len(chunk)


class _Worker:
    """Everything that runs on the socket's event-loop thread."""

    def __init__(
        self,
        events: "queue.Queue[Any]",
        peer_ids: _PeerIds,
        local_addr: Address,
        server_context: Optional[ssl.SSLContext],
        client_context: Optional[ssl.SSLContext],
    ):
        self._events = events
        self._peer_ids = peer_ids
        self._local_addr = local_addr
        self._server_context = server_context
        self._client_context = client_context
        self._server: Optional[asyncio.AbstractServer] = None
        self._links: set[_Link] = set()
        self._tasks: set[asyncio.Task[Any]] = set()

    async def start(self) -> Address:
        if self._server_context is None:
            return self._local_addr
        host, port = self._local_addr
        self._server = await asyncio.start_server(
            self._accept, host, port, ssl=self._server_context
        )
        return tuple(self._server.sockets[0].getsockname()[:2])  # type: ignore[return-value]

    def connect(self, addr: Address, peer_id: int) -> None:
        task = asyncio.get_running_loop().create_task(self._connect(addr, peer_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _connect(self, addr: Address, peer_id: int) -> None:
        if self._client_context is None:
            self._events.put(ConnectionError(peer_id))
            return
        host, port = addr
        try:
            reader, writer = await asyncio.open_connection(
                host,
                port,
                ssl=self._client_context,
                server_hostname=SERVER_NAME,
                local_addr=self._local_addr,
            )
        except (OSError, asyncio.TimeoutError):
            self._events.put(ConnectionError(peer_id))
            return
        await self._serve(peer_id, reader, writer)

    async def _accept(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        await self._serve(self._peer_ids.next(), reader, writer)

    async def _serve(
        self, peer_id: int, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        _enable_keepalive(writer.get_extra_info("socket"))
        link = _Link(reader, writer)
        self._links.add(link)
        addr = tuple(writer.get_extra_info("peername")[:2])
        self._events.put(_Established(peer_id, addr, link))  # type: ignore[arg-type]
        sender = asyncio.get_running_loop().create_task(self._send_loop(link))
        try:
            await self._receive_loop(peer_id, link)
        finally:
            sender.cancel()
            link.close()
            self._links.discard(link)
            self._events.put(_PeerGone(peer_id))

    async def _receive_loop(self, peer_id: int, link: _Link) -> None:
        while True:
            try:
                (size,) = _FRAME_HEADER.unpack(
                    await link.reader.readexactly(_FRAME_HEADER.size)
                )
                if size > INCOMING_PACKET_SIZE:
                    await _discard(link.reader, size)
                    continue
                data = await link.reader.readexactly(size)
            except (asyncio.IncompleteReadError, OSError):
                return
            self._events.put(Message(peer_id, data))

    @staticmethod
    async def _send_loop(link: _Link) -> None:
        while True:
            data = await link.outgoing.get()
            try:
                link.writer.write(_FRAME_HEADER.pack(len(data)) + data)
                await link.writer.drain()
            except OSError:
                link.close()
                return

    async def shutdown(self) -> None:
        if self._server is not None:
            self._server.close()
        for link in list(self._links):
            link.close()
        current = asyncio.current_task()
        tasks = [task for task in asyncio.all_tasks() if task is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.sleep(0)


class Socket:
    """An endpoint that accepts and opens connections and exchanges messages.

    Use :meth:`new_server` or :meth:`new_client` to create one. All methods
    are meant to be called from a single owning thread.
    """

    def __init__(
        self,
        addr: Address,
        *,
        server_context: Optional[ssl.SSLContext] = None,
        client_context: Optional[ssl.SSLContext] = None,
    ):
        self._events: "queue.Queue[Any]" = queue.Queue()
        self._peer_ids = _PeerIds()
        self._peers: dict[int, _Peer] = {}
        self._closed = False
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run, name="sampcef-network", daemon=True
        )
        self._thread.start()
        self._worker = _Worker(
            self._events, self._peer_ids, tuple(addr), server_context, client_context  # type: ignore[arg-type]
        )
        try:
            self._local = self._call(self._worker.start())
        except BaseException:
            self._stop_loop()
            raise

    @classmethod
    def new_client(cls, addr: Address) -> "Socket":
        """Create a socket bound at ``addr`` that connects out to servers."""
        return cls(addr, client_context=make_insecure_client())

    @classmethod
    def new_server(
        cls, addr: Address, cert: CertStrategy = CertStrategy.SELF_SIGNED
    ) -> "Socket":
        """Create a socket that listens on ``addr`` for incoming connections."""
        return cls(addr, server_context=make_self_signed())

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def _call(self, coro: Coroutine[Any, Any, Any]) -> Any:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(_CALL_TIMEOUT)

    def _post(self, callback: Any, *args: Any) -> None:
        if not self._closed:
            self._loop.call_soon_threadsafe(callback, *args)

    def _stop_loop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()

    def local_address(self) -> Address:
        """The address the socket is bound to."""
        return self._local

    def connect(self, addr: Address) -> int:
        """Start connecting to ``addr``; return the peer id the connection will use."""
        peer_id = self._peer_ids.next()
        self._post(self._worker.connect, tuple(addr), peer_id)
        return peer_id

    def disconnect(self, peer_id: int) -> None:
        """Close the connection to ``peer_id`` if it is known."""
        peer = self._peers.get(peer_id)
        if peer is not None:
            self._post(peer.link.close)

    def send_message(self, peer_id: int, message: bytes) -> None:
        """Queue ``message`` for ``peer_id``; unknown peers are ignored."""
        peer = self._peers.get(peer_id)
        if peer is not None:
            self._post(peer.link.outgoing.put_nowait, bytes(message))

    def recv(self) -> Optional[Event]:
        """Return the next pending event, or ``None`` if there is none."""
        try:
            event = self._events.get_nowait()
        except queue.Empty:
            return None

        match event:
            case _Established(peer_id=peer_id, addr=addr, link=link):
                self._peers[peer_id] = _Peer(addr, link)
                return Connected(peer_id, addr)
            case _PeerGone(peer_id=peer_id):
                peer = self._peers.pop(peer_id, None)
                if peer is None:
                    return None
                return Disconnect(peer_id, peer.addr)
            case _:
                return event

    def close(self) -> None:
        """Close every connection and stop the background thread."""
        if self._closed:
            return
        try:
            self._call(self._worker.shutdown())
        finally:
            self._closed = True
            self._stop_loop()

    def __enter__(self) -> "Socket":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()