"""Game-server plugin: the script-facing natives and the per-tick dispatch."""

from __future__ import annotations

import enum
import ipaddress
import logging
import os
import time
from typing import Any, Callable, Optional, Protocol

from sampcef.config import DEFAULT_CONFIG_PATH, parse_config_field
from sampcef.events import (
    BrowserCreatedEvent,
    EmitEventReceived,
    PlayerConnected,
    describe,
)
from sampcef.packets import EventValue
from sampcef.server import Server

logger = logging.getLogger(__name__)

INIT_TIMEOUT = 5.0
PORT_OFFSET = 2
DEFAULT_PORT = 7777
DEFAULT_BIND = "0.0.0.0"


class Amx(Protocol):
    """A loaded game script that public callbacks can be run in."""

    def exec_public(self, name: str, *args: Any) -> Any: ...


class ArgType(enum.IntEnum):
    """Type tag preceding each value passed to :meth:`CefPlugin.emit_event`."""

    STRING = 0
    INTEGER = 1
    FLOAT = 2


class CefPlugin:
    """Bridges game scripts and the browser-channel :class:`Server`.

    Natives return ``True`` the way the script side expects; :meth:`process_tick`
    must be called regularly to deliver server events to the scripts.
    """

    def __init__(
        self,
        server: Server,
        *,
        clock: Callable[[], float] = time.monotonic,
        init_timeout: float = INIT_TIMEOUT,
    ) -> None:
        self.server = server
        self.events: dict[str, tuple[Amx, str]] = {}
        self.amx_list: list[Amx] = []
        self.await_connect: dict[int, float] = {}
        self.ips: dict[int, ipaddress.IPv4Address | ipaddress.IPv6Address] = {}
        self._clock = clock
        self._init_timeout = init_timeout

    @classmethod
    def from_config(
        cls,
        config_path: "str | os.PathLike[str]" = DEFAULT_CONFIG_PATH,
        host: Optional[str] = None,
    ) -> "CefPlugin":
        """Start a server on the configured address and wrap it in a plugin.

        The bind address comes from ``host`` or the ``bind`` field, the port is
        the ``port`` field (default 7777) plus two.
        """
        if host is None:
            bind = parse_config_field("bind", ipaddress.ip_address, config_path)
            host = str(bind) if bind is not None else DEFAULT_BIND
        port = parse_config_field("port", int, config_path)
        if port is None:
            port = DEFAULT_PORT
        addr = (host, port + PORT_OFFSET)
        server = Server.start(addr)
        logger.info("Bind CEF server on %r", addr)
        return cls(server)

    def close(self) -> None:
        """Stop the underlying server."""
        self.server.stop()

    # plugin lifecycle

    def on_load(self) -> None:
        logger.info("CEF plugin is successful loaded.")

    def on_amx_load(self, amx: Amx) -> None:
        self.amx_list.append(amx)

    def on_amx_unload(self, amx: Amx) -> None:
        for position, loaded in enumerate(self.amx_list):
            if loaded is amx:
                del self.amx_list[position]
                return

    # natives

    def on_player_connect(self, player_id: int, player_ip: str) -> bool:
        try:
            addr = ipaddress.ip_address(str(player_ip))
        except ValueError:
            return True
        logger.debug("allow_connection %s %s", player_id, addr)
        self.ips[player_id] = addr
        self.server.allow_connection(player_id, addr)
        self._add_to_await_list(player_id)
        return True

    def on_player_disconnect(self, player_id: int) -> bool:
        logger.debug("remove_connection %s", player_id)
        ip = self.ips.pop(player_id, None)
        self.server.remove_connection(player_id, ip)
        self._remove_from_await_list(player_id)
        return True

    def create_browser(
        self, player_id: int, browser_id: int, url: str, hidden: bool, focused: bool
    ) -> bool:
        self.server.create_browser(player_id, browser_id, url, hidden, focused)
        return True

    def destroy_browser(self, player_id: int, browser_id: int) -> bool:
        self.server.destroy_browser(player_id, browser_id)
        return True

    def hide_browser(self, player_id: int, browser_id: int, hide: bool) -> bool:
        self.server.hide_browser(player_id, browser_id, hide)
        return True

    def focus_browser(self, player_id: int, browser_id: int, focused: bool) -> bool:
        self.server.focus_browser(player_id, browser_id, focused)
        return True

    def emit_event(self, player_id: int, event_name: str, *args: Any) -> bool:
        """Send an event with ``(type, value)`` argument pairs to a player.

        Returns ``False`` when the arguments do not come in pairs. Parsing
        stops at the first unknown type tag.
        """
        if len(args) % 2 != 0:
            logger.info("cef_emit_event invalid count of arguments")
            return False

        arguments: list[EventValue] = []
        pairs = zip(args[::2], args[1::2])
        for tag, value in pairs:
            try:
                kind = ArgType(tag)
            except ValueError:
                break
            match kind:
                case ArgType.STRING:
                    arguments.append(EventValue(string_value=str(value)))
                case ArgType.INTEGER:
                    arguments.append(EventValue(integer_value=int(value)))
                case ArgType.FLOAT:
                    arguments.append(EventValue(float_value=float(value)))

        self.server.emit_event(player_id, event_name, arguments)
        return True

    def always_listen_keys(self, player_id: int, browser_id: int, listen: bool) -> bool:
        self.server.always_listen_keys(player_id, browser_id, listen)
        return True

    def subscribe(self, amx: Amx, event_name: str, callback: str) -> bool:
        """Run public ``callback`` in ``amx`` whenever a browser emits ``event_name``."""
        self.events[event_name] = (amx, callback)
        return True

    def player_has_plugin(self, player_id: int) -> bool:
        return self.server.has_plugin(player_id)

    def create_external_browser(
        self, player_id: int, browser_id: int, texture: str, url: str, scale: int
    ) -> bool:
        self.server.create_external_browser(player_id, browser_id, texture, url, scale)
        return True

    def append_to_object(self, player_id: int, browser_id: int, object_id: int) -> bool:
        self.server.append_to_object(player_id, browser_id, object_id)
        return True

    def remove_from_object(self, player_id: int, browser_id: int, object_id: int) -> bool:
        self.server.remove_from_object(player_id, browser_id, object_id)
        return True

    def toggle_dev_tools(self, player_id: int, browser_id: int, enabled: bool) -> bool:
        self.server.toggle_dev_tools(player_id, browser_id, enabled)
        return True

    def set_audio_settings(
        self,
        player_id: int,
        browser_id: int,
        max_distance: float,
        reference_distance: float,
    ) -> bool:
        self.server.set_audio_settings(
            player_id, browser_id, max_distance, reference_distance
        )
        return True

    def load_url(self, player_id: int, browser_id: int, url: str) -> bool:
        self.server.load_url(player_id, browser_id, url)
        return True

    # tick

    def process_tick(self) -> None:
        """Deliver pending server events to the scripts and report timeouts."""
        for event in self.server.poll_events():
            logger.debug("process_tick::%s", describe(event))
            match event:
                case EmitEventReceived(player_id=player_id, event=name, arguments=arguments):
                    subscription = self.events.get(name)
                    if subscription is not None:
                        amx, callback = subscription
                        if self._is_loaded(amx):
                            amx.exec_public(callback, player_id, arguments)
                case PlayerConnected(player_id=player_id):
                    if self._remove_from_await_list(player_id):
                        self._notify_connect(player_id, True)
                case BrowserCreatedEvent(
                    player_id=player_id, browser_id=browser_id, code=code
                ):
                    self._notify_browser_created(player_id, browser_id, code)
        self._notify_timeout()

    # helpers

    def _is_loaded(self, amx: Amx) -> bool:
        return any(loaded is amx for loaded in self.amx_list)

    def _notify_timeout(self) -> None:
        now = self._clock()
        expired = [
            player_id
            for player_id, started in self.await_connect.items()
            if now - started >= self._init_timeout
        ]
        for player_id in expired:
            self._notify_connect(player_id, False)
        for player_id in expired:
            removed = self._remove_from_await_list(player_id)
            logger.debug(
                "notify_timeout::remove_from_await_list(%s) %s", player_id, removed
            )

    def _notify_connect(self, player_id: int, success: bool) -> None:
        logger.debug("notify_connect(%s, %s)", player_id, success)
        for amx in list(self.amx_list):
            amx.exec_public("OnCefInitialize", player_id, success)

    def _notify_browser_created(self, player_id: int, browser_id: int, code: int) -> None:
        for amx in list(self.amx_list):
            amx.exec_public("OnCefBrowserCreated", player_id, browser_id, code)

    def _add_to_await_list(self, player_id: int) -> None:
        self.await_connect[player_id] = self._clock()

    def _remove_from_await_list(self, player_id: int) -> bool:
        return self.await_connect.pop(player_id, None) is not None