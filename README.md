# sampcef

The server half of an in-game browser bridge. A game server tells the
clients of connected players to open, hide, focus, load or destroy embedded
browsers, and receives the events that pages emit back.

## What is inside

- `sampcef.wire` – protocol-buffer wire primitives: `encode_varint`,
  `decode_varint`, `encode_key`, the `WireType` enum, and `iter_fields` for
  walking an encoded message. Malformed input raises `DecodeError`.
- `sampcef.packets` – every message exchanged with clients (`RequestJoin`,
  `JoinResponse`, `CreateBrowser`, `DestroyBrowser`, `HideBrowser`,
  `FocusBrowser`, `AlwaysListenKeys`, `EmitEvent`, `EventValue`,
  `BrowserCreated`, `Got`, `OpenConnection`, `CreateExternalBrowser`,
  `AppendToObject`, `RemoveFromObject`, `ToggleDevTools`,
  `SetAudioSettings`, `LoadUrl`). Each has `encode()`, which writes a
  length-prefixed message, and the class method `decode()`. The `Packet`
  envelope carries an encoded message and its `PacketId`;
  `PacketId.from_int` and `PacketId.from_name` fall back to
  `OPEN_CONNECTION` for unknown values. `to_packet(message)` wraps a
  message and `try_into_packet(message)` returns the bytes to send.
- `sampcef.tls` – `make_self_signed(hostname)` builds a server
  `ssl.SSLContext` with a freshly generated self-signed certificate
  (default host name `samp.cef`); `make_insecure_client()` builds a client
  context that accepts any certificate.
- `sampcef.network` – `Socket`, a message transport over TLS streams with a
  4-byte big-endian length in front of every message (messages over 10 MiB
  are discarded). `Socket.new_server(addr)` listens, `Socket.new_client(addr)`
  connects out with `connect(addr)`. `recv()` returns a `Connected`,
  `Message`, `Disconnect` or `ConnectionError` event, or `None` when nothing
  is pending. `send_message`, `disconnect`, `local_address` and `close`
  (also usable as a context manager) complete it. I/O runs on a background
  thread.
- `sampcef.client` – `Client` (player id, peer, address, `State`) with
  `is_connected()`.
- `sampcef.events` – the events handed to the game side:
  `EmitEventReceived`, `PlayerConnected`, `BrowserCreatedEvent`, and
  `describe(event)` for log lines.
- `sampcef.server` – `Server`, which records the address each player may
  connect from, accepts one connection per player, answers join requests,
  and turns client packets into events. `Server.start(addr)` binds a socket
  and runs the network loop on a thread; a bare `Server()` holds state only,
  with `drain_outgoing()` and `poll_events()` to inspect what it would send
  and report.
- `sampcef.plugin` – `CefPlugin`, the script-facing layer: one method per
  native call (`create_browser`, `emit_event`, `subscribe`,
  `player_has_plugin`, …) and `process_tick()`, which delivers pending
  events and reports players that did not finish connecting within five
  seconds.
- `sampcef.config` – `parse_config_field(field, convert, path)` reads the
  second word of the first line starting with `field` in `server.cfg`;
  `handle_result(func, *args)` calls a function and logs instead of raising.

## Installing

    pip install .

## Sketch

    from sampcef.plugin import CefPlugin

    class Script:
        def exec_public(self, name, *args):
            print(name, args)

    plugin = CefPlugin.from_config("server.cfg")
    plugin.on_load()
    plugin.on_amx_load(Script())
    plugin.on_player_connect(0, "127.0.0.1")
    plugin.create_browser(0, 1, "http://localhost/ui.html", False, True)
    plugin.emit_event(0, "greet", 0, "hello", 1, 42, 2, 1.5)

    # call on every server tick
    plugin.process_tick()

    plugin.close()

The listening port is the `port` value from `server.cfg` plus two
(`7777` when absent), bound on the `bind` address (`0.0.0.0` when absent)
unless `host` is given. `emit_event` takes `(type, value)` pairs whose type
is an `ArgType`: `0` string, `1` integer, `2` float. Scripts are notified
through their `exec_public` method with `OnCefInitialize(player_id,
success)`, `OnCefBrowserCreated(player_id, browser_id, code)`, and the
callbacks registered with `subscribe`.

## What it does not do

The package is only the server side. It has no browser, no in-game client
and no renderer, and it does not load itself into a game server: the host
must call the `CefPlugin` methods and supply script objects that have an
`exec_public` method.

## Tests

    pip install .[test]
    pytest