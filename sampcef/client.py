"""A game client known to the CEF server."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Hashable


class State(enum.IntEnum):
    """Connection state of a client."""

    CONNECTING = 0
    CONNECTED = 1


@dataclass
class Client:
    """A player connected over the browser channel.

    ``id`` is the in-game player id, ``peer`` the network peer identifier and
    ``addr`` the remote ``(host, port)`` address.
    """

    id: int
    peer: Hashable
    addr: tuple[str, int]
    state: State = State.CONNECTING

    def is_connected(self) -> bool:
        """Whether the client has completed the join handshake."""
        return self.state == State.CONNECTED