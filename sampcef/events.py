"""Events the CEF server hands to the game-script side."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class EmitEventReceived:
    """A browser emitted ``event`` with its serialized ``arguments``."""

    player_id: int
    event: str
    arguments: str


@dataclass(frozen=True)
class PlayerConnected:
    """A player completed the join handshake."""

    player_id: int


@dataclass(frozen=True)
class BrowserCreatedEvent:
    """A player's browser finished loading with status ``code``."""

    player_id: int
    browser_id: int
    code: int


ServerEvent = Union[EmitEventReceived, PlayerConnected, BrowserCreatedEvent]


def describe(event: ServerEvent) -> str:
    """Return a short one-line description of ``event`` for logs."""
    match event:
        case EmitEventReceived(player_id=player_id, event=name):
            return f"EmitEvent({player_id}) {name}"
        case PlayerConnected(player_id=player_id):
            return f"PlayerConnected({player_id})"
        case BrowserCreatedEvent(player_id=player_id):
            return f"BrowserCreated({player_id})"
        case _:
            raise TypeError(f"not a server event: {event!r}")