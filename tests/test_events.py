import dataclasses

import pytest

from sampcef.events import (
    BrowserCreatedEvent,
    EmitEventReceived,
    PlayerConnected,
    describe,
)


def test_describe_emit_event():
    event = EmitEventReceived(player_id=7, event="login", arguments="[1]")
    assert describe(event) == "EmitEvent(7) login"


def test_describe_player_connected():
    assert describe(PlayerConnected(3)) == "PlayerConnected(3)"


def test_describe_browser_created():
    event = BrowserCreatedEvent(player_id=4, browser_id=9, code=200)
    assert describe(event) == "BrowserCreated(4)"


def test_describe_rejects_other_objects():
    with pytest.raises(TypeError):
        describe("PlayerConnected(1)")


def test_events_compare_by_value():
    assert PlayerConnected(1) == PlayerConnected(1)
    assert BrowserCreatedEvent(1, 2, 3) == BrowserCreatedEvent(
        player_id=1, browser_id=2, code=3
    )
    assert EmitEventReceived(1, "a", "b") != EmitEventReceived(1, "a", "c")


def test_events_are_immutable():
    event = PlayerConnected(5)
    with pytest.raises(dataclasses.FrozenInstanceError):
        event.player_id = 6
    assert event.player_id == 5


def test_events_are_hashable():
    events = {PlayerConnected(1), PlayerConnected(1), PlayerConnected(2)}
    assert len(events) == 2