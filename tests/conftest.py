"""Fakes standing in for the pydbus collaborators."""

import pytest

from playerwatch import utils
from playerwatch.errors import ConnectError, DirectoryError, PropertyError
from playerwatch.metadata import PLAYER_INTERFACE


def make_metadata(overrides: dict | None = None, drop: tuple = ()) -> dict:
    """Build a complete metadata map, then apply overrides and drop keys."""
    metadata = {
        "mpris:trackid": "/org/mpris/MediaPlayer2/Track/1",
        "mpris:artUrl": "file:///tmp/cover.png",
        "xesam:title": "So What",
        "xesam:album": "Kind of Blue",
        "xesam:artist": ["Miles Davis", "John Coltrane"],
        "mpris:length": 562000000,
    }
    metadata.update(overrides or {})
    for key in drop:
        del metadata[key]
    return metadata


def make_player(metadata: dict | None = None, **overrides) -> dict:
    """All player interface properties of one fake player."""
    properties = {
        "PlaybackStatus": "Playing",
        "CanControl": True,
        "CanPlay": True,
        "CanPause": True,
        "CanGoNext": True,
        "CanGoPrevious": False,
        "CanSeek": True,
        "Metadata": make_metadata() if metadata is None else metadata,
    }
    properties.update(overrides)
    return properties


class FakePropertyQuery:
    """Serves properties from a dict keyed by service name.

    A value that is an exception instance is raised when read.
    """

    def __init__(self, players: dict | None = None):
        self.players = players if players is not None else {}
        self.opened: list[str] = []

    def open_scoped(self, service_name: str):
        self.opened.append(service_name)
        if service_name not in self.players:
            raise ConnectError(service_name, "name has no owner")
        return service_name

    def _get(self, handle):
        value = self.players[handle]
        if isinstance(value, Exception):
            raise value
        return value

    def read_property(self, handle, interface: str, key: str):
        assert interface == PLAYER_INTERFACE
        value = self._get(handle)
        if key not in value:
            raise PropertyError(detail=f"no property {key}")
        return value[key]

    def read_all_properties(self, handle, interface: str) -> dict:
        assert interface == PLAYER_INTERFACE
        return self._get(handle)


class FakeDirectory:
    def __init__(self, names=(), events=(), fail: bool = False):
        self.names = list(names)
        self.events = list(events)
        self.fail = fail

    def list_names(self) -> list[str]:
        if self.fail:
            raise DirectoryError("bus unreachable")
        return list(self.names)

    def subscribe_ownership_changes(self):
        return iter(self.events)


@pytest.fixture(autouse=True)
def quiet_output(monkeypatch):
    """Keep coloured output out of test logs and reset global switches."""
    monkeypatch.setattr(utils, "logging_enabled", False)
    lines: list[str] = []

    class Recorder:
        def write(self, text):
            lines.append(text)

        def flush(self):
            pass

    monkeypatch.setattr(utils, "out", Recorder())
    return lines
