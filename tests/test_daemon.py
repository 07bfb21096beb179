"""Tests for the status server commands and the command line."""

import json
import pathlib
import socket
import threading

import pytest
from conftest import FakeDirectory, FakePropertyQuery, make_player

from playerwatch import daemon
from playerwatch.config import Config
from playerwatch.daemon import Client, Server, apply_config
from playerwatch.dispatcher import Dispatcher, OwnershipEvent
from playerwatch.metadata import MetadataFetcher

VLC = "org.mpris.MediaPlayer2.vlc"
SPOTIFY = "org.mpris.MediaPlayer2.spotify"


def get_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port: int = s.getsockname()[1]
        return port


@pytest.fixture
def server(tmp_path: pathlib.Path) -> Server:
    config = Config(str(tmp_path / "config.json"))
    config.load()
    dispatcher = Dispatcher(
        FakeDirectory([VLC, SPOTIFY]),
        MetadataFetcher(FakePropertyQuery({VLC: make_player()})),
    )
    dispatcher.record_callback = lambda name, record: None
    dispatcher.error_callback = lambda name, error: None
    dispatcher.start()
    return Server(config, dispatcher)


def test_players_command(server: Server) -> None:
    assert json.loads(server.handleCommand("players")) == [VLC, SPOTIFY]


def test_metadata_command_reports_errors_per_player(server: Server) -> None:
    result = json.loads(server.handleCommand("metadata"))
    assert result[VLC]["title"] == "So What"
    assert result[SPOTIFY]["error"] == "ConnectError"


def test_capabilities_command(server: Server) -> None:
    result = json.loads(server.handleCommand("capabilities"))
    assert result[VLC]["playback_status"] == "Playing"
    assert result[SPOTIFY]["error"] == "ConnectError"


def test_help_and_unknown_commands(server: Server) -> None:
    help_text = server.handleCommand("help")
    for command in ("players", "metadata", "capabilities", "reloadconfig"):
        assert command in help_text
    assert "not a valid command" in server.handleCommand("play")
    assert server.handleCommand("") == ""


def test_reloadconfig_applies_blacklist(server: Server) -> None:
    pathlib.Path(server.config.path).write_text(json.dumps({"source_blacklist": ["spotify"]}))
    assert "loaded successfully" in server.handleCommand("reloadconfig")
    assert server.dispatcher.source_blacklist == ["spotify"]
    assert not server.dispatcher.isPlayer(SPOTIFY)
    assert json.loads(server.handleCommand("players")) == [VLC]

    # A player excluded after it arrived still leaves the registry when it quits
    server.dispatcher.registry.insert(SPOTIFY)
    server.dispatcher.handleEvent(OwnershipEvent(SPOTIFY, ":1.42", ""))
    assert SPOTIFY not in server.dispatcher.registry.snapshot()


def test_reloadconfig_reports_settings_that_need_a_restart(server: Server, quiet_output) -> None:
    pathlib.Path(server.config.path).write_text(json.dumps({
        "name_prefix": "com.example.",
        "fetch_timeout": 1,
        "refetch_on_handoff": True,
    }))
    reply = server.handleCommand("reloadconfig")

    assert "name_prefix, fetch_timeout" in reply
    assert "refetch_on_handoff" not in reply
    assert server.dispatcher.name_prefix == "org.mpris.MediaPlayer2."
    assert server.dispatcher.refetch_on_handoff is True
    assert server.dispatcher.registry.snapshot() == [VLC, SPOTIFY]
    assert "WARNING: Restart" in "".join(quiet_output)


def test_apply_config(tmp_path: pathlib.Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"name_prefix": "com.example.", "refetch_on_handoff": True}))
    config = Config(str(path))
    config.load()
    dispatcher = Dispatcher(FakeDirectory(), MetadataFetcher(FakePropertyQuery()))
    apply_config(config, dispatcher)
    assert dispatcher.name_prefix == "com.example."
    assert dispatcher.refetch_on_handoff is True


def test_client_talks_to_a_listening_server(server: Server, tmp_path: pathlib.Path) -> None:
    port = get_free_port()
    pathlib.Path(server.config.path).write_text(json.dumps({"report_port": port}))
    server.config.load()

    stop = threading.Event()
    server.thread = threading.Thread(target=stop.wait)
    server.thread.start()
    listener = threading.Thread(target=server.listen)
    listener.start()

    client = Client(port)
    try:
        assert json.loads(client.call("players", True)) == [VLC, SPOTIFY]
        with pytest.raises(ValueError):
            client.call("volume", True)
    finally:
        client.close()
        stop.set()
        server.thread.join()
        listener.join(timeout=5)

    assert not listener.is_alive()


def test_main_prints_config_path(tmp_path: pathlib.Path, capsys: pytest.CaptureFixture) -> None:
    path = str(tmp_path / "custom.json")
    assert daemon.main(["config_path", "-c", path]) == 0
    assert capsys.readouterr().out.strip() == path


def test_main_prints_port(tmp_path: pathlib.Path, capsys: pytest.CaptureFixture) -> None:
    path = tmp_path / "custom.json"
    path.write_text(json.dumps({"report_port": 4123}))
    assert daemon.main(["port", "-c", str(path)]) == 0
    assert capsys.readouterr().out.strip() == "4123"


def test_main_rejects_broken_config(tmp_path: pathlib.Path) -> None:
    path = tmp_path / "custom.json"
    path.write_text("{")
    assert daemon.main(["port", "-c", str(path)]) == 1


def test_main_unknown_mode(tmp_path: pathlib.Path, quiet_output) -> None:
    assert daemon.main(["dance", "-c", str(tmp_path / "none.json")]) == 1
    assert "Unknown mode 'dance'" in "".join(quiet_output)


def test_main_quiet_flag(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:
    from playerwatch import utils

    monkeypatch.setattr(utils, "logging_enabled", True)
    daemon.main(["config_path", "-q"])
    assert utils.logging_enabled is False
