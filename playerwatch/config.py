import json
from os.path import expanduser
from typing import Any, Callable

from playerwatch import utils
from playerwatch.errors import ConfigError

DEFAULTS: dict[str, Any] = {
    "name_prefix": "org.mpris.MediaPlayer2.",
    "source_blacklist": [],
    "fetch_timeout": 5.0,
    "fetch_workers": 4,
    "refetch_on_handoff": False,
    "report_port": 3000,
    "bus_address": None,
}

def get_config_path() -> str:
    return expanduser("~/.config/playerwatch-config.json")

def _check_type(key: str, value: Any):
    default = DEFAULTS[key]

    if key == "bus_address":
        ok = value is None or isinstance(value, str)
    elif key == "source_blacklist":
        ok = isinstance(value, list) and all(isinstance(item, str) for item in value)
    elif isinstance(default, bool):
        ok = isinstance(value, bool)
    elif isinstance(default, float):
        ok = isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0
    elif isinstance(default, int):
        ok = isinstance(value, int) and not isinstance(value, bool) and value >= 0
    else:
        ok = isinstance(value, type(default)) and len(value) > 0

    if not ok:
        raise ConfigError(f"Invalid value for '{key}': {value!r}")

def parse_config(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a JSON object")

    ret = dict(DEFAULTS)
    for key, value in data.items():
        if key not in DEFAULTS:
            raise ConfigError(f"Unknown config key '{key}'")
        _check_type(key, value)
        ret[key] = value

    ret["fetch_timeout"] = float(ret["fetch_timeout"])
    return ret

class Config:

    _values: dict[str, Any] = None
    path: str

    def __init__(self, path: str | None = None):
        self.path = path or get_config_path()

    def __getitem__(self, key: str) -> Any:
        if self._values is None:
            return DEFAULTS[key]
        return self._values[key]

    # A missing file means defaults. A broken file keeps the previous values when there are any.
    def load(self, message_callback: Callable = None):
        original = self._values
        try:
            try:
                f = open(self.path, "r")
            except FileNotFoundError:
                self._values = dict(DEFAULTS)
                if (message_callback):
                    message_callback(f"No config file at '{self.path}', using defaults")
                return

            with f:
                try:
                    data = json.loads(f.read())
                except json.JSONDecodeError as e:
                    raise ConfigError(f"Config file at '{self.path}' is not valid JSON: {e}") from e

            self._values = parse_config(data)
            if (message_callback):
                message_callback(f"Config file at '{self.path}' loaded successfully")
        except ConfigError as e:
            self._values = original
            if (message_callback):
                message_callback(utils.format_colour("red", str(e)))
            else:
                raise e
