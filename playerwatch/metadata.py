import re
from typing import Any, Callable, NamedTuple

from playerwatch.errors import FetchError, MissingField, TypeMismatch

MPRIS_PATH = "/org/mpris/MediaPlayer2"
PLAYER_INTERFACE = "org.mpris.MediaPlayer2.Player"

TRACKID_KEY = "mpris:trackid"
ARTURL_KEY = "mpris:artUrl"
TITLE_KEY = "xesam:title"
ALBUM_KEY = "xesam:album"
ARTIST_KEY = "xesam:artist"

PLAYBACK_STATUSES = ("Playing", "Paused", "Stopped")

OBJECT_PATH_PATTERN = re.compile(r"^/$|^(/[A-Za-z0-9_]+)+$")

class PlayerRecord(NamedTuple):
    track_id: str
    art_url: str
    title: str
    album: str
    artists: tuple[str, ...]

    def to_json(self) -> dict:
        return {
            "trackid": self.track_id,
            "artUrl": self.art_url,
            "title": self.title,
            "album": self.album,
            "artist": list(self.artists),
        }

class PlayerCapabilities(NamedTuple):
    playback_status: str
    can_control: bool
    can_play: bool
    can_pause: bool
    can_go_next: bool
    can_go_previous: bool
    can_seek: bool

    def to_json(self) -> dict:
        return self._asdict()

# Each decoder returns the converted value or raises TypeMismatch for the given key

def decode_object_path(key: str, value: Any) -> str:
    if not isinstance(value, str) or not OBJECT_PATH_PATTERN.fullmatch(value):
        raise TypeMismatch(key)
    return value

def decode_string(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise TypeMismatch(key)
    return value

def decode_string_list(key: str, value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        raise TypeMismatch(key)
    for item in value:
        if not isinstance(item, str):
            raise TypeMismatch(key)
    return tuple(value)

def decode_bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeMismatch(key)
    return value

def decode_playback_status(key: str, value: Any) -> str:
    if value not in PLAYBACK_STATUSES:
        raise TypeMismatch(key)
    return value

METADATA_FIELDS: list[tuple[str, Callable[[str, Any], Any]]] = [
    (TRACKID_KEY, decode_object_path),
    (ARTURL_KEY, decode_string),
    (TITLE_KEY, decode_string),
    (ALBUM_KEY, decode_string),
    (ARTIST_KEY, decode_string_list),
]

CAPABILITY_FIELDS: list[tuple[str, Callable[[str, Any], Any]]] = [
    ("PlaybackStatus", decode_playback_status),
    ("CanControl", decode_bool),
    ("CanPlay", decode_bool),
    ("CanPause", decode_bool),
    ("CanGoNext", decode_bool),
    ("CanGoPrevious", decode_bool),
    ("CanSeek", decode_bool),
]

def decode_fields(properties: Any, fields: list[tuple[str, Callable[[str, Any], Any]]], container: str) -> list:
    """Decodes every field in order, stopping at the first bad one.

    Nothing is returned unless all fields convert, so a caller can never
    build a record with a defaulted value.
    """

    if not isinstance(properties, dict):
        raise TypeMismatch(container)

    values = []
    for key, decode in fields:
        if key not in properties:
            raise MissingField(key)
        values.append(decode(key, properties[key]))
    return values

def decode_metadata(metadata: Any) -> PlayerRecord:
    return PlayerRecord(*decode_fields(metadata, METADATA_FIELDS, "Metadata"))

def decode_capabilities(properties: Any) -> PlayerCapabilities:
    return PlayerCapabilities(*decode_fields(properties, CAPABILITY_FIELDS, PLAYER_INTERFACE))

class MetadataFetcher:
    """Reads the current track of one player straight from the bus.

    Nothing is cached: every call opens a fresh handle through the
    property query collaborator (see playerwatch.bus.PropertyQuery) and
    reads the live value. Failures are raised as FetchError subclasses
    carrying the service name. There are no retries.
    """

    def __init__(self, properties):
        self.properties = properties

    def fetch(self, service_name: str) -> PlayerRecord:
        try:
            handle = self.properties.open_scoped(service_name)
            metadata = self.properties.read_property(handle, PLAYER_INTERFACE, "Metadata")
            return decode_metadata(metadata)
        except FetchError as e:
            self._attribute(e, service_name)
            raise

    def fetch_capabilities(self, service_name: str) -> PlayerCapabilities:
        try:
            handle = self.properties.open_scoped(service_name)
            properties = self.properties.read_all_properties(handle, PLAYER_INTERFACE)
            return decode_capabilities(properties)
        except FetchError as e:
            self._attribute(e, service_name)
            raise

    @staticmethod
    def _attribute(error: FetchError, service_name: str):
        if error.service_name is None:
            error.service_name = service_name
