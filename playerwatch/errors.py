# Error taxonomy shared by the bus shim, the fetcher and the dispatcher

class PlayerWatchError(Exception):
    pass

class ConfigError(PlayerWatchError):
    pass

# The bus is unreachable or ListNames failed. Fatal at startup.
class DirectoryError(PlayerWatchError):
    pass

class FetchError(PlayerWatchError):
    """A single player could not be read. Never fatal to the watcher."""

    def __init__(self, service_name: str | None = None, detail: str = ""):
        self.service_name = service_name
        self.detail = detail
        super().__init__(self.describe())

    def describe(self) -> str:
        return self.detail or self.__class__.__name__

class ConnectError(FetchError):
    def describe(self) -> str:
        return f"could not connect to player ({self.detail})" if self.detail else "could not connect to player"

class PropertyError(FetchError):
    def describe(self) -> str:
        return f"property query failed ({self.detail})" if self.detail else "property query failed"

class FetchTimeout(FetchError):
    def describe(self) -> str:
        return f"timed out ({self.detail})" if self.detail else "timed out"

class FieldError(FetchError):

    def __init__(self, key: str, service_name: str | None = None):
        self.key = key
        super().__init__(service_name)

class MissingField(FieldError):
    def describe(self) -> str:
        return f"missing field '{self.key}'"

class TypeMismatch(FieldError):
    def describe(self) -> str:
        return f"unexpected type for field '{self.key}'"
