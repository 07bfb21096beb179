from threading import Lock
from typing import Iterable

class PlayerRegistry:
    """The set of service names currently owned by a media player.

    Every call takes the lock for its own duration only, so readers
    (the status server) never see half of a mutation made by the
    dispatcher thread. Enumeration order is insertion order.
    """

    def __init__(self, names: Iterable[str] = ()):
        self._lock = Lock()
        self._names: dict[str, None] = dict.fromkeys(names)

    # Discards everything and installs the given names, dropping duplicates
    def replace(self, names: Iterable[str]):
        new_names = dict.fromkeys(names)
        with self._lock:
            self._names = new_names

    # Returns True if the name was not registered before
    def insert(self, name: str) -> bool:
        with self._lock:
            if name in self._names:
                return False
            self._names[name] = None
            return True

    # Returns True if the name was registered
    def remove(self, name: str) -> bool:
        with self._lock:
            if name not in self._names:
                return False
            del self._names[name]
            return True

    def snapshot(self) -> list[str]:
        with self._lock:
            return list(self._names)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)

    def __repr__(self) -> str:
        return f"PlayerRegistry({self.snapshot()!r})"
