from concurrent.futures import Executor, Future
from enum import Enum
from typing import Callable, Iterable, NamedTuple

from playerwatch import utils
from playerwatch.errors import FetchError
from playerwatch.metadata import MetadataFetcher, PlayerRecord
from playerwatch.registry import PlayerRegistry

class OwnershipEvent(NamedTuple):
    name: str
    old_owner: str
    new_owner: str

class OwnerChange(Enum):
    ARRIVAL = "arrival"
    DEPARTURE = "departure"
    HANDOFF = "handoff"

# An empty owner means "none". A lost owner wins over a gained one.
def classify(old_owner: str, new_owner: str) -> OwnerChange:
    if not new_owner:
        return OwnerChange.DEPARTURE
    if not old_owner:
        return OwnerChange.ARRIVAL
    return OwnerChange.HANDOFF

class Dispatcher:
    """Keeps a PlayerRegistry in step with the bus.

    start() seeds the registry from the directory listing, run() then
    consumes ownership change events one at a time, in delivery order.
    Metadata fetches go to the executor when one is given (inline
    otherwise) and are only submitted after the registry mutation that
    triggered them. Fetch results go to record_callback/error_callback.
    """

    name_prefix: str = "org.mpris.MediaPlayer2."
    source_blacklist: list[str] = []
    refetch_on_handoff: bool = False

    record_callback: Callable[[str, PlayerRecord], None] | None = None
    error_callback: Callable[[str, FetchError], None] | None = None

    def __init__(self, directory, fetcher: MetadataFetcher, registry: PlayerRegistry | None = None, executor: Executor | None = None):
        self.directory = directory
        self.fetcher = fetcher
        self.registry = registry if registry is not None else PlayerRegistry()
        self.executor = executor

    def isPlayer(self, name: str) -> bool:
        if not name.startswith(self.name_prefix):
            return False
        player_id = name[len(self.name_prefix):]
        if len(player_id.strip()) == 0:
            return False
        return not utils.match_any(player_id, self.source_blacklist)

    # DirectoryError propagates, the watcher cannot work without an initial listing
    def start(self) -> list[Future]:
        names = [name for name in self.directory.list_names() if self.isPlayer(name)]
        self.registry.replace(names)
        utils.log(f"Found {len(names)} player(s): {', '.join(names) if names else 'none'}")

        return [self.submitFetch(name) for name in names]

    def run(self, events: Iterable[OwnershipEvent] | None = None):
        if events is None:
            events = self.directory.subscribe_ownership_changes()

        for event in events:
            self.handleEvent(event)

        utils.log("Ownership change stream ended")

    def handleEvent(self, event: OwnershipEvent) -> Future | None:
        name, old_owner, new_owner = event
        change = classify(old_owner, new_owner)

        # A registered name always gets its departure, even if the filter changed since it arrived
        if not self.isPlayer(name) and not (change is OwnerChange.DEPARTURE and name in self.registry):
            return None

        match change:
            case OwnerChange.DEPARTURE:
                if self.registry.remove(name):
                    utils.info(f"{name} is removed")
                return None

            case OwnerChange.ARRIVAL:
                if self.registry.insert(name):
                    utils.info(f"{name} is added")
                return self.submitFetch(name)

            case OwnerChange.HANDOFF:
                utils.info(f"{name} changed owner {old_owner} -> {new_owner}")
                if self.refetch_on_handoff and name in self.registry:
                    return self.submitFetch(name)
                return None

    # Removes registered names the current filter no longer accepts
    def prune(self) -> list[str]:
        removed = []
        for name in self.registry.snapshot():
            if not self.isPlayer(name) and self.registry.remove(name):
                utils.info(f"{name} is removed (filtered out)")
                removed.append(name)
        return removed

    def submitFetch(self, name: str) -> Future:
        if self.executor is not None:
            future = self.executor.submit(self.fetchAndReport, name)
        else:
            future = Future()
            try:
                future.set_result(self.fetchAndReport(name))
            except Exception as e:
                future.set_exception(e)

        future.add_done_callback(lambda done: self._reportUnexpected(name, done))
        return future

    # Anything other than a FetchError ends up here, one broken player must not stop the others
    def _reportUnexpected(self, name: str, future: Future):
        if future.cancelled():
            return
        e = future.exception()
        if e is not None:
            utils.err(f"{name}: unexpected {e.__class__.__name__} while fetching: {e}")

    # Returns the record, or the error when the fetch failed. Never raises FetchError.
    def fetchAndReport(self, name: str) -> PlayerRecord | FetchError:
        try:
            record = self.fetcher.fetch(name)
        except FetchError as e:
            if self.error_callback:
                self.error_callback(name, e)
            else:
                utils.err(f"{name}: {e.describe()}")
            return e

        if self.record_callback:
            self.record_callback(name, record)
        else:
            utils.info(f"{name}: {record}")
        return record
