# pydbus side of the watcher: connection, name directory and property queries.
# This is the only module that touches gi, every GLib.Error is translated here.

from queue import Queue
from threading import Thread

from gi.repository import GLib, Gio
from pydbus import SessionBus, connect as DBusConnect

from playerwatch import utils
from playerwatch.dispatcher import OwnershipEvent
from playerwatch.errors import ConnectError, DirectoryError, FetchTimeout, PropertyError
from playerwatch.metadata import MPRIS_PATH

DBUS_SERVICE = "org.freedesktop.DBus"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

TIMEOUT_ERRORS = ("org.freedesktop.DBus.Error.NoReply", "org.freedesktop.DBus.Error.Timeout")

def connect_bus(address: str | None = None):
    try:
        if address:
            return DBusConnect(address)
        return SessionBus()
    except GLib.Error as e:
        raise DirectoryError(f"Could not connect to the bus: {e.message}") from e

def is_timeout(error: GLib.Error) -> bool:
    if error.matches(Gio.io_error_quark(), Gio.IOErrorEnum.TIMED_OUT):
        return True
    return Gio.DBusError.get_remote_error(error) in TIMEOUT_ERRORS

class OwnershipEvents:
    """Live sequence of NameOwnerChanged signals in delivery order.

    Signals arrive on the GLib loop thread and are queued, the consumer
    blocks in __next__ until one is available. Iteration ends once close()
    is called or the bus connection goes away. Not restartable.
    """

    _END = None

    def __init__(self):
        self._queue: Queue = Queue()
        self._closed = False

    def push(self, name: str, old_owner: str, new_owner: str):
        if not self._closed:
            self._queue.put(OwnershipEvent(name, old_owner, new_owner))

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._queue.put(self._END)

    def __iter__(self):
        return self

    def __next__(self) -> OwnershipEvent:
        event = self._queue.get()
        if event is self._END:
            # Stay exhausted for later calls
            self._queue.put(self._END)
            raise StopIteration
        return event

class BusDirectory:

    LOOP: GLib.MainLoop = None
    loop_thread: Thread = None

    def __init__(self, bus):
        self.bus = bus
        self._subscriptions = []
        self._streams: list[OwnershipEvents] = []
        self._closed_handler = None

    def _get_dbus(self):
        try:
            return self.bus.get(DBUS_SERVICE)
        except GLib.Error as e:
            raise DirectoryError(f"Could not reach {DBUS_SERVICE}: {e.message}") from e

    def list_names(self) -> list[str]:
        try:
            return list(self._get_dbus().ListNames())
        except GLib.Error as e:
            raise DirectoryError(f"ListNames failed: {e.message}") from e

    def subscribe_ownership_changes(self) -> OwnershipEvents:
        events = OwnershipEvents()

        subscription = self._get_dbus().NameOwnerChanged.connect(events.push)
        self._subscriptions.append(subscription)
        self._streams.append(events)

        if self._closed_handler is None:
            self._closed_handler = self.bus.con.connect("closed", self._onConnectionClosed)

        self.runLoopInThread()
        return events

    def runLoopInThread(self) -> Thread:
        if self.loop_thread is None:
            self.LOOP = GLib.MainLoop()
            self.loop_thread = Thread(target=self.LOOP.run, name="glib-loop", daemon=True)
            self.loop_thread.start()
        return self.loop_thread

    def _onConnectionClosed(self, connection, remote_peer_vanished: bool, error):
        utils.warn("Bus connection closed" + (f": {error.message}" if error is not None else ""))
        for events in self._streams:
            events.close()

    def close(self):
        for subscription in self._subscriptions:
            subscription.disconnect()
        self._subscriptions.clear()

        for events in self._streams:
            events.close()

        if self.LOOP is not None:
            self.LOOP.quit()
            self.loop_thread.join()
            self.LOOP = None
            self.loop_thread = None

class PropertyQuery:
    """Opens property handles on player objects and reads from them.

    Every bus round trip carries the given timeout in seconds. Expiry is
    raised as FetchTimeout, any other bus failure as ConnectError (while
    opening) or PropertyError (while reading).
    """

    def __init__(self, bus, timeout: float | None = None, path: str = MPRIS_PATH):
        self.bus = bus
        self.timeout = timeout
        self.path = path

    def open_scoped(self, service_name: str):
        try:
            proxy = self.bus.get(service_name, self.path, timeout=self.timeout)
        except GLib.Error as e:
            if is_timeout(e):
                raise FetchTimeout(service_name, e.message) from e
            raise ConnectError(service_name, e.message) from e

        try:
            return proxy[PROPERTIES_INTERFACE]
        except KeyError as e:
            raise ConnectError(service_name, f"{self.path} does not implement {PROPERTIES_INTERFACE}") from e

    def read_property(self, handle, interface: str, key: str):
        try:
            return handle.Get(interface, key, timeout=self.timeout)
        except GLib.Error as e:
            if is_timeout(e):
                raise FetchTimeout(detail=e.message) from e
            raise PropertyError(detail=e.message) from e

    def read_all_properties(self, handle, interface: str) -> dict:
        try:
            return handle.GetAll(interface, timeout=self.timeout)
        except GLib.Error as e:
            if is_timeout(e):
                raise FetchTimeout(detail=e.message) from e
            raise PropertyError(detail=e.message) from e
