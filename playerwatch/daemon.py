#!/usr/bin/python3

from zmq import Context, REQ, REP, error
from concurrent.futures import ThreadPoolExecutor
from threading import Thread
from os import system
import json
import sys

from playerwatch import utils
from playerwatch.config import Config
from playerwatch.dispatcher import Dispatcher
from playerwatch.errors import ConfigError, DirectoryError, FetchError
from playerwatch.metadata import MetadataFetcher
from playerwatch.registry import PlayerRegistry

"""

Arguments:

0: Mode [watch (default), client, list, port, config_path]

Flags:
-q: Only print warnings and errors
-c <path>: Use the config file at <path>

"""

APP_NAME = "PlayerWatch"
CONNECTION_TIMEOUT = 1000
RESTART_KEYS = ("name_prefix", "fetch_timeout", "fetch_workers", "report_port", "bus_address")

class Server:

    config: Config = None
    dispatcher: Dispatcher = None
    thread: Thread = None

    def __init__(self, config: Config, dispatcher: Dispatcher):
        self.config = config
        self.dispatcher = dispatcher

    @property
    def port(self) -> int:
        return self.config["report_port"]

    # Runs the dispatcher on its own thread until the event stream ends
    def start(self, events):
        self.thread = Thread(target=self.dispatcher.run, args=(events,), name="dispatcher", daemon=True)
        self.thread.start()

    def isRunning(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def listen(self):

        context = Context()
        socket = context.socket(REP)
        socket.RCVTIMEO = CONNECTION_TIMEOUT

        try:
            socket.bind(f"tcp://127.0.0.1:{self.port}")
        except error.ZMQError:
            context.destroy()
            raise

        utils.log(f"Serving player status at 127.0.0.1:{self.port}")

        try:
            while self.thread is None or self.isRunning():
                try:
                    inp = socket.recv().decode("utf8").lower().strip()
                except error.Again:
                    continue

                socket.send_string(self.handleCommand(inp))

        except KeyboardInterrupt:
            print("")

        context.destroy()

    def handleCommand(self, inp: str) -> str:
        if inp in self.COMMANDS:
            return self.COMMANDS[inp](self)
        elif inp == "help":
            msg = "Available commands:\n"
            for command in self.COMMANDS:
                msg += f" - {command}\n"
            return msg.rstrip()
        elif inp != "":
            return utils.format_colour("red", f"'{inp}' is not a valid command")
        return ""

    def players(self) -> str:
        return json.dumps(self.dispatcher.registry.snapshot())

    # Reads every registered player fresh, failures are reported per player
    def _collect(self, read) -> str:
        ret = {}
        for name in self.dispatcher.registry.snapshot():
            try:
                ret[name] = read(name).to_json()
            except FetchError as e:
                ret[name] = {"error": e.__class__.__name__, "detail": e.describe()}
        return json.dumps(ret)

    def metadata(self) -> str:
        return self._collect(self.dispatcher.fetcher.fetch)

    def capabilities(self) -> str:
        return self._collect(self.dispatcher.fetcher.fetch_capabilities)

    def reloadConfig(self) -> str:
        msg = ""

        def callback(_msg: str):
            nonlocal msg
            msg = _msg

        previous = {key: self.config[key] for key in RESTART_KEYS}
        self.config.load(callback)
        apply_live_config(self.config, self.dispatcher)
        self.dispatcher.prune()

        changed = [key for key in RESTART_KEYS if self.config[key] != previous[key]]
        if changed:
            note = f"Restart {APP_NAME} to apply changes to: {', '.join(changed)}"
            utils.warn(note)
            msg += "\n" + utils.format_colour("yellow", note)
        return msg

    COMMANDS = {method.__name__.lower(): method for method in (players, metadata, capabilities, reloadConfig)}

class Client:

    def __init__(self, port: int):
        self.context = Context()
        self.socket = self.context.socket(REQ)
        self.socket.connect(f"tcp://127.0.0.1:{port}")
        self.socket.RCVTIMEO = CONNECTION_TIMEOUT

    def close(self):
        self.context.destroy(linger=0)

    def call(self, command: str, silent: bool) -> str | None:
        command = command.lower()

        if not command in Server.COMMANDS and command != "help":
            if silent:
                raise ValueError(command)
            utils.err(f"'{command}' is not a valid command")
            return None

        self.socket.send_string(command)

        try:
            response = self.socket.recv().decode()
        except error.Again as e:
            raise ConnectionError(f"{e} (timed out after {CONNECTION_TIMEOUT}ms)") from e

        if not silent and len(response) > 0:
            print(response)
        return response

    def runInteractive(self):
        try:
            while True:
                inp = input(" : ").lower().strip()
                if inp == "clear" or inp == "c":
                    system("clear")
                elif inp in Server.COMMANDS or inp == "help":
                    self.call(inp, False)
                elif inp != "":
                    utils.err(f"'{inp}' is not a valid command")
        except KeyboardInterrupt:
            print("")

def apply_config(config: Config, dispatcher: Dispatcher):
    dispatcher.name_prefix = config["name_prefix"]
    apply_live_config(config, dispatcher)

# Only these two take effect while running, the rest is read once at startup
def apply_live_config(config: Config, dispatcher: Dispatcher):
    dispatcher.source_blacklist = list(config["source_blacklist"])
    dispatcher.refetch_on_handoff = config["refetch_on_handoff"]

def build_dispatcher(config: Config, bus, executor=None) -> tuple:
    from playerwatch.bus import BusDirectory, PropertyQuery

    directory = BusDirectory(bus)
    fetcher = MetadataFetcher(PropertyQuery(bus, timeout=config["fetch_timeout"]))
    return directory, Dispatcher(directory, fetcher, PlayerRegistry(), executor)

def watch(config: Config) -> int:
    from playerwatch.bus import connect_bus

    executor = None
    if config["fetch_workers"] > 0:
        executor = ThreadPoolExecutor(max_workers=config["fetch_workers"], thread_name_prefix="fetch")

    directory = None
    try:
        bus = connect_bus(config["bus_address"])
        directory, dispatcher = build_dispatcher(config, bus, executor)
        server = Server(config, dispatcher)
        apply_config(config, dispatcher)

        # Subscribe before listing so nothing between the two is missed
        events = directory.subscribe_ownership_changes()
        dispatcher.start()
        server.start(events)
        server.listen()
    except DirectoryError as e:
        utils.err(e)
        return 1
    except error.ZMQError as e:
        utils.err(f"Could not serve on port {config['report_port']}: {e}")
        return 1
    finally:
        if directory is not None:
            directory.close()
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    utils.log(f"{APP_NAME} stopped")
    return 0

def list_players(config: Config) -> int:
    from playerwatch.bus import connect_bus

    try:
        bus = connect_bus(config["bus_address"])
        _, dispatcher = build_dispatcher(config, bus)
        apply_config(config, dispatcher)
        dispatcher.record_callback = lambda name, record: print(json.dumps({name: record.to_json()}))
        dispatcher.start()
    except DirectoryError as e:
        utils.err(e)
        return 1
    return 0

def main(args: list[str] | None = None) -> int:
    if args is None:
        args = sys.argv[1:]
    args = list(args)

    mode = "watch"
    config_path = None

    if len(args) > 0 and not args[0].startswith("-"):
        mode = args.pop(0).lower().strip()

    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "-q":
            utils.logging_enabled = False
        elif arg == "-c" and i + 1 < len(args):
            config_path = args.pop(i + 1)
        else:
            i += 1
            continue

        args.pop(i)

    config = Config(config_path)

    if mode == "config_path":
        print(config.path)
        return 0

    try:
        config.load()
    except ConfigError as e:
        utils.err(e)
        return 1

    if mode == "port":
        print(config["report_port"])
        return 0

    if mode == "watch":
        return watch(config)
    elif mode == "list":
        return list_players(config)
    elif mode == "client":
        client = Client(config["report_port"])
        try:
            if len(args) > 0:
                if args[0].lower() in Server.COMMANDS or args[0].lower() == "help":
                    client.call(args[0], False)
                    return 0
                utils.err(f"'{args[0]}' is not a valid command")
                return 1
            client.runInteractive()
        except ConnectionError as e:
            utils.err(e)
            return 1
        finally:
            client.close()
        return 0

    utils.err(f"Unknown mode '{mode}'\nAvailable modes:\n - watch (default)\n - client\n - list\n - port\n - config_path")
    return 1

if __name__ == "__main__":
    sys.exit(main())
