"""Simulated RPC network that can lose, delay and reorder messages.

A :class:`Network` holds client end-points, servers and the connections
between them. Each :class:`ClientEnd` talks to at most one server. A
:class:`Server` is a collection of :class:`Service` objects sharing one
dispatcher, and a :class:`Service` exposes the public one-argument methods
of a receiver object as RPC handlers. Arguments and replies are copied
through the codec, so client and server never share references.

A handler receives the decoded arguments and returns the reply.
:meth:`ClientEnd.call` returns the decoded reply, or raises
:class:`RPCError` when no reply arrived because the request or reply was
lost, the end is disabled or unconnected, or the server was deleted.
"""

from __future__ import annotations

import inspect
import queue
import random
import threading
import time
import types
from dataclasses import dataclass
from typing import Any, Callable, Hashable

from netsim import codec

__all__ = [
    "ClientEnd",
    "DispatchError",
    "Network",
    "RPCError",
    "Server",
    "Service",
]

_POLL_INTERVAL = 0.1


class RPCError(ConnectionError):
    """No reply was received for an RPC."""


class DispatchError(LookupError):
    """The requested service or method does not exist on the server."""


@dataclass(frozen=True)
class _Outcome:
    payload: bytes | None = None
    error: BaseException | None = None


def _class_attribute(cls: type, name: str) -> Any:
    for klass in cls.__mro__:
        if name in klass.__dict__:
            return klass.__dict__[name]
    return None


def _takes_one_argument(func: types.FunctionType, bound_params: int) -> bool:
    code = func.__code__
    if code.co_flags & (inspect.CO_VARARGS | inspect.CO_VARKEYWORDS):
        return False
    if code.co_kwonlyargcount:
        return False
    return code.co_argcount == 1 + bound_params


def _is_handler(raw: Any) -> bool:
    if isinstance(raw, staticmethod):
        func = raw.__func__
        return isinstance(func, types.FunctionType) and _takes_one_argument(func, 0)
    if isinstance(raw, classmethod):
        func = raw.__func__
        return isinstance(func, types.FunctionType) and _takes_one_argument(func, 1)
    if isinstance(raw, types.FunctionType):
        return _takes_one_argument(raw, 1)
    return False


class Service:
    """An object whose public one-argument methods can be called via RPC."""

    def __init__(self, receiver: Any) -> None:
        self.receiver = receiver
        self.name = type(receiver).__name__
        self._methods: dict[str, Callable[[Any], Any]] = {}
        for attr in dir(type(receiver)):
            if attr.startswith("_"):
                continue
            raw = _class_attribute(type(receiver), attr)
            if _is_handler(raw):
                self._methods[attr] = getattr(receiver, attr)

    @property
    def method_names(self) -> list[str]:
        """Names of the methods that handle RPCs, sorted."""
        return sorted(self._methods)

    def _dispatch(self, method_name: str, svc_meth: str, payload: bytes) -> bytes:
        method = self._methods.get(method_name)
        if method is None:
            raise DispatchError(
                f"unknown method {method_name} in {svc_meth}; "
                f"expecting one of {self.method_names}"
            )
        args = codec.loads(payload)
        return codec.dumps(method(args))


class Server:
    """A collection of services sharing one RPC dispatcher."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._services: dict[str, Service] = {}
        self._count = 0

    def add_service(self, svc: Service) -> None:
        with self._lock:
            self._services[svc.name] = svc

    def get_count(self) -> int:
        """Number of incoming RPCs dispatched so far."""
        with self._lock:
            return self._count

    def _dispatch(self, svc_meth: str, payload: bytes) -> bytes:
        with self._lock:
            self._count += 1
            service_name, _, method_name = svc_meth.rpartition(".")
            service = self._services.get(service_name)
            choices = sorted(self._services)
        if service is None:
            raise DispatchError(
                f"unknown service {service_name} in {service_name}.{method_name}; "
                f"expecting one of {choices}"
            )
        return service._dispatch(method_name, svc_meth, payload)


class ClientEnd:
    """A client end-point that sends RPCs to the server it is connected to."""

    def __init__(self, network: Network, endname: Hashable) -> None:
        self._network = network
        self._endname = endname

    @property
    def endname(self) -> Hashable:
        return self._endname

    def call(self, svc_meth: str, args: Any) -> Any:
        """Send an RPC such as ``"Raft.append_entries"`` and wait for the reply.

        Returns the decoded reply; raises :class:`RPCError` if none arrived.
        Concurrent calls on one end are allowed and may be delivered out of order.
        """
        payload = codec.dumps(args)
        outcome = self._network._deliver(self._endname, svc_meth, payload)
        if outcome.error is not None:
            raise outcome.error
        if outcome.payload is None:
            raise RPCError(f"no reply for {svc_meth} from end {self._endname!r}")
        return codec.loads(outcome.payload)


class Network:
    """Holds client ends, servers and connections, and simulates delivery."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reliable = True
        self._long_delays = False
        self._long_reordering = False
        self._ends: dict[Hashable, ClientEnd] = {}
        self._enabled: dict[Hashable, bool] = {}
        self._servers: dict[Hashable, Server | None] = {}
        self._connections: dict[Hashable, Hashable] = {}
        self._done = threading.Event()
        self._stats_lock = threading.Lock()
        self._count = 0
        self._bytes = 0

    def __enter__(self) -> Network:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        """Shut the network down; later calls fail without being delivered."""
        self._done.set()

    def reliable(self, yes: bool) -> None:
        """False makes the network delay and drop messages."""
        with self._lock:
            self._reliable = bool(yes)

    def long_reordering(self, yes: bool) -> None:
        """True makes the network sometimes delay replies for a long time."""
        with self._lock:
            self._long_reordering = bool(yes)

    def long_delays(self, yes: bool) -> None:
        """True makes calls on disabled connections wait a long time before failing."""
        with self._lock:
            self._long_delays = bool(yes)

    def make_end(self, endname: Hashable) -> ClientEnd:
        """Create a disabled, unconnected client end with a unique name."""
        with self._lock:
            if endname in self._ends:
                raise ValueError(f"end {endname!r} already exists")
            end = ClientEnd(self, endname)
            self._ends[endname] = end
            self._enabled[endname] = False
            self._connections[endname] = None
            return end

    def add_server(self, servername: Hashable, server: Server) -> None:
        with self._lock:
            self._servers[servername] = server

    def delete_server(self, servername: Hashable) -> None:
        with self._lock:
            self._servers[servername] = None

    def connect(self, endname: Hashable, servername: Hashable) -> None:
        """Connect a client end to a server."""
        with self._lock:
            self._connections[endname] = servername

    def enable(self, endname: Hashable, enabled: bool) -> None:
        """Enable or disable a client end."""
        with self._lock:
            self._enabled[endname] = bool(enabled)

    def get_count(self, servername: Hashable) -> int:
        """A server's count of incoming RPCs."""
        with self._lock:
            server = self._servers.get(servername)
        if server is None:
            raise KeyError(servername)
        return server.get_count()

    def get_total_count(self) -> int:
        """Total number of RPCs sent over the network."""
        with self._stats_lock:
            return self._count

    def get_total_bytes(self) -> int:
        """Total bytes of arguments sent and replies delivered."""
        with self._stats_lock:
            return self._bytes

    def _add_bytes(self, n: int) -> None:
        with self._stats_lock:
            self._bytes += n

    def _endname_info(
        self, endname: Hashable
    ) -> tuple[bool, Hashable, Server | None, bool, bool, bool]:
        with self._lock:
            servername = self._connections.get(endname)
            server = self._servers.get(servername) if servername is not None else None
            return (
                self._enabled.get(endname, False),
                servername,
                server,
                self._reliable,
                self._long_reordering,
                self._long_delays,
            )

    def _is_server_dead(self, endname: Hashable, servername: Hashable, server: Server) -> bool:
        with self._lock:
            return not self._enabled.get(endname, False) or self._servers.get(servername) is not server

    def _deliver(self, endname: Hashable, svc_meth: str, payload: bytes) -> _Outcome:
        if self._done.is_set():
            return _Outcome()
        with self._stats_lock:
            self._count += 1
            self._bytes += len(payload)

        enabled, servername, server, reliable, reordering, long_delays = self._endname_info(endname)

        if not (enabled and servername is not None and server is not None):
            # Simulate no reply and an eventual timeout.
            ms = random.randrange(7000) if long_delays else random.randrange(100)
            self._done.wait(ms / 1000)
            return _Outcome()

        if not reliable:
            time.sleep(random.randrange(27) / 1000)
            if random.randrange(1000) < 100:
                return _Outcome()

        # Run the handler separately so a deleted server yields a failure
        # even while its handler is still running.
        results: queue.Queue[_Outcome] = queue.Queue()

        def run() -> None:
            try:
                results.put(_Outcome(payload=server._dispatch(svc_meth, payload)))
            except BaseException as exc:  # delivered to the caller
                results.put(_Outcome(error=exc))

        threading.Thread(target=run, daemon=True).start()

        outcome: _Outcome | None = None
        while outcome is None:
            try:
                outcome = results.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                if self._is_server_dead(endname, servername, server):
                    break

        # Never reply once the server has been deleted, even if the handler finished.
        if outcome is None or self._is_server_dead(endname, servername, server):
            return _Outcome()
        if outcome.error is not None:
            return outcome
        if not reliable and random.randrange(1000) < 100:
            return _Outcome()
        if reordering and random.randrange(900) < 600:
            ms = 200 + random.randrange(1 + random.randrange(2000))
            time.sleep(ms / 1000)
        self._add_bytes(len(outcome.payload or b""))
        return outcome