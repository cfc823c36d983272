# netsim

Tools for building and testing distributed systems inside a single Python
process:

- `netsim.rpc`: an in-process RPC network that can drop requests and replies,
  delay and reorder messages, and cut off hosts.
- `netsim.codec`: serialization for RPC payloads and persisted state, with
  warnings when a value would not survive the trip intact.
- `netsim.persister`: a thread-safe store for a node's state and snapshot.
- `netsim.checker`: a consistency checker for key/value stores with TTLs,
  for use while stress testing.
- `netsim.debug`: debug logging that can be switched on and off.

The package has no dependencies outside the standard library.

## Install

```
pip install .
```

The tests need the `test` extra:

```
pip install ".[test]"
pytest
```

## RPC over a simulated network

```python
from netsim.rpc import Network, RPCError, Server, Service

class Echo:
    def Shout(self, args):
        return args.upper()

with Network() as net:
    end = net.make_end("client-1")

    server = Server()
    server.add_service(Service(Echo()))
    net.add_server("server-1", server)

    net.connect("client-1", "server-1")
    net.enable("client-1", True)

    try:
        reply = end.call("Echo.Shout", "hello")   # "HELLO"
    except RPCError:
        ...  # the request or reply was lost, or the server is gone
```

- A `Service` wraps a receiver object. Its name is the receiver's class name,
  and every public method that takes exactly one argument (a plain method,
  `staticmethod` or `classmethod`) becomes a handler. `Service.method_names`
  lists them. A handler gets the decoded arguments and returns the reply.
- `ClientEnd.call("Service.method", args)` returns the decoded reply. It
  raises `RPCError` when no reply arrived: the end is disabled or not
  connected, the server was deleted, the network dropped the message, or
  the network has been cleaned up. An unknown service or method raises
  `DispatchError`; an exception raised by a handler is raised to the caller.
  Several calls may run at once on one end and may be delivered out of order.
- `Network.make_end(name)` creates an end that is disabled and unconnected;
  a name already in use raises `ValueError`. `connect`, `enable`,
  `add_server` and `delete_server` change the topology at any time. A call
  whose server is deleted while its handler is running fails.
- `Network.reliable(False)` adds short delays and drops about 10% of
  requests and 10% of replies. `long_reordering(True)` holds back many
  replies for 200 ms to a couple of seconds. `long_delays(True)` makes calls
  on unusable connections wait up to 7 seconds before failing, instead of
  up to 100 ms.
- `Network.cleanup()` (or leaving the `with` block) shuts the network down.
- `net.get_count(servername)` is the number of RPCs that server has
  dispatched (`KeyError` if there is no such server),
  `net.get_total_count()` the number of calls sent, and
  `net.get_total_bytes()` the encoded bytes of arguments sent and replies
  delivered. `Server.get_count()` gives a server's count directly.

Arguments and replies are copied through `netsim.codec`, so client and
server never share objects.

## Serialization

```python
from dataclasses import dataclass
from netsim.codec import dumps, loads

@dataclass
class Entry:
    Term: int = 0
    Command: object = None

data = dumps({"Term": 3, "Entries": [Entry(1, "x"), Entry(2, "y")]})
assert loads(data) == {"Term": 3, "Entries": [Entry(1, "x"), Entry(2, "y")]}
```

Values may be `None`, `bool`, `int`, `float`, `str`, `bytes`, lists, tuples,
sets, frozensets, dicts and dataclass instances built from these. Each value
is one length-prefixed frame. Anything else raises `CodecError`, as does a
malformed, truncated or unknown frame; `loads` also rejects trailing data.

- `Encoder(stream).encode(value)` writes a frame to a binary stream, and
  `Decoder(stream).decode(target=None)` reads the next one, raising
  `EOFError` when the stream is exhausted. `target` may be an expected type
  (checked), or a dataclass instance whose fields are overwritten in place
  and returned.
- Dataclasses are known by their qualified name once encoded in the
  process; `register(cls_or_instance)` and
  `register_name(name, cls_or_instance)` make them known in advance or
  under a chosen name.
- Dataclass fields whose names start with `_` are not transmitted. The codec
  prints a warning once per class that has such fields. Decoding into an
  instance that already holds non-default values also prints a warning
  (only the first time). `error_count()` is the number of such warnings so
  far.

## Persistence

```python
from netsim.persister import Persister

p = Persister()
p.save_state_and_snapshot(b"state", b"snap")
fresh = p.copy()
assert fresh.read_raft_state() == b"state"
assert fresh.snapshot_size() == 4
```

`save_raft_state`, `read_raft_state`, `raft_state_size`, `read_snapshot` and
`snapshot_size` round out the store. Everything is held in memory.

## Consistency checking

```python
import time
from netsim.checker import ConsistencyChecker, InconsistencyError

cc = ConsistencyChecker()          # check_correctness, check_ttl, ttl_check_buffer=0.010 s
ttl = 2.0

start = time.time()
version = cc.begin_write("k")
err = None                         # or the exception the write raised
end = time.time()
cc.complete_write("k", "v", err, version, start + ttl, end + ttl)

read_start = time.time()
read_version, pending = cc.begin_read("k")
try:
    cc.check_read_correct("k", "v", True, read_start, read_version, pending)
except InconsistencyError as exc:
    print(exc)
```

Times are seconds since the epoch, as from `time.time()`. A read is only
checked when no write to the key was pending and none finished while it ran;
`checks_run` counts the reads that were checked. `check_read_correct`
raises `InconsistencyError` for a value that was never written, one that was
overwritten, one that had certainly expired, or a missing value while an
unexpired one should exist. Writing the same value twice to one key raises
`DuplicateValueError`. With `check_correctness=False` every method does
nothing.

## Debug output

```python
from netsim.debug import set_debug, dprintf, dprintf_from_node

set_debug(True)
dprintf("connect(%d)", 2)
dprintf_from_node(1, "became leader in term %d", 4)
```

Messages go to the `netsim` logger, tagged with the caller's file and line.

## What this package does not include

netsim is test infrastructure only. It contains no consensus implementation,
no key/value server or client, no stress-testing command and no command-line
tools; you bring the system under test and drive it with these pieces.