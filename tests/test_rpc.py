import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import pytest

from netsim.rpc import DispatchError, Network, RPCError, Server, Service


@dataclass
class JunkArgs:
    x: int = 0


@dataclass
class JunkReply:
    x: str = ""


class JunkServer:
    def __init__(self):
        self.lock = threading.Lock()
        self.log1 = []
        self.log2 = []
        self.release = threading.Event()

    def handler1(self, args):
        with self.lock:
            self.log1.append(args)
            return int(args)

    def handler2(self, args):
        with self.lock:
            self.log2.append(args)
            return f"handler2-{args}"

    def handler3(self, args):
        self.release.wait(20)
        return -args

    def handler4(self, args):
        assert isinstance(args, JunkArgs)
        return JunkReply("pointer")

    def handler6(self, args):
        return len(args)

    def handler7(self, args):
        return "y" * args

    def two_params(self, a, b):
        return a + b

    def _private(self, args):
        return args


@pytest.fixture
def net():
    network = Network()
    yield network
    network.cleanup()


def setup_server(net, servername, endname=None):
    js = JunkServer()
    rs = Server()
    rs.add_service(Service(js))
    net.add_server(servername, rs)
    end = None
    if endname is not None:
        end = net.make_end(endname)
        net.connect(endname, servername)
    return js, end


def test_basic(net):
    _, e = setup_server(net, "server99", "end1-99")
    net.enable("end1-99", True)
    assert e.call("JunkServer.handler2", 111) == "handler2-111"
    assert e.call("JunkServer.handler1", "9099") == 9099


def test_types(net):
    _, e = setup_server(net, "server99", "end1-99")
    net.enable("end1-99", True)
    reply = e.call("JunkServer.handler4", JunkArgs())
    assert reply == JunkReply("pointer")


def test_disconnect(net):
    js, e = setup_server(net, "server99", "end1-99")
    with pytest.raises(RPCError):
        e.call("JunkServer.handler2", 111)
    assert js.log2 == []
    net.enable("end1-99", True)
    assert e.call("JunkServer.handler1", "9099") == 9099


def test_counts(net):
    _, e = setup_server(net, 99, "end1-99")
    net.enable("end1-99", True)
    for i in range(17):
        assert e.call("JunkServer.handler2", i) == f"handler2-{i}"
    assert net.get_count(99) == 17
    assert net.get_total_count() == 17


def test_bytes(net):
    _, e = setup_server(net, 99, "end1-99")
    net.enable("end1-99", True)
    args = "x" * 71
    args = args + args
    args = args + args
    for _ in range(17):
        assert e.call("JunkServer.handler6", args) == len(args)
    n = net.get_total_bytes()
    assert 4828 <= n <= 6000

    for _ in range(17):
        assert len(e.call("JunkServer.handler7", 107)) == 107
    nn = net.get_total_bytes() - n
    assert 1800 <= nn <= 2500


def test_concurrent_many(net):
    setup_server(net, 1000)
    nclients, nrpcs = 20, 10
    results = [0] * nclients
    failures = []

    def client(i):
        e = net.make_end(i)
        net.connect(i, 1000)
        net.enable(i, True)
        for j in range(nrpcs):
            arg = i * 100 + j
            reply = e.call("JunkServer.handler2", arg)
            if reply != f"handler2-{arg}":
                failures.append(reply)
            results[i] += 1

    threads = [threading.Thread(target=client, args=(i,)) for i in range(nclients)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert failures == []
    assert sum(results) == nclients * nrpcs
    assert net.get_count(1000) == nclients * nrpcs


def test_concurrent_one(net):
    js, e = setup_server(net, 1000, "c")
    net.enable("c", True)
    nrpcs = 20
    replies = {}

    def client(i):
        arg = 100 + i
        replies[arg] = e.call("JunkServer.handler2", arg)

    threads = [threading.Thread(target=client, args=(i,)) for i in range(nrpcs)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert replies == {100 + i: f"handler2-{100 + i}" for i in range(nrpcs)}
    assert len(js.log2) == nrpcs
    assert net.get_count(1000) == nrpcs


def test_regression_delayed_disabled_calls_do_not_block(net):
    js, e = setup_server(net, 1000, "c")
    net.enable("c", False)
    nrpcs = 20
    outcomes = []

    def client(i):
        try:
            e.call("JunkServer.handler2", 100 + i)
            outcomes.append(True)
        except RPCError:
            outcomes.append(False)

    threads = [threading.Thread(target=client, args=(i,)) for i in range(nrpcs)]
    for t in threads:
        t.start()

    time.sleep(0.1)

    t0 = time.monotonic()
    net.enable("c", True)
    assert e.call("JunkServer.handler2", 99) == "handler2-99"
    assert time.monotonic() - t0 < 0.05

    for t in threads:
        t.join()

    assert outcomes == [False] * nrpcs
    assert js.log2 == [99]
    assert net.get_count(1000) == 1


def test_killed(net):
    js, e = setup_server(net, "server99", "end1-99")
    net.enable("end1-99", True)
    pool = ThreadPoolExecutor(max_workers=1)
    try:
        future = pool.submit(e.call, "JunkServer.handler3", 99)
        time.sleep(1.0)
        time.sleep(0.1)
        assert future.done() is False

        net.delete_server("server99")
        with pytest.raises(RPCError):
            future.result(timeout=0.5)
        with pytest.raises(RPCError):
            e.call("JunkServer.handler3", 1)
    finally:
        js.release.set()
        pool.shutdown(wait=False)


def test_cleanup_fails_later_calls():
    net = Network()
    js, e = setup_server(net, "s", "e")
    net.enable("e", True)
    assert e.call("JunkServer.handler2", 1) == "handler2-1"
    net.cleanup()
    with pytest.raises(RPCError):
        e.call("JunkServer.handler2", 2)
    assert js.log2 == [1]


def test_context_manager_cleans_up():
    with Network() as net:
        _, e = setup_server(net, "s", "e")
        net.enable("e", True)
        assert e.call("JunkServer.handler7", 3) == "yyy"
    with pytest.raises(RPCError):
        e.call("JunkServer.handler7", 3)


def test_duplicate_end_name_rejected(net):
    net.make_end("dup")
    with pytest.raises(ValueError):
        net.make_end("dup")


def test_unknown_service_raises(net):
    _, e = setup_server(net, "s", "e")
    net.enable("e", True)
    with pytest.raises(DispatchError, match="unknown service"):
        e.call("Nope.handler2", 1)


@pytest.mark.parametrize("method", ["missing", "_private", "two_params"])
def test_unknown_or_unsuitable_method_raises(net, method):
    _, e = setup_server(net, "s", "e")
    net.enable("e", True)
    with pytest.raises(DispatchError, match="unknown method"):
        e.call(f"JunkServer.{method}", 1)


def test_service_collects_handlers():
    svc = Service(JunkServer())
    assert svc.name == "JunkServer"
    assert svc.method_names == [
        "handler1",
        "handler2",
        "handler3",
        "handler4",
        "handler6",
        "handler7",
    ]


def test_get_count_of_deleted_server_raises(net):
    setup_server(net, "s")
    net.delete_server("s")
    with pytest.raises(KeyError):
        net.get_count("s")


def test_deleted_server_fails_calls(net):
    js, e = setup_server(net, "s", "e")
    net.enable("e", True)
    net.delete_server("s")
    with pytest.raises(RPCError):
        e.call("JunkServer.handler2", 5)
    assert js.log2 == []


def test_server_get_count():
    js = JunkServer()
    rs = Server()
    rs.add_service(Service(js))
    with Network() as net:
        net.add_server("s", rs)
        e = net.make_end("e")
        net.connect("e", "s")
        net.enable("e", True)
        for i in range(3):
            e.call("JunkServer.handler1", str(i))
    assert rs.get_count() == 3
    assert js.log1 == ["0", "1", "2"]


def test_many_sequential_calls(net):
    _, e = setup_server(net, "server99", "end1-99")
    net.enable("end1-99", True)
    replies = {e.call("JunkServer.handler2", 111) for _ in range(1000)}
    assert replies == {"handler2-111"}
    assert net.get_count("server99") == 1000