import socket
import time

from server.config import RelayConfig
from server.relay import RelayServer


def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    ''' Poll predicate until it is true or timeout passes '''
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def start_relay(**overrides) -> RelayServer:
    ''' Start a relay on a free loopback port '''
    config = RelayConfig(host="127.0.0.1", port=0, accept_poll=0.05, **overrides)
    server = RelayServer(config)
    server.start()
    return server


def dial(server: RelayServer, expected: int) -> socket.socket:
    ''' Connect a raw socket and wait until the relay has registered it '''
    sock = socket.create_connection(server.address, timeout=2)
    assert wait_until(lambda: len(server.registry) == expected)
    return sock


class FakeConn:
    ''' Stands in for server.state.Connection in broadcaster tests '''
    def __init__(self, name: str, fail: bool = False):
        self.endpoint = name
        self.fail = fail
        self.received = []
        self.closed = False
        self.send_calls = 0

    def send(self, data: bytes, timeout=None):
        self.send_calls += 1
        if self.fail:
            raise BrokenPipeError(f"{self.endpoint} went away")
        self.received.append(data)

    def close(self):
        self.closed = True


def record_puts(server: RelayServer) -> list:
    ''' Wrap server.queue.put so every queued Message is also appended to the returned list '''
    seen = []
    original = server.queue.put

    def record(m, timeout=None):
        seen.append(m)
        return original(m, timeout)

    server.queue.put = record
    return seen
