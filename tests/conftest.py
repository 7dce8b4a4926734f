import queue
import socket

import pytest

from jk_protocol import OOB_MARKER
from jk_query import Query
from query_session import QueryOptions, QuerySession

MASTER = ('10.0.0.1', 29060)
SERVER = ('10.0.0.2', 29070)
OTHER = ('10.0.0.3', 29070)


def oob(payload):
    return OOB_MARKER + payload


def request_args(data):
    """('getinfo', 'challenge') from a sent OOB request"""
    (command, _, args) = data[len(OOB_MARKER):].decode().partition(' ')
    return (command, args)


class FakeSocket:
    """In-memory stand-in for a UDP socket

    handler(data, address) returns the (payload, source) datagrams the
    peer answers with
    """

    def __init__(self, handler=None):
        self.handler = handler
        self.sent = []
        self.inbox = queue.Queue()
        self.timeout = None
        self.closed = False

    def settimeout(self, timeout):
        self.timeout = timeout

    def sendto(self, data, address):
        if self.closed:
            raise OSError(9, 'Bad file descriptor')
        self.sent.append((data, tuple(address)))
        if self.handler is not None:
            for (payload, source) in self.handler(data, tuple(address)) or ():
                self.deliver(payload, source)
        return len(data)

    def deliver(self, payload, source):
        self.inbox.put((payload, source))

    def recvfrom(self, bufsize):
        if self.closed:
            raise OSError(9, 'Bad file descriptor')
        try:
            return self.inbox.get(timeout=self.timeout)
        except queue.Empty:
            raise socket.timeout('timed out') from None

    def close(self):
        self.closed = True


@pytest.fixture
def fake_socket():
    return FakeSocket()


@pytest.fixture
def session(fake_socket):
    with QuerySession(fake_socket) as s:
        yield s


@pytest.fixture
def make_query():
    """build a Query whose sessions talk to FakeSockets driven by handler"""
    queries = []

    def factory(handler, **options):
        sockets = []

        def session_factory():
            sock = FakeSocket(handler)
            sockets.append(sock)
            return QuerySession(sock)

        options.setdefault('timeout', 0.3)
        q = Query(QueryOptions(**options), resolver=lambda host: host,
                  session_factory=session_factory)
        q.sockets = sockets
        queries.append(q)
        return q

    yield factory
    for q in queries:
        q.close()
