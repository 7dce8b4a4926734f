"""Send OOB requests and collect correlated replies on one UDP endpoint

a session owns one socket and a reader thread.  every request becomes a
PendingExchange keyed by (destination, command); the reader thread puts
each received datagram on the queue of the exchange(s) it belongs to and
the requesting thread blocks on that queue until a reply, a timeout or a
transport failure shows up.
"""

import dataclasses
import logging
import queue
import socket
import threading
from typing import NamedTuple

from infostring import Address
from jk_errors import FramingError, QueryError, QueryTimeout, TransportError
from jk_protocol import (DEFAULT_CHALLENGE, DEFAULT_PROTOCOL, DEFAULT_TIMEOUT,
                         MAX_DATAGRAM_SIZE, OOB_MARKER, RESPONSE_COMMANDS)
from oob_message import OOBMessage

log = logging.getLogger(__name__)

POLL_INTERVAL = 0.1

LISTENING = 'listening'
RELEASED = 'released'
TIMED_OUT = 'timed out'
FAILED = 'failed'


@dataclasses.dataclass(frozen=True)
class QueryOptions:
    """Per-query behaviour, immutable once built"""
    strict_mode: bool = True
    kill_on_first_response: bool = False
    retain_endpoint: bool = True
    challenge: str = DEFAULT_CHALLENGE
    protocol_version: int = DEFAULT_PROTOCOL
    timeout: float = DEFAULT_TIMEOUT

    def replace(self, **changes):
        """copy with some fields changed"""
        return dataclasses.replace(self, **changes)


class Reply(NamedTuple):
    """One datagram received on the session endpoint"""
    payload: bytes
    source: Address


def hexdump(data, width=16):
    """format bytes as offset / hex / ascii lines for debug logs"""
    lines = []
    for offset in range(0, len(data), width):
        row = data[offset:offset + width]
        text = ''.join(chr(b) if 0x20 <= b < 0x7f else '.' for b in row)
        lines.append(f'{offset:08x}  {row.hex(" "):<{width * 3}} |{text}|')
    return '\n'.join(lines)


def reply_command(payload):
    """command token of a datagram, None if it is not an OOB message"""
    try:
        return OOBMessage(payload).command()
    except FramingError:
        return None


class PendingExchange:
    """One outstanding request and the channel its replies arrive on"""

    def __init__(self, session, dest, message, options):
        self.session = session
        self.dest = dest
        self.message = message
        self.options = options
        self.command = message.split(b' ', 1)[0].decode('latin-1')
        self.expected = RESPONSE_COMMANDS.get(self.command)
        self.replies = queue.Queue()
        self.timer = None
        self.state = LISTENING

    @property
    def key(self):
        return (self.dest, self.command)

    @property
    def listening(self):
        return self.state == LISTENING

    def start_timer(self):
        """(re)start the deadline; caller holds the session lock"""
        if self.timer is not None:
            self.timer.cancel()
        timer = threading.Timer(self.options.timeout, self.session.expire,
                                args=(self, ))
        timer.daemon = True
        self.timer = timer
        timer.start()

    def cancel_timer(self, reason):
        if self.timer is not None:
            log.debug('clearing timer %s (reason: %s)', self, reason)
            self.timer.cancel()
            self.timer = None

    def reset_timer(self):
        """push the deadline back, e.g. while more datagrams are expected"""
        with self.session.lock:
            if self.listening:
                self.start_timer()

    def get(self):
        """block until the next reply; raises on timeout or socket failure"""
        item = self.replies.get()
        if isinstance(item, QueryError):
            raise item
        return item

    def release(self, reason='released'):
        """stop listening for replies to this request"""
        with self.session.lock:
            self.session.drop(self, RELEASED, reason)

    def __repr__(self):
        return f'<PendingExchange {self.command} to {self.dest} {self.state}>'


class QuerySession:
    """UDP endpoint shared by the round trips of one logical exchange"""

    def __init__(self, sock=None):
        if sock is None:
            try:
                sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            except OSError as exc:
                raise TransportError(f'cannot create socket: {exc}') from exc
        self.socket = sock
        self.socket.settimeout(POLL_INTERVAL)
        self.pending = {}
        self.lock = threading.Lock()
        self.closed = threading.Event()
        self.reader_thread = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def send(self, dest, message, options):
        """send message (without OOB marker) to dest, return its exchange"""
        if self.closed.is_set():
            raise TransportError('endpoint already closed')
        exchange = PendingExchange(self, dest, message, options)
        with self.lock:
            previous = self.pending.get(exchange.key)
            if previous is not None:
                self.drop(previous, FAILED, 'replaced by a new request',
                          QueryError(f'{previous.command} to {dest} was '
                                     'replaced by a newer request'))
            self.pending[exchange.key] = exchange
            exchange.start_timer()

        data = OOB_MARKER + message
        log.debug('sending msg to %s:\n%s', dest, hexdump(data))
        try:
            self.socket.sendto(data, dest)
        except OSError as exc:
            self.close('send failed')
            raise TransportError(f'send to {dest} failed: {exc}') from exc
        self.start_reader()
        return exchange

    def start_reader(self):
        if self.reader_thread is None:
            self.reader_thread = threading.Thread(target=self.receiver,
                                                  name='query-session-reader',
                                                  daemon=True)
            self.reader_thread.start()

    def receiver(self):
        log.debug('receiver starting')
        while not self.closed.is_set():
            try:
                (data, source) = self.socket.recvfrom(MAX_DATAGRAM_SIZE)
            except socket.timeout:
                continue
            except OSError as exc:
                if not self.closed.is_set():
                    log.debug('receive failed: %s', exc)
                    self.close('receive failed', exc)
                break
            self.dispatch(Reply(data, Address(source[0], source[1])))
        log.debug('receiver stopped')

    def correlate(self, reply):
        """exchanges a reply belongs to; caller holds the lock"""
        by_source = [e for e in self.pending.values()
                     if e.dest == reply.source]
        command = reply_command(reply.payload)
        if not by_source:
            # unknown sender: offered only where the command answers the
            # request, each operation then judges the provenance
            return [e for e in self.pending.values()
                    if e.expected == command]
        by_command = [e for e in by_source if e.expected == command]
        return by_command or by_source

    def dispatch(self, reply):
        log.debug('received msg from %s:\n%s', reply.source,
                  hexdump(reply.payload))
        release_endpoint = False
        with self.lock:
            targets = self.correlate(reply)
            if not targets:
                log.debug('no pending exchange for msg from %s', reply.source)
            for exchange in targets:
                # state changes before the waiting caller can wake up
                if exchange.options.kill_on_first_response:
                    self.drop(exchange, RELEASED, 'killed on first response')
                if not exchange.options.retain_endpoint:
                    self.drop(exchange, RELEASED, 'socket not retained')
                    release_endpoint = True
                exchange.replies.put(reply)
        if release_endpoint:
            self.close('socket not retained')

    def drop(self, exchange, state, reason, error=None):
        """stop an exchange; caller holds the lock"""
        if not exchange.listening:
            return
        exchange.state = state
        exchange.cancel_timer(reason)
        if self.pending.get(exchange.key) is exchange:
            del self.pending[exchange.key]
        if error is not None:
            exchange.replies.put(error)

    def expire(self, exchange):
        """timer callback"""
        with self.lock:
            if threading.current_thread() is not exchange.timer:
                # reset or cancelled while waiting for the lock
                return
            log.debug('timeout on %s', exchange)
            self.drop(exchange, TIMED_OUT, 'timeout')
            idle = not self.pending
        # endpoint goes first so the waiting caller never sees it open;
        # other exchanges keep it until they finish
        if idle:
            self.close('timeout')
        exchange.replies.put(QueryTimeout(
            f'no {exchange.expected or "reply"} from {exchange.dest} '
            f'within {exchange.options.timeout}s'))

    def close(self, reason='closed', cause=None):
        """release the endpoint; pending exchanges fail with TransportError"""
        with self.lock:
            if self.closed.is_set():
                return
            self.closed.set()
            for exchange in list(self.pending.values()):
                error = TransportError(f'endpoint closed ({reason})')
                error.__cause__ = cause
                self.drop(exchange, FAILED, reason, error)
        log.debug('destroying socket (reason: %s)', reason)
        self.socket.close()
        if (self.reader_thread is not None
                and self.reader_thread is not threading.current_thread()):
            self.reader_thread.join()

    def __repr__(self):
        state = 'closed' if self.closed.is_set() else 'open'
        return f'<QuerySession {state} pending={len(self.pending)}>'
