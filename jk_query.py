#!/usr/bin/env python3
"""Fetch server lists and server stats from Jedi Academy masters/servers

function names tell the direction of the traffic:
    get_servers             client -> master
    get_info, get_status    client -> server
"""

import logging
import re
import socket
from typing import NamedTuple

from infostring import Address, decode_address, decode_infostring
from jk_errors import (ChallengeMismatch, FramingError, ProvenanceMismatch,
                       QueryError, ResolutionError, UnexpectedCommand)
from jk_protocol import (DEFAULT_MASTER_PORT, DEFAULT_SERVER_PORT,
                         RESPONSE_COMMANDS, SENTINEL_DONE, SENTINEL_MORE,
                         SERVER_RECORD_SIZE, SERVER_RECORD_STRIDE)
from oob_message import OOBMessage
from query_session import RELEASED, QueryOptions, QuerySession

log = logging.getLogger(__name__)

# Score Ping "Name"
PLAYER_LINE_RE = re.compile(r'^(?P<score>-?\d+) (?P<ping>\d+) "(?P<name>.+)"$')

# dpmaster starts the server list with '\\',
# masterjk3.ravensoft.com with '\n', '\0'
HEADER_PADDING = b'\0\n\\'


class PlayerScore(NamedTuple):
    """One client line of a statusResponse"""
    score: int
    ping: int
    name: str


class ServerList:
    """Servers reported by a master"""

    def __init__(self, source, servers, advisories):
        self.source = source
        self.servers = servers
        self.advisories = advisories

    def __iter__(self):
        return iter(self.servers)

    def __len__(self):
        return len(self.servers)

    def __repr__(self):
        servers = ', '.join(str(s) for s in self.servers)
        return f'<ServerList source={self.source} servers=[{servers}]>'


class ServerInfo:
    """Data class for an infoResponse"""

    def __init__(self, source, info, advisories):
        self.source = source
        self.info = info
        self.advisories = advisories

    @property
    def hostname(self):
        return self.info.get('hostname', '')

    @property
    def map(self):
        return self.info.get('mapname', '')

    def __repr__(self):
        return f'<ServerInfo source={self.source}'\
               f' hostname="{self.hostname}" map="{self.map}"'\
               f' info={self.info}>'


class ServerStatus:
    """Data class for a statusResponse"""

    def __init__(self, source, status, players, advisories):
        self.source = source
        self.status = status
        self.players = players
        self.advisories = advisories

    def __repr__(self):
        players = ', '.join(f'"{p.name}"' for p in self.players)
        return f'<ServerStatus source={self.source}'\
               f' status={self.status} players=[{players}]>'


def parse_player(line):
    """PlayerScore for a 'score ping "name"' line, None if it is not one"""
    match = PLAYER_LINE_RE.match(line)
    if match is None:
        return None
    return PlayerScore(int(match['score']), int(match['ping']), match['name'])


class Query:
    """UDP query logic

    one Query owns one endpoint at a time; run concurrent queries on
    separate Query objects
    """

    def __init__(self, options=None, resolver=socket.gethostbyname,
                 session_factory=QuerySession):
        self.options = options or QueryOptions()
        self.resolver = resolver
        self.session_factory = session_factory
        self.session = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        """release the endpoint"""
        if self.session is not None:
            self.session.close()
            self.session = None

    def resolve(self, host):
        """hostname -> IPv4 literal"""
        if not host:
            raise ValueError('host must be specified')
        try:
            return self.resolver(host)
        except OSError as exc:
            raise ResolutionError(f'cannot resolve {host!r}: {exc}') from exc

    def make_options(self, options, **overrides):
        options = options or self.options
        changes = {k: v for k, v in overrides.items() if v is not None}
        return options.replace(**changes) if changes else options

    def current_session(self):
        if self.session is None or self.session.closed.is_set():
            self.session = self.session_factory()
        return self.session

    def run(self, dest, message, options, handler):
        """send message and let handler consume the replies"""
        session = self.current_session()
        exchange = session.send(dest, message, options)
        try:
            return handler(exchange)
        except QueryError:
            exchange.release('query failed')
            if options.strict_mode and not session.pending:
                session.close('query failed')
            raise
        finally:
            exchange.release()

    @staticmethod
    def advise(error, options, advisories):
        """raise in strict mode, otherwise log and record the problem"""
        if options.strict_mode:
            raise error
        log.warning('%s', error)
        advisories.append(str(error))

    def verify_source(self, reply, dest, options, advisories):
        if reply.source != dest:
            self.advise(ProvenanceMismatch(
                f'response came from {reply.source}, expected {dest}'),
                options, advisories)

    def get_servers(self, host, port=DEFAULT_MASTER_PORT, protocol=None,
                    options=None):
        """ask a master for the servers registered with it"""
        if not port:
            raise ValueError('port must be specified')
        options = self.make_options(options, protocol_version=protocol)
        dest = Address(self.resolve(host), port)
        message = f'getservers {options.protocol_version}'.encode()

        def handle(exchange):
            servers = []
            advisories = []
            while True:
                reply = exchange.get()
                self.verify_source(reply, dest, options, advisories)
                if self.parse_servers(reply, servers, options, advisories):
                    break
                if exchange.listening:
                    exchange.reset_timer()
                    continue
                if exchange.state != RELEASED:
                    # timed out or failed after this datagram arrived;
                    # the queued reply or error decides the outcome
                    continue
                log.debug('exchange released before %s, keeping %d servers',
                          SENTINEL_DONE, len(servers))
                break
            return ServerList(dest, servers, advisories)

        return self.run(dest, message, options, handle)

    def parse_servers(self, reply, servers, options, advisories):
        """append the servers of one getserversResponse

        returns True when this was the last datagram (EOT)
        """
        msg = OOBMessage(reply.payload)
        expected = RESPONSE_COMMANDS['getservers']
        command = msg.read_fixed(len(expected))
        if command != expected:
            self.advise(UnexpectedCommand(
                f'expected `{expected}`, got `{command}`'),
                options, advisories)

        # the last datagram ends with '\\EOT', earlier ones with '\\EOF';
        # dpmaster pads each one with '\0\0\0'
        end = len(reply.payload.rstrip(b'\0'))
        sentinel = reply.payload[end - 3:end].decode('latin-1')
        if end - 3 < msg.offset or sentinel not in (SENTINEL_MORE,
                                                    SENTINEL_DONE):
            raise FramingError(f'no {SENTINEL_DONE}/{SENTINEL_MORE} '
                               f'sentinel from {reply.source}')
        records_end = end - len(sentinel)

        # the head padding differs per master, what is left after it is a
        # whole number of [ip(x4), port(x2), '\\'] records
        record_len = SERVER_RECORD_SIZE + SERVER_RECORD_STRIDE
        padding = (records_end - msg.offset) % record_len
        skipped = 0
        while skipped < padding and msg.peek() in HEADER_PADDING:
            msg.skip()
            skipped += 1
        if skipped != padding:
            raise FramingError(f'unexpected byte {msg.peek()!r} after '
                               f'{command} at offset {msg.offset}')
        log.debug('skipped %d bytes from head (offset: %d)', skipped,
                  msg.offset)

        chunks = msg.split_fixed_stride(SERVER_RECORD_SIZE,
                                        SERVER_RECORD_STRIDE,
                                        (records_end - msg.offset) // record_len)
        servers.extend(decode_address(chunk) for chunk in chunks)

        log.debug('remaining bytes: %d', msg.remaining())
        line = msg.read_line().rstrip('\0')
        log.debug('sentinel: %s', line)
        return line == SENTINEL_DONE

    def get_info(self, host, port=DEFAULT_SERVER_PORT, challenge=None,
                 options=None):
        """request basic server game status (name, map, players)"""
        if not port:
            raise ValueError('port must be specified')
        options = self.make_options(options, challenge=challenge)
        dest = Address(self.resolve(host), port)
        message = f'getinfo {options.challenge}'.encode()

        def handle(exchange):
            advisories = []
            reply = exchange.get()
            (_, info) = self.parse_infostring_reply(
                reply, dest, 'getinfo', options, advisories)
            return ServerInfo(reply.source, info, advisories)

        return self.run(dest, message, options, handle)

    def get_status(self, host, port=DEFAULT_SERVER_PORT, challenge=None,
                   options=None):
        """request extended server game status (serverstatus, scores)"""
        if not port:
            raise ValueError('port must be specified')
        options = self.make_options(options, challenge=challenge)
        dest = Address(self.resolve(host), port)
        message = f'getstatus {options.challenge}'.encode()

        def handle(exchange):
            advisories = []
            reply = exchange.get()
            (msg, status) = self.parse_infostring_reply(
                reply, dest, 'getstatus', options, advisories)
            players = []
            while msg.remaining():
                player = parse_player(msg.read_line())
                if player is not None:
                    players.append(player)
            return ServerStatus(reply.source, status, players, advisories)

        return self.run(dest, message, options, handle)

    def parse_infostring_reply(self, reply, dest, request, options,
                               advisories):
        """check an info/statusResponse, return (message, infostring)"""
        self.verify_source(reply, dest, options, advisories)
        msg = OOBMessage(reply.payload)
        expected = RESPONSE_COMMANDS[request]
        command = msg.read_line()
        if command != expected:
            self.advise(UnexpectedCommand(
                f'expected `{expected}`, got `{command}`'),
                options, advisories)

        info = decode_infostring(msg.read_line())
        echoed = info.pop('challenge', None)
        if echoed != options.challenge:
            self.advise(ChallengeMismatch(
                f'challenge mismatch: sent `{options.challenge}`, '
                f'got `{echoed}`'), options, advisories)
        return (msg, info)

    def server_status(self, host, port=DEFAULT_SERVER_PORT, challenge=None):
        """getinfo, then getstatus to the same server

        some firewalls only pass the statusResponse once they have seen
        an infoResponse go out to us
        """
        ip = self.resolve(host)
        info = self.get_info(ip, port, challenge, self.options.replace(
            kill_on_first_response=True))
        status = self.get_status(ip, port, challenge, self.options.replace(
            kill_on_first_response=True, retain_endpoint=False))
        return (info, status)


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG)
    with Query() as q:
        print(q.get_servers('masterjk3.ravensoft.com'))
