#!/usr/bin/env python3
"""Command line access to Jedi Academy / Jedi Outcast masters and servers"""

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor

from infostring import strip_colours
from jk_errors import QueryError
from jk_protocol import (DEFAULT_CHALLENGE, DEFAULT_MASTER_PORT,
                         DEFAULT_PROTOCOL, DEFAULT_SERVER_PORT,
                         DEFAULT_TIMEOUT, PROTOCOL_NUMBERS)
from jk_query import Query
from query_session import QueryOptions

FEED_WORKERS = 16


def split_address(text, default_port):
    """'host[:port]' -> (host, port)"""
    (host, sep, port) = text.partition(':')
    if not sep:
        return (host, default_port)
    if not port.isdigit() or not 0 < int(port) <= 0xFFFF:
        raise argparse.ArgumentTypeError(f'bad port in {text!r}')
    return (host, int(port))


def options_from_args(args):
    return QueryOptions(strict_mode=not args.lenient,
                        challenge=args.challenge,
                        protocol_version=args.protocol,
                        timeout=args.timeout)


def clean(text, args):
    return strip_colours(text) if args.no_colours else text


def print_info(info, args):
    print(f'info: {info.source}')
    for (key, value) in info.info.items():
        print(f'\t{key}: {clean(value, args)}')


def print_status(status, args):
    print(f'status: {status.source}')
    for (key, value) in status.status.items():
        print(f'\t{key}: {clean(value, args)}')
    print(f'players: {len(status.players)}')
    for player in status.players:
        print(f'\t{player.score:>5} {player.ping:>4}  '
              f'{clean(player.name, args)}')


def do_getservers(args):
    (host, port) = split_address(args.address, DEFAULT_MASTER_PORT)
    game = PROTOCOL_NUMBERS.get(args.protocol, 'unknown game')
    print(f'getting servers from {host}:{port} (protocol {args.protocol}, '
          f'{game})')
    try:
        with Query(options_from_args(args)) as q:
            servers = q.get_servers(host, port)
    except QueryError as e:
        print(f'getservers error: {e}')
        return 1
    print('servers:')
    for server in servers:
        print(f'\t{server}')
    return 0


def do_serverstatus(args):
    (host, port) = split_address(args.address, DEFAULT_SERVER_PORT)
    print(f'getting serverstatus for {host}:{port}')
    try:
        with Query(options_from_args(args)) as q:
            (info, status) = q.server_status(host, port)
    except QueryError as e:
        print(f'serverstatus error: {e}')
        return 1
    print_info(info, args)
    print_status(status, args)
    return 0


def feed_one(server, options):
    with Query(options) as q:
        return q.server_status(server.ip, server.port)


def do_feed(args):
    """getservers, then getinfo + getstatus for every server listed"""
    (host, port) = split_address(args.address, DEFAULT_MASTER_PORT)
    options = options_from_args(args)
    print(f'getting servers from {host}:{port}')
    try:
        with Query(options) as q:
            servers = q.get_servers(host, port)
    except QueryError as e:
        print(f'getservers error: {e}')
        return 1

    with ThreadPoolExecutor(max_workers=FEED_WORKERS) as pool:
        futures = [(server, pool.submit(feed_one, server, options))
                   for server in servers]
        for (server, future) in futures:
            try:
                (info, status) = future.result()
            except (QueryError, ValueError) as e:
                print(f'{server}: {e}')
                continue
            print_info(info, args)
            print_status(status, args)
    return 0


def build_parser():
    p = argparse.ArgumentParser(prog='jkutils',
                                description='Query Q3 masters and servers.')
    p.add_argument('-v', '--verbose', action='store_true',
                   help='log datagrams and timers')
    p.add_argument('--protocol', type=int, default=DEFAULT_PROTOCOL,
                   help=f'protocol version (default: {DEFAULT_PROTOCOL})')
    p.add_argument('--challenge', default=DEFAULT_CHALLENGE)
    p.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT,
                   help='seconds to wait for a reply')
    p.add_argument('--lenient', action='store_true',
                   help='warn instead of failing on unexpected replies')
    p.add_argument('--no-colours', action='store_true',
                   help='strip ^N colour codes from names')
    sub = p.add_subparsers(dest='cmd', required=True)

    pg = sub.add_parser('getservers', help='list servers known to a master')
    pg.add_argument('address', help='master host[:port]')
    pg.set_defaults(func=do_getservers)

    ps = sub.add_parser('serverstatus', help='getinfo + getstatus a server')
    ps.add_argument('address', help='server host[:port]')
    ps.set_defaults(func=do_serverstatus)

    pf = sub.add_parser('feed', help='serverstatus every server of a master')
    pf.add_argument('address', help='master host[:port]')
    pf.set_defaults(func=do_feed)

    return p


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose
                        else logging.WARNING)
    try:
        return args.func(args)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))


if __name__ == '__main__':
    raise SystemExit(main())
