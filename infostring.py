"""Encode and decode Q3 infostrings and packed server addresses"""

import re
import struct
from typing import NamedTuple

from jk_errors import FramingError
from jk_protocol import (ADDRESS_FMT, BAD_CHARACTERS, INFOSTRING_SEPARATOR,
                         SERVER_RECORD_SIZE)

COLOUR_CODE_RE = re.compile(r'\^[0-9]')


class Address(NamedTuple):
    """IPv4 address and port of a master or game server"""
    ip: str
    port: int

    def __str__(self):
        return f'{self.ip}:{self.port}'


def decode_infostring(text):
    """parse "\\k1\\v1\\k2\\v2" (leading separator optional) into a dict

    keys are lower-cased; a trailing key without a value is dropped
    """
    if text.startswith(INFOSTRING_SEPARATOR):
        text = text[1:]
    toks = text.split(INFOSTRING_SEPARATOR)
    pairs = {}
    for i in range(0, len(toks) - 1, 2):
        pairs[toks[i].lower()] = toks[i + 1]
    return pairs


def encode_infostring(pairs):
    """build "\\k1\\v1\\k2\\v2" from a mapping"""
    return ''.join(f'{INFOSTRING_SEPARATOR}{key}{INFOSTRING_SEPARATOR}{value}'
                   for key, value in pairs.items())


def encode_address(ip, port):
    """pack ip and port into the 6 byte getserversResponse form"""
    octets = ip.split('.')
    if len(octets) != 4 or not all(o.isdigit() for o in octets):
        raise ValueError(f'not a dotted quad: {ip!r}')
    octets = [int(o) for o in octets]
    if any(o > 255 for o in octets):
        raise ValueError(f'octet out of range: {ip!r}')
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f'port out of range: {port}')
    return struct.pack(ADDRESS_FMT, *octets, port)


def decode_address(chunk):
    """unpack 6 bytes into an Address"""
    if len(chunk) < SERVER_RECORD_SIZE:
        raise FramingError(f'server record too short: {len(chunk)} bytes')
    (*octets, port) = struct.unpack(ADDRESS_FMT, chunk[:SERVER_RECORD_SIZE])
    return Address('.'.join(str(o) for o in octets), port)


def strip_colours(text):
    """remove Q3 colour codes (^0 .. ^9)"""
    return COLOUR_CODE_RE.sub('', text)


def has_bad_characters(text):
    """True if text holds a character reserved by the protocol"""
    return any(c in BAD_CHARACTERS for c in text)
