"""Constants and lookup tables for the Q3 out-of-band protocol

protocol support based on:
    dpmaster, doc/techinfo.txt
    id software ftp, idstuff/quake3/docs/server.txt
"""

import os
from types import MappingProxyType

OOB_MARKER = b'\xff\xff\xff\xff'
OOB_MARKER_VALUE = 0xFFFFFFFF
OOB_MARKER_FMT = '<I'

PROTOCOL_STRINGS = MappingProxyType({
    'DarkPlaces': 'DP',
    'QuakeArena-1': 'Q3A',
    'Wolfenstein-1': 'RtCW',
    'EnemyTerritory-1': 'WoET',
})

PROTOCOL_NUMBERS = MappingProxyType({
    15: 'Jedi Outcast 1.02',
    16: 'Jedi Outcast 1.04',
    26: 'Jedi Academy 1.01',
})

# reply command expected for each request command
RESPONSE_COMMANDS = MappingProxyType({
    'getservers': 'getserversResponse',
    'getinfo': 'infoResponse',
    'getstatus': 'statusResponse',
})

# must not appear in infostring keys or values
BAD_CHARACTERS = frozenset('\\/;"%')

INFOSTRING_SEPARATOR = '\\'
ADDRESS_FMT = '>4BH'
SERVER_RECORD_SIZE = 6
SERVER_RECORD_STRIDE = 1
SENTINEL_MORE = 'EOF'
SENTINEL_DONE = 'EOT'


def env_setting(name, default, convert):
    """read a default from the environment, naming the variable on error"""
    value = os.environ.get(name, default)
    try:
        return convert(value)
    except ValueError:
        raise ValueError(f'{name} must be {convert.__name__}, '
                         f'got {value!r}') from None


DEFAULT_MASTER_PORT = 29060
DEFAULT_SERVER_PORT = 29070
DEFAULT_CHALLENGE = os.environ.get('JKUTILS_CHALLENGE', 'jkutils-query')
DEFAULT_PROTOCOL = env_setting('JKUTILS_PROTOCOL', '26', int)
DEFAULT_TIMEOUT = env_setting('JKUTILS_TIMEOUT', '2.5', float)

MAX_DATAGRAM_SIZE = 65535
