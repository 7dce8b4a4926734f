"""Errors raised while talking to Q3 masters and servers"""


class QueryError(Exception):
    """Base class for every query failure"""


class FramingError(QueryError):
    """Malformed datagram: bad marker, truncated read or bad sentinel"""


class ProvenanceMismatch(QueryError):
    """Reply came from an address other than the one queried"""


class ChallengeMismatch(QueryError):
    """Reply did not echo the challenge that was sent"""


class UnexpectedCommand(QueryError):
    """Reply command is not the one the request asks for"""


class QueryTimeout(QueryError):
    """No correlated reply before the deadline"""


class TransportError(QueryError):
    """Socket failure while binding, sending or receiving"""


class ResolutionError(QueryError):
    """Hostname could not be resolved to an IPv4 address"""
