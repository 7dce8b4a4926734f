import argparse

import pytest

import jkutils
from infostring import Address
from jk_errors import QueryTimeout
from jk_query import PlayerScore, ServerInfo, ServerList, ServerStatus


class StubQuery:
    """Query replacement answering from canned results"""

    calls = []
    fail = set()
    listing = []

    def __init__(self, options=None):
        self.options = options

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        pass

    def get_servers(self, host, port):
        self.calls.append(('getservers', host, port))
        if 'getservers' in self.fail:
            raise QueryTimeout('no getserversResponse')
        return ServerList(Address(host, port), self.listing, [])

    def server_status(self, host, port):
        self.calls.append(('serverstatus', host, port))
        if not port:
            raise ValueError('port must be specified')
        if (host, port) in self.fail:
            raise QueryTimeout(f'no infoResponse from {host}:{port}')
        source = Address(host, port)
        info = ServerInfo(source, {'hostname': '^1Temple'}, [])
        status = ServerStatus(source, {'mapname': 'mp/ffa1'},
                              [PlayerScore(3, 40, '^5Kyle')], [])
        return (info, status)


@pytest.fixture
def stub_query(monkeypatch):
    StubQuery.calls = []
    StubQuery.fail = set()
    StubQuery.listing = [Address('1.2.3.4', 29070),
                         Address('5.6.7.8', 29071)]
    monkeypatch.setattr(jkutils, 'Query', StubQuery)
    return StubQuery


def test_split_address():
    assert jkutils.split_address('master.example', 29060) == (
        'master.example', 29060)
    assert jkutils.split_address('1.2.3.4:1234', 29060) == ('1.2.3.4', 1234)
    with pytest.raises(argparse.ArgumentTypeError):
        jkutils.split_address('1.2.3.4:port', 29060)
    with pytest.raises(argparse.ArgumentTypeError):
        jkutils.split_address('1.2.3.4:70000', 29060)


def test_parser_defaults():
    args = jkutils.build_parser().parse_args(['getservers', 'master'])
    options = jkutils.options_from_args(args)
    assert options.strict_mode is True
    assert options.protocol_version == 26
    assert args.func is jkutils.do_getservers


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        jkutils.build_parser().parse_args([])


def test_getservers(stub_query, capsys):
    assert jkutils.main(['getservers', 'master.example']) == 0
    assert stub_query.calls == [('getservers', 'master.example', 29060)]
    out = capsys.readouterr().out
    assert '\t1.2.3.4:29070' in out
    assert '\t5.6.7.8:29071' in out


def test_getservers_failure(stub_query, capsys):
    stub_query.fail.add('getservers')
    assert jkutils.main(['getservers', 'master.example']) == 1
    assert 'no getserversResponse' in capsys.readouterr().out


def test_serverstatus(stub_query, capsys):
    assert jkutils.main(['--no-colours', 'serverstatus', '1.2.3.4']) == 0
    assert stub_query.calls == [('serverstatus', '1.2.3.4', 29070)]
    out = capsys.readouterr().out
    assert 'hostname: Temple' in out
    assert 'Kyle' in out
    assert '^5' not in out


def test_feed(stub_query, capsys):
    stub_query.fail.add(('5.6.7.8', 29071))
    assert jkutils.main(['feed', 'master.example:1234']) == 0
    assert ('getservers', 'master.example', 1234) in stub_query.calls
    assert ('serverstatus', '1.2.3.4', 29070) in stub_query.calls
    out = capsys.readouterr().out
    assert 'info: 1.2.3.4:29070' in out
    assert '5.6.7.8:29071: no infoResponse' in out


def test_bad_address(stub_query):
    with pytest.raises(SystemExit):
        jkutils.main(['serverstatus', '1.2.3.4:nope'])


def test_feed_skips_unusable_record(stub_query, capsys):
    stub_query.listing = [Address('10.0.0.2', 0), Address('10.0.0.2', 28046)]
    assert jkutils.main(['feed', '10.0.0.1']) == 0
    out = capsys.readouterr().out
    assert '10.0.0.2:0: port must be specified' in out
    assert 'info: 10.0.0.2:28046' in out
