import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pymssql
import pytest

import mssql_enum


def not_a_login(name):
    return pymssql.OperationalError(15007, f"'{name}' is not a valid login or you do not have permission.".encode())


class FakeCursor:
    def __init__(self, server):
        self.server = server
        self._row = None
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True

    def execute(self, sql, params=()):
        self.server.executed.append((sql, params))
        self._row = None
        if "SUSER_NAME" in sql:
            principal_id = params[0]
            if principal_id in self.server.probe_errors:
                raise self.server.probe_errors[principal_id]
            self._row = (self.server.principals.get(principal_id),)
        elif "sp_defaultdb" in sql:
            name = params[0]
            outcome = self.server.oracle[name] if name in self.server.oracle else not_a_login(name)
            if outcome is not None:
                raise outcome

    def fetchone(self):
        return self._row


class FakeConnection:
    def __init__(self, server):
        self.server = server
        server.open += 1

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def cursor(self):
        return FakeCursor(self.server)

    def close(self):
        self.server.open -= 1
        self.server.closed += 1


class FakeServer:
    """Stands in for pymssql.connect; principals map id -> SUSER_NAME result."""

    def __init__(self):
        self.principals = {}
        self.oracle = {}
        self.probe_errors = {}
        self.connect_errors = {}
        self.connects = []
        self.executed = []
        self.open = 0
        self.closed = 0

    def connect(self, **kwargs):
        attempt = len(self.connects)
        self.connects.append(kwargs)
        if attempt in self.connect_errors:
            raise self.connect_errors[attempt]
        return FakeConnection(self)

    def statements(self, keyword):
        return [params for sql, params in self.executed if keyword in sql]


class RecordingCache(mssql_enum.CredentialCache):
    def __init__(self):
        self.calls = []

    def register(self, target, user, password):
        self.calls.append(("register", target, user))

    def deregister(self, target):
        self.calls.append(("deregister", target))


@pytest.fixture
def server(monkeypatch):
    fake = FakeServer()
    monkeypatch.setattr(mssql_enum.pymssql, "connect", fake.connect)
    return fake


@pytest.fixture
def cache():
    return RecordingCache()


@pytest.fixture
def make_args():
    def _make(*extra):
        return mssql_enum.build_parser().parse_args(["-d", "sql01,1433"] + list(extra))
    return _make
