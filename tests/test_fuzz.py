"""Tests for the SUSER_NAME sweep and candidate filtering."""

import pymssql
import pytest

import mssql_enum
from mssql_enum import ConfigurationError, ProbeError


def sql_conn():
    return mssql_enum.build_descriptor("sql01", "sa", "pw")


@pytest.mark.parametrize("bound", [0, -1, -300, "5", 2.5, True, None])
def test_bad_bound_fails_before_connecting(server, bound):
    with pytest.raises(ConfigurationError):
        mssql_enum.fuzz(sql_conn(), bound)
    assert server.connects == []


def test_sweep_returns_one_entry_per_id_in_order(server):
    server.principals = {1: "alice", 3: "service##internal", 4: "bob"}
    raw = mssql_enum.fuzz(sql_conn(), 5)
    assert raw == ["alice", None, "service##internal", "bob", None]
    assert [params for params in server.statements("SUSER_NAME")] == [(i,) for i in range(1, 6)]


def test_sweep_uses_a_single_connection_and_closes_it(server):
    mssql_enum.fuzz(sql_conn(), 20)
    assert len(server.connects) == 1
    assert server.open == 0


def test_default_bound_is_300(server):
    raw = mssql_enum.fuzz(sql_conn())
    assert len(raw) == mssql_enum.DEFAULT_FUZZ_NUM == 300


def test_probe_ids_are_bound_as_integers(server):
    mssql_enum.fuzz(sql_conn(), 3)
    for sql, params in server.executed:
        assert "%d" in sql
        assert all(type(p) is int for p in params)


def test_probe_failure_aborts_sweep(server):
    server.probe_errors = {3: pymssql.OperationalError(4060, b"Cannot open database")}
    with pytest.raises(ProbeError, match="SUSER_NAME\\(3\\)"):
        mssql_enum.fuzz(sql_conn(), 10)
    assert len(server.statements("SUSER_NAME")) == 3
    assert server.open == 0


def test_probe_failure_can_be_skipped(server):
    server.principals = {1: "alice", 3: "bob"}
    server.probe_errors = {2: pymssql.OperationalError(4060, b"boom")}
    raw = mssql_enum.fuzz(sql_conn(), 3, skip_errors=True)
    assert raw == ["alice", None, "bob"]


def test_reduce_scenario():
    raw = ["alice", "", "service##internal", "bob", ""]
    assert mssql_enum.reduce(raw) == {"alice", "bob"}


def test_reduce_drops_none_blank_and_duplicates():
    raw = [None, "  ", "sa", "sa", "##MS_PolicyTsqlExecutionLogin##", "CORP\\jdoe"]
    assert mssql_enum.reduce(raw) == {"sa", "CORP\\jdoe"}


@pytest.mark.parametrize("raw", [
    [],
    [None, None],
    ["a", "b", "a", "##x##", ""],
    ["public", "sysadmin", "sa", "NT AUTHORITY\\SYSTEM"],
])
def test_reduce_is_idempotent(raw):
    once = mssql_enum.reduce(raw)
    assert mssql_enum.reduce(raw) == once
    assert mssql_enum.reduce(once) == once


def test_reduce_custom_marker():
    assert mssql_enum.reduce(["$sys", "app"], marker="$") == {"app"}
