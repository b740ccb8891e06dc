"""
Unit tests for the error taxonomy and driver error mapping.
"""

import psycopg
import pytest

from copy_client.errors import (
    ConfigurationError,
    ConnectivityError,
    CopySinkError,
    LoadTimeoutError,
    NotSupportedType,
    ReconciliationError,
    StreamFailure,
    map_db_error,
)


def test_hierarchy():
    assert issubclass(NotSupportedType, ConfigurationError)
    assert issubclass(LoadTimeoutError, TimeoutError)
    for cls in (ConfigurationError, ConnectivityError, LoadTimeoutError, StreamFailure):
        assert issubclass(cls, CopySinkError)


def test_reconciliation_error_carries_report():
    err = ReconciliationError("mismatch", report={"num_rejected_rows": 2})
    assert err.report == {"num_rejected_rows": 2}
    assert ReconciliationError("mismatch").report is None


@pytest.mark.parametrize(
    "error, expected",
    [
        (psycopg.OperationalError("server closed the connection"), ConnectivityError),
        (OSError("connection refused"), ConnectivityError),
        (psycopg.ProgrammingError("syntax error"), CopySinkError),
    ],
)
def test_map_db_error(error, expected):
    mapped = map_db_error(error)
    assert type(mapped) is expected
    assert str(error) in str(mapped)


def test_map_db_error_inside_copy():
    assert isinstance(map_db_error(psycopg.OperationalError("x"), in_copy=True), StreamFailure)


def test_map_db_error_passes_through_own_errors():
    err = StreamFailure("already mapped")
    assert map_db_error(err) is err
