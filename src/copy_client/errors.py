"""
Custom exceptions for the COPY stream loader.

One taxonomy shared by the warehouse client and the worker pool so callers can
tell configuration mistakes from runtime failures.
"""


class CopySinkError(Exception):
    """Base error for the loader."""

    pass


class ConfigurationError(CopySinkError):
    """Invalid or missing option; raised before any network I/O."""

    pass


class NotSupportedType(ConfigurationError):
    """Logical column type with no warehouse SQL type."""

    pass


class ConnectivityError(CopySinkError):
    """Warehouse cannot be reached or the connection dropped."""

    pass


class LoadTimeoutError(CopySinkError, TimeoutError):
    """Enqueue, dequeue, write or finish deadline exceeded."""

    pass


class StreamFailure(CopySinkError):
    """Warehouse rejected or dropped a load stream."""

    pass


class PoolAbortedError(CopySinkError):
    """Operation attempted on a pool that has been aborted."""

    pass


class ReconciliationError(CopySinkError):
    """Row count in the target table does not match the rows sent."""

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report


def map_db_error(e: Exception, *, in_copy: bool = False) -> CopySinkError:
    import psycopg

    if isinstance(e, CopySinkError):
        return e
    if in_copy:
        return StreamFailure(str(e))
    if isinstance(e, (psycopg.OperationalError, OSError)):
        return ConnectivityError(str(e))
    return CopySinkError(str(e))
