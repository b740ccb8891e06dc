"""
Data models shared by the warehouse client and the loader.

Schema/column descriptions are pydantic models so they can be read straight from
JSON job files; record batches are plain frozen dataclasses because their rows are
opaque to everything except the row encoder.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Sized

from pydantic import BaseModel, ConfigDict, field_validator


class ColumnType(str, Enum):
    """Logical column types produced by the upstream pipeline."""

    BOOLEAN = "boolean"
    LONG = "long"
    DOUBLE = "double"
    STRING = "string"
    TIMESTAMP = "timestamp"


class Column(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str

    @field_validator("type")
    def _lower(cls, v):
        v = v.lower()
        # 64-bit integers are called "long" upstream
        return "long" if v == "integer" else v


class Schema(BaseModel):
    """Ordered column list of the records being loaded."""

    model_config = ConfigDict(frozen=True)

    columns: tuple[Column, ...]

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def types(self) -> list[str]:
        return [c.type for c in self.columns]

    @classmethod
    def of(cls, *pairs: tuple[str, str]) -> "Schema":
        return cls(columns=tuple(Column(name=n, type=t) for n, t in pairs))


class ColumnOption(BaseModel):
    """Per-column override from the job's column_options."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: Optional[str] = None


@dataclass(frozen=True)
class RecordBatch:
    """Immutable chunk of rows from one upstream partition.

    ``rows`` is a sequence of row sequences (in schema order), mappings keyed by
    column name, or pre-rendered text lines when the job uses ``csv_payload``.
    """

    partition_index: int
    rows: Iterable[Any]
    approx_row_count: Optional[int] = None

    @property
    def row_count(self) -> int:
        """Rows in the batch; the hint only stands in for unsized ``rows``."""
        if isinstance(self.rows, Sized):
            return len(self.rows)
        return self.approx_row_count or 0


@dataclass(frozen=True)
class ConnectionParams:
    host: str = "localhost"
    port: int = 5433
    user: str = ""
    password: str = ""
    database: str = "vdb"
    resource_pool: Optional[str] = None
    connect_timeout: float = 10.0


@dataclass(frozen=True)
class LoadFormat:
    """How rows are framed on the COPY stream and how the COPY behaves."""

    delimiter: str = "|"
    copy_mode: str = "DIRECT"
    abort_on_error: bool = False
