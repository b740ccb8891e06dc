"""
Task configuration for one load transaction.

Built once from the job mapping, validated before any network I/O and then
shared read-only by the pool, every worker and the orchestrator.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from copy_client.errors import ConfigurationError
from copy_client.models import ColumnOption, ConnectionParams, LoadFormat
from copy_client.sql import COPY_MODES, LOAD_MODES

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")

# keys kept for compatibility with older job files
_ALIASES = {
    "username": "user",
    "enqueue_timeout": "write_timeout",
    "delimiter_str": "delimiter",
    "pool": "pool_size",
}


def _snake(key: str) -> str:
    return _CAMEL.sub("_", key).lower()


class TaskConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = "localhost"
    port: int = 5433
    user: str
    password: str = ""
    database: str = "vdb"
    schema_name: str = "public"
    table: str
    mode: str = "DIRECT_COPY"
    copy_mode: str = "DIRECT"
    abort_on_error: bool = False
    delimiter: str = "|"
    pool_size: Optional[int] = None
    write_timeout: Optional[float] = None
    dequeue_timeout: Optional[float] = None
    finish_timeout: Optional[float] = None
    connect_timeout: float = 10.0
    column_options: dict[str, ColumnOption] = {}
    resource_pool: Optional[str] = None
    default_timezone: str = "UTC"
    load_time_col: Optional[str] = None
    csv_payload: bool = False

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        out: dict[str, Any] = {}
        aliased: dict[str, Any] = {}
        for key, value in data.items():
            key = _snake(key)
            if key == "schema":
                key = "schema_name"
            if key in _ALIASES:
                aliased[_ALIASES[key]] = value
            else:
                out[key] = value
        # canonical keys win over their aliases
        for key, value in aliased.items():
            if out.get(key) is None:
                out[key] = value
        if out.get("user") is None:
            raise ValueError('required field "user" is not set')
        return out

    @field_validator("mode")
    def _mode(cls, v: str) -> str:
        v = v.upper()
        if v not in LOAD_MODES:
            raise ValueError(f"`mode` must be one of {', '.join(LOAD_MODES)}")
        return v

    @field_validator("copy_mode")
    def _copy_mode(cls, v: str) -> str:
        v = v.upper()
        if v not in COPY_MODES:
            raise ValueError(f"`copy_mode` must be one of {', '.join(COPY_MODES)}")
        return v

    @field_validator("delimiter")
    def _delimiter(cls, v: str) -> str:
        if len(v) != 1 or v in "\\\r\n":
            raise ValueError("`delimiter` must be a single character other than \\, CR or LF")
        return v

    @field_validator("default_timezone")
    def _timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {v!r}") from None
        return v

    @field_validator("pool_size")
    def _pool_size(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("`pool_size` must be >= 1")
        return v

    @field_validator("write_timeout", "dequeue_timeout", "finish_timeout", "connect_timeout")
    def _positive(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("timeouts must be > 0 seconds")
        return v

    # --------------------------- construction

    @classmethod
    def from_mapping(
        cls, mapping: Mapping[str, Any], partition_count: Optional[int] = None
    ) -> "TaskConfig":
        """Validate a job mapping; pool_size defaults to the partition count."""
        try:
            cfg = cls.model_validate(dict(mapping))
        except ValidationError as e:
            raise ConfigurationError(_describe(e)) from None
        if cfg.pool_size is None and partition_count is not None:
            if partition_count < 1:
                raise ConfigurationError("partition count must be >= 1")
            cfg = cfg.model_copy(update={"pool_size": partition_count})
        return cfg

    # --------------------------- views

    @property
    def resolved_pool_size(self) -> int:
        if self.pool_size is None:
            raise ConfigurationError("`pool_size` is not set and no partition count was given")
        return self.pool_size

    @property
    def connection_params(self) -> ConnectionParams:
        return ConnectionParams(
            host=self.host,
            port=self.port,
            user=self.user,
            password=self.password,
            database=self.database,
            resource_pool=self.resource_pool,
            connect_timeout=self.connect_timeout,
        )

    @property
    def load_format(self) -> LoadFormat:
        return LoadFormat(
            delimiter=self.delimiter,
            copy_mode=self.copy_mode,
            abort_on_error=self.abort_on_error,
        )


def _describe(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"])
        msg = err["msg"].removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)
