from __future__ import annotations

import io
from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from .models import RecordBatch, Schema


class RowEncoder:
    """Render record batches as delimited text for COPY ... FROM STDIN.

    NULL is the empty string, so empty strings and NULLs are indistinguishable on
    the wire; delimiter, backslash, CR and LF inside values are backslash-escaped.
    """

    def __init__(
        self,
        schema: Schema,
        *,
        delimiter: str = "|",
        default_timezone: str = "UTC",
        csv_payload: bool = False,
        load_time_col: Optional[str] = None,
        load_time: Optional[datetime] = None,
    ):
        self._names = schema.names
        self._delimiter = delimiter
        self._tz = ZoneInfo(default_timezone)
        self._csv_payload = csv_payload
        self._load_time_col = load_time_col
        self._load_time = None
        if load_time_col:
            self._load_time = self._render(load_time or datetime.now(timezone.utc))
        self._escapes = {
            "\\": "\\\\",
            "\n": "\\n",
            "\r": "\\r",
            delimiter: "\\" + delimiter,
        }

    @property
    def columns(self) -> list[str]:
        if self._load_time_col:
            return [*self._names, self._load_time_col]
        return list(self._names)

    def encode(self, batch: RecordBatch) -> bytes:
        return self.render(batch)[0]

    def render(self, batch: RecordBatch) -> tuple[bytes, int]:
        """Encoded payload and the number of lines it holds."""
        buf = io.StringIO()
        count = 0
        for line in self._lines(batch.rows):
            buf.write(line)
            buf.write("\n")
            count += 1
        return buf.getvalue().encode(), count

    # --------------------------- internals

    def _lines(self, rows: Iterable[Any]) -> Iterable[str]:
        for row in rows:
            if self._csv_payload:
                line = row.decode() if isinstance(row, bytes) else str(row)
                line = line.rstrip("\r\n")
            else:
                line = self._delimiter.join(self._fields(row))
            if self._load_time is not None:
                line = f"{line}{self._delimiter}{self._load_time}"
            yield line

    def _fields(self, row: Any) -> list[str]:
        if isinstance(row, Mapping):
            values: Sequence[Any] = [row.get(name) for name in self._names]
        else:
            values = row
        if len(values) != len(self._names):
            raise ValueError(
                f"row has {len(values)} values, schema has {len(self._names)} columns"
            )
        return [self._escape(self._render(v)) for v in values]

    def _render(self, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=self._tz)
            return value.astimezone(timezone.utc).isoformat(sep=" ")
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, float):
            return repr(value)
        return str(value)

    def _escape(self, text: str) -> str:
        if not any(ch in text for ch in self._escapes):
            return text
        return "".join(self._escapes.get(ch, ch) for ch in text)
