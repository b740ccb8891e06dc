"""
Helpers for feeding files into the loader.
"""

from __future__ import annotations

import gzip
import io
import json
import sys
from itertools import islice
from pathlib import Path
from typing import Any, Iterable, Iterator, TypeVar

from copy_client.models import Schema

T = TypeVar("T")


def iter_ndjson(path: str) -> Iterator[dict[str, Any]]:
    """Yield one object per non-blank line; '-' reads stdin, .gz is decompressed."""
    if path == "-":
        stream: io.TextIOBase = sys.stdin
        close = False
    elif path.endswith(".gz"):
        stream = gzip.open(path, "rt", encoding="utf-8")
        close = True
    else:
        stream = open(path, "r", encoding="utf-8")
        close = True
    try:
        for lineno, line in enumerate(stream, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{lineno}: invalid JSON: {e.msg}") from None
    finally:
        if close:
            stream.close()


def chunked(items: Iterable[T], size: int) -> Iterator[list[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    it = iter(items)
    while True:
        chunk = list(islice(it, size))
        if not chunk:
            return
        yield chunk


def load_schema(path: str) -> Schema:
    """Read a column list: [{"name": ..., "type": ...}] or {"columns": [...]}."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, list):
        data = {"columns": data}
    return Schema.model_validate(data)


def load_job(path: str) -> dict[str, Any]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: job file must contain a JSON object")
    return data
