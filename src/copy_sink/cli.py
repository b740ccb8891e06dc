from __future__ import annotations

import asyncio
import json
import sys
from typing import List

import typer
from loguru import logger

import copy_client
from copy_client import sql as q
from copy_client.ddl import create_table_statement
from copy_client.errors import CopySinkError

from .config import TaskConfig
from .coordinator.settings import get_settings
from .transaction import dispatch_partitions, run_transaction
from .utils import chunked, iter_ndjson, load_job, load_schema

app = typer.Typer(help="COPY-from-stream bulk loader CLI")


# ---------------------------
# Common options
# ---------------------------


def config_opt() -> str:
    return typer.Option(..., "--config", "-c", envvar="COPY_SINK_CONFIG", help="Job JSON file")


def schema_opt() -> str:
    return typer.Option(
        ..., "--schema-file", "-s", help='JSON column list: [{"name": ..., "type": ...}]'
    )


def _task(config_path: str, partition_count: int | None = None) -> TaskConfig:
    try:
        return TaskConfig.from_mapping(load_job(config_path), partition_count or 1)
    except (CopySinkError, ValueError, OSError) as e:
        logger.error(f"Invalid job configuration: {e}")
        sys.exit(1)


@app.callback()
def main() -> None:
    """Configure logging once for every command."""
    logger.remove()
    logger.add(sys.stderr, level=get_settings().log_level.upper())


# ---------------------------
# Commands
# ---------------------------


@app.command("ping")
def ping(config: str = config_opt()):
    """Open and close one connection to the warehouse."""
    task = _task(config)

    async def _run():
        async with copy_client.connection(task.connection_params):
            return True

    try:
        ok = asyncio.run(_run())
    except CopySinkError as e:
        logger.error(f"Warehouse unreachable: {e}")
        sys.exit(1)
    typer.echo(json.dumps({"ok": ok}, indent=2))


@app.command("count")
def count(config: str = config_opt()):
    """Print the row count of the target table."""
    task = _task(config)

    async def _run():
        async with copy_client.connection(task.connection_params) as conn:
            rows = await conn.query(q.count_rows(task.schema_name, task.table))
        return int(next(iter(rows[0].values()))) if rows else 0

    try:
        n = asyncio.run(_run())
    except CopySinkError as e:
        logger.error(f"Count failed: {e}")
        sys.exit(1)
    typer.echo(json.dumps({"table": f"{task.schema_name}.{task.table}", "rows": n}, indent=2))


@app.command("ddl")
def ddl(config: str = config_opt(), schema_file: str = schema_opt()):
    """Print CREATE TABLE for the target table."""
    task = _task(config)
    try:
        statement = create_table_statement(
            task.schema_name,
            task.table,
            load_schema(schema_file),
            task.column_options,
            task.load_time_col,
        )
    except (CopySinkError, ValueError, OSError) as e:
        logger.error(f"Cannot build DDL: {e}")
        sys.exit(1)
    typer.echo(statement.as_string())


@app.command("load")
def load(
    files: List[str] = typer.Argument(..., help="NDJSON files, one partition each (.gz ok)"),
    config: str = config_opt(),
    schema_file: str = schema_opt(),
    batch_rows: int = typer.Option(1000, "--batch-rows", help="Rows per dispatched batch"),
):
    """Load NDJSON files through one COPY transaction and print the report."""
    task = _task(config, partition_count=len(files))
    try:
        schema = load_schema(schema_file)
    except (ValueError, OSError) as e:
        logger.error(f"Invalid schema file: {e}")
        sys.exit(1)

    partitions = [chunked(iter_ndjson(path), batch_rows) for path in files]

    async def _run():
        return await run_transaction(
            task,
            schema,
            len(files),
            lambda pool: dispatch_partitions(pool, partitions),
        )

    try:
        result = asyncio.run(_run())
    except (CopySinkError, ValueError) as e:
        logger.error(f"Load failed: {type(e).__name__}: {e}")
        sys.exit(1)

    logger.success(f"Loaded {result.report.num_output_rows} rows into {task.table}")
    typer.echo(
        json.dumps(
            {
                "transaction_report": result.report.to_dict(),
                "task_reports": [r.to_dict() for r in result.worker_reports],
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    app()
