"""CLI for the CRM engine — schema setup, CSV transfer and read-only reports."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import asyncpg
import click
from pydantic import BaseModel

from crm.config import ConfigError, CrmConfig, load_config
from crm.core.logging import configure_logging, owner_context
from crm.db import Database
from crm.errors import CrmError
from crm.models import ActivityAction, TagOrder
from crm.schema import ensure_schema
from crm.tools.activity import activity_list
from crm.tools.csv_io import contacts_export_csv, contacts_import_csv, export_filename
from crm.tools.dashboard import dashboard_snapshot
from crm.tools.tags import tag_list

T = TypeVar("T")


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--config",
    "config_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory containing crm.toml",
)
@click.pass_context
def cli(ctx: click.Context, config_dir: Path | None) -> None:
    """CRM engine — contacts, tags and activity log on PostgreSQL."""
    try:
        config = load_config(config_dir) if config_dir is not None else CrmConfig()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
        service_name=config.name,
    )
    ctx.obj = config


def _run(config: CrmConfig, work: Callable[[asyncpg.Pool], Awaitable[T]]) -> T:
    """Open a pool, run *work* against it, and translate domain errors for click."""

    async def _main() -> T:
        db = Database.from_env(config.db)
        pool = await db.connect()
        try:
            return await work(pool)
        finally:
            await db.close()

    try:
        return asyncio.run(_main())
    except CrmError as exc:
        raise click.ClickException(str(exc)) from exc


def _echo_json(value: BaseModel | list[BaseModel]) -> None:
    if isinstance(value, BaseModel):
        click.echo(value.model_dump_json(indent=2))
        return
    payload: list[Any] = [item.model_dump(mode="json") for item in value]
    click.echo(json.dumps(payload, indent=2))


@cli.command("init-db")
@click.pass_obj
def init_db(config: CrmConfig) -> None:
    """Create the database (if missing) and the CRM tables."""

    async def _main() -> None:
        db = Database.from_env(config.db)
        await db.provision()
        pool = await db.connect()
        try:
            await ensure_schema(pool, config.db.schema)
        finally:
            await db.close()

    asyncio.run(_main())
    click.echo(f"Database {config.db.name} is ready")


@cli.command("import-csv")
@click.argument("owner")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def import_csv(config: CrmConfig, owner: str, file: Path) -> None:
    """Import contacts for OWNER from a CSV FILE."""
    data = file.read_bytes()

    async def _work(pool: asyncpg.Pool):
        with owner_context(owner):
            return await contacts_import_csv(
                pool,
                owner,
                data,
                max_reported_errors=config.csv_import.max_reported_errors,
                tag_delimiter=config.csv_import.tag_delimiter,
                tag_color=config.tags.default_color,
            )

    _echo_json(_run(config, _work))


@cli.command("export-csv")
@click.argument("owner")
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output file (defaults to contacts-YYYY-MM-DD.csv)",
)
@click.pass_obj
def export_csv(config: CrmConfig, owner: str, output: Path | None) -> None:
    """Export all of OWNER's contacts as CSV."""

    async def _work(pool: asyncpg.Pool) -> bytes:
        with owner_context(owner):
            return await contacts_export_csv(pool, owner)

    content = _run(config, _work)
    target = output or Path(export_filename())
    target.write_bytes(content)
    click.echo(f"Wrote {target}")


@cli.command()
@click.argument("owner")
@click.pass_obj
def stats(config: CrmConfig, owner: str) -> None:
    """Print OWNER's dashboard snapshot as JSON."""

    async def _work(pool: asyncpg.Pool):
        with owner_context(owner):
            return await dashboard_snapshot(pool, owner, config=config.dashboard)

    _echo_json(_run(config, _work))


@cli.command()
@click.argument("owner")
@click.option(
    "--order",
    type=click.Choice([o.value for o in TagOrder]),
    default=TagOrder.USAGE.value,
    show_default=True,
)
@click.pass_obj
def tags(config: CrmConfig, owner: str, order: str) -> None:
    """List OWNER's tags."""

    async def _work(pool: asyncpg.Pool):
        with owner_context(owner):
            return await tag_list(pool, owner, TagOrder(order))

    _echo_json(_run(config, _work))


@cli.command()
@click.argument("owner")
@click.option("--days", type=click.IntRange(min=1), default=None, help="Only the last N days")
@click.option(
    "--action",
    type=click.Choice([a.value for a in ActivityAction]),
    default=None,
    help="Only this action",
)
@click.option("--page", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--page-size", type=click.IntRange(min=1), default=20, show_default=True)
@click.pass_obj
def activities(
    config: CrmConfig,
    owner: str,
    days: int | None,
    action: str | None,
    page: int,
    page_size: int,
) -> None:
    """List OWNER's activity log, newest first."""

    async def _work(pool: asyncpg.Pool):
        with owner_context(owner):
            return await activity_list(
                pool, owner, days=days, action=action, page=page, page_size=page_size
            )

    _echo_json(_run(config, _work))
