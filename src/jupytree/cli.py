from __future__ import annotations

import logging

import anyio
import rich_click as click
import structlog
from rich.console import Console
from rich.table import Table

from .config import TreeConfig, parse_assignments
from .contents import Contents, normalize_path
from .hierarchy import Hierarchy
from .models import ContentRecord
from .protocol import ProtocolDetector
from .transport import QueryClient


@click.group()  # type: ignore
@click.option(
    "--debug",
    is_flag=True,
    show_default=True,
    default=False,
    help="Enable debug logging.",
)
@click.option(
    "--backend",
    show_default=True,
    default="asyncio",
    help="The name of the event loop to use (asyncio or trio).",
)
@click.option(
    "--timeout",
    type=float,
    show_default=True,
    default=30.0,
    help="The HTTP request timeout, in seconds.",
)
@click.option(
    "--token",
    multiple=True,
    type=str,
    help='The server URL and its token, separated by "=".',
)
@click.option(
    "--protocol-version",
    multiple=True,
    type=str,
    help='The server URL and its protocol major version, separated by "=".',
)
@click.pass_context
def main(
    ctx: click.Context,
    debug: bool = False,
    backend: str = "asyncio",
    timeout: float = 30.0,
    token: tuple[str, ...] = (),
    protocol_version: tuple[str, ...] = (),
) -> None:
    """Browse the contents of notebook servers."""
    try:
        versions = {
            k: int(v) for k, v in parse_assignments(protocol_version, "--protocol-version").items()
        }
        config = TreeConfig(
            timeout=timeout,
            tokens=parse_assignments(token, "--token"),
            protocol_versions=versions,
            debug=debug,
        ).normalized()
    except ValueError as e:
        raise click.BadParameter(str(e))
    if config.debug:
        structlog.stdlib.recreate_defaults(log_level=logging.DEBUG)
    ctx.obj = {"config": config, "backend": backend}


@main.command()  # type: ignore
@click.argument("server")
@click.argument("path", default="")
@click.pass_context
def tree(ctx: click.Context, server: str, path: str) -> None:
    """List everything under PATH on SERVER."""
    config: TreeConfig = ctx.obj["config"]
    records = anyio.run(_refresh, config, server, path, backend=ctx.obj["backend"])
    show_hierarchy(records, normalize_path(path))


@main.command()  # type: ignore
@click.argument("server")
@click.argument("path")
@click.argument("new_path")
@click.pass_context
def rename(ctx: click.Context, server: str, path: str, new_path: str) -> None:
    """Rename PATH to NEW_PATH on SERVER."""
    config: TreeConfig = ctx.obj["config"]
    record = anyio.run(_rename, config, server, path, new_path, backend=ctx.obj["backend"])
    if record.path != normalize_path(new_path):
        raise click.ClickException(f"Could not rename {path}")
    click.echo(record.path)


async def _refresh(config: TreeConfig, server: str, path: str) -> list[ContentRecord]:
    async with QueryClient(tokens=config.tokens, timeout=config.timeout) as client:
        contents = Contents(client, ProtocolDetector(client, config.protocol_versions))
        root = await contents.query_contents(server, path, sync=True)
        if not root.populated:
            raise click.ClickException(f"Could not get {path or '/'}")
        return await Hierarchy(contents).refresh(server, path)


async def _rename(config: TreeConfig, server: str, path: str, new_path: str) -> ContentRecord:
    async with QueryClient(tokens=config.tokens, timeout=config.timeout) as client:
        contents = Contents(client, ProtocolDetector(client, config.protocol_versions))
        record = await contents.query_contents(server, path, sync=True)
        if not record.populated:
            raise click.ClickException(f"Could not get {path}")
        await contents.rename(record, new_path, sync=True)
        return record


def show_hierarchy(records: list[ContentRecord], root: str) -> None:
    base_depth = len(root.split("/")) if root else 0
    table = Table(title=root or "/")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Last modified")
    table.add_column("Writable")
    for record in records:
        if record.path is None:
            table.add_row("[red]?[/red]", "", "", "")
            continue
        depth = len(record.path.split("/")) - base_depth - 1
        name = "  " * depth + (record.name or "")
        if record.is_dir:
            name += "/"
        table.add_row(
            name,
            record.type.value if record.type else "",
            record.last_modified.isoformat() if record.last_modified else "",
            "" if record.writable is None else str(record.writable),
        )
    Console().print(table)
