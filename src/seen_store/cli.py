"""Command line interface for Seen Store."""

import asyncio
import contextlib
import logging
import sys
import threading
from pathlib import Path
from typing import Any, Coroutine, Iterator, NoReturn, Optional, Tuple, TypeVar

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ConfigManager, StoreConfig
from .errors import SeenStoreError
from .storage.id_set_store import IdSetStore
from .storage.snapshot import (
    build_snapshot,
    default_snapshot_filename,
    read_snapshot_file,
    write_snapshot_file,
)
from .storage.store_lock import StoreLock

console = Console()
error_console = Console(stderr=True)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run an async coroutine, handling both new event loops and existing ones.

    Commands normally run without an event loop; under some test harnesses a
    loop is already running, in which case the coroutine runs on a fresh loop
    in a helper thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    result = None
    exception: Optional[BaseException] = None

    def run_in_new_loop() -> None:
        nonlocal result, exception
        try:
            result = asyncio.run(coro)
        except BaseException as e:
            exception = e

    thread = threading.Thread(target=run_in_new_loop)
    thread.start()
    thread.join()

    if exception:
        raise exception
    return result  # type: ignore[return-value]


def _fail(message: str) -> NoReturn:
    error_console.print(f"❌ {message}", style="red", markup=False)
    sys.exit(1)


def _load_config(ctx: click.Context) -> StoreConfig:
    config_manager: ConfigManager = ctx.obj["config_manager"]
    try:
        return config_manager.get_config()
    except ValueError as e:
        _fail(str(e))


@contextlib.contextmanager
def _owned_store(ctx: click.Context) -> Iterator[Tuple[StoreConfig, IdSetStore]]:
    """Open the configured store while holding its cross-process owner lock."""
    config = _load_config(ctx)
    store = IdSetStore.from_config(config)

    if config.backend != "filesystem":
        yield config, store
        return

    lock = StoreLock(config.storage_dir / ".store.lock")
    with lock.acquire(blocking=not ctx.obj["no_wait"]):
        yield config, store


@contextlib.contextmanager
def _reading_store(ctx: click.Context) -> Iterator[IdSetStore]:
    """Open the configured store for a read-only command.

    Reads run without the owner lock. A missing or invalid index makes the
    read rebuild it, which is a write, so in that case the lock is held for
    the whole command.
    """
    config = _load_config(ctx)
    store = IdSetStore.from_config(config)

    if config.backend != "filesystem" or (
        run_async(store.index_manager.load_index_or_none()) is not None
    ):
        yield store
        return

    lock = StoreLock(config.storage_dir / ".store.lock")
    with lock.acquire(blocking=not ctx.obj["no_wait"]):
        yield store


async def _closing(store: IdSetStore, coro: Coroutine[Any, Any, T]) -> T:
    try:
        return await coro
    finally:
        await store.close()


@click.group(invoke_without_command=True)
@click.option("--config", "-c", type=click.Path(exists=False), help="Config file path")
@click.option(
    "--path",
    "-p",
    type=click.Path(exists=True),
    help="Start directory for config discovery (walks up to find .seen-store/)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option(
    "--no-wait",
    is_flag=True,
    help="Fail immediately if another process is writing the store",
)
@click.version_option(version=__version__, prog_name="seen-store")
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[str],
    path: Optional[str],
    verbose: bool,
    no_wait: bool,
) -> None:
    """Track which identifiers have already been processed.

    \b
    GETTING STARTED:
      seen-store init             # Create .seen-store/config.json
      seen-store add ITEM_ID      # Record an identifier
      seen-store contains ITEM_ID # Check an identifier
      seen-store count            # Total recorded identifiers

    \b
    BACKUP AND RESTORE:
      seen-store export backup.json
      seen-store import backup.json --mode merge
      seen-store import backup.json --mode override
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["no_wait"] = no_wait

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    if config:
        ctx.obj["config_manager"] = ConfigManager(Path(config))
    elif path:
        ctx.obj["config_manager"] = ConfigManager.create_with_backtrack(
            Path(path).resolve()
        )
    else:
        ctx.obj["config_manager"] = ConfigManager.create_with_backtrack()


@cli.command()
@click.option("--chunk-size", type=int, default=None, help="Identifiers per chunk")
@click.option(
    "--backend",
    type=click.Choice(["filesystem", "memory"]),
    default=None,
    help="Record backend provider",
)
@click.option(
    "--record-format",
    type=click.Choice(["json", "msgpack"]),
    default=None,
    help="On-disk record encoding",
)
@click.option("--force", "-f", is_flag=True, help="Overwrite existing configuration")
@click.pass_context
def init(
    ctx: click.Context,
    chunk_size: Optional[int],
    backend: Optional[str],
    record_format: Optional[str],
    force: bool,
) -> None:
    """Create a configuration file for a new store."""
    config_manager: ConfigManager = ctx.obj["config_manager"]

    if config_manager.config_path.exists() and not force:
        _fail(
            f"Configuration already exists at {config_manager.config_path} "
            "(use --force to overwrite)"
        )

    updates = {
        key: value
        for key, value in (
            ("chunk_size", chunk_size),
            ("backend", backend),
            ("record_format", record_format),
        )
        if value is not None
    }
    try:
        StoreConfig(**updates)
    except ValueError as e:
        _fail(f"Invalid configuration: {e}")

    config = config_manager.create_default_config()
    if updates:
        config = config_manager.update_config(**updates)

    console.print(
        f"✅ Created configuration at {config_manager.config_path}", style="green"
    )
    console.print(f"📁 Records: {config.storage_dir}", style="dim")


@cli.command()
@click.argument("identifiers", nargs=-1, required=True)
@click.pass_context
def add(ctx: click.Context, identifiers: Tuple[str, ...]) -> None:
    """Record one or more identifiers as processed."""

    async def _add_all(store: IdSetStore) -> None:
        for identifier in identifiers:
            result = await store.add(identifier)
            if result.added:
                console.print(f"✅ Added {identifier} (total {result.total})")
            else:
                console.print(
                    f"⏭️  {identifier} already present (total {result.total})",
                    style="yellow",
                )

    try:
        with _owned_store(ctx) as (_, store):
            run_async(_closing(store, _add_all(store)))
    except SeenStoreError as e:
        _fail(str(e))


@cli.command()
@click.argument("identifier")
@click.pass_context
def contains(ctx: click.Context, identifier: str) -> None:
    """Check whether an identifier has been recorded."""
    try:
        with _reading_store(ctx) as store:
            present = run_async(_closing(store, store.contains(identifier)))
    except SeenStoreError as e:
        _fail(str(e))

    if present:
        console.print(f"✅ {identifier} is present", style="green")
    else:
        console.print(f"➖ {identifier} is not present", style="dim")


@cli.command()
@click.pass_context
def count(ctx: click.Context) -> None:
    """Print the number of recorded identifiers."""
    try:
        with _reading_store(ctx) as store:
            total = run_async(_closing(store, store.count()))
    except SeenStoreError as e:
        _fail(str(e))
    click.echo(total)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show index and backend details."""
    try:
        with _reading_store(ctx) as store:
            index = run_async(_closing(store, store.describe()))
    except SeenStoreError as e:
        _fail(str(e))

    table = Table(title="Seen Store Status")
    table.add_column("Chunk", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Capacity", justify="right")

    for key in index.chunks:
        table.add_row(key, str(index.count_of(key)), str(index.chunk_size))

    console.print(table)
    for name, value in store.backend.get_status().items():
        console.print(f"{name}: {value}", style="dim")
    console.print(f"Total identifiers: {index.total}", style="bold")


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def clear(ctx: click.Context, yes: bool) -> None:
    """Remove every recorded identifier."""
    if not yes:
        click.confirm("This removes every recorded identifier. Continue?", abort=True)

    try:
        with _owned_store(ctx) as (_, store):
            result = run_async(_closing(store, store.clear()))
    except SeenStoreError as e:
        _fail(str(e))

    console.print(
        f"🧹 Cleared store ({result.removed_chunks} chunks removed)", style="green"
    )


@cli.command()
@click.argument("output", required=False, type=click.Path())
@click.pass_context
def export(ctx: click.Context, output: Optional[str]) -> None:
    """Write every identifier to a backup file."""
    output_path = Path(output) if output else Path(default_snapshot_filename())

    try:
        with _reading_store(ctx) as store:
            result = run_async(_closing(store, store.export_all()))
        write_snapshot_file(
            output_path, build_snapshot(result.ids, sidecar=result.sidecar)
        )
    except SeenStoreError as e:
        _fail(str(e))
    except OSError as e:
        _fail(f"Failed to write {output_path}: {e}")

    console.print(
        f"📦 Exported {result.count} identifiers to {output_path}", style="green"
    )


@cli.command("import")
@click.argument("backup_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--mode",
    type=click.Choice(["merge", "override"]),
    default="merge",
    show_default=True,
    help="merge adds new identifiers; override replaces the whole store",
)
@click.pass_context
def import_backup(ctx: click.Context, backup_file: str, mode: str) -> None:
    """Load identifiers from a backup file."""
    config = _load_config(ctx)

    try:
        snapshot = read_snapshot_file(Path(backup_file), max_ids=config.max_import_ids)
        with _owned_store(ctx) as (_, store):
            if mode == "override":
                restored = run_async(
                    _closing(
                        store, store.import_override(snapshot.ids, snapshot.sidecar)
                    )
                )
                console.print(
                    f"♻️  Restored {restored.total} identifiers", style="green"
                )
                if restored.orphaned_chunks:
                    console.print(
                        f"⚠️  {len(restored.orphaned_chunks)} old chunks could not "
                        "be removed; run 'seen-store clear' later to reclaim them",
                        style="yellow",
                    )
            else:
                merged = run_async(
                    _closing(store, store.import_merge(snapshot.ids, snapshot.sidecar))
                )
                console.print(
                    f"🔀 Merged: {merged.new_count} new identifiers "
                    f"({merged.duplicate_count} duplicates skipped). "
                    f"Total: {merged.total}",
                    style="green",
                )
    except (SeenStoreError, OSError) as e:
        _fail(f"Import failed: {e}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
