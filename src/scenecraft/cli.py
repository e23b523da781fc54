from pathlib import Path
from typing import Annotated, Optional
import asyncio
import signal
import sys

import typer

from .config import AppConfig, load_config
from .database.store import DocumentStore
from .errors import ScenecraftError
from .ingest import ingest_document
from .scheduler.pipeline import PipelineScheduler
from .utils.generation_client import GenerationClient
from .utils.log_config import setup_logging
from .utils.text_segmenter import TextSegmenter

app = typer.Typer(
    name="scenecraft",
    no_args_is_help=True,
    help="Turn novels into illustrated, narrated scenes.",
)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", exists=True, dir_okay=False, help="JSON config file."),
]


def _run(coro) -> None:
    if sys.platform.startswith("linux"):
        import uvloop
        uvloop.run(coro)
    else:
        asyncio.run(coro)


def _prepare(config_path: Optional[Path]) -> AppConfig:
    config = load_config(config_path)
    setup_logging(config.log)
    return config


async def _serve(config: AppConfig, once: bool) -> None:
    store = DocumentStore(config.database.url, echo=config.database.echo)
    client = GenerationClient(config.generation)
    await store.initialize()
    scheduler = PipelineScheduler(store, client, config.scheduler)
    try:
        if once:
            for result in await scheduler.run_once():
                typer.echo(f"{result.stage}: advanced={len(result.advanced)} "
                           f"failed={len(result.failed)} skipped={len(result.skipped)}")
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, scheduler.request_stop)
            except NotImplementedError:
                pass
        scheduler.start()
        await scheduler.wait_closed()
        await scheduler.stop()
    finally:
        await client.cleanup()
        await client.token_tracker.close()
        await store.close()


@app.command("run")
def run_command(
    config: ConfigOption = None,
    once: Annotated[bool, typer.Option("--once", help="Run a single tick of every stage and exit.")] = False,
) -> None:
    """Run the role, scene and image stages until interrupted."""
    app_config = _prepare(config)
    _run(_serve(app_config, once))


async def _ingest(config: AppConfig, path: Path, name: Optional[str]) -> None:
    store = DocumentStore(config.database.url, echo=config.database.echo)
    client = GenerationClient(config.generation)
    await store.initialize()
    try:
        document = await ingest_document(store, client, path, name, config.split)
    finally:
        await client.cleanup()
        await store.close()
    typer.echo(f"{document.id} {document.name} {document.status.value}")


@app.command("ingest")
def ingest_command(
    path: Annotated[Path, typer.Argument(exists=True, dir_okay=False, help="A .txt or .md novel.")],
    name: Annotated[Optional[str], typer.Option("--name", "-n", help="Document name, defaults to the file stem.")] = None,
    config: ConfigOption = None,
) -> None:
    """Segment, upload and register a novel."""
    app_config = _prepare(config)
    try:
        _run(_ingest(app_config, path, name))
    except ScenecraftError as e:
        typer.echo(f"ingest failed: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command("split")
def split_command(
    path: Annotated[Path, typer.Argument(exists=True, dir_okay=False, help="A .txt or .md file.")],
    config: ConfigOption = None,
) -> None:
    """Print the chunks a file would be split into, one per line."""
    app_config = _prepare(config)
    try:
        chunks = TextSegmenter(app_config.split).split_file(path)
    except ScenecraftError as e:
        typer.echo(f"split failed: {e}", err=True)
        raise typer.Exit(code=1) from e
    for i, chunk in enumerate(chunks):
        typer.echo(f"{i}\t{len(chunk)}\t{chunk}")


def main() -> None:
    app()
