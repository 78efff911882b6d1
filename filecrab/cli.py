"""CLI commands for filecrab."""

import asyncio
import logging
import sys
from pathlib import Path

import click

from filecrab.errors import FilecrabError


@click.group()
@click.version_option(package_name="filecrab")
@click.option(
    "-f",
    "--config-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML config file to use instead of app.yaml",
)
def cli(config_file):
    """filecrab - share files and text through short-lived storage."""
    if config_file is not None:
        from filecrab.config import set_config_path

        set_config_path(config_file)


# -- server --


@cli.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8080, type=int, help="Port to bind to")
@click.option("--workers", default=1, type=int, help="Number of worker processes")
@click.option(
    "--log-level",
    default="info",
    type=click.Choice(["debug", "info", "warning", "error"]),
    help="Logging level",
)
def serve(host, port, workers, log_level):
    """Run the filecrab server."""
    import signal

    from hypercorn.asyncio import serve as hypercorn_serve
    from hypercorn.config import Config

    from filecrab.asgi import create_app
    from filecrab.lib import observability

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = Config()
    config.bind = [f"{host}:{port}"]
    config.workers = workers
    config.loglevel = log_level.upper()
    config.include_server_header = False

    app = observability.instrument_app(create_app())

    shutdown_event = asyncio.Event()

    loop = asyncio.new_event_loop()
    loop.add_signal_handler(signal.SIGINT, shutdown_event.set)
    loop.add_signal_handler(signal.SIGTERM, shutdown_event.set)
    try:
        loop.run_until_complete(
            hypercorn_serve(app, config, shutdown_trigger=shutdown_event.wait)
        )
    finally:
        loop.close()


async def _run_sweep():
    from filecrab.config import get_settings
    from filecrab.db.index import create_metadata_index
    from filecrab.lib.collector import GarbageCollector
    from filecrab.lib.storage import create_object_store

    settings = get_settings()
    index = create_metadata_index(settings)
    store = create_object_store(settings.storage)
    try:
        await store.prepare()
        return await GarbageCollector(index, store).sweep()
    finally:
        await store.close()
        await index.close()


@cli.command()
def sweep():
    """Remove expired assets, texts and blobs once, then exit."""
    logging.basicConfig(level=logging.INFO)
    report = asyncio.run(_run_sweep())
    click.echo(
        f"Removed {len(report.assets_removed)} assets and {len(report.texts_removed)} texts"
    )
    if report.blob_failures:
        click.echo(f"{len(report.blob_failures)} blobs could not be deleted", err=True)
    if report.aborted:
        click.echo("Sweep aborted, see log for details", err=True)
        sys.exit(1)


def _run_alembic(args: list[str]) -> None:
    """Build an Alembic Config programmatically and run the given command."""
    from alembic.config import CommandLine, Config

    package_dir = Path(__file__).parent
    cfg = Config(str(package_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(package_dir / "alembic"))

    cmd = CommandLine()
    options = cmd.parser.parse_args(args)
    if not hasattr(options, "cmd"):
        cmd.parser.error("too few arguments")
    else:
        cfg.cmd_opts = options
        fn, positional, kwarg = options.cmd
        fn(
            cfg,
            *[getattr(options, k, None) for k in positional],
            **{k: getattr(options, k, None) for k in kwarg},
        )


@cli.command(
    context_settings=dict(
        ignore_unknown_options=True,
        allow_extra_args=True,
    )
)
@click.pass_context
def db(ctx):
    """Run database migrations via Alembic.

    \b
    Examples:
        filecrab db upgrade head    # Apply all migrations
        filecrab db downgrade -1    # Rollback one migration
        filecrab db current         # Show current revision
    """
    if not ctx.args:
        click.echo(ctx.get_help())
        return
    _run_alembic(ctx.args)


# -- client --


def _instance_options(fn):
    fn = click.option(
        "--api-key", envvar="FILECRAB_API_KEY", default="", help="Shared API key"
    )(fn)
    fn = click.option(
        "--url", envvar="FILECRAB_URL", required=True, help="Server base URL"
    )(fn)
    return fn


def _client(url, api_key):
    from filecrab.client import Instance, TransferClient

    return TransferClient(Instance(name="cli", url=url, api_key=api_key))


def _progress_callback(bar):
    state = {"done": 0}

    def on_progress(done, total):
        if total and bar.length != total:
            bar.length = total
        bar.update(done - state["done"])
        state["done"] = done

    return on_progress


@cli.command()
@_instance_options
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-p", "--passphrase", default=None, help="Encrypt with this passphrase")
@click.option(
    "--expire-at",
    type=click.DateTime(formats=["%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d"]),
    default=None,
    help="Expiry in UTC (server default when omitted)",
)
def upload(url, api_key, path, passphrase, expire_at):
    """Upload a file and print its memo id."""
    try:
        with _client(url, api_key) as client, open(path, "rb") as source:
            with click.progressbar(length=path.stat().st_size, label="Uploading", file=sys.stderr) as bar:
                memo_id = client.upload(
                    source,
                    path.name,
                    passphrase=passphrase,
                    expire_at=expire_at,
                    on_progress=_progress_callback(bar),
                )
    except FilecrabError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(memo_id)


@cli.command()
@_instance_options
@click.argument("memo_id")
@click.option("-p", "--passphrase", default=None, help="Decrypt with this passphrase")
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=True, path_type=Path),
    default=None,
    help="Destination file or directory (defaults to the uploaded file name)",
)
def download(url, api_key, memo_id, passphrase, output):
    """Download a file by memo id."""

    def ask_passphrase():
        return click.prompt("Passphrase", hide_input=True, err=True)

    try:
        with _client(url, api_key) as client:
            with click.progressbar(length=0, label="Downloading", file=sys.stderr) as bar:
                file_name, content = client.download(
                    memo_id,
                    passphrase=passphrase,
                    ask_passphrase=ask_passphrase,
                    on_progress=_progress_callback(bar),
                )
    except FilecrabError as exc:
        raise click.ClickException(str(exc)) from exc

    target = output or Path(Path(file_name).name)
    if target.is_dir():
        target = target / Path(file_name).name
    target.write_bytes(content)
    click.echo(str(target))


@cli.command()
@_instance_options
@click.argument("text", required=False)
@click.option("-p", "--passphrase", prompt=True, hide_input=True, help="Encryption passphrase")
def paste(url, api_key, text, passphrase):
    """Store TEXT (or stdin) for a single read and print its memo id."""
    if text is None:
        text = click.get_text_stream("stdin").read()
    try:
        with _client(url, api_key) as client:
            click.echo(client.paste(text, passphrase))
    except FilecrabError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command()
@_instance_options
@click.argument("memo_id")
@click.option("-p", "--passphrase", prompt=True, hide_input=True, help="Decryption passphrase")
def copy(url, api_key, memo_id, passphrase):
    """Print a stored text once; the server deletes it."""
    try:
        with _client(url, api_key) as client:
            click.echo(client.copy(memo_id, passphrase), nl=False)
    except FilecrabError as exc:
        raise click.ClickException(str(exc)) from exc
