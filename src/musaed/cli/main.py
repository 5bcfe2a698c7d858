"""
Musaed CLI: `musaed` command.

Commands:
  musaed serve                  Run the voice session server
  musaed models list            Backend catalog with probed capabilities
  musaed models analyze NAME    Probe one model
"""

import asyncio
import logging
from typing import Optional

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install musaed-server[cli]")

from musaed.config import Settings

console = Console()
err_console = Console(stderr=True)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_settings(ctx: click.Context) -> Settings:
    return Settings.load(ctx.obj.get("config_path"))


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option("0.1.0")
@click.option("-c", "--config", "config_path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="JSON config file (MUSAED_* environment variables override it)")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], verbose: bool):
    """Musaed: real-time voice session server."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    configure_logging(verbose)


# Register subcommands from separate modules
from musaed.cli.models import models
from musaed.cli.serve import serve

main.add_command(models)
main.add_command(serve)


if __name__ == "__main__":
    main()
