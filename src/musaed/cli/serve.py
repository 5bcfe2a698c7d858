"""CLI: musaed serve"""

from typing import Optional

import click

from musaed.server import MusaedServer


def _load_settings(ctx: click.Context):
    from musaed.cli.main import _load_settings
    return _load_settings(ctx)


@click.command("serve")
@click.option("--host", default=None, help="Bind address")
@click.option("--port", default=None, type=int, help="Listen port")
@click.option("--backend-url", default=None, help="Model backend base URL")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int], backend_url: Optional[str]):
    """Run the voice session server."""
    settings = _load_settings(ctx)
    overrides = {"host": host, "port": port, "backend_url": backend_url}
    settings = settings.model_copy(update={k: v for k, v in overrides.items() if v is not None})
    MusaedServer(settings).run()
