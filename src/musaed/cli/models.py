"""CLI: musaed models list|analyze"""

import json

import click
from rich.console import Console
from rich.table import Table

from musaed.backend import BackendClient
from musaed.errors import MusaedError
from musaed.registry import ModelRegistry

console = Console()


def _load_settings(ctx: click.Context):
    from musaed.cli.main import _load_settings
    return _load_settings(ctx)


def _run(coro):
    from musaed.cli.main import _run
    return _run(coro)


@click.group()
def models():
    """Model backend catalog."""


@models.command("list")
@click.option("--json-output", "--json", is_flag=True)
@click.pass_context
def models_list(ctx: click.Context, json_output: bool):
    """Probe every model in the backend catalog."""
    settings = _load_settings(ctx)

    async def _list():
        backend = BackendClient.from_settings(settings)
        try:
            registry = ModelRegistry(backend)
            if json_output:
                return await registry.refresh()
            with console.status(f"Probing {backend.url}..."):
                return await registry.refresh()
        finally:
            await backend.close()

    try:
        descriptors = _run(_list())
    except MusaedError as e:
        console.print(f"[red]{e.message}[/red]")
        raise SystemExit(1)

    if json_output:
        click.echo(json.dumps({"models": [d.to_public() for d in descriptors]}, indent=2))
        return
    table = Table(title=f"Models ({len(descriptors)} known)")
    table.add_column("Name", style="bold")
    table.add_column("Available")
    table.add_column("Capabilities")
    table.add_column("Context")
    for d in descriptors:
        table.add_row(
            d.name,
            "[green]yes[/green]" if d.available else "[red]no[/red]",
            ", ".join(sorted(d.capabilities)),
            str(d.context_length or ""),
        )
    console.print(table)


@models.command("analyze")
@click.argument("name")
@click.option("--json-output", "--json", is_flag=True)
@click.pass_context
def models_analyze(ctx: click.Context, name: str, json_output: bool):
    """Probe one model's capabilities."""
    settings = _load_settings(ctx)

    async def _analyze():
        backend = BackendClient.from_settings(settings)
        try:
            return await backend.analyze_model(name)
        finally:
            await backend.close()

    try:
        descriptor = _run(_analyze())
    except MusaedError as e:
        console.print(f"[red]{e.message}[/red]")
        raise SystemExit(1)

    if json_output:
        click.echo(json.dumps(descriptor.to_public(), indent=2))
        return
    console.print(f"[bold]{descriptor.name}[/bold]")
    console.print(f"  capabilities: {', '.join(sorted(descriptor.capabilities))}")
    if descriptor.context_length:
        console.print(f"  context length: {descriptor.context_length}")
    for key, value in descriptor.details.items():
        console.print(f"  {key}: {value}")
