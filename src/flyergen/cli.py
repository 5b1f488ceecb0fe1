from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import requests
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import ConfigError, FlyerGenConfig, load_settings
from .errors import FlyerGenError
from .gen.generate import build_fragment_store, compose_base_prompt, generate_image
from .gen.prompting import PromptAssembler
from .gen.registry import ProviderRegistry
from .storage.cache import configure_default_cache_from_settings, get_cached_signed_urls
from .storage.r2 import file_extension

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()


def _settings(ctx: typer.Context) -> FlyerGenConfig:
    try:
        return load_settings(ctx.obj.get("config"))
    except ConfigError as e:
        console.print(f"[bold red]Config error:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=2) from e


def _parse_details(details: list[str]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for item in details:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            console.print(f"[bold red]Invalid --detail '{item}':[/bold red] expected key=value")
            raise typer.Exit(code=2)
        parsed[key.strip()] = value.strip()
    return parsed


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", dir_okay=False, help="Path to flyergen.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"config": config}


@app.command()
def generate(
    ctx: typer.Context,
    prompt: str = typer.Argument(..., help="Base description of the flyer"),
    aspect_ratio: str = typer.Option("1:1", "--aspect-ratio", "-a"),
    event_type: Optional[str] = typer.Option(None, "--event-type", "-e"),
    style: Optional[str] = typer.Option(None, "--style", "-s"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Preferred provider"),
    quality: Optional[str] = typer.Option(None, "--quality", "-q", help="fast, standard or high"),
    seed: Optional[int] = typer.Option(None, "--seed"),
    detail: list[str] = typer.Option([], "--detail", "-d", help="Event detail as key=value"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the image to this path"),
):
    """Generate one flyer image."""
    settings = _settings(ctx)
    try:
        result = generate_image(
            prompt,
            aspect_ratio,
            event_type,
            _parse_details(detail),
            style,
            preferred_provider=provider,
            quality=quality,
            seed=seed,
            settings=settings,
        )
    except FlyerGenError as e:
        console.print(f"[bold red]Generation failed:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=2) from e

    table = Table(title="Generation result")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("provider", result.provider_used)
    table.add_row("aspect ratio", result.aspect_ratio_actual)
    table.add_row("size", f"{result.width or '?'}x{result.height or '?'}")
    table.add_row("time", f"{result.generation_time_ms} ms")
    table.add_row("cost", f"${result.cost:.4f}")
    table.add_row("seed", "-" if result.seed_used is None else str(result.seed_used))
    console.print(table)

    if isinstance(result.image, bytes):
        data, mime_type = result.image, result.mime_type
    else:
        console.print(f"[bold]URL[/bold] {result.image}", soft_wrap=True)
        if out is None:
            return
        try:
            response = requests.get(result.image, timeout=60)
            response.raise_for_status()
        except requests.RequestException as e:
            console.print(f"[bold red]Download failed:[/bold red] {escape(str(e))}")
            raise typer.Exit(code=2) from e
        data, mime_type = response.content, response.headers.get("content-type") or result.mime_type

    if out is None:
        out = Path(f"flyer.{file_extension(mime_type)}")
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(data)
    console.print(f"[bold green]Wrote[/bold green] {out}")


@app.command()
def providers(ctx: typer.Context):
    """List configured providers and the one that would be selected."""
    settings = _settings(ctx)
    registry = ProviderRegistry.from_config(settings)

    table = Table(title="Image providers")
    table.add_column("Provider")
    table.add_column("Enabled")
    table.add_column("API key")
    table.add_column("Priority", justify="right")
    table.add_column("Default")
    for row in registry.summary():
        table.add_row(
            row["provider"],
            "yes" if row["enabled"] else "no",
            "[green]set[/green]" if row["configured"] else "[red]missing[/red]",
            str(row["priority"]),
            "*" if row["is_default"] else "",
        )
    console.print(table)

    try:
        selected = registry.select_provider()
    except FlyerGenError as e:
        console.print(f"[bold yellow]{escape(str(e))}[/bold yellow]")
        raise typer.Exit(code=2) from e
    console.print(f"Selected: [bold green]{selected.provider_id}[/bold green]")


@app.command()
def prompt(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Base description of the flyer"),
    event_type: Optional[str] = typer.Option(None, "--event-type", "-e"),
    style: Optional[str] = typer.Option(None, "--style", "-s"),
    detail: list[str] = typer.Option([], "--detail", "-d", help="Event detail as key=value"),
    max_length: Optional[int] = typer.Option(None, "--max-length", min=1),
):
    """Preview the assembled prompt without calling any provider."""
    settings = _settings(ctx)
    try:
        store = build_fragment_store(settings)
    except ConfigError as e:
        console.print(f"[bold red]Config error:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=2) from e
    assembled = PromptAssembler(store).assemble(
        compose_base_prompt(text, settings.generation.base_prompt),
        event_type,
        _parse_details(detail),
        style,
        max_length=max_length,
    )
    console.print(assembled, highlight=False, soft_wrap=True)
    console.print(f"[dim]{len(assembled)} chars[/dim]")


@app.command()
def sign(
    ctx: typer.Context,
    keys: list[str] = typer.Argument(..., help="Object keys to sign"),
    expires_in: int = typer.Option(3600, "--expires-in", min=1, help="Signature lifetime in seconds"),
):
    """Print pre-signed URLs for object keys."""
    settings = _settings(ctx)
    try:
        configure_default_cache_from_settings(settings, start=False)
    except FlyerGenError as e:
        console.print(f"[bold red]Storage error:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=2) from e

    urls = get_cached_signed_urls(keys, expires_in)
    for key in keys:
        if key in urls:
            console.print(f"{key}\t{urls[key]}", highlight=False, soft_wrap=True)
        else:
            console.print(f"[red]{key}\tfailed[/red]")
    if len(urls) < len(set(keys)):
        raise typer.Exit(code=2)


if __name__ == "__main__":
    app()
