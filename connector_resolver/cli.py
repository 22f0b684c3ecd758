"""
Connector Resolver CLI - resolve connector dependencies from the command line.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel

from .errors import ConnectorResolverError
from .formatters import ResolutionFormatter
from .models import ResolutionStrategy
from .registry import CachingRegistry, ConnectorRegistry, FileRegistry, HttpRegistry
from .resolution.engine import ConnectorResolver
from .resolution.reconciler import dump_lockfile, load_lockfile
from .resolution.validator import ManifestValidator
from .settings import get_settings

# Setup
app = typer.Typer(
    name="connector-resolver",
    help="Dependency resolution for versioned connectors",
    add_completion=False,
)
console = Console()
formatter = ResolutionFormatter(console)


def configure_logging():
    """Configure logging based on settings."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# Configure logging on module import
configure_logging()


CatalogOption = typer.Option(
    None, "--catalog", help="JSON catalog file (overrides CR_CATALOG_PATH)"
)
RegistryOption = typer.Option(
    None, "--registry-url", help="Remote registry base URL (overrides CR_REGISTRY_URL)"
)


def _build_registry(catalog: Optional[Path], registry_url: Optional[str]) -> ConnectorRegistry:
    """Pick the registry: explicit options first, then settings."""
    settings = get_settings()
    if catalog is not None:
        return FileRegistry(catalog)
    url = registry_url or settings.registry_url
    if url:
        return CachingRegistry(
            HttpRegistry(url, timeout=settings.http_timeout_seconds),
            ttl_seconds=settings.cache_ttl_seconds,
        )
    return FileRegistry(settings.catalog_path)


def _create_command_panel(title: str, color: str, detail: str) -> Panel:
    """Create a Rich Panel for command display."""
    return Panel.fit(
        f"[bold {color}]{title}[/bold {color}]\n{detail}",
        border_style=color,
    )


def _handle_command_error(e: Exception, command_type: str) -> None:
    """Print a command failure and exit.

    Raises:
        SystemExit: Always exits with code 1
    """
    console.print(f"\n[bold red]✗ {command_type.capitalize()} failed:[/bold red] {e}")
    raise typer.Exit(code=1)


def _run_command(
    command_name: str,
    catalog: Optional[Path],
    registry_url: Optional[str],
    action: Callable[[ConnectorResolver], Awaitable],
):
    """Run an async resolver action with common setup and error handling.

    Args:
        command_name: Command name for error messages
        catalog: Optional catalog file override
        registry_url: Optional registry URL override
        action: Coroutine function taking the resolver

    Returns:
        Whatever the action returns
    """
    registry = _build_registry(catalog, registry_url)

    async def _run():
        try:
            return await action(ConnectorResolver(registry))
        finally:
            await registry.aclose()

    try:
        return asyncio.run(_run())
    except (ConnectorResolverError, OSError, ValueError) as e:
        _handle_command_error(e, command_name)


def _read_lockfile(path: Optional[Path], command_name: str, required: bool = False) -> dict:
    """Load a lockfile; a missing optional lockfile means an empty one."""
    if path is None or (not required and not path.exists()):
        return {}
    try:
        return load_lockfile(path)
    except (OSError, ValueError) as e:
        _handle_command_error(e, command_name)


def _parse_strategy(strategy: Optional[str]) -> ResolutionStrategy:
    value = strategy or get_settings().default_strategy
    try:
        return ResolutionStrategy(value)
    except ValueError:
        valid = ", ".join(s.value for s in ResolutionStrategy)
        console.print(f"[bold red]✗ Unknown strategy '{value}'.[/bold red] Choose one of: {valid}")
        raise typer.Exit(code=2)


@app.command()
def resolve(
    requested: List[str] = typer.Argument(..., help="Connectors as id or id@constraint, e.g. http@>=2.0"),
    strategy: Optional[str] = typer.Option(None, "--strategy", "-s", help="Resolution strategy"),
    lockfile: Optional[Path] = typer.Option(None, "--lockfile", "-l", help="Lockfile to reconcile against"),
    write_lock: bool = typer.Option(False, "--write-lock", help="Write the updated lockfile on success"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    catalog: Optional[Path] = CatalogOption,
    registry_url: Optional[str] = RegistryOption,
):
    """Resolve connectors to exact versions."""
    chosen = _parse_strategy(strategy)
    locked = _read_lockfile(lockfile, "resolve")

    if not as_json:
        console.print(_create_command_panel("Connector Resolve", "blue", f"Strategy: {chosen.value}"))

    result = _run_command(
        "resolve",
        catalog,
        registry_url,
        lambda resolver: resolver.resolve(requested, chosen, locked),
    )

    if as_json:
        console.print_json(result.model_dump_json(by_alias=True))
    else:
        formatter.print_result(result)

    if result.success and write_lock and lockfile is not None:
        dump_lockfile(result.lockfile, lockfile)
        if not as_json:
            console.print(f"\n[dim]Lockfile written to {lockfile}[/dim]")

    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def explain(
    requested: List[str] = typer.Argument(..., help="Connectors as id or id@constraint"),
    strategy: Optional[str] = typer.Option(None, "--strategy", "-s", help="Resolution strategy"),
    lockfile: Optional[Path] = typer.Option(None, "--lockfile", "-l", help="Lockfile to reconcile against"),
    catalog: Optional[Path] = CatalogOption,
    registry_url: Optional[str] = RegistryOption,
):
    """Explain why a set of connectors cannot be resolved."""
    chosen = _parse_strategy(strategy)
    locked = _read_lockfile(lockfile, "explain")

    diagnostics = _run_command(
        "explain",
        catalog,
        registry_url,
        lambda resolver: resolver.explain_failure(requested, chosen, locked),
    )
    formatter.print_diagnostics(diagnostics)


@app.command()
def validate(
    manifest: Path = typer.Argument(..., help="Manifest JSON file"),
):
    """Validate a connector manifest file."""
    try:
        with open(manifest, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        _handle_command_error(e, "validate")

    if not isinstance(data, dict):
        _handle_command_error(ValueError("manifest must be a JSON object"), "validate")

    result = ManifestValidator().validate(data)
    formatter.print_validation(result)
    if not result.is_valid:
        raise typer.Exit(code=1)


@app.command()
def versions(
    connector_id: str = typer.Argument(..., help="Connector id"),
    catalog: Optional[Path] = CatalogOption,
    registry_url: Optional[str] = RegistryOption,
):
    """List published versions of a connector."""
    listing = _run_command(
        "versions",
        catalog,
        registry_url,
        lambda resolver: resolver.list_versions(connector_id),
    )
    formatter.print_versions(connector_id, listing)


@app.command(name="check-lock")
def check_lock(
    lockfile: Path = typer.Argument(..., help="Lockfile to check"),
    catalog: Optional[Path] = CatalogOption,
    registry_url: Optional[str] = RegistryOption,
):
    """Check a lockfile against the current catalog."""
    locked = _read_lockfile(lockfile, "check-lock", required=True)

    result = _run_command(
        "check-lock",
        catalog,
        registry_url,
        lambda resolver: resolver.validate_lockfile(locked),
    )
    formatter.print_lockfile_validation(result)
    if not result.is_valid:
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (overrides CR_SERVICE_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (overrides CR_SERVICE_PORT)"),
):
    """Run the HTTP service."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "connector_resolver.service.app:app",
        host=host or settings.service_host,
        port=port or settings.service_port,
        log_level=settings.log_level.lower(),
    )


@app.command()
def version():
    """Show connector resolver version."""
    from . import __version__

    console.print(f"Connector resolver version: [bold]{__version__}[/bold]")


if __name__ == "__main__":
    app()
