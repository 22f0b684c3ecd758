"""
Console output formatting for resolver results.

Renders resolution results, diagnostics, validation results and version
listings with rich tables, using package-manager style markers:
- `+` for resolved connectors
- `!` for conflicts
- `~` for warnings
"""

from typing import List, Optional

from rich.console import Console
from rich.table import Table

from .models import (
    ConnectorVersion,
    LockfileValidationResult,
    ResolutionDiagnostics,
    ResolutionOutcome,
    ResolutionResult,
    ValidationResult,
)


class ResolutionFormatter:
    """Prints resolver results to a rich console."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize formatter with Rich console."""
        self.console = console or Console()

        self.colors = {
            'resolved': 'green',
            'conflict': 'red',
            'warning': 'yellow',
            'header': 'bold blue',
            'connector': 'bright_white',
            'version': 'cyan',
            'comment': 'dim',
        }

    def print_result(self, result: ResolutionResult):
        if result.outcome == ResolutionOutcome.SUCCEEDED:
            self.console.print(
                f"\n[bold green]✓ Resolved {len(result.resolved)} connectors[/bold green] "
                f"[dim]({result.strategy.value})[/dim]"
            )
            table = Table(show_header=True, header_style=self.colors['header'])
            table.add_column("#", justify="right", style=self.colors['comment'])
            table.add_column("Connector", style=self.colors['connector'])
            table.add_column("Version", style=self.colors['version'])
            for position, connector_id in enumerate(result.install_order, 1):
                table.add_row(str(position), f"+ {connector_id}", result.resolved[connector_id])
            self.console.print(table)

        elif result.outcome == ResolutionOutcome.CANCELLED:
            self.console.print("\n[bold yellow]⚠ Resolution cancelled[/bold yellow]")

        else:
            self.console.print(
                f"\n[bold red]✗ No consistent set of versions[/bold red] "
                f"[dim]({len(result.conflicts)} conflicts)[/dim]"
            )
            for conflict in result.conflicts:
                self.console.print(f"\n  [red]! {conflict.connector_id}[/red]: {conflict.reason}")
                for competing in conflict.competing_constraints:
                    self.console.print(f"      [dim]{competing.describe()}[/dim]")

        self.print_warnings([f"{w.connector_id}: {w.reason}" for w in result.warnings])

    def print_diagnostics(self, diagnostics: ResolutionDiagnostics):
        if not diagnostics.has_conflicts:
            self.console.print("\n[bold green]✓ No conflicts[/bold green]")
            return

        for conflict in diagnostics.conflicts:
            available = ", ".join(diagnostics.available_versions.get(conflict.connector_id, [])) or "none"
            self.console.print(f"\n[red]! {conflict.connector_id}[/red]: {conflict.reason}")
            self.console.print(f"  [dim]Available: {available}[/dim]")

        if diagnostics.suggestions:
            self.console.print("\n[bold]Suggestions:[/bold]")
            for suggestion in diagnostics.suggestions:
                self.console.print(f"  • {suggestion}")

    def print_validation(self, result: ValidationResult, label: str = "Manifest"):
        if result.is_valid:
            self.console.print(f"[bold green]✓ {label} is valid[/bold green]")
        else:
            self.console.print(f"[bold red]✗ {label} is invalid[/bold red]")
            for error in result.errors:
                self.console.print(f"  [red]• {error}[/red]")
        self.print_warnings(result.warnings)

    def print_lockfile_validation(self, result: LockfileValidationResult):
        self.print_validation(
            ValidationResult(is_valid=result.is_valid, errors=result.errors, warnings=result.warnings),
            label="Lockfile",
        )

    def print_versions(self, connector_id: str, versions: List[ConnectorVersion]):
        table = Table(title=connector_id, show_header=True, header_style=self.colors['header'])
        table.add_column("Version", style=self.colors['version'])
        table.add_column("Published")
        table.add_column("Flags", style=self.colors['comment'])
        for version in versions:
            flags = []
            if version.is_latest:
                flags.append("latest")
            if not version.is_stable:
                flags.append("pre-release")
            if version.yanked:
                flags.append("yanked")
            if version.deprecated:
                flags.append("deprecated")
            table.add_row(version.version, version.published_at.strftime("%Y-%m-%d"), ", ".join(flags))
        self.console.print(table)

    def print_warnings(self, warnings: List[str]):
        for warning in warnings:
            self.console.print(f"  [yellow]~ {warning}[/yellow]")
