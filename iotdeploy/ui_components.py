"""
iotdeploy - UI Components
Standardized headers and the end-of-run summary table
"""

from typing import Optional
from rich.console import Console
from rich.table import Table

from iotdeploy.models.results import Outcome, RunSummary

BRAND = "iotdeploy"

# Color scheme
BRAND_COLOR = "cyan"
SUCCESS_COLOR = "green"
WARNING_COLOR = "yellow"
ERROR_COLOR = "red"

OUTCOME_STYLES = {
    Outcome.DONE: "[green]done[/green]",
    Outcome.SKIPPED: "[dim]skipped[/dim]",
    Outcome.WARNING: "[yellow]warning[/yellow]",
    Outcome.FAILED: "[red]failed[/red]",
    Outcome.NOT_REACHED: "[dim]not reached[/dim]",
}


def show_header(
    title: str,
    subtitle: Optional[str] = None,
    project: Optional[str] = None,
    details: Optional[dict] = None,
    console: Optional[Console] = None,
):
    """
    Display a standardized command header.

    Args:
        title: Main title (e.g., "Cluster Provisioning")
        subtitle: Optional subtitle line
        project: Project name (if applicable)
        details: Additional key-value pairs to display
        console: Rich Console instance (creates new if None)
    """
    if console is None:
        console = Console()

    prefix = f" [bold color(214)]{BRAND}[/bold color(214)] [dim]›[/dim]"

    console.print(f"{prefix} [bold white]{title}[/bold white]")

    if subtitle:
        console.print(f"{prefix} [dim]{subtitle}[/dim]")

    if project:
        console.print(f"{prefix} Project: [cyan]{project}[/cyan]")

    if details:
        for key, value in details.items():
            console.print(f"{prefix} {key}: [cyan]{value}[/cyan]")

    console.print()


def render_summary(summary: RunSummary, title: str, console: Console) -> None:
    """Print the per-step outcome table and where the run stopped."""
    table = Table(title=title, title_justify="left", padding=(0, 1))
    table.add_column("Step / Resource", style="cyan", no_wrap=True)
    table.add_column("Outcome")
    table.add_column("Detail", style="dim")

    for record in summary.records:
        table.add_row(record.name, OUTCOME_STYLES[record.outcome], record.detail)

    console.print()
    console.print(table)

    if summary.stopped_at:
        console.print(
            f"\n[bold red]Stopped at:[/bold red] [white]{summary.stopped_at}[/white]"
        )
    elif summary.has_failures:
        console.print("\n[red]✗ Completed with failed steps, manual follow-up needed[/red]")
    elif summary.needs_follow_up:
        console.print(
            "\n[yellow]⚠ Completed with warnings, manual follow-up needed[/yellow]"
        )
