#!/usr/bin/env python3
"""iotdeploy CLI - Main entry point"""

import functools
import os
import sys

from rich.console import Console

# Rich-Click: colored help output
import rich_click as click

from iotdeploy import __version__
from iotdeploy.commands.doctor import doctor
from iotdeploy.commands.down import down
from iotdeploy.commands.status import status
from iotdeploy.commands.up import up

click.rich_click.USE_RICH_MARKUP = True
click.rich_click.USE_MARKDOWN = False
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.MAX_WIDTH = 100

# COMMANDS / OPTIONS
click.rich_click.STYLE_COMMAND = "bold cyan"
click.rich_click.STYLE_OPTION = "bold magenta"
click.rich_click.STYLE_SWITCH = "bold green"
click.rich_click.STYLE_ARGUMENT = "bold yellow"

# HEADERS
click.rich_click.STYLE_HEADER_TEXT = "bold cyan"
click.rich_click.STYLE_USAGE = "bold yellow"
click.rich_click.STYLE_USAGE_COMMAND = "bold cyan"

# HELP TEXT
click.rich_click.STYLE_HELPTEXT_FIRST_LINE = "bold white"
click.rich_click.STYLE_HELPTEXT = ""
click.rich_click.STYLE_OPTION_HELP = ""
click.rich_click.STYLE_METAVAR = "bold yellow"
click.rich_click.STYLE_OPTION_DEFAULT = "dim cyan"
click.rich_click.STYLE_EPILOG_TEXT = "dim"

# PANEL BORDERS
click.rich_click.STYLE_OPTIONS_PANEL_BORDER = "cyan"
click.rich_click.STYLE_COMMANDS_PANEL_BORDER = "cyan"
click.rich_click.ALIGN_ERRORS_PANEL = "left"
click.rich_click.ERRORS_EPILOGUE = ""

console = Console()


def handle_cli_errors(func):
    """Decorator to handle CLI errors gracefully."""
    from click.exceptions import ClickException

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ClickException as e:
            # Click's built-in exceptions (already formatted)
            e.show()
            sys.exit(e.exit_code)
        except KeyboardInterrupt:
            console.print("\n\n[yellow]⚠️  Operation cancelled by user[/yellow]")
            sys.exit(130)
        except Exception as e:
            console.print(f"\n[bold red]✗ Unexpected error:[/bold red] {e}\n")

            # Show traceback if DEBUG env var is set
            if os.environ.get("DEBUG"):
                import traceback

                console.print("[dim]Traceback:[/dim]")
                traceback.print_exc()
            sys.exit(1)

    return wrapper


@click.group(cls=click.RichGroup)
@click.version_option(version=__version__)
def cli() -> None:
    """
    iotdeploy - provision and tear down the IoT stack on EKS.

    \b
    Quick Start:
      iotdeploy doctor    # Check tools and AWS credentials
      iotdeploy up        # Cluster, addons, secrets, GitOps
      iotdeploy status    # Nodes, applications, endpoints
      iotdeploy down      # Destroy everything

    \b
    Configuration comes from ./.env (or --env-file), the environment
    and --set KEY=VALUE overrides, in that order of precedence.
    """


cli.add_command(up)
cli.add_command(down)
cli.add_command(status)
cli.add_command(doctor)


@handle_cli_errors
def main():
    """Main entry point."""
    cli(standalone_mode=True)


if __name__ == "__main__":
    main()
