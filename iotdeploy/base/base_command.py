"""
Base Command Class

Abstract base for all iotdeploy CLI commands.
Provides common functionality and structure.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from rich.console import Console

from iotdeploy.exceptions import IotDeployError, OperationCancelled
from iotdeploy.logger import DeployLogger
from iotdeploy.ui_components import show_header


class BaseCommand(ABC):
    """
    Abstract base command class.

    Provides:
    - Logger initialization
    - Header display
    - Confirmation prompts
    - Error handling with consistent exit codes
    """

    def __init__(self, verbose: bool = False, console: Optional[Console] = None):
        self.verbose = verbose
        self.console = console if console is not None else Console()
        self.logger: Optional[DeployLogger] = None

    def init_logger(
        self, project_name: str, command_name: str, log_dir: Optional[Path] = None
    ) -> DeployLogger:
        """
        Initialize command logger.

        Args:
            project_name: Project name (log directory)
            command_name: Command name (log file suffix)
            log_dir: Root of the logs tree

        Returns:
            DeployLogger instance
        """
        self.logger = DeployLogger(
            project_name,
            command_name,
            verbose=self.verbose,
            log_dir=log_dir,
            console=self.console,
        )
        return self.logger

    def show_header(
        self,
        title: str,
        subtitle: Optional[str] = None,
        project: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Show command header (skip in verbose mode)."""
        if not self.verbose:
            show_header(
                title=title,
                subtitle=subtitle,
                project=project,
                details=details,
                console=self.console,
            )

    def print_success(self, message: str) -> None:
        self.console.print(f"[green]✓ {message}[/green]")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠ {message}[/yellow]")

    def print_dim(self, message: str) -> None:
        self.console.print(f"[dim]{message}[/dim]")

    def confirm(self, question: str, default: bool = False) -> bool:
        """
        Ask for user confirmation.

        Args:
            question: Question to ask
            default: Default answer

        Returns:
            True if confirmed
        """
        default_str = "y" if default else "n"
        self.console.print(
            f"{question} [bold bright_white]\\[y/n][/bold bright_white] [dim]({default_str})[/dim]: ",
            end="",
        )
        answer = input().strip().lower()

        if not answer:
            return default

        return answer in ["y", "yes"]

    def confirm_literal(self, question: str, expected: str = "yes") -> bool:
        """Require the operator to type ``expected`` exactly."""
        self.console.print(
            f"{question} [dim]Type[/dim] [bold red]{expected}[/bold red] [dim]to continue[/dim]: ",
            end="",
        )
        return input().strip() == expected

    def _logs_hint(self) -> None:
        if self.logger and self.logger.log_path:
            self.console.print(f"[dim]Logs saved to:[/dim] {self.logger.log_path}\n")

    @abstractmethod
    def execute(self, **kwargs) -> None:
        """
        Execute command logic.

        Must be implemented by subclasses.
        """
        pass

    def run(self, **kwargs) -> None:
        """
        Run command with error handling.

        Exit codes: 0 on success or cancellation, 1 on any failure,
        130 on keyboard interrupt.
        """
        try:
            self.execute(**kwargs)
        except KeyboardInterrupt:
            self.console.print("\n[yellow]⚠️  Operation cancelled by user[/yellow]")
            if self.logger:
                self.logger.log("Interrupted by user", "WARNING")
            self._logs_hint()
            raise SystemExit(130)
        except SystemExit:
            raise
        except OperationCancelled as e:
            self.console.print(f"\n[yellow]{e.message}[/yellow]\n")
            if self.logger:
                self.logger.log(e.message, "WARNING")
        except IotDeployError as e:
            if self.logger:
                self.logger.log_error(e.message, context=e.context)
            else:
                self.console.print(f"\n[bold red]✗ {e.message}[/bold red]")
                if e.context:
                    self.console.print(f"  [color(208)]{e.context}[/color(208)]")
            self.console.print()
            self._logs_hint()
            raise SystemExit(1)
        except Exception as e:
            error_type = type(e).__name__
            self.console.print(f"\n[bold red]✗ {error_type}:[/bold red] {e}\n")
            if self.logger:
                self.logger.log_error(f"{error_type}: {e}")
            self._logs_hint()
            raise SystemExit(1)
        finally:
            if self.logger:
                self.logger.close()
