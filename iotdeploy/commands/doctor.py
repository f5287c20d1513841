"""iotdeploy - doctor command"""

import shutil

import rich_click as click
from rich.table import Table

from iotdeploy.base import BaseCommand
from iotdeploy.commands.options import config_options, resolve_env_file, split_overrides
from iotdeploy.constants import REQUIRED_TOOLS
from iotdeploy.core.config_loader import ConfigLoader
from iotdeploy.core.preflight import check_credentials
from iotdeploy.exceptions import ConfigurationError, PreconditionError
from iotdeploy.services import AwsService


class DoctorCommand(BaseCommand):
    """Prerequisite check: local tools and AWS credentials."""

    def __init__(self, env_file=None, overrides=None, verbose: bool = False, console=None):
        super().__init__(verbose=verbose, console=console)
        self.env_file = env_file
        self.overrides = overrides or {}
        self.problems = []
        self.table = Table(
            title="System Health Report", title_justify="left", padding=(0, 1)
        )
        self.table.add_column("Check", style="cyan", no_wrap=True)
        self.table.add_column("Status")
        self.table.add_column("Details", style="dim")

    def check_tools(self) -> None:
        for tool in REQUIRED_TOOLS:
            path = shutil.which(tool)
            if path:
                self.table.add_row(f"✅ {tool}", "[green]Installed[/green]", path)
            else:
                self.table.add_row(f"❌ {tool}", "[red]Missing[/red]", "not on PATH")
                self.problems.append(f"{tool} missing")

    def check_aws(self) -> None:
        try:
            values = ConfigLoader(self.env_file, self.overrides).read_values()
        except ConfigurationError as e:
            self.table.add_row("❌ Configuration", "[red]Unreadable[/red]", e.message)
            self.problems.append("configuration unreadable")
            values = {}

        aws = AwsService(values.get("AWS_REGION"))
        region = aws.session.region_name
        if region:
            self.table.add_row("✅ AWS region", "[green]Set[/green]", region)
        else:
            self.table.add_row("❌ AWS region", "[red]Not set[/red]", "Set AWS_REGION")
            self.problems.append("AWS region not set")
            return

        try:
            identity = check_credentials(aws)
        except PreconditionError as e:
            self.table.add_row("❌ AWS credentials", "[red]Rejected[/red]", e.context or e.message)
            self.problems.append("AWS credentials")
            return
        self.table.add_row(
            "✅ AWS credentials",
            "[green]OK[/green]",
            f"Account {identity['Account']} · {identity['Arn']}",
        )

    def execute(self) -> None:
        self.show_header(title="Doctor", subtitle="Checking prerequisites")
        self.check_tools()
        self.check_aws()
        self.console.print(self.table)
        self.console.print()

        if self.problems:
            raise PreconditionError("Prerequisites missing", context=", ".join(self.problems))
        self.print_success("All prerequisites satisfied")


@click.command()
@config_options
def doctor(env_file, overrides, verbose):
    """
    Check local tools and AWS credentials

    Examples:
        iotdeploy doctor
    """
    cmd = DoctorCommand(resolve_env_file(env_file), split_overrides(overrides), verbose=verbose)
    cmd.run()
