"""iotdeploy - down command"""

import rich_click as click

from iotdeploy.base import LifecycleCommand
from iotdeploy.commands.options import config_options, resolve_env_file, split_overrides
from iotdeploy.constants import REQUIRED_INFRA_KEYS
from iotdeploy.core.decommissioner import Decommissioner
from iotdeploy.exceptions import OperationCancelled
from iotdeploy.ui_components import render_summary


class DownCommand(LifecycleCommand):
    """
    Destroy the cluster and everything it created.

    Features:
    - Network dependency pre-cleanup
    - Workload and addon cleanup before terraform destroy
    - One reconciliation retry on a failed destroy
    - Orphaned volume sweep, IAM, parameter and local state cleanup
    """

    required_keys = REQUIRED_INFRA_KEYS

    def __init__(self, env_file=None, overrides=None, yes: bool = False, verbose: bool = False, console=None):
        super().__init__(env_file, overrides, verbose=verbose, console=console)
        self.yes = yes

    def execute(self) -> None:
        config = self.load_config()

        self.show_header(
            title="Cluster Teardown",
            subtitle="[red]Destroys the cluster, its network and all data on its volumes[/red]",
            project=config.project_name,
            details={"Cluster": config.cluster_name, "Region": config.region},
        )

        if not self.yes and not self.confirm_literal(
            f"[bold]Destroy {config.cluster_name}?[/bold]"
        ):
            raise OperationCancelled("Destroy cancelled")

        logger = self.init_logger(config.project_name, "down", config.log_dir)
        collaborators = self.build_collaborators(config)

        decommissioner = Decommissioner(
            config,
            terraform=collaborators.terraform,
            kubectl=collaborators.kubectl,
            helm=collaborators.helm,
            aws=collaborators.aws,
            logger=logger,
            confirm=None if self.yes else self.confirm,
        )

        try:
            decommissioner.run()
        finally:
            if decommissioner.summary.records:
                render_summary(decommissioner.summary, "Teardown Summary", self.console)

        self.console.print()
        if decommissioner.nothing_to_destroy:
            self.print_success("No active cluster found, local state cleaned")
        elif decommissioner.summary.needs_follow_up:
            self.print_warning("Cluster destroyed, some resources need manual follow-up")
            for resource in decommissioner.stats.left_behind:
                self.print_dim(f"  still present: {resource}")
        else:
            self.print_success(f"{config.cluster_name} destroyed")
        self._logs_hint()


@click.command()
@config_options
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts")
def down(env_file, overrides, verbose, yes):
    """
    Destroy the EKS cluster and all of its resources

    This command will:
    - Delete load balancers, security groups, network interfaces and gateways
      left behind by in-cluster controllers
    - Delete workloads, volume claims, volumes and the EBS CSI addon
    - Run terraform destroy (retried once after a second cleanup pass)
    - Remove orphaned volumes, IAM roles, the OIDC provider and parameters

    Warning: All data on the cluster's volumes will be lost.

    Examples:
        # Destroy with confirmation
        iotdeploy down

        # Skip confirmation prompts
        iotdeploy down --yes
    """
    cmd = DownCommand(
        resolve_env_file(env_file), split_overrides(overrides), yes=yes, verbose=verbose
    )
    cmd.run()
