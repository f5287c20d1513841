"""iotdeploy - up command"""

import rich_click as click

from iotdeploy.base import LifecycleCommand
from iotdeploy.commands.options import config_options, resolve_env_file, split_overrides
from iotdeploy.constants import REQUIRED_PROVISION_KEYS
from iotdeploy.core import manifests
from iotdeploy.core.provisioner import Provisioner
from iotdeploy.models.context import ClusterContext
from iotdeploy.ui_components import render_summary


class UpCommand(LifecycleCommand):
    """
    Provision the cluster and bootstrap every environment.

    Safe to re-run: states that are already satisfied are skipped, so a
    run that stopped halfway resumes where it stopped.
    """

    required_keys = REQUIRED_PROVISION_KEYS

    def __init__(self, env_file=None, overrides=None, yes: bool = False, verbose: bool = False, console=None):
        super().__init__(env_file, overrides, verbose=verbose, console=console)
        self.yes = yes

    def execute(self) -> None:
        config = self.load_config()

        self.show_header(
            title="Cluster Provisioning",
            project=config.project_name,
            details={
                "Cluster": config.cluster_name,
                "Region": config.region,
                "Environments": ", ".join(config.environment_names),
            },
        )

        logger = self.init_logger(config.project_name, "up", config.log_dir)
        collaborators = self.build_collaborators(config)

        provisioner = Provisioner(
            config,
            terraform=collaborators.terraform,
            kubectl=collaborators.kubectl,
            helm=collaborators.helm,
            aws=collaborators.aws,
            logger=logger,
            confirm=None if self.yes else self.confirm,
        )

        try:
            context = provisioner.run()
        finally:
            if provisioner.summary.records:
                render_summary(provisioner.summary, "Provisioning Summary", self.console)

        self._show_result(context, provisioner)

    def _show_result(self, context: ClusterContext, provisioner: Provisioner) -> None:
        config = self.config
        self.console.print()
        self.console.print(f"[bold]Cluster:[/bold] [cyan]{context.cluster_name}[/cyan] ({config.region})")
        self.console.print(
            "[bold]Namespaces:[/bold] "
            + ", ".join(f"[cyan]{env.namespace}[/cyan]" for env in context.environments)
        )
        self.console.print(
            "[bold]Storage classes:[/bold] "
            + ", ".join(
                sc["metadata"]["name"] + (" (default)" if sc["metadata"].get("annotations") else "")
                for sc in manifests.storage_classes()
            )
        )
        for status in provisioner.application_statuses:
            color = "green" if status.is_healthy else "yellow"
            self.console.print(
                f"[bold]Application:[/bold] [cyan]{status.name}[/cyan] "
                f"[{color}]{status.sync}/{status.health}[/{color}]"
            )

        self.console.print()
        if provisioner.summary.needs_follow_up:
            self.print_warning("Provisioning finished with warnings")
        else:
            self.print_success("Provisioning complete")
        self._logs_hint()


@click.command()
@config_options
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
def up(env_file, overrides, verbose, yes):
    """
    Provision the EKS cluster and bootstrap the IoT stack

    This command will:
    - Apply the Terraform configuration (VPC, cluster, node group)
    - Register workload identity and install the EBS CSI addon
    - Install External Secrets and sync credentials from Parameter Store
    - Install ArgoCD and apply the environments ApplicationSet
    - Wait for every environment to report Synced/Healthy

    Examples:
        # Provision with ./.env
        iotdeploy up

        # Provision two environments without prompting
        iotdeploy up --set ENVIRONMENTS=dev,staging --yes
    """
    cmd = UpCommand(
        resolve_env_file(env_file), split_overrides(overrides), yes=yes, verbose=verbose
    )
    cmd.run()
