"""iotdeploy - status command"""

import rich_click as click
from rich.table import Table

from iotdeploy.base import LifecycleCommand
from iotdeploy.commands.options import config_options, resolve_env_file, split_overrides
from iotdeploy.constants import REQUIRED_INFRA_KEYS, TERRAFORM_CLUSTER_OUTPUT
from iotdeploy.models.status import ApplicationStatus


def _external_address(service: dict) -> str:
    ingress = ((service.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []
    if not ingress:
        return ""
    return ingress[0].get("hostname") or ingress[0].get("ip") or ""


class StatusCommand(LifecycleCommand):
    """Read-only report of the cluster, its nodes and its applications."""

    required_keys = REQUIRED_INFRA_KEYS

    def __init__(self, env_file=None, overrides=None, verbose: bool = False, console=None):
        super().__init__(env_file, overrides, verbose=verbose, console=console)
        self.table = Table(title="Cluster Status", title_justify="left", padding=(0, 1))
        self.table.add_column("Component", style="cyan", no_wrap=True)
        self.table.add_column("Status")
        self.table.add_column("Details", style="dim")

    def execute(self) -> None:
        config = self.load_config()
        self.show_header(title="Cluster Status", project=config.project_name)
        collaborators = self.build_collaborators(config)

        cluster_name = collaborators.terraform.output(TERRAFORM_CLUSTER_OUTPUT)
        if not cluster_name:
            self.print_warning("No cluster recorded in Terraform state. Run: iotdeploy up")
            return

        cluster = collaborators.aws.describe_cluster(cluster_name)
        if cluster is None:
            self.table.add_row(cluster_name, "[red]Not found[/red]", "recorded in state, missing in AWS")
            self.console.print(self.table)
            return

        self.table.add_row(
            cluster_name,
            f"[green]{cluster.get('status', 'UNKNOWN')}[/green]",
            f"Kubernetes {cluster.get('version', '?')} · {cluster.get('endpoint', '')}",
        )

        kubectl = collaborators.kubectl
        if not kubectl.can_connect():
            self.table.add_row("API server", "[red]Unreachable[/red]", "Run: iotdeploy up to bind kubeconfig")
            self.console.print(self.table)
            return

        nodes = kubectl.list("nodes")
        ready = [
            n for n in nodes
            if any(
                c.get("type") == "Ready" and c.get("status") == "True"
                for c in (n.get("status") or {}).get("conditions") or []
            )
        ]
        color = "green" if nodes and len(ready) == len(nodes) else "yellow"
        self.table.add_row("Nodes", f"[{color}]{len(ready)}/{len(nodes)} ready[/{color}]", "")

        for app in kubectl.list("applications", namespace=config.argocd_namespace):
            status = ApplicationStatus.from_resource(app["metadata"]["name"], app)
            color = "green" if status.is_healthy else "yellow"
            self.table.add_row(
                f"  {status.name}",
                f"[{color}]{status.sync}/{status.health}[/{color}]",
                ((app.get("spec") or {}).get("destination") or {}).get("namespace", ""),
            )

        for service in kubectl.list("services", all_namespaces=True):
            if (service.get("spec") or {}).get("type") != "LoadBalancer":
                continue
            address = _external_address(service)
            meta = service["metadata"]
            self.table.add_row(
                f"  {meta.get('namespace')}/{meta['name']}",
                "[green]External[/green]" if address else "[yellow]Pending[/yellow]",
                address,
            )

        self.console.print(self.table)


@click.command()
@config_options
def status(env_file, overrides, verbose):
    """
    Show cluster, node and application status

    Examples:
        iotdeploy status
        iotdeploy status --env-file prod.env
    """
    cmd = StatusCommand(resolve_env_file(env_file), split_overrides(overrides), verbose=verbose)
    cmd.run()
