"""
Cluster decommissioning.

Phases, in order:
    1. Discovery of the cluster's VPC
    2. Pre-cleanup of controller-created network resources
    3. Workload cleanup and the driven ``terraform destroy``
    4. One reconciliation retry if the destroy fails, then the volume
       sweep and removal of everything created outside Terraform state
"""

import time
from typing import Callable, Mapping, Optional

from iotdeploy.constants import (
    EBS_CSI_ADDON_NAME,
    EBS_CSI_NAMESPACE,
    EBS_CSI_POLICY_ARN,
    EBS_CSI_ROLE_NAME,
    EBS_CSI_SERVICE_ACCOUNT,
    EXTERNAL_SECRETS_NAMESPACE,
    EXTERNAL_SECRETS_RELEASE,
    EXTERNAL_SECRETS_SERVICE_ACCOUNT,
    SECRETS_POLICY_ARN,
    VOLUME_CLUSTER_TAG_KEYS,
    WORKLOAD_DELETE_TIMEOUT,
)
from iotdeploy.core.best_effort import TOLERATE_MISSING, best_effort
from iotdeploy.core.config_loader import DeployConfig
from iotdeploy.core.identity import IdentityFederation, ServiceAccountBinding
from iotdeploy.core.network_cleaner import CleanupStats, NetworkCleaner, discover_vpc
from iotdeploy.core.polling import POLL_POLICIES, PollPolicy, wait_for
from iotdeploy.core.provisioner import cluster_arn
from iotdeploy.exceptions import (
    DestroyError,
    HelmError,
    KubectlError,
    OperationCancelled,
)
from iotdeploy.logger import progress
from iotdeploy.models.results import Outcome, RunSummary
from iotdeploy.models.status import AddonStatus, ProbeResult, Readiness


class Decommissioner:
    """
    Tears a cluster and its dependent cloud resources down to nothing.

    Individual deletions log and continue; only a destroy that fails
    twice in a row stops the run, leaving the local state in place.
    """

    def __init__(
        self,
        config: DeployConfig,
        terraform,
        kubectl,
        helm,
        aws,
        logger,
        confirm: Optional[Callable[[str], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
        policies: Optional[Mapping[str, PollPolicy]] = None,
    ):
        self.config = config
        self.terraform = terraform
        self.kubectl = kubectl
        self.helm = helm
        self.aws = aws
        self.logger = logger
        self.confirm = confirm
        self.sleep = sleep
        self.policies = dict(POLL_POLICIES if policies is None else policies)
        self.identity = IdentityFederation(aws, logger)
        self.cleaner = NetworkCleaner(
            aws, logger, sleep=sleep, nat_policy=self.policies["nat-gateway-release"]
        )
        self.summary = RunSummary()
        self.stats = CleanupStats()
        self.nothing_to_destroy = False

    def run(self) -> RunSummary:
        """
        Raises:
            OperationCancelled: If the operator declines after the destroy plan
            DestroyError: If the driven destroy fails twice
        """
        if self.terraform.state_is_empty():
            return self._clean_empty_state()

        self.logger.step("Reviewing destroy plan")
        if not self.terraform.is_initialized():
            self.terraform.init()
        plan = self.terraform.plan(destroy=True)
        for line in plan.stdout.splitlines():
            if line.startswith("Plan:") or "No changes" in line:
                self.logger.console.print(f"  [dim]{line.strip()}[/dim]")
                self.logger.log(line.strip())
        if self.confirm is not None and not self.confirm("Destroy all of the resources above?"):
            raise OperationCancelled("Destroy cancelled")

        account_id = self.aws.account_id()
        issuer_url = self.aws.oidc_issuer_url(self.config.cluster_name)

        self.logger.step("Pre-cleanup of network dependencies")
        self._network_phase("Pre-cleanup")

        self.logger.step("Cleaning workloads")
        self._clean_workloads()
        self._delete_storage_addon()

        self.logger.step("Destroying infrastructure")
        with progress(self.logger, "terraform destroy (this takes a while)"):
            result = self.terraform.destroy()

        if result.is_failure:
            self.summary.add("Driven destroy", Outcome.WARNING, "first attempt failed")
            self.logger.warning("terraform destroy failed, cleaning dependencies and retrying")
            self.logger.log_output(result.stderr, "stderr")

            self.logger.step("Reconciliation retry")
            self._network_phase("Reconciliation cleanup")
            with progress(self.logger, "terraform destroy (fresh refresh)"):
                result = self.terraform.destroy(refresh_first=True)

            if result.is_failure:
                self.summary.add("Driven destroy retry", Outcome.FAILED, "second attempt failed")
                self._sweep_volumes()
                self.summary.stopped_at = "Driven destroy retry"
                raise DestroyError(
                    "terraform destroy failed twice; local state kept for a re-run",
                    remaining=self.terraform.state_list(),
                )
            self.summary.add("Driven destroy retry", Outcome.DONE, "infrastructure destroyed")
        else:
            self.summary.add("Driven destroy", Outcome.DONE, "infrastructure destroyed")
        self.logger.success("Infrastructure destroyed")

        self._sweep_volumes()

        self.logger.step("Removing resources outside Terraform state")
        self._post_cleanup(account_id, issuer_url)
        return self.summary

    def _clean_empty_state(self) -> RunSummary:
        self.nothing_to_destroy = True
        removed = self.terraform.clean_local_state()
        self.logger.success("No active cluster found")
        self.summary.add(
            "Terraform state",
            Outcome.SKIPPED,
            f"no active cluster; removed {', '.join(removed)}" if removed else "no active cluster",
        )
        return self.summary

    # Phases 1-2

    def _network_phase(self, name: str) -> None:
        found = discover_vpc(self.config.cluster_name, self.terraform, self.aws, self.logger)
        if found is None:
            self.logger.warning("Cluster VPC not found, relying on terraform destroy")
            self.summary.add(name, Outcome.SKIPPED, "VPC not found")
            return

        vpc_id, strategy = found
        stats = self.cleaner.cleanup(vpc_id)
        self.stats.merge(stats)

        if not stats.has_resources() and not stats.left_behind:
            self.logger.log(f"{vpc_id} (via {strategy}): nothing to clean")
            self.summary.add(name, Outcome.SKIPPED, f"{vpc_id}: nothing to clean")
            return

        detail = f"{vpc_id} (via {strategy}): {stats.summary()}"
        if stats.left_behind:
            self.logger.warning(f"Still in use: {', '.join(stats.left_behind)}")
            self.summary.add(name, Outcome.WARNING, detail)
        else:
            self.logger.success(detail)
            self.summary.add(name, Outcome.DONE, detail)

    # Phase 3

    def _kube_step(self, description: str, action: Callable[[], object]) -> bool:
        """Workload deletions never stop the teardown; failures become warnings."""
        try:
            with best_effort(self.logger, description, TOLERATE_MISSING):
                action()
        except (KubectlError, HelmError) as e:
            self.logger.warning(f"{description} failed: {e.message}")
            return False
        return True

    def _clean_workloads(self) -> None:
        if self.aws.describe_cluster(self.config.cluster_name) is None:
            self.summary.add("Workloads", Outcome.SKIPPED, "cluster not found")
            return

        if not self._kube_step(
            "Bind kubeconfig",
            lambda: self.kubectl.update_kubeconfig(self.config.cluster_name, self.config.region),
        ) or not self.kubectl.can_connect():
            self.logger.warning("API server unreachable, skipping workload cleanup")
            self.summary.add("Workloads", Outcome.WARNING, "API server unreachable")
            return

        argocd_ns = self.config.argocd_namespace
        steps = [
            ("Delete ApplicationSets", lambda: self.kubectl.delete("applicationsets", namespace=argocd_ns)),
            ("Delete Applications", lambda: self.kubectl.delete("applications", namespace=argocd_ns)),
            (
                "Delete namespaced objects",
                lambda: self.kubectl.delete("all", all_namespaces=True, timeout=WORKLOAD_DELETE_TIMEOUT),
            ),
            (
                "Delete persistent volume claims",
                lambda: self.kubectl.delete("pvc", all_namespaces=True, timeout=WORKLOAD_DELETE_TIMEOUT),
            ),
            (
                "Delete persistent volumes",
                lambda: self.kubectl.delete("pv", timeout=WORKLOAD_DELETE_TIMEOUT),
            ),
            (
                f"Uninstall {EXTERNAL_SECRETS_RELEASE}",
                lambda: self.helm.uninstall(EXTERNAL_SECRETS_RELEASE, EXTERNAL_SECRETS_NAMESPACE),
            ),
        ]

        failed = [description for description, action in steps if not self._kube_step(description, action)]
        if failed:
            self.summary.add("Workloads", Outcome.WARNING, f"failed: {', '.join(failed)}")
        else:
            self.logger.success("Workloads, claims and volumes deleted")
            self.summary.add("Workloads", Outcome.DONE, "objects, claims, volumes, controllers")

    def _delete_storage_addon(self) -> None:
        cluster = self.config.cluster_name
        with best_effort(self.logger, f"Delete addon {EBS_CSI_ADDON_NAME}") as attempt:
            self.aws.delete_addon(cluster, EBS_CSI_ADDON_NAME)

        if not attempt.succeeded:
            self.summary.add("Storage addon", Outcome.SKIPPED, attempt.outcome.replace("_", " "))
            return

        def gone() -> ProbeResult:
            addon = self.aws.describe_addon(cluster, EBS_CSI_ADDON_NAME)
            if addon is None:
                return ProbeResult(Readiness.READY, "deleted")
            return ProbeResult(Readiness.PENDING, AddonStatus.parse(addon.get("status")).value)

        result = wait_for(gone, self.policies["addon-deletion"], self.logger, sleep=self.sleep)
        if result.ready:
            self.summary.add("Storage addon", Outcome.DONE, f"{EBS_CSI_ADDON_NAME} deleted")
        else:
            self.summary.add("Storage addon", Outcome.WARNING, f"{EBS_CSI_ADDON_NAME} {result.last.detail}")

    # Phase 4

    def _sweep_volumes(self) -> None:
        cluster = self.config.cluster_name
        tag_key, legacy_key = VOLUME_CLUSTER_TAG_KEYS
        volumes = set(self.aws.available_volumes(tag_key.format(cluster=cluster), ["owned"]))
        volumes.update(self.aws.available_volumes(legacy_key, [cluster]))

        deleted = 0
        for volume_id in sorted(volumes):
            with best_effort(self.logger, f"Delete volume {volume_id}") as attempt:
                self.aws.delete_volume(volume_id)
            if attempt.succeeded:
                deleted += 1
            elif attempt.blocked:
                self.stats.left_behind.append(volume_id)
        self.stats.volumes_deleted += deleted

        if not volumes:
            self.summary.add("Volume sweep", Outcome.SKIPPED, "no orphaned volumes")
        elif deleted == len(volumes):
            self.summary.add("Volume sweep", Outcome.DONE, f"{deleted} volume(s)")
        else:
            self.summary.add("Volume sweep", Outcome.WARNING, f"{deleted}/{len(volumes)} volume(s) deleted")

    def _post_cleanup(self, account_id: str, issuer_url: str) -> None:
        context_name = cluster_arn(self.config.region, account_id, self.config.cluster_name)
        self.kubectl.delete_context(context_name)
        self.summary.add("Kube context", Outcome.DONE, context_name)

        bindings = [
            ServiceAccountBinding(
                EBS_CSI_ROLE_NAME, EBS_CSI_POLICY_ARN, EBS_CSI_NAMESPACE, EBS_CSI_SERVICE_ACCOUNT
            ),
            ServiceAccountBinding(
                self.config.secrets_role_name,
                SECRETS_POLICY_ARN,
                EXTERNAL_SECRETS_NAMESPACE,
                EXTERNAL_SECRETS_SERVICE_ACCOUNT,
            ),
        ]
        remaining_roles = [b.role_name for b in bindings if not self.identity.remove_service_account_role(b)]
        if remaining_roles:
            self.summary.add("IAM roles", Outcome.WARNING, f"still present: {', '.join(remaining_roles)}")
        else:
            self.summary.add("IAM roles", Outcome.DONE, ", ".join(b.role_name for b in bindings))

        if issuer_url:
            issuer = issuer_url.replace("https://", "", 1)
            removed = self.identity.remove_oidc_provider(issuer)
            self.summary.add("OIDC provider", Outcome.DONE if removed else Outcome.SKIPPED, issuer)
        else:
            self.summary.add("OIDC provider", Outcome.SKIPPED, "issuer unknown")

        names = self.aws.parameter_names(self.config.parameter_prefix)
        if names:
            with best_effort(self.logger, f"Delete {len(names)} parameter(s) under {self.config.parameter_prefix}"):
                self.aws.delete_parameters(names)
            self.summary.add("Parameters", Outcome.DONE, f"{len(names)} under {self.config.parameter_prefix}")
        else:
            self.summary.add("Parameters", Outcome.SKIPPED, f"none under {self.config.parameter_prefix}")

        removed_files = self.terraform.clean_local_state()
        self.summary.add("Local state", Outcome.DONE, ", ".join(removed_files) or "nothing to remove")
        self.logger.success("Kube context, roles, parameters and local state removed")
