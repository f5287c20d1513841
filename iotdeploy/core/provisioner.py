"""
Cluster provisioning state machine.

States run strictly in order. Each one receives the ClusterContext the
previous state produced, checks whether its target is already satisfied,
acts only if it is not, and hands an updated context to the next state.
A failing state stops the run and every later state is reported as not
reached; re-running starts over from the top and the guards skip what is
already in place.
"""

import time
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from iotdeploy.constants import (
    ARGOCD_INSTALL_URL,
    ARGOCD_SERVER_DEPLOYMENT,
    ARGOCD_SERVER_TIMEOUT,
    ARGOCD_VERSION_ANNOTATION,
    EBS_CSI_ADDON_NAME,
    EBS_CSI_NAMESPACE,
    EBS_CSI_POLICY_ARN,
    EBS_CSI_ROLE_NAME,
    EBS_CSI_SERVICE_ACCOUNT,
    EXTERNAL_SECRETS_CHART,
    EXTERNAL_SECRETS_NAMESPACE,
    EXTERNAL_SECRETS_RELEASE,
    EXTERNAL_SECRETS_REPO_NAME,
    EXTERNAL_SECRETS_REPO_URL,
    EXTERNAL_SECRETS_SERVICE_ACCOUNT,
    IRSA_ANNOTATION,
    SECRETS_POLICY_ARN,
    STORAGE_CLASS_PROVISIONER,
    TERRAFORM_CLUSTER_OUTPUT,
)
from iotdeploy.core import manifests
from iotdeploy.core.best_effort import TOLERATE_EXISTING, TOLERATE_MISSING, best_effort
from iotdeploy.core.config_loader import DeployConfig
from iotdeploy.core.identity import IdentityFederation, ServiceAccountBinding
from iotdeploy.core.polling import POLL_POLICIES, PollPolicy, wait_for
from iotdeploy.core.preflight import check_credentials, check_tools
from iotdeploy.exceptions import IotDeployError, OperationCancelled, ProvisioningError
from iotdeploy.logger import progress
from iotdeploy.models.context import ClusterContext, Environment
from iotdeploy.models.results import Outcome, RunSummary
from iotdeploy.models.status import AddonStatus, ApplicationStatus, ProbeResult, Readiness


class ProvisionState(Enum):
    """Provisioning states, in execution order."""

    INFRA_INIT = "InfraInit"
    INFRA_APPLIED = "InfraApplied"
    KUBECONFIG_BOUND = "KubeconfigBound"
    IDENTITY_PROVIDER_READY = "IdentityProviderReady"
    ADDON_ACTIVE = "AddonActive"
    STORAGE_CLASSES_READY = "StorageClassesReady"
    NODES_READY = "NodesReady"
    SECRETS_OPERATOR_INSTALLED = "SecretsOperatorInstalled"
    SECRETS_OPERATOR_READY = "SecretsOperatorReady"
    IRSA_BOUND = "IRSABound"
    SECRETS_CONFIGURED = "SecretsConfigured"
    SECRETS_SYNCED = "SecretsSynced"
    GITOPS_INSTALLED = "GitOpsInstalled"
    APPLICATION_SET_APPLIED = "ApplicationSetApplied"
    APPLICATIONS_HEALTHY = "ApplicationsHealthy"

    def __str__(self) -> str:
        return self.value


STATE_ORDER: List[ProvisionState] = list(ProvisionState)

StepResult = Tuple[ClusterContext, Outcome, str]


def _condition(obj: Optional[Dict[str, Any]], condition_type: str) -> Optional[Dict[str, Any]]:
    for condition in ((obj or {}).get("status") or {}).get("conditions") or []:
        if condition.get("type") == condition_type:
            return condition
    return None


def _condition_true(obj: Optional[Dict[str, Any]], condition_type: str) -> bool:
    condition = _condition(obj, condition_type)
    return bool(condition) and condition.get("status") == "True"


def _deployment_available(deployment: Dict[str, Any]) -> bool:
    wanted = (deployment.get("spec") or {}).get("replicas", 1)
    available = (deployment.get("status") or {}).get("availableReplicas") or 0
    return available >= wanted


def cluster_arn(region: str, account_id: str, cluster_name: str) -> str:
    """Name under which ``aws eks update-kubeconfig`` registers the context."""
    return f"arn:aws:eks:{region}:{account_id}:cluster/{cluster_name}"


class Provisioner:
    """
    Drives a cluster from nothing to healthy GitOps-managed environments.

    Args:
        config: Validated run configuration
        terraform, kubectl, helm, aws: Collaborator wrappers
        logger: DeployLogger for status lines and the log file
        confirm: Asked before the first cluster creation; returning False cancels
        sleep: Used by every wait between polling attempts
        policies: Named polling policies (defaults to POLL_POLICIES)
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
        self.summary = RunSummary()
        self.application_statuses: List[ApplicationStatus] = []

    # Driver

    def run(self) -> ClusterContext:
        """
        Run every state in order.

        Returns:
            The context produced by the last state

        Raises:
            PreconditionError: If tools or credentials are missing
            OperationCancelled: If the operator declines cluster creation
            ProvisioningError: Naming the state the run stopped at
        """
        context = self.preflight()

        for index, state in enumerate(STATE_ORDER):
            self.logger.step(state.value)
            handler = getattr(self, f"_{state.name.lower()}")
            try:
                context, outcome, detail = handler(context)
            except OperationCancelled:
                raise
            except IotDeployError as e:
                reason = getattr(e, "reason", e.message)
                self.summary.add(state.value, Outcome.FAILED, reason)
                for later in STATE_ORDER[index + 1:]:
                    self.summary.add(later.value, Outcome.NOT_REACHED)
                self.summary.stopped_at = state.value
                raise ProvisioningError(state.value, reason, e.context) from e

            self.summary.add(state.value, outcome, detail)
            if outcome == Outcome.SKIPPED:
                self.logger.success(f"Already satisfied{': ' + detail if detail else ''}")
            elif outcome == Outcome.DONE:
                self.logger.success(detail or state.value)

        return context

    def preflight(self) -> ClusterContext:
        """Tool and credential checks; seeds the context with the account id."""
        self.logger.step("Pre-flight checks")
        check_tools()
        identity = check_credentials(self.aws)
        self.logger.success(f"AWS account {identity['Account']} ({identity['Arn']})")
        self.summary.add("Pre-flight", Outcome.DONE, f"account {identity['Account']}")
        return ClusterContext(
            account_id=identity["Account"],
            environments=self.config.environments,
        )

    def _wait(self, name: str, probe: Callable[[], ProbeResult], label: Optional[str] = None):
        return wait_for(probe, self.policies[name], self.logger, sleep=self.sleep, label=label)

    # States

    def _infra_init(self, context: ClusterContext) -> StepResult:
        self.terraform.generate_tfvars(self.config.to_terraform_vars())
        if self.terraform.is_initialized():
            return context, Outcome.SKIPPED, "working directory initialized"

        with progress(self.logger, "Initializing Terraform"):
            self.terraform.init()
        return context, Outcome.DONE, "terraform init"

    def _infra_applied(self, context: ClusterContext) -> StepResult:
        recorded = self.terraform.output(TERRAFORM_CLUSTER_OUTPUT)
        if recorded == self.config.cluster_name and self.aws.describe_cluster(recorded):
            return context.evolve(cluster_name=recorded), Outcome.SKIPPED, f"cluster {recorded} exists"

        if self.confirm is not None and not self.confirm(
            f"Create EKS cluster {self.config.cluster_name} in {self.config.region}?"
        ):
            raise OperationCancelled("Provisioning cancelled")

        with progress(self.logger, "Planning infrastructure"):
            self.terraform.plan()
        with progress(self.logger, "Applying infrastructure (this takes a while)"):
            self.terraform.apply()

        cluster_name = self.terraform.output(TERRAFORM_CLUSTER_OUTPUT)
        if not cluster_name:
            raise ProvisioningError(
                ProvisionState.INFRA_APPLIED,
                f"Terraform output '{TERRAFORM_CLUSTER_OUTPUT}' is empty after apply",
            )
        return context.evolve(cluster_name=cluster_name), Outcome.DONE, f"cluster {cluster_name} applied"

    def _kubeconfig_bound(self, context: ClusterContext) -> StepResult:
        expected = cluster_arn(self.config.region, context.account_id, context.cluster_name)
        if self.kubectl.current_context() == expected and self.kubectl.can_connect():
            return context, Outcome.SKIPPED, expected

        self.kubectl.update_kubeconfig(context.cluster_name, self.config.region)
        if not self.kubectl.can_connect():
            raise ProvisioningError(
                ProvisionState.KUBECONFIG_BOUND,
                f"Cannot reach the API server of {context.cluster_name}",
            )
        return context, Outcome.DONE, expected

    def _identity_provider_ready(self, context: ClusterContext) -> StepResult:
        def issuer_probe() -> ProbeResult:
            url = self.aws.oidc_issuer_url(context.cluster_name)
            if url:
                return ProbeResult(Readiness.READY, url, payload=url)
            return ProbeResult(Readiness.PENDING, "issuer not published yet")

        issuer_url = self._wait("identity-provider", issuer_probe).last.payload
        context = context.evolve(oidc_issuer_url=issuer_url)

        created_provider = self.identity.ensure_oidc_provider(issuer_url)
        role_arn, recreated = self.identity.ensure_service_account_role(
            ServiceAccountBinding(
                role_name=EBS_CSI_ROLE_NAME,
                policy_arn=EBS_CSI_POLICY_ARN,
                namespace=EBS_CSI_NAMESPACE,
                service_account=EBS_CSI_SERVICE_ACCOUNT,
            ),
            context.account_id,
            context.oidc_issuer,
        )
        context = context.evolve(addon_role_arn=role_arn)

        if created_provider or recreated:
            return context, Outcome.DONE, f"issuer {context.oidc_issuer}"
        return context, Outcome.SKIPPED, f"issuer {context.oidc_issuer}"

    def _addon_probe(self, cluster_name: str) -> ProbeResult:
        addon = self.aws.describe_addon(cluster_name, EBS_CSI_ADDON_NAME)
        status = AddonStatus.parse(addon.get("status") if addon else None)
        return ProbeResult(status.readiness, status.value, payload=(addon or {}).get("health"))

    def _addon_active(self, context: ClusterContext) -> StepResult:
        addon = self.aws.describe_addon(context.cluster_name, EBS_CSI_ADDON_NAME)
        status = AddonStatus.parse(addon.get("status") if addon else None)
        bound_role = (addon or {}).get("serviceAccountRoleArn")

        if status == AddonStatus.ACTIVE and bound_role == context.addon_role_arn:
            return context, Outcome.SKIPPED, f"{EBS_CSI_ADDON_NAME} ACTIVE"

        mutated = False
        if addon is None:
            with best_effort(self.logger, f"Create addon {EBS_CSI_ADDON_NAME}", TOLERATE_EXISTING) as attempt:
                self.aws.create_addon(context.cluster_name, EBS_CSI_ADDON_NAME, context.addon_role_arn)
            if not attempt.succeeded:
                self.aws.update_addon(context.cluster_name, EBS_CSI_ADDON_NAME, context.addon_role_arn)
            mutated = True
        elif status not in (AddonStatus.CREATING, AddonStatus.UPDATING) or bound_role != context.addon_role_arn:
            self.aws.update_addon(context.cluster_name, EBS_CSI_ADDON_NAME, context.addon_role_arn)
            mutated = True

        result = self._wait("storage-addon", lambda: self._addon_probe(context.cluster_name))
        if not result.ready:
            return context, Outcome.WARNING, f"{EBS_CSI_ADDON_NAME} still {result.last.detail}"
        return context, Outcome.DONE if mutated else Outcome.SKIPPED, f"{EBS_CSI_ADDON_NAME} ACTIVE"

    def _storage_classes_ready(self, context: ClusterContext) -> StepResult:
        applied = []
        for storage_class in manifests.storage_classes():
            name = storage_class["metadata"]["name"]
            live = self.kubectl.get("storageclass", name)
            # provisioner and parameters are immutable, so the in-tree class must go first
            if live is not None and live.get("provisioner") != STORAGE_CLASS_PROVISIONER:
                with best_effort(
                    self.logger, f"Delete in-tree StorageClass {name}", TOLERATE_MISSING
                ):
                    self.kubectl.delete("storageclass", name=name)
            if self.kubectl.ensure(storage_class):
                applied.append(name)
        if applied:
            return context, Outcome.DONE, f"applied {', '.join(applied)}"
        return context, Outcome.SKIPPED, "gp3 (default), gp2"

    def _nodes_probe(self) -> ProbeResult:
        nodes = self.kubectl.list("nodes")
        ready = [n for n in nodes if _condition_true(n, "Ready")]
        detail = f"{len(ready)}/{len(nodes)} nodes ready"
        if nodes and len(ready) == len(nodes) and len(ready) >= self.config.nodes.min_size:
            return ProbeResult(Readiness.READY, detail)
        return ProbeResult(Readiness.PENDING, detail)

    def _nodes_ready(self, context: ClusterContext) -> StepResult:
        result = self._wait("nodes", self._nodes_probe)
        return context, Outcome.DONE, result.last.detail

    def _secrets_operator_installed(self, context: ClusterContext) -> StepResult:
        status = self.helm.release_status(EXTERNAL_SECRETS_RELEASE, EXTERNAL_SECRETS_NAMESPACE)
        if status == "deployed":
            return context, Outcome.SKIPPED, f"release {EXTERNAL_SECRETS_RELEASE} deployed"

        self.helm.repo_add(EXTERNAL_SECRETS_REPO_NAME, EXTERNAL_SECRETS_REPO_URL)
        with progress(self.logger, "Installing External Secrets Operator"):
            self.helm.upgrade_install(
                EXTERNAL_SECRETS_RELEASE,
                EXTERNAL_SECRETS_CHART,
                EXTERNAL_SECRETS_NAMESPACE,
                values={"installCRDs": "true"},
                version=self.config.external_secrets_version,
            )
        return context, Outcome.DONE, f"release {EXTERNAL_SECRETS_RELEASE} installed"

    def _operator_probe(self) -> ProbeResult:
        deployments = self.kubectl.list("deployments", namespace=EXTERNAL_SECRETS_NAMESPACE)
        available = [d for d in deployments if _deployment_available(d)]
        detail = f"{len(available)}/{len(deployments)} deployments available"
        if deployments and len(available) == len(deployments):
            return ProbeResult(Readiness.READY, detail)
        return ProbeResult(Readiness.PENDING, detail)

    def _secrets_operator_ready(self, context: ClusterContext) -> StepResult:
        result = self._wait("secrets-operator", self._operator_probe)
        return context, Outcome.DONE, result.last.detail

    def _irsa_bound(self, context: ClusterContext) -> StepResult:
        role_arn, recreated = self.identity.ensure_service_account_role(
            ServiceAccountBinding(
                role_name=self.config.secrets_role_name,
                policy_arn=SECRETS_POLICY_ARN,
                namespace=EXTERNAL_SECRETS_NAMESPACE,
                service_account=EXTERNAL_SECRETS_SERVICE_ACCOUNT,
            ),
            context.account_id,
            context.oidc_issuer,
        )
        context = context.evolve(secrets_role_arn=role_arn)

        account = self.kubectl.get(
            "serviceaccount", EXTERNAL_SECRETS_SERVICE_ACCOUNT, EXTERNAL_SECRETS_NAMESPACE
        )
        annotations = ((account or {}).get("metadata") or {}).get("annotations") or {}
        if annotations.get(IRSA_ANNOTATION) == role_arn and not recreated:
            return context, Outcome.SKIPPED, role_arn

        self.kubectl.annotate(
            "serviceaccount",
            EXTERNAL_SECRETS_SERVICE_ACCOUNT,
            EXTERNAL_SECRETS_NAMESPACE,
            IRSA_ANNOTATION,
            role_arn,
        )
        # Running pods only pick up the web identity token on restart
        self.kubectl.rollout_restart("deployment", EXTERNAL_SECRETS_RELEASE, EXTERNAL_SECRETS_NAMESPACE)
        return context, Outcome.DONE, role_arn

    def _secrets_configured(self, context: ClusterContext) -> StepResult:
        changes = []

        for path, value in self.config.secret_parameters().items():
            if self.aws.get_parameter(path) != value:
                self.aws.put_parameter(path, value)
                changes.append(path)

        for environment in context.environments:
            for manifest in (
                manifests.namespace(self.config.project_name, environment),
                manifests.secret_store(environment.namespace, self.config.region),
                manifests.external_secret(self.config.project_name, environment.namespace),
            ):
                if self.kubectl.ensure(manifest):
                    changes.append(f"{manifest['kind']}/{environment.namespace}")

        if changes:
            return context, Outcome.DONE, f"{len(changes)} change(s)"
        return context, Outcome.SKIPPED, "parameters and secret requests current"

    def _sync_probe(self, environment: Environment) -> ProbeResult:
        name = manifests.credentials_secret_name(self.config.project_name)
        request = self.kubectl.get("externalsecret", name, environment.namespace)
        if request is None:
            return ProbeResult(Readiness.PENDING, "secret request not found")
        condition = _condition(request, "Ready")
        if condition and condition.get("status") == "True":
            return ProbeResult(Readiness.READY, condition.get("reason", "SecretSynced"))
        reason = (condition or {}).get("reason") or "waiting for first sync"
        return ProbeResult(Readiness.PENDING, reason)

    def _secrets_synced(self, context: ClusterContext) -> StepResult:
        for environment in context.environments:
            self._wait(
                "secrets-sync",
                lambda env=environment: self._sync_probe(env),
                label=f"secrets-sync {environment.namespace}",
            )
        return context, Outcome.DONE, f"{len(context.environments)} namespace(s) synced"

    def _argocd_namespace(self, version: Optional[str] = None) -> dict:
        metadata = {"name": self.config.argocd_namespace}
        if version:
            metadata["annotations"] = {ARGOCD_VERSION_ANNOTATION: version}
        return {"apiVersion": "v1", "kind": "Namespace", "metadata": metadata}

    def _argocd_current(self) -> bool:
        # refs like "stable" are not image tags, so the installed ref lives on the namespace
        namespace = self.kubectl.get("namespace", self.config.argocd_namespace)
        if namespace is None:
            return False
        annotations = (namespace.get("metadata") or {}).get("annotations") or {}
        if annotations.get(ARGOCD_VERSION_ANNOTATION) != self.config.argocd_version:
            return False
        deployment = self.kubectl.get(
            "deployment", ARGOCD_SERVER_DEPLOYMENT, self.config.argocd_namespace
        )
        return deployment is not None

    def _gitops_installed(self, context: ClusterContext) -> StepResult:
        if self._argocd_current():
            return context, Outcome.SKIPPED, f"ArgoCD {self.config.argocd_version}"

        if self.kubectl.get("namespace", self.config.argocd_namespace) is None:
            self.kubectl.ensure(self._argocd_namespace())
        with progress(self.logger, f"Installing ArgoCD {self.config.argocd_version}"):
            self.kubectl.apply_url(
                ARGOCD_INSTALL_URL.format(version=self.config.argocd_version),
                namespace=self.config.argocd_namespace,
            )
        self.kubectl.ensure(self._argocd_namespace(self.config.argocd_version))

        available = self.kubectl.wait(
            "available",
            f"deployment/{ARGOCD_SERVER_DEPLOYMENT}",
            namespace=self.config.argocd_namespace,
            timeout_seconds=ARGOCD_SERVER_TIMEOUT,
        )
        if not available:
            self.logger.warning(f"{ARGOCD_SERVER_DEPLOYMENT} not available yet, continuing")
            return context, Outcome.WARNING, f"{ARGOCD_SERVER_DEPLOYMENT} not available"
        return context, Outcome.DONE, f"ArgoCD {self.config.argocd_version}"

    def _application_set_applied(self, context: ClusterContext) -> StepResult:
        manifest = manifests.application_set(
            self.config.project_name,
            self.config.argocd_namespace,
            context.environments,
            self.config.gitops_repo_url,
            self.config.gitops_revision,
            self.config.gitops_chart_path,
        )
        if self.kubectl.ensure(manifest):
            return context, Outcome.DONE, manifest["metadata"]["name"]
        return context, Outcome.SKIPPED, manifest["metadata"]["name"]

    def read_application(self, name: str) -> ApplicationStatus:
        app = self.kubectl.get("application", name, self.config.argocd_namespace)
        return ApplicationStatus.from_resource(name, app)

    def _application_probe(self, name: str) -> ProbeResult:
        status = self.read_application(name)
        # Degraded usually means pods still pulling images or waiting on volumes
        if status.is_healthy:
            return ProbeResult(Readiness.READY, f"{status.sync}/{status.health}", payload=status)
        return ProbeResult(Readiness.PENDING, f"{status.sync}/{status.health}", payload=status)

    def _applications_healthy(self, context: ClusterContext) -> StepResult:
        self.application_statuses = []
        unhealthy = []

        for environment in context.environments:
            name = manifests.application_name(self.config.project_name, environment)
            result = self._wait(
                "applications", lambda n=name: self._application_probe(n), label=name
            )
            self.application_statuses.append(result.last.payload)
            if not result.ready:
                unhealthy.append(name)

        detail = ", ".join(str(s) for s in self.application_statuses)
        if unhealthy:
            return context, Outcome.WARNING, detail
        return context, Outcome.DONE, detail
