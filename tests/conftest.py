"""
Shared fixtures: an in-memory cloud and fake collaborators.

Every fake records its calls in one CallLog, tagged "read", "mutate" or
"local" (local file housekeeping), so tests can assert on mutation
counts and on the global order of calls across collaborators.
"""

import copy
import fnmatch
import io
import json
from typing import Any, Dict, List, Optional

import pytest
from rich.console import Console

from iotdeploy.constants import CHECKSUM_ANNOTATION
from iotdeploy.core.config_loader import build_config
from iotdeploy.exceptions import (
    KubectlError,
    ResourceExistsError,
    ResourceInUseError,
    ResourceNotFoundError,
)
from iotdeploy.logger import DeployLogger
from iotdeploy.models.results import ExecutionResult
from iotdeploy.services.kubectl_service import manifest_checksum

ACCOUNT_ID = "123456789012"
ISSUER_URL = "https://oidc.eks.us-east-1.amazonaws.com/id/EXAMPLED539D4633E53DE1B71EXAMPLE"

BASE_VALUES = {
    "PROJECT_NAME": "acme",
    "AWS_REGION": "us-east-1",
    "CLUSTER_NAME": "acme-eks",
    "NAMESPACE_PREFIX": "acme",
    "POSTGRES_DB": "iot",
    "POSTGRES_USER": "iot",
    "POSTGRES_PASSWORD": "s3cret",
    "GRAFANA_ADMIN_USER": "admin",
    "GRAFANA_ADMIN_PASSWORD": "grafana-pass",
    "ARGOCD_VERSION": "v2.9.3",
    "ARGOCD_NAMESPACE": "argocd",
    "GITOPS_REPO_URL": "https://github.com/acme/iot-gitops.git",
}


class CallLog:
    """Ordered record of every collaborator call."""

    def __init__(self):
        self.calls: List[tuple] = []

    def record(self, kind: str, name: str, *args) -> None:
        self.calls.append((kind, name, args))

    @property
    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if c[0] == "mutate"]

    def names(self, kind: Optional[str] = None) -> List[str]:
        return [c[1] for c in self.calls if kind is None or c[0] == kind]

    def index(self, name: str, *args) -> int:
        """Position of the first call with this name (and leading args)."""
        for position, (_, call_name, call_args) in enumerate(self.calls):
            if call_name == name and call_args[: len(args)] == args:
                return position
        raise AssertionError(f"{name}{args} was never called")

    def mark(self) -> int:
        return len(self.calls)

    def mutations_since(self, mark: int) -> List[tuple]:
        return [c for c in self.calls[mark:] if c[0] == "mutate"]


class FakeCloud:
    """Live resource set shared by the fake collaborators."""

    def __init__(self):
        self.log = CallLog()
        self.region = "us-east-1"
        self.clusters: Dict[str, Dict[str, Any]] = {}
        self.addons: Dict[str, Dict[str, Any]] = {}
        self.addon_create_status = "ACTIVE"
        self.oidc_providers: List[str] = []
        self.roles: Dict[str, Dict[str, Any]] = {}
        self.attach_is_noop = False
        self.parameters: Dict[str, str] = {}
        self.vpcs: Dict[str, Dict[str, str]] = {}
        self.load_balancers: List[Dict[str, str]] = []
        self.security_groups: Dict[str, Dict[str, Any]] = {}
        self.interfaces: Dict[str, Dict[str, Any]] = {}
        self.nat_gateways: Dict[str, Dict[str, str]] = {}
        self.internet_gateways: Dict[str, str] = {}
        self.volumes: Dict[str, Dict[str, Any]] = {}
        self.nodes: List[Dict[str, Any]] = []
        self.objects: Dict[tuple, Dict[str, Any]] = {}
        self.releases: Dict[tuple, str] = {}
        self.kube_context = ""
        self.app_health = ("Synced", "Healthy")

    def create_cluster(self, name: str, vpc_id: str = "vpc-0abc") -> None:
        self.clusters[name] = {
            "name": name,
            "status": "ACTIVE",
            "version": "1.29",
            "endpoint": f"https://{name}.eks.amazonaws.com",
            "identity": {"oidc": {"issuer": ISSUER_URL}},
        }
        self.vpcs[vpc_id] = {f"kubernetes.io/cluster/{name}": "shared"}
        self.nodes = [
            {"metadata": {"name": f"ip-10-0-1-{i}"}, "status": {"conditions": [{"type": "Ready", "status": "True"}]}}
            for i in range(2)
        ]
        # EKS ships the in-tree gp2 class as the cluster default
        self.objects[("storageclass", "", "gp2")] = {
            "kind": "StorageClass",
            "metadata": {
                "name": "gp2",
                "annotations": {"storageclass.kubernetes.io/is-default-class": "true"},
            },
            "provisioner": "kubernetes.io/aws-ebs",
        }

    def vpc_has_dependencies(self, vpc_id: str) -> bool:
        if any(sg["VpcId"] == vpc_id and sg["GroupName"] != "default" for sg in self.security_groups.values()):
            return True
        return any(eni["VpcId"] == vpc_id for eni in self.interfaces.values())


class FakeTerraform:
    def __init__(self, cloud: FakeCloud, cluster_name: str = "acme-eks"):
        self.cloud = cloud
        self.log = cloud.log
        self.cluster_name = cluster_name
        self.initialized = False
        self.outputs: Dict[str, str] = {}
        self.resources: List[str] = []
        self.destroy_failures = 0
        self.destroy_calls: List[bool] = []
        self.local_state = False

    def generate_tfvars(self, tfvars):
        self.log.record("local", "terraform.generate_tfvars")

    def is_initialized(self):
        self.log.record("read", "terraform.is_initialized")
        return self.initialized

    def init(self, upgrade=False):
        self.log.record("mutate", "terraform.init")
        self.initialized = True
        return ExecutionResult(0)

    def plan(self, destroy=False):
        self.log.record("read", "terraform.plan", destroy)
        summary = f"Plan: 0 to add, 0 to change, {len(self.resources)} to destroy." if destroy else "Plan: 42 to add"
        return ExecutionResult(0, stdout=summary)

    def apply(self, auto_approve=True):
        self.log.record("mutate", "terraform.apply")
        self.cloud.create_cluster(self.cluster_name)
        self.outputs = {"cluster_name": self.cluster_name, "vpc_id": "vpc-0abc"}
        self.resources = ["module.vpc.aws_vpc.this[0]", "module.eks.aws_eks_cluster.this[0]"]
        self.local_state = True
        return ExecutionResult(0)

    def destroy(self, refresh_first=False):
        self.log.record("mutate", "terraform.destroy", refresh_first)
        self.destroy_calls.append(refresh_first)
        vpc_id = self.outputs.get("vpc_id")
        if self.destroy_failures > 0 or (vpc_id and self.cloud.vpc_has_dependencies(vpc_id)):
            self.destroy_failures = max(self.destroy_failures - 1, 0)
            return ExecutionResult(1, stderr="Error: DependencyViolation")
        self.cloud.clusters.pop(self.cluster_name, None)
        if vpc_id:
            self.cloud.vpcs.pop(vpc_id, None)
        self.outputs = {}
        self.resources = []
        return ExecutionResult(0)

    def output(self, key):
        self.log.record("read", "terraform.output", key)
        return self.outputs.get(key, "")

    def has_state(self):
        return self.local_state

    def state_list(self):
        self.log.record("read", "terraform.state_list")
        return list(self.resources)

    def state_is_empty(self):
        self.log.record("read", "terraform.state_is_empty")
        return not self.resources

    def clean_local_state(self):
        self.log.record("local", "terraform.clean_local_state")
        removed = ["terraform.tfstate"] if self.local_state else []
        self.local_state = False
        return removed


class FakeAws:
    def __init__(self, cloud: FakeCloud):
        self.cloud = cloud
        self.log = cloud.log

    # STS

    def caller_identity(self):
        self.log.record("read", "sts.get_caller_identity")
        return {"Account": ACCOUNT_ID, "Arn": f"arn:aws:iam::{ACCOUNT_ID}:user/ops"}

    def account_id(self):
        return self.caller_identity()["Account"]

    # EKS

    def describe_cluster(self, name):
        self.log.record("read", "eks.describe_cluster", name)
        return copy.deepcopy(self.cloud.clusters.get(name))

    def oidc_issuer_url(self, name):
        cluster = self.describe_cluster(name) or {}
        return cluster.get("identity", {}).get("oidc", {}).get("issuer", "")

    def describe_addon(self, cluster, addon):
        self.log.record("read", "eks.describe_addon", addon)
        return copy.deepcopy(self.cloud.addons.get(addon))

    def create_addon(self, cluster, addon, role_arn):
        self.log.record("mutate", "eks.create_addon", addon)
        if addon in self.cloud.addons:
            raise ResourceExistsError(f"{addon} exists")
        self.cloud.addons[addon] = {
            "addonName": addon,
            "status": self.cloud.addon_create_status,
            "serviceAccountRoleArn": role_arn,
            "health": {"issues": []},
        }

    def update_addon(self, cluster, addon, role_arn):
        self.log.record("mutate", "eks.update_addon", addon)
        self.cloud.addons[addon]["serviceAccountRoleArn"] = role_arn

    def delete_addon(self, cluster, addon):
        self.log.record("mutate", "eks.delete_addon", addon)
        if self.cloud.addons.pop(addon, None) is None:
            raise ResourceNotFoundError(f"{addon} not found")

    # IAM

    def list_oidc_providers(self):
        self.log.record("read", "iam.list_open_id_connect_providers")
        return list(self.cloud.oidc_providers)

    def create_oidc_provider(self, url, thumbprint, audience):
        self.log.record("mutate", "iam.create_open_id_connect_provider", url)
        arn = f"arn:aws:iam::{ACCOUNT_ID}:oidc-provider/{url.replace('https://', '')}"
        self.cloud.oidc_providers.append(arn)
        return arn

    def delete_oidc_provider(self, arn):
        self.log.record("mutate", "iam.delete_open_id_connect_provider", arn)
        self.cloud.oidc_providers.remove(arn)

    def get_role(self, name):
        self.log.record("read", "iam.get_role", name)
        role = self.cloud.roles.get(name)
        if role is None:
            return None
        return {"RoleName": name, "Arn": role["Arn"], "AssumeRolePolicyDocument": copy.deepcopy(role["trust"])}

    def create_role(self, name, trust_json):
        self.log.record("mutate", "iam.create_role", name)
        if name in self.cloud.roles:
            raise ResourceExistsError(f"{name} exists")
        arn = f"arn:aws:iam::{ACCOUNT_ID}:role/{name}"
        self.cloud.roles[name] = {"Arn": arn, "trust": json.loads(trust_json), "policies": set()}
        return arn

    def delete_role(self, name):
        self.log.record("mutate", "iam.delete_role", name)
        role = self.cloud.roles.get(name)
        if role is None:
            raise ResourceNotFoundError(f"{name} not found")
        if role["policies"]:
            raise ResourceInUseError(f"{name} has attached policies")
        del self.cloud.roles[name]

    def attach_role_policy(self, name, policy_arn):
        self.log.record("mutate", "iam.attach_role_policy", name, policy_arn)
        if name not in self.cloud.roles:
            raise ResourceNotFoundError(f"{name} not found")
        if not self.cloud.attach_is_noop:
            self.cloud.roles[name]["policies"].add(policy_arn)

    def detach_role_policy(self, name, policy_arn):
        self.log.record("mutate", "iam.detach_role_policy", name, policy_arn)
        role = self.cloud.roles.get(name)
        if role is None or policy_arn not in role["policies"]:
            raise ResourceNotFoundError(f"{policy_arn} not attached to {name}")
        role["policies"].discard(policy_arn)

    def attached_policy_arns(self, name):
        self.log.record("read", "iam.list_attached_role_policies", name)
        role = self.cloud.roles.get(name)
        if role is None:
            raise ResourceNotFoundError(f"{name} not found")
        return sorted(role["policies"])

    # SSM

    def get_parameter(self, name):
        self.log.record("read", "ssm.get_parameter", name)
        return self.cloud.parameters.get(name)

    def put_parameter(self, name, value, param_type="SecureString"):
        self.log.record("mutate", "ssm.put_parameter", name)
        self.cloud.parameters[name] = value

    def parameter_names(self, path):
        self.log.record("read", "ssm.get_parameters_by_path", path)
        return sorted(n for n in self.cloud.parameters if n.startswith(path))

    def delete_parameters(self, names):
        self.log.record("mutate", "ssm.delete_parameters", tuple(names))
        for name in names:
            self.cloud.parameters.pop(name, None)

    # EC2 discovery

    def vpc_ids(self, filters):
        self.log.record("read", "ec2.describe_vpcs")
        wanted = filters[0]["Values"][0]
        return [vpc_id for vpc_id, tags in self.cloud.vpcs.items() if wanted in tags]

    def network_interfaces(self, filters):
        self.log.record("read", "ec2.describe_network_interfaces")
        name, values = filters[0]["Name"], filters[0]["Values"]
        found = []
        for eni in self.cloud.interfaces.values():
            if name == "vpc-id" and eni["VpcId"] in values:
                found.append(copy.deepcopy(eni))
            elif name == "description" and fnmatch.fnmatch(eni.get("Description", ""), values[0]):
                found.append(copy.deepcopy(eni))
        return found

    def security_groups(self, filters):
        self.log.record("read", "ec2.describe_security_groups")
        name, values = filters[0]["Name"], filters[0]["Values"]
        found = []
        for sg in self.cloud.security_groups.values():
            if name == "vpc-id" and sg["VpcId"] in values:
                found.append(copy.deepcopy(sg))
            elif name == "group-name" and fnmatch.fnmatch(sg["GroupName"], values[0]):
                found.append(copy.deepcopy(sg))
        return found

    # Load balancers

    def load_balancers(self, vpc_id):
        self.log.record("read", "elb.describe_load_balancers")
        return [copy.deepcopy(lb) for lb in self.cloud.load_balancers if lb["vpc"] == vpc_id]

    def delete_load_balancer(self, kind, identifier):
        self.log.record("mutate", "elb.delete_load_balancer", identifier)
        remaining = [lb for lb in self.cloud.load_balancers if lb["id"] != identifier]
        if len(remaining) == len(self.cloud.load_balancers):
            raise ResourceNotFoundError(f"{identifier} not found")
        self.cloud.load_balancers = remaining

    # Security groups

    def _referenced(self, group_id):
        for sg in self.cloud.security_groups.values():
            for permission in sg["IpPermissions"] + sg["IpPermissionsEgress"]:
                if any(p.get("GroupId") == group_id for p in permission.get("UserIdGroupPairs", [])):
                    return True
        return False

    def revoke_ingress(self, group_id, permissions):
        self.log.record("mutate", "ec2.revoke_security_group_ingress", group_id)
        sg = self.cloud.security_groups[group_id]
        sg["IpPermissions"] = [p for p in sg["IpPermissions"] if p not in permissions and _strip(p) not in permissions]

    def revoke_egress(self, group_id, permissions):
        self.log.record("mutate", "ec2.revoke_security_group_egress", group_id)
        sg = self.cloud.security_groups[group_id]
        sg["IpPermissionsEgress"] = [
            p for p in sg["IpPermissionsEgress"] if p not in permissions and _strip(p) not in permissions
        ]

    def delete_security_group(self, group_id):
        self.log.record("mutate", "ec2.delete_security_group", group_id)
        if group_id not in self.cloud.security_groups:
            raise ResourceNotFoundError(f"{group_id} not found")
        if self._referenced(group_id):
            raise ResourceInUseError(f"{group_id} is referenced by a rule")
        if any(group_id in [g["GroupId"] for g in eni.get("Groups", [])] for eni in self.cloud.interfaces.values()):
            raise ResourceInUseError(f"{group_id} has a dependent object")
        del self.cloud.security_groups[group_id]

    # Network interfaces

    def detach_network_interface(self, attachment_id):
        self.log.record("mutate", "ec2.detach_network_interface", attachment_id)
        for eni in self.cloud.interfaces.values():
            attachment = eni.get("Attachment") or {}
            if attachment.get("AttachmentId") == attachment_id:
                eni["Attachment"] = None
                eni["Status"] = "available"
                return
        raise ResourceNotFoundError(f"{attachment_id} not found")

    def delete_network_interface(self, eni_id):
        self.log.record("mutate", "ec2.delete_network_interface", eni_id)
        eni = self.cloud.interfaces.get(eni_id)
        if eni is None:
            raise ResourceNotFoundError(f"{eni_id} not found")
        if eni.get("Attachment"):
            raise ResourceInUseError(f"{eni_id} is in use")
        del self.cloud.interfaces[eni_id]

    # Gateways

    def nat_gateways(self, vpc_id):
        self.log.record("read", "ec2.describe_nat_gateways")
        return [
            {"NatGatewayId": nat_id, "State": nat["State"]}
            for nat_id, nat in self.cloud.nat_gateways.items()
            if nat["VpcId"] == vpc_id and nat["State"] not in ("deleted", "deleting")
        ]

    def nat_gateway_state(self, nat_id):
        self.log.record("read", "ec2.describe_nat_gateways", nat_id)
        nat = self.cloud.nat_gateways.get(nat_id)
        return nat["State"] if nat else "deleted"

    def delete_nat_gateway(self, nat_id):
        self.log.record("mutate", "ec2.delete_nat_gateway", nat_id)
        self.cloud.nat_gateways[nat_id]["State"] = "deleted"

    def internet_gateways(self, vpc_id):
        self.log.record("read", "ec2.describe_internet_gateways")
        return [igw for igw, attached in self.cloud.internet_gateways.items() if attached == vpc_id]

    def detach_internet_gateway(self, igw_id, vpc_id):
        self.log.record("mutate", "ec2.detach_internet_gateway", igw_id)
        self.cloud.internet_gateways[igw_id] = ""

    def delete_internet_gateway(self, igw_id):
        self.log.record("mutate", "ec2.delete_internet_gateway", igw_id)
        if self.cloud.internet_gateways.get(igw_id):
            raise ResourceInUseError(f"{igw_id} is attached")
        self.cloud.internet_gateways.pop(igw_id, None)

    # Volumes

    def available_volumes(self, tag_key, tag_values=None):
        self.log.record("read", "ec2.describe_volumes", tag_key)
        return sorted(
            vol_id
            for vol_id, vol in self.cloud.volumes.items()
            if vol["State"] == "available"
            and tag_key in vol["Tags"]
            and (not tag_values or vol["Tags"][tag_key] in tag_values)
        )

    def delete_volume(self, volume_id):
        self.log.record("mutate", "ec2.delete_volume", volume_id)
        if self.cloud.volumes.pop(volume_id, None) is None:
            raise ResourceNotFoundError(f"{volume_id} not found")


def _strip(permission):
    """Group-reference projection used by the cleaner for the default group."""
    stripped = {"IpProtocol": permission["IpProtocol"], "UserIdGroupPairs": permission.get("UserIdGroupPairs", [])}
    for key in ("FromPort", "ToPort"):
        if key in permission:
            stripped[key] = permission[key]
    return stripped


KIND_ALIASES = {
    "deployments": "deployment",
    "applications": "application",
    "applicationsets": "applicationset",
    "serviceaccounts": "serviceaccount",
    "storageclasses": "storageclass",
    "externalsecrets": "externalsecret",
    "pvc": "persistentvolumeclaim",
    "pv": "persistentvolume",
}


def _key(kind: str, namespace: Optional[str], name: str) -> tuple:
    kind = kind.lower()
    return (KIND_ALIASES.get(kind, kind), namespace or "", name)


class FakeKubectl:
    def __init__(self, cloud: FakeCloud):
        self.cloud = cloud
        self.log = cloud.log

    def update_kubeconfig(self, cluster, region):
        self.log.record("mutate", "kubectl.update_kubeconfig", cluster)
        if cluster not in self.cloud.clusters:
            raise ResourceNotFoundError(f"cluster {cluster} not found")
        self.cloud.kube_context = f"arn:aws:eks:{region}:{ACCOUNT_ID}:cluster/{cluster}"
        return ExecutionResult(0)

    def delete_context(self, name):
        self.log.record("mutate", "kubectl.delete_context", name)
        if self.cloud.kube_context == name:
            self.cloud.kube_context = ""

    def current_context(self):
        self.log.record("read", "kubectl.current_context")
        return self.cloud.kube_context

    def can_connect(self):
        self.log.record("read", "kubectl.can_connect")
        cluster = self.cloud.kube_context.rsplit("/", 1)[-1]
        return bool(self.cloud.kube_context) and cluster in self.cloud.clusters

    def get(self, kind, name, namespace=None):
        self.log.record("read", "kubectl.get", kind, name)
        obj = self.cloud.objects.get(_key(kind, namespace, name))
        return copy.deepcopy(obj)

    def list(self, kind, namespace=None, all_namespaces=False, selector=None):
        self.log.record("read", "kubectl.list", kind)
        if kind == "nodes":
            return copy.deepcopy(self.cloud.nodes)
        wanted = _key(kind, namespace, "")[0]
        return [
            copy.deepcopy(obj)
            for (k, ns, _), obj in self.cloud.objects.items()
            if k == wanted and (all_namespaces or namespace is None or ns == namespace)
        ]

    def wait(self, condition, resource, namespace=None, timeout_seconds=300):
        self.log.record("read", "kubectl.wait", resource)
        return True

    def apply(self, manifest):
        documents = manifest if isinstance(manifest, list) else [manifest]
        for doc in documents:
            meta = doc["metadata"]
            self.log.record("mutate", "kubectl.apply", doc["kind"], meta["name"])
            key = _key(doc["kind"], meta.get("namespace"), meta["name"])
            existing = self.cloud.objects.get(key)
            if doc["kind"] == "StorageClass" and existing and existing.get("provisioner") != doc.get("provisioner"):
                raise KubectlError("Command failed: kubectl apply -f -", context="provisioner: field is immutable")
            stored = copy.deepcopy(doc)
            self.cloud.objects[key] = stored
            self._reconcile(stored)
        return ExecutionResult(0)

    def _reconcile(self, obj):
        """Stand-in for the in-cluster controllers."""
        if obj["kind"] == "ExternalSecret":
            obj["status"] = {"conditions": [{"type": "Ready", "status": "True", "reason": "SecretSynced"}]}
        elif obj["kind"] == "ApplicationSet":
            template = obj["spec"]["template"]["metadata"]["name"]
            argocd_ns = obj["metadata"]["namespace"]
            for element in obj["spec"]["generators"][0]["list"]["elements"]:
                name = template.replace("{{.name}}", element["name"])
                sync, health = self.cloud.app_health
                self.cloud.objects[_key("application", argocd_ns, name)] = {
                    "kind": "Application",
                    "metadata": {"name": name, "namespace": argocd_ns},
                    "spec": {"destination": {"namespace": element["namespace"]}},
                    "status": {"sync": {"status": sync}, "health": {"status": health}},
                }

    def apply_url(self, url, namespace=None):
        self.log.record("mutate", "kubectl.apply_url", url)
        version = url.split("/")[-3]
        # floating refs such as "stable" ship a concrete release tag
        tag = "v2.13.1" if version == "stable" else version
        self.cloud.objects[_key("deployment", namespace, "argocd-server")] = {
            "kind": "Deployment",
            "metadata": {"name": "argocd-server", "namespace": namespace},
            "spec": {"replicas": 1, "template": {"spec": {"containers": [{"image": f"quay.io/argoproj/argocd:{tag}"}]}}},
            "status": {"availableReplicas": 1},
        }
        return ExecutionResult(0)

    def ensure(self, manifest):
        checksum = manifest_checksum(manifest)
        manifest.setdefault("metadata", {}).setdefault("annotations", {})[CHECKSUM_ANNOTATION] = checksum
        live = self.get(manifest["kind"], manifest["metadata"]["name"], manifest["metadata"].get("namespace"))
        if live and (live["metadata"].get("annotations") or {}).get(CHECKSUM_ANNOTATION) == checksum:
            return False
        self.apply(manifest)
        return True

    def annotate(self, kind, name, namespace, key, value):
        self.log.record("mutate", "kubectl.annotate", kind, name)
        obj = self.cloud.objects.setdefault(
            _key(kind, namespace, name), {"kind": kind, "metadata": {"name": name, "namespace": namespace}}
        )
        obj["metadata"].setdefault("annotations", {})[key] = value
        return ExecutionResult(0)

    def rollout_restart(self, kind, name, namespace):
        self.log.record("mutate", "kubectl.rollout_restart", kind, name)
        return ExecutionResult(0)

    def delete(self, kind, name=None, namespace=None, all_namespaces=False, selector=None, timeout="60s"):
        self.log.record("mutate", "kubectl.delete", kind)
        if kind == "all":
            doomed = [k for k in self.cloud.objects if k[0] in ("deployment", "service", "pod")]
        else:
            wanted = _key(kind, namespace, "")[0]
            doomed = [
                k for k in self.cloud.objects
                if k[0] == wanted and (all_namespaces or namespace is None or k[1] == namespace)
                and (name is None or k[2] == name)
            ]
        for k in doomed:
            del self.cloud.objects[k]
        return ExecutionResult(0)


class FakeHelm:
    def __init__(self, cloud: FakeCloud):
        self.cloud = cloud
        self.log = cloud.log

    def repo_add(self, name, url):
        self.log.record("mutate", "helm.repo_add", name)

    def release_status(self, release, namespace):
        self.log.record("read", "helm.status", release)
        return self.cloud.releases.get((release, namespace))

    def upgrade_install(self, release, chart, namespace, values=None, version=None):
        self.log.record("mutate", "helm.upgrade_install", release, version)
        self.cloud.releases[(release, namespace)] = "deployed"
        for name in (release, f"{release}-webhook", f"{release}-cert-controller"):
            self.cloud.objects[_key("deployment", namespace, name)] = {
                "kind": "Deployment",
                "metadata": {"name": name, "namespace": namespace},
                "spec": {"replicas": 1},
                "status": {"availableReplicas": 1},
            }
        self.cloud.objects[_key("serviceaccount", namespace, release)] = {
            "kind": "ServiceAccount",
            "metadata": {"name": release, "namespace": namespace},
        }
        return ExecutionResult(0)

    def uninstall(self, release, namespace):
        self.log.record("mutate", "helm.uninstall", release)
        if self.cloud.releases.pop((release, namespace), None) is None:
            raise ResourceNotFoundError(f"release {release} not found")
        return ExecutionResult(0)


@pytest.fixture
def cloud():
    return FakeCloud()


@pytest.fixture
def fakes(cloud):
    """terraform, kubectl, helm and aws fakes over one cloud."""
    return {
        "terraform": FakeTerraform(cloud),
        "kubectl": FakeKubectl(cloud),
        "helm": FakeHelm(cloud),
        "aws": FakeAws(cloud),
    }


@pytest.fixture
def config_values():
    return dict(BASE_VALUES)


@pytest.fixture
def config(config_values, tmp_path):
    values = dict(config_values, LOG_DIR=str(tmp_path / "logs"), TERRAFORM_DIR=str(tmp_path / "tf"))
    return build_config(values)


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=200)


@pytest.fixture
def logger(tmp_path, console):
    log = DeployLogger("acme", "test", log_dir=tmp_path / "logs", console=console)
    yield log
    log.close()


@pytest.fixture
def sleeps():
    """Records every sleep instead of sleeping."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture(autouse=True)
def tools_on_path(monkeypatch):
    monkeypatch.setattr("iotdeploy.core.preflight.shutil.which", lambda tool: f"/usr/local/bin/{tool}")
