"""
Network dependency cleanup ahead of the driven destroy.

Controllers inside the cluster create load balancers, security groups and
network interfaces that Terraform never recorded. They hold references
into the VPC that make ``terraform destroy`` hang or fail, so they are
removed first, always releasing a reference before deleting its target.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from iotdeploy.constants import (
    CLUSTER_ENI_DESCRIPTION,
    CLUSTER_SG_NAME_PATTERN,
    ENI_DETACH_SETTLE_SECONDS,
    TERRAFORM_VPC_OUTPUT,
)
from iotdeploy.core.best_effort import best_effort
from iotdeploy.core.polling import POLL_POLICIES, PollPolicy, wait_for
from iotdeploy.models.status import ProbeResult, Readiness


@dataclass
class CleanupStats:
    """Statistics for cleanup operations."""

    load_balancers_deleted: int = 0
    rules_revoked: int = 0
    security_groups_deleted: int = 0
    interfaces_deleted: int = 0
    nat_gateways_deleted: int = 0
    internet_gateways_deleted: int = 0
    volumes_deleted: int = 0
    left_behind: List[str] = field(default_factory=list)

    def has_resources(self) -> bool:
        """Check if any resources were deleted."""
        return any(
            [
                self.load_balancers_deleted,
                self.rules_revoked,
                self.security_groups_deleted,
                self.interfaces_deleted,
                self.nat_gateways_deleted,
                self.internet_gateways_deleted,
                self.volumes_deleted,
            ]
        )

    def merge(self, other: "CleanupStats") -> None:
        self.load_balancers_deleted += other.load_balancers_deleted
        self.rules_revoked += other.rules_revoked
        self.security_groups_deleted += other.security_groups_deleted
        self.interfaces_deleted += other.interfaces_deleted
        self.nat_gateways_deleted += other.nat_gateways_deleted
        self.internet_gateways_deleted += other.internet_gateways_deleted
        self.volumes_deleted += other.volumes_deleted
        self.left_behind.extend(r for r in other.left_behind if r not in self.left_behind)

    def summary(self) -> str:
        """Get summary string of deleted resources."""
        resources = []
        if self.load_balancers_deleted > 0:
            resources.append(f"{self.load_balancers_deleted} load balancer(s)")
        if self.rules_revoked > 0:
            resources.append(f"{self.rules_revoked} rule set(s) revoked")
        if self.security_groups_deleted > 0:
            resources.append(f"{self.security_groups_deleted} security group(s)")
        if self.interfaces_deleted > 0:
            resources.append(f"{self.interfaces_deleted} network interface(s)")
        if self.nat_gateways_deleted > 0:
            resources.append(f"{self.nat_gateways_deleted} NAT gateway(s)")
        if self.internet_gateways_deleted > 0:
            resources.append(f"{self.internet_gateways_deleted} internet gateway(s)")
        if self.volumes_deleted > 0:
            resources.append(f"{self.volumes_deleted} volume(s)")
        return ", ".join(resources) if resources else "None"


def discover_vpc(cluster_name: str, terraform, aws, logger=None) -> Optional[Tuple[str, str]]:
    """
    Find the cluster's VPC, trying each lookup in priority order.

    Returns:
        (vpc_id, strategy name) for the first lookup that answers, or None
    """

    def from_terraform() -> List[str]:
        value = terraform.output(TERRAFORM_VPC_OUTPUT)
        return [value] if value else []

    def from_cluster_tag() -> List[str]:
        return aws.vpc_ids([{"Name": "tag-key", "Values": [f"kubernetes.io/cluster/{cluster_name}"]}])

    def from_interface_description() -> List[str]:
        description = CLUSTER_ENI_DESCRIPTION.format(cluster=cluster_name)
        interfaces = aws.network_interfaces([{"Name": "description", "Values": [f"*{description}*"]}])
        return [eni["VpcId"] for eni in interfaces if eni.get("VpcId")]

    def from_security_group_name() -> List[str]:
        pattern = CLUSTER_SG_NAME_PATTERN.format(cluster=cluster_name)
        groups = aws.security_groups([{"Name": "group-name", "Values": [pattern]}])
        return [sg["VpcId"] for sg in groups if sg.get("VpcId")]

    strategies: List[Tuple[str, Callable[[], List[str]]]] = [
        ("terraform output", from_terraform),
        ("cluster tag", from_cluster_tag),
        ("interface description", from_interface_description),
        ("security group name", from_security_group_name),
    ]

    for name, lookup in strategies:
        found = lookup()
        if found:
            if logger:
                logger.log(f"VPC {found[0]} found via {name}")
            return found[0], name
        if logger:
            logger.log(f"No VPC found via {name}")

    return None


def _group_references(permission: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """The group-referencing part of a rule, or None if it has none."""
    pairs = permission.get("UserIdGroupPairs") or []
    if not pairs:
        return None
    reference = {"IpProtocol": permission["IpProtocol"], "UserIdGroupPairs": pairs}
    for key in ("FromPort", "ToPort"):
        if key in permission:
            reference[key] = permission[key]
    return reference


def _is_detachable(interface: Dict[str, Any]) -> bool:
    """Interfaces owned by another service or an instance's primary stay put."""
    if interface.get("RequesterManaged"):
        return False
    attachment = interface.get("Attachment") or {}
    return not (attachment.get("InstanceId") and attachment.get("DeviceIndex") == 0)


class NetworkCleaner:
    """
    Removes controller-created network resources from one VPC.

    Order: load balancers, security-group rules, security groups,
    network interfaces (detach, then delete), security groups that were
    still in use, NAT gateways, internet gateways (detach, then delete).
    """

    def __init__(
        self,
        aws,
        logger=None,
        sleep: Callable[[float], None] = time.sleep,
        nat_policy: PollPolicy = POLL_POLICIES["nat-gateway-release"],
    ):
        self.aws = aws
        self.logger = logger
        self.sleep = sleep
        self.nat_policy = nat_policy

    def cleanup(self, vpc_id: str) -> CleanupStats:
        """
        Run every cleanup stage against the VPC.

        Returns:
            CleanupStats with deletion counts and anything left behind
        """
        stats = CleanupStats()

        stats.load_balancers_deleted = self._delete_load_balancers(vpc_id)

        groups = self._security_groups(vpc_id)
        stats.rules_revoked = self._revoke_rules(groups)
        deleted, blocked = self._delete_security_groups(
            [sg["GroupId"] for sg in groups if sg.get("GroupName") != "default"]
        )
        stats.security_groups_deleted = deleted

        stats.interfaces_deleted = self._delete_interfaces(vpc_id)

        if blocked:
            retried, still_blocked = self._delete_security_groups(blocked)
            stats.security_groups_deleted += retried
            stats.left_behind.extend(still_blocked)

        stats.nat_gateways_deleted = self._delete_nat_gateways(vpc_id)
        stats.internet_gateways_deleted = self._delete_internet_gateways(vpc_id)

        return stats

    def _security_groups(self, vpc_id: str) -> List[Dict[str, Any]]:
        return self.aws.security_groups([{"Name": "vpc-id", "Values": [vpc_id]}])

    def _delete_load_balancers(self, vpc_id: str) -> int:
        deleted = 0
        for lb in self.aws.load_balancers(vpc_id):
            with best_effort(self.logger, f"Delete {lb['kind']} load balancer {lb['name']}") as attempt:
                self.aws.delete_load_balancer(lb["kind"], lb["id"])
            if attempt.succeeded:
                deleted += 1
        return deleted

    def _revoke_rules(self, groups: List[Dict[str, Any]]) -> int:
        """
        Clear rules so no group references itself or a sibling.

        The default group cannot be deleted, so only its group-referencing
        rules are removed.
        """
        revoked = 0
        for sg in groups:
            group_id = sg["GroupId"]
            ingress = sg.get("IpPermissions") or []
            egress = sg.get("IpPermissionsEgress") or []
            if sg.get("GroupName") == "default":
                ingress = [r for r in map(_group_references, ingress) if r]
                egress = [r for r in map(_group_references, egress) if r]

            if ingress:
                with best_effort(self.logger, f"Revoke ingress rules of {group_id}") as attempt:
                    self.aws.revoke_ingress(group_id, ingress)
                revoked += int(attempt.succeeded)
            if egress:
                with best_effort(self.logger, f"Revoke egress rules of {group_id}") as attempt:
                    self.aws.revoke_egress(group_id, egress)
                revoked += int(attempt.succeeded)
        return revoked

    def _delete_security_groups(self, group_ids: List[str]) -> Tuple[int, List[str]]:
        deleted = 0
        blocked = []
        for group_id in group_ids:
            with best_effort(self.logger, f"Delete security group {group_id}") as attempt:
                self.aws.delete_security_group(group_id)
            if attempt.succeeded:
                deleted += 1
            elif attempt.blocked:
                blocked.append(group_id)
        return deleted, blocked

    def _delete_interfaces(self, vpc_id: str) -> int:
        interfaces = [
            eni
            for eni in self.aws.network_interfaces([{"Name": "vpc-id", "Values": [vpc_id]}])
            if _is_detachable(eni)
        ]

        detached = False
        for eni in interfaces:
            attachment = eni.get("Attachment") or {}
            if attachment.get("AttachmentId") and attachment.get("Status") != "detached":
                with best_effort(self.logger, f"Detach network interface {eni['NetworkInterfaceId']}"):
                    self.aws.detach_network_interface(attachment["AttachmentId"])
                detached = True

        if detached:
            self.sleep(ENI_DETACH_SETTLE_SECONDS)

        deleted = 0
        for eni in interfaces:
            with best_effort(self.logger, f"Delete network interface {eni['NetworkInterfaceId']}") as attempt:
                self.aws.delete_network_interface(eni["NetworkInterfaceId"])
            if attempt.succeeded:
                deleted += 1
        return deleted

    def _delete_nat_gateways(self, vpc_id: str) -> int:
        gateways = [g["NatGatewayId"] for g in self.aws.nat_gateways(vpc_id)]
        deleted = []
        for nat_id in gateways:
            with best_effort(self.logger, f"Delete NAT gateway {nat_id}") as attempt:
                self.aws.delete_nat_gateway(nat_id)
            if attempt.succeeded:
                deleted.append(nat_id)

        if deleted:

            def released() -> ProbeResult:
                pending = [n for n in deleted if self.aws.nat_gateway_state(n) != "deleted"]
                if pending:
                    return ProbeResult(Readiness.PENDING, f"{len(pending)} still releasing")
                return ProbeResult(Readiness.READY, "released")

            wait_for(released, self.nat_policy, self.logger, sleep=self.sleep)

        return len(deleted)

    def _delete_internet_gateways(self, vpc_id: str) -> int:
        deleted = 0
        for igw_id in self.aws.internet_gateways(vpc_id):
            with best_effort(self.logger, f"Detach internet gateway {igw_id}"):
                self.aws.detach_internet_gateway(igw_id, vpc_id)
            with best_effort(self.logger, f"Delete internet gateway {igw_id}") as attempt:
                self.aws.delete_internet_gateway(igw_id)
            if attempt.succeeded:
                deleted += 1
        return deleted
