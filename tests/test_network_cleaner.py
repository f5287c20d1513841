"""Tests for VPC discovery and network dependency cleanup."""

import pytest

from iotdeploy.constants import ENI_DETACH_SETTLE_SECONDS
from iotdeploy.core.network_cleaner import CleanupStats, NetworkCleaner, discover_vpc
from iotdeploy.exceptions import AwsError

VPC = "vpc-0abc"


def group(group_id, name, ingress=(), egress=(), vpc=VPC):
    return {
        "GroupId": group_id,
        "GroupName": name,
        "VpcId": vpc,
        "IpPermissions": list(ingress),
        "IpPermissionsEgress": list(egress),
    }


def self_reference(group_id):
    return {"IpProtocol": "-1", "UserIdGroupPairs": [{"GroupId": group_id}]}


def interface(eni_id, groups, attachment=None, vpc=VPC, **extra):
    eni = {
        "NetworkInterfaceId": eni_id,
        "VpcId": vpc,
        "Status": "in-use" if attachment else "available",
        "Groups": [{"GroupId": g} for g in groups],
        "Attachment": attachment,
    }
    eni.update(extra)
    return eni


@pytest.fixture
def cleaner(fakes, logger, fake_sleep):
    return NetworkCleaner(fakes["aws"], logger, sleep=fake_sleep)


class TestDiscoverVpc:
    """Lookup cascade."""

    def test_terraform_output_first(self, fakes, cloud):
        fakes["terraform"].outputs["vpc_id"] = VPC
        cloud.vpcs["vpc-other"] = {"kubernetes.io/cluster/acme-eks": "shared"}

        assert discover_vpc("acme-eks", fakes["terraform"], fakes["aws"]) == (VPC, "terraform output")
        assert "ec2.describe_vpcs" not in cloud.log.names()

    def test_cluster_tag(self, fakes, cloud):
        cloud.vpcs[VPC] = {"kubernetes.io/cluster/acme-eks": "shared"}
        assert discover_vpc("acme-eks", fakes["terraform"], fakes["aws"]) == (VPC, "cluster tag")

    def test_interface_description(self, fakes, cloud):
        cloud.interfaces["eni-1"] = interface("eni-1", [], Description="Amazon EKS acme-eks")
        assert discover_vpc("acme-eks", fakes["terraform"], fakes["aws"]) == (VPC, "interface description")

    def test_security_group_name(self, fakes, cloud, logger):
        cloud.security_groups["sg-1"] = group("sg-1", "eks-cluster-sg-acme-eks-123456")
        assert discover_vpc("acme-eks", fakes["terraform"], fakes["aws"], logger) == (VPC, "security group name")

    def test_nothing_found(self, fakes):
        assert discover_vpc("acme-eks", fakes["terraform"], fakes["aws"]) is None


class TestCleanup:
    """Dependency-ordered removal."""

    def test_lingering_interface_and_self_referencing_group(self, cleaner, cloud, sleeps):
        cloud.security_groups["sg-node"] = group("sg-node", "eks-node", ingress=[self_reference("sg-node")])
        cloud.interfaces["eni-1"] = interface(
            "eni-1", ["sg-node"], attachment={"AttachmentId": "attach-1", "Status": "attached"}
        )

        stats = cleaner.cleanup(VPC)

        assert cloud.security_groups == {}
        assert cloud.interfaces == {}
        assert stats.security_groups_deleted == 1
        assert stats.interfaces_deleted == 1
        assert stats.left_behind == []
        assert sleeps == [ENI_DETACH_SETTLE_SECONDS]

    def test_reference_released_before_target_deleted(self, cleaner, cloud):
        cloud.load_balancers.append({"kind": "v2", "id": "arn:lb/web", "name": "web", "vpc": VPC})
        cloud.security_groups["sg-a"] = group("sg-a", "a", ingress=[self_reference("sg-b")])
        cloud.security_groups["sg-b"] = group("sg-b", "b", ingress=[self_reference("sg-a")])
        cloud.interfaces["eni-1"] = interface(
            "eni-1", ["sg-a"], attachment={"AttachmentId": "attach-1", "Status": "attached"}
        )
        cloud.nat_gateways["nat-1"] = {"VpcId": VPC, "State": "available"}
        cloud.internet_gateways["igw-1"] = VPC

        cleaner.cleanup(VPC)

        log = cloud.log
        assert log.index("elb.delete_load_balancer") < log.index("ec2.revoke_security_group_ingress")
        assert log.index("ec2.revoke_security_group_ingress", "sg-b") < log.index("ec2.delete_security_group", "sg-a")
        assert log.index("ec2.detach_network_interface") < log.index("ec2.delete_network_interface")
        assert log.index("ec2.delete_network_interface") < log.index("ec2.delete_nat_gateway")
        assert log.index("ec2.detach_internet_gateway") < log.index("ec2.delete_internet_gateway")
        assert cloud.security_groups == {}
        assert cloud.internet_gateways == {}
        assert cloud.nat_gateways["nat-1"]["State"] == "deleted"

    def test_default_group_keeps_non_group_rules(self, cleaner, cloud):
        cidr_rule = {"IpProtocol": "tcp", "FromPort": 443, "ToPort": 443, "IpRanges": [{"CidrIp": "0.0.0.0/0"}]}
        cloud.security_groups["sg-default"] = group(
            "sg-default", "default", ingress=[self_reference("sg-default"), cidr_rule]
        )

        stats = cleaner.cleanup(VPC)

        assert cloud.security_groups["sg-default"]["IpPermissions"] == [cidr_rule]
        assert "ec2.delete_security_group" not in cloud.log.names()
        assert stats.rules_revoked == 1

    def test_primary_and_managed_interfaces_are_skipped(self, cleaner, cloud):
        cloud.interfaces["eni-primary"] = interface(
            "eni-primary",
            [],
            attachment={"AttachmentId": "attach-p", "InstanceId": "i-1", "DeviceIndex": 0, "Status": "attached"},
        )
        cloud.interfaces["eni-managed"] = interface("eni-managed", [], RequesterManaged=True)

        stats = cleaner.cleanup(VPC)

        assert set(cloud.interfaces) == {"eni-primary", "eni-managed"}
        assert stats.interfaces_deleted == 0
        assert "ec2.detach_network_interface" not in cloud.log.names()

    def test_group_still_in_use_is_left_behind(self, cleaner, cloud):
        cloud.security_groups["sg-1"] = group("sg-1", "pinned")
        cloud.interfaces["eni-managed"] = interface("eni-managed", ["sg-1"], RequesterManaged=True)

        stats = cleaner.cleanup(VPC)

        assert stats.left_behind == ["sg-1"]
        assert "sg-1" in cloud.security_groups

    def test_access_denied_propagates(self, cleaner, cloud, fakes, monkeypatch):
        cloud.security_groups["sg-1"] = group("sg-1", "app")

        def denied(group_id):
            raise AwsError("AWS call failed: ec2.delete_security_group", code="UnauthorizedOperation")

        monkeypatch.setattr(fakes["aws"], "delete_security_group", denied)
        with pytest.raises(AwsError):
            cleaner.cleanup(VPC)

    def test_empty_vpc_makes_no_mutations(self, cleaner, cloud, sleeps):
        stats = cleaner.cleanup(VPC)
        assert cloud.log.mutations == []
        assert not stats.has_resources()
        assert sleeps == []


class TestCleanupStats:
    def test_summary(self):
        stats = CleanupStats(security_groups_deleted=2, volumes_deleted=1)
        assert stats.summary() == "2 security group(s), 1 volume(s)"
        assert CleanupStats().summary() == "None"

    def test_merge(self):
        total = CleanupStats(interfaces_deleted=1, left_behind=["sg-1"])
        total.merge(CleanupStats(interfaces_deleted=2, left_behind=["sg-1", "sg-2"]))
        assert total.interfaces_deleted == 3
        assert total.left_behind == ["sg-1", "sg-2"]
