"""
AWS Service

boto3 access to STS, EKS, IAM, SSM, EC2 and ELB with provider error codes
translated into the not-found / in-use / already-exists taxonomy.
"""

from typing import Any, Dict, List, Mapping, Optional, Type

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from iotdeploy.exceptions import (
    AwsError,
    ProviderError,
    ResourceExistsError,
    ResourceInUseError,
    ResourceNotFoundError,
)

NOT_FOUND_CODES = {
    "NoSuchEntity",
    "ResourceNotFoundException",
    "ParameterNotFound",
    "InvalidGroup.NotFound",
    "InvalidNetworkInterfaceID.NotFound",
    "InvalidAttachmentID.NotFound",
    "NatGatewayNotFound",
    "InvalidNatGatewayID.NotFound",
    "InvalidInternetGatewayID.NotFound",
    "Gateway.NotAttached",
    "InvalidVolume.NotFound",
    "InvalidVpcID.NotFound",
    "InvalidPermission.NotFound",
    "LoadBalancerNotFound",
    "AccessPointNotFound",
}

IN_USE_CODES = {
    "DependencyViolation",
    "InvalidNetworkInterface.InUse",
    "VolumeInUse",
    "ResourceInUse",
    "DeleteConflict",
    "IncorrectState",
    "InvalidIPAddress.InUse",
}

EXISTS_CODES = {
    "EntityAlreadyExists",
    "InvalidPermission.Duplicate",
    "ParameterAlreadyExists",
    "ResourceAlreadyExists",
}


def translate_client_error(
    error: ClientError,
    operation: str,
    overrides: Optional[Mapping[str, Type[ProviderError]]] = None,
) -> Exception:
    """Map a botocore ClientError to the iotdeploy taxonomy."""
    code = error.response.get("Error", {}).get("Code", "")
    message = error.response.get("Error", {}).get("Message", str(error))

    if overrides and code in overrides:
        return overrides[code](f"{operation}: {message}", context=code)
    if code in NOT_FOUND_CODES:
        return ResourceNotFoundError(f"{operation}: {message}", context=code)
    if code in IN_USE_CODES:
        return ResourceInUseError(f"{operation}: {message}", context=code)
    if code in EXISTS_CODES:
        return ResourceExistsError(f"{operation}: {message}", context=code)
    return AwsError(f"AWS call failed: {operation}", context=f"{code}: {message}", code=code)


class AwsService:
    """
    Thin, typed façade over the boto3 clients the lifecycle needs.

    Reads that find nothing return None or an empty list; writes raise
    the translated ProviderError kinds so callers can decide what is
    expected.
    """

    def __init__(self, region: Optional[str], session: Optional[boto3.session.Session] = None, logger=None):
        self.region = region
        self.session = session or boto3.session.Session(region_name=region)
        self.logger = logger
        self._clients: Dict[str, Any] = {}

    def client(self, service: str):
        if service not in self._clients:
            self._clients[service] = self.session.client(service, region_name=self.region)
        return self._clients[service]

    def _call(
        self,
        service: str,
        operation: str,
        overrides: Optional[Mapping[str, Type[ProviderError]]] = None,
        **kwargs,
    ) -> Dict[str, Any]:
        if self.logger:
            self.logger.log_command(f"aws {service} {operation}")
        try:
            return getattr(self.client(service), operation)(**kwargs)
        except ClientError as e:
            raise translate_client_error(e, f"{service}.{operation}", overrides) from e
        except BotoCoreError as e:
            raise AwsError(f"AWS call failed: {service}.{operation}", context=str(e)) from e

    def _paginate(self, service: str, operation: str, key: str, **kwargs) -> List[Dict[str, Any]]:
        if self.logger:
            self.logger.log_command(f"aws {service} {operation} (paginated)")
        items: List[Dict[str, Any]] = []
        try:
            for page in self.client(service).get_paginator(operation).paginate(**kwargs):
                items.extend(page.get(key, []))
        except ClientError as e:
            raise translate_client_error(e, f"{service}.{operation}") from e
        except BotoCoreError as e:
            raise AwsError(f"AWS call failed: {service}.{operation}", context=str(e)) from e
        return items

    # STS

    def caller_identity(self) -> Dict[str, str]:
        response = self._call("sts", "get_caller_identity")
        return {"Account": response["Account"], "Arn": response["Arn"]}

    def account_id(self) -> str:
        return self.caller_identity()["Account"]

    # EKS

    def describe_cluster(self, cluster_name: str) -> Optional[Dict[str, Any]]:
        try:
            return self._call("eks", "describe_cluster", name=cluster_name)["cluster"]
        except ResourceNotFoundError:
            return None

    def oidc_issuer_url(self, cluster_name: str) -> str:
        """Issuer URL of the cluster's identity provider ("" until published)."""
        cluster = self.describe_cluster(cluster_name) or {}
        return cluster.get("identity", {}).get("oidc", {}).get("issuer", "") or ""

    def describe_addon(self, cluster_name: str, addon_name: str) -> Optional[Dict[str, Any]]:
        try:
            return self._call(
                "eks", "describe_addon", clusterName=cluster_name, addonName=addon_name
            )["addon"]
        except ResourceNotFoundError:
            return None

    def create_addon(self, cluster_name: str, addon_name: str, role_arn: str) -> None:
        """
        Raises:
            ResourceExistsError: If the addon is already installed
        """
        self._call(
            "eks",
            "create_addon",
            overrides={"ResourceInUseException": ResourceExistsError},
            clusterName=cluster_name,
            addonName=addon_name,
            serviceAccountRoleArn=role_arn,
            resolveConflicts="OVERWRITE",
        )

    def update_addon(self, cluster_name: str, addon_name: str, role_arn: str) -> None:
        self._call(
            "eks",
            "update_addon",
            clusterName=cluster_name,
            addonName=addon_name,
            serviceAccountRoleArn=role_arn,
            resolveConflicts="OVERWRITE",
        )

    def delete_addon(self, cluster_name: str, addon_name: str) -> None:
        self._call(
            "eks",
            "delete_addon",
            overrides={"ResourceInUseException": ResourceInUseError},
            clusterName=cluster_name,
            addonName=addon_name,
        )

    # IAM

    def list_oidc_providers(self) -> List[str]:
        response = self._call("iam", "list_open_id_connect_providers")
        return [p["Arn"] for p in response.get("OpenIDConnectProviderList", [])]

    def create_oidc_provider(self, issuer_url: str, thumbprint: str, audience: str) -> str:
        response = self._call(
            "iam",
            "create_open_id_connect_provider",
            Url=issuer_url,
            ThumbprintList=[thumbprint],
            ClientIDList=[audience],
        )
        return response["OpenIDConnectProviderArn"]

    def delete_oidc_provider(self, provider_arn: str) -> None:
        self._call("iam", "delete_open_id_connect_provider", OpenIDConnectProviderArn=provider_arn)

    def get_role(self, role_name: str) -> Optional[Dict[str, Any]]:
        try:
            return self._call("iam", "get_role", RoleName=role_name)["Role"]
        except ResourceNotFoundError:
            return None

    def create_role(self, role_name: str, trust_policy_json: str) -> str:
        response = self._call(
            "iam",
            "create_role",
            RoleName=role_name,
            AssumeRolePolicyDocument=trust_policy_json,
        )
        return response["Role"]["Arn"]

    def delete_role(self, role_name: str) -> None:
        self._call("iam", "delete_role", RoleName=role_name)

    def attach_role_policy(self, role_name: str, policy_arn: str) -> None:
        self._call("iam", "attach_role_policy", RoleName=role_name, PolicyArn=policy_arn)

    def detach_role_policy(self, role_name: str, policy_arn: str) -> None:
        self._call("iam", "detach_role_policy", RoleName=role_name, PolicyArn=policy_arn)

    def attached_policy_arns(self, role_name: str) -> List[str]:
        response = self._call("iam", "list_attached_role_policies", RoleName=role_name)
        return [p["PolicyArn"] for p in response.get("AttachedPolicies", [])]

    # SSM

    def get_parameter(self, name: str) -> Optional[str]:
        try:
            response = self._call("ssm", "get_parameter", Name=name, WithDecryption=True)
        except ResourceNotFoundError:
            return None
        return response["Parameter"]["Value"]

    def put_parameter(self, name: str, value: str, param_type: str = "SecureString") -> None:
        self._call("ssm", "put_parameter", Name=name, Value=value, Type=param_type, Overwrite=True)

    def parameter_names(self, path: str) -> List[str]:
        params = self._paginate(
            "ssm", "get_parameters_by_path", "Parameters", Path=path, Recursive=True
        )
        return [p["Name"] for p in params]

    def delete_parameters(self, names: List[str]) -> None:
        # DeleteParameters accepts at most 10 names per call
        for start in range(0, len(names), 10):
            self._call("ssm", "delete_parameters", Names=names[start:start + 10])

    # EC2: discovery

    def vpc_ids(self, filters: List[Dict[str, Any]]) -> List[str]:
        response = self._call("ec2", "describe_vpcs", Filters=filters)
        return [v["VpcId"] for v in response.get("Vpcs", [])]

    def network_interfaces(self, filters: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self._paginate(
            "ec2", "describe_network_interfaces", "NetworkInterfaces", Filters=filters
        )

    def security_groups(self, filters: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self._paginate("ec2", "describe_security_groups", "SecurityGroups", Filters=filters)

    # EC2: load balancers

    def load_balancers(self, vpc_id: str) -> List[Dict[str, str]]:
        """Every v2 and classic load balancer in the VPC as {kind, id, name}."""
        found = []
        for lb in self._paginate("elbv2", "describe_load_balancers", "LoadBalancers"):
            if lb.get("VpcId") == vpc_id:
                found.append({"kind": "v2", "id": lb["LoadBalancerArn"], "name": lb["LoadBalancerName"]})
        for lb in self._paginate("elb", "describe_load_balancers", "LoadBalancerDescriptions"):
            if lb.get("VPCId") == vpc_id:
                found.append({"kind": "classic", "id": lb["LoadBalancerName"], "name": lb["LoadBalancerName"]})
        return found

    def delete_load_balancer(self, kind: str, identifier: str) -> None:
        if kind == "v2":
            self._call("elbv2", "delete_load_balancer", LoadBalancerArn=identifier)
        else:
            self._call("elb", "delete_load_balancer", LoadBalancerName=identifier)

    # EC2: security groups

    def revoke_ingress(self, group_id: str, permissions: List[Dict[str, Any]]) -> None:
        self._call("ec2", "revoke_security_group_ingress", GroupId=group_id, IpPermissions=permissions)

    def revoke_egress(self, group_id: str, permissions: List[Dict[str, Any]]) -> None:
        self._call("ec2", "revoke_security_group_egress", GroupId=group_id, IpPermissions=permissions)

    def delete_security_group(self, group_id: str) -> None:
        self._call("ec2", "delete_security_group", GroupId=group_id)

    # EC2: network interfaces

    def detach_network_interface(self, attachment_id: str) -> None:
        self._call("ec2", "detach_network_interface", AttachmentId=attachment_id, Force=True)

    def delete_network_interface(self, eni_id: str) -> None:
        self._call("ec2", "delete_network_interface", NetworkInterfaceId=eni_id)

    # EC2: gateways

    def nat_gateways(self, vpc_id: str) -> List[Dict[str, Any]]:
        gateways = self._paginate(
            "ec2",
            "describe_nat_gateways",
            "NatGateways",
            Filters=[{"Name": "vpc-id", "Values": [vpc_id]}],
        )
        return [g for g in gateways if g.get("State") not in ("deleted", "deleting")]

    def nat_gateway_state(self, nat_id: str) -> str:
        try:
            response = self._call("ec2", "describe_nat_gateways", NatGatewayIds=[nat_id])
        except ResourceNotFoundError:
            return "deleted"
        gateways = response.get("NatGateways", [])
        return gateways[0].get("State", "deleted") if gateways else "deleted"

    def delete_nat_gateway(self, nat_id: str) -> None:
        self._call("ec2", "delete_nat_gateway", NatGatewayId=nat_id)

    def internet_gateways(self, vpc_id: str) -> List[str]:
        response = self._call(
            "ec2",
            "describe_internet_gateways",
            Filters=[{"Name": "attachment.vpc-id", "Values": [vpc_id]}],
        )
        return [g["InternetGatewayId"] for g in response.get("InternetGateways", [])]

    def detach_internet_gateway(self, igw_id: str, vpc_id: str) -> None:
        self._call("ec2", "detach_internet_gateway", InternetGatewayId=igw_id, VpcId=vpc_id)

    def delete_internet_gateway(self, igw_id: str) -> None:
        self._call("ec2", "delete_internet_gateway", InternetGatewayId=igw_id)

    # EC2: volumes

    def available_volumes(self, tag_key: str, tag_values: Optional[List[str]] = None) -> List[str]:
        """Unattached volumes carrying a tag (any value unless given)."""
        filters = [{"Name": "status", "Values": ["available"]}]
        if tag_values:
            filters.append({"Name": f"tag:{tag_key}", "Values": tag_values})
        else:
            filters.append({"Name": "tag-key", "Values": [tag_key]})
        volumes = self._paginate("ec2", "describe_volumes", "Volumes", Filters=filters)
        return [v["VolumeId"] for v in volumes]

    def delete_volume(self, volume_id: str) -> None:
        self._call("ec2", "delete_volume", VolumeId=volume_id)
