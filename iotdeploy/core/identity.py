"""
Workload identity federation (IRSA).

Roles and policies have fixed names and are looked up on every run. A
role that already has the expected trust policy and attachment is left
alone; anything else goes through the full recreate recipe.
"""

import json
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote

from iotdeploy.constants import OIDC_AUDIENCE, OIDC_THUMBPRINT
from iotdeploy.core import manifests
from iotdeploy.core.best_effort import TOLERATE_EXISTING, TOLERATE_MISSING, best_effort
from iotdeploy.exceptions import ProvisioningError


@dataclass(frozen=True)
class ServiceAccountBinding:
    """A service account that assumes an IAM role through the cluster's issuer."""

    role_name: str
    policy_arn: str
    namespace: str
    service_account: str


def _normalize_document(document) -> dict:
    """IAM returns the trust policy either URL-encoded JSON or already decoded."""
    if isinstance(document, str):
        return json.loads(unquote(document))
    return document or {}


class IdentityFederation:
    """Identity provider and service-account roles for one cluster."""

    def __init__(self, aws, logger=None):
        self.aws = aws
        self.logger = logger

    def find_oidc_provider(self, oidc_issuer: str) -> Optional[str]:
        for arn in self.aws.list_oidc_providers():
            if arn.endswith(f"oidc-provider/{oidc_issuer}"):
                return arn
        return None

    def ensure_oidc_provider(self, oidc_issuer_url: str) -> bool:
        """
        Register the cluster's issuer with IAM if needed.

        Returns:
            True if a provider was created
        """
        issuer = oidc_issuer_url.replace("https://", "", 1)
        if self.find_oidc_provider(issuer):
            if self.logger:
                self.logger.log(f"OIDC provider already registered for {issuer}")
            return False

        with best_effort(self.logger, f"Create OIDC provider {issuer}", TOLERATE_EXISTING) as attempt:
            self.aws.create_oidc_provider(oidc_issuer_url, OIDC_THUMBPRINT, OIDC_AUDIENCE)
        return attempt.succeeded

    def role_is_current(self, binding: ServiceAccountBinding, expected_trust: dict) -> Optional[str]:
        """Role ARN if the role exists with this trust policy and attachment."""
        role = self.aws.get_role(binding.role_name)
        if role is None:
            return None
        if _normalize_document(role.get("AssumeRolePolicyDocument")) != expected_trust:
            return None
        if binding.policy_arn not in self.aws.attached_policy_arns(binding.role_name):
            return None
        return role["Arn"]

    def ensure_service_account_role(
        self, binding: ServiceAccountBinding, account_id: str, oidc_issuer: str
    ) -> tuple[str, bool]:
        """
        Make sure the role exists, trusts the service account and holds the policy.

        Returns:
            (role ARN, whether the recipe ran)

        Raises:
            ProvisioningError: If the attachment cannot be verified
        """
        trust = manifests.trust_policy(
            account_id, oidc_issuer, binding.namespace, binding.service_account
        )

        current_arn = self.role_is_current(binding, trust)
        if current_arn:
            if self.logger:
                self.logger.log(f"Role {binding.role_name} already current")
            return current_arn, False

        # Recreate recipe: detach -> delete -> create -> attach -> verify
        with best_effort(self.logger, f"Detach {binding.policy_arn} from {binding.role_name}", TOLERATE_MISSING):
            self.aws.detach_role_policy(binding.role_name, binding.policy_arn)
        with best_effort(self.logger, f"Delete role {binding.role_name}", TOLERATE_MISSING):
            self.aws.delete_role(binding.role_name)

        role_arn = f"arn:aws:iam::{account_id}:role/{binding.role_name}"
        with best_effort(self.logger, f"Create role {binding.role_name}", TOLERATE_EXISTING) as created:
            role_arn = self.aws.create_role(binding.role_name, json.dumps(trust))
        if not created.succeeded and self.logger:
            self.logger.warning(f"Role {binding.role_name} may already exist, continuing")

        with best_effort(self.logger, f"Attach {binding.policy_arn} to {binding.role_name}", TOLERATE_EXISTING):
            self.aws.attach_role_policy(binding.role_name, binding.policy_arn)

        if binding.policy_arn not in self.aws.attached_policy_arns(binding.role_name):
            raise ProvisioningError(
                f"role {binding.role_name}",
                f"Policy {binding.policy_arn} is not attached to {binding.role_name}",
            )

        if self.logger:
            self.logger.success(f"Role {binding.role_name} bound to {binding.namespace}:{binding.service_account}")
        return role_arn, True

    def remove_service_account_role(self, binding: ServiceAccountBinding) -> bool:
        """Detach and delete the role; True if the role is gone afterwards."""
        with best_effort(self.logger, f"Detach {binding.policy_arn} from {binding.role_name}"):
            self.aws.detach_role_policy(binding.role_name, binding.policy_arn)
        with best_effort(self.logger, f"Delete role {binding.role_name}") as attempt:
            self.aws.delete_role(binding.role_name)
        return attempt.gone

    def remove_oidc_provider(self, oidc_issuer: str) -> bool:
        arn = self.find_oidc_provider(oidc_issuer)
        if arn is None:
            return False
        with best_effort(self.logger, f"Delete OIDC provider {oidc_issuer}") as attempt:
            self.aws.delete_oidc_provider(arn)
        return attempt.succeeded
