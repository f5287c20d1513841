"""
Deployment Context Models

Identifiers threaded from one provisioning state to the next.
"""

from dataclasses import dataclass, field, replace
from typing import Optional


@dataclass(frozen=True)
class Environment:
    """Named deployment target reconciled by the GitOps controller."""

    name: str
    namespace: str
    size_profile: str
    external: bool = False

    @property
    def values_file(self) -> str:
        return f"values-{self.name}.yaml"


@dataclass(frozen=True)
class ClusterContext:
    """
    Output identifiers of the states reached so far.

    Each state receives the context produced by the previous one and
    returns a new one; nothing is shared implicitly between states.
    """

    cluster_name: Optional[str] = None
    account_id: Optional[str] = None
    oidc_issuer_url: Optional[str] = None
    addon_role_arn: Optional[str] = None
    secrets_role_arn: Optional[str] = None
    environments: tuple[Environment, ...] = field(default_factory=tuple)

    @property
    def oidc_issuer(self) -> Optional[str]:
        """Issuer host/path without the scheme, as used in IAM condition keys."""
        if not self.oidc_issuer_url:
            return None
        return self.oidc_issuer_url.replace("https://", "", 1)

    def evolve(self, **changes) -> "ClusterContext":
        return replace(self, **changes)
