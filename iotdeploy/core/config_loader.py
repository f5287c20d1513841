"""Configuration management for iotdeploy runs"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from dotenv import dotenv_values

from iotdeploy.constants import (
    DEFAULT_ENVIRONMENTS,
    DEFAULT_EXTERNAL_SECRETS_VERSION,
    DEFAULT_GITOPS_CHART_PATH,
    DEFAULT_GITOPS_REVISION,
    DEFAULT_LOG_DIR,
    DEFAULT_NODE_DESIRED_SIZE,
    DEFAULT_NODE_INSTANCE_TYPE,
    DEFAULT_NODE_MAX_SIZE,
    DEFAULT_NODE_MIN_SIZE,
    DEFAULT_TERRAFORM_DIR,
    ENVIRONMENT_PROFILES,
    REQUIRED_PROVISION_KEYS,
    SECRET_CATALOG,
    SECRETS_ROLE_SUFFIX,
)
from iotdeploy.exceptions import ConfigurationError
from iotdeploy.models.context import Environment
from iotdeploy.models.results import ValidationResult


OPTIONAL_KEYS = [
    "ENVIRONMENTS",
    "GITOPS_REVISION",
    "GITOPS_CHART_PATH",
    "TERRAFORM_DIR",
    "EXTERNAL_SECRETS_VERSION",
    "NODE_MIN_SIZE",
    "NODE_DESIRED_SIZE",
    "NODE_MAX_SIZE",
    "NODE_INSTANCE_TYPE",
    "LOG_DIR",
]


@dataclass(frozen=True)
class NodeGroupConfig:
    """Managed node group sizing"""

    min_size: int = DEFAULT_NODE_MIN_SIZE
    desired_size: int = DEFAULT_NODE_DESIRED_SIZE
    max_size: int = DEFAULT_NODE_MAX_SIZE
    instance_type: str = DEFAULT_NODE_INSTANCE_TYPE


@dataclass(frozen=True)
class DeployConfig:
    """
    Read-only configuration for one lifecycle run.

    Built once by ConfigLoader and passed explicitly to every step.
    """

    project_name: str
    region: str
    cluster_name: str
    namespace_prefix: str = ""
    argocd_version: str = ""
    argocd_namespace: str = "argocd"
    gitops_repo_url: str = ""
    gitops_revision: str = DEFAULT_GITOPS_REVISION
    gitops_chart_path: str = DEFAULT_GITOPS_CHART_PATH
    external_secrets_version: str = DEFAULT_EXTERNAL_SECRETS_VERSION
    environment_names: tuple[str, ...] = ("dev",)
    nodes: NodeGroupConfig = field(default_factory=NodeGroupConfig)
    terraform_dir: Path = Path(DEFAULT_TERRAFORM_DIR)
    log_dir: Path = Path(DEFAULT_LOG_DIR)
    credentials: Mapping[str, str] = field(default_factory=dict, repr=False)

    @property
    def environments(self) -> tuple[Environment, ...]:
        """Deployment targets derived from the environment names."""
        envs = []
        for name in self.environment_names:
            size_profile, external = ENVIRONMENT_PROFILES[name]
            envs.append(
                Environment(
                    name=name,
                    namespace=f"{self.namespace_prefix}-{name}",
                    size_profile=size_profile,
                    external=external,
                )
            )
        return tuple(envs)

    @property
    def secrets_role_name(self) -> str:
        return f"{self.project_name}-{SECRETS_ROLE_SUFFIX}"

    @property
    def parameter_prefix(self) -> str:
        return f"/{self.project_name}/"

    def secret_parameters(self) -> Dict[str, str]:
        """Parameter-store path -> value for every catalogued credential."""
        params = {}
        for component, keys in SECRET_CATALOG.items():
            for param_key, config_key in keys.items():
                value = self.credentials.get(config_key)
                if value:
                    params[f"/{self.project_name}/{component}/{param_key}"] = value
        return params

    def to_terraform_vars(self) -> Dict[str, object]:
        """Variables handed to the infra provisioner."""
        return {
            "project_name": self.project_name,
            "aws_region": self.region,
            "cluster_name": self.cluster_name,
            "node_min_size": self.nodes.min_size,
            "node_desired_size": self.nodes.desired_size,
            "node_max_size": self.nodes.max_size,
            "node_instance_types": [self.nodes.instance_type],
        }


class ConfigLoader:
    """
    Loads run configuration from a dotenv file, the process environment
    and explicit KEY=VALUE overrides (later sources win).
    """

    def __init__(
        self,
        env_file: Optional[Path] = None,
        overrides: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.env_file = Path(env_file) if env_file else None
        self.overrides = dict(overrides or {})
        self.environ = os.environ if environ is None else environ
        self.warnings: List[str] = []

    def read_values(self) -> Dict[str, str]:
        """Merge all sources into one flat mapping."""
        values: Dict[str, str] = {}

        if self.env_file is not None:
            if not self.env_file.exists():
                raise ConfigurationError(
                    f"Environment file not found: {self.env_file}",
                    context="Create it or pass --env-file",
                )
            values.update(
                {k: v for k, v in dotenv_values(self.env_file).items() if v is not None}
            )

        known = set(REQUIRED_PROVISION_KEYS) | set(OPTIONAL_KEYS)
        for key in known:
            if self.environ.get(key):
                values[key] = self.environ[key]

        values.update(self.overrides)
        return values

    def load(self, required_keys: Iterable[str] = REQUIRED_PROVISION_KEYS) -> DeployConfig:
        """
        Load and validate configuration.

        Raises:
            ConfigurationError: listing every missing or invalid key
        """
        values = self.read_values()
        result = validate_values(values, list(required_keys))
        known = set(REQUIRED_PROVISION_KEYS) | set(OPTIONAL_KEYS)
        for key in sorted(set(self.overrides) - known):
            result.add_warning(f"Unknown override {key} is ignored")
        self.warnings = result.warnings

        if result.has_errors:
            raise ConfigurationError(
                "Invalid configuration", context="; ".join(result.errors)
            )

        return build_config(values)


def parse_overrides(pairs: Iterable[str]) -> Dict[str, str]:
    """
    Parse repeated KEY=VALUE options.

    Raises:
        ConfigurationError: If a pair has no '=' or an empty key
    """
    overrides = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigurationError(
                f"Invalid override '{pair}'", context="Expected KEY=VALUE"
            )
        overrides[key] = value
    return overrides


def _environment_names(values: Mapping[str, str]) -> List[str]:
    raw = values.get("ENVIRONMENTS") or DEFAULT_ENVIRONMENTS
    return [name.strip() for name in raw.split(",") if name.strip()]


def validate_values(values: Mapping[str, str], required_keys: List[str]) -> ValidationResult:
    """Collect every configuration problem instead of stopping at the first."""
    result = ValidationResult(is_valid=True)

    for key in required_keys:
        if not values.get(key):
            result.add_error(f"Missing required key: {key}")

    sizes = {}
    for key, default in (
        ("NODE_MIN_SIZE", DEFAULT_NODE_MIN_SIZE),
        ("NODE_DESIRED_SIZE", DEFAULT_NODE_DESIRED_SIZE),
        ("NODE_MAX_SIZE", DEFAULT_NODE_MAX_SIZE),
    ):
        raw = values.get(key)
        if raw is None or raw == "":
            sizes[key] = default
            continue
        try:
            sizes[key] = int(raw)
        except ValueError:
            result.add_error(f"{key} must be an integer (got '{raw}')")

    if len(sizes) == 3:
        if sizes["NODE_MIN_SIZE"] < 1:
            result.add_error("NODE_MIN_SIZE must be at least 1")
        if not (
            sizes["NODE_MIN_SIZE"] <= sizes["NODE_DESIRED_SIZE"] <= sizes["NODE_MAX_SIZE"]
        ):
            result.add_error(
                "Node group bounds must satisfy NODE_MIN_SIZE <= NODE_DESIRED_SIZE <= NODE_MAX_SIZE"
            )

    names = _environment_names(values)
    if not names:
        result.add_error("ENVIRONMENTS must name at least one environment")
    for name in names:
        if name not in ENVIRONMENT_PROFILES:
            result.add_error(
                f"Unknown environment '{name}' (expected one of: {', '.join(ENVIRONMENT_PROFILES)})"
            )
    for name in sorted({name for name in names if names.count(name) > 1}):
        result.add_error(f"ENVIRONMENTS lists '{name}' more than once")

    return result


def build_config(values: Mapping[str, str]) -> DeployConfig:
    """Build a DeployConfig from already-validated values."""
    nodes = NodeGroupConfig(
        min_size=int(values.get("NODE_MIN_SIZE") or DEFAULT_NODE_MIN_SIZE),
        desired_size=int(values.get("NODE_DESIRED_SIZE") or DEFAULT_NODE_DESIRED_SIZE),
        max_size=int(values.get("NODE_MAX_SIZE") or DEFAULT_NODE_MAX_SIZE),
        instance_type=values.get("NODE_INSTANCE_TYPE") or DEFAULT_NODE_INSTANCE_TYPE,
    )

    credential_keys = {k for keys in SECRET_CATALOG.values() for k in keys.values()}

    return DeployConfig(
        project_name=values["PROJECT_NAME"],
        region=values["AWS_REGION"],
        cluster_name=values["CLUSTER_NAME"],
        namespace_prefix=values.get("NAMESPACE_PREFIX") or values["PROJECT_NAME"],
        argocd_version=values.get("ARGOCD_VERSION", ""),
        argocd_namespace=values.get("ARGOCD_NAMESPACE") or "argocd",
        gitops_repo_url=values.get("GITOPS_REPO_URL", ""),
        gitops_revision=values.get("GITOPS_REVISION") or DEFAULT_GITOPS_REVISION,
        gitops_chart_path=values.get("GITOPS_CHART_PATH") or DEFAULT_GITOPS_CHART_PATH,
        external_secrets_version=(
            values.get("EXTERNAL_SECRETS_VERSION") or DEFAULT_EXTERNAL_SECRETS_VERSION
        ),
        environment_names=tuple(_environment_names(values)),
        nodes=nodes,
        terraform_dir=Path(values.get("TERRAFORM_DIR") or DEFAULT_TERRAFORM_DIR),
        log_dir=Path(values.get("LOG_DIR") or DEFAULT_LOG_DIR),
        credentials={k: values[k] for k in credential_keys if values.get(k)},
    )

