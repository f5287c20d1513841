"""
Lifecycle Command Base Class

Base class for commands that act on one cluster.
Provides configuration loading and collaborator construction.
"""

from pathlib import Path
from typing import Iterable, Mapping, NamedTuple, Optional

from rich.console import Console

from iotdeploy.base.base_command import BaseCommand
from iotdeploy.core.config_loader import ConfigLoader, DeployConfig
from iotdeploy.services import AwsService, HelmService, KubectlService, TerraformService


class Collaborators(NamedTuple):
    terraform: TerraformService
    kubectl: KubectlService
    helm: HelmService
    aws: AwsService


class LifecycleCommand(BaseCommand):
    """
    Base class for cluster commands.

    Configuration is loaded and validated before anything else runs, so
    a missing key fails the command before any external call.
    """

    required_keys: Iterable[str] = ()

    def __init__(
        self,
        env_file: Optional[Path] = None,
        overrides: Optional[Mapping[str, str]] = None,
        verbose: bool = False,
        console: Optional[Console] = None,
    ):
        super().__init__(verbose=verbose, console=console)
        self.env_file = env_file
        self.overrides = dict(overrides or {})
        self.config: Optional[DeployConfig] = None

    def load_config(self) -> DeployConfig:
        """
        Raises:
            ConfigurationError: Listing every missing or invalid key
        """
        loader = ConfigLoader(self.env_file, self.overrides)
        self.config = loader.load(self.required_keys)
        for warning in loader.warnings:
            self.print_warning(warning)
        return self.config

    def build_collaborators(self, config: DeployConfig) -> Collaborators:
        return Collaborators(
            terraform=TerraformService(config.terraform_dir, logger=self.logger),
            kubectl=KubectlService(logger=self.logger),
            helm=HelmService(logger=self.logger),
            aws=AwsService(config.region, logger=self.logger),
        )
