"""
iotdeploy Service Layer

Wrappers around the external collaborators the lifecycle drives.
"""

from .aws_service import AwsService
from .helm_service import HelmService
from .kubectl_service import KubectlService
from .terraform_service import TerraformService

__all__ = [
    "AwsService",
    "HelmService",
    "KubectlService",
    "TerraformService",
]
