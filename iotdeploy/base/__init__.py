"""
iotdeploy Base Command Classes

Abstract base classes for consistent command structure.
"""

from .base_command import BaseCommand
from .lifecycle_command import Collaborators, LifecycleCommand

__all__ = [
    "BaseCommand",
    "Collaborators",
    "LifecycleCommand",
]
