"""
iotdeploy Domain Models

Clean dataclass-based models for type-safe data handling.
"""

from .results import (
    Outcome,
    StepRecord,
    RunSummary,
    ValidationResult,
    ExecutionResult,
)
from .status import (
    Readiness,
    AddonStatus,
    ProbeResult,
    ApplicationStatus,
)
from .context import (
    Environment,
    ClusterContext,
)

__all__ = [
    # Results
    "Outcome",
    "StepRecord",
    "RunSummary",
    "ValidationResult",
    "ExecutionResult",
    # Status
    "Readiness",
    "AddonStatus",
    "ProbeResult",
    "ApplicationStatus",
    # Context
    "Environment",
    "ClusterContext",
]
