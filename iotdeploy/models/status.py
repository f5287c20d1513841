"""
Status Models

Typed statuses read back from collaborators during polling.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Readiness(Enum):
    """Normalized readiness of a polled resource."""

    READY = "ready"
    PENDING = "pending"
    FAILED = "failed"


class AddonStatus(Enum):
    """EKS addon lifecycle status."""

    CREATING = "CREATING"
    ACTIVE = "ACTIVE"
    UPDATING = "UPDATING"
    DELETING = "DELETING"
    DEGRADED = "DEGRADED"
    CREATE_FAILED = "CREATE_FAILED"
    UPDATE_FAILED = "UPDATE_FAILED"
    DELETE_FAILED = "DELETE_FAILED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> "AddonStatus":
        """Map a raw status string to the enum (absent or unexpected -> UNKNOWN)."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.upper())
        except ValueError:
            return cls.UNKNOWN

    @property
    def readiness(self) -> Readiness:
        if self is AddonStatus.ACTIVE:
            return Readiness.READY
        if self in (AddonStatus.DEGRADED, AddonStatus.CREATE_FAILED):
            return Readiness.FAILED
        return Readiness.PENDING


@dataclass
class ProbeResult:
    """One status read from a collaborator."""

    readiness: Readiness
    detail: str = ""
    payload: Any = None


@dataclass
class ApplicationStatus:
    """GitOps Application sync/health as reported by the controller."""

    name: str
    sync: str = "Unknown"
    health: str = "Unknown"

    @classmethod
    def from_resource(cls, name: str, resource: Optional[dict]) -> "ApplicationStatus":
        """Read sync/health from an Application object (absent -> Unknown)."""
        status = (resource or {}).get("status") or {}
        return cls(
            name=name,
            sync=(status.get("sync") or {}).get("status", "Unknown"),
            health=(status.get("health") or {}).get("status", "Unknown"),
        )

    @property
    def is_healthy(self) -> bool:
        return self.sync == "Synced" and self.health == "Healthy"

    def __str__(self) -> str:
        return f"{self.name}: {self.sync}/{self.health}"
