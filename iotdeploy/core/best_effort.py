"""
Best-effort operations.

Teardown and idempotent-create steps expect some provider answers
("not found", "in use", "already exists"). ``best_effort`` absorbs the
kinds it is told to tolerate and lets everything else propagate, so a
permission problem is never mistaken for an already-deleted resource.
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Type

from iotdeploy.exceptions import (
    ProviderError,
    ResourceExistsError,
    ResourceInUseError,
    ResourceNotFoundError,
)

TOLERATE_DELETE: Tuple[Type[ProviderError], ...] = (
    ResourceNotFoundError,
    ResourceInUseError,
)
TOLERATE_MISSING: Tuple[Type[ProviderError], ...] = (ResourceNotFoundError,)
TOLERATE_EXISTING: Tuple[Type[ProviderError], ...] = (ResourceExistsError,)


@dataclass
class Attempt:
    """Outcome of one best-effort operation."""

    description: str
    outcome: str = "pending"
    error: Optional[ProviderError] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == "done"

    @property
    def gone(self) -> bool:
        """The target no longer exists, whether we removed it or not."""
        return self.outcome in ("done", "not_found")

    @property
    def blocked(self) -> bool:
        return self.outcome == "in_use"


class best_effort:
    """
    Context manager around one provider call.

    Example:
        with best_effort(logger, f"Delete security group {sg_id}") as attempt:
            aws.delete_security_group(sg_id)
        if attempt.blocked:
            retry_later.append(sg_id)
    """

    def __init__(
        self,
        logger,
        description: str,
        tolerate: Tuple[Type[ProviderError], ...] = TOLERATE_DELETE,
    ):
        self.logger = logger
        self.attempt = Attempt(description)
        self.tolerate = tolerate

    def __enter__(self) -> Attempt:
        return self.attempt

    def __exit__(self, exc_type, exc_val, _exc_tb):
        if exc_type is None:
            self.attempt.outcome = "done"
            if self.logger:
                self.logger.log(f"{self.attempt.description}: done")
            return False

        if isinstance(exc_val, self.tolerate):
            self.attempt.outcome = exc_val.kind
            self.attempt.error = exc_val
            if self.logger:
                self.logger.log(
                    f"{self.attempt.description}: {exc_val.kind.replace('_', ' ')} ({exc_val.message})",
                    "WARNING" if exc_val.kind == "in_use" else "INFO",
                )
            return True

        return False
