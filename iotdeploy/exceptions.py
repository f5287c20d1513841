"""
iotdeploy Exception Hierarchy

Clean exception hierarchy for consistent error handling across the CLI.
"""

from typing import Optional, Any


class IotDeployError(Exception):
    """Base exception for all iotdeploy errors."""

    def __init__(self, message: str, context: Optional[str] = None):
        self.message = message
        self.context = context
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with optional context."""
        if self.context:
            return f"{self.message}\nContext: {self.context}"
        return self.message


class ConfigurationError(IotDeployError):
    """Raised when configuration is invalid or missing."""

    pass


class PreconditionError(IotDeployError):
    """Raised when a required tool or credential is missing."""

    pass


class OperationCancelled(IotDeployError):
    """Raised when the operator declines a confirmation prompt."""

    pass


# Collaborator failures


class CollaboratorError(IotDeployError):
    """Raised when an external tool or API call fails unexpectedly."""

    pass


class TerraformError(CollaboratorError):
    """Raised when Terraform operations fail."""

    pass


class KubectlError(CollaboratorError):
    """Raised when kubectl operations fail."""

    pass


class HelmError(CollaboratorError):
    """Raised when Helm operations fail."""

    pass


class AwsError(CollaboratorError):
    """Raised when an AWS API call fails with an unexpected error code."""

    def __init__(
        self, message: str, context: Optional[str] = None, code: Optional[str] = None
    ):
        self.code = code
        super().__init__(message, context)


# Expected provider outcomes (absorbed by best-effort operations)


class ProviderError(IotDeployError):
    """Base for provider outcomes that idempotent steps treat as expected."""

    kind = "provider"


class ResourceNotFoundError(ProviderError):
    """Resource is already gone (or never existed)."""

    kind = "not_found"


class ResourceInUseError(ProviderError):
    """Resource still has references; retry after they are released."""

    kind = "in_use"


class ResourceExistsError(ProviderError):
    """Resource already exists."""

    kind = "exists"


# State machine failures


class PollingTimeoutError(IotDeployError):
    """Raised when a critical wait exhausts its attempts."""

    def __init__(self, wait_name: str, attempts: int, last_detail: str = ""):
        self.wait_name = wait_name
        self.attempts = attempts
        self.last_detail = last_detail
        message = f"Timed out waiting for {wait_name} after {attempts} attempts"
        super().__init__(message, last_detail or None)


class TerminalStatusError(IotDeployError):
    """Raised when a resource reports a terminal failure status."""

    def __init__(self, wait_name: str, status: str, payload: Any = None):
        self.wait_name = wait_name
        self.status = status
        self.payload = payload
        message = f"{wait_name} reported terminal status {status}"
        super().__init__(message, str(payload) if payload else None)


class ProvisioningError(IotDeployError):
    """Raised when provisioning stops at a state."""

    def __init__(self, state: Any, message: str, context: Optional[str] = None):
        self.state = state
        self.reason = message
        super().__init__(f"Stopped at {state}: {message}", context)


class DestroyError(IotDeployError):
    """Raised when the driven destroy fails twice in a row."""

    def __init__(self, message: str, remaining: Optional[list[str]] = None):
        self.remaining = remaining or []
        context = None
        if self.remaining:
            context = "Remaining resources: " + ", ".join(self.remaining)
        super().__init__(message, context)
