"""
Terraform Service

Terraform operations manager with type-safe results and error handling.
"""

import json
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from iotdeploy.constants import TERRAFORM_APPLY_TIMEOUT, TERRAFORM_DESTROY_TIMEOUT
from iotdeploy.exceptions import TerraformError
from iotdeploy.models.results import ExecutionResult


class TerraformService:
    """
    Manages Terraform operations with clean interfaces.

    Responsibilities:
    - Initialize Terraform
    - Plan/apply/destroy operations
    - Output queries
    - tfvars generation
    - Local state inspection and cleanup
    """

    def __init__(self, terraform_dir: Path, logger=None):
        """
        Initialize Terraform service.

        Args:
            terraform_dir: Directory holding the cluster's Terraform configuration
            logger: Optional DeployLogger for command output
        """
        self.terraform_dir = Path(terraform_dir)
        self.logger = logger

    @property
    def state_file(self) -> Path:
        return self.terraform_dir / "terraform.tfstate"

    @property
    def var_file(self) -> Path:
        return self.terraform_dir / "iotdeploy.tfvars.json"

    def _run_command(
        self,
        args: list[str],
        check: bool = True,
        timeout: Optional[int] = None,
    ) -> ExecutionResult:
        """
        Run Terraform command.

        Args:
            args: Command arguments (e.g., ['output', '-json'])
            check: Whether to raise exception on failure
            timeout: Seconds before the command is abandoned

        Returns:
            ExecutionResult object

        Raises:
            TerraformError: If command fails and check=True
        """
        cmd = ["terraform"] + args
        cmd_string = " ".join(cmd)

        if self.logger:
            self.logger.log_command(cmd_string)

        try:
            result = subprocess.run(
                cmd,
                cwd=self.terraform_dir,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise TerraformError(
                f"Terraform command timed out: {cmd_string}",
                context=f"Timeout: {timeout}s",
            )
        except OSError as e:
            raise TerraformError(
                "Failed to execute Terraform command",
                context=f"Command: {cmd_string}, Error: {str(e)}",
            )

        exec_result = ExecutionResult(
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            command=cmd_string,
        )

        if self.logger:
            self.logger.log_output(exec_result.stdout, "stdout")
            self.logger.log_output(exec_result.stderr, "stderr")

        if check and exec_result.is_failure:
            raise TerraformError(
                f"Terraform command failed: {cmd_string}",
                context=f"Exit code: {exec_result.returncode}\nError: {exec_result.stderr.strip()}",
            )

        return exec_result

    def is_initialized(self) -> bool:
        return (self.terraform_dir / ".terraform").is_dir()

    def init(self, upgrade: bool = False) -> ExecutionResult:
        """
        Initialize Terraform.

        Args:
            upgrade: Upgrade providers and modules

        Raises:
            TerraformError: If init fails
        """
        args = ["init", "-input=false", "-no-color"]
        if upgrade:
            args.append("-upgrade")
        return self._run_command(args)

    def generate_tfvars(self, tfvars: dict) -> Path:
        """
        Write the Terraform variables file.

        Args:
            tfvars: Variables to write

        Returns:
            Path to generated tfvars file
        """
        with open(self.var_file, "w") as f:
            json.dump(tfvars, f, indent=2)
        return self.var_file

    def _var_args(self) -> list[str]:
        if self.var_file.exists():
            return [f"-var-file={self.var_file.name}"]
        return []

    def plan(self, destroy: bool = False) -> ExecutionResult:
        """Show the execution plan (read-only)."""
        args = ["plan", "-input=false", "-no-color"] + self._var_args()
        if destroy:
            args.append("-destroy")
        return self._run_command(args)

    def apply(self, auto_approve: bool = True) -> ExecutionResult:
        """
        Apply Terraform configuration.

        Raises:
            TerraformError: If apply fails
        """
        args = ["apply", "-input=false", "-no-color", "-compact-warnings"]
        args += self._var_args()
        if auto_approve:
            args.append("-auto-approve")
        return self._run_command(args, timeout=TERRAFORM_APPLY_TIMEOUT)

    def destroy(self, refresh_first: bool = False) -> ExecutionResult:
        """
        Destroy Terraform-managed infrastructure.

        Args:
            refresh_first: Re-read every resource from the provider before
                destroying instead of trusting the recorded state

        Returns:
            ExecutionResult (never raises on a failed destroy; callers
            decide what a failure means)
        """
        if refresh_first:
            self._run_command(
                ["apply", "-refresh-only", "-auto-approve", "-input=false", "-no-color"]
                + self._var_args(),
                check=False,
                timeout=TERRAFORM_DESTROY_TIMEOUT,
            )

        args = ["destroy", "-auto-approve", "-input=false", "-no-color"]
        args += self._var_args()
        if refresh_first:
            args.append("-refresh=true")
        try:
            return self._run_command(args, check=False, timeout=TERRAFORM_DESTROY_TIMEOUT)
        except TerraformError as e:
            return ExecutionResult(returncode=124, stderr=e.format_message(), command="terraform destroy")

    def output(self, key: str) -> str:
        """
        Read one output value.

        Returns:
            The raw value, or "" when the key (or the state) is absent
        """
        if not self.has_state():
            return ""
        result = self._run_command(["output", "-raw", key], check=False)
        if result.is_failure:
            return ""
        value = result.stdout.strip()
        return "" if value == "null" else value

    def has_state(self) -> bool:
        return self.state_file.exists()

    def state_list(self) -> list[str]:
        """Addresses of every resource in the recorded state."""
        if not self.has_state():
            return []
        result = self._run_command(["state", "list"], check=False)
        if result.is_failure:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def state_is_empty(self) -> bool:
        """True when there is no state or the state tracks no resources."""
        if not self.has_state():
            return True
        try:
            with open(self.state_file) as f:
                state = json.load(f)
        except (OSError, json.JSONDecodeError):
            return not self.state_list()
        return not state.get("resources")

    def clean_local_state(self) -> list[str]:
        """
        Remove local state, lock file and provider cache.

        Returns:
            Names of the removed entries
        """
        removed = []
        for path in sorted(self.terraform_dir.glob("terraform.tfstate*")):
            path.unlink()
            removed.append(path.name)

        lock_file = self.terraform_dir / ".terraform.lock.hcl"
        if lock_file.exists():
            lock_file.unlink()
            removed.append(lock_file.name)

        provider_dir = self.terraform_dir / ".terraform"
        if provider_dir.exists():
            shutil.rmtree(provider_dir)
            removed.append(provider_dir.name)

        if self.var_file.exists():
            self.var_file.unlink()
            removed.append(self.var_file.name)

        return removed
