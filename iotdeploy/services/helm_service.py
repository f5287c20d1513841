"""
Helm Service

Chart installs for the cluster's add-on controllers.
"""

import json
import subprocess
from typing import Dict, Optional

from iotdeploy.exceptions import HelmError, ResourceNotFoundError
from iotdeploy.models.results import ExecutionResult


class HelmService:
    """Install, inspect and remove Helm releases."""

    def __init__(self, logger=None):
        self.logger = logger

    def _run(self, args: list[str], check: bool = True) -> ExecutionResult:
        cmd = ["helm"] + args
        cmd_string = " ".join(cmd)

        if self.logger:
            self.logger.log_command(cmd_string)

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            raise HelmError("Failed to execute helm", context=f"Command: {cmd_string}, Error: {e}")

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
            if "not found" in exec_result.stderr.lower():
                raise ResourceNotFoundError(
                    f"Release not found: {cmd_string}", context=exec_result.stderr.strip()
                )
            raise HelmError(
                f"Helm command failed: {cmd_string}",
                context=f"Exit code: {exec_result.returncode}\nError: {exec_result.stderr.strip()}",
            )

        return exec_result

    def repo_add(self, name: str, url: str) -> None:
        """Register a chart repository and refresh its index."""
        self._run(["repo", "add", name, url, "--force-update"])
        self._run(["repo", "update", name])

    def release_status(self, release: str, namespace: str) -> Optional[str]:
        """Release status (e.g. 'deployed'), or None if not installed."""
        result = self._run(["status", release, "-n", namespace, "-o", "json"], check=False)
        if result.is_failure:
            return None
        try:
            return json.loads(result.stdout).get("info", {}).get("status")
        except json.JSONDecodeError:
            return None

    def upgrade_install(
        self,
        release: str,
        chart: str,
        namespace: str,
        values: Optional[Dict[str, str]] = None,
        version: Optional[str] = None,
    ) -> ExecutionResult:
        """Install or upgrade a release (idempotent)."""
        args = [
            "upgrade", "--install", release, chart,
            "-n", namespace, "--create-namespace", "--wait",
        ]
        if version:
            args += ["--version", version]
        for key, value in (values or {}).items():
            args += ["--set", f"{key}={value}"]
        return self._run(args)

    def uninstall(self, release: str, namespace: str) -> ExecutionResult:
        """
        Remove a release.

        Raises:
            ResourceNotFoundError: If the release is not installed
        """
        return self._run(["uninstall", release, "-n", namespace])
