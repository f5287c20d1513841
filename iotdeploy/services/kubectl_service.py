"""
Kubectl Service

Cluster control API access through kubectl with typed results.
"""

import hashlib
import json
import subprocess
from typing import Any, Dict, List, Optional, Union

import yaml

from iotdeploy.constants import CHECKSUM_ANNOTATION
from iotdeploy.exceptions import KubectlError, ResourceNotFoundError
from iotdeploy.models.results import ExecutionResult

Manifest = Union[Dict[str, Any], List[Dict[str, Any]]]


def _is_not_found(stderr: str) -> bool:
    lowered = stderr.lower()
    return (
        "notfound" in lowered
        or "not found" in lowered
        or "doesn't have a resource type" in lowered
    )


def manifest_checksum(manifest: Dict[str, Any]) -> str:
    """Stable digest of a manifest, ignoring our own checksum annotation."""
    clean = json.loads(json.dumps(manifest))
    metadata = clean.get("metadata") or {}
    annotations = metadata.get("annotations") or {}
    annotations.pop(CHECKSUM_ANNOTATION, None)
    if not annotations:
        metadata.pop("annotations", None)
    encoded = json.dumps(clean, sort_keys=True).encode()
    return hashlib.sha256(encoded).hexdigest()[:16]


class KubectlService:
    """
    Wraps kubectl for the lifecycle steps.

    Reads return parsed JSON (or None when the object is absent); writes
    raise KubectlError on failure, or ResourceNotFoundError when the
    target is already gone.
    """

    def __init__(self, logger=None, kubeconfig: Optional[str] = None):
        self.logger = logger
        self.kubeconfig = kubeconfig

    def _run(
        self,
        args: list[str],
        input_text: Optional[str] = None,
        check: bool = True,
        timeout: Optional[int] = None,
        binary: str = "kubectl",
    ) -> ExecutionResult:
        cmd = [binary] + args
        if binary == "kubectl" and self.kubeconfig:
            cmd += ["--kubeconfig", self.kubeconfig]
        cmd_string = " ".join(cmd)

        if self.logger:
            self.logger.log_command(cmd_string)

        try:
            result = subprocess.run(
                cmd,
                input=input_text,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise KubectlError(
                f"Command timed out: {cmd_string}", context=f"Timeout: {timeout}s"
            )
        except OSError as e:
            raise KubectlError(
                f"Failed to execute {binary}", context=f"Command: {cmd_string}, Error: {e}"
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
            if _is_not_found(exec_result.stderr):
                raise ResourceNotFoundError(
                    f"Not found: {cmd_string}", context=exec_result.stderr.strip()
                )
            raise KubectlError(
                f"Command failed: {cmd_string}",
                context=f"Exit code: {exec_result.returncode}\nError: {exec_result.stderr.strip()}",
            )

        return exec_result

    # Kubeconfig

    def update_kubeconfig(self, cluster_name: str, region: str) -> ExecutionResult:
        """Bind the local kubeconfig to the cluster."""
        return self._run(
            ["eks", "update-kubeconfig", "--region", region, "--name", cluster_name],
            binary="aws",
        )

    def delete_context(self, context_name: str) -> None:
        """Remove a context and its user entry (missing entries are fine)."""
        self._run(["config", "delete-context", context_name], check=False)
        self._run(["config", "unset", f"users.{context_name}"], check=False)

    def current_context(self) -> str:
        result = self._run(["config", "current-context"], check=False)
        return result.stdout.strip() if result.is_success else ""

    def can_connect(self) -> bool:
        result = self._run(["get", "--raw", "/readyz"], check=False, timeout=30)
        return result.is_success

    # Reads

    def get(
        self, kind: str, name: str, namespace: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Get one object, or None if it does not exist."""
        args = ["get", kind, name, "-o", "json"]
        if namespace:
            args += ["-n", namespace]
        try:
            result = self._run(args)
        except ResourceNotFoundError:
            return None
        return json.loads(result.stdout) if result.stdout.strip() else None

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        all_namespaces: bool = False,
        selector: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """List objects of a kind (empty when the kind or namespace is absent)."""
        args = ["get", kind, "-o", "json"]
        if all_namespaces:
            args.append("--all-namespaces")
        elif namespace:
            args += ["-n", namespace]
        if selector:
            args += ["-l", selector]
        try:
            result = self._run(args)
        except ResourceNotFoundError:
            return []
        if not result.stdout.strip():
            return []
        return json.loads(result.stdout).get("items", [])

    def wait(
        self,
        condition: str,
        resource: str,
        namespace: Optional[str] = None,
        timeout_seconds: int = 300,
    ) -> bool:
        """Block on a condition; returns False (never hangs) past the timeout."""
        args = ["wait", f"--for=condition={condition}", resource, f"--timeout={timeout_seconds}s"]
        if namespace:
            args += ["-n", namespace]
        result = self._run(args, check=False, timeout=timeout_seconds + 30)
        return result.is_success

    # Writes

    def apply(self, manifest: Manifest) -> ExecutionResult:
        """Upsert one manifest or a list of manifests."""
        documents = manifest if isinstance(manifest, list) else [manifest]
        body = yaml.safe_dump_all(documents, sort_keys=False)
        return self._run(["apply", "-f", "-"], input_text=body)

    def apply_url(self, url: str, namespace: Optional[str] = None) -> ExecutionResult:
        args = ["apply", "-f", url]
        if namespace:
            args += ["-n", namespace]
        return self._run(args, timeout=600)

    def ensure(self, manifest: Dict[str, Any]) -> bool:
        """
        Apply a manifest only if the live object differs.

        The manifest is stamped with a checksum annotation; an existing
        object carrying the same checksum is left untouched.

        Returns:
            True if the manifest was applied, False if already current
        """
        checksum = manifest_checksum(manifest)
        metadata = manifest.setdefault("metadata", {})
        metadata.setdefault("annotations", {})[CHECKSUM_ANNOTATION] = checksum

        live = self.get(manifest["kind"], metadata["name"], metadata.get("namespace"))
        if live is not None:
            live_annotations = live.get("metadata", {}).get("annotations") or {}
            if live_annotations.get(CHECKSUM_ANNOTATION) == checksum:
                return False

        self.apply(manifest)
        return True

    def annotate(
        self, kind: str, name: str, namespace: str, key: str, value: str
    ) -> ExecutionResult:
        return self._run(
            ["annotate", kind, name, "-n", namespace, f"{key}={value}", "--overwrite"]
        )

    def rollout_restart(self, kind: str, name: str, namespace: str) -> ExecutionResult:
        return self._run(["rollout", "restart", f"{kind}/{name}", "-n", namespace])

    def delete(
        self,
        kind: str,
        name: Optional[str] = None,
        namespace: Optional[str] = None,
        all_namespaces: bool = False,
        selector: Optional[str] = None,
        timeout: str = "60s",
    ) -> ExecutionResult:
        """
        Delete objects by name, selector, or all of a kind.

        Raises:
            ResourceNotFoundError: If the kind or object is already gone
        """
        args = ["delete", kind]
        if name:
            args.append(name)
        elif selector:
            args += ["-l", selector]
        else:
            args.append("--all")
        if all_namespaces:
            args.append("--all-namespaces")
        elif namespace:
            args += ["-n", namespace]
        args += [f"--timeout={timeout}", "--wait=true"]
        return self._run(args)
