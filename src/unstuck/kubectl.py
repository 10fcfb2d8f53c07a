"""
Kubectl invocation and Kubernetes resource JSON helpers.

All cluster access goes through subprocess kubectl calls. KubectlClient adds
the connection flags (--kubeconfig, --context), an optional overall deadline,
and turns failures into KubectlError / NotFoundError so callers can tell a
missing object from a broken call.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
import time
from typing import Any, Optional

from .config import CLUSTER_SCOPED_KINDS, KUBECTL_TIMEOUT
from .errors import DeadlineExceeded, KubectlError, NotFoundError, ResolutionError
from .models import DiscoveryFailure
from .objects import KubeObject, NamespaceObject, wrap

logger = logging.getLogger(__name__)

# Marker kubectl prints when some API groups could not be discovered.
PARTIAL_DISCOVERY_MARKER = "unable to retrieve the complete list"
_GROUP_VERSION_ERROR_RE = re.compile(r"([a-zA-Z0-9.-]+/v[a-zA-Z0-9]+): ([^,\n]+)")


def run_kubectl(
    args: list[str],
    capture: bool = True,
    input: Optional[str] = None,
    timeout: float = KUBECTL_TIMEOUT,
) -> subprocess.CompletedProcess:
    """
    Run kubectl with the given args.

    Args:
        args: List of arguments (e.g. ["get", "pods", "-A", "-o", "json"]).
        capture: If True, capture stdout/stderr; otherwise inherit from process.
        input: Optional text fed to kubectl's stdin (for `-f -`).
        timeout: Seconds before the call is abandoned.

    Returns:
        CompletedProcess with returncode, stdout, stderr.
    """
    cmd = ["kubectl"] + args
    return subprocess.run(
        cmd,
        capture_output=capture,
        text=True,
        input=input,
        timeout=timeout,
    )


def is_not_found(stderr: str) -> bool:
    return "NotFound" in stderr or "not found" in stderr


def is_partial_discovery_error(message: str) -> bool:
    return PARTIAL_DISCOVERY_MARKER in message


def parse_discovery_failures(message: str) -> list[DiscoveryFailure]:
    """Pull `group/version: error` pairs out of a partial discovery message."""
    failures = []
    seen = set()
    for group_version, error in _GROUP_VERSION_ERROR_RE.findall(message):
        if group_version in seen:
            continue
        seen.add(group_version)
        failures.append(DiscoveryFailure(group_version=group_version, error=error.strip()))
    return failures


def items_with_deletion(obj: dict) -> list[dict]:
    """
    Return only items that have a deletion timestamp (stuck terminating).

    Handles both a list response (obj["items"]) and a single-item response
    (the object itself). Only includes items where metadata.deletionTimestamp is set.

    Args:
        obj: JSON from kubectl get -o json (either {"items": [...]} or a single resource).

    Returns:
        List of resource dicts that are in Terminating state.
    """
    if "items" in obj:
        return [i for i in obj["items"] if i.get("metadata", {}).get("deletionTimestamp")]
    meta = obj.get("metadata", {})
    if meta.get("deletionTimestamp"):
        return [obj]
    return []


class KubectlClient:
    """Cluster read/write operations over the kubectl binary."""

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        timeout: float = KUBECTL_TIMEOUT,
        deadline: Optional[float] = None,
    ):
        self.kubeconfig = kubeconfig
        self.context = context
        self.timeout = timeout
        # time.monotonic() value after which no further call is started.
        self.deadline = deadline

    def _global_flags(self) -> list[str]:
        flags = []
        if self.kubeconfig:
            flags.extend(["--kubeconfig", self.kubeconfig])
        if self.context:
            flags.extend(["--context", self.context])
        return flags

    def _call_timeout(self) -> float:
        if self.deadline is None:
            return self.timeout
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise DeadlineExceeded("operation timed out")
        return min(self.timeout, remaining)

    def run(self, args: list[str], input: Optional[str] = None) -> subprocess.CompletedProcess:
        """Run kubectl with connection flags; a timeout becomes DeadlineExceeded or KubectlError."""
        full_args = self._global_flags() + args
        timeout = self._call_timeout()
        logger.debug("kubectl %s", " ".join(args))
        try:
            return run_kubectl(full_args, input=input, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            if self.deadline is not None and time.monotonic() >= self.deadline:
                raise DeadlineExceeded("operation timed out") from exc
            raise KubectlError(f"kubectl {args[0]} timed out after {timeout:.0f}s", args=args) from exc

    def check(self, args: list[str], input: Optional[str] = None) -> str:
        """
        Run kubectl and return stdout.

        Raises:
            NotFoundError: The object does not exist.
            ResolutionError: The server does not know the resource type.
            KubectlError: Any other non-zero exit.
        """
        result = self.run(args, input=input)
        if result.returncode == 0:
            return result.stdout or ""
        stderr = (result.stderr or "").strip()
        if "doesn't have a resource type" in stderr:
            raise ResolutionError(stderr)
        if is_not_found(stderr):
            raise NotFoundError(stderr, args=args, returncode=result.returncode, stderr=stderr)
        raise KubectlError(
            stderr or f"kubectl {args[0]} exited with {result.returncode}",
            args=args,
            returncode=result.returncode,
            stderr=stderr,
        )

    def check_json(self, args: list[str]) -> dict[str, Any]:
        out = self.check(args)
        try:
            return json.loads(out) if out.strip() else {}
        except json.JSONDecodeError as exc:
            raise KubectlError(f"invalid JSON from kubectl {args[0]}: {exc}", args=args) from exc

    @staticmethod
    def _scope_args(namespace: Optional[str]) -> list[str]:
        return ["-n", namespace] if namespace else []

    def get(self, resource: str, name: str, namespace: Optional[str] = None) -> KubeObject:
        """Fetch one object; raises NotFoundError when it is gone."""
        raw = self.check_json(["get", resource, name] + self._scope_args(namespace) + ["-o", "json"])
        return wrap(raw)

    def get_namespace(self, name: str) -> NamespaceObject:
        return NamespaceObject(self.check_json(["get", "namespace", name, "-o", "json"]))

    def list(
        self,
        resource: str,
        namespace: Optional[str] = None,
        all_namespaces: bool = False,
    ) -> list[KubeObject]:
        args = ["get", resource, "-o", "json"]
        if namespace:
            args.extend(["-n", namespace])
        elif all_namespaces:
            args.append("-A")
        data = self.check_json(args)
        return [wrap(item) for item in data.get("items") or []]

    def get_json(
        self,
        kind: str,
        name: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> Optional[dict]:
        """
        Get one or more resources as JSON, or None on any failure.

        Cluster-scoped kinds use neither -n nor -A; namespaced kinds use -n
        when a namespace is given and -A otherwise.
        """
        args = ["get", kind, "-o", "json"]
        if kind in CLUSTER_SCOPED_KINDS:
            pass
        elif namespace:
            args.extend(["-n", namespace])
        else:
            args.append("-A")
        if name:
            args.append(name)
        result = self.run(args)
        if result.returncode != 0 or not result.stdout:
            return None
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError:
            return None

    def api_resources(self, namespaced: bool = True) -> tuple[list[str], list[DiscoveryFailure]]:
        """
        Listable resource types as `name.group`, plus any groups that failed discovery.

        A partial discovery failure is not an error: whatever kubectl did list
        is returned together with the failed group versions.

        Raises:
            KubectlError: Discovery failed outright.
        """
        args = ["api-resources", "--verbs=list", "-o", "name"]
        if namespaced:
            args.insert(2, "--namespaced")
        result = self.run(args)
        names = [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]
        if result.returncode == 0:
            return names, []
        stderr = (result.stderr or "").strip()
        if is_partial_discovery_error(stderr):
            failures = parse_discovery_failures(stderr)
            logger.warning("partial API discovery failure: %s", stderr)
            return names, failures
        raise KubectlError(stderr or "api-resources failed", args=args, returncode=result.returncode, stderr=stderr)

    def patch_merge(self, resource: str, name: str, namespace: Optional[str], body: str) -> None:
        self.check(["patch", resource, name] + self._scope_args(namespace) + ["--type=merge", "-p", body])

    def delete(self, resource: str, name: str, namespace: Optional[str] = None) -> None:
        self.check(["delete", resource, name] + self._scope_args(namespace) + ["--wait=false"])

    def finalize_namespace(self, namespace: NamespaceObject) -> None:
        """Submit a namespace document to its finalize sub-resource."""
        body = json.dumps(namespace.without_spec_finalizers())
        self.check(
            ["replace", "--raw", f"/api/v1/namespaces/{namespace.name}/finalize", "-f", "-"],
            input=body,
        )
