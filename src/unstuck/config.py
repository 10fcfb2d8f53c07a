"""
Constants and resource type definitions for unstuck.

Defines ANSI codes for output formatting, the CLI target aliases, the
deletion-priority table used to order actions, the irregular plurals used
for GVR resolution, and the default timeouts and escalation ceiling.
"""

from __future__ import annotations

import re

# ANSI escape sequences for terminal output
BOLD = "\033[1m"   # Start bold
SGR0 = "\033[0m"   # Reset (end bold)

# Kubectl plural resource types scanned by `unstuck list` (must match `kubectl get <kind>`).
ALL_TYPES = [
    "namespaces",
    "customresourcedefinitions",
    "pods",
    "services",
    "persistentvolumeclaims",
    "configmaps",
    "secrets",
]

# Cluster-scoped kinds (no -n or -A when fetching).
CLUSTER_SCOPED_KINDS = frozenset({"namespaces", "customresourcedefinitions"})

# CLI accepts singular or plural; map to the kubectl plural kind name.
RESOURCE_ALIASES = {
    "namespace": "namespaces",
    "namespaces": "namespaces",
    "ns": "namespaces",
    "crd": "customresourcedefinitions",
    "crds": "customresourcedefinitions",
    "customresourcedefinition": "customresourcedefinitions",
    "customresourcedefinitions": "customresourcedefinitions",
    "pod": "pods",
    "pods": "pods",
    "service": "services",
    "services": "services",
    "pvc": "persistentvolumeclaims",
    "persistentvolumeclaims": "persistentvolumeclaims",
    "configmap": "configmaps",
    "configmaps": "configmaps",
    "secret": "secrets",
    "secrets": "secrets",
}

# Target type aliases for diagnose/plan/apply; anything else is a resource type.
NAMESPACE_ALIASES = frozenset({"namespace", "ns"})
CRD_ALIASES = frozenset({"crd", "customresourcedefinition"})

# Deletion priority by lower-cased kind. Lower runs first (children before parents).
RESOURCE_PRIORITY = {
    # Leaf resources
    "pod": 10,
    "configmap": 10,
    "secret": 10,
    "service": 10,
    "endpoint": 10,
    "endpoints": 10,
    # Controller-managed workloads
    "deployment": 20,
    "statefulset": 20,
    "daemonset": 20,
    "replicaset": 20,
    "job": 20,
    "cronjob": 20,
    # Common custom resources
    "certificate": 30,
    "issuer": 30,
    "clusterissuer": 30,
    "customresourcedefinition": 100,
    "namespace": 200,
}
# Unknown kinds: after known custom resources, before CRDs.
DEFAULT_PRIORITY = 50

# Kubernetes kinds whose plural does not follow the suffix rules.
IRREGULAR_PLURALS = {
    "endpoints": "endpoints",
    "ingress": "ingresses",
    "networkpolicy": "networkpolicies",
    "podsecuritypolicy": "podsecuritypolicies",
    "resourcequota": "resourcequotas",
    "limitrange": "limitranges",
}

NAMESPACE_KIND = "Namespace"
NAMESPACE_API_VERSION = "v1"
CRD_KIND = "CustomResourceDefinition"
CRD_API_VERSION = "apiextensions.k8s.io/v1"
CRD_CLEANUP_FINALIZER = "customresourcecleanup.apiextensions.k8s.io"

# Merge patch body that clears metadata.finalizers.
FINALIZER_PATCH = '{"metadata":{"finalizers":null}}'

# Statuses that mean "not stuck".
HEALTHY_STATUSES = frozenset({"Active", "Bound", ""})
TERMINATING = "Terminating"

# Per-call kubectl timeout in seconds.
KUBECTL_TIMEOUT = 60

DEFAULT_MAX_ESCALATION = 2
DEFAULT_TIMEOUT = "5m"
APPLY_TIMEOUT = "10m"

# Rows shown in text tables before truncating.
MAX_ROWS = 50

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smh]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600}


def parse_duration(value: str) -> float:
    """
    Parse a timeout such as "90", "30s", "5m" or "1h" into seconds.

    Raises:
        ValueError: If the value is not a positive duration.
    """
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"invalid duration {value!r} (use e.g. 30s, 5m, 1h)")
    seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    if seconds <= 0:
        raise ValueError(f"duration must be positive, got {value!r}")
    return seconds
