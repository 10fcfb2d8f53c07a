"""
Group/version/resource resolution for generic targets.

This is a naming heuristic, not a discovery lookup: the resource is the
lower-cased plural of the kind.
"""

from __future__ import annotations

from typing import NamedTuple

from .config import IRREGULAR_PLURALS
from .errors import ResolutionError
from .models import ResourceRef


class GVR(NamedTuple):
    group: str
    version: str
    resource: str

    @property
    def group_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def kubectl_resource(self) -> str:
        """Fully-qualified resource argument for kubectl (e.g. certificates.v1.cert-manager.io)."""
        if not self.group:
            return self.resource
        return f"{self.resource}.{self.version}.{self.group}"


def pluralize(kind: str) -> str:
    """Plural, lower-cased resource name for a Kubernetes kind."""
    lower = kind.lower()
    if lower in IRREGULAR_PLURALS:
        return IRREGULAR_PLURALS[lower]
    if lower.endswith("s"):
        return lower + "es"
    if lower.endswith("y"):
        return lower[:-1] + "ies"
    return lower + "s"


def parse_group_version(api_version: str) -> tuple[str, str]:
    """Split apiVersion into (group, version); no slash means the core group."""
    gv = api_version or "v1"
    if "/" not in gv:
        return "", gv
    group, version = gv.split("/", 1)
    return group, version


def resolve_gvr(target: ResourceRef) -> GVR:
    """
    Resolve a ResourceRef to a GVR.

    Raises:
        ResolutionError: If the target has no kind to pluralize.
    """
    if not target.kind:
        raise ResolutionError(f"cannot resolve resource for {target}: kind is empty")
    group, version = parse_group_version(target.api_version)
    return GVR(group=group, version=version, resource=pluralize(target.kind))
