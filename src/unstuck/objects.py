"""
Uniform access to cluster objects returned by kubectl as JSON.

KubeObject exposes the capabilities the detectors and the executor rely on
(finalizers, deletion timestamp, owner references) over a generic document.
NamespaceObject and CRDObject add the typed fields of the two well-known
kinds. TargetKind resolves a kind string once so callers dispatch on an enum
instead of re-comparing strings.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional

from .config import CRD_API_VERSION, CRD_KIND, NAMESPACE_KIND
from .models import OwnerReference, ResourceRef, parse_timestamp


class TargetKind(enum.Enum):
    NAMESPACE = "namespace"
    CRD = "customresourcedefinition"
    GENERIC = "generic"

    @classmethod
    def of(cls, ref: ResourceRef) -> "TargetKind":
        if ref.kind == NAMESPACE_KIND:
            return cls.NAMESPACE
        if ref.kind == CRD_KIND:
            return cls.CRD
        return cls.GENERIC


class KubeObject:
    """A cluster object as returned by `kubectl get -o json`."""

    def __init__(self, raw: dict[str, Any]):
        self.raw = raw or {}

    @property
    def metadata(self) -> dict[str, Any]:
        return self.raw.get("metadata") or {}

    @property
    def kind(self) -> str:
        return self.raw.get("kind", "")

    @property
    def api_version(self) -> str:
        return self.raw.get("apiVersion", "")

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace") or ""

    @property
    def ref(self) -> ResourceRef:
        return ResourceRef(
            kind=self.kind,
            api_version=self.api_version,
            namespace=self.namespace,
            name=self.name,
        )

    @property
    def finalizers(self) -> list[str]:
        return list(self.metadata.get("finalizers") or [])

    @property
    def deletion_timestamp_raw(self) -> Optional[str]:
        return self.metadata.get("deletionTimestamp")

    @property
    def deletion_timestamp(self) -> Optional[datetime]:
        return parse_timestamp(self.deletion_timestamp_raw)

    @property
    def is_terminating(self) -> bool:
        return bool(self.deletion_timestamp_raw)

    @property
    def owner_references(self) -> list[OwnerReference]:
        return [
            OwnerReference(kind=o.get("kind", ""), name=o.get("name", ""), uid=o.get("uid", ""))
            for o in self.metadata.get("ownerReferences") or []
        ]

    def snapshot(self) -> dict[str, Any]:
        """Minimal state for before/after audit display."""
        return {
            "finalizers": self.finalizers,
            "deletionTimestamp": self.deletion_timestamp_raw,
        }


class NamespaceObject(KubeObject):
    @property
    def kind(self) -> str:
        return NAMESPACE_KIND

    @property
    def api_version(self) -> str:
        return self.raw.get("apiVersion") or "v1"

    @property
    def phase(self) -> str:
        return (self.raw.get("status") or {}).get("phase", "")

    @property
    def spec_finalizers(self) -> list[str]:
        return list((self.raw.get("spec") or {}).get("finalizers") or [])

    @property
    def conditions(self) -> list[dict[str, Any]]:
        return list((self.raw.get("status") or {}).get("conditions") or [])

    def without_spec_finalizers(self) -> dict[str, Any]:
        """Copy of the document with spec.finalizers cleared, for the finalize endpoint."""
        body = dict(self.raw)
        body["spec"] = dict(body.get("spec") or {})
        body["spec"]["finalizers"] = []
        return body

    def snapshot(self) -> dict[str, Any]:
        data = super().snapshot()
        data["phase"] = self.phase
        return data


class CRDObject(KubeObject):
    @property
    def kind(self) -> str:
        return CRD_KIND

    @property
    def api_version(self) -> str:
        return self.raw.get("apiVersion") or CRD_API_VERSION

    @property
    def spec(self) -> dict[str, Any]:
        return self.raw.get("spec") or {}

    @property
    def group(self) -> str:
        return self.spec.get("group", "")

    @property
    def plural(self) -> str:
        return (self.spec.get("names") or {}).get("plural", "")

    @property
    def namespaced(self) -> bool:
        return self.spec.get("scope") == "Namespaced"

    @property
    def stored_version(self) -> str:
        versions = self.spec.get("versions") or []
        for v in versions:
            if v.get("storage"):
                return v.get("name", "v1")
        if versions:
            return versions[0].get("name", "v1")
        return "v1"


def wrap(raw: dict[str, Any]) -> KubeObject:
    """Pick the typed wrapper for a document by its kind."""
    kind = (raw or {}).get("kind", "")
    if kind == NAMESPACE_KIND:
        return NamespaceObject(raw)
    if kind == CRD_KIND:
        return CRDObject(raw)
    return KubeObject(raw)
