"""
Action execution against the cluster.

Executor carries out a single Action, checks its post-condition and takes
before/after snapshots. Namespaces and CRDs go through their dedicated
kubectl resource names; everything else is resolved to a GVR first.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from .config import FINALIZER_PATCH, TERMINATING
from .errors import NotFoundError, ResolutionError, UnsupportedTargetError
from .gvr import resolve_gvr
from .kubectl import KubectlClient
from .models import Action, ActionType, ResourceRef
from .objects import KubeObject, TargetKind

logger = logging.getLogger(__name__)

_READ_ONLY = frozenset({ActionType.INSPECT, ActionType.LIST, ActionType.WAIT})


def kubectl_resource(target: ResourceRef) -> str:
    """kubectl resource argument for a target, resolving generic kinds through their GVR."""
    kind = TargetKind.of(target)
    if kind is TargetKind.NAMESPACE:
        return "namespace"
    if kind is TargetKind.CRD:
        return "customresourcedefinition"
    return resolve_gvr(target).kubectl_resource()


def _scope(target: ResourceRef) -> Optional[str]:
    if TargetKind.of(target) is TargetKind.GENERIC:
        return target.namespace or None
    return None


class Executor:
    """Executes and verifies remediation actions through a KubectlClient."""

    def __init__(self, client: KubectlClient):
        self.client = client

    def execute(self, action: Action) -> None:
        """
        Perform the action.

        inspect, list and wait are no-ops (wait does not poll).

        Raises:
            UnsupportedTargetError: finalize on a non-Namespace target, or an unknown type.
            ResolutionError: The target's GVR cannot be resolved.
            KubectlError: The cluster call failed.
        """
        if action.type in _READ_ONLY:
            return
        if action.type == ActionType.PATCH:
            self._patch(action.target)
        elif action.type == ActionType.DELETE:
            self._delete(action.target)
        elif action.type == ActionType.FINALIZE:
            self._finalize(action.target)
        else:
            raise UnsupportedTargetError(f"unknown action type: {action.type}")

    def _patch(self, target: ResourceRef) -> None:
        logger.info("removing finalizers from %s", target)
        self.client.patch_merge(kubectl_resource(target), target.name, _scope(target), FINALIZER_PATCH)

    def _delete(self, target: ResourceRef) -> None:
        logger.info("deleting %s", target)
        self.client.delete(kubectl_resource(target), target.name, _scope(target))

    def _finalize(self, target: ResourceRef) -> None:
        if TargetKind.of(target) is not TargetKind.NAMESPACE:
            raise UnsupportedTargetError(f"finalize action only supports Namespace, got: {target.kind}")
        logger.info("force-finalizing namespace %s", target.name)
        namespace = self.client.get_namespace(target.name)
        self.client.finalize_namespace(namespace)

    def _fetch(self, target: ResourceRef) -> KubeObject:
        return self.client.get(kubectl_resource(target), target.name, _scope(target))

    def verify(self, action: Action) -> bool:
        """
        Check the action's post-condition.

        Raises:
            UnsupportedTargetError: Unknown action type.
            KubectlError / ResolutionError: The check itself failed.
        """
        if action.type in _READ_ONLY:
            return True
        if action.type == ActionType.PATCH:
            return self._verify_no_finalizers(action.target)
        if action.type == ActionType.DELETE:
            return self._verify_deleted(action.target)
        if action.type == ActionType.FINALIZE:
            return self._verify_namespace_cleared(action.target.name)
        raise UnsupportedTargetError(f"unknown action type for verification: {action.type}")

    def _verify_no_finalizers(self, target: ResourceRef) -> bool:
        return len(self._fetch(target).finalizers) == 0

    def _verify_deleted(self, target: ResourceRef) -> bool:
        try:
            self._fetch(target)
        except NotFoundError:
            return True
        except ResolutionError:
            # An unresolvable type means the object's API surface is gone.
            return True
        return False

    def _verify_namespace_cleared(self, name: str) -> bool:
        try:
            namespace = self.client.get_namespace(name)
        except NotFoundError:
            return True
        return namespace.phase != TERMINATING

    def snapshot(self, target: ResourceRef) -> dict[str, Any]:
        """Finalizers, deletion timestamp and (namespaces only) phase of the target."""
        return self._fetch(target).snapshot()


def snapshot_json(snapshot: Optional[dict[str, Any]]) -> str:
    """Render a snapshot for log lines."""
    if snapshot is None:
        return "null"
    return json.dumps(snapshot, sort_keys=True)
