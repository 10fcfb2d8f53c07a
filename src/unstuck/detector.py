"""
Diagnosis of resources stuck in Terminating state.

NamespaceDetector, CRDDetector and ResourceDetector each read a target
through kubectl and build a DiagnosisReport: status, root cause, blockers,
discovery failures, controllers and recommendations. detect() picks the
detector from the CLI target type.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Optional

from .config import (
    CRD_ALIASES,
    CRD_API_VERSION,
    CRD_CLEANUP_FINALIZER,
    CRD_KIND,
    NAMESPACE_ALIASES,
    NAMESPACE_API_VERSION,
    NAMESPACE_KIND,
    TERMINATING,
)
from .errors import KubectlError, NotFoundError, ResolutionError
from .kubectl import KubectlClient
from .models import (
    Blocker,
    ConditionSummary,
    ControllerStatus,
    DiagnosisReport,
    DiscoveryFailure,
    ResourceRef,
    TargetType,
    age_seconds,
    format_duration,
)
from .objects import CRDObject, KubeObject

logger = logging.getLogger(__name__)

_GROUP_VERSION_RE = re.compile(r"([a-zA-Z0-9.-]+/v[a-zA-Z0-9]+)")


def parse_discovery_failure_message(message: str) -> list[str]:
    """Group versions (e.g. widgets.example.com/v1) named in a condition message, de-duplicated."""
    seen: list[str] = []
    for gv in _GROUP_VERSION_RE.findall(message or ""):
        if gv not in seen:
            seen.append(gv)
    return seen


def parse_conditions(conditions: list[dict]) -> list[ConditionSummary]:
    return [
        ConditionSummary(
            type=c.get("type", ""),
            status=c.get("status", ""),
            reason=c.get("reason", ""),
            message=c.get("message", ""),
        )
        for c in conditions
    ]


def analyze_conditions(conditions: list[dict]) -> tuple[str, list[DiscoveryFailure]]:
    """Root cause and discovery failures from a namespace's true conditions."""
    root_cause = ""
    failures: list[DiscoveryFailure] = []
    for c in conditions:
        if c.get("status") != "True":
            continue
        ctype = c.get("type")
        if ctype == "NamespaceDeletionDiscoveryFailure":
            root_cause = "Discovery failures - CRD may have been deleted"
            for gv in parse_discovery_failure_message(c.get("message", "")):
                failures.append(
                    DiscoveryFailure(group_version=gv, error="API group not found (CRD likely deleted)")
                )
        elif ctype == "NamespaceFinalizersRemaining":
            if not root_cause:
                root_cause = "CR instances stuck with unsatisfied finalizers"
        elif ctype == "NamespaceContentRemaining":
            if not root_cause:
                root_cause = "Resources remaining in namespace"
    if not root_cause:
        root_cause = "Namespace finalizer blocking deletion"
    return root_cause, failures


def _finalizer_owner_hint(finalizer: str) -> str:
    """First DNS label of a finalizer's domain, e.g. cert-manager.io/finalizer -> cert-manager."""
    domain = finalizer.split("/", 1)[0]
    return domain.split(".", 1)[0].lower()


def find_controllers(client: KubectlClient, finalizers: list[str]) -> list[ControllerStatus]:
    """
    Deployments whose name suggests they own one of the given finalizers.

    Kubernetes' own finalizers (kubernetes, foregroundDeletion, ...) are ignored.
    """
    hints = {
        _finalizer_owner_hint(f)
        for f in finalizers
        if "/" in f or "." in f.split("/", 1)[0]
    }
    hints.discard("")
    hints.discard("kubernetes")
    if not hints:
        return []
    try:
        deployments = client.list("deployments", all_namespaces=True)
    except (KubectlError, ResolutionError) as exc:
        logger.warning("could not list deployments to find controllers: %s", exc)
        return []

    controllers = []
    for dep in deployments:
        if not any(hint in dep.name.lower() for hint in hints):
            continue
        status = dep.raw.get("status") or {}
        replicas = (dep.raw.get("spec") or {}).get("replicas", 1)
        available = (status.get("availableReplicas") or 0) > 0
        ready = (status.get("readyReplicas") or 0) >= replicas > 0
        controllers.append(
            ControllerStatus(
                name=dep.name,
                namespace=dep.namespace,
                available=available,
                ready=ready,
                message=f"{status.get('readyReplicas') or 0}/{replicas} ready",
            )
        )
    return controllers


def _blocker_finalizers(blockers: list[Blocker]) -> list[str]:
    return [f for b in blockers for f in b.finalizers]


class NamespaceDetector:
    """Detects why a namespace is stuck terminating."""

    def __init__(self, client: KubectlClient):
        self.client = client

    def detect(self, name: str) -> DiagnosisReport:
        try:
            ns = self.client.get_namespace(name)
        except NotFoundError:
            raise NotFoundError(f'namespace "{name}" not found') from None

        report = DiagnosisReport(
            target=ResourceRef(kind=NAMESPACE_KIND, api_version=NAMESPACE_API_VERSION, name=name),
            target_type=TargetType.NAMESPACE,
            status=ns.phase,
            finalizers=ns.spec_finalizers or ns.finalizers,
        )

        if ns.phase != TERMINATING:
            report.recommendations = [
                f'Namespace "{name}" is not in Terminating state. No remediation needed.'
            ]
            return report

        report.deletion_timestamp = ns.deletion_timestamp
        if ns.deletion_timestamp is not None:
            report.terminating_for = format_duration(age_seconds(ns.deletion_timestamp))

        report.conditions = parse_conditions(ns.conditions)
        report.root_cause, report.discovery_failures = analyze_conditions(ns.conditions)

        blockers, failures = self.enumerate_resources(name)
        report.blockers = blockers
        known = {f.group_version for f in report.discovery_failures}
        report.discovery_failures.extend(f for f in failures if f.group_version not in known)

        report.controllers = find_controllers(self.client, _blocker_finalizers(blockers))
        report.recommendations = self.build_recommendations(report)
        return report

    def enumerate_resources(self, namespace: str) -> tuple[list[Blocker], list[DiscoveryFailure]]:
        """
        Objects in the namespace that still have finalizers or a deletion timestamp.

        Types that fail to list are skipped; a failed discovery is reported
        back as DiscoveryFailures rather than raised.
        """
        try:
            resource_types, failures = self.client.api_resources(namespaced=True)
        except KubectlError as exc:
            return [], [DiscoveryFailure(group_version="unknown", error=str(exc))]

        blockers: list[Blocker] = []
        for resource in resource_types:
            try:
                items = self.client.list(resource, namespace=namespace)
            except (KubectlError, ResolutionError) as exc:
                logger.debug("skipping %s: %s", resource, exc)
                continue
            for item in items:
                if item.finalizers or item.is_terminating:
                    blockers.append(Blocker.from_object(item))
        return blockers, failures

    def build_recommendations(self, report: DiagnosisReport) -> list[str]:
        recs = []
        if report.has_discovery_failures():
            recs.append(
                "Discovery failures detected. CRDs may have been deleted. "
                "Use `unstuck plan` with --max-escalation=4 --allow-force"
            )
        if report.has_blockers():
            stuck = sum(1 for b in report.blockers if b.is_terminating)
            if stuck:
                recs.append(
                    f"{stuck} resources are stuck in Terminating. "
                    f"Use `unstuck plan namespace {report.target.name}` to generate remediation steps."
                )
            else:
                recs.append(
                    f"{len(report.blockers)} resources have finalizers. "
                    f"Use `unstuck plan namespace {report.target.name}` to see remediation options."
                )
        if not recs:
            recs.append("Unable to determine specific blockers. The namespace finalizer may need force removal.")
        return recs


class CRDDetector:
    """Detects why a CustomResourceDefinition is stuck terminating."""

    def __init__(self, client: KubectlClient):
        self.client = client

    def detect(self, name: str) -> DiagnosisReport:
        try:
            crd = CRDObject(self.client.get("customresourcedefinition", name).raw)
        except NotFoundError:
            raise NotFoundError(f'CRD "{name}" not found') from None

        report = DiagnosisReport(
            target=ResourceRef(kind=CRD_KIND, api_version=CRD_API_VERSION, name=name),
            target_type=TargetType.CRD,
            finalizers=crd.finalizers,
        )

        if not crd.is_terminating:
            report.status = "Active"
            report.recommendations = [f'CRD "{name}" is not in Terminating state. No remediation needed.']
            return report

        report.status = TERMINATING
        report.deletion_timestamp = crd.deletion_timestamp
        report.terminating_for = format_duration(age_seconds(crd.deletion_timestamp))
        report.root_cause = self.analyze_root_cause(crd)

        try:
            instances = self.list_instances(crd)
        except (KubectlError, ResolutionError) as exc:
            report.discovery_failures.append(
                DiscoveryFailure(
                    group_version=f"{crd.group}/{crd.stored_version}",
                    resource=crd.plural,
                    error=str(exc),
                )
            )
            instances = []

        report.blockers = [Blocker.from_object(i) for i in instances]
        report.instance_count = len(instances)
        if crd.namespaced:
            report.instances_by_namespace = dict(Counter(i.namespace for i in instances))
        report.controllers = find_controllers(self.client, _blocker_finalizers(report.blockers))
        report.recommendations = self.build_recommendations(report, crd)
        return report

    def list_instances(self, crd: CRDObject) -> list[KubeObject]:
        resource = f"{crd.plural}.{crd.stored_version}.{crd.group}"
        return self.client.list(resource, all_namespaces=crd.namespaced)

    @staticmethod
    def analyze_root_cause(crd: CRDObject) -> str:
        if CRD_CLEANUP_FINALIZER in crd.finalizers:
            return "CRD cleanup finalizer waiting for instance deletion"
        if crd.finalizers:
            return f"CRD has custom finalizers: {crd.finalizers}"
        return "Unknown - CRD may be waiting for API server processing"

    @staticmethod
    def build_recommendations(report: DiagnosisReport, crd: CRDObject) -> list[str]:
        recs = []
        if report.instance_count > 0:
            recs.append(
                f"{report.instance_count} CR instances remain across "
                f"{len(report.instances_by_namespace)} namespaces. Remove finalizers "
                "from instances first, then CRD will auto-delete."
            )
            recs.append(f"Use `unstuck plan crd {crd.name}` to generate steps.")
        elif CRD_CLEANUP_FINALIZER in crd.finalizers:
            recs.append("CRD has cleanup finalizer but no instances found. May need force removal.")
            recs.append(f"Use `unstuck plan crd {crd.name} --max-escalation=3 --allow-force`")
        return recs


class ResourceDetector:
    """Detects why an arbitrary resource is stuck terminating."""

    def __init__(self, client: KubectlClient):
        self.client = client

    def detect(self, resource_type: str, name: str, namespace: Optional[str] = None) -> DiagnosisReport:
        try:
            obj = self.client.get(resource_type, name, namespace or None)
        except NotFoundError:
            where = f' in namespace "{namespace}"' if namespace else ""
            raise NotFoundError(f'{resource_type} "{name}"{where} not found') from None

        target = ResourceRef(
            kind=obj.kind,
            api_version=obj.api_version,
            namespace=obj.namespace or (namespace or ""),
            name=name,
        )
        report = DiagnosisReport(
            target=target,
            target_type=TargetType.RESOURCE,
            finalizers=obj.finalizers,
        )

        if not obj.is_terminating:
            report.status = "Active"
            report.recommendations = [
                f'{target.kind} "{name}" is not in Terminating state. No remediation needed.'
            ]
            return report

        report.status = TERMINATING
        report.deletion_timestamp = obj.deletion_timestamp
        blocker = Blocker(
            ref=target,
            finalizers=tuple(obj.finalizers),
            deletion_timestamp=obj.deletion_timestamp,
            owner_references=tuple(obj.owner_references),
        )
        report.terminating_for = format_duration(blocker.age)
        if obj.finalizers:
            report.root_cause = f"Resource has finalizers: {obj.finalizers}"
        else:
            report.root_cause = "Resource is terminating but has no finalizers (may be waiting for dependents)"
        # The resource itself is the only blocker.
        report.blockers = [blocker]
        report.controllers = find_controllers(self.client, obj.finalizers)
        report.recommendations = self.build_recommendations(report)
        return report

    @staticmethod
    def build_recommendations(report: DiagnosisReport) -> list[str]:
        target = report.target
        if not report.finalizers:
            return [
                "Resource has no finalizers but is still terminating. "
                "Check for dependent resources or controller issues."
            ]
        ns = f" -n {target.namespace}" if target.namespace else ""
        return [f"Use `unstuck plan {target.kind.lower()} {target.name}{ns}` to generate remediation steps."]


def detect(
    client: KubectlClient,
    target_type: str,
    name: str,
    namespace: Optional[str] = None,
) -> DiagnosisReport:
    """Diagnose a target given its CLI type (namespace, crd, or any resource type)."""
    kind = target_type.lower()
    if kind in NAMESPACE_ALIASES:
        return NamespaceDetector(client).detect(name)
    if kind in CRD_ALIASES:
        return CRDDetector(client).detect(name)
    return ResourceDetector(client).detect(target_type, name, namespace)
