"""Tests for the namespace, CRD and resource detectors."""

import pytest

from unstuck.detector import (
    CRDDetector,
    NamespaceDetector,
    analyze_conditions,
    detect,
    find_controllers,
    parse_discovery_failure_message,
)
from unstuck.errors import NotFoundError
from unstuck.kubectl import KubectlClient
from unstuck.models import TargetType

API_RESOURCES = ["api-resources", "--verbs=list", "--namespaced", "-o", "name"]
DELETED = "2024-03-01T12:00:00Z"

DISCOVERY_CONDITION = {
    "type": "NamespaceDeletionDiscoveryFailure",
    "status": "True",
    "reason": "DiscoveryFailed",
    "message": "Discovery failed for some groups, 2 failing: unable to retrieve the complete list "
    "of server APIs: widgets.example.com/v1: the server could not find the requested resource, "
    "gadgets.example.com/v1alpha1: the server could not find the requested resource",
}


def terminating_namespace(name="stuck", conditions=()):
    return {
        "kind": "Namespace",
        "apiVersion": "v1",
        "metadata": {"name": name, "deletionTimestamp": DELETED},
        "spec": {"finalizers": ["kubernetes"]},
        "status": {"phase": "Terminating", "conditions": list(conditions)},
    }


def crd(finalizers, scope="Namespaced"):
    return {
        "kind": "CustomResourceDefinition",
        "apiVersion": "apiextensions.k8s.io/v1",
        "metadata": {"name": "widgets.example.com", "deletionTimestamp": DELETED, "finalizers": finalizers},
        "spec": {
            "group": "example.com",
            "scope": scope,
            "names": {"plural": "widgets", "kind": "Widget"},
            "versions": [{"name": "v1beta1", "storage": False}, {"name": "v1", "storage": True}],
        },
    }


def widget(name, namespace):
    return {
        "kind": "Widget",
        "apiVersion": "example.com/v1",
        "metadata": {"name": name, "namespace": namespace, "finalizers": ["example.com/cleanup"]},
    }


@pytest.fixture
def client(fake_kubectl):
    return KubectlClient()


def test_parse_discovery_failure_message_dedups():
    message = "widgets.example.com/v1: x, widgets.example.com/v1: y, gadgets.example.com/v2: z"
    assert parse_discovery_failure_message(message) == ["widgets.example.com/v1", "gadgets.example.com/v2"]


@pytest.mark.parametrize(
    "conditions,root_cause",
    [
        ([DISCOVERY_CONDITION], "Discovery failures - CRD may have been deleted"),
        ([{"type": "NamespaceFinalizersRemaining", "status": "True"}], "CR instances stuck with unsatisfied finalizers"),
        ([{"type": "NamespaceContentRemaining", "status": "True"}], "Resources remaining in namespace"),
        ([{"type": "NamespaceContentRemaining", "status": "False"}], "Namespace finalizer blocking deletion"),
        ([], "Namespace finalizer blocking deletion"),
    ],
)
def test_analyze_conditions(conditions, root_cause):
    assert analyze_conditions(conditions)[0] == root_cause


def test_active_namespace_needs_nothing(client, fake_kubectl):
    fake_kubectl.add_json(
        ["get", "namespace", "ok", "-o", "json"],
        {"kind": "Namespace", "metadata": {"name": "ok"}, "status": {"phase": "Active"}},
    )
    report = NamespaceDetector(client).detect("ok")
    assert report.status == "Active"
    assert report.is_healthy()
    assert "No remediation needed" in report.recommendations[0]
    assert fake_kubectl.called("api-resources") == []


def test_missing_namespace(client):
    with pytest.raises(NotFoundError, match='namespace "gone" not found'):
        NamespaceDetector(client).detect("gone")


def test_terminating_namespace_with_blockers(client, fake_kubectl):
    fake_kubectl.add_json(["get", "namespace", "stuck", "-o", "json"], terminating_namespace(conditions=[DISCOVERY_CONDITION]))
    fake_kubectl.add(API_RESOURCES, stdout="pods\nwidgets.example.com\nsecrets\n")
    fake_kubectl.add_json(
        ["get", "pods", "-o", "json", "-n", "stuck"],
        {"items": [
            {"kind": "Pod", "apiVersion": "v1", "metadata": {"name": "clean", "namespace": "stuck"}},
            {"kind": "Pod", "apiVersion": "v1",
             "metadata": {"name": "dying", "namespace": "stuck", "deletionTimestamp": DELETED}},
        ]},
    )
    fake_kubectl.add_json(["get", "widgets.example.com", "-o", "json", "-n", "stuck"], {"items": [widget("w1", "stuck")]})
    # secrets fail to list and are skipped
    fake_kubectl.add(["get", "secrets", "-o", "json", "-n", "stuck"], returncode=1, stderr="Error from server (Forbidden)")
    fake_kubectl.add_json(["get", "deployments", "-o", "json", "-A"], {"items": []})

    report = NamespaceDetector(client).detect("stuck")
    assert report.target_type == TargetType.NAMESPACE
    assert report.status == "Terminating"
    assert report.finalizers == ["kubernetes"]
    assert report.deletion_timestamp is not None
    assert report.root_cause == "Discovery failures - CRD may have been deleted"
    assert [f.group_version for f in report.discovery_failures] == [
        "widgets.example.com/v1",
        "gadgets.example.com/v1alpha1",
    ]
    assert sorted(b.name for b in report.blockers) == ["dying", "w1"]
    assert any("Discovery failures detected" in r for r in report.recommendations)


def test_partial_api_discovery_is_not_fatal(client, fake_kubectl):
    fake_kubectl.add_json(["get", "namespace", "stuck", "-o", "json"], terminating_namespace())
    fake_kubectl.add(
        API_RESOURCES,
        stdout="pods\n",
        returncode=1,
        stderr="error: unable to retrieve the complete list of server APIs: metrics.k8s.io/v1beta1: stale",
    )
    fake_kubectl.add_json(["get", "pods", "-o", "json", "-n", "stuck"], {"items": []})
    report = NamespaceDetector(client).detect("stuck")
    assert [f.group_version for f in report.discovery_failures] == ["metrics.k8s.io/v1beta1"]
    assert report.blockers == []


def test_failed_api_discovery_is_reported(client, fake_kubectl):
    fake_kubectl.add_json(["get", "namespace", "stuck", "-o", "json"], terminating_namespace())
    fake_kubectl.add(API_RESOURCES, returncode=1, stderr="Unable to connect to the server")
    report = NamespaceDetector(client).detect("stuck")
    assert report.discovery_failures[0].group_version == "unknown"
    assert any("Discovery failures detected" in r for r in report.recommendations)


def test_crd_with_instances(client, fake_kubectl):
    fake_kubectl.add_json(
        ["get", "customresourcedefinition", "widgets.example.com", "-o", "json"],
        crd(["customresourcecleanup.apiextensions.k8s.io"]),
    )
    fake_kubectl.add_json(
        ["get", "widgets.v1.example.com", "-o", "json", "-A"],
        {"items": [widget("a", "ns1"), widget("b", "ns1"), widget("c", "ns2")]},
    )
    fake_kubectl.add_json(["get", "deployments", "-o", "json", "-A"], {"items": []})
    report = CRDDetector(client).detect("widgets.example.com")
    assert report.status == "Terminating"
    assert report.root_cause == "CRD cleanup finalizer waiting for instance deletion"
    assert report.instance_count == 3
    assert report.instances_by_namespace == {"ns1": 2, "ns2": 1}
    assert len(report.blockers) == 3
    assert "3 CR instances remain across 2 namespaces" in report.recommendations[0]


def test_crd_instance_listing_failure_is_discovery_failure(client, fake_kubectl):
    fake_kubectl.add_json(
        ["get", "customresourcedefinition", "widgets.example.com", "-o", "json"],
        crd(["customresourcecleanup.apiextensions.k8s.io"]),
    )
    fake_kubectl.add(["get", "widgets.v1.example.com", "-o", "json", "-A"], returncode=1, stderr="Error from server (ServiceUnavailable)")
    report = CRDDetector(client).detect("widgets.example.com")
    assert report.discovery_failures[0].group_version == "example.com/v1"
    assert report.discovery_failures[0].resource == "widgets"
    assert report.instance_count == 0
    assert "May need force removal" in report.recommendations[0]


def test_crd_not_deleting(client, fake_kubectl):
    doc = crd([])
    del doc["metadata"]["deletionTimestamp"]
    fake_kubectl.add_json(["get", "customresourcedefinition", "widgets.example.com", "-o", "json"], doc)
    report = detect(client, "crd", "widgets.example.com")
    assert report.status == "Active"
    assert report.target.kind == "CustomResourceDefinition"


def test_resource_is_its_own_blocker(client, fake_kubectl):
    fake_kubectl.add_json(
        ["get", "pvc", "data", "-n", "app", "-o", "json"],
        {
            "kind": "PersistentVolumeClaim",
            "apiVersion": "v1",
            "metadata": {
                "name": "data",
                "namespace": "app",
                "deletionTimestamp": DELETED,
                "finalizers": ["kubernetes.io/pvc-protection"],
            },
            "status": {"phase": "Bound"},
        },
    )
    report = detect(client, "pvc", "data", "app")
    assert report.target_type == TargetType.RESOURCE
    assert report.status == "Terminating"
    assert [str(b.ref) for b in report.blockers] == ["PersistentVolumeClaim/app/data"]
    assert "pvc-protection" in report.root_cause
    assert report.recommendations == [
        "Use `unstuck plan persistentvolumeclaim data -n app` to generate remediation steps."
    ]


def test_missing_resource(client):
    with pytest.raises(NotFoundError, match='pod "p" in namespace "app" not found'):
        detect(client, "pod", "p", "app")


def test_find_controllers_by_finalizer_domain(client, fake_kubectl):
    fake_kubectl.add_json(
        ["get", "deployments", "-o", "json", "-A"],
        {"items": [
            {"kind": "Deployment", "metadata": {"name": "cert-manager", "namespace": "cert-manager"},
             "spec": {"replicas": 1}, "status": {"availableReplicas": 1, "readyReplicas": 1}},
            {"kind": "Deployment", "metadata": {"name": "web", "namespace": "app"},
             "spec": {"replicas": 2}, "status": {"availableReplicas": 2, "readyReplicas": 2}},
        ]},
    )
    controllers = find_controllers(client, ["cert-manager.io/finalizer", "kubernetes"])
    assert [c.name for c in controllers] == ["cert-manager"]
    assert controllers[0].available and controllers[0].ready


def test_find_controllers_ignores_core_finalizers(client, fake_kubectl):
    assert find_controllers(client, ["kubernetes", "foregroundDeletion"]) == []
    assert fake_kubectl.calls == []
