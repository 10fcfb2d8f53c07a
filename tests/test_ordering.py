"""Tests for dependency ordering."""

import pytest

from unstuck.models import Action, ActionType, EscalationLevel, ResourceRef, RiskLevel
from unstuck.ordering import order_by_dependencies, resource_key, resource_priority, topological_sort


def action(kind, name, level=2, namespace="", description=""):
    return Action(
        type=ActionType.PATCH,
        escalation_level=EscalationLevel(level),
        description=description or f"{kind}/{name}",
        target=ResourceRef(kind=kind, namespace=namespace, name=name),
        operation="remove-finalizers",
        risk=RiskLevel.MEDIUM,
        expected_result="",
    )


@pytest.mark.parametrize(
    "kind,priority",
    [
        ("Pod", 10),
        ("endpoints", 10),
        ("Deployment", 20),
        ("CronJob", 20),
        ("ClusterIssuer", 30),
        ("Widget", 50),
        ("CustomResourceDefinition", 100),
        ("NAMESPACE", 200),
    ],
)
def test_resource_priority(kind, priority):
    assert resource_priority(kind) == priority


def test_resource_key():
    assert resource_key(ResourceRef(kind="Pod", namespace="app", name="p")) == "Pod/app/p"
    assert resource_key(ResourceRef(kind="Namespace", name="app")) == "Namespace/app"


def test_priority_sort_within_level():
    """Children before parents: Pod, Certificate, CRD, Namespace."""
    actions = [
        action("Namespace", "ns"),
        action("Pod", "p"),
        action("CustomResourceDefinition", "widgets.example.com"),
        action("Certificate", "c"),
    ]
    kinds = [a.target.kind for a in order_by_dependencies(actions)]
    assert kinds == ["Pod", "Certificate", "CustomResourceDefinition", "Namespace"]


def test_level_wins_over_priority():
    actions = [action("Pod", "p", level=4), action("Namespace", "ns", level=0)]
    assert [a.target.kind for a in order_by_dependencies(actions)] == ["Namespace", "Pod"]


def test_name_breaks_ties():
    actions = [action("Pod", "b"), action("Pod", "a"), action("Pod", "c")]
    assert [a.target.name for a in order_by_dependencies(actions)] == ["a", "b", "c"]


def test_ordering_is_idempotent():
    actions = [action("Namespace", "ns"), action("Widget", "w"), action("Pod", "z"), action("Pod", "a", level=0)]
    once = order_by_dependencies(actions)
    assert order_by_dependencies(once) == once


def test_ordering_returns_new_list():
    actions = [action("Namespace", "ns"), action("Pod", "p")]
    ordered = order_by_dependencies(actions)
    assert ordered is not actions
    assert [a.target.kind for a in actions] == ["Namespace", "Pod"]


def test_empty_input():
    assert order_by_dependencies([]) == []
    assert topological_sort([], {"a": ["b"]}) == []


def test_topological_sort_without_edges_falls_back():
    actions = [action("Namespace", "ns"), action("Pod", "p")]
    assert topological_sort(actions, {}) == order_by_dependencies(actions)


def test_topological_sort_children_first():
    """Pod -> ReplicaSet -> Deployment; unknown targets keep input order at the end."""
    pod = action("Pod", "web-1", namespace="app")
    rs = action("ReplicaSet", "web", namespace="app")
    deploy = action("Deployment", "web", namespace="app")
    other_b = action("Widget", "b", namespace="app")
    other_a = action("Widget", "a", namespace="app")
    edges = {
        "Pod/app/web-1": ["ReplicaSet/app/web"],
        "ReplicaSet/app/web": ["Deployment/app/web"],
    }
    ordered = topological_sort([deploy, other_b, rs, pod, other_a], edges)
    assert ordered == [pod, rs, deploy, other_b, other_a]


def test_topological_sort_is_deterministic_across_map_order():
    a = action("Pod", "a", namespace="x")
    b = action("Pod", "b", namespace="x")
    owner = action("Deployment", "d", namespace="x")
    edges_1 = {"Pod/x/a": ["Deployment/x/d"], "Pod/x/b": ["Deployment/x/d"]}
    edges_2 = {"Pod/x/b": ["Deployment/x/d"], "Pod/x/a": ["Deployment/x/d"]}
    assert topological_sort([owner, a, b], edges_1) == topological_sort([owner, b, a], edges_2)


def test_topological_sort_keeps_duplicate_targets():
    """Several actions on one target all survive, in input order."""
    first = action("Pod", "p", namespace="x", description="first")
    second = action("Pod", "p", namespace="x", description="second")
    owner = action("Deployment", "d", namespace="x")
    ordered = topological_sort([owner, first, second], {"Pod/x/p": ["Deployment/x/d"]})
    assert ordered == [first, second, owner]
