"""Tests for the data model."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import namespace_report
from unstuck import models
from unstuck.models import (
    Action,
    ActionType,
    Blocker,
    EscalationLevel,
    ResourceRef,
    RiskLevel,
    escalation_label,
    format_duration,
    parse_timestamp,
    requires_force,
)
from unstuck.objects import KubeObject


def test_escalation_labels():
    assert EscalationLevel.INFO.label == "L0 (Informational)"
    assert EscalationLevel.FORCE.label == "L4 (Force Finalize)"
    assert escalation_label(9) == "Unknown"


@pytest.mark.parametrize("level,expected", [(0, False), (2, False), (3, True), (4, True)])
def test_requires_force(level, expected):
    assert requires_force(level) is expected
    assert EscalationLevel(level).requires_force is expected


def test_resource_ref_str():
    assert str(ResourceRef(kind="Pod", namespace="app", name="p")) == "Pod/app/p"
    assert str(ResourceRef(kind="Namespace", name="app")) == "Namespace/app"


def test_resource_ref_equality():
    a = ResourceRef(kind="Pod", api_version="v1", namespace="app", name="p")
    assert a == ResourceRef(kind="Pod", api_version="v1", namespace="app", name="p")
    assert a != ResourceRef(kind="Pod", api_version="v1", namespace="other", name="p")


@pytest.mark.parametrize(
    "seconds,text",
    [(0, "0s"), (45, "45s"), (125, "2m"), (7200, "2h"), (3 * 86400 + 5, "3d"), (-5, "0s")],
)
def test_format_duration(seconds, text):
    assert format_duration(seconds) == text


def test_parse_timestamp():
    assert parse_timestamp("2024-03-01T12:00:00Z") == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
    assert parse_timestamp(None) is None
    assert parse_timestamp("yesterday") is None


@pytest.mark.parametrize(
    "status,healthy,terminating",
    [("Active", True, False), ("Bound", True, False), ("", True, False), ("Terminating", False, True)],
)
def test_report_health(status, healthy, terminating):
    report = namespace_report(status=status)
    assert report.is_healthy() is healthy
    assert report.is_terminating() is terminating


def test_blocker_from_object(monkeypatch):
    now = datetime(2024, 3, 1, 13, tzinfo=timezone.utc)
    monkeypatch.setattr(models, "_now", lambda: now)
    obj = KubeObject({
        "kind": "Certificate",
        "apiVersion": "cert-manager.io/v1",
        "metadata": {
            "name": "tls",
            "namespace": "app",
            "finalizers": ["cert-manager.io/finalizer"],
            "deletionTimestamp": "2024-03-01T12:00:00Z",
            "ownerReferences": [{"kind": "Issuer", "name": "ca", "uid": "123"}],
        },
    })
    blocker = Blocker.from_object(obj)
    assert blocker.ref == ResourceRef("Certificate", "cert-manager.io/v1", "app", "tls")
    assert blocker.is_terminating
    assert blocker.age == timedelta(hours=1).total_seconds()
    data = blocker.to_dict()
    assert data["apiVersion"] == "cert-manager.io/v1"
    assert data["finalizers"] == ["cert-manager.io/finalizer"]
    assert data["age"] == "1h"
    assert data["ownerReferences"] == [{"kind": "Issuer", "name": "ca", "uid": "123"}]


def test_action_to_dict_uses_camel_case():
    action = Action(
        type=ActionType.FINALIZE,
        escalation_level=EscalationLevel.FORCE,
        description="Force-finalize namespace x",
        target=ResourceRef(kind="Namespace", api_version="v1", name="x"),
        operation="force-finalize",
        risk=RiskLevel.CRITICAL,
        expected_result="gone",
        requires_force=True,
        id="action-003",
    )
    data = action.to_dict()
    assert data["escalationLevel"] == 4
    assert data["requiresForce"] is True
    assert data["risk"] == "critical"
    assert data["target"] == {"kind": "Namespace", "apiVersion": "v1", "name": "x"}
    assert "dependsOn" not in data


def test_report_to_dict():
    report = namespace_report()
    data = report.to_dict()
    assert data["targetType"] == "namespace"
    assert data["status"] == "Terminating"
    assert data["discoveryFailures"] == []
    assert data["diagnosedAt"].endswith("Z")
