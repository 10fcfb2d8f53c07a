"""
Data model for diagnosis, planning and execution.

A DiagnosisReport is built once by a detector and read by the Planner. The
Planner emits a Plan of Actions, and the Applier turns each Action into an
ActionResult collected in an ApplyResult. Every record has to_dict() giving
the camelCase field names used in JSON output.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .config import HEALTHY_STATUSES, TERMINATING


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp from object metadata; None when absent or unparseable."""
    if not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_duration(seconds: float) -> str:
    """Render an age as 45s, 12m, 3h or 2d."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def age_seconds(since: Optional[datetime]) -> float:
    """Seconds elapsed since a timestamp; zero when absent."""
    if since is None:
        return 0.0
    return max(0.0, (_now() - since).total_seconds())


class EscalationLevel(enum.IntEnum):
    """Ordered remediation tiers. Levels 3 and above need --allow-force."""

    INFO = 0
    CLEAN = 1
    FINALIZER = 2
    CRD = 3
    FORCE = 4

    @property
    def requires_force(self) -> bool:
        return self >= EscalationLevel.CRD

    @property
    def label(self) -> str:
        return escalation_label(int(self))


_ESCALATION_LABELS = {
    0: "L0 (Informational)",
    1: "L1 (Clean Deletion)",
    2: "L2 (Finalizer Removal)",
    3: "L3 (CRD Finalizer)",
    4: "L4 (Force Finalize)",
}


def escalation_label(level: int) -> str:
    return _ESCALATION_LABELS.get(int(level), "Unknown")


def requires_force(level: int) -> bool:
    return int(level) >= EscalationLevel.CRD


class RiskLevel(str, enum.Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActionType(str, enum.Enum):
    INSPECT = "inspect"    # Read-only check
    LIST = "list"          # Enumerate resources
    PATCH = "patch"        # Modify object
    DELETE = "delete"      # Delete object
    FINALIZE = "finalize"  # Force finalize
    WAIT = "wait"          # Wait for condition


class TargetType(str, enum.Enum):
    NAMESPACE = "namespace"
    CRD = "crd"
    RESOURCE = "resource"


@dataclass(frozen=True)
class ResourceRef:
    """Identifies an API object. Equal iff kind, apiVersion, namespace and name match."""

    kind: str = ""
    api_version: str = ""
    namespace: str = ""
    name: str = ""

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"

    def to_dict(self) -> dict[str, Any]:
        data = {"kind": self.kind, "apiVersion": self.api_version, "name": self.name}
        if self.namespace:
            data["namespace"] = self.namespace
        return data


@dataclass(frozen=True)
class OwnerReference:
    """Back-reference from a child to its parent. Used for ordering hints only."""

    kind: str
    name: str
    uid: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "name": self.name, "uid": self.uid}


@dataclass(frozen=True)
class Blocker:
    """A resource whose finalizers or continued existence block the target's deletion."""

    ref: ResourceRef
    finalizers: tuple[str, ...] = ()
    deletion_timestamp: Optional[datetime] = None
    owner_references: tuple[OwnerReference, ...] = ()

    @property
    def kind(self) -> str:
        return self.ref.kind

    @property
    def api_version(self) -> str:
        return self.ref.api_version

    @property
    def namespace(self) -> str:
        return self.ref.namespace

    @property
    def name(self) -> str:
        return self.ref.name

    @property
    def is_terminating(self) -> bool:
        return self.deletion_timestamp is not None

    @property
    def age(self) -> float:
        """Seconds since the deletion timestamp; zero when not terminating."""
        return age_seconds(self.deletion_timestamp)

    @classmethod
    def from_object(cls, obj: Any) -> "Blocker":
        """Build a Blocker from anything exposing the KubeObject capabilities."""
        return cls(
            ref=obj.ref,
            finalizers=tuple(obj.finalizers),
            deletion_timestamp=obj.deletion_timestamp,
            owner_references=tuple(obj.owner_references),
        )

    def to_dict(self) -> dict[str, Any]:
        data = self.ref.to_dict()
        data["finalizers"] = list(self.finalizers)
        if self.deletion_timestamp is not None:
            data["deletionTimestamp"] = format_timestamp(self.deletion_timestamp)
            data["age"] = format_duration(self.age)
        if self.owner_references:
            data["ownerReferences"] = [o.to_dict() for o in self.owner_references]
        return data


@dataclass(frozen=True)
class DiscoveryFailure:
    group_version: str
    error: str
    resource: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = {"groupVersion": self.group_version, "error": self.error}
        if self.resource:
            data["resource"] = self.resource
        return data


@dataclass(frozen=True)
class ControllerStatus:
    name: str
    namespace: str
    available: bool = False
    ready: bool = False
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "namespace": self.namespace,
            "available": self.available,
            "ready": self.ready,
            "message": self.message,
        }


@dataclass(frozen=True)
class ConditionSummary:
    type: str
    status: str
    reason: str = ""
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "status": self.status, "reason": self.reason, "message": self.message}


@dataclass
class WebhookInfo:
    """An admission webhook that matches a target's GVR."""

    name: str
    webhook_name: str
    type: str  # validating or mutating
    healthy: bool = True
    error: str = ""
    service_ref: str = ""
    failure_policy: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "webhookName": self.webhook_name,
            "type": self.type,
            "healthy": self.healthy,
            "error": self.error,
            "serviceRef": self.service_ref,
            "failurePolicy": self.failure_policy,
        }


@dataclass
class DiagnosisReport:
    """Snapshot of a stuck resource's state, consumed once by the Planner."""

    target: ResourceRef
    target_type: TargetType
    status: str = ""
    deletion_timestamp: Optional[datetime] = None
    terminating_for: str = ""
    root_cause: str = ""
    finalizers: list[str] = field(default_factory=list)
    blockers: list[Blocker] = field(default_factory=list)
    discovery_failures: list[DiscoveryFailure] = field(default_factory=list)
    webhook_issues: list[WebhookInfo] = field(default_factory=list)
    controllers: list[ControllerStatus] = field(default_factory=list)
    conditions: list[ConditionSummary] = field(default_factory=list)
    instance_count: int = 0
    instances_by_namespace: dict[str, int] = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)
    diagnosed_at: datetime = field(default_factory=_now)

    def is_healthy(self) -> bool:
        return self.status in HEALTHY_STATUSES

    def is_terminating(self) -> bool:
        return self.status == TERMINATING

    def has_blockers(self) -> bool:
        return len(self.blockers) > 0

    def has_discovery_failures(self) -> bool:
        return len(self.discovery_failures) > 0

    def has_webhook_issues(self) -> bool:
        return len(self.webhook_issues) > 0

    def total_blocker_count(self) -> int:
        return len(self.blockers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target.to_dict(),
            "targetType": self.target_type.value,
            "status": self.status,
            "deletionTimestamp": format_timestamp(self.deletion_timestamp),
            "terminatingFor": self.terminating_for,
            "rootCause": self.root_cause,
            "finalizers": list(self.finalizers),
            "blockers": [b.to_dict() for b in self.blockers],
            "discoveryFailures": [f.to_dict() for f in self.discovery_failures],
            "webhookIssues": [w.to_dict() for w in self.webhook_issues],
            "controllers": [c.to_dict() for c in self.controllers],
            "conditions": [c.to_dict() for c in self.conditions],
            "instanceCount": self.instance_count,
            "instancesByNamespace": dict(self.instances_by_namespace),
            "recommendations": list(self.recommendations),
            "diagnosedAt": format_timestamp(self.diagnosed_at),
        }


@dataclass(frozen=True)
class Action:
    """A single proposed remediation step. Built by the Planner only."""

    type: ActionType
    escalation_level: EscalationLevel
    description: str
    target: ResourceRef
    operation: str
    risk: RiskLevel
    expected_result: str
    command: str = ""
    requires_force: bool = False
    id: str = ""
    depends_on: tuple[str, ...] = ()
    timeout: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "type": self.type.value,
            "escalationLevel": int(self.escalation_level),
            "description": self.description,
            "target": self.target.to_dict(),
            "operation": self.operation,
            "command": self.command,
            "risk": self.risk.value,
            "requiresForce": self.requires_force,
            "expectedResult": self.expected_result,
        }
        if self.depends_on:
            data["dependsOn"] = list(self.depends_on)
        if self.timeout is not None:
            data["timeout"] = self.timeout
        return data


@dataclass
class Plan:
    target: ResourceRef
    max_escalation: EscalationLevel
    risk_level: RiskLevel = RiskLevel.NONE
    actions: list[Action] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target.to_dict(),
            "riskLevel": self.risk_level.value,
            "maxEscalation": int(self.max_escalation),
            "actions": [a.to_dict() for a in self.actions],
            "commands": list(self.commands),
        }


@dataclass
class ActionResult:
    action: Action
    success: bool = False
    error: str = ""
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    executed_at: datetime = field(default_factory=_now)
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = {
            "action": self.action.to_dict(),
            "success": self.success,
            "executedAt": format_timestamp(self.executed_at),
            "duration": f"{self.duration:.3f}s",
        }
        if self.error:
            data["error"] = self.error
        if self.before is not None:
            data["before"] = self.before
        if self.after is not None:
            data["after"] = self.after
        return data


@dataclass
class ApplyResult:
    start_time: datetime = field(default_factory=_now)
    end_time: Optional[datetime] = None
    total_actions: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    actions: list[ActionResult] = field(default_factory=list)
    exit_code: int = 0  # 0=success, 1=failure, 2=partial
    timed_out: bool = False

    @property
    def duration(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "totalActions": self.total_actions,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "actions": [a.to_dict() for a in self.actions],
            "exitCode": self.exit_code,
            "timedOut": self.timed_out,
        }
