"""
Remediation planning.

The Planner walks escalation levels 0 through 4 and emits actions for each
level the diagnosis calls for, bounded by the caller's max escalation and,
for levels 3 and 4, by allow_force. The actions are then ordered, numbered
and scored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from .config import (
    CRD_API_VERSION,
    CRD_KIND,
    DEFAULT_MAX_ESCALATION,
    FINALIZER_PATCH,
    NAMESPACE_API_VERSION,
    NAMESPACE_KIND,
)
from .errors import InvalidInputError
from .models import (
    Action,
    ActionType,
    Blocker,
    DiagnosisReport,
    EscalationLevel,
    Plan,
    ResourceRef,
    RiskLevel,
    TargetType,
)
from .ordering import order_by_dependencies
from .risk import calculate_risk_level, filter_actions_by_max_level, generate_commands

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannerOptions:
    max_escalation: EscalationLevel = EscalationLevel(DEFAULT_MAX_ESCALATION)
    allow_force: bool = False


def patch_command(target: ResourceRef) -> str:
    """kubectl merge patch that clears metadata.finalizers on target."""
    kind = target.kind or "resource"
    cmd = f"kubectl patch {kind} {target.name}"
    if target.namespace:
        cmd += f" -n {target.namespace}"
    cmd += f" -p '{FINALIZER_PATCH}' --type=merge"
    return cmd


def crd_patch_command(crd_name: str) -> str:
    return f"kubectl patch crd {crd_name} -p '{FINALIZER_PATCH}' --type=merge"


def force_finalize_command(namespace: str) -> str:
    return (
        f"kubectl get namespace {namespace} -o json"
        " | jq '.spec.finalizers = []'"
        f' | kubectl replace --raw "/api/v1/namespaces/{namespace}/finalize" -f -'
    )


def has_available_controller(diagnosis: DiagnosisReport) -> bool:
    return any(c.available and c.ready for c in diagnosis.controllers)


class Planner:
    """Builds a Plan from a DiagnosisReport."""

    def __init__(self, options: Optional[PlannerOptions] = None):
        options = options or PlannerOptions()
        self.max_escalation = EscalationLevel(options.max_escalation)
        self.allow_force = options.allow_force

    def plan(self, diagnosis: Optional[DiagnosisReport]) -> Plan:
        """
        Generate a remediation plan.

        Raises:
            InvalidInputError: If diagnosis is None.
        """
        if diagnosis is None:
            raise InvalidInputError("diagnosis report is nil")

        plan = Plan(target=diagnosis.target, max_escalation=self.max_escalation)

        # Nothing is ever proposed for a resource that is not stuck.
        if diagnosis.is_healthy():
            logger.debug("%s is healthy (%r); empty plan", diagnosis.target, diagnosis.status)
            return plan

        actions = self._info_actions(diagnosis)

        if self.max_escalation >= EscalationLevel.CLEAN and has_available_controller(diagnosis):
            actions.append(self._wait_for_controller(diagnosis))

        if self.max_escalation >= EscalationLevel.FINALIZER:
            for blocker in diagnosis.blockers:
                actions.append(self._finalizer_removal(blocker, diagnosis.target.namespace))

        if self.max_escalation >= EscalationLevel.CRD and self.allow_force:
            if diagnosis.target_type == TargetType.CRD:
                actions.append(self._crd_finalizer(diagnosis.target))

        if self.max_escalation >= EscalationLevel.FORCE and self.allow_force:
            if diagnosis.target_type == TargetType.NAMESPACE and diagnosis.has_discovery_failures():
                actions.append(self._force_finalize(diagnosis.target.name))

        actions = filter_actions_by_max_level(actions, self.max_escalation)
        ordered = order_by_dependencies(actions)
        plan.actions = [replace(a, id=f"action-{i:03d}") for i, a in enumerate(ordered, start=1)]
        plan.risk_level = calculate_risk_level(plan.actions)
        plan.commands = generate_commands(plan.actions)
        logger.debug(
            "planned %d actions for %s (risk %s)",
            len(plan.actions), diagnosis.target, plan.risk_level.value,
        )
        return plan

    def _info_actions(self, diagnosis: DiagnosisReport) -> list[Action]:
        actions = [
            Action(
                type=ActionType.INSPECT,
                escalation_level=EscalationLevel.INFO,
                description=f'Inspect {diagnosis.target_type.value} "{diagnosis.target.name}"',
                target=diagnosis.target,
                operation="inspect",
                risk=RiskLevel.NONE,
                expected_result="Gather current state information",
            )
        ]
        if diagnosis.blockers:
            actions.append(
                Action(
                    type=ActionType.LIST,
                    escalation_level=EscalationLevel.INFO,
                    description=f"List {len(diagnosis.blockers)} blocking resources",
                    target=diagnosis.target,
                    operation="list-blockers",
                    risk=RiskLevel.NONE,
                    expected_result="Enumerate resources preventing deletion",
                )
            )
        return actions

    def _wait_for_controller(self, diagnosis: DiagnosisReport) -> Action:
        return Action(
            type=ActionType.WAIT,
            escalation_level=EscalationLevel.CLEAN,
            description="Wait for controller to process finalizers",
            target=diagnosis.target,
            operation="wait-controller",
            risk=RiskLevel.LOW,
            expected_result="Controller removes finalizers naturally",
        )

    def _finalizer_removal(self, blocker: Blocker, namespace: str) -> Action:
        target = ResourceRef(
            kind=blocker.kind,
            api_version=blocker.api_version,
            namespace=blocker.namespace or namespace,
            name=blocker.name,
        )
        return Action(
            type=ActionType.PATCH,
            escalation_level=EscalationLevel.FINALIZER,
            description=f"Remove finalizers from {target}",
            target=target,
            operation="remove-finalizers",
            command=patch_command(target),
            risk=RiskLevel.MEDIUM,
            expected_result="Finalizers removed, object deletion proceeds",
        )

    def _crd_finalizer(self, target: ResourceRef) -> Action:
        return Action(
            type=ActionType.PATCH,
            escalation_level=EscalationLevel.CRD,
            description=f"Remove cleanup finalizer from CRD {target.name}",
            target=ResourceRef(kind=CRD_KIND, api_version=CRD_API_VERSION, name=target.name),
            operation="remove-crd-finalizer",
            command=crd_patch_command(target.name),
            risk=RiskLevel.HIGH,
            requires_force=True,
            expected_result="CRD cleanup finalizer removed, CR data may be orphaned",
        )

    def _force_finalize(self, namespace: str) -> Action:
        return Action(
            type=ActionType.FINALIZE,
            escalation_level=EscalationLevel.FORCE,
            description=f"Force-finalize namespace {namespace}",
            target=ResourceRef(kind=NAMESPACE_KIND, api_version=NAMESPACE_API_VERSION, name=namespace),
            operation="force-finalize",
            command=force_finalize_command(namespace),
            risk=RiskLevel.CRITICAL,
            requires_force=True,
            expected_result="Namespace deleted, remaining resources abandoned",
        )
