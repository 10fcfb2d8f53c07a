"""
Risk and escalation classification.

Pure functions over Actions: map escalation levels to risk, compare and
aggregate risk, filter by ceiling and group for reporting.
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Sequence

from .models import Action, EscalationLevel, RiskLevel

_RISK_BY_ESCALATION = {
    EscalationLevel.INFO: RiskLevel.NONE,
    EscalationLevel.CLEAN: RiskLevel.LOW,
    EscalationLevel.FINALIZER: RiskLevel.MEDIUM,
    EscalationLevel.CRD: RiskLevel.HIGH,
    EscalationLevel.FORCE: RiskLevel.CRITICAL,
}

_RISK_RANK = {
    RiskLevel.NONE: 0,
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
    RiskLevel.CRITICAL: 4,
}


def risk_level_from_escalation(level: int) -> RiskLevel:
    """Typical risk for an escalation level; unknown levels map to NONE."""
    try:
        return _RISK_BY_ESCALATION[EscalationLevel(level)]
    except (ValueError, KeyError):
        return RiskLevel.NONE


def _rank(risk) -> int:
    try:
        return _RISK_RANK[RiskLevel(risk)]
    except ValueError:
        return 0


def compare_risk(a, b) -> int:
    """Return -1, 0 or 1 as a is lower, equal or higher risk than b. Unranked counts as NONE."""
    ra, rb = _rank(a), _rank(b)
    if ra < rb:
        return -1
    if ra > rb:
        return 1
    return 0


def calculate_risk_level(actions: Iterable[Action]) -> RiskLevel:
    """Highest risk across actions, NONE when there are none."""
    max_risk = RiskLevel.NONE
    for action in actions:
        if compare_risk(action.risk, max_risk) > 0:
            max_risk = action.risk
    return max_risk


def filter_actions_by_max_level(actions: Sequence[Action], max_level: int) -> list[Action]:
    return [a for a in actions if a.escalation_level <= max_level]


def has_force_actions(actions: Iterable[Action]) -> bool:
    return any(a.requires_force for a in actions)


def count_actions_by_level(actions: Iterable[Action]) -> dict[EscalationLevel, int]:
    return dict(Counter(a.escalation_level for a in actions))


def summary_by_risk(actions: Iterable[Action]) -> dict[RiskLevel, int]:
    return dict(Counter(a.risk for a in actions))


def generate_commands(actions: Iterable[Action]) -> list[str]:
    """Non-empty kubectl commands in action order."""
    return [a.command for a in actions if a.command]
