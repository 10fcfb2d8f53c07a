"""
Dependency ordering for remediation actions.

Children are acted on before parents: within an escalation level, pods and
config go before workloads, custom resources, CRDs and finally namespaces.
Both orderings are deterministic and return new lists.
"""

from __future__ import annotations

from typing import Mapping, Sequence

from .config import DEFAULT_PRIORITY, RESOURCE_PRIORITY
from .models import Action, ResourceRef


def resource_priority(kind: str) -> int:
    """Deletion priority of a kind (case-insensitive). Lower is handled first."""
    return RESOURCE_PRIORITY.get(kind.lower(), DEFAULT_PRIORITY)


def resource_key(ref: ResourceRef) -> str:
    """kind/namespace/name, or kind/name for cluster-scoped refs. Owner maps must use the same form."""
    if ref.namespace:
        return f"{ref.kind}/{ref.namespace}/{ref.name}"
    return f"{ref.kind}/{ref.name}"


def _sort_key(action: Action) -> tuple[int, int, str]:
    return (
        int(action.escalation_level),
        resource_priority(action.target.kind),
        action.target.name,
    )


def order_by_dependencies(actions: Sequence[Action]) -> list[Action]:
    """Stable sort by (escalation level, resource priority, name)."""
    return sorted(actions, key=_sort_key)


def topological_sort(
    actions: Sequence[Action],
    owner_refs: Mapping[str, Sequence[str]],
) -> list[Action]:
    """
    Order actions so owned resources come before their owners.

    Args:
        actions: Candidate actions.
        owner_refs: Edges child key -> owner keys, where the child depends on
            the owner existing. Keys use resource_key().

    Returns:
        Actions whose target appears in the graph in child-first order,
        followed by the remaining actions in input order. With no edges this
        is order_by_dependencies().
    """
    if not actions:
        return []
    if not owner_refs:
        return order_by_dependencies(actions)

    in_degree: dict[str, int] = {}
    dependents: dict[str, list[str]] = {}
    for key, owners in owner_refs.items():
        in_degree.setdefault(key, 0)
        for owner in owners:
            in_degree.setdefault(owner, 0)
            in_degree[key] += 1
            dependents.setdefault(owner, []).append(key)

    # Kahn's algorithm; the ready set is re-sorted every step so map order never matters.
    queue = sorted(k for k, degree in in_degree.items() if degree == 0)
    owner_first: list[str] = []
    while queue:
        current = queue.pop(0)
        owner_first.append(current)
        for dep in dependents.get(current, []):
            in_degree[dep] -= 1
            if in_degree[dep] == 0:
                queue.append(dep)
        queue.sort()

    by_key: dict[str, list[Action]] = {}
    for action in actions:
        by_key.setdefault(resource_key(action.target), []).append(action)

    result: list[Action] = []
    placed: set[str] = set()
    for key in reversed(owner_first):
        if key in by_key and key not in placed:
            result.extend(by_key[key])
            placed.add(key)

    for action in actions:
        if resource_key(action.target) not in placed:
            result.append(action)
    return result
