"""
Rendering of diagnoses, plans and apply results.

Printer writes either human-readable text (bold section headers and
fixed-width tables) or JSON built from the models' to_dict(). When no
format is requested, text is used on a terminal and JSON otherwise.
"""

from __future__ import annotations

import json
import sys
from typing import Any, Optional, Sequence, TextIO

import click

from .config import BOLD, MAX_ROWS, SGR0
from .models import ApplyResult, Blocker, DiagnosisReport, Plan, WebhookInfo, escalation_label, format_duration
from .risk import has_force_actions
from .webhook import generate_webhook_guidance

FORMATS = ("text", "json", "yaml")

_RULE = "----------------------------------------"


def resolve_format(fmt: Optional[str], out: Optional[TextIO] = None) -> str:
    """Pick the output format; yaml is rendered as JSON, which is valid YAML."""
    if fmt:
        fmt = fmt.lower()
        if fmt not in FORMATS:
            raise ValueError(f"unknown output format {fmt!r} (use text or json)")
        return "json" if fmt == "yaml" else fmt
    stream = out or sys.stdout
    isatty = getattr(stream, "isatty", None)
    return "text" if isatty is not None and isatty() else "json"


def format_table(headers: Sequence[str], rows: Sequence[Sequence[str]], indent: str = "    ") -> list[str]:
    """
    Lay out rows as left-aligned columns under a dashed header rule.

    Args:
        headers: Column titles.
        rows: Row values, one string per column.
        indent: Prefix for every line.

    Returns:
        The table lines, without trailing newlines.
    """
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))
    fmt = indent + "  ".join(f"{{{i}:<{w}}}" for i, w in enumerate(widths))
    lines = [fmt.format(*headers).rstrip(), (indent + "  ".join("-" * w for w in widths))]
    lines.extend(fmt.format(*row).rstrip() for row in rows)
    return lines


class Printer:
    """Writes reports in the selected format to out (stdout by default)."""

    def __init__(self, fmt: Optional[str] = None, verbose: bool = False, out: Optional[TextIO] = None):
        self.out = out or sys.stdout
        self.fmt = resolve_format(fmt, self.out)
        self.verbose = verbose

    def echo(self, message: str = "") -> None:
        click.echo(message, file=self.out)

    def header(self, title: str) -> None:
        self.echo()
        self.echo(f"{BOLD}{title}{SGR0}")
        self.echo(_RULE)

    def table(self, headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        shown = rows[:MAX_ROWS]
        for line in format_table(headers, shown):
            self.echo(line)
        if len(rows) > MAX_ROWS:
            self.echo(f"    ... ({len(rows) - MAX_ROWS} more)")

    def print_json(self, data: Any) -> None:
        self.echo(json.dumps(data, indent=2))

    def print_diagnosis(self, report: DiagnosisReport) -> None:
        if self.fmt == "json":
            self.print_json(report.to_dict())
            return

        self.header(f"{report.target.kind}: {report.target}")
        self.echo(f"  Status: {report.status or 'Unknown'}")
        if report.deletion_timestamp is not None:
            self.echo(f"  Terminating for: {report.terminating_for}")
        if report.root_cause:
            self.echo(f"  Root cause: {report.root_cause}")
        if report.finalizers:
            self.echo(f"  Finalizers: {', '.join(report.finalizers)}")
        elif report.is_terminating():
            self.echo("  Finalizers: none")

        if report.conditions and self.verbose:
            self.echo("  Conditions:")
            self.table(
                ["TYPE", "STATUS", "REASON"],
                [[c.type, c.status, c.reason] for c in report.conditions],
            )

        if report.discovery_failures:
            self.echo("  Discovery failures:")
            self.table(
                ["GROUP VERSION", "ERROR"],
                [[f.group_version, f.error] for f in report.discovery_failures],
            )

        if report.blockers:
            self.echo(f"  Blocking resources ({report.total_blocker_count()}):")
            self.table(
                ["RESOURCE", "FINALIZERS", "AGE"],
                [
                    [str(b.ref), ", ".join(b.finalizers) or "-", _age(b)]
                    for b in report.blockers
                ],
            )

        if report.instances_by_namespace:
            self.echo(f"  Instances ({report.instance_count}):")
            self.table(
                ["NAMESPACE", "COUNT"],
                [[ns or "(cluster)", str(n)] for ns, n in sorted(report.instances_by_namespace.items())],
            )

        if report.controllers:
            self.echo("  Controllers:")
            self.table(
                ["CONTROLLER", "AVAILABLE", "READY", "STATUS"],
                [
                    [f"{c.namespace}/{c.name}", _yes_no(c.available), _yes_no(c.ready), c.message]
                    for c in report.controllers
                ],
            )

        if report.webhook_issues:
            self.print_webhooks(report.webhook_issues)

        if report.recommendations:
            self.echo("  Recommendations:")
            for rec in report.recommendations:
                self.echo(f"    - {rec}")
        self.echo()

    def print_plan(self, report: DiagnosisReport, plan: Plan) -> None:
        if self.fmt == "json":
            self.print_json({"diagnosis": report.to_dict(), "plan": plan.to_dict()})
            return

        self.header(f"Remediation plan: {plan.target}")
        self.echo(f"  Status: {report.status or 'Unknown'}")
        self.echo(f"  Max escalation: {escalation_label(plan.max_escalation)}")
        self.echo(f"  Risk level: {plan.risk_level.value}")
        if not plan.actions:
            self.echo("  No actions needed.")
            self.echo()
            return

        self.echo(f"  Actions ({len(plan.actions)}):")
        self.table(
            ["ID", "LEVEL", "RISK", "DESCRIPTION"],
            [
                [a.id, f"L{int(a.escalation_level)}", a.risk.value, a.description]
                for a in plan.actions
            ],
        )
        if has_force_actions(plan.actions):
            self.echo("  Actions at L3 or higher require confirmation when applied.")

        if plan.commands:
            self.echo("  Commands:")
            for cmd in plan.commands:
                self.echo(f"    {cmd}")
        self.echo()

    def print_apply_result(self, result: ApplyResult) -> None:
        if self.fmt == "json":
            self.print_json(result.to_dict())
            return

        self.header("Apply summary")
        self.echo(f"  Total:     {result.total_actions}")
        self.echo(f"  Succeeded: {result.succeeded}")
        self.echo(f"  Failed:    {result.failed}")
        self.echo(f"  Skipped:   {result.skipped}")
        self.echo(f"  Duration:  {result.duration:.1f}s")
        failed = [r for r in result.actions if not r.success and r.error]
        if failed:
            self.echo("  Errors:")
            self.table(
                ["ID", "DESCRIPTION", "ERROR"],
                [[r.action.id, r.action.description, r.error] for r in failed],
            )
        self.echo(f"  Exit code: {result.exit_code}")
        self.echo()

    def print_webhooks(self, webhooks: Sequence[WebhookInfo]) -> None:
        if self.fmt == "json":
            self.print_json([w.to_dict() for w in webhooks])
            return

        self.echo("  Admission webhooks:")
        self.table(
            ["NAME", "TYPE", "HEALTHY", "SERVICE", "FAILURE POLICY"],
            [
                [w.name, w.type, _yes_no(w.healthy), w.service_ref or "-", w.failure_policy or "-"]
                for w in webhooks
            ],
        )
        for w in webhooks:
            if not w.healthy:
                for line in generate_webhook_guidance(w).splitlines():
                    self.echo(f"    {line}" if line else "")

    def print_terminating(self, rows: Sequence[Sequence[str]]) -> None:
        """Rows of (resource, namespace, age) for `unstuck list`."""
        if self.fmt == "json":
            self.print_json([{"resource": r, "namespace": ns, "age": age} for r, ns, age in rows])
            return
        self.header("Resources stuck in Terminating")
        if not rows:
            self.echo("  (none found)")
        else:
            self.table(["RESOURCE", "NAMESPACE", "AGE"], rows)
        self.echo()


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def _age(blocker: Blocker) -> str:
    if not blocker.is_terminating:
        return "-"
    return format_duration(blocker.age)
