"""
CLI entry point for unstuck.

Parses global connection options, then dispatches to diagnose, plan, apply
or list. Escalation options are validated before any kubectl call, and
unstuck errors are reported as click errors (exit code 1). apply exits with
the Applier's exit code: 0 all succeeded, 1 nothing succeeded, 2 partial.
"""

from __future__ import annotations

import logging
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

import click

from .applier import Applier, ApplierOptions
from .config import (
    ALL_TYPES,
    APPLY_TIMEOUT,
    CLUSTER_SCOPED_KINDS,
    DEFAULT_MAX_ESCALATION,
    DEFAULT_TIMEOUT,
    RESOURCE_ALIASES,
    parse_duration,
)
from .detector import detect
from .errors import KubectlError, ResolutionError, UnstuckError
from .executor import Executor
from .gvr import resolve_gvr
from .kubectl import KubectlClient, items_with_deletion
from .models import DiagnosisReport, EscalationLevel, age_seconds, format_duration, parse_timestamp
from .output import FORMATS, Printer
from .planner import Planner, PlannerOptions
from .webhook import WebhookDetector

logger = logging.getLogger(__name__)

# Shown at the bottom of unstuck --help / unstuck -h
EPILOG = """
Examples:

  unstuck -h                                     # Show help (same as --help)
  unstuck list                                   # Everything stuck in Terminating
  unstuck list pod -n app                        # Only pods in namespace app
  unstuck diagnose namespace my-stuck-ns         # Why is namespace my-stuck-ns stuck?
  unstuck diagnose crd widgets.example.com --long
  unstuck plan namespace my-stuck-ns             # Remediation steps up to L2
  unstuck plan namespace my-stuck-ns --max-escalation 4 --allow-force
  unstuck apply namespace my-stuck-ns --dry-run  # Show what apply would do
  unstuck -o json plan pod my-pod -n app         # Machine-readable output

Escalation levels: L0 inspect, L1 wait for controller, L2 remove finalizers,
L3 remove CRD finalizer, L4 force-finalize namespace. L3 and L4 need --allow-force.
"""


@dataclass
class Settings:
    kubeconfig: Optional[str]
    context: Optional[str]
    output: Optional[str]
    verbose: bool
    timeout: Optional[float]

    def deadline(self, default: str) -> float:
        seconds = self.timeout if self.timeout is not None else parse_duration(default)
        return time.monotonic() + seconds

    def client(self, deadline: float) -> KubectlClient:
        return KubectlClient(kubeconfig=self.kubeconfig, context=self.context, deadline=deadline)

    def printer(self) -> Printer:
        return Printer(self.output, verbose=self.verbose)


def validate_escalation(max_escalation: int, allow_force: bool) -> EscalationLevel:
    """
    Check --max-escalation against --allow-force.

    Raises:
        click.BadParameter: Out of range, or 3+ without --allow-force.
    """
    if not 0 <= max_escalation <= 4:
        raise click.BadParameter(
            f"must be between 0 and 4, got {max_escalation}", param_hint="--max-escalation"
        )
    level = EscalationLevel(max_escalation)
    if level.requires_force and not allow_force:
        raise click.BadParameter(
            f"escalation level {max_escalation} requires --allow-force", param_hint="--max-escalation"
        )
    return level


@contextmanager
def reported_errors() -> Iterator[None]:
    """Turn unstuck errors into click errors so they print without a traceback."""
    try:
        yield
    except UnstuckError as exc:
        raise click.ClickException(str(exc)) from exc


def _timeout_option(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--timeout") from exc


def namespace_option(func):
    return click.option(
        "-n",
        "--namespace",
        "namespace",
        metavar="NS",
        help="Namespace of the target resource (namespaced types only)",
    )(func)


def escalation_options(func):
    func = click.option(
        "--allow-force",
        is_flag=True,
        help="Permit L3/L4 actions (CRD finalizer removal, namespace force-finalize)",
    )(func)
    return click.option(
        "--max-escalation",
        type=int,
        default=DEFAULT_MAX_ESCALATION,
        show_default=True,
        help="Highest escalation level to plan (0-4)",
    )(func)


@click.group(
    context_settings={"help_option_names": ["-h", "--help"]},
    epilog=EPILOG,
)
@click.option(
    "--kubeconfig",
    envvar="KUBECONFIG",
    metavar="PATH",
    help="Path to the kubeconfig file (default: $KUBECONFIG or ~/.kube/config)",
)
@click.option("--context", "kube_context", metavar="NAME", help="Kubeconfig context to use")
@click.option(
    "-o",
    "--output",
    type=click.Choice(FORMATS, case_sensitive=False),
    help="Output format (default: text on a terminal, json otherwise)",
)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging and before/after snapshots")
@click.option(
    "--timeout",
    metavar="DURATION",
    help=f"Overall timeout, e.g. 30s, 5m (default: {DEFAULT_TIMEOUT}, {APPLY_TIMEOUT} for apply)",
)
@click.pass_context
def main(
    ctx: click.Context,
    kubeconfig: Optional[str],
    kube_context: Optional[str],
    output: Optional[str],
    verbose: bool,
    timeout: Optional[str],
) -> None:
    """
    Diagnose and remediate Kubernetes resources stuck in Terminating state.

    Plans are built from a diagnosis and escalate step by step, from
    read-only inspection to forced namespace finalization.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.obj = Settings(
        kubeconfig=kubeconfig or None,
        context=kube_context or None,
        output=output,
        verbose=verbose,
        timeout=_timeout_option(timeout),
    )


def _diagnose(client: KubectlClient, target_type: str, name: str, namespace: Optional[str]) -> DiagnosisReport:
    logger.debug("diagnosing %s %s (namespace %s)", target_type, name, namespace or "-")
    return detect(client, target_type, name, namespace)


def attach_webhook_issues(client: KubectlClient, report: DiagnosisReport) -> None:
    """Record unhealthy admission webhooks that intercept the target's type."""
    try:
        gvr = resolve_gvr(report.target)
        webhooks = WebhookDetector(client).detect_with_health_check(gvr)
    except (KubectlError, ResolutionError) as exc:
        logger.warning("could not check admission webhooks: %s", exc)
        return
    report.webhook_issues = webhooks.unhealthy_webhooks()


@main.command(context_settings={"help_option_names": ["-h", "--help"]})
@namespace_option
@click.option("--long", "long_output", is_flag=True, help="Also check admission webhooks for the target's type")
@click.argument("target_type", metavar="TYPE")
@click.argument("name")
@click.pass_obj
def diagnose(settings: Settings, namespace: Optional[str], long_output: bool, target_type: str, name: str) -> None:
    """Explain why TYPE/NAME is stuck (TYPE: namespace, crd, or any resource type)."""
    printer = settings.printer()
    with reported_errors():
        client = settings.client(settings.deadline(DEFAULT_TIMEOUT))
        report = _diagnose(client, target_type, name, namespace)
        if long_output and report.is_terminating():
            attach_webhook_issues(client, report)
    printer.print_diagnosis(report)


@main.command(context_settings={"help_option_names": ["-h", "--help"]})
@namespace_option
@escalation_options
@click.argument("target_type", metavar="TYPE")
@click.argument("name")
@click.pass_obj
def plan(
    settings: Settings,
    namespace: Optional[str],
    max_escalation: int,
    allow_force: bool,
    target_type: str,
    name: str,
) -> None:
    """Show the remediation plan for TYPE/NAME without changing anything."""
    level = validate_escalation(max_escalation, allow_force)
    printer = settings.printer()
    with reported_errors():
        client = settings.client(settings.deadline(DEFAULT_TIMEOUT))
        report = _diagnose(client, target_type, name, namespace)
        remediation = Planner(PlannerOptions(max_escalation=level, allow_force=allow_force)).plan(report)
    printer.print_plan(report, remediation)


@main.command(context_settings={"help_option_names": ["-h", "--help"]})
@namespace_option
@escalation_options
@click.option("--dry-run", is_flag=True, help="Print each action without executing it")
@click.option("-y", "--yes", "auto_confirm", is_flag=True, help="Do not prompt before L3/L4 actions")
@click.option("--continue-on-error", is_flag=True, help="Keep going after a failed action")
@click.argument("target_type", metavar="TYPE")
@click.argument("name")
@click.pass_context
def apply(
    ctx: click.Context,
    namespace: Optional[str],
    max_escalation: int,
    allow_force: bool,
    dry_run: bool,
    auto_confirm: bool,
    continue_on_error: bool,
    target_type: str,
    name: str,
) -> None:
    """Plan and execute remediation for TYPE/NAME, one action at a time."""
    settings: Settings = ctx.obj
    level = validate_escalation(max_escalation, allow_force)
    printer = settings.printer()
    with reported_errors():
        deadline = settings.deadline(APPLY_TIMEOUT)
        client = settings.client(deadline)
        report = _diagnose(client, target_type, name, namespace)
        remediation = Planner(PlannerOptions(max_escalation=level, allow_force=allow_force)).plan(report)
        if printer.fmt == "text":
            printer.print_plan(report, remediation)
        if not remediation.actions:
            return

        # Progress lines must not interleave with a JSON document on stdout.
        progress = click.get_text_stream("stderr") if printer.fmt == "json" else None
        applier = Applier(
            Executor(client),
            ApplierOptions(
                dry_run=dry_run,
                continue_on_error=continue_on_error,
                auto_confirm=auto_confirm,
                verbose=settings.verbose,
                output=progress,
            ),
        )
        result = applier.apply(remediation, deadline=deadline)
    printer.print_apply_result(result)
    if result.timed_out:
        click.secho("apply stopped: overall timeout reached", fg="red", err=True)
        ctx.exit(result.exit_code or 1)
    ctx.exit(result.exit_code)


@main.command("list", context_settings={"help_option_names": ["-h", "--help"]})
@namespace_option
@click.argument(
    "resource_type",
    metavar="[TYPE]",
    type=click.Choice(list(RESOURCE_ALIASES), case_sensitive=False),
    required=False,
)
@click.pass_obj
def list_command(settings: Settings, namespace: Optional[str], resource_type: Optional[str]) -> None:
    """List resources stuck in Terminating (all supported types when TYPE is omitted)."""
    types_to_scan = [RESOURCE_ALIASES[resource_type.lower()]] if resource_type else ALL_TYPES
    printer = settings.printer()
    rows: list[list[str]] = []
    with reported_errors():
        client = settings.client(settings.deadline(DEFAULT_TIMEOUT))
        for kind in types_to_scan:
            use_ns = namespace if kind not in CLUSTER_SCOPED_KINDS else None
            obj = client.get_json(kind, namespace=use_ns)
            if not obj:
                continue
            for item in items_with_deletion(obj):
                meta = item.get("metadata", {})
                since = parse_timestamp(meta.get("deletionTimestamp"))
                rows.append([
                    f"{kind}/{meta.get('name', '?')}",
                    meta.get("namespace") or "-",
                    format_duration(age_seconds(since)),
                ])
    printer.print_terminating(rows)


if __name__ == "__main__":
    sys.exit(main())
