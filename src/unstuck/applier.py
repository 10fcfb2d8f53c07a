"""
Plan execution.

Applier runs a Plan's actions strictly in order, one at a time. Force-level
actions are gated behind confirmation, every live action is verified after
it runs, and the outcome is summarised as an exit code:
0 all succeeded, 1 nothing succeeded, 2 mixed.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TextIO

import click

from .errors import DeadlineExceeded, InvalidInputError, UnstuckError
from .executor import Executor, snapshot_json
from .models import Action, ActionResult, ApplyResult, Plan, ResourceRef
from .webhook import extract_webhook_name, is_webhook_error, webhook_error_description

logger = logging.getLogger(__name__)

ConfirmFunc = Callable[[Action, TextIO], bool]


@dataclass
class ApplierOptions:
    dry_run: bool = False
    continue_on_error: bool = False
    auto_confirm: bool = False
    verbose: bool = False
    output: Optional[TextIO] = None


def prompt_confirm(action: Action, out: TextIO) -> bool:
    """Describe a high-risk action and ask on the terminal. EOF or Ctrl-C counts as no."""
    click.echo("", file=out)
    click.secho(f"⚠️  HIGH-RISK ACTION ({action.escalation_level.label})", fg="yellow", bold=True, file=out)
    click.echo(f"  Target:  {action.target.kind}/{action.target.name}", file=out)
    click.echo(f"  Action:  {action.description}", file=out)
    click.echo(f"  Command: {action.command}", file=out)
    click.echo(f"  Risk:    {action.risk.value}", file=out)
    click.echo("", file=out)
    try:
        # Keep the prompt off stdout when progress goes elsewhere (JSON mode).
        return click.confirm("Proceed with this action?", default=False, err=out is not sys.stdout)
    except click.Abort:
        return False


def calculate_exit_code(result: ApplyResult) -> int:
    if result.failed == 0 and result.skipped == 0:
        return 0  # All succeeded
    if result.succeeded == 0:
        return 1  # All failed or skipped
    return 2  # Partial success


class Applier:
    """Executes remediation plans."""

    def __init__(
        self,
        executor: Executor,
        options: Optional[ApplierOptions] = None,
        confirm: Optional[ConfirmFunc] = None,
    ):
        options = options or ApplierOptions()
        self.executor = executor
        self.dry_run = options.dry_run
        self.continue_on_error = options.continue_on_error
        self.auto_confirm = options.auto_confirm
        self.verbose = options.verbose
        self.output = options.output or sys.stdout
        self.confirm = confirm or prompt_confirm

    def log(self, message: str = "") -> None:
        click.echo(message, file=self.output)

    def apply(self, plan: Optional[Plan], deadline: Optional[float] = None) -> ApplyResult:
        """
        Execute plan and return the aggregated result.

        Args:
            plan: Plan to run.
            deadline: Optional time.monotonic() value; once reached, remaining
                actions are abandoned and not recorded.

        Raises:
            InvalidInputError: If plan is None.
        """
        if plan is None:
            raise InvalidInputError("plan cannot be nil")

        result = ApplyResult(total_actions=len(plan.actions))
        total = result.total_actions

        for num, action in enumerate(plan.actions, start=1):
            if deadline is not None and time.monotonic() >= deadline:
                self.log(f"Timed out: {total - num + 1} actions not attempted")
                result.timed_out = True
                break

            action_result = ActionResult(action=action)
            started = time.monotonic()

            if action.requires_force and not self.dry_run and not self.auto_confirm:
                if not self._confirmed(action):
                    self.log(f"[{num}/{total}] SKIPPED: {action.description} (user declined)")
                    result.skipped += 1
                    action_result.error = "skipped by user"
                    result.actions.append(action_result)
                    continue

            if self.verbose and not self.dry_run:
                action_result.before = self._snapshot(action.target)

            stop = False
            if self.dry_run:
                self._log_dry_run(num, total, action)
                action_result.success = True
                result.succeeded += 1
            else:
                self._log_action(num, total, action)
                try:
                    stop = self._run_live(action, action_result, result, started)
                except DeadlineExceeded as exc:
                    # Abandoned, not failed: this and later actions are never recorded.
                    self.log(f"  Result: ABANDONED ({exc})")
                    self.log(f"Timed out: {total - num + 1} actions not completed")
                    result.timed_out = True
                    break

            action_result.duration = time.monotonic() - started
            result.actions.append(action_result)
            if stop:
                break

        result.end_time = datetime.now(timezone.utc)
        result.exit_code = calculate_exit_code(result)
        return result

    def _confirmed(self, action: Action) -> bool:
        try:
            return bool(self.confirm(action, self.output))
        except (click.Abort, EOFError, OSError) as exc:
            logger.debug("confirmation input failed, treating as decline: %s", exc)
            return False

    def _run_live(self, action: Action, action_result: ActionResult, result: ApplyResult, started: float) -> bool:
        """
        Execute and verify one action. Returns True when the loop must stop.

        Raises:
            DeadlineExceeded: The overall deadline ran out mid-action.
        """
        try:
            self.executor.execute(action)
        except DeadlineExceeded:
            raise
        except UnstuckError as exc:
            action_result.error = str(exc)
            result.failed += 1
            self.log(f"  Result: FAILED ({exc})")
            self._explain_webhook(str(exc))
            return not self.continue_on_error

        try:
            verified = self.executor.verify(action)
        except DeadlineExceeded:
            raise
        except UnstuckError as exc:
            action_result.error = f"verification failed: {exc}"
            result.failed += 1
            self.log(f"  Result: VERIFICATION FAILED ({exc})")
        else:
            if verified:
                action_result.success = True
                result.succeeded += 1
                self.log(f"  Result: SUCCESS ({(time.monotonic() - started) * 1000:.0f}ms)")
            else:
                action_result.error = "post-condition not met"
                result.failed += 1
                self.log("  Result: POST-CONDITION NOT MET")

        if self.verbose:
            action_result.after = self._snapshot(action.target)
            self.log(f"  After:   {snapshot_json(action_result.after)}")
        return False

    def _explain_webhook(self, message: str) -> None:
        blocked, error_type = is_webhook_error(message)
        if blocked:
            name = extract_webhook_name(message) or "unknown"
            self.log(f"  Admission webhook {name}: {webhook_error_description(error_type)}")

    def _snapshot(self, target: ResourceRef) -> Optional[dict[str, Any]]:
        try:
            return self.executor.snapshot(target)
        except UnstuckError as exc:
            logger.debug("snapshot of %s failed: %s", target, exc)
            return None

    def _log_dry_run(self, num: int, total: int, action: Action) -> None:
        self.log(f"[{num}/{total}] DRY-RUN: {action.description}")
        self.log(f"  Target:  {action.target}")
        self.log(f"  Command: {action.command}")
        self.log(f"  Risk:    {action.risk.value}")

    def _log_action(self, num: int, total: int, action: Action) -> None:
        self.log(f"[{num}/{total}] EXECUTING: {action.description}")
        if self.verbose:
            self.log(f"  Target:  {action.target}")
            self.log(f"  Command: {action.command}")
            self.log(f"  Risk:    {action.risk.value}")
