"""
Admission webhook checks.

Finds validating and mutating webhooks whose rules match a resource's GVR,
optionally checks that each webhook's backing service has ready endpoints,
and classifies webhook errors seen in kubectl output. Findings are advisory:
they are shown to the operator and never change a plan.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import KubectlError, NotFoundError
from .gvr import GVR
from .kubectl import KubectlClient
from .models import WebhookInfo

WEBHOOK_ERROR_PATTERNS = [
    (re.compile(r'admission webhook "([^"]+)" denied the request'), "webhook_denied"),
    (re.compile(r'failed calling webhook "([^"]+)"'), "webhook_failed"),
    (re.compile(r"context deadline exceeded"), "webhook_timeout"),
    (re.compile(r"connection refused"), "webhook_unavailable"),
    (re.compile(r"no endpoints available"), "webhook_no_endpoints"),
    (re.compile(r"service .* not found"), "webhook_service_missing"),
    (re.compile(r"Internal error occurred: failed calling webhook"), "webhook_internal_error"),
]

WEBHOOK_ERROR_DESCRIPTIONS = {
    "webhook_denied": "The webhook actively denied the request",
    "webhook_failed": "The webhook call failed",
    "webhook_timeout": "The webhook call timed out",
    "webhook_unavailable": "The webhook service is unavailable (connection refused)",
    "webhook_no_endpoints": "The webhook service has no available endpoints",
    "webhook_service_missing": "The webhook service does not exist",
    "webhook_internal_error": "An internal error occurred calling the webhook",
}

_WEBHOOK_NAME_RE = re.compile(r'admission webhook "([^"]+)"')

_CONFIG_KINDS = (
    ("validating", "validatingwebhookconfigurations"),
    ("mutating", "mutatingwebhookconfigurations"),
)


def matches_rule(rule: dict[str, Any], gvr: GVR) -> bool:
    """
    True if an admission rule covers gvr.

    `*` matches any group, version or resource; a resource rule also
    matches its sub-resources (a rule for pods matches pods/status).
    """
    groups = rule.get("apiGroups") or []
    if not any(g == "*" or g == gvr.group for g in groups):
        return False
    versions = rule.get("apiVersions") or []
    if not any(v == "*" or v == gvr.version for v in versions):
        return False
    for r in rule.get("resources") or []:
        if r == "*" or r == gvr.resource or r.startswith(gvr.resource + "/"):
            return True
    return False


def matches_gvr(rules: list[dict[str, Any]], gvr: GVR) -> bool:
    return any(matches_rule(rule, gvr) for rule in rules)


def is_webhook_error(message: Optional[str]) -> tuple[bool, str]:
    """Whether an error message came from an admission webhook, and which kind."""
    if not message:
        return False, ""
    for pattern, error_type in WEBHOOK_ERROR_PATTERNS:
        if pattern.search(message):
            return True, error_type
    return False, ""


def extract_webhook_name(message: Optional[str]) -> str:
    match = _WEBHOOK_NAME_RE.search(message or "")
    return match.group(1) if match else ""


def webhook_error_description(error_type: str) -> str:
    return WEBHOOK_ERROR_DESCRIPTIONS.get(error_type, "Unknown webhook error")


def count_ready_addresses(endpoints: dict[str, Any]) -> int:
    return sum(len(s.get("addresses") or []) for s in endpoints.get("subsets") or [])


@dataclass
class WebhookReport:
    validating: list[WebhookInfo] = field(default_factory=list)
    mutating: list[WebhookInfo] = field(default_factory=list)

    def all_webhooks(self) -> list[WebhookInfo]:
        return self.validating + self.mutating

    def unhealthy_webhooks(self) -> list[WebhookInfo]:
        return [w for w in self.all_webhooks() if not w.healthy]

    def has_issues(self) -> bool:
        return any(not w.healthy for w in self.all_webhooks())


class WebhookDetector:
    """Lists admission webhooks through kubectl and matches them against a GVR."""

    def __init__(self, client: KubectlClient):
        self.client = client

    def _matching(self, gvr: GVR, health_check: bool) -> WebhookReport:
        report = WebhookReport()
        for webhook_type, resource in _CONFIG_KINDS:
            for config in self.client.list(resource):
                for webhook in config.raw.get("webhooks") or []:
                    if not matches_gvr(webhook.get("rules") or [], gvr):
                        continue
                    info = self._build_info(config.name, webhook, webhook_type, health_check)
                    getattr(report, webhook_type).append(info)
        return report

    def detect_for_gvr(self, gvr: GVR) -> list[WebhookInfo]:
        """Matching webhooks without health checks (all reported healthy)."""
        return self._matching(gvr, health_check=False).all_webhooks()

    def detect_with_health_check(self, gvr: GVR) -> WebhookReport:
        return self._matching(gvr, health_check=True)

    def _build_info(
        self,
        config_name: str,
        webhook: dict[str, Any],
        webhook_type: str,
        health_check: bool,
    ) -> WebhookInfo:
        info = WebhookInfo(
            name=config_name,
            webhook_name=webhook.get("name", ""),
            type=webhook_type,
            failure_policy=webhook.get("failurePolicy") or "",
        )
        service = (webhook.get("clientConfig") or {}).get("service")
        if service:
            namespace, name = service.get("namespace", ""), service.get("name", "")
            info.service_ref = f"{namespace}/{name}"
            if health_check:
                info.healthy, info.error = self.check_service_health(namespace, name)
        return info

    def check_service_health(self, namespace: str, name: str) -> tuple[bool, str]:
        """A service is healthy when it exists and its Endpoints have a ready address."""
        try:
            self.client.get("service", name, namespace)
        except NotFoundError:
            return False, f"service {namespace}/{name} not found"
        except KubectlError as exc:
            return False, f"failed to get service: {exc}"

        try:
            endpoints = self.client.get("endpoints", name, namespace)
        except NotFoundError:
            return False, f"endpoints {namespace}/{name} not found"
        except KubectlError as exc:
            return False, f"failed to get endpoints: {exc}"

        if count_ready_addresses(endpoints.raw) == 0:
            return False, "no ready endpoints available"
        return True, ""


def generate_webhook_guidance(webhook: WebhookInfo) -> str:
    """Manual steps for an operator to resolve a blocking webhook."""
    lines = [f'⚠️  Webhook "{webhook.name}" is blocking operations', ""]
    if webhook.error:
        lines += [f"Error: {webhook.error}", ""]
    lines += ["To proceed, you must manually resolve the webhook:", ""]

    if webhook.service_ref and webhook.service_ref.count("/") == 1:
        ns, name = webhook.service_ref.split("/")
        lines += [
            "  Option 1: Restore the webhook service",
            f"    kubectl rollout restart deployment -n {ns} -l app={name}",
            "",
            "  Option 2: Check webhook service health",
            f"    kubectl get endpoints {name} -n {ns}",
            f"    kubectl describe svc {name} -n {ns}",
            "",
        ]

    lines.append("  Option 3: Temporarily disable the webhook (use with extreme caution!)")
    lines.append(f"    kubectl delete {webhook.type}webhookconfiguration {webhook.name}")
    lines.append("")

    if webhook.failure_policy == "Fail":
        lines.append(
            "  ⚠️  NOTE: This webhook has FailurePolicy=Fail, meaning operations "
            "will fail if the webhook is unavailable."
        )
    elif webhook.failure_policy == "Ignore":
        lines.append(
            "  ℹ️  NOTE: This webhook has FailurePolicy=Ignore, meaning operations "
            "may succeed even if the webhook is unavailable."
        )
    return "\n".join(lines) + "\n"
