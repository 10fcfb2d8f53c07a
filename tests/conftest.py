"""Shared fixtures: a fake kubectl binary and report builders."""

import json
import subprocess

import pytest

from unstuck.config import NAMESPACE_API_VERSION, NAMESPACE_KIND
from unstuck.models import Blocker, DiagnosisReport, ResourceRef, TargetType

NOT_FOUND = 'Error from server (NotFound): the server could not find the requested resource'


class FakeKubectl:
    """
    Stands in for run_kubectl.

    Responses are keyed by the exact argument list; anything unregistered
    answers like kubectl does for a missing object.
    """

    def __init__(self):
        self.responses = {}
        self.calls = []

    def add(self, args, stdout="", returncode=0, stderr=""):
        self.responses[tuple(args)] = (returncode, stdout, stderr)

    def add_json(self, args, obj):
        self.add(args, stdout=json.dumps(obj))

    def __call__(self, args, capture=True, input=None, timeout=None):
        self.calls.append({"args": list(args), "input": input, "timeout": timeout})
        returncode, stdout, stderr = self.responses.get(tuple(args), (1, "", NOT_FOUND))
        return subprocess.CompletedProcess(["kubectl"] + list(args), returncode, stdout, stderr)

    def called(self, verb):
        """Argument lists of every call whose first argument is verb."""
        return [c["args"] for c in self.calls if c["args"] and c["args"][0] == verb]


@pytest.fixture
def fake_kubectl(monkeypatch):
    fake = FakeKubectl()
    monkeypatch.setattr("unstuck.kubectl.run_kubectl", fake)
    return fake


def make_blocker(kind, name, namespace="", finalizers=("example.com/finalizer",), api_version="v1"):
    return Blocker(
        ref=ResourceRef(kind=kind, api_version=api_version, namespace=namespace, name=name),
        finalizers=tuple(finalizers),
    )


def namespace_report(name="test-ns", status="Terminating", blockers=(), **kwargs):
    return DiagnosisReport(
        target=ResourceRef(kind=NAMESPACE_KIND, api_version=NAMESPACE_API_VERSION, name=name),
        target_type=TargetType.NAMESPACE,
        status=status,
        blockers=list(blockers),
        **kwargs,
    )
