"""Tests for GVR resolution."""

import pytest

from unstuck.errors import ResolutionError
from unstuck.gvr import GVR, parse_group_version, pluralize, resolve_gvr
from unstuck.models import ResourceRef


@pytest.mark.parametrize(
    "kind,plural",
    [
        ("Endpoints", "endpoints"),
        ("Ingress", "ingresses"),
        ("NetworkPolicy", "networkpolicies"),
        ("PodSecurityPolicy", "podsecuritypolicies"),
        ("ResourceQuota", "resourcequotas"),
        ("LimitRange", "limitranges"),
        ("Status", "statuses"),
        ("Policy", "policies"),
        ("Pod", "pods"),
        ("Certificate", "certificates"),
    ],
)
def test_pluralize(kind, plural):
    assert pluralize(kind) == plural


def test_parse_group_version():
    assert parse_group_version("cert-manager.io/v1") == ("cert-manager.io", "v1")
    assert parse_group_version("v1") == ("", "v1")
    assert parse_group_version("") == ("", "v1")


def test_resolve_gvr():
    ref = ResourceRef(kind="Certificate", api_version="cert-manager.io/v1", namespace="app", name="tls")
    gvr = resolve_gvr(ref)
    assert gvr == GVR("cert-manager.io", "v1", "certificates")
    assert gvr.group_version == "cert-manager.io/v1"
    assert gvr.kubectl_resource() == "certificates.v1.cert-manager.io"


def test_resolve_core_gvr():
    gvr = resolve_gvr(ResourceRef(kind="ConfigMap", name="c"))
    assert gvr == GVR("", "v1", "configmaps")
    assert gvr.group_version == "v1"
    assert gvr.kubectl_resource() == "configmaps"


def test_resolve_gvr_requires_kind():
    with pytest.raises(ResolutionError):
        resolve_gvr(ResourceRef(name="nameless"))
