"""Pod-network overlay catalog.

Exactly one overlay is active per bootstrap run. The catalog is fixed; each
entry carries its pod CIDR (if kubeadm must be told one), its manifests in
apply order, and the per-role workarounds it needs on a two-adapter host.
"""
import base64
from typing import List, Optional
from urllib.parse import urlencode

from kubeboot.errors import UnknownPlugin
from .models import ManifestPatch, ManifestRef, NetworkPlugin

DEFAULT_PLUGIN = "calico"

CALICO_BASE = "https://raw.githubusercontent.com/projectcalico/calico/v3.27.3/manifests"
WEAVE_BASE = "https://cloud.weave.works/k8s/net"

CATALOG = {
    "calico": NetworkPlugin(
        identifier="calico",
        cidr="192.168.0.0/16",
        manifests=(
            ManifestRef("tigera-operator.yaml", url=f"{CALICO_BASE}/tigera-operator.yaml", server_side=True),
            ManifestRef("custom-resources.yaml", url=f"{CALICO_BASE}/custom-resources.yaml"),
        ),
    ),
    "canal": NetworkPlugin(
        identifier="canal",
        cidr="10.244.0.0/16",
        manifests=(
            ManifestRef(
                "canal.yaml",
                url=f"{CALICO_BASE}/canal.yaml",
                patch=ManifestPatch(r'canal_iface:\s*""', 'canal_iface: "{interface}"'),
            ),
        ),
        host_workaround=True,
    ),
    "flannel": NetworkPlugin(
        identifier="flannel",
        cidr="10.244.0.0/16",
        manifests=(
            ManifestRef(
                "kube-flannel.yml",
                url="https://github.com/flannel-io/flannel/releases/download/v0.25.1/kube-flannel.yml",
                patch=ManifestPatch(
                    r'^(\s*)- --kube-subnet-mgr\s*$',
                    r'\1- --kube-subnet-mgr\n\1- --iface={interface}',
                ),
            ),
        ),
        host_workaround=True,
    ),
    "weave": NetworkPlugin(
        identifier="weave",
        cidr=None,
        manifests=(ManifestRef("weave-net", dynamic=True),),
        node_route=True,
    ),
    "romana": NetworkPlugin(
        identifier="romana",
        cidr=None,
        manifests=(
            ManifestRef(
                "romana-kubeadm.yml",
                url="https://raw.githubusercontent.com/romana/romana/master/containerize/specs/romana-kubeadm.yml",
                patch=ManifestPatch(
                    r'^(\s*)image: quay\.io/romana/agent\S*\s*$',
                    r'\g<0>\n\1args:\n\1- --host-interface={interface}',
                ),
            ),
        ),
        host_workaround=True,
    ),
}


def available() -> List[str]:
    """Known plugin identifiers in catalog order."""
    return list(CATALOG)


def select_identifier(value: Optional[str]) -> str:
    """Apply default substitution to a raw selection value."""
    if value is None or not value.strip():
        return DEFAULT_PLUGIN
    return value.strip().lower()


def resolve(identifier: str) -> NetworkPlugin:
    """Look up a plugin by identifier."""
    try:
        return CATALOG[identifier]
    except (KeyError, TypeError):
        raise UnknownPlugin(str(identifier), available()) from None


def weave_manifest_url(version_text: str) -> str:
    """Build the weave manifest URL from ``kubectl version`` output.

    The weave endpoint negotiates a manifest matching the cluster version from
    the base64-encoded version text.
    """
    encoded = base64.b64encode(version_text.encode()).decode()
    return f"{WEAVE_BASE}?{urlencode({'k8s-version': encoded})}"
