"""
Kubeconfig records: the hub's public connection info, the minimal bootstrap
kubeconfig handed to the spoke agent, and the spoke credentials given on the
command line.
"""
import base64
import copy
from dataclasses import dataclass, field

import yaml

from cluster_register.errors import InvariantViolation

HUB_CLUSTER_NAME = "hub"
BOOTSTRAP_CONTEXT = "bootstrap"
BOOTSTRAP_USER = "bootstrap"
BOOTSTRAP_NAMESPACE = "default"


def parse_kubeconfig(raw: bytes | str) -> dict:
    """Parse kubeconfig YAML. Raises InvariantViolation on anything that isn't a mapping."""
    try:
        kc = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise InvariantViolation(f"Invalid kubeconfig YAML: {e}") from e
    if not isinstance(kc, dict):
        raise InvariantViolation("Not a valid kubeconfig document.")
    return kc


def decode_parameter(value: str) -> str:
    """Base64-decode a command line parameter. Empty stays empty."""
    if not value:
        return value
    return base64.b64decode(value).decode()


@dataclass(frozen=True)
class HubConnectionInfo:
    """Server URL and CA material of the hub, taken from kube-public/cluster-info."""

    server: str
    cluster: dict = field(repr=False)

    @classmethod
    def from_kubeconfig(cls, kubeconfig: dict) -> "HubConnectionInfo":
        clusters = kubeconfig.get("clusters") or []
        if len(clusters) != 1:
            raise InvariantViolation(
                f"the clusters num of kubeconfig was wrong expect 1 actual {len(clusters)}"
            )
        body = clusters[0].get("cluster") or {}
        server = body.get("server", "")
        if not server:
            raise InvariantViolation("hub cluster entry has no server URL")
        return cls(server=server, cluster=copy.deepcopy(body))

    def with_server(self, server: str) -> "HubConnectionInfo":
        body = copy.deepcopy(self.cluster)
        body["server"] = server
        return HubConnectionInfo(server=server, cluster=body)


@dataclass(frozen=True)
class SpokeBootstrapConfig:
    """
    Single-purpose kubeconfig for the klusterlet's first contact with the hub:
    one cluster ("hub"), one current context ("bootstrap"), one token user.
    """

    cluster: dict = field(repr=False)
    token: str = field(repr=False)

    @classmethod
    def build(cls, hub: HubConnectionInfo, token: str) -> "SpokeBootstrapConfig":
        return cls(cluster=copy.deepcopy(hub.cluster), token=token)

    @property
    def server(self) -> str:
        return self.cluster.get("server", "")

    def to_dict(self) -> dict:
        return {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [{"name": HUB_CLUSTER_NAME, "cluster": copy.deepcopy(self.cluster)}],
            "contexts": [{
                "name": BOOTSTRAP_CONTEXT,
                "context": {
                    "cluster": HUB_CLUSTER_NAME,
                    "user": BOOTSTRAP_USER,
                    "namespace": BOOTSTRAP_NAMESPACE,
                },
            }],
            "current-context": BOOTSTRAP_CONTEXT,
            "users": [{"name": BOOTSTRAP_USER, "user": {"token": self.token}}],
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False)


@dataclass
class SpokeInfo:
    """Direct spoke credentials. Certificates and key are base64-encoded PEM."""

    api_server: str = ""
    ca_cert: str = ""
    client_cert: str = ""
    client_key: str = ""

    def to_kubeconfig(self) -> dict:
        return {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [{
                "name": "spoke",
                "cluster": {"server": self.api_server, "certificate-authority-data": self.ca_cert},
            }],
            "contexts": [{
                "name": "init",
                "context": {"cluster": "spoke", "user": "register-job", "namespace": "default"},
            }],
            "current-context": "init",
            "users": [{
                "name": "register-job",
                "user": {
                    "client-certificate-data": self.client_cert,
                    "client-key-data": self.client_key,
                },
            }],
        }
