"""
Manifest bundle for cluster-register.

Every descriptor is a plain dict built by a function, so callers (and tests)
can inject their own bundle instead of a compiled-in set. Extra assets such as
the Klusterlet CRD are loaded from a directory with load_manifest_dir().
"""
import base64
import os
from pathlib import Path

import yaml

OCM_NAMESPACE = os.environ.get("OCM_NAMESPACE", "open-cluster-management")
OCM_AGENT_NAMESPACE = os.environ.get("OCM_AGENT_NAMESPACE", "open-cluster-management-agent")
BOOTSTRAP_SA_NAME = os.environ.get("BOOTSTRAP_SA_NAME", "cluster-bootstrap")
REGISTRATION_OPERATOR_IMAGE = os.environ.get(
    "REGISTRATION_OPERATOR_IMAGE", "quay.io/open-cluster-management/registration-operator:latest"
)
REGISTRATION_IMAGE = os.environ.get("REGISTRATION_IMAGE", "quay.io/open-cluster-management/registration:latest")
WORK_IMAGE = os.environ.get("WORK_IMAGE", "quay.io/open-cluster-management/work:latest")

BOOTSTRAP_CLUSTER_ROLE = "system:open-cluster-management:bootstrap"
BOOTSTRAP_BINDING = "cluster-bootstrap-sa"
BOOTSTRAP_HUB_KUBECONFIG_SECRET = "bootstrap-hub-kubeconfig"
KLUSTERLET_NAME = "klusterlet"

RESOURCES_DIR = Path(__file__).parent / "resources"

_LABELS = {"app.kubernetes.io/managed-by": "cluster-register"}

# ---------------------------------------------------------------------------
# RBAC rules
# ---------------------------------------------------------------------------
_BOOTSTRAP_RULES = [
    # Submit and watch the agent's client CSR
    {"apiGroups": ["certificates.k8s.io"], "resources": ["certificatesigningrequests"],
     "verbs": ["create", "get", "list", "watch"]},
    # Create its own ManagedCluster record
    {"apiGroups": ["cluster.open-cluster-management.io"], "resources": ["managedclusters"],
     "verbs": ["get", "create"]},
]

_KLUSTERLET_RULES = [
    {"apiGroups": [""], "resources": ["secrets", "configmaps", "serviceaccounts"],
     "verbs": ["create", "get", "list", "update", "watch", "patch", "delete"]},
    {"apiGroups": [""], "resources": ["namespaces"],
     "verbs": ["create", "get", "list", "watch", "delete"]},
    {"apiGroups": [""], "resources": ["nodes"], "verbs": ["get", "list", "watch"]},
    {"apiGroups": ["", "events.k8s.io"], "resources": ["events"],
     "verbs": ["create", "patch", "update"]},
    {"apiGroups": ["authorization.k8s.io"], "resources": ["subjectaccessreviews"], "verbs": ["create"]},
    {"apiGroups": ["apps"], "resources": ["deployments"],
     "verbs": ["create", "get", "list", "update", "watch", "patch", "delete"]},
    {"apiGroups": ["coordination.k8s.io"], "resources": ["leases"],
     "verbs": ["create", "get", "list", "update", "watch", "patch"]},
    {"apiGroups": ["rbac.authorization.k8s.io"],
     "resources": ["clusterrolebindings", "rolebindings", "clusterroles", "roles"],
     "verbs": ["create", "get", "list", "update", "watch", "patch", "delete", "escalate", "bind"]},
    {"apiGroups": ["apiextensions.k8s.io"], "resources": ["customresourcedefinitions"],
     "verbs": ["create", "get", "list", "update", "watch", "patch", "delete"]},
    {"apiGroups": ["operator.open-cluster-management.io"], "resources": ["klusterlets"],
     "verbs": ["get", "list", "watch", "update", "patch", "delete"]},
    {"apiGroups": ["operator.open-cluster-management.io"], "resources": ["klusterlets/status"],
     "verbs": ["update", "patch"]},
    {"apiGroups": ["work.open-cluster-management.io"], "resources": ["appliedmanifestworks"],
     "verbs": ["list", "update", "patch"]},
]


def _meta(name: str, namespace: str | None = None) -> dict:
    meta = {"name": name, "labels": dict(_LABELS)}
    if namespace:
        meta["namespace"] = namespace
    return meta


def namespace(name: str) -> dict:
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": _meta(name)}


def _cluster_role(name: str, rules: list[dict]) -> dict:
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRole",
        "metadata": _meta(name),
        "rules": [dict(r) for r in rules],
    }


def _cluster_role_binding(name: str, role: str, sa_name: str, sa_namespace: str) -> dict:
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRoleBinding",
        "metadata": _meta(name),
        "roleRef": {"apiGroup": "rbac.authorization.k8s.io", "kind": "ClusterRole", "name": role},
        "subjects": [{"kind": "ServiceAccount", "name": sa_name, "namespace": sa_namespace}],
    }


# ---------------------------------------------------------------------------
# Hub: bootstrap identity
# ---------------------------------------------------------------------------

def bootstrap_token_secret_name(sa_name: str = BOOTSTRAP_SA_NAME) -> str:
    return f"{sa_name}-token"


def bootstrap_identity(ns: str = OCM_NAMESPACE, sa_name: str = BOOTSTRAP_SA_NAME) -> list[dict]:
    """
    Namespace, ClusterRole, ServiceAccount, ClusterRoleBinding and the SA token
    Secret. The SA lists the Secret explicitly so the token is reachable on
    clusters that no longer generate SA secrets on their own.
    """
    token_secret = bootstrap_token_secret_name(sa_name)
    service_account = {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": _meta(sa_name, ns),
        "secrets": [{"name": token_secret}],
    }
    secret = {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            **_meta(token_secret, ns),
            "annotations": {"kubernetes.io/service-account.name": sa_name},
        },
        "type": "kubernetes.io/service-account-token",
    }
    return [
        namespace(ns),
        _cluster_role(BOOTSTRAP_CLUSTER_ROLE, _BOOTSTRAP_RULES),
        service_account,
        _cluster_role_binding(BOOTSTRAP_BINDING, BOOTSTRAP_CLUSTER_ROLE, sa_name, ns),
        secret,
    ]


# ---------------------------------------------------------------------------
# Spoke: klusterlet install
# ---------------------------------------------------------------------------

def spoke_base(ns: str = OCM_NAMESPACE, agent_ns: str = OCM_AGENT_NAMESPACE) -> list[dict]:
    """Namespaces and the operator's cluster-wide RBAC."""
    return [
        namespace(agent_ns),
        namespace(ns),
        _cluster_role(KLUSTERLET_NAME, _KLUSTERLET_RULES),
        _cluster_role_binding(KLUSTERLET_NAME, KLUSTERLET_NAME, KLUSTERLET_NAME, ns),
    ]


def klusterlet_crds() -> list[dict]:
    """The Klusterlet CRD shipped with the package."""
    return load_manifest_dir(RESOURCES_DIR)


def klusterlet_service_account(ns: str = OCM_NAMESPACE) -> dict:
    return {"apiVersion": "v1", "kind": "ServiceAccount", "metadata": _meta(KLUSTERLET_NAME, ns)}


def bootstrap_hub_kubeconfig_secret(kubeconfig_yaml: str, agent_ns: str = OCM_AGENT_NAMESPACE) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": _meta(BOOTSTRAP_HUB_KUBECONFIG_SECRET, agent_ns),
        "type": "Opaque",
        "data": {"kubeconfig": base64.b64encode(kubeconfig_yaml.encode()).decode()},
    }


def registration_operator(ns: str = OCM_NAMESPACE, image: str = REGISTRATION_OPERATOR_IMAGE) -> dict:
    selector = {"app": "klusterlet"}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": _meta(KLUSTERLET_NAME, ns),
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": selector},
            "template": {
                "metadata": {"labels": selector},
                "spec": {
                    "serviceAccountName": KLUSTERLET_NAME,
                    "containers": [{
                        "name": "klusterlet",
                        "image": image,
                        "imagePullPolicy": "IfNotPresent",
                        "args": ["/registration-operator", "klusterlet"],
                    }],
                },
            },
        },
    }


def klusterlet(
    cluster_name: str,
    external_server_url: str = "",
    agent_ns: str = OCM_AGENT_NAMESPACE,
    registration_image: str = REGISTRATION_IMAGE,
    work_image: str = WORK_IMAGE,
) -> dict:
    spec = {
        "clusterName": cluster_name,
        "namespace": agent_ns,
        "registrationImagePullSpec": registration_image,
        "workImagePullSpec": work_image,
    }
    if external_server_url:
        spec["externalServerURLs"] = [{"url": external_server_url}]
    return {
        "apiVersion": "operator.open-cluster-management.io/v1",
        "kind": "Klusterlet",
        "metadata": _meta(KLUSTERLET_NAME),
        "spec": spec,
    }


# ---------------------------------------------------------------------------
# Extra assets from disk
# ---------------------------------------------------------------------------

def load_manifest_dir(path: str | os.PathLike) -> list[dict]:
    """Load every YAML document from *.yaml / *.yml files under ``path``, in file-name order."""
    root = Path(path)
    if not root.is_dir():
        raise ValueError(f"Manifest directory {str(root)!r} does not exist.")
    files = sorted(p for p in root.iterdir() if p.suffix in (".yaml", ".yml"))
    descriptors: list[dict] = []
    for f in files:
        with open(f) as fh:
            for doc in yaml.safe_load_all(fh):
                if not doc:
                    continue
                if not isinstance(doc, dict) or "kind" not in doc:
                    raise ValueError(f"{f.name}: not a Kubernetes object")
                descriptors.append(doc)
    return descriptors
