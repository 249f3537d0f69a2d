"""
Hub side of the registration handshake.

Issues the bootstrap token, builds the spoke's bootstrap kubeconfig, waits for
the klusterlet to submit its CSR and ManagedCluster, then approves the CSR and
accepts the cluster.
"""
import base64
import copy
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from cluster_register.errors import (
    CSRDeniedError,
    InvariantViolation,
    NotFoundError,
    RegisterError,
)
from cluster_register.k8s import ObjectStore, apply_manifests
from cluster_register.kubeconfig import HubConnectionInfo, SpokeBootstrapConfig, parse_kubeconfig
from cluster_register.log import SEP, audit, logger
from cluster_register.manifests import BOOTSTRAP_SA_NAME, OCM_NAMESPACE, bootstrap_identity
from cluster_register.polling import poll_until

# ---------------------------------------------------------------------------
# Configuration from environment
# ---------------------------------------------------------------------------
TOKEN_POLL_INTERVAL = float(os.environ.get("TOKEN_POLL_INTERVAL", "2"))
TOKEN_POLL_TIMEOUT = float(os.environ.get("TOKEN_POLL_TIMEOUT", "20"))
SPOKE_POLL_INTERVAL = float(os.environ.get("SPOKE_POLL_INTERVAL", "10"))
SPOKE_POLL_TIMEOUT = float(os.environ.get("SPOKE_POLL_TIMEOUT", "600"))

CLUSTER_LABEL = "open-cluster-management.io/cluster-name"
CLUSTER_INFO_NAMESPACE = "kube-public"
CLUSTER_INFO_NAME = "cluster-info"
APPROVER = "ocm-register-assistant"


def _cluster_selector(cluster_name: str) -> str:
    return f"{CLUSTER_LABEL}={cluster_name}"


# ---------------------------------------------------------------------------
# Bootstrap token
# ---------------------------------------------------------------------------

def issue_bootstrap_token(
    store: ObjectStore,
    manifests: list[dict] | None = None,
    namespace: str = OCM_NAMESPACE,
    sa_name: str = BOOTSTRAP_SA_NAME,
    cancel: threading.Event | None = None,
    interval: float = TOKEN_POLL_INTERVAL,
    timeout: float = TOKEN_POLL_TIMEOUT,
) -> str:
    """
    Ensure the bootstrap ServiceAccount and its RBAC exist, then wait for its
    token Secret to be populated and return the decoded bearer token.

    Applying the manifests is not retried. Each of the two waits is bounded
    by ``timeout`` and raises DeadlineExceeded when it runs out.
    """
    sa_ref = f"{namespace}/{sa_name}"
    logger.info(f"🔑 applying bootstrap identity sa={sa_ref}")
    apply_manifests(store, manifests if manifests is not None else bootstrap_identity(namespace, sa_name))

    def _find_secret_name():
        sa = store.get("ServiceAccount", sa_name, namespace)
        for ref in sa.get("secrets") or []:
            name = ref.get("name", "")
            if name.startswith(sa_name):
                return name
        logger.info(f"🔍 no token secret referenced by sa={sa_ref} yet")
        return None

    def _read_token(secret_name: str):
        secret = store.get("Secret", secret_name, namespace)
        raw = (secret.get("data") or {}).get("token", "")
        if not raw:
            logger.info(f"🔍 secret={namespace}/{secret_name} has no token yet")
            return None
        return base64.b64decode(raw).decode()

    try:
        secret_name = poll_until(
            _find_secret_name, interval, timeout, cancel, what=f"token secret of sa={sa_ref}",
        )
        token = poll_until(
            lambda: _read_token(secret_name), interval, timeout, cancel,
            what=f"token in secret={namespace}/{secret_name}",
        )
    except RegisterError as e:
        logger.error(f"💥 failed to obtain bootstrap token for sa={sa_ref}: {e}")
        raise

    logger.info(f"🎟️  bootstrap token ready from secret={namespace}/{secret_name}")
    audit("token.issued", sa=sa_ref, secret=secret_name)
    return token


# ---------------------------------------------------------------------------
# Hub bootstrap kubeconfig
# ---------------------------------------------------------------------------

def fetch_hub_connection_info(store: ObjectStore) -> HubConnectionInfo:
    """Read kube-public/cluster-info and return its single cluster entry."""
    ref = f"{CLUSTER_INFO_NAMESPACE}/{CLUSTER_INFO_NAME}"
    try:
        cm = store.get("ConfigMap", CLUSTER_INFO_NAME, CLUSTER_INFO_NAMESPACE)
        raw = (cm.get("data") or {}).get("kubeconfig")
        if not raw:
            raise InvariantViolation(f"configmap {ref} has no kubeconfig key")
        return HubConnectionInfo.from_kubeconfig(parse_kubeconfig(raw))
    except RegisterError as e:
        logger.error(f"💥 cannot read hub connection info from configmap={ref}: {e}")
        raise


def build_spoke_bootstrap_config(
    store: ObjectStore,
    override_server: str | None = None,
    cancel: threading.Event | None = None,
    **token_kwargs,
) -> SpokeBootstrapConfig:
    """
    Build the kubeconfig the klusterlet uses for its first contact with the hub.

    ``override_server`` replaces the server URL from cluster-info, for hubs
    whose internal address is unreachable from the spoke. Every other field
    of the cluster entry is kept as-is.
    """
    hub = fetch_hub_connection_info(store)
    if override_server:
        logger.info(f"🗺️  overriding hub server {hub.server} → {override_server}")
        hub = hub.with_server(override_server)
    token = issue_bootstrap_token(store, cancel=cancel, **token_kwargs)
    return SpokeBootstrapConfig.build(hub, token)


# ---------------------------------------------------------------------------
# Readiness waiter
# ---------------------------------------------------------------------------

def wait_until_spoke_visible(
    store: ObjectStore,
    cluster_name: str,
    cancel: threading.Event | None = None,
    interval: float = SPOKE_POLL_INTERVAL,
    timeout: float = SPOKE_POLL_TIMEOUT,
) -> bool:
    """Block until a CSR labelled for the cluster and its ManagedCluster both exist."""
    selector = _cluster_selector(cluster_name)
    started = time.monotonic()

    def _visible():
        logger.info(f"⏳ waiting for register request from cluster={cluster_name} "
                    f"({int(time.monotonic() - started)}s elapsed)")
        csrs = store.list("CertificateSigningRequest", label_selector=selector)
        if not csrs:
            return False
        try:
            store.get("ManagedCluster", cluster_name)
        except NotFoundError:
            logger.info(f"🔍 {len(csrs)} CSR(s) found but no ManagedCluster for cluster={cluster_name} yet")
            return False
        return True

    try:
        poll_until(_visible, interval, timeout, cancel, what=f"register request from cluster={cluster_name}")
    except RegisterError as e:
        logger.error(f"💥 cluster={cluster_name} never became visible on the hub: {e}")
        raise
    logger.info(f"👀 cluster={cluster_name} has submitted its CSR and ManagedCluster")
    return True


# ---------------------------------------------------------------------------
# CSR approval + ManagedCluster acceptance
# ---------------------------------------------------------------------------

class CSRState(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    DENIED = "Denied"


def csr_state(csr: dict) -> CSRState:
    """Derive the CSR state from its conditions. Denied wins over Approved."""
    types = {c.get("type") for c in (csr.get("status") or {}).get("conditions") or []}
    if CSRState.DENIED.value in types:
        return CSRState.DENIED
    if CSRState.APPROVED.value in types:
        return CSRState.APPROVED
    return CSRState.PENDING


def approve_csr(store: ObjectStore, csr: dict) -> dict:
    """Append an Approved condition to a copy of the CSR and submit it."""
    body = copy.deepcopy(csr)
    status = body.setdefault("status", {})
    conditions = list(status.get("conditions") or [])
    conditions.append({
        "type": CSRState.APPROVED.value,
        "status": "True",
        "reason": f"{APPROVER} Approve",
        "message": f"This CSR was approved by {APPROVER} certificate approve.",
        "lastUpdateTime": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    })
    status["conditions"] = conditions
    return store.update(body, subresource="approval")


@dataclass
class RegistrationResult:
    cluster_name: str
    approved: list[str] = field(default_factory=list)
    already_approved: list[str] = field(default_factory=list)
    denied: list[str] = field(default_factory=list)
    accepted: bool = False


def approve_and_accept(store: ObjectStore, cluster_name: str, fail_on_denied: bool = False) -> RegistrationResult:
    """
    Approve every pending CSR of the cluster and set hubAcceptsClient on its
    ManagedCluster.

    Denied CSRs are skipped. When no CSR ends up approved the ManagedCluster
    is left alone, and with ``fail_on_denied`` CSRDeniedError is raised
    instead of returning. Approval and update failures are raised as-is. A
    partially approved batch is safe to retry.
    """
    logger.info(SEP)
    logger.info(f"📝 approving CSRs for cluster={cluster_name}")
    try:
        csrs = store.list("CertificateSigningRequest", label_selector=_cluster_selector(cluster_name))
    except RegisterError as e:
        logger.error(f"💥 failed to list CSRs for cluster={cluster_name}: {e}")
        raise
    if not csrs:
        logger.error(f"💥 no CSR found for cluster={cluster_name}")
        raise NotFoundError(f"csr number wrong, expect >=1 actual {len(csrs)}")

    result = RegistrationResult(cluster_name)
    for csr in csrs:
        name = csr.get("metadata", {}).get("name", "")
        state = csr_state(csr)
        if state is CSRState.DENIED:
            logger.warning(f"⛔ csr={name} for cluster={cluster_name} already denied, leaving it alone")
            audit("csr.denied", cluster_name, csr=name)
            result.denied.append(name)
            continue
        if state is CSRState.APPROVED:
            logger.info(f"⏭️  csr={name} already approved")
            result.already_approved.append(name)
            continue
        try:
            approve_csr(store, csr)
        except RegisterError as e:
            logger.error(f"💥 failed to approve csr={name} for cluster={cluster_name}: {e}")
            raise
        logger.info(f"✅ approved csr={name} for cluster={cluster_name}")
        audit("csr.approved", cluster_name, csr=name, approver=APPROVER)
        result.approved.append(name)

    if not result.approved and not result.already_approved:
        if fail_on_denied:
            raise CSRDeniedError(cluster_name, result.denied)
        logger.warning(f"⚠️  every CSR for cluster={cluster_name} is denied, not accepting the cluster")
        return result

    try:
        mc = copy.deepcopy(store.get("ManagedCluster", cluster_name))
        spec = mc.setdefault("spec", {})
        if spec.get("hubAcceptsClient"):
            logger.info(f"⏭️  ManagedCluster={cluster_name} already accepted")
        else:
            spec["hubAcceptsClient"] = True
            store.update(mc)
            logger.info(f"🤝 ManagedCluster={cluster_name} accepted by hub")
            audit("cluster.accepted", cluster_name)
    except RegisterError as e:
        logger.error(f"💥 failed to accept ManagedCluster={cluster_name}: {e}")
        raise
    result.accepted = True
    return result
