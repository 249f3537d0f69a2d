"""
Spoke side: install the klusterlet with the hub bootstrap kubeconfig so the
agent can submit its CSR and ManagedCluster to the hub.
"""
from cluster_register.errors import InvariantViolation
from cluster_register.k8s import ObjectStore, apply_manifests
from cluster_register.kubeconfig import SpokeBootstrapConfig
from cluster_register.log import logger
from cluster_register import manifests


class SpokeCluster:
    """A spoke cluster being registered, plus the bootstrap config it will use."""

    def __init__(self, name: str, store: ObjectStore, hub_config: SpokeBootstrapConfig, external_server_url: str = ""):
        if not hub_config.server:
            raise InvariantViolation("can not find the cluster in the hub bootstrap kubeconfig")
        self.name = name
        self.store = store
        self.hub_config = hub_config
        self.hub_api_server = hub_config.server
        self.external_server_url = external_server_url

    def init_env(self, extra_manifests=()) -> None:
        """
        Apply, in order: namespaces + operator RBAC, the bundled Klusterlet CRD,
        extra manifests (which may replace the CRD), the operator SA, the
        bootstrap-hub-kubeconfig Secret, the registration-operator Deployment
        and finally the Klusterlet CR.
        """
        logger.info(f"📦 preparing klusterlet on cluster={self.name} (hub={self.hub_api_server})")
        steps = [
            ("namespaces and RBAC", manifests.spoke_base()),
            ("klusterlet CRD", manifests.klusterlet_crds()),
            ("extra manifests", list(extra_manifests)),
            ("operator service account", [manifests.klusterlet_service_account()]),
            ("bootstrap hub kubeconfig", [manifests.bootstrap_hub_kubeconfig_secret(self.hub_config.to_yaml())]),
            ("registration operator", [manifests.registration_operator()]),
            ("klusterlet", [manifests.klusterlet(self.name, self.external_server_url)]),
        ]
        for label, descriptors in steps:
            if not descriptors:
                continue
            logger.info(f"🔧 [{self.name}] applying {label}")
            apply_manifests(self.store, descriptors)
        logger.info(f"✅ klusterlet installed on cluster={self.name}")
