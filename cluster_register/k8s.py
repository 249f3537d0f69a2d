"""
Kubernetes access for cluster-register.

ObjectStore gives typed get/list/create/update over a small kind table and
speaks plain dicts (camelCase keys, as the API server does). apply_resource /
apply_manifests implement idempotent create-or-update on top of it.
"""
import copy
import os
import tempfile
from dataclasses import dataclass

import urllib3
import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from cluster_register.errors import NotFoundError, StoreError
from cluster_register.log import logger

REQUEST_TIMEOUT = float(os.environ.get("REQUEST_TIMEOUT", "30"))


@dataclass(frozen=True)
class KindSpec:
    """Maps a kind to the kubernetes client API class and method suffix."""

    api_class: str
    api_version: str
    resource: str = ""
    namespaced: bool = True
    # CustomObjectsApi kinds only
    plural: str = ""

    @property
    def group(self) -> str:
        return self.api_version.rpartition("/")[0]

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]

    @property
    def custom(self) -> bool:
        return self.api_class == "CustomObjectsApi"


KINDS: dict[str, KindSpec] = {
    "Namespace": KindSpec("CoreV1Api", "v1", "namespace", namespaced=False),
    "ServiceAccount": KindSpec("CoreV1Api", "v1", "service_account"),
    "Secret": KindSpec("CoreV1Api", "v1", "secret"),
    "ConfigMap": KindSpec("CoreV1Api", "v1", "config_map"),
    "ClusterRole": KindSpec(
        "RbacAuthorizationV1Api", "rbac.authorization.k8s.io/v1", "cluster_role", namespaced=False,
    ),
    "ClusterRoleBinding": KindSpec(
        "RbacAuthorizationV1Api", "rbac.authorization.k8s.io/v1", "cluster_role_binding", namespaced=False,
    ),
    "Deployment": KindSpec("AppsV1Api", "apps/v1", "deployment"),
    "CustomResourceDefinition": KindSpec(
        "ApiextensionsV1Api", "apiextensions.k8s.io/v1", "custom_resource_definition", namespaced=False,
    ),
    "CertificateSigningRequest": KindSpec(
        "CertificatesV1Api", "certificates.k8s.io/v1", "certificate_signing_request", namespaced=False,
    ),
    "ManagedCluster": KindSpec(
        "CustomObjectsApi", "cluster.open-cluster-management.io/v1", namespaced=False, plural="managedclusters",
    ),
    "Klusterlet": KindSpec(
        "CustomObjectsApi", "operator.open-cluster-management.io/v1", namespaced=False, plural="klusterlets",
    ),
}


def object_ref(obj: dict) -> str:
    """Return a short kind/namespace/name reference for log lines."""
    meta = obj.get("metadata", {})
    ns = meta.get("namespace")
    name = meta.get("name", "")
    return f"{obj.get('kind', '?')}/{ns}/{name}" if ns else f"{obj.get('kind', '?')}/{name}"


def _kind_spec(kind: str) -> KindSpec:
    try:
        return KINDS[kind]
    except KeyError:
        raise ValueError(f"Unsupported kind: {kind!r}") from None


class ObjectStore:
    """Typed get/list/create/update against a cluster, keyed by (kind, namespace, name)."""

    def __init__(self, api_client: client.ApiClient, request_timeout: float = REQUEST_TIMEOUT):
        self.api_client = api_client
        self.request_timeout = request_timeout
        self._apis: dict[str, object] = {}

    def _api(self, spec: KindSpec):
        api = self._apis.get(spec.api_class)
        if api is None:
            api = getattr(client, spec.api_class)(api_client=self.api_client)
            self._apis[spec.api_class] = api
        return api

    def _method(self, spec: KindSpec, verb: str, scoped: bool, suffix: str = ""):
        """Resolve e.g. read_namespaced_secret / list_cluster_role / replace_..._approval."""
        api = self._api(spec)
        if spec.custom:
            where = "namespaced" if scoped else "cluster"
            return getattr(api, f"{verb}_{where}_custom_object{suffix}")
        if scoped:
            return getattr(api, f"{verb}_namespaced_{spec.resource}{suffix}")
        if verb == "list" and spec.namespaced:
            return getattr(api, f"list_{spec.resource}_for_all_namespaces")
        return getattr(api, f"{verb}_{spec.resource}{suffix}")

    def _call(self, method, what: str, **kwargs):
        try:
            return method(_request_timeout=self.request_timeout, **kwargs)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"{what} not found") from e
            raise StoreError(f"{what}: {e.status} {e.reason}", status=e.status) from e
        except urllib3.exceptions.HTTPError as e:
            raise StoreError(f"{what}: {type(e).__name__}: {e}") from e

    def _to_dict(self, kind: str, spec: KindSpec, obj) -> dict:
        data = self.api_client.sanitize_for_serialization(obj)
        # items returned by typed list calls carry no kind/apiVersion
        data.setdefault("kind", kind)
        data.setdefault("apiVersion", spec.api_version)
        return data

    def _kwargs(self, spec: KindSpec, namespace: str | None) -> dict:
        kwargs: dict = {}
        if spec.custom:
            kwargs.update(group=spec.group, version=spec.version, plural=spec.plural)
        if namespace and spec.namespaced:
            kwargs["namespace"] = namespace
        return kwargs

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict:
        spec = _kind_spec(kind)
        scoped = bool(namespace and spec.namespaced)
        method = self._method(spec, "get" if spec.custom else "read", scoped)
        what = f"{kind} {namespace}/{name}" if scoped else f"{kind} {name}"
        obj = self._call(method, what, name=name, **self._kwargs(spec, namespace))
        return self._to_dict(kind, spec, obj)

    def list(self, kind: str, label_selector: str = "", namespace: str | None = None) -> list[dict]:
        spec = _kind_spec(kind)
        scoped = bool(namespace and spec.namespaced)
        method = self._method(spec, "list", scoped)
        kwargs = self._kwargs(spec, namespace)
        if label_selector:
            kwargs["label_selector"] = label_selector
        result = self._call(method, f"list {kind} ({label_selector or 'all'})", **kwargs)
        items = result.get("items", []) if isinstance(result, dict) else result.items
        return [self._to_dict(kind, spec, item) for item in items or []]

    def create(self, obj: dict) -> dict:
        kind = obj["kind"]
        spec = _kind_spec(kind)
        namespace = obj.get("metadata", {}).get("namespace")
        scoped = bool(namespace and spec.namespaced)
        method = self._method(spec, "create", scoped)
        result = self._call(method, f"create {object_ref(obj)}", body=obj, **self._kwargs(spec, namespace))
        return self._to_dict(kind, spec, result)

    def update(self, obj: dict, subresource: str = "") -> dict:
        """Replace an object. ``subresource="approval"`` submits a CSR approval."""
        kind = obj["kind"]
        spec = _kind_spec(kind)
        meta = obj.get("metadata", {})
        namespace = meta.get("namespace")
        scoped = bool(namespace and spec.namespaced)
        method = self._method(spec, "replace", scoped, f"_{subresource}" if subresource else "")
        what = f"update {object_ref(obj)}" + (f" ({subresource})" if subresource else "")
        result = self._call(method, what, name=meta["name"], body=obj, **self._kwargs(spec, namespace))
        return self._to_dict(kind, spec, result)


# ---------------------------------------------------------------------------
# Manifest applier
# ---------------------------------------------------------------------------

def merge_into(live: dict, desired: dict) -> dict:
    """
    Overlay ``desired`` onto a copy of ``live``. Mappings merge key by key,
    anything else is replaced. Fields only the server or a controller set
    (Secret data, annotations, status, resourceVersion) are kept.
    """
    merged = copy.deepcopy(live)
    for key, value in desired.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_into(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_resource(store: ObjectStore, descriptor: dict) -> dict:
    """Create the object if absent, else update the live object with the descriptor merged in."""
    meta = descriptor.get("metadata", {})
    ref = object_ref(descriptor)
    try:
        live = store.get(descriptor["kind"], meta["name"], meta.get("namespace"))
    except NotFoundError:
        created = store.create(descriptor)
        logger.info(f"🆕 created {ref}")
        return created

    updated = store.update(merge_into(live, descriptor))
    logger.info(f"♻️  updated {ref}")
    return updated


def apply_manifests(store: ObjectStore, descriptors) -> None:
    """Apply descriptors in order; the first failure is logged and re-raised."""
    for descriptor in descriptors:
        try:
            apply_resource(store, descriptor)
        except Exception as e:
            logger.error(f"💥 failed to apply {object_ref(descriptor)}: {e}")
            raise


# ---------------------------------------------------------------------------
# Client construction
# ---------------------------------------------------------------------------

def load_api_client(
    kubeconfig: dict | None = None,
    context: str | None = None,
    config_file: str | None = None,
) -> client.ApiClient:
    """
    Build an ApiClient.

    An in-memory kubeconfig dict is written to a NamedTemporaryFile, loaded and
    unlinked immediately. Without one, in-cluster config is tried first, then
    the local kubeconfig (or ``config_file``).
    """
    cfg = client.Configuration()
    if kubeconfig is not None:
        tmp = tempfile.NamedTemporaryFile(delete=False, suffix=".yaml")
        try:
            tmp.write(yaml.dump(kubeconfig).encode())
            tmp.flush()
            tmp.close()
            config.load_kube_config(config_file=tmp.name, context=context, client_configuration=cfg)
        finally:
            try:
                os.unlink(tmp.name)
            except OSError:
                pass
    elif config_file:
        config.load_kube_config(config_file=config_file, context=context, client_configuration=cfg)
    else:
        try:
            config.load_incluster_config(client_configuration=cfg)
        except config.ConfigException:
            config.load_kube_config(context=context, client_configuration=cfg)
    return client.ApiClient(configuration=cfg)
