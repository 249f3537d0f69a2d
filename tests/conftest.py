"""Shared fixtures: an in-memory ObjectStore that records every write."""

from __future__ import annotations

import base64
import copy
from collections.abc import Callable
from typing import Any

import pytest
import yaml

from cluster_register.errors import NotFoundError, StoreError
from cluster_register.hub import CLUSTER_LABEL

# --- Fake store ---


class FakeStore:
    """Implements the ObjectStore contract over a dict keyed by (kind, namespace, name).

    ``failures[(verb, kind)]`` is either an exception raised on every call or a
    list of exceptions consumed one per call. ``hooks[(verb, kind)]`` run
    before the call is served, to simulate external actors.
    """

    def __init__(self, objects: list[dict] | None = None) -> None:
        self.objects: dict[tuple[str, str, str], dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.writes: list[tuple[str, str, str, str]] = []
        self.failures: dict[tuple[str, str], Any] = {}
        self.hooks: dict[tuple[str, str], Callable[[FakeStore], None]] = {}
        for obj in objects or []:
            self.put(obj)

    @staticmethod
    def _key(kind: str, name: str, namespace: str | None) -> tuple[str, str, str]:
        return (kind, namespace or "", name)

    def put(self, obj: dict) -> None:
        meta = obj["metadata"]
        self.objects[self._key(obj["kind"], meta["name"], meta.get("namespace"))] = copy.deepcopy(obj)

    def find(self, kind: str, name: str, namespace: str | None = None) -> dict | None:
        return self.objects.get(self._key(kind, name, namespace))

    def count(self, verb: str, kind: str) -> int:
        return self.calls.count((verb, kind))

    def _enter(self, verb: str, kind: str) -> None:
        self.calls.append((verb, kind))
        hook = self.hooks.get((verb, kind))
        if hook:
            hook(self)
        failure = self.failures.get((verb, kind))
        if isinstance(failure, list):
            if failure:
                raise failure.pop(0)
        elif failure is not None:
            raise failure

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict:
        self._enter("get", kind)
        obj = self.find(kind, name, namespace)
        if obj is None:
            raise NotFoundError(f"{kind} {name} not found")
        return copy.deepcopy(obj)

    def list(self, kind: str, label_selector: str = "", namespace: str | None = None) -> list[dict]:
        self._enter("list", kind)
        wanted = dict(part.split("=", 1) for part in label_selector.split(",") if part)
        result = []
        for (k, ns, _), obj in sorted(self.objects.items()):
            if k != kind or (namespace and ns != namespace):
                continue
            labels = obj["metadata"].get("labels") or {}
            if all(labels.get(lk) == lv for lk, lv in wanted.items()):
                result.append(copy.deepcopy(obj))
        return result

    def create(self, obj: dict) -> dict:
        self._enter("create", obj["kind"])
        meta = obj["metadata"]
        if self.find(obj["kind"], meta["name"], meta.get("namespace")) is not None:
            raise StoreError(f"{obj['kind']} {meta['name']} already exists", status=409)
        self.writes.append(("create", obj["kind"], meta["name"], ""))
        self.put(obj)
        return copy.deepcopy(obj)

    def update(self, obj: dict, subresource: str = "") -> dict:
        self._enter("update", obj["kind"])
        meta = obj["metadata"]
        if self.find(obj["kind"], meta["name"], meta.get("namespace")) is None:
            raise NotFoundError(f"{obj['kind']} {meta['name']} not found")
        self.writes.append(("update", obj["kind"], meta["name"], subresource))
        self.put(obj)
        return copy.deepcopy(obj)


# --- Object builders ---


def make_csr(name: str, cluster: str = "cluster-1", conditions: list[dict] | None = None) -> dict:
    csr: dict = {
        "apiVersion": "certificates.k8s.io/v1",
        "kind": "CertificateSigningRequest",
        "metadata": {"name": name, "labels": {CLUSTER_LABEL: cluster}, "resourceVersion": "7"},
        "spec": {"signerName": "kubernetes.io/kube-apiserver-client", "request": "LS0tLS1CRUdJTg=="},
    }
    if conditions is not None:
        csr["status"] = {"conditions": conditions}
    return csr


def make_managed_cluster(name: str = "cluster-1", accepted: bool = False) -> dict:
    return {
        "apiVersion": "cluster.open-cluster-management.io/v1",
        "kind": "ManagedCluster",
        "metadata": {"name": name},
        "spec": {"hubAcceptsClient": accepted},
    }


def make_cluster_info(clusters: list[dict]) -> dict:
    kubeconfig = {"apiVersion": "v1", "kind": "Config", "clusters": clusters}
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "cluster-info", "namespace": "kube-public"},
        "data": {"kubeconfig": yaml.safe_dump(kubeconfig)},
    }


def make_token_pair(token: str | None = "s3cr3t", sa: str = "cluster-bootstrap",
                    ns: str = "open-cluster-management") -> list[dict]:
    """ServiceAccount referencing its token Secret, optionally already populated."""
    secret: dict = {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": f"{sa}-token", "namespace": ns},
    }
    if token is not None:
        secret["data"] = {"token": base64.b64encode(token.encode()).decode()}
    return [
        {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": {"name": sa, "namespace": ns},
            "secrets": [{"name": f"{sa}-token"}],
        },
        secret,
    ]


def token_controller(token: str = "s3cr3t", name: str = "cluster-bootstrap-token",
                     ns: str = "open-cluster-management") -> Callable[[FakeStore], None]:
    """Hook that fills the SA token Secret the way the token controller would."""
    def _hook(store: FakeStore) -> None:
        secret = store.find("Secret", name, ns)
        if secret is not None and not (secret.get("data") or {}).get("token"):
            secret["data"] = {"token": base64.b64encode(token.encode()).decode()}
    return _hook


HUB_CLUSTER = {
    "name": "",
    "cluster": {
        "server": "https://10.0.0.1:6443",
        "certificate-authority-data": "Q0EtREFUQQ==",
    },
}


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()
