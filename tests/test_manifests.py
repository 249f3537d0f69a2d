"""Tests for the manifest bundle."""

from __future__ import annotations

import base64
from pathlib import Path

import pytest

from cluster_register import manifests


class TestBootstrapIdentity:
    def test_order_and_names(self) -> None:
        objs = manifests.bootstrap_identity("ocm", "boot")
        assert [(o["kind"], o["metadata"]["name"]) for o in objs] == [
            ("Namespace", "ocm"),
            ("ClusterRole", "system:open-cluster-management:bootstrap"),
            ("ServiceAccount", "boot"),
            ("ClusterRoleBinding", "cluster-bootstrap-sa"),
            ("Secret", "boot-token"),
        ]

    def test_service_account_references_token_secret(self) -> None:
        objs = {o["kind"]: o for o in manifests.bootstrap_identity("ocm", "boot")}
        assert objs["ServiceAccount"]["secrets"] == [{"name": "boot-token"}]
        secret = objs["Secret"]
        assert secret["type"] == "kubernetes.io/service-account-token"
        assert secret["metadata"]["annotations"]["kubernetes.io/service-account.name"] == "boot"
        assert secret["metadata"]["namespace"] == "ocm"

    def test_binding_targets_the_service_account(self) -> None:
        objs = {o["kind"]: o for o in manifests.bootstrap_identity("ocm", "boot")}
        binding = objs["ClusterRoleBinding"]
        assert binding["roleRef"]["name"] == objs["ClusterRole"]["metadata"]["name"]
        assert binding["subjects"] == [{"kind": "ServiceAccount", "name": "boot", "namespace": "ocm"}]

    def test_calls_return_independent_copies(self) -> None:
        first = manifests.bootstrap_identity()
        first[1]["rules"][0]["verbs"] = []
        assert manifests.bootstrap_identity()[1]["rules"][0]["verbs"]


class TestSpokeManifests:
    def test_bootstrap_secret_carries_kubeconfig(self) -> None:
        secret = manifests.bootstrap_hub_kubeconfig_secret("kind: Config\n", "agent-ns")
        assert secret["metadata"] == {
            "name": "bootstrap-hub-kubeconfig",
            "namespace": "agent-ns",
            "labels": {"app.kubernetes.io/managed-by": "cluster-register"},
        }
        assert base64.b64decode(secret["data"]["kubeconfig"]).decode() == "kind: Config\n"

    def test_klusterlet_external_server_is_optional(self) -> None:
        assert "externalServerURLs" not in manifests.klusterlet("c1")["spec"]
        kl = manifests.klusterlet("c1", "https://spoke:6443")
        assert kl["spec"]["clusterName"] == "c1"
        assert kl["spec"]["externalServerURLs"] == [{"url": "https://spoke:6443"}]

    def test_bundled_crd_serves_the_klusterlet_kind(self) -> None:
        crds = manifests.klusterlet_crds()
        assert [c["metadata"]["name"] for c in crds] == ["klusterlets.operator.open-cluster-management.io"]
        spec = crds[0]["spec"]
        cr = manifests.klusterlet("c1")
        assert f"{spec['group']}/{spec['versions'][0]['name']}" == cr["apiVersion"]
        assert spec["names"]["kind"] == cr["kind"]
        assert spec["scope"] == "Cluster"

    def test_operator_runs_as_klusterlet_sa(self) -> None:
        dep = manifests.registration_operator("ocm", "example/operator:v1")
        pod = dep["spec"]["template"]["spec"]
        assert pod["serviceAccountName"] == "klusterlet"
        assert pod["containers"][0]["image"] == "example/operator:v1"
        assert dep["spec"]["selector"]["matchLabels"] == dep["spec"]["template"]["metadata"]["labels"]


class TestLoadManifestDir:
    def test_loads_documents_in_file_order(self, tmp_path: Path) -> None:
        (tmp_path / "b.yaml").write_text("kind: ConfigMap\nmetadata: {name: b}\n")
        (tmp_path / "a.yml").write_text(
            "kind: Namespace\nmetadata: {name: a1}\n---\n---\nkind: Namespace\nmetadata: {name: a2}\n"
        )
        (tmp_path / "notes.txt").write_text("ignored")

        names = [d["metadata"]["name"] for d in manifests.load_manifest_dir(tmp_path)]
        assert names == ["a1", "a2", "b"]

    def test_rejects_non_objects(self, tmp_path: Path) -> None:
        (tmp_path / "bad.yaml").write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="bad.yaml"):
            manifests.load_manifest_dir(tmp_path)

    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="does not exist"):
            manifests.load_manifest_dir(tmp_path / "nope")
