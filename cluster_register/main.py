"""
cluster-register driver.

Runs on the hub (typically as a one-shot Job): builds the bootstrap kubeconfig,
installs the klusterlet on the spoke, waits for the spoke's register request
and approves it. Exits 0 on success and 1 after logging any failure.
"""
import signal
import sys
import threading

import click

from cluster_register import __version__
from cluster_register.errors import RegisterError
from cluster_register.hub import (
    RegistrationResult,
    approve_and_accept,
    build_spoke_bootstrap_config,
    wait_until_spoke_visible,
)
from cluster_register.k8s import ObjectStore, load_api_client
from cluster_register.kubeconfig import SpokeInfo, decode_parameter, parse_kubeconfig
from cluster_register.log import SEP, audit, logger, setup_logging
from cluster_register.manifests import load_manifest_dir
from cluster_register.spoke import SpokeCluster


def register_cluster(
    cluster_name: str,
    hub_store: ObjectStore,
    spoke_store: ObjectStore,
    hub_api_server: str = "",
    external_server_url: str = "",
    extra_manifests=(),
    fail_on_denied: bool = False,
    cancel: threading.Event | None = None,
) -> RegistrationResult:
    """Bootstrap → spoke install → wait → approve, strictly in that order."""
    logger.info(SEP)
    logger.info(f"🚀 registering cluster={cluster_name}")

    logger.info("🎫 generating the bootstrap kubeconfig for the spoke")
    hub_config = build_spoke_bootstrap_config(hub_store, override_server=hub_api_server or None, cancel=cancel)

    spoke = SpokeCluster(cluster_name, spoke_store, hub_config, external_server_url)
    spoke.init_env(extra_manifests)

    logger.info(f"⏳ waiting for register request from cluster={cluster_name}")
    wait_until_spoke_visible(hub_store, cluster_name, cancel=cancel)

    result = approve_and_accept(hub_store, cluster_name, fail_on_denied=fail_on_denied)
    if result.accepted:
        logger.info(f"🎉 successfully registered cluster={cluster_name}")
        audit("register.succeeded", cluster_name, approved=result.approved)
    else:
        logger.warning(f"⚠️  cluster={cluster_name} was not accepted, denied CSRs: {', '.join(result.denied)}")
    return result


def _install_signal_handlers(cancel: threading.Event) -> dict:
    """SIGTERM/SIGINT set ``cancel`` so waits stop within one poll interval."""
    def _handler(signum, frame):
        logger.warning(f"🛑 received signal {signum}, cancelling")
        cancel.set()

    previous = {}
    for sig in (signal.SIGTERM, signal.SIGINT):
        previous[sig] = signal.signal(sig, _handler)
    return previous


def _decode(value: str, option: str) -> str:
    try:
        return decode_parameter(value)
    except ValueError as e:
        raise click.BadParameter(f"not valid base64: {e}", param_hint=option) from e


@click.command()
@click.option("--cluster-name", required=True, help="Name of the managed cluster.")
@click.option("--hub-api-server", default="", help="External apiserver address of the hub cluster.")
@click.option("--cluster-ca-cert", default="", help="CA certificate of the managed cluster (base64 PEM).")
@click.option("--client-cert", default="", help="Client certificate for TLS auth (base64 PEM).")
@click.option("--client-key", default="", help="Client key for TLS auth (base64 PEM).")
@click.option("--api-server-internet", default="", help="External apiserver address of the managed cluster.")
@click.option("--kube-config", default="", help="Kubeconfig content of the managed cluster.")
@click.option("--decode", is_flag=True, help="Base64-decode every parameter above first.")
@click.option("--hub-kubeconfig", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Kubeconfig file for the hub (default: in-cluster, then ~/.kube/config).")
@click.option("--manifest-dir", type=click.Path(exists=True, file_okay=False), default=None,
              help="Directory of extra manifests (e.g. the Klusterlet CRD) applied to the spoke.")
@click.option("--fail-on-denied", is_flag=True, help="Exit non-zero when every CSR is denied.")
@click.version_option(version=__version__)
def cli(
    cluster_name: str,
    hub_api_server: str,
    cluster_ca_cert: str,
    client_cert: str,
    client_key: str,
    api_server_internet: str,
    kube_config: str,
    decode: bool,
    hub_kubeconfig: str | None,
    manifest_dir: str | None,
    fail_on_denied: bool,
) -> None:
    """Register a spoke cluster with an Open-Cluster-Management hub."""
    setup_logging()

    if decode:
        cluster_name = _decode(cluster_name, "--cluster-name")
        cluster_ca_cert = _decode(cluster_ca_cert, "--cluster-ca-cert")
        client_cert = _decode(client_cert, "--client-cert")
        client_key = _decode(client_key, "--client-key")
        api_server_internet = _decode(api_server_internet, "--api-server-internet")
        kube_config = _decode(kube_config, "--kube-config")

    if not kube_config and not api_server_internet:
        raise click.UsageError("Either --kube-config or --api-server-internet (with certificates) is required.")

    cancel = threading.Event()
    previous_handlers = _install_signal_handlers(cancel)
    try:
        hub_store = ObjectStore(load_api_client(config_file=hub_kubeconfig))
        if kube_config:
            spoke_kubeconfig = parse_kubeconfig(kube_config)
        else:
            spoke_kubeconfig = SpokeInfo(
                api_server=api_server_internet,
                ca_cert=cluster_ca_cert,
                client_cert=client_cert,
                client_key=client_key,
            ).to_kubeconfig()
        spoke_store = ObjectStore(load_api_client(kubeconfig=spoke_kubeconfig))
        extra = load_manifest_dir(manifest_dir) if manifest_dir else []

        register_cluster(
            cluster_name,
            hub_store,
            spoke_store,
            hub_api_server=hub_api_server,
            external_server_url=api_server_internet,
            extra_manifests=extra,
            fail_on_denied=fail_on_denied,
            cancel=cancel,
        )
    except RegisterError as e:
        logger.error(f"💥 failed to register cluster={cluster_name}: {e}")
        audit("register.failed", cluster_name, error=str(e))
        sys.exit(1)
    except Exception as e:
        logger.error(f"💥 failed to register cluster={cluster_name}: {type(e).__name__}: {e}")
        audit("register.failed", cluster_name, error=f"{type(e).__name__}: {e}")
        sys.exit(1)
    finally:
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)


if __name__ == "__main__":
    cli()
