import ipaddress
import os
from typing import Any, Dict, List, Optional

import yaml

from hearth.core.errors import ResolutionError
from hearth.core.models import ClusterSpec, NodeIdentity, CredentialBundle
from hearth.core.settings import AppSettings
from hearth.utils.cloud import MetadataClient, StateStoreClient, parse_config_base, parse_store_url
from hearth.utils.logger import sys_logger
from hearth.utils.system import write_file


# --- DOCUMENT PARSING ---

def _dig(data: Dict[str, Any], *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def parse_cluster_spec(document: str) -> ClusterSpec:
    """
    Reads the completed cluster specification (YAML, 'spec:' section).
    Every field is required except the DNS domain (defaults to cluster.local).
    """
    try:
        data = yaml.safe_load(document) or {}
    except yaml.YAMLError as e:
        raise ResolutionError(f"Invalid cluster spec document: {e}") from e

    spec = data.get("spec", data) if isinstance(data, dict) else {}

    dns = _dig(spec, "kubeDNS", "serverIP") or _dig(spec, "kubelet", "clusterDNS") or ""
    if isinstance(dns, str):
        dns_servers = tuple(s.strip() for s in dns.split(",") if s.strip())
    else:
        dns_servers = tuple(str(s) for s in dns)

    values = {
        "pod_cidr": _dig(spec, "kubeControllerManager", "clusterCIDR") or spec.get("podCIDR"),
        "service_cidr": spec.get("serviceClusterIPRange"),
        "non_masquerade_cidr": spec.get("nonMasqueradeCIDR"),
        "internal_api": spec.get("masterInternalName"),
        "kubernetes_version": spec.get("kubernetesVersion"),
    }
    missing = [k for k, v in values.items() if not v]
    if not dns_servers:
        missing.append("dns_servers")
    if missing:
        raise ResolutionError(f"Cluster spec is missing required fields: {', '.join(missing)}")

    version = str(values.pop("kubernetes_version"))
    if not version.startswith("v"):
        version = f"v{version}"

    return ClusterSpec(
        dns_servers=dns_servers,
        dns_domain=spec.get("clusterDNSDomain") or "cluster.local",
        kubernetes_version=version,
        **values,
    )


def primary_key_material(document: str, field: str) -> str:
    """
    Returns the base64 material of the primary key of a keyset document.
    Falls back to the last key when no primaryId is declared.
    """
    try:
        data = yaml.safe_load(document) or {}
    except yaml.YAMLError as e:
        raise ResolutionError(f"Invalid keyset document: {e}") from e

    keys: List[Dict[str, Any]] = _dig(data, "spec", "keys") or []
    if not keys:
        raise ResolutionError("Keyset document contains no keys")

    primary_id = _dig(data, "spec", "primaryId")
    chosen = next((k for k in keys if primary_id and str(k.get("id")) == str(primary_id)), keys[-1])
    material = chosen.get(field)
    if not material:
        raise ResolutionError(f"Keyset primary key has no {field}")
    return str(material).strip()


def render_kubeconfig(server: str, bundle: CredentialBundle) -> str:
    document = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{
            "name": "local",
            "cluster": {"server": server, "certificate-authority-data": bundle.ca},
        }],
        "users": [{
            "name": bundle.principal,
            "user": {"client-certificate-data": bundle.certificate, "client-key-data": bundle.key},
        }],
        "contexts": [{
            "name": "service-account-context",
            "context": {"cluster": "local", "user": bundle.principal},
        }],
        "current-context": "service-account-context",
    }
    return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)


def kubeconfig_path(install_dir: str, principal: str) -> str:
    return os.path.join(install_dir, f"{principal}.kubeconfig")


# --- RESOLVER ---

class ClusterResolver:
    """
    The only component talking to the metadata endpoint and the state store.
    All operations are fatal on error (ResolutionError): a partial answer is never usable.
    """

    def __init__(self, settings: AppSettings, metadata: Optional[MetadataClient] = None, store_factory=None):
        self.settings = settings
        self.metadata = metadata or MetadataClient(
            settings.cloud.metadata_url, timeout=settings.cloud.request_timeout
        )
        self._store_factory = store_factory or (lambda region: StateStoreClient(region))
        self._store: Optional[StateStoreClient] = None
        self._identity: Optional[NodeIdentity] = None
        self._location = None

    # --- NODE IDENTITY ---

    def resolve_node_identity(self) -> NodeIdentity:
        if self._identity:
            return self._identity

        mac = self.metadata.primary_mac()
        subnet = self.metadata.subnet_cidr(mac)
        try:
            network = ipaddress.ip_network(subnet, strict=False)
        except ValueError as e:
            raise ResolutionError(f"Invalid subnet CIDR '{subnet}' for interface {mac}") from e

        self._identity = NodeIdentity(
            instance_id=self.metadata.instance_id(),
            region=self.metadata.region(),
            hostname=self.metadata.local_hostname(),
            address=self.metadata.local_ipv4(),
            # The VPC router is the first host of the subnet
            gateway=str(network.network_address + 1),
        )
        sys_logger.info(f"Node identity resolved: {self._identity}")
        return self._identity

    # --- STATE STORE ---

    def _store_location(self):
        if self._location is None:
            locator = self.settings.cloud.config_base or parse_config_base(self.metadata.user_data())
            if not locator:
                raise ResolutionError("No ConfigBase found in user-data and none configured")
            self._location = parse_store_url(locator)
        return self._location

    def _fetch(self, relative_key: str) -> str:
        if self._store is None:
            self._store = self._store_factory(self.resolve_node_identity().region)
        bucket, prefix = self._store_location()
        key = f"{prefix}/{relative_key}" if prefix else relative_key
        return self._store.fetch_text(bucket, key)

    def resolve_cluster_spec(self) -> ClusterSpec:
        spec = parse_cluster_spec(self._fetch(self.settings.cloud.cluster_spec_key))
        sys_logger.info(f"Cluster spec resolved: {spec}")
        return spec

    def fetch_credentials(self, principal: str, spec: ClusterSpec) -> CredentialBundle:
        """
        Downloads the principal's keysets and the cluster CA and writes the kubeconfig.
        """
        ca = primary_key_material(self._fetch("pki/issued/ca/keyset.yaml"), "publicMaterial")
        cert = primary_key_material(self._fetch(f"pki/issued/{principal}/keyset.yaml"), "publicMaterial")
        key = primary_key_material(self._fetch(f"pki/private/{principal}/keyset.yaml"), "privateMaterial")

        bundle = CredentialBundle(
            principal=principal,
            certificate=cert,
            key=key,
            ca=ca,
            kubeconfig_path=kubeconfig_path(self.settings.paths.install_dir, principal),
        )
        write_file(bundle.kubeconfig_path, render_kubeconfig(f"https://{spec.internal_api}", bundle))
        return bundle

    def fetch_service_account_config(self) -> str:
        """Downloads the pre-issued flannel kubeconfig and writes it verbatim."""
        path = kubeconfig_path(self.settings.paths.install_dir, "flannel")
        write_file(path, self._fetch(self.settings.cloud.service_account_key))
        return path
