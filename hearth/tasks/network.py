import json
import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from hearth.core.models import CommandResult
from hearth.utils.logger import sys_logger
from hearth.utils.system import run_command, write_json

CNI_DELEGATE_TYPE = "win-overlay"


# --- DOCUMENTS ---

def build_backend_config(cidr: str, backend_name: str, backend_type: str) -> Dict:
    """flannel net-conf.json"""
    return {
        "Network": cidr,
        "Backend": {
            "name": backend_name,
            "type": backend_type,
        },
    }


def build_delegate_config(
        cluster_cidr: str,
        service_cidr: str,
        dns_servers: Sequence[str],
        dns_suffix: str,
        network_name: str,
        cni_version: str = "0.2.0",
) -> Dict:
    """
    CNI config handed to flannel, which delegates to the overlay plugin.

    The policy list is order-sensitive for the plugin: the NAT exclusion of
    pod and service CIDRs comes first, the encapsulated service route second.
    """
    return {
        "cniVersion": cni_version,
        "name": network_name,
        "type": "flannel",
        "delegate": {
            "type": CNI_DELEGATE_TYPE,
            "dns": {
                "Nameservers": list(dns_servers),
                "Search": [dns_suffix],
            },
            "policies": [
                {
                    "Name": "EndpointPolicy",
                    "Value": {
                        "Type": "OutBoundNAT",
                        "ExceptionList": [cluster_cidr, service_cidr],
                    },
                },
                {
                    "Name": "EndpointPolicy",
                    "Value": {
                        "Type": "ROUTE",
                        "DestinationPrefix": service_cidr,
                        "NeedEncap": True,
                    },
                },
            ],
        },
    }


def write_backend_config(path: str, cidr: str, backend_name: str, backend_type: str) -> bool:
    """Writes the backend config, truncating any prior version. Returns True if it changed."""
    return write_json(path, build_backend_config(cidr, backend_name, backend_type))


def write_delegate_config(
        path: str,
        cluster_cidr: str,
        service_cidr: str,
        dns_servers: Sequence[str],
        dns_suffix: str,
        network_name: str,
        cni_version: str = "0.2.0",
) -> bool:
    """Writes the CNI delegate config, truncating any prior version. Returns True if it changed."""
    document = build_delegate_config(cluster_cidr, service_cidr, dns_servers, dns_suffix, network_name, cni_version)
    return write_json(path, document)


# --- SOURCE VIP DISCOVERY ---

def read_node_subnet(subnet_env_path: str) -> Optional[str]:
    """Reads FLANNEL_SUBNET from the subnet.env written by a running flanneld."""
    path = Path(subnet_env_path)
    if not path.is_file():
        return None
    for line in path.read_text(encoding="utf-8").splitlines():
        key, _, value = line.partition("=")
        if key.strip() == "FLANNEL_SUBNET" and value.strip():
            return value.strip()
    return None


def build_ipam_request(network_name: str, subnet: str, data_dir: str, cni_version: str = "0.2.0") -> Dict:
    return {
        "cniVersion": cni_version,
        "name": network_name,
        "ipam": {
            "type": "host-local",
            "ranges": [[{"subnet": subnet}]],
            "dataDir": data_dir,
        },
    }


def parse_ipam_address(output: str) -> Optional[str]:
    """
    Extracts the allocated address (without prefix length) from a host-local response.
    Accepts CNI 0.2 ('ip4.ip') and CNI 0.3+ ('ips[0].address') result formats.
    """
    try:
        result = json.loads(output)
    except ValueError:
        return None
    if not isinstance(result, dict):
        return None

    address = (result.get("ip4") or {}).get("ip")
    if not address:
        ips: List[Dict] = result.get("ips") or []
        address = ips[0].get("address") if ips else None
    if not address:
        return None
    return address.split("/", 1)[0]


def run_host_local(cni_bin_dir: str, request: Dict) -> CommandResult:
    env = {
        "CNI_COMMAND": "ADD",
        "CNI_CONTAINERID": "dummy",
        "CNI_NETNS": "dummy",
        "CNI_IFNAME": "dummy",
        "CNI_PATH": cni_bin_dir,
    }
    executable = os.path.join(cni_bin_dir, "host-local.exe" if os.name == "nt" else "host-local")
    return run_command([executable], env=env, input=json.dumps(request))


def discover_source_vip(
        subnet_env_path: str,
        cni_bin_dir: str,
        network_name: str,
        data_dir: str,
        cni_version: str = "0.2.0",
) -> Optional[str]:
    """
    Asks the host-local IPAM helper for an address in the node's overlay subnet.
    Returns None while the subnet is not assigned or the helper gives no address.
    """
    subnet = read_node_subnet(subnet_env_path)
    if not subnet:
        sys_logger.info(f"Node subnet not assigned yet ({subnet_env_path} missing)")
        return None

    res = run_host_local(cni_bin_dir, build_ipam_request(network_name, subnet, data_dir, cni_version))
    if res.failed:
        sys_logger.info(f"host-local IPAM failed: {res.result.strip()}")
        return None

    return parse_ipam_address(res.stdout)
