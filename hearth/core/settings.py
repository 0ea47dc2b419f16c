import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv

# Load env vars if present
load_dotenv()


# --- DATACLASSES (SCHEMA) ---

@dataclass
class PathSettings:
    """Filesystem layout of the node. Defaults target a Windows worker."""
    install_dir: str = "C:\\k"
    log_root: str = "C:\\k\\logs"
    state_file: str = "C:\\k\\hearth-state.yaml"
    cache_dir: str = "C:\\k\\downloads"
    cni_bin_dir: str = "C:\\k\\cni"
    cni_conf_dir: str = "C:\\k\\cni\\config"
    backend_config_path: str = "C:\\etc\\kube-flannel\\net-conf.json"
    subnet_env_path: str = "C:\\run\\flannel\\subnet.env"
    ipam_data_dir: str = "C:\\var\\lib\\cni\\networks"
    kubelet_data_dir: str = "C:\\var\\lib\\kubelet"

    @property
    def delegate_config_path(self) -> str:
        return os.path.join(self.cni_conf_dir, "cni.conf")


@dataclass
class CloudSettings:
    """Metadata endpoint and remote state store access."""
    metadata_url: str = "http://169.254.169.254/latest"
    request_timeout: float = 10.0
    # Overrides the ConfigBase line of the instance user-data
    config_base: str = ""
    cluster_spec_key: str = "cluster.spec"
    service_account_key: str = "windows/flannel.kubeconfig"
    principals: List[str] = field(default_factory=lambda: ["kubelet", "kube-proxy"])


@dataclass
class NetworkSettings:
    """Overlay network parameters shared by flannel and the CNI config."""
    network_name: str = "vxlan0"
    backend_type: str = "vxlan"
    cni_version: str = "0.2.0"


@dataclass
class InstallerSettings:
    """Download sources for the prepare phase."""
    max_parallel: int = 5
    kubernetes_release_url: str = "https://dl.k8s.io"
    flanneld_url: str = "https://github.com/flannel-io/flannel/releases/download/v0.14.0/flanneld.exe"
    cni_plugins_url: str = (
        "https://github.com/containernetworking/plugins/releases/download/"
        "v0.8.7/cni-plugins-windows-amd64-v0.8.7.tgz"
    )
    nssm_url: str = "https://nssm.cc/release/nssm-2.24.zip"
    os_build: str = "ltsc2019"
    base_images: List[str] = field(default_factory=lambda: [
        "mcr.microsoft.com/windows/nanoserver:{os_build}",
        "mcr.microsoft.com/windows/servercore:{os_build}",
    ])
    pause_image: str = "kubeletwin/pause"
    # Windows update packages: [{"id": "KB4489899", "url": "https://..."}]
    patches: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class GateSettings:
    """Retry intervals (seconds) of the readiness gates. There is no deadline."""
    cluster_interval: float = 5.0
    source_vip_interval: float = 5.0


@dataclass
class AppSettings:
    """Root configuration object."""
    paths: PathSettings = field(default_factory=PathSettings)
    cloud: CloudSettings = field(default_factory=CloudSettings)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    installers: InstallerSettings = field(default_factory=InstallerSettings)
    gates: GateSettings = field(default_factory=GateSettings)
    environment: str = "prod"


# --- LOADER LOGIC ---

def _clean_none(d: Union[Dict, None]):
    if not isinstance(d, dict):
        return d
    cleaned = {k: _clean_none(v) for k, v in d.items() if v is not None}
    return {k: v for k, v in cleaned.items() if v != {}}


def _build(cls, values: Dict[str, Any]):
    """Instantiates a settings dataclass, keeping only known keys."""
    known = {f.name: f for f in fields(cls)}
    kwargs = {}
    for key, value in (values or {}).items():
        if key not in known:
            continue
        default = known[key].default_factory() if callable(known[key].default_factory) else None
        if is_dataclass(default) and isinstance(value, dict):
            kwargs[key] = _build(type(default), value)
        else:
            kwargs[key] = value
    return cls(**kwargs)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(config_path: Optional[str] = "hearth.yaml") -> AppSettings:
    """
    Loads configuration merging: Defaults (Schema) < YAML File (Config) < Environment Vars.
    """

    # 1. Load YAML Config
    file_config = {}
    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
            if not isinstance(file_config, dict):
                raise ValueError(f"Invalid configuration file {config_path}: expected a mapping")

    # 2. Environment Variables (Overrides)
    # Only the keys that make sense to override on a node are mapped
    env_config = _clean_none({
        "environment": os.getenv("HEARTH_ENV"),
        "paths": {
            "install_dir": os.getenv("HEARTH_INSTALL_DIR"),
            "state_file": os.getenv("HEARTH_STATE_FILE"),
            "log_root": os.getenv("HEARTH_LOG_ROOT"),
        },
        "cloud": {
            "config_base": os.getenv("HEARTH_CONFIG_BASE"),
            "metadata_url": os.getenv("HEARTH_METADATA_URL"),
        },
        "installers": {
            "os_build": os.getenv("HEARTH_OS_BUILD"),
        },
    })

    # 3. Merge Logic. Priority: Env > File > Defaults
    final = _merge(file_config, env_config)
    return _build(AppSettings, final)
