import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

import yaml

from hearth.core.errors import PhaseTransitionError, StateStoreError
from hearth.core.models import PhaseState, ClusterSpec, NodeIdentity
from hearth.utils.logger import sys_logger

PHASE_KEY = "NODE_STATE"

# host-local hands out one address per container id; reused across activations
SOURCE_VIP_KEY = "KUBE_SOURCE_VIP"

# Cluster parameters persisted next to the phase so activate never re-resolves them
PARAM_KEYS = [
    "KUBE_CLUSTER_CIDR",
    "KUBE_SERVICE_CIDR",
    "KUBE_NON_MASQ_CIDR",
    "KUBE_DNS_SERVERS",
    "KUBE_DNS_DOMAIN",
    "KUBE_INTERNAL_API",
    "KUBE_VERSION",
    "AWS_REGION",
    "INSTANCE_ID",
    "NODE_NAME",
    "NODE_IP",
    "NODE_GATEWAY",
]


class PhaseStore:
    """
    Reboot-durable key/value store backed by a YAML file.

    Every write replaces the whole file atomically (temp file, fsync, rename),
    so a crash leaves either the previous or the new content on disk.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    # --- RAW ACCESS ---

    def read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise StateStoreError(f"Corrupted state file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StateStoreError(f"Corrupted state file {self.path}: expected a mapping")
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def get(self, key: str) -> Optional[str]:
        return self.read_all().get(key)

    def update(self, values: Dict[str, str]) -> None:
        data = self.read_all()
        data.update({k: str(v) for k, v in values.items()})
        self._commit(data)

    def _commit(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".hearth-state-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    # --- PHASE ---

    def read_phase(self) -> PhaseState:
        return PhaseState.parse(self.get(PHASE_KEY))

    def advance(self, target: PhaseState) -> None:
        """
        Moves the phase exactly one step forward and commits it to disk.
        """
        current = self.read_phase()
        if target.rank != current.rank + 1:
            raise PhaseTransitionError(
                f"Illegal phase transition '{current.value or 'unset'}' -> '{target.value or 'unset'}'"
            )
        self.update({PHASE_KEY: target.value})
        sys_logger.info(f"Phase committed: {PHASE_KEY}={target.value}")

    # --- CLUSTER PARAMETERS ---

    def save_parameters(self, spec: ClusterSpec, identity: NodeIdentity) -> None:
        self.update({
            "KUBE_CLUSTER_CIDR": spec.pod_cidr,
            "KUBE_SERVICE_CIDR": spec.service_cidr,
            "KUBE_NON_MASQ_CIDR": spec.non_masquerade_cidr,
            "KUBE_DNS_SERVERS": ",".join(spec.dns_servers),
            "KUBE_DNS_DOMAIN": spec.dns_domain,
            "KUBE_INTERNAL_API": spec.internal_api,
            "KUBE_VERSION": spec.kubernetes_version,
            "AWS_REGION": identity.region,
            "INSTANCE_ID": identity.instance_id,
            "NODE_NAME": identity.hostname,
            "NODE_IP": identity.address,
            "NODE_GATEWAY": identity.gateway,
        })

    def load_parameters(self):
        """Rebuilds (ClusterSpec, NodeIdentity) from the persisted parameters."""
        data = self.read_all()
        missing = [k for k in PARAM_KEYS if not data.get(k)]
        if missing:
            raise PhaseTransitionError(f"Persisted cluster parameters incomplete, missing: {', '.join(missing)}")

        spec = ClusterSpec(
            pod_cidr=data["KUBE_CLUSTER_CIDR"],
            service_cidr=data["KUBE_SERVICE_CIDR"],
            non_masquerade_cidr=data["KUBE_NON_MASQ_CIDR"],
            dns_servers=tuple(s.strip() for s in data["KUBE_DNS_SERVERS"].split(",") if s.strip()),
            dns_domain=data["KUBE_DNS_DOMAIN"],
            internal_api=data["KUBE_INTERNAL_API"],
            kubernetes_version=data["KUBE_VERSION"],
        )
        identity = NodeIdentity(
            instance_id=data["INSTANCE_ID"],
            region=data["AWS_REGION"],
            hostname=data["NODE_NAME"],
            address=data["NODE_IP"],
            gateway=data["NODE_GATEWAY"],
        )
        return spec, identity

    # --- SOURCE VIP ---

    def read_source_vip(self) -> Optional[str]:
        return self.get(SOURCE_VIP_KEY)

    def save_source_vip(self, vip: str) -> None:
        self.update({SOURCE_VIP_KEY: vip})
        sys_logger.info(f"Source VIP persisted: {SOURCE_VIP_KEY}={vip}")
