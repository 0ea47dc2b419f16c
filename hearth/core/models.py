from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from hearth.core.errors import StateStoreError


class TaskStatus(str, Enum):
    OK = "OK"  # Step completed or was already applied (no change)
    CHANGED = "CHANGED"  # Step performed an action successfully
    WARNING = "WARNING"  # Step succeeded but with non-critical issues
    FAILED = "FAILED"  # Step failed, blocking the phase
    SKIPPED = "SKIPPED"  # Step was skipped due to the environment


@dataclass
class StandardResult:
    """
    Standard payload returned by every provisioning step and installer.
    """
    status: TaskStatus
    message: str
    data: Optional[Any] = None  # To pass data between steps

    @property
    def failed(self) -> bool:
        return self.status == TaskStatus.FAILED


@dataclass
class SubTaskResult:
    """Lightweight result object for internal sub-steps."""
    success: bool
    message: str
    exception: Optional[Exception] = None
    data: Optional[Any] = None


@dataclass
class CommandResult:
    """Outcome of a one-shot external tool invocation."""
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def failed(self) -> bool:
        return self.returncode != 0

    @property
    def result(self) -> str:
        # Combine stdout and stderr for a complete picture on failure
        if self.failed and self.stderr:
            return f"{self.stdout}\nError: {self.stderr}"
        return self.stdout


# --- PROVISIONING DOMAIN ---

class PhaseState(str, Enum):
    """
    Coarse provisioning milestone persisted across reboots under NODE_STATE.
    The stored value of UNCONFIGURED is the absence of the key.
    """
    UNCONFIGURED = ""
    PREPARED = "prepared"
    READY = "ready"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "PhaseState":
        if not raw:
            return cls.UNCONFIGURED
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise StateStoreError(f"Unknown NODE_STATE value '{raw}'") from None

    @property
    def rank(self) -> int:
        return PHASE_ORDER.index(self)


PHASE_ORDER = [PhaseState.UNCONFIGURED, PhaseState.PREPARED, PhaseState.READY]


@dataclass(frozen=True)
class ClusterSpec:
    """Cluster parameters resolved once per prepare phase."""
    pod_cidr: str
    service_cidr: str
    non_masquerade_cidr: str
    dns_servers: Tuple[str, ...]
    dns_domain: str
    internal_api: str
    kubernetes_version: str

    @property
    def dns_suffix(self) -> str:
        return f"svc.{self.dns_domain}"


@dataclass(frozen=True)
class NodeIdentity:
    """Per-boot identity of this machine."""
    instance_id: str
    region: str
    hostname: str
    address: str
    gateway: str


@dataclass(frozen=True)
class CredentialBundle:
    """Client credentials of one principal plus the cluster CA (base64 PEM)."""
    principal: str
    certificate: str
    key: str
    ca: str
    kubeconfig_path: str


class ServiceState(str, Enum):
    REGISTERED = "Registered"
    CONFIGURED = "Configured"
    STARTED = "Started"


@dataclass
class ServiceDefinition:
    """A long-running agent process managed by the supervisor."""
    name: str
    executable: str
    dependencies: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    args: Dict[str, str] = field(default_factory=dict)
    # Argument names whose value is only known after an earlier service runs
    pending_args: List[str] = field(default_factory=list)
