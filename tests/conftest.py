import types

import pytest

from hearth.core.models import ClusterSpec, NodeIdentity, CommandResult, CredentialBundle
from hearth.core.settings import AppSettings, PathSettings
from hearth.core.state import config as global_config


SPEC = ClusterSpec(
    pod_cidr="100.64.0.0/10",
    service_cidr="100.65.0.0/16",
    non_masquerade_cidr="100.64.0.0/10",
    dns_servers=("100.65.0.10",),
    dns_domain="cluster.local",
    internal_api="api.internal.demo.example.com",
    kubernetes_version="v1.21.3",
)

IDENTITY = NodeIdentity(
    instance_id="i-0abc123",
    region="eu-west-1",
    hostname="ip-172-20-1-10.eu-west-1.compute.internal",
    address="172.20.1.10",
    gateway="172.20.0.1",
)


@pytest.fixture(autouse=True)
def quiet_console():
    # No spinners in tests
    previous = global_config.VERBOSE
    global_config.VERBOSE = False
    yield
    global_config.VERBOSE = previous


@pytest.fixture
def settings(tmp_path):
    root = tmp_path / "node"
    s = AppSettings()
    s.paths = PathSettings(
        install_dir=str(root / "k"),
        log_root=str(root / "k" / "logs"),
        state_file=str(root / "k" / "hearth-state.yaml"),
        cache_dir=str(root / "k" / "downloads"),
        cni_bin_dir=str(root / "k" / "cni"),
        cni_conf_dir=str(root / "k" / "cni" / "config"),
        backend_config_path=str(root / "etc" / "kube-flannel" / "net-conf.json"),
        subnet_env_path=str(root / "run" / "flannel" / "subnet.env"),
        ipam_data_dir=str(root / "var" / "lib" / "cni" / "networks"),
        kubelet_data_dir=str(root / "var" / "lib" / "kubelet"),
    )
    s.gates.cluster_interval = 0.01
    s.gates.source_vip_interval = 0.01
    return s


class FakeSupervisor:
    """Records every supervisor call; nothing is installed."""

    def __init__(self):
        self.calls = []
        self.running = set()

    def _ok(self, *call):
        self.calls.append(call)
        return CommandResult(returncode=0)

    def install(self, name, executable):
        return self._ok("install", name, executable)

    def set_stderr(self, name):
        return self._ok("stderr", name)

    def set_dependencies(self, name, deps):
        return self._ok("deps", name, tuple(deps))

    def set_environment(self, name, env):
        return self._ok("env", name, dict(env))

    def set_parameters(self, name, parameters):
        return self._ok("params", name, parameters)

    def start(self, name):
        self.running.add(name)
        return self._ok("start", name)

    def stop(self, name):
        self.running.discard(name)
        return self._ok("stop", name)

    def status(self, name):
        return "SERVICE_RUNNING" if name in self.running else "SERVICE_STOPPED"

    def started(self):
        return [c[1] for c in self.calls if c[0] == "start"]


class FakeKubectl:
    def __init__(self, unreachable_polls=0, uncordon_rc=0):
        self.unreachable_polls = unreachable_polls
        self.polls = 0
        self.uncordon_rc = uncordon_rc
        self.uncordoned = []

    def can_list_nodes(self):
        self.polls += 1
        return self.polls > self.unreachable_polls

    def uncordon(self, node_name):
        self.uncordoned.append(node_name)
        return CommandResult(returncode=self.uncordon_rc, stderr="forbidden" if self.uncordon_rc else "")


class FakeResolver:
    def __init__(self, spec=SPEC, identity=IDENTITY, error=None):
        self.spec = spec
        self.identity = identity
        self.error = error
        self.principals = []

    def resolve_node_identity(self):
        return self.identity

    def resolve_cluster_spec(self):
        if self.error:
            raise self.error
        return self.spec

    def fetch_credentials(self, principal, spec):
        self.principals.append(principal)
        return CredentialBundle(principal, "Y2VydA==", "a2V5", "Y2E=", f"/k/{principal}.kubeconfig")

    def fetch_service_account_config(self):
        return "/k/flannel.kubeconfig"


class SpyRun:
    """Stand-in for subprocess.run: answers from a table of argv prefixes."""

    def __init__(self, answers=None):
        self.calls = []
        self.answers = answers or []

    def __call__(self, argv, **kwargs):
        self.calls.append((list(argv), kwargs))
        for prefix, rc, stdout in self.answers:
            if list(argv[:len(prefix)]) == list(prefix):
                return types.SimpleNamespace(returncode=rc, stdout=stdout, stderr="" if rc == 0 else "boom")
        return types.SimpleNamespace(returncode=0, stdout="", stderr="")

    def argvs(self):
        return [argv for argv, _ in self.calls]
