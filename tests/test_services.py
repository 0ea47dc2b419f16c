import pytest

from hearth.core.errors import SequencingError, ActivationError
from hearth.core.models import ServiceDefinition, ServiceState, CommandResult
from hearth.core.services import ServiceManager, flatten_args, validate_startup_plan
from hearth.tasks.agents import STARTUP_PLAN

from conftest import FakeSupervisor


def _manager():
    supervisor = FakeSupervisor()
    services = ServiceManager(supervisor)
    services.register(ServiceDefinition("kubelet", "C:\\k\\kubelet.exe", args={"v": "2"}))
    services.register(ServiceDefinition("flanneld", "C:\\k\\flanneld.exe", dependencies=["kubelet"]))
    services.register(ServiceDefinition(
        "kube-proxy", "C:\\k\\kube-proxy.exe",
        dependencies=["flanneld"], args={"v": "2"}, pending_args=["source-vip"],
    ))
    return services, supervisor


def test_flatten_args_joins_in_insertion_order():
    assert flatten_args({"v": "4", "cluster-cidr": "100.64.0.0/10"}) == "--v=4 --cluster-cidr=100.64.0.0/10"
    assert flatten_args({}) == ""


def test_register_applies_definition_to_supervisor():
    services, supervisor = _manager()

    assert services.state("flanneld") == ServiceState.CONFIGURED
    assert ("install", "flanneld", "C:\\k\\flanneld.exe") in supervisor.calls
    assert ("deps", "flanneld", ("kubelet",)) in supervisor.calls
    assert ("params", "kube-proxy", "--v=2") in supervisor.calls


def test_register_without_configuration_stays_registered():
    services = ServiceManager(FakeSupervisor())
    services.register(ServiceDefinition("bare", "bare.exe"))

    assert services.state("bare") == ServiceState.REGISTERED
    with pytest.raises(SequencingError):
        services.start("bare")


def test_start_before_dependency_is_rejected():
    services, supervisor = _manager()

    with pytest.raises(SequencingError, match="kubelet"):
        services.start("flanneld")
    assert supervisor.started() == []
    assert services.state("flanneld") == ServiceState.CONFIGURED


def test_pending_argument_blocks_start_until_reconfigured():
    services, supervisor = _manager()
    services.start("kubelet")
    services.start("flanneld")

    with pytest.raises(SequencingError, match="source-vip"):
        services.start("kube-proxy")

    services.reconfigure_args("kube-proxy", {"source-vip": "10.244.1.2"})
    services.start("kube-proxy")

    assert supervisor.started() == ["kubelet", "flanneld", "kube-proxy"]
    assert ("params", "kube-proxy", "--v=2 --source-vip=10.244.1.2") in supervisor.calls
    assert services.state("kube-proxy") == ServiceState.STARTED


def test_reconfigure_is_allowed_once():
    services, _ = _manager()
    services.reconfigure_args("kube-proxy", {"source-vip": "10.244.1.2"})

    with pytest.raises(SequencingError, match="already reconfigured"):
        services.reconfigure_args("kube-proxy", {"source-vip": "10.244.1.3"})


def test_started_service_cannot_be_reconfigured():
    services, _ = _manager()
    services.start("kubelet")

    with pytest.raises(SequencingError, match="already started"):
        services.reconfigure_args("kubelet", {"v": "4"})
    with pytest.raises(SequencingError):
        services.set_env("kubelet", "FOO", "bar")


def test_start_is_a_noop_when_already_started():
    services, supervisor = _manager()
    services.start("kubelet")
    services.start("kubelet")
    assert supervisor.started() == ["kubelet"]


def test_set_env_sends_the_whole_environment():
    services, supervisor = _manager()
    services.set_env("flanneld", "NODE_NAME", "node-a")
    services.set_env("flanneld", "KUBE_NETWORK", "vxlan0")

    assert supervisor.calls[-1] == ("env", "flanneld", {"NODE_NAME": "node-a", "KUBE_NETWORK": "vxlan0"})


def test_unknown_service_is_rejected():
    services, _ = _manager()
    with pytest.raises(SequencingError, match="not registered"):
        services.start("containerd")


def test_supervisor_start_failure_raises():
    services, supervisor = _manager()
    supervisor.start = lambda name: CommandResult(returncode=1, stderr="access denied")

    with pytest.raises(ActivationError, match="access denied"):
        services.start("kubelet")
    assert services.state("kubelet") == ServiceState.CONFIGURED


def test_start_failure_is_not_excused_by_a_running_service():
    services, supervisor = _manager()
    supervisor.start = lambda name: CommandResult(returncode=1, stderr="already running")
    supervisor.running.add("kubelet")

    with pytest.raises(ActivationError, match="already running"):
        services.start("kubelet")
    assert services.state("kubelet") == ServiceState.CONFIGURED


def test_stop_running_stops_leftover_services_dependents_first():
    supervisor = FakeSupervisor()
    supervisor.running.update({"kubelet", "kube-proxy"})
    services = ServiceManager(supervisor)

    stopped = services.stop_running(["kube-proxy", "flanneld", "kubelet"])

    assert stopped == ["kube-proxy", "kubelet"]
    assert supervisor.calls == [("stop", "kube-proxy"), ("stop", "kubelet")]
    assert supervisor.running == set()


def test_leftover_service_restarts_with_new_arguments():
    supervisor = FakeSupervisor()
    supervisor.running.update({"kubelet", "flanneld", "kube-proxy"})
    services = ServiceManager(supervisor)

    services.stop_running(["kube-proxy", "flanneld", "kubelet"])
    services.register(ServiceDefinition("kubelet", "kubelet.exe", args={"v": "2"}))
    services.register(ServiceDefinition(
        "kube-proxy", "kube-proxy.exe", args={"v": "2"}, pending_args=["source-vip"],
    ))
    services.start("kubelet")
    services.reconfigure_args("kube-proxy", {"source-vip": "10.244.1.7"})
    services.start("kube-proxy")

    ops = [call[:2] for call in supervisor.calls]
    assert ops.index(("stop", "kube-proxy")) < ops.index(("params", "kube-proxy")) < ops.index(("start", "kube-proxy"))
    assert ("params", "kube-proxy", "--v=2 --source-vip=10.244.1.7") in supervisor.calls
    assert supervisor.running == {"kubelet", "kube-proxy"}


def test_stop_running_refuses_a_service_started_in_this_run():
    services, _ = _manager()
    services.start("kubelet")
    with pytest.raises(SequencingError):
        services.stop_running(["kubelet"])


def test_startup_plan_validation():
    assert validate_startup_plan(STARTUP_PLAN) == ["kubelet", "flanneld", "kube-proxy"]

    with pytest.raises(SequencingError, match="prerequisites"):
        validate_startup_plan([("flanneld", {"kubelet"}), ("kubelet", set())])
    with pytest.raises(SequencingError, match="twice"):
        validate_startup_plan([("kubelet", set()), ("kubelet", set())])
