import os
from typing import List

from hearth.core.models import ClusterSpec, NodeIdentity, ServiceDefinition
from hearth.core.settings import AppSettings
from hearth.tasks.discovery import kubeconfig_path

KUBELET = "kubelet"
FLANNELD = "flanneld"
KUBE_PROXY = "kube-proxy"

# Explicit startup plan: (service, prerequisites). Validated before any start.
STARTUP_PLAN = [
    (KUBELET, set()),
    (FLANNELD, {KUBELET}),
    (KUBE_PROXY, {FLANNELD}),
]

SOURCE_VIP_ARG = "source-vip"


def kubelet_definition(settings: AppSettings, spec: ClusterSpec, identity: NodeIdentity) -> ServiceDefinition:
    paths = settings.paths
    args = {
        "v": "2",
        "hostname-override": identity.hostname,
        "node-ip": identity.address,
        "cluster-dns": ",".join(spec.dns_servers),
        "cluster-domain": spec.dns_domain,
        "kubeconfig": kubeconfig_path(paths.install_dir, KUBELET),
        "root-dir": paths.kubelet_data_dir,
        "pod-infra-container-image": settings.installers.pause_image,
        "network-plugin": "cni",
        "cni-bin-dir": paths.cni_bin_dir,
        "cni-conf-dir": paths.cni_conf_dir,
        "cgroups-per-qos": "false",
        "enforce-node-allocatable": '""',
        "resolv-conf": '""',
        "image-pull-progress-deadline": "20m",
        "register-with-taints": "node.kubernetes.io/os=windows:NoSchedule",
        "node-labels": "kubernetes.io/os=windows,node.kubernetes.io/windows-build=" + settings.installers.os_build,
        "log-dir": paths.log_root,
        "logtostderr": "false",
    }
    return ServiceDefinition(
        name=KUBELET,
        executable=os.path.join(paths.install_dir, "kubelet.exe"),
        args=args,
    )


def flanneld_definition(settings: AppSettings, identity: NodeIdentity) -> ServiceDefinition:
    paths = settings.paths
    args = {
        "kubeconfig-file": kubeconfig_path(paths.install_dir, "flannel"),
        "iface": identity.address,
        "ip-masq": "1",
        "kube-subnet-mgr": "1",
        "net-config-path": paths.backend_config_path,
    }
    return ServiceDefinition(
        name=FLANNELD,
        executable=os.path.join(paths.install_dir, "flanneld.exe"),
        dependencies=[KUBELET],
        env={"NODE_NAME": identity.hostname},
        args=args,
    )


def kube_proxy_definition(settings: AppSettings, spec: ClusterSpec, identity: NodeIdentity) -> ServiceDefinition:
    """
    The source VIP is only known once flanneld has assigned the node subnet:
    it is declared pending and resolved through ServiceManager.reconfigure_args().
    """
    paths = settings.paths
    network = settings.network.network_name
    args = {
        "v": "2",
        "proxy-mode": "kernelspace",
        "hostname-override": identity.hostname,
        "kubeconfig": kubeconfig_path(paths.install_dir, KUBE_PROXY),
        "network-name": network,
        "cluster-cidr": spec.pod_cidr,
        "feature-gates": "WinOverlay=true",
        "log-dir": paths.log_root,
        "logtostderr": "false",
    }
    return ServiceDefinition(
        name=KUBE_PROXY,
        executable=os.path.join(paths.install_dir, "kube-proxy.exe"),
        dependencies=[FLANNELD],
        env={"KUBE_NETWORK": network},
        args=args,
        pending_args=[SOURCE_VIP_ARG],
    )


def agent_definitions(settings: AppSettings, spec: ClusterSpec, identity: NodeIdentity) -> List[ServiceDefinition]:
    """Fresh definitions for every activation, in STARTUP_PLAN order."""
    return [
        kubelet_definition(settings, spec, identity),
        flanneld_definition(settings, identity),
        kube_proxy_definition(settings, spec, identity),
    ]
