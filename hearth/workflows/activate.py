import time
from typing import Callable, Dict, Optional

from hearth.core.decorators import automated_substep
from hearth.core.errors import ActivationError
from hearth.core.gate import wait_until
from hearth.core.models import ClusterSpec, NodeIdentity, SubTaskResult
from hearth.core.services import ServiceManager, validate_startup_plan
from hearth.core.settings import AppSettings
from hearth.tasks.agents import STARTUP_PLAN, SOURCE_VIP_ARG, KUBELET, FLANNELD, KUBE_PROXY, agent_definitions
from hearth.tasks.network import write_backend_config, write_delegate_config, discover_source_vip
from hearth.utils.kube import Kubectl
from hearth.utils.logger import logger
from hearth.utils.system import make_directory


# --- SUB-STEPS ---

@automated_substep("Create Data Directories")
def _create_directories(settings: AppSettings) -> SubTaskResult:
    """
    Create-if-absent: existing directories and their content are left alone.
    """
    paths = settings.paths
    created = [
        d for d in (paths.log_root, paths.kubelet_data_dir, paths.cni_conf_dir, paths.ipam_data_dir)
        if make_directory(d)
    ]
    msg = f"Created {', '.join(created)}" if created else "All directories present"
    return SubTaskResult(success=True, message=msg)


@automated_substep("Write Network Configuration")
def _write_network_artifacts(settings: AppSettings, spec: ClusterSpec) -> SubTaskResult:
    """
    Overwrites the backend config and the CNI delegate config on every activation.
    """
    paths = settings.paths
    network = settings.network

    write_backend_config(paths.backend_config_path, spec.pod_cidr, network.network_name, network.backend_type)
    write_delegate_config(
        paths.delegate_config_path,
        spec.pod_cidr,
        spec.service_cidr,
        spec.dns_servers,
        spec.dns_suffix,
        network.network_name,
        network.cni_version,
    )
    return SubTaskResult(
        success=True,
        message=f"{paths.backend_config_path} and {paths.delegate_config_path} written"
    )


def discover_node_vip(settings: AppSettings) -> Optional[str]:
    """Asks host-local for the source VIP. Each successful call allocates a new address."""
    paths = settings.paths
    return discover_source_vip(
        paths.subnet_env_path,
        paths.cni_bin_dir,
        settings.network.network_name,
        paths.ipam_data_dir,
        settings.network.cni_version,
    )


# --- WORKFLOW ---

def activate_workflow(
        settings: AppSettings,
        spec: ClusterSpec,
        identity: NodeIdentity,
        services: ServiceManager,
        kubectl: Kubectl,
        sleep: Callable[[float], None] = time.sleep,
        discover_vip: Optional[Callable[[], Optional[str]]] = None,
) -> str:
    """
    Post-reboot stage: network setup, agent registration and ordered startup.
    Every step overwrites what a previous, interrupted activation left behind.

    Returns the discovered source VIP.
    """
    found: Dict[str, str] = {}
    discover = discover_vip or (lambda: discover_node_vip(settings))

    def vip_assigned() -> bool:
        vip = discover()
        if vip:
            found["vip"] = vip
        return bool(vip)

    with logger.workflow(f"Activate Node {identity.hostname}"):

        # --- STEP 1: Network Plumbing ---
        with logger.task("1. Configure Network"):
            for step in (_create_directories(settings), _write_network_artifacts(settings, spec)):
                if not step.success:
                    raise ActivationError(step.message)
            logger.log_step("success", "Network artifacts written")

        # --- STEP 2: Register Agents ---
        with logger.task("2. Register Agent Services"):
            order = validate_startup_plan(STARTUP_PLAN)
            stopped = services.stop_running(list(reversed(order)))
            if stopped:
                logger.log_step("warning", f"Stopped agents left running: {', '.join(stopped)}")
            for definition in agent_definitions(settings, spec, identity):
                services.register(definition)
            logger.log_step("success", f"Registered {', '.join(order)}")

        # --- STEP 3: kubelet + cluster reachability ---
        with logger.task(f"3. Start {KUBELET}"):
            services.start(KUBELET)
            retries = wait_until(kubectl.can_list_nodes, settings.gates.cluster_interval, "cluster API", sleep=sleep)
            logger.log_step("success", f"Cluster API reachable (after {retries} retries)")

        # --- STEP 4: flanneld + source VIP ---
        with logger.task(f"4. Start {FLANNELD}"):
            services.start(FLANNELD)
            wait_until(vip_assigned, settings.gates.source_vip_interval, "source VIP", sleep=sleep)
            vip = found["vip"]
            logger.log_step("success", f"Source VIP assigned: {vip}")

        # --- STEP 5: kube-proxy ---
        with logger.task(f"5. Start {KUBE_PROXY}"):
            services.reconfigure_args(KUBE_PROXY, {SOURCE_VIP_ARG: vip})
            services.start(KUBE_PROXY)
            logger.log_step("success", f"{KUBE_PROXY} started with {SOURCE_VIP_ARG}={vip}")

        # --- STEP 6: Schedulable ---
        with logger.task("6. Uncordon Node"):
            res = kubectl.uncordon(identity.hostname)
            if res.failed:
                raise ActivationError(f"Failed to uncordon {identity.hostname}: {res.result.strip()}")
            logger.log_step("success", f"Node {identity.hostname} schedulable")

    return vip
