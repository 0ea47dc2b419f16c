import os
import time
from typing import Callable, Optional

from rich.panel import Panel

from hearth.core.errors import HearthError
from hearth.core.jobs import InstallerJobPool
from hearth.core.models import PhaseState, CommandResult
from hearth.core.services import ServiceManager
from hearth.core.settings import AppSettings
from hearth.core.store import PhaseStore
from hearth.tasks.discovery import ClusterResolver, kubeconfig_path
from hearth.tasks.installers import build_installers
from hearth.utils.kube import Kubectl
from hearth.utils.logger import logger, sys_logger
from hearth.utils.supervisor import Nssm
from hearth.utils.system import request_reboot
from hearth.workflows.activate import activate_workflow, discover_node_vip
from hearth.workflows.prepare import prepare_workflow


class NodeProvisioner:
    """
    Phase state machine: Unconfigured -> Prepared -> Ready.

    The persisted phase is read once per run(). Each run executes at most one
    phase; a fatal error propagates as HearthError and leaves the phase untouched,
    so the next boot retries the same phase from its start.
    """

    def __init__(
            self,
            settings: AppSettings,
            store: Optional[PhaseStore] = None,
            resolver: Optional[ClusterResolver] = None,
            services: Optional[ServiceManager] = None,
            kubectl: Optional[Kubectl] = None,
            pool_factory: Optional[Callable[[], InstallerJobPool]] = None,
            installers_factory=build_installers,
            reboot: Callable[[], CommandResult] = request_reboot,
            sleep: Callable[[float], None] = time.sleep,
            discover_vip=None,
    ):
        paths = settings.paths
        self.settings = settings
        self.store = store or PhaseStore(paths.state_file)
        self._resolver = resolver
        self.services = services or ServiceManager(
            Nssm(os.path.join(paths.install_dir, "nssm.exe"), paths.log_root)
        )
        self.kubectl = kubectl or Kubectl(
            os.path.join(paths.install_dir, "kubectl.exe"),
            kubeconfig_path(paths.install_dir, "kubelet"),
        )
        self.pool_factory = pool_factory or (lambda: InstallerJobPool(settings.installers.max_parallel))
        self.installers_factory = installers_factory
        self.reboot = reboot
        self.sleep = sleep
        self.discover_vip = discover_vip

    @property
    def resolver(self) -> ClusterResolver:
        # Built lazily: only the prepare phase talks to the metadata endpoint
        if self._resolver is None:
            self._resolver = ClusterResolver(self.settings)
        return self._resolver

    def run(self) -> None:
        phase = self.store.read_phase()
        sys_logger.info(f"Boot with NODE_STATE='{phase.value or 'unset'}'")

        logger.console.print(Panel.fit(
            f"[bold white]Node phase:[/bold white] {phase.value or 'unset'}",
            border_style="blue"
        ))

        if phase == PhaseState.READY:
            logger.log_step("skip", "Node already provisioned, nothing to do")
            return

        if phase == PhaseState.UNCONFIGURED:
            self.prepare()
            return

        self.activate()

    def prepare(self) -> None:
        """
        Runs the prepare phase, commits NODE_STATE=prepared, then reboots.
        The phase is durable on disk before the reboot is requested.
        """
        spec, identity = prepare_workflow(
            self.settings, self.resolver, self.pool_factory(), self.installers_factory
        )

        self.store.save_parameters(spec, identity)
        self.store.advance(PhaseState.PREPARED)
        logger.log_step("success", "Phase 'prepared' committed, rebooting")

        res = self.reboot()
        if res.failed:
            raise HearthError(f"Reboot request failed: {res.result.strip()}")

    def _source_vip(self) -> Optional[str]:
        """
        Returns the source VIP persisted by an earlier activation, or discovers
        and persists a new one. A second allocation for the same container id is
        refused by host-local, so a retried activation must not ask again.
        """
        vip = self.store.read_source_vip()
        if vip:
            return vip

        discover = self.discover_vip or (lambda: discover_node_vip(self.settings))
        vip = discover()
        if vip:
            self.store.save_source_vip(vip)
        return vip

    def activate(self) -> None:
        """Runs the activate phase from persisted parameters, then commits NODE_STATE=ready."""
        spec, identity = self.store.load_parameters()

        activate_workflow(
            self.settings, spec, identity, self.services, self.kubectl,
            sleep=self.sleep, discover_vip=self._source_vip,
        )

        self.store.advance(PhaseState.READY)
        logger.log_step("success", f"Phase 'ready' committed for {identity.hostname}")
