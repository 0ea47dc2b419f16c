from typing import Callable, List, Tuple

from hearth.core.errors import InstallerFailure, DuplicateJobError
from hearth.core.jobs import InstallerJobPool, JobState
from hearth.core.models import ClusterSpec, NodeIdentity
from hearth.core.settings import AppSettings
from hearth.tasks.discovery import ClusterResolver
from hearth.tasks.installers import Installer, build_installers
from hearth.utils.logger import logger

InstallerFactory = Callable[[AppSettings, ClusterSpec], List[Installer]]


def prepare_workflow(
        settings: AppSettings,
        resolver: ClusterResolver,
        pool: InstallerJobPool,
        installers_factory: InstallerFactory = build_installers,
) -> Tuple[ClusterSpec, NodeIdentity]:
    """
    One-time pre-reboot stage: resolve, materialize credentials, install.

    Resolution errors propagate immediately. Installer failures are collected
    after the join barrier and raised together as InstallerFailure.
    """

    with logger.workflow("Prepare Node"):

        # --- STEP 1: Identity & Cluster Spec ---
        with logger.task("1. Resolve Cluster Configuration"):
            identity = resolver.resolve_node_identity()
            logger.log_step("success", f"Node {identity.hostname} ({identity.address}) in {identity.region}")

            spec = resolver.resolve_cluster_spec()
            logger.log_step("success", f"Cluster {spec.internal_api} running Kubernetes {spec.kubernetes_version}")

        # --- STEP 2: Credentials ---
        with logger.task("2. Materialize Credentials"):
            for principal in settings.cloud.principals:
                bundle = resolver.fetch_credentials(principal, spec)
                logger.log_step("success", f"Kubeconfig written for '{principal}': {bundle.kubeconfig_path}")

            sa_path = resolver.fetch_service_account_config()
            logger.log_step("success", f"Service account config written: {sa_path}")

        # --- STEP 3: Parallel Installers (single join barrier) ---
        with logger.task("3. Run Installers"):
            installers = installers_factory(settings, spec)
            try:
                for installer in installers:
                    pool.submit(installer.name, installer)
            except DuplicateJobError:
                # Jobs already running must still finish before the abort
                pool.join_all()
                raise
            logger.log_step("info", f"{len(installers)} installer jobs submitted")

            for job in pool.join_all():
                if job.state == JobState.FAILED:
                    logger.log_step("error", f"{job.name}: {job.result.message}")
                else:
                    status = "skip" if job.result.status.value == "OK" else "success"
                    logger.log_step(status, f"{job.name}: {job.result.message}")

            failed = [job.name for job in pool.failed_jobs()]
            if failed:
                raise InstallerFailure(failed)

    return spec, identity
