import os
import zipfile
from pathlib import Path
from typing import List

from hearth.core.decorators import automated_step
from hearth.core.models import TaskStatus, StandardResult, ClusterSpec
from hearth.core.settings import AppSettings
from hearth.utils.system import run_command, download_file, extract_members, files_present, write_file

# wusa.exe exit codes
WUSA_REBOOT_REQUIRED = 3010
WUSA_ALREADY_INSTALLED = 2359302

AGENT_BINARIES = ["kubelet.exe", "kube-proxy.exe", "kubectl.exe"]
CNI_BINARIES = ["flannel.exe", "win-overlay.exe", "host-local.exe"]


class Installer:
    """
    One download-and-install unit of work run by the job pool.
    install() must be safe to run twice: present artifacts are detected and skipped.
    """

    def __init__(self, name: str):
        self.name = name

    def install(self) -> StandardResult:
        raise NotImplementedError

    def __call__(self) -> StandardResult:
        return self.install()

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.name}>"


class PatchInstaller(Installer):
    """Installs a Windows update package (.msu) with wusa."""

    def __init__(self, patch_id: str, url: str, cache_dir: str):
        super().__init__(f"patch-{patch_id}")
        self.patch_id = patch_id
        self.url = url
        self.cache_dir = cache_dir

    @automated_step("Install Windows Patch")
    def install(self) -> StandardResult:
        package = download_file(self.url, Path(self.cache_dir) / f"{self.patch_id}.msu")

        res = run_command(["wusa.exe", str(package), "/quiet", "/norestart"])

        if res.returncode == WUSA_ALREADY_INSTALLED:
            return StandardResult(TaskStatus.OK, f"{self.patch_id} already installed")
        if res.returncode in (0, WUSA_REBOOT_REQUIRED):
            return StandardResult(TaskStatus.CHANGED, f"{self.patch_id} installed (reboot pending)")
        return StandardResult(TaskStatus.FAILED, f"wusa exited with {res.returncode} for {self.patch_id}")


class RuntimeImagePuller(Installer):
    """Pulls the container base images for the OS build and builds the pause image."""

    def __init__(self, images: List[str], os_build: str, pause_image: str, build_dir: str):
        super().__init__("runtime-images")
        self.images = [image.format(os_build=os_build) for image in images]
        self.os_build = os_build
        self.pause_image = pause_image
        self.build_dir = build_dir

    def _pause_dockerfile(self) -> str:
        return (
            f"FROM {self.images[0]}\n"
            "CMD cmd /c ping -t localhost\n"
        )

    @automated_step("Pull Runtime Images")
    def install(self) -> StandardResult:
        # 1. Pull and tag base images
        for image in self.images:
            res = run_command(["docker", "pull", image])
            if res.failed:
                return StandardResult(TaskStatus.FAILED, f"Failed to pull {image}: {res.result.strip()}")

            repository = image.rsplit(":", 1)[0]
            res = run_command(["docker", "tag", image, f"{repository}:latest"])
            if res.failed:
                return StandardResult(TaskStatus.FAILED, f"Failed to tag {image}")

        # 2. Pause image (built locally once)
        if not run_command(["docker", "image", "inspect", self.pause_image]).failed:
            return StandardResult(TaskStatus.OK, f"Pulled {len(self.images)} images, pause image present")

        write_file(os.path.join(self.build_dir, "Dockerfile"), self._pause_dockerfile())
        res = run_command(["docker", "build", "-t", self.pause_image, self.build_dir])
        if res.failed:
            return StandardResult(TaskStatus.FAILED, f"Failed to build {self.pause_image}: {res.result.strip()}")

        return StandardResult(TaskStatus.CHANGED, f"Pulled {len(self.images)} images, built {self.pause_image}")


class AgentBinaryFetcher(Installer):
    """Fetches kubelet, kube-proxy and kubectl of the cluster version."""

    def __init__(self, release_url: str, version: str, install_dir: str, cache_dir: str):
        super().__init__("agent-binaries")
        self.url = f"{release_url.rstrip('/')}/{version}/kubernetes-node-windows-amd64.tar.gz"
        self.version = version
        self.install_dir = install_dir
        self.cache_dir = cache_dir

    @automated_step("Fetch Agent Binaries")
    def install(self) -> StandardResult:
        if files_present(self.install_dir, AGENT_BINARIES):
            return StandardResult(TaskStatus.OK, f"Agent binaries already present in {self.install_dir}")

        archive = download_file(self.url, Path(self.cache_dir) / f"kubernetes-node-{self.version}.tar.gz")
        extract_members(archive, AGENT_BINARIES, self.install_dir)
        return StandardResult(TaskStatus.CHANGED, f"Kubernetes {self.version} node binaries installed")


class NetworkPluginFetcher(Installer):
    """Fetches flanneld and the CNI plugins it delegates to."""

    def __init__(self, flanneld_url: str, cni_plugins_url: str, install_dir: str, cni_bin_dir: str, cache_dir: str):
        super().__init__("network-plugins")
        self.flanneld_url = flanneld_url
        self.cni_plugins_url = cni_plugins_url
        self.install_dir = install_dir
        self.cni_bin_dir = cni_bin_dir
        self.cache_dir = cache_dir

    @automated_step("Fetch Network Plugins")
    def install(self) -> StandardResult:
        has_flanneld = files_present(self.install_dir, ["flanneld.exe"])
        has_plugins = files_present(self.cni_bin_dir, CNI_BINARIES)
        if has_flanneld and has_plugins:
            return StandardResult(TaskStatus.OK, "flanneld and CNI plugins already present")

        if not has_flanneld:
            download_file(self.flanneld_url, Path(self.install_dir) / "flanneld.exe")

        if not has_plugins:
            archive_name = self.cni_plugins_url.rsplit("/", 1)[-1]
            archive = download_file(self.cni_plugins_url, Path(self.cache_dir) / archive_name)
            extract_members(archive, CNI_BINARIES, self.cni_bin_dir)

        return StandardResult(TaskStatus.CHANGED, "flanneld and CNI plugins installed")


class SupervisorFetcher(Installer):
    """Fetches the NSSM service manager."""

    def __init__(self, url: str, install_dir: str, cache_dir: str):
        super().__init__("supervisor")
        self.url = url
        self.install_dir = install_dir
        self.cache_dir = cache_dir

    @automated_step("Fetch Supervisor")
    def install(self) -> StandardResult:
        if files_present(self.install_dir, ["nssm.exe"]):
            return StandardResult(TaskStatus.OK, "nssm already present")

        archive = download_file(self.url, Path(self.cache_dir) / self.url.rsplit("/", 1)[-1])
        # The archive ships win32 and win64 builds; only the 64-bit one is kept
        _extract_win64(archive, self.install_dir)
        return StandardResult(TaskStatus.CHANGED, "nssm installed")


def _extract_win64(archive: Path, install_dir: str) -> None:
    with zipfile.ZipFile(archive) as zf:
        member = next((m for m in zf.namelist() if m.endswith("win64/nssm.exe")), None)
        if member is None:
            raise FileNotFoundError(f"win64/nssm.exe not found in {archive.name}")
        Path(install_dir).mkdir(parents=True, exist_ok=True)
        with zf.open(member) as src, open(Path(install_dir) / "nssm.exe", "wb") as out:
            out.write(src.read())


def build_installers(settings: AppSettings, spec: ClusterSpec) -> List[Installer]:
    """
    Every unit of work of the prepare phase: one job per patch, plus the four fetchers.
    """
    paths = settings.paths
    conf = settings.installers

    installers: List[Installer] = [
        PatchInstaller(patch["id"], patch["url"], paths.cache_dir) for patch in conf.patches
    ]
    installers += [
        RuntimeImagePuller(conf.base_images, conf.os_build, conf.pause_image, os.path.join(paths.cache_dir, "pause")),
        AgentBinaryFetcher(conf.kubernetes_release_url, spec.kubernetes_version, paths.install_dir, paths.cache_dir),
        NetworkPluginFetcher(conf.flanneld_url, conf.cni_plugins_url, paths.install_dir, paths.cni_bin_dir,
                             paths.cache_dir),
        SupervisorFetcher(conf.nssm_url, paths.install_dir, paths.cache_dir),
    ]
    return installers

