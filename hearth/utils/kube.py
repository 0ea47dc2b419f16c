from hearth.core.models import CommandResult
from hearth.utils.system import run_command


class Kubectl:
    """kubectl invocations used by the activate phase."""

    def __init__(self, executable: str, kubeconfig: str):
        self.executable = executable
        self.kubeconfig = kubeconfig

    def _run(self, *args: str) -> CommandResult:
        return run_command([self.executable, "--kubeconfig", self.kubeconfig, *args])

    def can_list_nodes(self) -> bool:
        """Connectivity probe: the API server answers with these credentials."""
        return not self._run("get", "nodes").failed

    def uncordon(self, node_name: str) -> CommandResult:
        return self._run("uncordon", node_name)
