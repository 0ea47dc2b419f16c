import os
from typing import Dict, List

from hearth.core.models import CommandResult
from hearth.utils.system import run_command


class Nssm:
    """
    Thin wrapper over the NSSM service manager CLI.
    Every call returns the raw CommandResult; interpretation is up to the caller.
    """

    def __init__(self, executable: str, log_root: str):
        self.executable = executable
        self.log_root = log_root

    def _run(self, *args: str) -> CommandResult:
        return run_command([self.executable, *args])

    def exists(self, name: str) -> bool:
        """NSSM 'status' fails when the service is not installed."""
        return not self._run("status", name).failed

    def status(self, name: str) -> str:
        res = self._run("status", name)
        return res.stdout.strip() if not res.failed else "NOT_INSTALLED"

    def install(self, name: str, executable: str) -> CommandResult:
        """Installs the service, or repoints an existing one at the executable."""
        if self.exists(name):
            return self._run("set", name, "Application", executable)
        return self._run("install", name, executable)

    def set_dependencies(self, name: str, depends_on: List[str]) -> CommandResult:
        if not depends_on:
            return self._run("reset", name, "DependOnService")
        return self._run("set", name, "DependOnService", *depends_on)

    def set_environment(self, name: str, env: Dict[str, str]) -> CommandResult:
        # AppEnvironmentExtra replaces the whole list: always send every entry
        pairs = [f"{k}={v}" for k, v in env.items()]
        return self._run("set", name, "AppEnvironmentExtra", *pairs)

    def set_parameters(self, name: str, parameters: str) -> CommandResult:
        return self._run("set", name, "AppParameters", parameters)

    def set_stderr(self, name: str) -> CommandResult:
        return self._run("set", name, "AppStderr", self.log_path(name))

    def log_path(self, name: str) -> str:
        return os.path.join(self.log_root, f"{name}.log")

    def start(self, name: str) -> CommandResult:
        return self._run("start", name)

    def stop(self, name: str) -> CommandResult:
        return self._run("stop", name)
