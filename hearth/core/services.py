from typing import Dict, Iterable, List, Sequence, Set, Tuple

from hearth.core.errors import SequencingError, ActivationError
from hearth.core.models import ServiceDefinition, ServiceState
from hearth.utils.logger import sys_logger

StartupPlan = Sequence[Tuple[str, Set[str]]]

# Supervisor statuses of a service that is not running
IDLE_STATUSES = ("SERVICE_STOPPED", "NOT_INSTALLED")


def flatten_args(args: Dict[str, str]) -> str:
    """
    Flattens an argument map into '--key=value' tokens joined by single spaces,
    following the map's insertion order.
    """
    return " ".join(f"--{key}={value}" for key, value in args.items())


def validate_startup_plan(plan: StartupPlan) -> List[str]:
    """
    Checks an ordered list of (service, prerequisites) pairs:
    every prerequisite must be an earlier entry. Returns the start order.
    """
    seen: List[str] = []
    for name, prerequisites in plan:
        if name in seen:
            raise SequencingError(f"Service '{name}' appears twice in the startup plan")
        missing = sorted(p for p in prerequisites if p not in seen)
        if missing:
            raise SequencingError(f"Service '{name}' is planned before its prerequisites: {', '.join(missing)}")
        seen.append(name)
    return seen


class ServiceManager:
    """
    Registers agent processes with the supervisor and starts them one by one.

    Per service: Registered -> Configured -> Started. Start order is driven by
    the caller; dependency metadata handed to the supervisor is declarative only.
    """

    def __init__(self, supervisor):
        self.supervisor = supervisor
        self._definitions: Dict[str, ServiceDefinition] = {}
        self._states: Dict[str, ServiceState] = {}
        self._reconfigured: Set[str] = set()

    # --- QUERIES ---

    def state(self, name: str) -> ServiceState:
        self._require(name)
        return self._states[name]

    def definition(self, name: str) -> ServiceDefinition:
        self._require(name)
        return self._definitions[name]

    def _require(self, name: str) -> None:
        if name not in self._definitions:
            raise SequencingError(f"Service '{name}' is not registered")

    def _require_not_started(self, name: str, action: str) -> None:
        self._require(name)
        if self._states[name] == ServiceState.STARTED:
            raise SequencingError(f"Cannot {action} '{name}': service already started")

    def _check(self, res, what: str) -> None:
        if res.failed:
            raise ActivationError(f"Supervisor failed to {what}: {res.result.strip()}")

    # --- LIFECYCLE ---

    def stop_running(self, names: Sequence[str]) -> List[str]:
        """
        Stops services left running (auto-started) by an earlier boot, in the
        given order, dependents first. Returns the names that were stopped.
        """
        stopped = []
        for name in names:
            if self._states.get(name) == ServiceState.STARTED:
                raise SequencingError(f"Cannot stop '{name}': started by this activation")
            if self.supervisor.status(name) in IDLE_STATUSES:
                continue
            self._check(self.supervisor.stop(name), f"stop '{name}'")
            stopped.append(name)
            sys_logger.info(f"Service stopped: {name}")
        return stopped

    def register(self, definition: ServiceDefinition) -> None:
        """
        Installs the service with the supervisor and applies whatever the
        definition already carries (dependencies, environment, arguments).
        """
        name = definition.name
        self._check(self.supervisor.install(name, definition.executable), f"install '{name}'")
        self._check(self.supervisor.set_stderr(name), f"redirect stderr of '{name}'")

        self._definitions[name] = ServiceDefinition(name=name, executable=definition.executable)
        self._states[name] = ServiceState.REGISTERED
        self._reconfigured.discard(name)
        sys_logger.info(f"Service registered: {name} -> {definition.executable}")

        if definition.dependencies:
            self.set_dependencies(name, definition.dependencies)
        for key, value in definition.env.items():
            self.set_env(name, key, value)
        if definition.args or definition.pending_args:
            self.set_args(name, definition.args, pending=definition.pending_args)

    def set_dependencies(self, name: str, depends_on: Iterable[str]) -> None:
        self._require_not_started(name, "set dependencies of")
        deps = list(depends_on)
        self._check(self.supervisor.set_dependencies(name, deps), f"set dependencies of '{name}'")
        self._definitions[name].dependencies = deps
        self._states[name] = ServiceState.CONFIGURED

    def set_env(self, name: str, key: str, value: str) -> None:
        self._require_not_started(name, "set environment of")
        env = self._definitions[name].env
        env[key] = value
        self._check(self.supervisor.set_environment(name, env), f"set environment of '{name}'")
        self._states[name] = ServiceState.CONFIGURED

    def set_args(self, name: str, args: Dict[str, str], pending: Iterable[str] = ()) -> None:
        """
        Replaces the argument map. Names in `pending` are declared but not yet
        assignable; they must be resolved through reconfigure_args() before start().
        """
        self._require_not_started(name, "set arguments of")
        definition = self._definitions[name]
        definition.args = dict(args)
        definition.pending_args = [p for p in pending if p not in args]
        self._push_args(definition)
        self._states[name] = ServiceState.CONFIGURED

    def reconfigure_args(self, name: str, updates: Dict[str, str]) -> None:
        """
        Updates arguments of a Configured, not-yet-Started service. Allowed exactly once.
        """
        self._require_not_started(name, "reconfigure")
        if self._states[name] != ServiceState.CONFIGURED:
            raise SequencingError(f"Cannot reconfigure '{name}': service is not configured yet")
        if name in self._reconfigured:
            raise SequencingError(f"Service '{name}' was already reconfigured once")

        definition = self._definitions[name]
        definition.args.update(updates)
        definition.pending_args = [p for p in definition.pending_args if p not in updates]
        self._push_args(definition)
        self._reconfigured.add(name)
        sys_logger.info(f"Service reconfigured: {name} ({', '.join(updates)})")

    def _push_args(self, definition: ServiceDefinition) -> None:
        self._check(
            self.supervisor.set_parameters(definition.name, flatten_args(definition.args)),
            f"set arguments of '{definition.name}'"
        )

    def start(self, name: str) -> None:
        """
        Starts a service. Rejects (never reorders) a start whose dependencies
        are not Started yet or whose arguments are still pending.
        """
        self._require(name)
        definition = self._definitions[name]

        if self._states[name] == ServiceState.STARTED:
            return
        if self._states[name] != ServiceState.CONFIGURED:
            raise SequencingError(f"Cannot start '{name}': service is not configured yet")

        not_started = [d for d in definition.dependencies if self._states.get(d) != ServiceState.STARTED]
        if not_started:
            raise SequencingError(
                f"Cannot start '{name}' before its dependencies: {', '.join(not_started)}"
            )
        if definition.pending_args:
            raise SequencingError(
                f"Cannot start '{name}': arguments not resolved yet: {', '.join(definition.pending_args)}"
            )

        self._check(self.supervisor.start(name), f"start '{name}'")

        self._states[name] = ServiceState.STARTED
        sys_logger.info(f"Service started: {name}")
