from concurrent.futures import ThreadPoolExecutor, Future, wait
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from hearth.core.errors import DuplicateJobError
from hearth.core.models import TaskStatus, StandardResult
from hearth.utils.logger import sys_logger

UnitOfWork = Callable[[], StandardResult]


class JobState(str, Enum):
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass
class InstallerJob:
    """A named unit of installation work owned by the pool."""
    name: str
    future: Future

    @property
    def state(self) -> JobState:
        if not self.future.done():
            return JobState.RUNNING
        return JobState.FAILED if self.result.failed else JobState.SUCCEEDED

    @property
    def result(self) -> Optional[StandardResult]:
        if not self.future.done():
            return None
        return self.future.result()


def _run_job(name: str, work: UnitOfWork) -> StandardResult:
    """Runs one unit of work; a crash is converted into a FAILED result."""
    sys_logger.info(f"[JOB-START] '{name}'")
    try:
        result = work()
    except Exception as e:
        sys_logger.error(f"[JOB-CRASH] '{name}': {e}", exc_info=True)
        return StandardResult(status=TaskStatus.FAILED, message=f"System Error: {e}")

    if not isinstance(result, StandardResult):
        result = StandardResult(status=TaskStatus.OK, message=str(result), data=result)

    sys_logger.info(f"[JOB-END] '{name}' -> {result.status.value} ({result.message})")
    return result


class InstallerJobPool:
    """
    Launches named installation jobs concurrently and joins them at a single barrier.

    A failing job never cancels its siblings: every job runs to a terminal state
    before join_all() returns. Deciding whether a failure is fatal is up to the caller.
    """

    def __init__(self, max_workers: int = 5):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="installer")
        self._jobs: Dict[str, InstallerJob] = {}

    def submit(self, name: str, work: UnitOfWork) -> InstallerJob:
        if name in self._jobs:
            raise DuplicateJobError(f"Installer job '{name}' already submitted")

        future = self._executor.submit(_run_job, name, work)
        job = InstallerJob(name=name, future=future)
        self._jobs[name] = job
        return job

    @property
    def jobs(self) -> List[InstallerJob]:
        return list(self._jobs.values())

    def join_all(self, timeout: Optional[float] = None) -> List[InstallerJob]:
        """
        Blocks until every submitted job is terminal and returns them in submission order.
        """
        futures = [job.future for job in self._jobs.values()]
        _, not_done = wait(futures, timeout=timeout)
        if not_done:
            pending = [job.name for job in self._jobs.values() if not job.future.done()]
            raise TimeoutError(f"Installer jobs still running: {', '.join(pending)}")

        self._executor.shutdown(wait=True)
        return self.jobs

    def failed_jobs(self) -> List[InstallerJob]:
        return [job for job in self._jobs.values() if job.state == JobState.FAILED]
