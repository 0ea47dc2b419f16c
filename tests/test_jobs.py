import random
import threading
import time

import pytest

from hearth.core.errors import DuplicateJobError
from hearth.core.jobs import InstallerJobPool, JobState
from hearth.core.models import StandardResult, TaskStatus


def _work(delay, status=TaskStatus.CHANGED):
    def run():
        time.sleep(delay)
        return StandardResult(status, f"done after {delay:.3f}s")
    return run


def test_join_all_returns_every_job_terminal():
    pool = InstallerJobPool(max_workers=3)
    names = [f"job-{i}" for i in range(8)]
    for name in names:
        pool.submit(name, _work(random.uniform(0, 0.05)))

    jobs = pool.join_all(timeout=10)

    assert [job.name for job in jobs] == names
    assert all(job.state == JobState.SUCCEEDED for job in jobs)
    assert pool.failed_jobs() == []


def test_failed_job_does_not_cancel_siblings():
    pool = InstallerJobPool(max_workers=2)
    pool.submit("broken", lambda: StandardResult(TaskStatus.FAILED, "checksum mismatch"))
    pool.submit("slow", _work(0.1))

    jobs = {job.name: job for job in pool.join_all(timeout=10)}

    assert jobs["broken"].state == JobState.FAILED
    assert jobs["slow"].state == JobState.SUCCEEDED
    assert [job.name for job in pool.failed_jobs()] == ["broken"]


def test_crashing_job_is_reported_failed():
    def crash():
        raise ConnectionError("download interrupted")

    pool = InstallerJobPool()
    pool.submit("crash", crash)
    job = pool.join_all(timeout=10)[0]

    assert job.state == JobState.FAILED
    assert "download interrupted" in job.result.message


def test_non_result_return_value_counts_as_success():
    pool = InstallerJobPool()
    pool.submit("plain", lambda: "ok")
    job = pool.join_all(timeout=10)[0]

    assert job.state == JobState.SUCCEEDED
    assert job.result.status == TaskStatus.OK


def test_job_is_running_until_its_work_returns():
    gate = threading.Event()
    pool = InstallerJobPool()
    job = pool.submit("blocked", lambda: gate.wait(5) and StandardResult(TaskStatus.OK, "released"))

    assert job.state == JobState.RUNNING
    assert job.result is None

    gate.set()
    pool.join_all(timeout=10)
    assert job.state == JobState.SUCCEEDED


def test_duplicate_job_name_is_rejected():
    pool = InstallerJobPool()
    pool.submit("agent-binaries", _work(0))
    with pytest.raises(DuplicateJobError):
        pool.submit("agent-binaries", _work(0))
    pool.join_all(timeout=10)
