import time
from typing import Callable

from hearth.utils.logger import sys_logger


def wait_until(
        probe: Callable[[], bool],
        interval: float,
        description: str = "condition",
        sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Blocks until probe() returns True, sleeping `interval` seconds between attempts.

    There is no deadline, no backoff and no jitter: a probe that never succeeds
    blocks forever and recovery is left to the infrastructure (instance reboot).
    A probe failure carries no information beyond False.

    Returns:
        int: the number of failed attempts (sleeps) before success.
    """
    attempts = 0
    while not probe():
        attempts += 1
        sys_logger.info(f"Waiting for {description} (attempt {attempts}, retry in {interval}s)")
        sleep(interval)

    sys_logger.info(f"Gate passed: {description} after {attempts} retries")
    return attempts
