import threading
from functools import wraps

from rich.console import Console

from hearth.core.models import TaskStatus, StandardResult, SubTaskResult
from hearth.core.state import config as global_config
from hearth.utils.logger import sys_logger

console = Console()


def automated_step(step_name: str):
    """
    Decorator that makes provisioning steps robust.
    1. Logs start and end to file.
    2. Catches unexpected exceptions (Crash Prevention).
    3. Ensures the return value is a StandardResult.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs) -> StandardResult:
            sys_logger.info(f"START step='{step_name}'")

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                # CATCH-ALL: a crash becomes a managed failure
                error_msg = f"CRITICAL EXCEPTION in '{step_name}': {str(e)}"
                sys_logger.error(error_msg, exc_info=True)
                return StandardResult(status=TaskStatus.FAILED, message=f"System Error: {str(e)}")

            if not isinstance(result, StandardResult):
                result = StandardResult(status=TaskStatus.OK, message=str(result), data=result)

            sys_logger.info(f"END step='{step_name}' status='{result.status.value}' ({result.message})")
            return result

        return wrapper

    return decorator


def automated_substep(step_name: str):
    """
    Decorator for internal sub-steps.
    In VERBOSE mode, uses a spinner that transforms into the final result.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs) -> SubTaskResult:
            sys_logger.info(f"[SUB-START] '{step_name}'")

            result = None
            error_to_raise = None

            # --- EXECUTION ---
            try:
                # Live displays are single-instance: no spinner inside job pool threads
                if global_config.VERBOSE and threading.current_thread() is threading.main_thread():
                    with console.status(f"    [dim]🔹 {step_name}...[/dim]", spinner="dots"):
                        result = func(*args, **kwargs)
                else:
                    result = func(*args, **kwargs)
            except Exception as e:
                error_to_raise = e

            # Case 1: CRASH (Exception)
            if error_to_raise:
                error_msg = f"Exception in '{step_name}': {str(error_to_raise)}"
                sys_logger.error(f"[SUB-CRASH] {error_msg}", exc_info=error_to_raise)

                if global_config.VERBOSE:
                    console.print(f"    [bold red]💥 CRASH {step_name}[/bold red]: {str(error_to_raise)}")

                return SubTaskResult(success=False, message=error_msg, exception=error_to_raise)

            # Case 2: EXECUTION COMPLETED (Logical Success or Fail)
            status_log = "OK" if result.success else "FAIL"
            log_msg = f"[SUB-END] '{step_name}' -> {status_log} ({result.message})"

            if result.success:
                sys_logger.info(log_msg)
                if global_config.VERBOSE:
                    console.print(f"    [green]✔[/green] [dim]{step_name}[/dim]")
            else:
                sys_logger.warning(log_msg)
                if global_config.VERBOSE:
                    console.print(f"    [red]✖ {step_name}[/red]: [dim]{result.message}[/dim]")

            return result

        return wrapper

    return decorator
