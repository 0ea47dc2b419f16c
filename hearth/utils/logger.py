import logging
from pathlib import Path

from rich.console import Console
from rich.theme import Theme

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)s | %(message)s"

# File logger: full trace of every step, independent of console verbosity
sys_logger = logging.getLogger("hearth")
sys_logger.setLevel(logging.DEBUG)
sys_logger.addHandler(logging.NullHandler())


def configure_file_logging(log_dir: str, filename: str = "hearth.log") -> Path:
    """
    Attaches a file handler to the 'hearth' logger.
    Calling it again replaces the previous file handler.
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / filename

    for handler in list(sys_logger.handlers):
        if isinstance(handler, logging.FileHandler):
            sys_logger.removeHandler(handler)
            handler.close()

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    sys_logger.addHandler(fh)
    return log_path


class HearthLogger:
    def __init__(self):
        # 1. Custom color theme
        self.custom_theme = Theme({
            "success": "bold green",
            "error": "bold red",
            "skip": "bold cyan",
            "warning": "bold yellow",
            "info": "dim white"
        })
        self.console = Console(theme=self.custom_theme)

        # Current nesting depth (indentation)
        self.indent_level = 0

    def log_step(self, status: str, msg: str):
        """
        Prints one line for the current step, indented and prefixed by an icon.
        The same message goes to the file logger.
        """
        icons = {
            "success": "✅",
            "error": "❌",
            "skip": "🔵",
            "warning": "🔶",
            "info": "ℹ️"
        }
        icon = icons.get(status, "•")
        indent = "   " * self.indent_level

        self.console.print(f"{indent}{icon} [{status}]{msg}[/{status}]")

        level = {"error": logging.ERROR, "warning": logging.WARNING}.get(status, logging.INFO)
        sys_logger.log(level, msg)

    def workflow(self, name: str):
        """Returns the context manager for a Workflow (top level)."""
        return self._Context(self, name, type="workflow")

    def task(self, name: str):
        """Returns the context manager for a Task (nested level)."""
        return self._Context(self, name, type="task")

    class _Context:
        def __init__(self, logger, name, type):
            self.logger = logger
            self.name = name
            self.type = type

        def __enter__(self):
            indent = "   " * self.logger.indent_level

            if self.type == "workflow":
                self.logger.console.print(f"\n{indent}🚀 [bold blue]Workflow: {self.name}[/bold blue]")
            else:
                self.logger.console.print(f"{indent}🔸 [bold white]Task: {self.name}[/bold white]")
            sys_logger.info(f"[{self.type.upper()}] {self.name}")

            self.logger.indent_level += 1
            return self

        def __exit__(self, exc_type, exc_value, traceback):
            self.logger.indent_level -= 1

            # An unhandled exception inside the block: log it and let it propagate
            if exc_type:
                self.logger.log_step("error", f"Interrupted by error: {exc_value}")
                return False


logger = HearthLogger()
