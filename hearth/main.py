import json
from pathlib import Path

import typer
from rich import print as rprint
from rich.panel import Panel
from rich.table import Table

from hearth import __version__
from hearth.core.engine import NodeProvisioner
from hearth.core.errors import HearthError
from hearth.core.settings import load_settings
from hearth.core.state import config as global_config
from hearth.core.store import PhaseStore, PHASE_KEY
from hearth.tasks.network import build_backend_config, build_delegate_config
from hearth.utils.logger import configure_file_logging, sys_logger

app = typer.Typer(
    help="Hearth - Windows worker node bootstrapper",
    add_completion=False,
    no_args_is_help=True
)


@app.callback()
def main(
        ctx: typer.Context,
        quiet: bool = typer.Option(
            False, "--quiet", "-q",
            help="Disable detailed sub-step output (Silent Mode)."
        ),
        config_file: Path = typer.Option(
            "hearth.yaml", "--config", "-c",
            help="Path to the configuration YAML file (optional).",
            dir_okay=False
        )
):
    """
    Hearth CLI. Common entry point for all commands.
    """
    global_config.VERBOSE = not quiet
    global_config.CONFIG_FILE = str(config_file)


def _settings():
    try:
        return load_settings(global_config.CONFIG_FILE)
    except ValueError as e:
        rprint(f"[bold red]❌ Configuration error:[/bold red] {e}")
        raise typer.Exit(code=2)


@app.command()
def run():
    """
    [Idempotent] Advances the node by one provisioning phase. Meant to run at every boot.
    """
    settings = _settings()
    global_config.LOG_FILE = str(configure_file_logging(settings.paths.log_root))

    rprint(Panel.fit(
        "[bold white]Hearth Node Bootstrapper[/bold white]",
        border_style="blue",
        subtitle=f"v{__version__}" + (" (Quiet Mode)" if not global_config.VERBOSE else " (Verbose Mode)")
    ))

    try:
        NodeProvisioner(settings).run()
    except HearthError as e:
        sys_logger.error(f"Provisioning aborted: {e}", exc_info=True)
        rprint(f"\n[bold red]⛔ Provisioning aborted:[/bold red] {e}")
        rprint(f"[dim]Details in {global_config.LOG_FILE}[/dim]")
        raise typer.Exit(code=1)


@app.command()
def status():
    """
    Shows the persisted phase and cluster parameters.
    """
    settings = _settings()
    try:
        data = PhaseStore(settings.paths.state_file).read_all()
    except HearthError as e:
        rprint(f"[bold red]❌ {e}[/bold red]")
        raise typer.Exit(code=1)

    table = Table(title=f"State ({settings.paths.state_file})")
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    table.add_row(PHASE_KEY, data.pop(PHASE_KEY, "unset"))
    for key in sorted(data):
        table.add_row(key, data[key])
    rprint(table)


@app.command(name="render-network")
def render_network():
    """
    Prints the network documents for the persisted parameters without writing them.
    """
    settings = _settings()
    store = PhaseStore(settings.paths.state_file)
    try:
        spec, _ = store.load_parameters()
    except HearthError as e:
        rprint(f"[bold red]❌ {e}[/bold red]")
        raise typer.Exit(code=1)

    network = settings.network
    backend = build_backend_config(spec.pod_cidr, network.network_name, network.backend_type)
    delegate = build_delegate_config(
        spec.pod_cidr, spec.service_cidr, spec.dns_servers, spec.dns_suffix,
        network.network_name, network.cni_version,
    )

    typer.echo(f"# {settings.paths.backend_config_path}")
    typer.echo(json.dumps(backend, indent=2))
    typer.echo(f"# {settings.paths.delegate_config_path}")
    typer.echo(json.dumps(delegate, indent=2))


if __name__ == "__main__":
    app()
