"""
Main CLI application using Typer.
"""

from __future__ import annotations

import json
import os
import sys
import threading
from pathlib import Path
from typing import Any, Optional

import questionary
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner

from ovalaunch.cli.formatters import format_instance, format_interfaces, format_probe_result
from ovalaunch.core.cancel import CancelToken
from ovalaunch.core.config import AppConfig, BringUpConfig, load_config_file, split_config
from ovalaunch.core.detector import VBOXMANAGE, SystemDetector, SystemInfo
from ovalaunch.core.errors import ExecutionError, NetworkEnumerationError, ToolNotFoundError
from ovalaunch.core.executor import CommandExecutor
from ovalaunch.modules.ping import ProbeOutcome, ReachabilityProbe
from ovalaunch.modules.provisioning import ProvisioningClient
from ovalaunch.orchestration.instance import ApplianceReference, VMState
from ovalaunch.orchestration.orchestrator import Orchestrator
from ovalaunch.storage.logger import add_run_log, register_secret, setup_logging
from ovalaunch.utils.network import is_ipv4
from ovalaunch.utils.network_info import NetworkInspector

app = typer.Typer(
    name="ovalaunch",
    help="Bring a VirtualBox appliance up to a provisioned, reachable VM",
    add_completion=False,
)

console = Console()

OUTPUT_DIR_OPTION = typer.Option(None, "--output", "-o", help="Output directory for logs and run metadata")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable verbose output")
FORMAT_OPTION = typer.Option("rich", "--format", "-f", help="Output format: 'rich' (default) or 'json'")

PASSWORD_ENV = "OVALAUNCH_NEW_PASSWORD"


def _init_context(
    output_dir: Optional[Path],
    verbose: bool,
    overrides: Optional[dict[str, Any]] = None,
):
    """
    Initialize shared objects: app config, bring-up config, logger and system info.
    Uses optional config file (~/.ovalaunch.yaml or ./.ovalaunch.yaml) for defaults when CLI does not set values.
    """
    try:
        file_app, file_bring_up = split_config(load_config_file())
    except (OSError, ValueError) as e:
        console.print(f"[bold red]✗ Could not read config file:[/bold red] {e}")
        raise typer.Exit(1)

    resolved_output = output_dir if output_dir is not None else file_app.get("output_dir") or Path("output")
    resolved_verbose = verbose or bool(file_app.get("verbose", False))
    config = AppConfig(output_dir=resolved_output, verbose=resolved_verbose)
    logger = setup_logging(config.output_dir, resolved_verbose)

    settings = dict(file_bring_up)
    settings.update({k: v for k, v in (overrides or {}).items() if v is not None})
    try:
        bring_up_config = BringUpConfig(**settings)
    except ValidationError as e:
        console.print(f"[bold red]✗ Invalid configuration:[/bold red]\n{e}")
        raise typer.Exit(1)

    system_info = SystemDetector().detect_system()
    return config, bring_up_config, logger, system_info


def _resolve_vboxmanage(bring_up_config: BringUpConfig, system_info: SystemInfo) -> BringUpConfig:
    """Fill in the VBoxManage path from the host when the config does not name one."""
    if bring_up_config.vboxmanage_path is not None:
        return bring_up_config
    try:
        path = SystemDetector().resolve_tool(VBOXMANAGE, system_info.os_type, dict(os.environ))
    except ToolNotFoundError as e:
        console.print(f"[bold red]✗ {e}[/bold red]")
        console.print("[dim]Install VirtualBox or set OVALAUNCH_VBOXMANAGE_PATH.[/dim]")
        raise typer.Exit(1)
    return bring_up_config.model_copy(update={"vboxmanage_path": path})


def _build_orchestrator(
    bring_up_config: BringUpConfig,
    system_info: SystemInfo,
    logger,
    cancel: Optional[CancelToken] = None,
) -> Orchestrator:
    bring_up_config = _resolve_vboxmanage(bring_up_config, system_info)
    return Orchestrator(
        bring_up_config,
        CommandExecutor(logger),
        NetworkInspector(),
        ReachabilityProbe(privileged=system_info.privileged),
        ProvisioningClient(timeout=bring_up_config.request_timeout),
        cancel=cancel,
    )


def _read_password(from_stdin: bool) -> Optional[str]:
    """
    Read the new VM password without it ever appearing in the process list.

    Sources, in order: stdin when asked for, the environment, an interactive prompt.
    """
    if from_stdin:
        return sys.stdin.readline().rstrip("\r\n")
    if os.environ.get(PASSWORD_ENV):
        return os.environ[PASSWORD_ENV]
    return questionary.password("New VM password:").ask()


def _print_json(payload: Any) -> None:
    console.print(json.dumps(payload, indent=2))


@app.callback(invoke_without_command=True)
def _default(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
    ),
):
    """
    ovalaunch - import, network, boot and provision a local VirtualBox VM.
    """
    if version:
        from ovalaunch import __version__
        console.print(f"ovalaunch {__version__}")
        raise typer.Exit(0)
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def up(
    appliance: Path = typer.Argument(..., exists=True, dir_okay=False, help="Path to the appliance image (.ova)"),
    password_stdin: bool = typer.Option(
        False,
        "--password-stdin",
        help=f"Read the new VM password from stdin (otherwise ${PASSWORD_ENV}, then a prompt)",
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Seconds to wait for the VM to answer pings"),
    poll_interval: Optional[float] = typer.Option(None, "--poll-interval", help="Seconds between pings"),
    name_prefix: Optional[str] = typer.Option(None, "--name-prefix", help="Prefix for the generated VM name"),
    vboxmanage: Optional[Path] = typer.Option(None, "--vboxmanage", help="Path to the VBoxManage executable"),
    keep_on_failure: bool = typer.Option(False, "--keep-on-failure", help="Do not delete the VM if bring-up fails"),
    output_dir: Optional[Path] = OUTPUT_DIR_OPTION,
    verbose: bool = VERBOSE_OPTION,
    output_format: str = FORMAT_OPTION,
):
    """
    Import an appliance and bring it up to a provisioned, reachable VM.
    """
    overrides = {
        "reachability_timeout": timeout,
        "poll_interval": poll_interval,
        "vm_name_prefix": name_prefix,
        "vboxmanage_path": vboxmanage,
        "teardown_on_failure": False if keep_on_failure else None,
    }
    config, bring_up_config, logger, system_info = _init_context(output_dir, verbose, overrides)

    password = _read_password(password_stdin)
    if not password:
        logger.warning("No password given; aborting")
        raise typer.Exit(1)
    register_secret(password)

    cancel = CancelToken()
    orchestrator = _build_orchestrator(bring_up_config, system_info, logger, cancel)
    instance = orchestrator.new_instance()
    run_dir = config.create_run_dir(instance.name)
    logger.info(f"Created run directory: {run_dir}")
    run_log = add_run_log(run_dir)

    console.print(f"\n[bold cyan]Bringing up {instance.name} from {appliance.name}...[/bold cyan]\n")
    worker = threading.Thread(
        target=orchestrator.bring_up,
        args=(ApplianceReference(appliance), password, instance),
    )
    worker.start()
    try:
        with Live(Spinner("dots"), console=console, refresh_per_second=8) as live:
            while worker.is_alive():
                live.update(Spinner("dots", text=f"[dim]{instance.state.value}…[/dim]"))
                worker.join(timeout=0.1)
    except KeyboardInterrupt:
        console.print("[yellow]Cancelling bring-up…[/yellow]")
        cancel.cancel()
        worker.join()

    if output_format == "json":
        _print_json(instance.to_dict())
    else:
        format_instance(instance, console)

    config.save_metadata(
        run_dir,
        {
            "appliance": str(appliance),
            "instance": instance.to_dict(),
            "system_info": system_info.model_dump(mode="json"),
        },
    )
    logger.remove(run_log)

    if instance.state is VMState.FAILED:
        raise typer.Exit(1)


@app.command()
def destroy(
    name: str = typer.Argument(..., help="Name of the VM to power off and delete"),
    output_dir: Optional[Path] = OUTPUT_DIR_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """
    Power off and delete a VM created by `ovalaunch up`.
    """
    _config, bring_up_config, logger, system_info = _init_context(output_dir, verbose)
    orchestrator = _build_orchestrator(bring_up_config, system_info, logger)
    try:
        destroyed = orchestrator.teardown(name)
    except (ExecutionError, ValueError) as e:
        console.print(f"[bold red]✗ Could not destroy {name}:[/bold red] {e}")
        raise typer.Exit(1)
    if destroyed:
        console.print(f"[bold green]✓ Destroyed {name}[/bold green]")
    else:
        console.print(f"[yellow]No VM named {name}[/yellow]")


@app.command()
def interfaces(
    output_format: str = FORMAT_OPTION,
):
    """
    List host network interfaces and their IPv4 addresses.
    """
    try:
        found = NetworkInspector().list_interfaces()
    except NetworkEnumerationError as e:
        console.print(f"[bold red]✗ {e}[/bold red]")
        raise typer.Exit(1)

    if output_format == "json":
        _print_json([{"name": i.name, "address": i.address} for i in found])
    else:
        format_interfaces(found, console)


@app.command()
def ping(
    ip: str = typer.Argument(..., help="IPv4 address to probe"),
    output_format: str = FORMAT_OPTION,
):
    """
    Send a single ICMP echo request and report the outcome.
    """
    if not is_ipv4(ip):
        raise typer.BadParameter(f"{ip} is not an IPv4 address", param_hint="IP")

    system_info = SystemDetector().detect_system()
    result = ReachabilityProbe(privileged=system_info.privileged).probe(ip)

    if output_format == "json":
        _print_json({
            "ip": ip,
            "outcome": result.outcome.value,
            "error": None if result.error is None else str(result.error),
        })
    else:
        format_probe_result(ip, result, console)

    if result.outcome is not ProbeOutcome.REACHABLE:
        raise typer.Exit(1)
