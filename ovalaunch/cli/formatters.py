"""
Rich formatting utilities for CLI output.
"""

from typing import Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ovalaunch.modules.ping import ProbeOutcome, ProbeResult
from ovalaunch.orchestration.instance import FailureReason, VMInstance, VMState
from ovalaunch.utils.network_info import NetworkInterfaceInfo


def _state_icon_and_color(state: VMState) -> tuple[str, str]:
    """Map a VM state to icon and color."""
    if state is VMState.PROVISIONED:
        return "✓", "green"
    if state is VMState.FAILED:
        return "✗", "red"
    return "…", "yellow"


def format_instance(instance: VMInstance, console: Console) -> None:
    """Display the outcome of a bring-up attempt."""
    icon, color = _state_icon_and_color(instance.state)

    content: list[str] = []
    content.append(f"[bold]VM:[/bold] {instance.name}")
    content.append(f"[bold]State:[/bold] [{color}]{instance.state.value}[/{color}]")
    if instance.ip:
        content.append(f"[bold]Address:[/bold] {instance.ip}")
    if instance.interface:
        content.append(f"[bold]Host-only interface:[/bold] {instance.interface}")
    content.append(f"[bold]Path:[/bold] {' → '.join(s.value for s in instance.history)}")

    if instance.failure is not None:
        content.append(f"\n[bold]Failed stage:[/bold] {instance.failure.stage.value}")
        content.append(f"[bold]Reason:[/bold] {instance.failure.reason.value}")
        content.append(f"[bold]Detail:[/bold]\n{instance.failure.error}")
    if instance.teardown_error is not None:
        content.append(f"\n[yellow]Cleanup failed:[/yellow] {instance.teardown_error}")

    console.print()
    console.print(Panel("\n".join(content), title=f"{icon} Bring-up", border_style=color, expand=False))

    guidance = get_failure_guidance(instance)
    if guidance:
        console.print(Panel("\n".join(guidance), title="What to try", border_style="dim"))


def get_failure_guidance(instance: VMInstance) -> list[str]:
    """
    Return actionable suggestions for a failed bring-up.
    Empty when the instance did not fail.
    """
    if instance.failure is None:
        return []
    reason = instance.failure.reason
    lines: list[str] = []
    if reason is FailureReason.IMPORT_ERROR:
        lines.append("• Check that the appliance file exists and is a valid OVA.")
        lines.append("• Make sure VirtualBox is installed; set OVALAUNCH_VBOXMANAGE_PATH if it is not on PATH.")
    elif reason is FailureReason.NETWORK_ATTACH_ERROR:
        lines.append("• Remove unused host-only interfaces in VirtualBox, or free one of the 192.168.x.1 subnets.")
    elif reason is FailureReason.START_ERROR:
        lines.append("• Check that hardware virtualization is enabled and no other hypervisor holds it.")
    elif reason is FailureReason.REACHABILITY_TIMEOUT:
        lines.append("• The guest may still be booting; retry with a larger --timeout.")
        lines.append("• Firewalls on the host can drop ICMP on host-only interfaces.")
    elif reason is FailureReason.PROVISIONING_UNREACHABLE:
        lines.append("• The guest stopped answering after boot; run [cyan]ovalaunch up[/cyan] again.")
    elif reason is FailureReason.PROVISIONING_REJECTED:
        lines.append("• The guest agent refused the new password; check its logs inside the VM.")
    elif reason is FailureReason.CANCELLED:
        lines.append("• The attempt was interrupted; start a new one when ready.")
    lines.append("• Run with [cyan]-v[/cyan] for detailed logs.")
    return lines


def format_interfaces(interfaces: Sequence[NetworkInterfaceInfo], console: Console) -> None:
    """Display host interfaces as a table."""
    table = Table(title="Host Interfaces", show_header=True, box=None, padding=(0, 2))
    table.add_column("Interface", style="cyan")
    table.add_column("IPv4 Address", style="white")
    for iface in interfaces:
        table.add_row(iface.name, iface.address)
    console.print()
    console.print(table)


def format_probe_result(ip: str, result: ProbeResult, console: Console) -> None:
    """Display a single probe outcome."""
    if result.outcome is ProbeOutcome.REACHABLE:
        console.print(f"[bold green]✓ {ip} answered the echo request[/bold green]")
    elif result.outcome is ProbeOutcome.UNREACHABLE:
        console.print(f"[bold yellow]⚠ No reply from {ip} within the timeout[/bold yellow]")
    else:
        console.print(f"[bold red]✗ Probe of {ip} failed:[/bold red] {result.error}")
