"""
VBoxManage subcommands used during bring-up.

Each method issues one or more VBoxManage invocations through a
CommandExecutor and raises ExecutionError when one of them fails.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ovalaunch.core.cancel import CancelToken
from ovalaunch.core.executor import CommandExecutor, ExecutionResult

STATE_RUNNING = "running"
STATE_POWEROFF = "poweroff"

_VM_LINE = re.compile(r'^"(.+)"\s')
_CREATED_INTERFACE = re.compile(r"Interface '(.*)' was successfully created")
_VM_STATE = re.compile(r'VMState="(.*)"')


@dataclass
class HostOnlyInterface:
    name: str
    ip: str
    netmask: str = ""


class VBoxDriver:
    """Typed wrapper around the VBoxManage command line."""

    def __init__(self, executor: CommandExecutor, vboxmanage: str, cancel: Optional[CancelToken] = None):
        self.executor = executor
        self.vboxmanage = vboxmanage
        self.cancel = cancel

    def without_cancel(self) -> "VBoxDriver":
        """Copy of this driver whose commands ignore cancellation (used for cleanup)."""
        return VBoxDriver(self.executor, self.vboxmanage)

    def vboxmanage_run(self, *args: str) -> ExecutionResult:
        result = self.executor.run(self.vboxmanage, list(args), cancel=self.cancel)
        if result.error is not None:
            raise result.error
        return result

    def vms(self) -> List[str]:
        output = self.vboxmanage_run("list", "vms").text
        names = []
        for line in output.strip().splitlines():
            match = _VM_LINE.match(line)
            if match:
                names.append(match.group(1))
        return names

    def vm_exists(self, vm_name: str) -> bool:
        return vm_name in self.vms()

    def import_vm(self, ova_path: Path, vm_name: str, disk_path: Path, disk_unit: int) -> None:
        self.vboxmanage_run(
            "import", str(ova_path),
            "--vsys", "0", "--vmname", vm_name,
            "--vsys", "0", "--unit", str(disk_unit), "--disk", str(disk_path),
        )

    def host_only_interfaces(self) -> List[HostOnlyInterface]:
        return parse_host_only_interfaces(self.vboxmanage_run("list", "hostonlyifs").text)

    def create_host_only_interface(self, ip: str, netmask: str) -> str:
        output = self.vboxmanage_run("hostonlyif", "create").text
        match = _CREATED_INTERFACE.search(output)
        if not match:
            raise ValueError(f"could not determine interface name from: {output.strip()}")
        name = match.group(1)
        self.configure_host_only_interface(name, ip, netmask)
        return name

    def configure_host_only_interface(self, name: str, ip: str, netmask: str) -> None:
        self.vboxmanage_run("hostonlyif", "ipconfig", name, "--ip", ip, "--netmask", netmask)

    def attach_network_interface(self, interface_name: str, vm_name: str) -> None:
        self.vboxmanage_run(
            "modifyvm", vm_name,
            "--nic2", "hostonly", "--nictype2", "virtio", "--hostonlyadapter2", interface_name,
        )

    def is_interface_in_use(self, interface_name: str) -> bool:
        output = self.vboxmanage_run("list", "vms", "--long").text
        pattern = re.compile(r"NIC\s.*Attachment: Host-only Interface '" + re.escape(interface_name) + "'")
        return pattern.search(output) is not None

    def start_vm(self, vm_name: str) -> None:
        self.vboxmanage_run("startvm", vm_name, "--type", "headless")

    def vm_state(self, vm_name: str) -> str:
        output = self.vboxmanage_run("showvminfo", vm_name, "--machinereadable").text
        match = _VM_STATE.search(output)
        if not match:
            raise ValueError(f"no state identified for VM {vm_name}")
        return match.group(1)

    def power_off_vm(self, vm_name: str) -> None:
        self.vboxmanage_run("controlvm", vm_name, "poweroff")

    def destroy_vm(self, vm_name: str) -> None:
        self.vboxmanage_run("unregistervm", vm_name, "--delete")


def parse_host_only_interfaces(output: str) -> List[HostOnlyInterface]:
    """Parse `VBoxManage list hostonlyifs` blocks into interfaces."""
    interfaces = []
    for block in re.split(r"\n\s*\n", output.strip()):
        fields = {}
        for line in block.splitlines():
            key, sep, value = line.partition(":")
            if sep:
                fields[key.strip()] = value.strip()
        if "Name" in fields:
            interfaces.append(
                HostOnlyInterface(
                    name=fields["Name"],
                    ip=fields.get("IPAddress", ""),
                    netmask=fields.get("NetworkMask", ""),
                )
            )
    return interfaces
