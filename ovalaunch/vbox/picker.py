"""
Host-only subnet selection.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from ovalaunch.core.errors import NoAvailableSubnetError
from ovalaunch.utils.network import guest_ip_for
from ovalaunch.utils.network_info import NetworkInterfaceInfo
from ovalaunch.vbox.driver import HostOnlyInterface


@dataclass
class NetworkSelection:
    host_ip: str
    vm_ip: str
    # None means a new host-only interface has to be created.
    interface: Optional[HostOnlyInterface] = None


class SubnetPicker:
    """Choose a host-only subnet that nothing else on the host is using."""

    def __init__(self, subnets: Sequence[str], is_interface_in_use: Callable[[str], bool]):
        self.subnets = list(subnets)
        self._in_use = is_interface_in_use

    def select(
        self,
        host_interfaces: Sequence[NetworkInterfaceInfo],
        reusable: Sequence[HostOnlyInterface],
    ) -> NetworkSelection:
        """
        Pick the first allowed subnet that is either free or served by an idle
        host-only interface.

        Raises:
            NoAvailableSubnetError: Every allowed subnet is taken
        """
        reusable_names = {iface.name for iface in reusable}
        for host_ip in self.subnets:
            if self._taken_by_other(host_ip, host_interfaces, reusable_names):
                continue

            existing = _by_ip(host_ip, reusable)
            if existing is not None:
                if self._in_use(existing.name):
                    continue
                return NetworkSelection(host_ip=host_ip, vm_ip=guest_ip_for(host_ip), interface=existing)

            return NetworkSelection(host_ip=host_ip, vm_ip=guest_ip_for(host_ip))

        raise NoAvailableSubnetError(self.subnets)

    def _taken_by_other(self, host_ip, host_interfaces, reusable_names) -> bool:
        return any(
            iface.address == host_ip and iface.name not in reusable_names
            for iface in host_interfaces
        )


def _by_ip(ip: str, interfaces: Sequence[HostOnlyInterface]) -> Optional[HostOnlyInterface]:
    for iface in interfaces:
        if iface.ip == ip:
            return iface
    return None
