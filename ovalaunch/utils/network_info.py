"""
Host network interface inspection.
"""

from __future__ import annotations

import socket
from dataclasses import dataclass

import psutil
from loguru import logger

from ovalaunch.core.errors import NetworkEnumerationError
from ovalaunch.utils.network import is_ipv4, strip_prefix


@dataclass(frozen=True)
class NetworkInterfaceInfo:
    """A host interface and its primary IPv4 address."""

    name: str
    address: str


class NetworkInspector:
    """Read-only view of the host's network interfaces."""

    def __init__(self, net_if_addrs=psutil.net_if_addrs):
        self._net_if_addrs = net_if_addrs

    def list_interfaces(self) -> list[NetworkInterfaceInfo]:
        """
        Enumerate host interfaces with their first bound IPv4 address.

        Interfaces without an IPv4 address are left out.

        Raises:
            NetworkEnumerationError: The interface table could not be read
        """
        try:
            table = self._net_if_addrs()
        except (OSError, RuntimeError, psutil.Error) as e:
            raise NetworkEnumerationError(e) from e

        interfaces: list[NetworkInterfaceInfo] = []
        for name, entries in table.items():
            address = _first_ipv4(entries)
            if address:
                interfaces.append(NetworkInterfaceInfo(name=name, address=address))

        logger.debug(f"Found {len(interfaces)} interface(s) with an IPv4 address")
        return interfaces

    def has_ip_collision(self, ip: str) -> bool:
        """True if some host interface already holds ip."""
        return any(iface.address == ip for iface in self.list_interfaces())


def _first_ipv4(entries) -> str:
    for entry in entries:
        if entry.family != socket.AF_INET or not entry.address:
            continue
        address = strip_prefix(entry.address)
        if is_ipv4(address):
            return address
    return ""
