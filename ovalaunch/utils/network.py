"""
Network utility functions.
"""

import ipaddress


def is_valid_ip(ip: str) -> bool:
    """
    Check if a string is a valid IP address.

    Args:
        ip: String to check

    Returns:
        True if valid IP address
    """
    try:
        ipaddress.ip_address(ip)
        return True
    except ValueError:
        return False


def is_ipv4(ip: str) -> bool:
    """True if ip is a dotted-quad IPv4 address."""
    try:
        return ipaddress.ip_address(ip).version == 4
    except ValueError:
        return False


def strip_prefix(address: str) -> str:
    """Drop a CIDR suffix ("10.0.0.5/24" -> "10.0.0.5") and any IPv6 zone id."""
    return address.split("/", 1)[0].split("%", 1)[0]


def subnet_prefix(host_ip: str) -> str:
    """First three octets of an IPv4 address: "192.168.11.1" -> "192.168.11"."""
    return host_ip.rsplit(".", 1)[0]


def guest_ip_for(host_ip: str) -> str:
    """Guest address on a host-only network whose host side is host_ip."""
    return f"{subnet_prefix(host_ip)}.11"
