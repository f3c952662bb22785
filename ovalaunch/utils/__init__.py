"""
Utility functions.
"""

from ovalaunch.utils.network import is_valid_ip, is_ipv4, strip_prefix
from ovalaunch.utils.network_info import NetworkInspector, NetworkInterfaceInfo

__all__ = [
    "is_valid_ip",
    "is_ipv4",
    "strip_prefix",
    "NetworkInspector",
    "NetworkInterfaceInfo",
]
