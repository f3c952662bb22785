"""
VirtualBox management.
"""

from ovalaunch.vbox.driver import HostOnlyInterface, VBoxDriver
from ovalaunch.vbox.picker import NetworkSelection, SubnetPicker

__all__ = [
    "HostOnlyInterface",
    "VBoxDriver",
    "NetworkSelection",
    "SubnetPicker",
]
