"""Version information for ovalaunch."""

__version__ = "0.3.0"
__version_info__ = (0, 3, 0)

__license__ = "MIT"
__description__ = "Bring a VirtualBox appliance up to a provisioned, reachable VM"
