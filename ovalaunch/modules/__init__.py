"""
Guest-facing primitives: echo probe and provisioning client.
"""

from ovalaunch.modules.ping import ProbeOutcome, ProbeResult, ReachabilityProbe
from ovalaunch.modules.provisioning import ProvisioningClient

__all__ = [
    "ProbeOutcome",
    "ProbeResult",
    "ReachabilityProbe",
    "ProvisioningClient",
]
