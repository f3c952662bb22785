"""
Bring-up state machine.
"""

from ovalaunch.orchestration.instance import (
    ApplianceReference,
    Failure,
    FailureReason,
    VMInstance,
    VMState,
)
from ovalaunch.orchestration.orchestrator import Orchestrator

__all__ = [
    "ApplianceReference",
    "Failure",
    "FailureReason",
    "VMInstance",
    "VMState",
    "Orchestrator",
]
