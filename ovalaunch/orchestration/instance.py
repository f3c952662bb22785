"""
VM instance state for one bring-up attempt.
"""

import enum
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ovalaunch.core.errors import InvalidTransitionError


class VMState(str, enum.Enum):
    UNREGISTERED = "Unregistered"
    IMPORTED = "Imported"
    NETWORK_ATTACHED = "NetworkAttached"
    PROBING = "Probing"
    REACHABLE = "Reachable"
    PROVISIONED = "Provisioned"
    FAILED = "Failed"


# Forward order of the bring-up graph. FAILED sits outside it.
STATE_ORDER = [
    VMState.UNREGISTERED,
    VMState.IMPORTED,
    VMState.NETWORK_ATTACHED,
    VMState.PROBING,
    VMState.REACHABLE,
    VMState.PROVISIONED,
]

TERMINAL_STATES = {VMState.PROVISIONED, VMState.FAILED}


class FailureReason(str, enum.Enum):
    IMPORT_ERROR = "ImportError"
    NETWORK_ATTACH_ERROR = "NetworkAttachError"
    START_ERROR = "StartError"
    REACHABILITY_TIMEOUT = "ReachabilityTimeout"
    PROVISIONING_UNREACHABLE = "ProvisioningUnreachable"
    PROVISIONING_REJECTED = "ProvisioningRejected"
    CANCELLED = "Cancelled"


@dataclass
class Failure:
    reason: FailureReason
    stage: VMState
    error: Exception

    def __str__(self) -> str:
        return f"{self.reason.value} during {self.stage.value}: {self.error}"


@dataclass(frozen=True)
class ApplianceReference:
    """The appliance image to import."""

    path: Path

    @property
    def name(self) -> str:
        return self.path.stem


def generate_vm_name(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@dataclass
class VMInstance:
    name: str
    state: VMState = VMState.UNREGISTERED
    ip: Optional[str] = None
    interface: Optional[str] = None
    failure: Optional[Failure] = None
    teardown_error: Optional[Exception] = None
    history: List[VMState] = field(default_factory=list)

    def __post_init__(self):
        if not self.history:
            self.history.append(self.state)

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def reached(self, state: VMState) -> bool:
        """True if the instance is at or past state on the forward path."""
        if self.state is VMState.FAILED:
            return state in self.history
        return STATE_ORDER.index(self.state) >= STATE_ORDER.index(state)

    def advance(self, new_state: VMState) -> None:
        if new_state is VMState.FAILED or self.terminal:
            raise InvalidTransitionError(self.state.value, new_state.value)
        if STATE_ORDER.index(new_state) <= STATE_ORDER.index(self.state):
            raise InvalidTransitionError(self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def fail(self, reason: FailureReason, error: Exception) -> None:
        if self.terminal:
            raise InvalidTransitionError(self.state.value, VMState.FAILED.value)
        self.failure = Failure(reason=reason, stage=self.state, error=error)
        self.state = VMState.FAILED
        self.history.append(VMState.FAILED)

    def to_dict(self) -> dict:
        """Summary suitable for metadata files and JSON output."""
        return {
            "name": self.name,
            "state": self.state.value,
            "ip": self.ip,
            "interface": self.interface,
            "history": [state.value for state in self.history],
            "failure": None if self.failure is None else {
                "reason": self.failure.reason.value,
                "stage": self.failure.stage.value,
                "error": str(self.failure.error),
            },
            "teardown_error": None if self.teardown_error is None else str(self.teardown_error),
        }
