"""
Error types raised or returned by ovalaunch components.

Every error carries structured fields so callers can branch on the kind of
failure and still show the underlying detail (tool output, HTTP status).
"""

from typing import Optional, Sequence


class OvalaunchError(Exception):
    """Base class for all ovalaunch errors."""


class OperationCancelled(OvalaunchError):
    """A blocking operation was interrupted by a cancellation request."""

    def __str__(self) -> str:
        return "operation cancelled"


class ExecutionError(OvalaunchError):
    """An external command exited non-zero, could not be spawned, or was cancelled."""

    def __init__(
        self,
        program: str,
        args: Sequence[str],
        cause: BaseException,
        output: bytes = b"",
    ):
        self.program = program
        self.args_list = list(args)
        self.cause = cause
        self.output = output
        super().__init__(str(self))

    @property
    def command(self) -> str:
        return " ".join([self.program, *self.args_list])

    def __str__(self) -> str:
        text = self.output.decode("utf-8", errors="replace").strip()
        message = f"failed to execute '{self.command}': {self.cause}"
        return f"{message}: {text}" if text else message


class ToolNotFoundError(OvalaunchError):
    """The management tool could not be located on this host."""

    def __init__(self, tool: str, searched: Sequence[str] = ()):
        self.tool = tool
        self.searched = list(searched)
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.searched:
            return f"could not find {self.tool} executable (searched: {', '.join(self.searched)})"
        return f"could not find {self.tool} executable"


class NetworkEnumerationError(OvalaunchError):
    """Host network interfaces could not be enumerated."""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"failed to enumerate network interfaces: {cause}")


# Probe layer

class ProbeError(OvalaunchError):
    """Base class for echo probe failures."""


class TransportError(ProbeError):
    """The probe socket could not be opened or the request could not be sent."""

    def __init__(self, address: str, cause: BaseException):
        self.address = address
        self.cause = cause
        super().__init__(f"failed to probe {address}: {cause}")


class MalformedResponseError(ProbeError):
    """The reply could not be parsed as an ICMP message."""

    def __init__(self, address: str, detail: str, data: bytes = b""):
        self.address = address
        self.detail = detail
        self.data = data
        super().__init__(f"badly formatted response from {address}: {detail}")


class ProtocolAnomalyError(ProbeError):
    """A well-formed reply arrived that was not an echo reply."""

    def __init__(self, address: str, icmp_type: int, icmp_code: int):
        self.address = address
        self.icmp_type = icmp_type
        self.icmp_code = icmp_code
        super().__init__(
            f"ping response from {address} did not have type 'echo reply' "
            f"(type={icmp_type}, code={icmp_code})"
        )


# Provisioning

class ProvisioningError(OvalaunchError):
    """Base class for guest agent provisioning failures."""

    def __init__(self, host: str, message: str):
        self.host = host
        super().__init__(message)


class VMUnreachableError(ProvisioningError):
    """The provisioning request could not be delivered to the guest agent."""

    def __init__(self, host: str, cause: BaseException):
        self.cause = cause
        super().__init__(host, f"failed to talk to VM at {host}: {cause}")


class SecretReplacementError(ProvisioningError):
    """The guest agent answered but did not accept the new secret."""

    def __init__(self, host: str, status_code: int):
        self.status_code = status_code
        super().__init__(
            host, f"failed to replace secret: guest agent at {host} returned {status_code}"
        )


# Orchestration

class BringUpError(OvalaunchError):
    """Base class for stage-level bring-up failures."""


class ImageImportError(BringUpError):
    def __init__(self, appliance: str, cause: BaseException):
        self.appliance = appliance
        self.cause = cause
        super().__init__(f"failed to import VM from {appliance}: {cause}")


class NetworkAttachError(BringUpError):
    def __init__(self, vm_name: str, cause: BaseException):
        self.vm_name = vm_name
        self.cause = cause
        super().__init__(f"failed to attach host-only network to {vm_name}: {cause}")


class NoAvailableSubnetError(BringUpError):
    def __init__(self, candidates: Sequence[str]):
        self.candidates = list(candidates)
        super().__init__("all allowed host-only subnets are currently taken")


class StartVMError(BringUpError):
    def __init__(self, vm_name: str, cause: BaseException):
        self.vm_name = vm_name
        self.cause = cause
        super().__init__(f"failed to start VM {vm_name}: {cause}")


class ReachabilityTimeout(BringUpError):
    def __init__(
        self,
        address: str,
        attempts: int,
        budget: float,
        last_error: Optional[ProbeError] = None,
    ):
        self.address = address
        self.attempts = attempts
        self.budget = budget
        self.last_error = last_error
        message = f"VM at {address} not reachable after {attempts} probe(s) in {budget:g}s"
        if last_error is not None:
            message += f" (last probe error: {last_error})"
        super().__init__(message)


class Cancelled(BringUpError):
    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"bring-up cancelled during {stage}")


class InvalidTransitionError(OvalaunchError):
    """A state change that the bring-up graph does not allow."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"cannot move VM from {current} to {requested}")
