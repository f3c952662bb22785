"""
VM bring-up orchestration.

Drives one VM from an appliance image to a provisioned, reachable guest:

    Unregistered -> Imported -> NetworkAttached -> Probing -> Reachable -> Provisioned

Any stage may end in Failed. Only the reachability wait is retried (bounded by
a time budget); every other stage fails fast. The orchestrator never retries a
whole bring-up; callers start a new attempt with a fresh instance instead.
"""

import time
from typing import Callable, Optional

from loguru import logger

from ovalaunch.core.cancel import CancelToken
from ovalaunch.core.config import BringUpConfig
from ovalaunch.core.detector import VBOXMANAGE
from ovalaunch.core.errors import (
    BringUpError,
    Cancelled,
    ExecutionError,
    ImageImportError,
    InvalidTransitionError,
    NetworkAttachError,
    NetworkEnumerationError,
    OperationCancelled,
    ReachabilityTimeout,
    SecretReplacementError,
    StartVMError,
    VMUnreachableError,
)
from ovalaunch.core.executor import CommandExecutor
from ovalaunch.modules.ping import ReachabilityProbe
from ovalaunch.modules.provisioning import ProvisioningClient, base_url
from ovalaunch.orchestration.instance import (
    ApplianceReference,
    FailureReason,
    VMInstance,
    VMState,
    generate_vm_name,
)
from ovalaunch.utils.network_info import NetworkInspector
from ovalaunch.vbox.driver import STATE_RUNNING, VBoxDriver
from ovalaunch.vbox.picker import SubnetPicker


class Orchestrator:
    """Runs the bring-up state machine for VM instances."""

    def __init__(
        self,
        config: BringUpConfig,
        executor: CommandExecutor,
        inspector: NetworkInspector,
        probe: ReachabilityProbe,
        client: ProvisioningClient,
        driver: Optional[VBoxDriver] = None,
        picker: Optional[SubnetPicker] = None,
        cancel: Optional[CancelToken] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.cancel = cancel or CancelToken()
        self.driver = driver or VBoxDriver(
            executor, str(config.vboxmanage_path or VBOXMANAGE), cancel=self.cancel
        )
        self.picker = picker or SubnetPicker(config.allowed_subnets, self.driver.is_interface_in_use)
        self.inspector = inspector
        self.probe = probe
        self.client = client
        self.clock = clock

    def new_instance(self) -> VMInstance:
        return VMInstance(name=generate_vm_name(self.config.vm_name_prefix))

    def bring_up(
        self,
        appliance: ApplianceReference,
        new_secret: str,
        instance: Optional[VMInstance] = None,
    ) -> VMInstance:
        """
        Run every stage in order and return the instance.

        The returned instance is either PROVISIONED or FAILED; classified
        failures are recorded on ``instance.failure`` rather than raised.
        """
        instance = instance or self.new_instance()
        logger.info(f"Bringing up {instance.name} from {appliance.path}")

        stages = [
            lambda: self.import_image(instance, appliance),
            lambda: self.attach_network(instance),
            lambda: self.start_vm(instance),
            lambda: self.wait_until_reachable(instance),
            lambda: self.provision(instance, new_secret),
        ]
        for stage in stages:
            stage()
            if instance.state is VMState.FAILED:
                break

        if instance.state is VMState.FAILED:
            logger.error(f"Bring-up of {instance.name} failed: {instance.failure}")
            if self.config.teardown_on_failure and VMState.IMPORTED in instance.history:
                self._teardown_after_failure(instance)
        else:
            logger.success(f"{instance.name} is provisioned at {instance.ip}")
        return instance

    def import_image(self, instance: VMInstance, appliance: ApplianceReference) -> None:
        """Unregistered -> Imported. A no-op for an instance that is already imported."""
        if instance.reached(VMState.IMPORTED):
            logger.info(f"{instance.name} already imported; skipping import")
            return
        self._require(instance, VMState.UNREGISTERED, VMState.IMPORTED)
        if self._stop_if_cancelled(instance):
            return

        try:
            if self.driver.vm_exists(instance.name):
                logger.info(f"A VM named {instance.name} is already registered; skipping import")
            else:
                disk_path = self.config.vms_dir / instance.name / f"{instance.name}-disk1.vmdk"
                disk_path.parent.mkdir(parents=True, exist_ok=True)
                self.driver.import_vm(appliance.path, instance.name, disk_path, self.config.import_disk_unit)
        except (ExecutionError, OSError, ValueError) as e:
            self._fail(instance, FailureReason.IMPORT_ERROR, ImageImportError(str(appliance.path), e))
            return

        instance.advance(VMState.IMPORTED)

    def attach_network(self, instance: VMInstance) -> None:
        """Imported -> NetworkAttached."""
        self._require(instance, VMState.IMPORTED, VMState.NETWORK_ATTACHED)
        if self._stop_if_cancelled(instance):
            return

        netmask = self.config.host_only_netmask
        try:
            host_interfaces = self.inspector.list_interfaces()
            selection = self.picker.select(host_interfaces, self.driver.host_only_interfaces())
            if selection.interface is None:
                interface_name = self.driver.create_host_only_interface(selection.host_ip, netmask)
            else:
                interface_name = selection.interface.name
                self.driver.configure_host_only_interface(interface_name, selection.host_ip, netmask)
            self.driver.attach_network_interface(interface_name, instance.name)
        except (ExecutionError, NetworkEnumerationError, BringUpError, ValueError) as e:
            self._fail(instance, FailureReason.NETWORK_ATTACH_ERROR, NetworkAttachError(instance.name, e))
            return

        instance.ip = selection.vm_ip
        instance.interface = interface_name
        logger.info(f"Attached {instance.name} to {interface_name}; guest address {instance.ip}")
        instance.advance(VMState.NETWORK_ATTACHED)

    def start_vm(self, instance: VMInstance) -> None:
        """Boot the VM headless. The state stays NetworkAttached."""
        self._require(instance, VMState.NETWORK_ATTACHED, VMState.PROBING)
        if self._stop_if_cancelled(instance):
            return

        try:
            if self.driver.vm_state(instance.name) == STATE_RUNNING:
                logger.info(f"{instance.name} is already running")
                return
            self.driver.start_vm(instance.name)
        except (ExecutionError, ValueError) as e:
            self._fail(instance, FailureReason.START_ERROR, StartVMError(instance.name, e))

    def wait_until_reachable(self, instance: VMInstance) -> int:
        """
        NetworkAttached -> Probing -> Reachable.

        Probes the guest once per poll interval until it answers, the
        reachability budget runs out, or the attempt is cancelled. Probe
        errors count as failed polls and do not end the wait.

        Returns:
            Number of probes sent
        """
        self._require(instance, VMState.NETWORK_ATTACHED, VMState.PROBING)
        if self._stop_if_cancelled(instance):
            return 0
        instance.advance(VMState.PROBING)

        budget = self.config.reachability_timeout
        deadline = self.clock() + budget
        attempts = 0
        last_error = None

        while True:
            if self._stop_if_cancelled(instance):
                return attempts

            attempts += 1
            reachable, error = self.probe.try_address(instance.ip)
            if reachable:
                logger.info(f"{instance.name} answered at {instance.ip} after {attempts} probe(s)")
                instance.advance(VMState.REACHABLE)
                return attempts
            if error is not None:
                last_error = error
                logger.warning(f"Probe {attempts} of {instance.ip} failed: {error}")
            else:
                logger.debug(f"Probe {attempts} of {instance.ip}: no reply")

            remaining = deadline - self.clock()
            if remaining <= 0:
                self._fail(
                    instance,
                    FailureReason.REACHABILITY_TIMEOUT,
                    ReachabilityTimeout(instance.ip, attempts, budget, last_error),
                )
                return attempts

            self.cancel.wait(min(self.config.poll_interval, remaining))

    def provision(self, instance: VMInstance, new_secret: str) -> None:
        """Reachable -> Provisioned. Sends the secret replacement exactly once."""
        self._require(instance, VMState.REACHABLE, VMState.PROVISIONED)
        if self._stop_if_cancelled(instance):
            return

        host = base_url(instance.ip, self.config.agent_port)
        try:
            self.client.replace_secret(host, new_secret, cancel=self.cancel)
        except OperationCancelled as e:
            self._fail(instance, FailureReason.CANCELLED, e)
            return
        except VMUnreachableError as e:
            self._fail(instance, FailureReason.PROVISIONING_UNREACHABLE, e)
            return
        except SecretReplacementError as e:
            self._fail(instance, FailureReason.PROVISIONING_REJECTED, e)
            return

        instance.advance(VMState.PROVISIONED)

    def teardown(self, vm_name: str) -> bool:
        """
        Power off and deregister a VM, deleting its disks.

        Returns:
            False if no VM of that name was registered
        """
        driver = self.driver.without_cancel()
        if not driver.vm_exists(vm_name):
            logger.info(f"No VM named {vm_name}; nothing to tear down")
            return False
        if driver.vm_state(vm_name) == STATE_RUNNING:
            driver.power_off_vm(vm_name)
        driver.destroy_vm(vm_name)
        logger.info(f"Destroyed {vm_name}")
        return True

    def _teardown_after_failure(self, instance: VMInstance) -> None:
        try:
            self.teardown(instance.name)
        except (ExecutionError, ValueError) as e:
            logger.warning(f"Teardown of {instance.name} failed: {e}")
            instance.teardown_error = e

    def _stop_if_cancelled(self, instance: VMInstance) -> bool:
        if not self.cancel.cancelled:
            return False
        instance.fail(FailureReason.CANCELLED, Cancelled(instance.state.value))
        return True

    def _fail(self, instance: VMInstance, reason: FailureReason, error: Exception) -> None:
        # A command killed by cancellation surfaces as an ordinary stage error.
        if self.cancel.cancelled:
            cancelled = Cancelled(instance.state.value)
            cancelled.__cause__ = error
            instance.fail(FailureReason.CANCELLED, cancelled)
            return
        instance.fail(reason, error)

    @staticmethod
    def _require(instance: VMInstance, expected: VMState, target: VMState) -> None:
        if instance.state is not expected:
            raise InvalidTransitionError(instance.state.value, target.value)
