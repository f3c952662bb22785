"""
Command execution engine.
"""

import subprocess
import time
from typing import List, Optional, Sequence

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ovalaunch.core.cancel import CancelToken
from ovalaunch.core.errors import ExecutionError, OperationCancelled

# How often a running process is checked against the cancel token.
CANCEL_POLL_SECONDS = 0.1


class CommandExitError(Exception):
    """Cause attached to ExecutionError for a non-zero exit."""

    def __init__(self, return_code: int):
        self.return_code = return_code
        super().__init__(f"exit status {return_code}")


class ExecutionResult(BaseModel):
    """Result of a command execution."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    program: str
    args: List[str] = Field(default_factory=list)
    output: bytes = b""
    return_code: int = -1
    duration: float = 0.0
    error: Optional[ExecutionError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def text(self) -> str:
        return self.output.decode("utf-8", errors="replace")


class CommandExecutor:
    """Execute external commands with combined output capture."""

    def __init__(self, app_logger=logger):
        self.logger = app_logger

    def run(
        self,
        program: str,
        args: Sequence[str],
        cancel: Optional[CancelToken] = None,
    ) -> ExecutionResult:
        """
        Execute a program and wait for it to finish.

        Args:
            program: Executable path or name
            args: Arguments, passed as discrete tokens (never through a shell)
            cancel: Optional token; the process is killed once it is set

        Returns:
            ExecutionResult; ``error`` is set for any failure
        """
        args = [str(arg) for arg in args]
        cmd_str = " ".join([program, *args])
        start_time = time.time()

        self.logger.info(f"Executing command: {cmd_str}")

        if cancel is not None and cancel.cancelled:
            return self._failed(program, args, OperationCancelled(), b"", -1, start_time)

        try:
            process = subprocess.Popen(
                [program, *args],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            self.logger.error(f"Command failed to start: {cmd_str} - {e}")
            return self._failed(program, args, e, b"", -1, start_time)

        output, cancelled = self._communicate(process, cancel)
        output = output or b""
        duration = time.time() - start_time

        if cancelled:
            self.logger.warning(f"Command cancelled: {cmd_str}")
            return self._failed(program, args, OperationCancelled(), output, process.returncode, start_time)

        if process.returncode != 0:
            self.logger.error(
                f"Command failed: {cmd_str} (return code: {process.returncode}, duration: {duration:.2f}s)"
            )
            self.logger.debug(f"Command output: {output!r}")
            return self._failed(
                program, args, CommandExitError(process.returncode), output, process.returncode, start_time
            )

        self.logger.info(
            f"Command completed: {cmd_str} "
            f"(return code: {process.returncode}, duration: {duration:.2f}s)"
        )
        return ExecutionResult(
            program=program,
            args=args,
            output=output,
            return_code=process.returncode,
            duration=duration,
        )

    def _communicate(self, process, cancel: Optional[CancelToken]):
        """Wait for the process, killing it if the token is cancelled."""
        if cancel is None:
            output, _ = process.communicate()
            return output, False
        while True:
            try:
                output, _ = process.communicate(timeout=CANCEL_POLL_SECONDS)
                return output, False
            except subprocess.TimeoutExpired:
                if cancel.cancelled:
                    process.kill()
                    output, _ = process.communicate()
                    return output, True

    def _failed(self, program, args, cause, output, return_code, start_time) -> ExecutionResult:
        return ExecutionResult(
            program=program,
            args=args,
            output=output,
            return_code=return_code if return_code is not None else -1,
            duration=time.time() - start_time,
            error=ExecutionError(program, args, cause, output),
        )
