"""
ovalaunch - bring a local VirtualBox appliance up to a provisioned, reachable VM.
"""

from ovalaunch.__version__ import __version__
from ovalaunch.core.config import AppConfig, BringUpConfig
from ovalaunch.core.executor import CommandExecutor
from ovalaunch.orchestration.orchestrator import Orchestrator

__all__ = [
    "AppConfig",
    "BringUpConfig",
    "CommandExecutor",
    "Orchestrator",
    "__version__",
]
