"""
Core functionality components.
"""

from ovalaunch.core.cancel import CancelToken
from ovalaunch.core.config import AppConfig, BringUpConfig
from ovalaunch.core.detector import SystemDetector, SystemInfo
from ovalaunch.core.executor import CommandExecutor, ExecutionResult

__all__ = [
    "AppConfig",
    "BringUpConfig",
    "CancelToken",
    "SystemDetector",
    "SystemInfo",
    "CommandExecutor",
    "ExecutionResult",
]
