"""
Logging setup.
"""

from ovalaunch.storage.logger import setup_logging

__all__ = [
    "setup_logging",
]
