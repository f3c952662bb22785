"""
System detection and management tool resolution.
"""

import os
import platform
import shutil
import socket
import sys
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from ovalaunch.core.errors import ToolNotFoundError

VBOXMANAGE = "VBoxManage"


class SystemInfo(BaseModel):
    """System information model."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    os_type: str  # 'Linux', 'Darwin', 'Windows'
    platform: str
    python_version: str
    hostname: str
    privileged: bool = False


class ToolLocator:
    """One way of finding an executable on the host."""

    description = "locator"

    def locate(self, tool: str, environ: Mapping[str, str]) -> Optional[Path]:
        raise NotImplementedError


class PathLookup(ToolLocator):
    """Look the tool up on PATH."""

    description = "PATH"

    def __init__(self, which: Callable[..., Optional[str]] = shutil.which):
        self._which = which

    def locate(self, tool: str, environ: Mapping[str, str]) -> Optional[Path]:
        found = self._which(tool, path=environ.get("PATH"))
        return Path(found) if found else None


class InstallDirFromEnv(ToolLocator):
    """Look inside install directories named by environment variables."""

    def __init__(self, variables: Sequence[str], suffix: str = ""):
        self.variables = list(variables)
        self.suffix = suffix
        self.description = ", ".join(f"${v}" for v in self.variables)

    def locate(self, tool: str, environ: Mapping[str, str]) -> Optional[Path]:
        # Later variables win, so the MSI install path overrides the legacy one.
        found = None
        for variable in self.variables:
            install_dir = environ.get(variable)
            if install_dir:
                found = Path(install_dir) / f"{tool}{self.suffix}"
        return found


class FixedLocations(ToolLocator):
    """Check a list of well-known install directories."""

    def __init__(self, directories: Sequence[str], exists: Callable[[Path], bool] = Path.exists):
        self.directories = list(directories)
        self._exists = exists
        self.description = ", ".join(self.directories)

    def locate(self, tool: str, environ: Mapping[str, str]) -> Optional[Path]:
        for directory in self.directories:
            candidate = Path(directory) / tool
            if self._exists(candidate):
                return candidate
        return None


class SystemDetector:
    """Detect system information and resolve management tools."""

    def detect_system(self) -> SystemInfo:
        """Detect current system information."""
        return SystemInfo(
            os_type=platform.system(),
            platform=platform.platform(),
            python_version=sys.version.split()[0],
            hostname=socket.gethostname(),
            privileged=is_privileged(),
        )

    def locators_for(self, os_type: str) -> List[ToolLocator]:
        """Resolution strategies for the given host OS, in priority order."""
        if os_type == "Windows":
            return [
                PathLookup(),
                InstallDirFromEnv(["VBOX_INSTALL_PATH", "VBOX_MSI_INSTALL_PATH"], suffix=".exe"),
            ]
        if os_type == "Darwin":
            return [
                PathLookup(),
                FixedLocations(["/Applications/VirtualBox.app/Contents/MacOS", "/usr/local/bin"]),
            ]
        return [PathLookup(), FixedLocations(["/usr/bin", "/usr/local/bin"])]

    def resolve_tool(
        self,
        tool: str,
        os_type: str,
        environ: Mapping[str, str],
        locators: Optional[Sequence[ToolLocator]] = None,
    ) -> Path:
        """
        Resolve a tool to an absolute path.

        Args:
            tool: Executable name, e.g. "VBoxManage"
            os_type: Host OS as reported by platform.system()
            environ: Environment mapping to consult (never read implicitly)
            locators: Override the OS-specific strategy chain

        Raises:
            ToolNotFoundError: No strategy located the tool
        """
        chain = list(locators) if locators is not None else self.locators_for(os_type)
        for locator in chain:
            found = locator.locate(tool, environ)
            if found is not None:
                return found
        raise ToolNotFoundError(tool, [locator.description for locator in chain])


def is_privileged() -> bool:
    """True when raw sockets are expected to be available."""
    geteuid = getattr(os, "geteuid", None)
    if geteuid is None:
        return True
    return geteuid() == 0
