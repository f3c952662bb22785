"""Tests for system detection and VBoxManage resolution."""
from pathlib import Path

import pytest

from ovalaunch.core.detector import (
    VBOXMANAGE,
    FixedLocations,
    InstallDirFromEnv,
    PathLookup,
    SystemDetector,
    SystemInfo,
)
from ovalaunch.core.errors import ToolNotFoundError


@pytest.fixture
def detector():
    return SystemDetector()


def test_detect_system_returns_info(detector):
    info = detector.detect_system()
    assert isinstance(info, SystemInfo)
    assert info.os_type
    assert info.hostname
    assert isinstance(info.privileged, bool)


def test_path_lookup_uses_given_path(detector):
    seen = {}

    def which(tool, path=None):
        seen["path"] = path
        return "/usr/local/bin/VBoxManage"

    found = detector.resolve_tool(VBOXMANAGE, "Linux", {"PATH": "/usr/local/bin"}, [PathLookup(which)])
    assert found == Path("/usr/local/bin/VBoxManage")
    assert seen["path"] == "/usr/local/bin"


def test_install_dir_msi_path_wins():
    locator = InstallDirFromEnv(["VBOX_INSTALL_PATH", "VBOX_MSI_INSTALL_PATH"], suffix=".exe")
    environ = {
        "VBOX_INSTALL_PATH": "C:\\Old\\VirtualBox",
        "VBOX_MSI_INSTALL_PATH": "C:\\Program Files\\Oracle\\VirtualBox",
    }
    found = locator.locate(VBOXMANAGE, environ)
    assert found == Path("C:\\Program Files\\Oracle\\VirtualBox") / "VBoxManage.exe"


def test_install_dir_without_variables():
    locator = InstallDirFromEnv(["VBOX_INSTALL_PATH"])
    assert locator.locate(VBOXMANAGE, {}) is None


def test_fixed_locations_checks_existence():
    locator = FixedLocations(
        ["/nowhere", "/Applications/VirtualBox.app/Contents/MacOS"],
        exists=lambda p: str(p).startswith("/Applications"),
    )
    assert locator.locate(VBOXMANAGE, {}) == Path("/Applications/VirtualBox.app/Contents/MacOS/VBoxManage")


def test_chain_falls_through_in_order(detector):
    chain = [
        PathLookup(lambda tool, path=None: None),
        InstallDirFromEnv(["VBOX_MSI_INSTALL_PATH"], suffix=".exe"),
    ]
    found = detector.resolve_tool(VBOXMANAGE, "Windows", {"VBOX_MSI_INSTALL_PATH": "D:\\VB"}, chain)
    assert found == Path("D:\\VB") / "VBoxManage.exe"


def test_not_found_lists_strategies(detector):
    chain = [
        PathLookup(lambda tool, path=None: None),
        FixedLocations(["/opt/vbox"], exists=lambda p: False),
    ]
    with pytest.raises(ToolNotFoundError) as exc_info:
        detector.resolve_tool(VBOXMANAGE, "Linux", {}, chain)
    assert exc_info.value.tool == VBOXMANAGE
    assert exc_info.value.searched == ["PATH", "/opt/vbox"]
    assert "could not find VBoxManage" in str(exc_info.value)


@pytest.mark.parametrize(
    "os_type,expected",
    [
        ("Windows", [PathLookup, InstallDirFromEnv]),
        ("Darwin", [PathLookup, FixedLocations]),
        ("Linux", [PathLookup, FixedLocations]),
    ],
)
def test_locators_per_os(detector, os_type, expected):
    assert [type(locator) for locator in detector.locators_for(os_type)] == expected
