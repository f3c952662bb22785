"""
Configuration management.
"""

import ipaddress
import json
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_FILE_NAME = ".ovalaunch.yaml"

# Host-side addresses of the host-only networks a VM may be attached to.
DEFAULT_SUBNETS = [
    "192.168.11.1",
    "192.168.22.1",
    "192.168.33.1",
    "192.168.44.1",
    "192.168.55.1",
    "192.168.66.1",
    "192.168.77.1",
    "192.168.88.1",
    "192.168.99.1",
]

_APP_KEYS = ("output_dir", "verbose")


def load_config_file(candidates: Optional[List[Path]] = None) -> dict[str, Any]:
    """
    Load optional config from ~/.ovalaunch.yaml or ./.ovalaunch.yaml.

    The first existing file wins. Missing keys are omitted so callers can use
    their own defaults.
    """
    if candidates is None:
        candidates = [
            Path.home() / CONFIG_FILE_NAME,
            Path.cwd() / CONFIG_FILE_NAME,
        ]
    for path in candidates:
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"{path}: expected a mapping at the top level")
            return raw
    return {}


def split_config(raw: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a config file mapping into (AppConfig, BringUpConfig) keyword arguments."""
    app = {k: v for k, v in raw.items() if k in _APP_KEYS}
    bring_up = {k: v for k, v in raw.items() if k in BringUpConfig.model_fields}
    return app, bring_up


class AppConfig(BaseModel):
    """Application configuration."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    output_dir: Path = Field(default=Path("output"))
    verbose: bool = False

    @field_validator('output_dir', mode='before')
    @classmethod
    def validate_output_dir(cls, v):
        """Validate and convert output_dir to Path."""
        if v is None:
            return Path("output")
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v
        return Path("output")

    def model_post_init(self, __context):
        """Ensure output directory exists and is resolved to absolute path."""
        self.output_dir = self.output_dir.resolve()
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def create_run_dir(self, run_name: str) -> Path:
        """Create a directory for one bring-up attempt."""
        timestamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
        run_dir = self.output_dir / f"{timestamp}_{run_name}"
        run_dir.mkdir(parents=True, exist_ok=True)
        return run_dir

    def save_metadata(self, run_dir: Path, metadata: dict):
        """Save run metadata to JSON file."""
        metadata_file = run_dir / "metadata.json"

        metadata["timestamp"] = datetime.now().isoformat()

        with open(metadata_file, "w") as f:
            json.dump(metadata, f, indent=2, default=str)


class BringUpConfig(BaseSettings):
    """
    Settings for one bring-up attempt.

    Values come from keyword arguments, then ``OVALAUNCH_*`` environment
    variables, then defaults. The orchestrator only ever sees the built
    object; it never reads the environment itself.
    """

    model_config = SettingsConfigDict(env_prefix="OVALAUNCH_", extra="ignore")

    vboxmanage_path: Optional[Path] = None
    vms_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()) / "ovalaunch")
    vm_name_prefix: str = "ovalaunch"
    import_disk_unit: int = 9

    reachability_timeout: float = 300.0
    poll_interval: float = 1.0

    agent_port: int = 8090
    request_timeout: Optional[float] = None

    host_only_netmask: str = "255.255.255.0"
    allowed_subnets: List[str] = Field(default_factory=lambda: list(DEFAULT_SUBNETS))

    teardown_on_failure: bool = True

    @field_validator("vms_dir", "vboxmanage_path", mode="before")
    @classmethod
    def expand_paths(cls, v):
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    @field_validator("reachability_timeout", "poll_interval")
    @classmethod
    def non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("agent_port")
    @classmethod
    def valid_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("must be a TCP port number")
        return v

    @field_validator("vm_name_prefix")
    @classmethod
    def valid_prefix(cls, v: str) -> str:
        if not v or not v.replace("-", "").replace("_", "").isalnum():
            raise ValueError("must be alphanumeric (dashes and underscores allowed)")
        return v

    @field_validator("allowed_subnets")
    @classmethod
    def valid_subnets(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("at least one subnet is required")
        for address in v:
            ip = ipaddress.ip_address(address)
            if ip.version != 4:
                raise ValueError(f"{address} is not an IPv4 address")
        return v
