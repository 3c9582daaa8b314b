"""
Configuration for portainer-lxc runs.

Defaults come from environment variables (optionally via a ``.env`` file),
can be overlaid by a YAML request file and finally by CLI options.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from portainer_lxc.exceptions import ValidationError

REQUEST_KEYS = (
    "ctid",
    "hostname",
    "cores",
    "memory",
    "disk",
    "storage",
    "template_storage",
    "bridge",
    "network",
    "ip",
    "gateway",
    "nameservers",
    "domain",
    "password",
    "mode",
    "reverse_proxy",
    "template_filter",
)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name) or str(default)
    try:
        return int(value.strip())
    except ValueError:
        raise ValidationError(f"Invalid {name}={value!r}: must be an integer")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name) or str(default)
    try:
        return float(value.strip())
    except ValueError:
        raise ValidationError(f"Invalid {name}={value!r}: must be a number")


@dataclass
class Config:
    """Runtime settings loaded from the environment."""

    # Container defaults
    hostname: str = "portainer"
    disk_size: str = "8G"
    memory: int = 1024
    cores: int = 2
    domain: Optional[str] = None
    password: Optional[str] = None
    storage: Optional[str] = None
    template_storage: Optional[str] = None
    bridge: str = "vmbr0"
    network: str = "dhcp"
    ip: Optional[str] = None
    gateway: Optional[str] = None
    nameservers: Optional[str] = None
    mode: str = "standalone"
    template_filter: str = "alpine"

    # Host connection; empty host means "run against the local node"
    pve_host: Optional[str] = None
    ssh_user: str = "root"
    ssh_key_path: str = "~/.ssh/id_rsa"

    # Polling
    ready_max_attempts: int = 30
    ready_interval: float = 2.0
    runtime_max_attempts: int = 30
    runtime_interval: float = 2.0
    probe_address: str = "8.8.8.8"
    task_timeout: int = 600

    @classmethod
    def from_environment(cls) -> "Config":
        """Load configuration from environment variables."""
        load_dotenv()

        return cls(
            hostname=os.getenv("CT_HOSTNAME", "portainer"),
            disk_size=os.getenv("CT_DISK_SIZE", "8G"),
            memory=_env_int("CT_MEMORY", 1024),
            cores=_env_int("CT_CORES", 2),
            domain=os.getenv("CT_DOMAIN") or None,
            password=os.getenv("CT_PASSWORD") or None,
            storage=os.getenv("CT_STORAGE") or None,
            template_storage=os.getenv("CT_TEMPLATE_STORAGE") or None,
            bridge=os.getenv("CT_BRIDGE", "vmbr0"),
            network=os.getenv("CT_NETWORK", "dhcp"),
            ip=os.getenv("CT_IP") or None,
            gateway=os.getenv("CT_GATEWAY") or None,
            nameservers=os.getenv("CT_NAMESERVERS") or None,
            mode=os.getenv("CT_MODE", "standalone"),
            template_filter=os.getenv("TEMPLATE_FILTER", "alpine"),
            pve_host=os.getenv("PVE_HOST") or None,
            ssh_user=os.getenv("SSH_USER", "root"),
            ssh_key_path=os.getenv("SSH_KEY_PATH", "~/.ssh/id_rsa"),
            ready_max_attempts=_env_int("READY_MAX_ATTEMPTS", 30),
            ready_interval=_env_float("READY_INTERVAL", 2.0),
            runtime_max_attempts=_env_int("RUNTIME_MAX_ATTEMPTS", 30),
            runtime_interval=_env_float("RUNTIME_INTERVAL", 2.0),
            probe_address=os.getenv("PROBE_ADDRESS", "8.8.8.8"),
            task_timeout=_env_int("TASK_TIMEOUT", 600),
        )

    def validate(self) -> None:
        """Validate polling settings."""
        if self.ready_max_attempts < 1 or self.runtime_max_attempts < 1:
            raise ValidationError("Attempt counts must be at least 1")
        if self.ready_interval < 0 or self.runtime_interval < 0:
            raise ValidationError("Polling intervals must not be negative")
        if self.task_timeout <= 0:
            raise ValidationError(f"Invalid task timeout {self.task_timeout}")

    def request_defaults(self) -> Dict[str, Any]:
        """Request values derived from the environment, keyed like REQUEST_KEYS."""
        return {
            "hostname": self.hostname,
            "cores": self.cores,
            "memory": self.memory,
            "disk": self.disk_size,
            "storage": self.storage,
            "template_storage": self.template_storage,
            "bridge": self.bridge,
            "network": self.network,
            "ip": self.ip,
            "gateway": self.gateway,
            "nameservers": self.nameservers,
            "domain": self.domain,
            "password": self.password,
            "mode": self.mode,
            "template_filter": self.template_filter,
        }


def load_request_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Load request values from a YAML file.

    Args:
        path: YAML file with a flat mapping of request keys

    Returns:
        Mapping restricted to known request keys

    Raises:
        FileNotFoundError: If the file does not exist
        ValidationError: If the file is not a mapping or has unknown keys
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Request file not found: {path}")

    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValidationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError(f"Request file {path} must contain a mapping")

    unknown = sorted(set(data) - set(REQUEST_KEYS))
    if unknown:
        raise ValidationError(f"Unknown keys in {path}: {', '.join(unknown)}")

    return data


def merge_request_values(*layers: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay value layers left to right; None never overrides a value."""
    merged: Dict[str, Any] = {}
    for layer in layers:
        for key, value in layer.items():
            if value is not None:
                merged[key] = value
    return merged
