"""Data models for LXC provisioning runs."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from portainer_lxc.exceptions import ValidationError
from portainer_lxc.validation import (
    parse_container_id,
    parse_disk_size,
    parse_nameservers,
    parse_positive_int,
    validate_cidr,
    validate_domain,
    validate_hostname,
    validate_ipv4,
)


class NetworkMode(str, Enum):
    """How the container's eth0 gets its address."""

    DHCP = "dhcp"
    STATIC = "static"


class DeploymentMode(str, Enum):
    """What gets launched inside the container."""

    STANDALONE = "standalone"  # Portainer CE server
    AGENT = "agent"  # Portainer agent only


class ContainerState(Enum):
    """Observation from a single readiness check."""

    STARTING = "starting"
    RUNNING = "running"  # running, network not reachable yet
    READY = "ready"


class ReadinessResult(Enum):
    """Terminal outcome of the readiness wait."""

    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ResourceSpec:
    """CPU, memory and root disk for the container."""

    cores: int = 2
    memory_mb: int = 1024
    disk_gb: int = 8


@dataclass(frozen=True)
class NetworkSpec:
    """Network configuration for eth0."""

    mode: NetworkMode = NetworkMode.DHCP
    address: Optional[str] = None
    gateway: Optional[str] = None
    nameservers: Tuple[str, ...] = ()
    bridge: str = "vmbr0"

    @property
    def net0(self) -> str:
        """Value for the ``net0`` container option."""
        if self.mode == NetworkMode.STATIC:
            return f"name=eth0,bridge={self.bridge},ip={self.address},gw={self.gateway}"
        return f"name=eth0,bridge={self.bridge},ip=dhcp"

    @property
    def host_address(self) -> Optional[str]:
        """IPv4 address without the prefix length, static mode only."""
        if self.mode == NetworkMode.STATIC and self.address:
            return self.address.split("/", 1)[0]
        return None


@dataclass(frozen=True)
class ProvisionRequest:
    """Validated, immutable description of the container to build."""

    hostname: str
    resources: ResourceSpec = field(default_factory=ResourceSpec)
    network: NetworkSpec = field(default_factory=NetworkSpec)
    ctid: Optional[int] = None
    storage: Optional[str] = None
    template_storage: Optional[str] = None
    domain: Optional[str] = None
    password: Optional[str] = None
    deployment: DeploymentMode = DeploymentMode.STANDALONE
    reverse_proxy: bool = False
    template_filter: str = "alpine"

    def validate(self) -> None:
        """Check field values and combinations.

        Raises:
            ValidationError: If any field or field combination is invalid
        """
        validate_hostname(self.hostname)
        if self.ctid is not None:
            parse_container_id(self.ctid)
        for name in ("cores", "memory_mb", "disk_gb"):
            parse_positive_int(getattr(self.resources, name), name.replace("_", " "))
        if self.network.mode == NetworkMode.STATIC:
            if not self.network.address or not self.network.gateway:
                raise ValidationError("Static networking requires an IP address and a gateway")
            validate_cidr(self.network.address)
            validate_ipv4(self.network.gateway, "gateway")
        parse_nameservers(self.network.nameservers)
        if self.domain is not None:
            validate_domain(self.domain)
        if self.reverse_proxy:
            if not self.domain:
                raise ValidationError("Reverse proxy requires a domain name")
            if self.deployment != DeploymentMode.STANDALONE:
                raise ValidationError("Reverse proxy is only available for the standalone Portainer server")
        if not self.template_filter:
            raise ValidationError("Template filter must not be empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProvisionRequest":
        """Build a request from flat option values (env, YAML file, CLI).

        Empty strings and None are treated as "not set".
        """
        values = {key: value for key, value in data.items() if value is not None and value != ""}

        try:
            network_mode = NetworkMode(str(values.get("network", "dhcp")).lower())
        except ValueError:
            raise ValidationError(f"Invalid network mode {values.get('network')!r}: use dhcp or static")
        try:
            deployment = DeploymentMode(str(values.get("mode", "standalone")).lower())
        except ValueError:
            raise ValidationError(f"Invalid deployment mode {values.get('mode')!r}: use standalone or agent")

        domain = validate_domain(values["domain"]) if "domain" in values else None

        if network_mode == NetworkMode.STATIC:
            network = NetworkSpec(
                mode=network_mode,
                address=validate_cidr(str(values.get("ip", ""))),
                gateway=validate_ipv4(str(values.get("gateway", "")), "gateway"),
                nameservers=tuple(parse_nameservers(values.get("nameservers"))),
                bridge=str(values.get("bridge", "vmbr0")),
            )
        else:
            network = NetworkSpec(mode=network_mode, bridge=str(values.get("bridge", "vmbr0")))

        reverse_proxy = values.get("reverse_proxy")
        if reverse_proxy is None:
            reverse_proxy = domain is not None and deployment == DeploymentMode.STANDALONE
        elif isinstance(reverse_proxy, str):
            reverse_proxy = reverse_proxy.strip().lower() in ("1", "true", "yes", "on")

        request = cls(
            hostname=validate_hostname(str(values.get("hostname", "portainer"))),
            resources=ResourceSpec(
                cores=parse_positive_int(values.get("cores", 2), "CPU cores"),
                memory_mb=parse_positive_int(values.get("memory", 1024), "memory"),
                disk_gb=parse_disk_size(values.get("disk", "8G")),
            ),
            network=network,
            ctid=parse_container_id(values["ctid"]) if "ctid" in values else None,
            storage=values.get("storage"),
            template_storage=values.get("template_storage"),
            domain=domain,
            password=values.get("password"),
            deployment=deployment,
            reverse_proxy=bool(reverse_proxy),
            template_filter=str(values.get("template_filter", "alpine")),
        )
        request.validate()
        return request


@dataclass(frozen=True)
class ContainerHandle:
    """The container created by this run."""

    ctid: int
    node: str
    hostname: str


@dataclass
class Endpoint:
    """A service endpoint exposed by the deployed container."""

    name: str
    url: str
    reachable: Optional[bool] = None


@dataclass
class DeploymentResult:
    """Summary of a successful run."""

    handle: ContainerHandle
    ip_address: Optional[str]
    endpoints: List[Endpoint] = field(default_factory=list)
    template: Optional[str] = None
