"""Input validation for container provisioning parameters.

Every ``parse_*``/``validate_*`` helper returns the normalised value or raises
:class:`ValidationError`, so the same functions back the CLI options, the
interactive prompts and YAML request files.
"""

import ipaddress
import re
from typing import Iterable, List, Union

from portainer_lxc.exceptions import ValidationError

CTID_MIN = 100
CTID_MAX = 999_999_999

HOSTNAME_PATTERN = re.compile(r"^[A-Za-z0-9-]+$")
DOMAIN_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
DOMAIN_PATTERN = re.compile(rf"^(?:{DOMAIN_LABEL}\.)+[A-Za-z]{{2,63}}$")
CIDR_PATTERN = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})/(\d{1,2})$")
DISK_PATTERN = re.compile(r"^(\d+)\s*(?:G|GB|GiB)?$", re.IGNORECASE)


def parse_container_id(value: Union[str, int]) -> int:
    """Parse a container id and check it lies in the Proxmox id range."""
    try:
        ctid = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid container ID {value!r}: must be a number")
    if not CTID_MIN <= ctid <= CTID_MAX:
        raise ValidationError(f"Invalid container ID {ctid}: must be between {CTID_MIN} and {CTID_MAX}")
    return ctid


def validate_hostname(value: str) -> str:
    """Hostnames may only contain letters, numbers and hyphens."""
    value = (value or "").strip()
    if not HOSTNAME_PATTERN.match(value):
        raise ValidationError(f"Invalid hostname {value!r}: use only letters, numbers, and hyphens")
    return value


def is_valid_domain(value: str) -> bool:
    """Conservative hostname-with-TLD grammar (RFC 1123 labels, alphabetic TLD)."""
    return bool(value) and len(value) <= 253 and DOMAIN_PATTERN.match(value) is not None


def validate_domain(value: str) -> str:
    value = (value or "").strip()
    if not is_valid_domain(value):
        raise ValidationError(f"Invalid domain {value!r}: expected something like myapp.example.com")
    return value


def is_valid_cidr(value: str) -> bool:
    """Check ``a.b.c.d/nn`` syntax with octets <= 255 and prefix <= 32."""
    match = CIDR_PATTERN.match(value or "")
    if not match:
        return False
    *octets, prefix = (int(part) for part in match.groups())
    return all(octet <= 255 for octet in octets) and prefix <= 32


def validate_cidr(value: str) -> str:
    value = (value or "").strip()
    if not is_valid_cidr(value):
        raise ValidationError(f"Invalid IP {value!r}: use CIDR notation (e.g. 192.168.1.100/24)")
    return value


def validate_ipv4(value: str, field: str = "IP address") -> str:
    value = (value or "").strip()
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        raise ValidationError(f"Invalid {field} {value!r}")
    return value


def parse_nameservers(value: Union[str, Iterable[str], None]) -> List[str]:
    """Accept a comma/space separated string or a list of IPv4 addresses."""
    if value is None:
        return []
    if isinstance(value, str):
        items = [item for item in re.split(r"[,\s]+", value) if item]
    else:
        items = [str(item).strip() for item in value if str(item).strip()]
    return [validate_ipv4(item, "DNS server") for item in items]


def parse_positive_int(value: Union[str, int], field: str) -> int:
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid {field} {value!r}: must be a positive integer")
    if number <= 0:
        raise ValidationError(f"Invalid {field} {number}: must be a positive integer")
    return number


def parse_disk_size(value: Union[str, int]) -> int:
    """Parse ``8``, ``8G`` or ``8GB`` into a size in GiB."""
    match = DISK_PATTERN.match(str(value).strip())
    if not match:
        raise ValidationError(f"Invalid disk size {value!r}: expected a size in GB such as 8G")
    return parse_positive_int(match.group(1), "disk size")
