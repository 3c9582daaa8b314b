"""Error taxonomy for LXC provisioning runs."""

from typing import Any


class ProvisionError(Exception):
    """Base exception for every fatal provisioning failure."""

    pass


class PreconditionError(ProvisionError):
    """Raised before any container exists: wrong host, no storage, bad input."""

    pass


class ValidationError(PreconditionError):
    """Raised when user supplied values fail validation."""

    pass


class TemplateError(PreconditionError):
    """Raised when no usable OS template can be found or downloaded."""

    pass


class ProvisioningError(ProvisionError):
    """Raised when the host fails to create or start the container."""

    pass


class ReadinessTimeout(ProvisionError):
    """Raised when the container never became reachable."""

    pass


class GuestConfigurationError(ProvisionError):
    """Raised when the setup script inside the container exits non-zero."""

    pass


class CommandError(ProvisionError):
    """Raised when a host shell command exits non-zero."""

    def __init__(self, command: str, result: Any) -> None:
        self.command = command
        self.result = result
        detail = (result.stderr or result.stdout or "").strip()
        super().__init__(f"Command failed ({result.exit_code}): {command}: {detail}")
