"""Host checks and resource selection before anything is created."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from portainer_lxc.exceptions import PreconditionError
from portainer_lxc.models import ProvisionRequest
from portainer_lxc.proxmox_api import PVE_MARKER
from portainer_lxc.validation import CTID_MAX, CTID_MIN

logger = logging.getLogger(__name__)

# Called with the candidate storage names, returns the chosen one
StorageChooser = Callable[[List[str]], str]


@dataclass(frozen=True)
class PreflightResult:
    """Resources resolved for the run."""

    ctid: int
    storage: str
    template_storage: str


class Preflight:
    """Verify the host and pick a container id and storages."""

    def __init__(self, client: Any, chooser: Optional[StorageChooser] = None) -> None:
        """Initialize preflight checks.

        Args:
            client: ProxmoxClient (or compatible) for the target node
            chooser: Callback asked to pick a storage when several qualify
        """
        self.client = client
        self.chooser = chooser

    def check_host(self) -> None:
        if not self.client.is_proxmox_host():
            raise PreconditionError(f"This must be run on a Proxmox VE server ({PVE_MARKER} not found)")

    def select_container_id(self, requested: Optional[int] = None) -> int:
        """Return a container id that the cluster does not use.

        Raises:
            PreconditionError: If the requested id is out of range or taken
        """
        used = self.client.used_ids()

        if requested is not None:
            if not CTID_MIN <= requested <= CTID_MAX:
                raise PreconditionError(f"Container ID {requested} is outside {CTID_MIN}-{CTID_MAX}")
            if requested in used:
                raise PreconditionError(f"Container ID {requested} is already in use")
            return requested

        candidate = self.client.next_free_id()
        if candidate not in used and CTID_MIN <= candidate <= CTID_MAX:
            return candidate

        logger.warning(f"Host suggested id {candidate} which is already in use, scanning for a free id")
        for candidate in range(CTID_MIN, CTID_MAX + 1):
            if candidate not in used:
                return candidate
        raise PreconditionError("No available container IDs found")

    def select_storage(self, requested: Optional[str] = None) -> str:
        """Pick the storage for the container root filesystem."""
        names = [storage["storage"] for storage in self.client.list_storages("rootdir")]
        if not names:
            raise PreconditionError("No valid storage locations found!")

        if requested:
            if requested not in names:
                raise PreconditionError(
                    f"Storage {requested!r} cannot hold container volumes (available: {', '.join(names)})"
                )
            return requested

        if len(names) == 1:
            return names[0]

        if self.chooser is None:
            raise PreconditionError(f"Multiple storages available ({', '.join(names)}); choose one explicitly")

        choice = self.chooser(names)
        if choice not in names:
            raise PreconditionError(f"Invalid storage choice {choice!r}")
        return choice

    def select_template_storage(self, requested: Optional[str], rootfs_storage: str) -> str:
        """Pick the storage that holds OS templates (``vztmpl`` content)."""
        names = [storage["storage"] for storage in self.client.list_storages("vztmpl")]
        if not names:
            raise PreconditionError("No storage accepts container templates (vztmpl)")

        if requested:
            if requested not in names:
                raise PreconditionError(f"Storage {requested!r} cannot hold container templates")
            return requested

        for preferred in (rootfs_storage, "local"):
            if preferred in names:
                return preferred
        return names[0]

    def run(self, request: ProvisionRequest) -> PreflightResult:
        self.check_host()

        ctid = self.select_container_id(request.ctid)
        logger.info(f"Using container ID: {ctid}")

        storage = self.select_storage(request.storage)
        template_storage = self.select_template_storage(request.template_storage, storage)
        logger.info(f"Using storage: {storage} (templates on {template_storage})")

        return PreflightResult(ctid=ctid, storage=storage, template_storage=template_storage)
