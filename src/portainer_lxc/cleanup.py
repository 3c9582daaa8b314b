"""Rollback of a partially provisioned container."""

import logging
from typing import Any, Optional

from proxmoxer.core import ResourceException

from portainer_lxc.exceptions import ProvisionError
from portainer_lxc.models import ContainerHandle
from portainer_lxc.proxmox_api import is_missing_error

logger = logging.getLogger(__name__)


class Cleanup:
    """Stop and destroy a container; safe to call repeatedly."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def run(self, handle: ContainerHandle) -> bool:
        """Tear the container down.

        Returns:
            True if a container was destroyed, False if there was nothing to do
        """
        ctid = handle.ctid
        status = self.client.container_status(ctid)
        if status is None:
            logger.info(f"Container {ctid} does not exist, nothing to clean up")
            return False

        if status == "running":
            print(f"⏹️  Stopping container {ctid}")
            try:
                self.client.wait_for_task(self.client.stop_container(ctid), f"Stopping container {ctid}")
            except (ResourceException, ProvisionError) as e:
                if is_missing_error(e):
                    return False
                # Already stopped between the status check and the stop call
                if "not running" not in str(e).lower():
                    raise

        print(f"🗑️  Destroying container {ctid}")
        try:
            self.client.wait_for_task(self.client.destroy_container(ctid), f"Destroying container {ctid}")
        except (ResourceException, ProvisionError) as e:
            if is_missing_error(e):
                logger.info(f"Container {ctid} already destroyed")
                return False
            raise

        return True


class RollbackGuard:
    """Context manager that destroys the tracked container if the block fails.

    Usage:
        with RollbackGuard(Cleanup(client)) as guard:
            guard.track(handle)
            ...  # any exception here destroys the container
            guard.disarm()
    """

    def __init__(self, cleanup: Cleanup) -> None:
        self.cleanup = cleanup
        self.handle: Optional[ContainerHandle] = None

    def track(self, handle: ContainerHandle) -> None:
        self.handle = handle

    def disarm(self) -> None:
        self.handle = None

    @property
    def armed(self) -> bool:
        return self.handle is not None

    def __enter__(self) -> "RollbackGuard":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        if exc_type is None or self.handle is None:
            return False

        logger.error(f"Provisioning failed ({exc_val}), rolling back container {self.handle.ctid}")
        try:
            self.cleanup.run(self.handle)
        except Exception as cleanup_error:
            logger.error(f"Cleanup of container {self.handle.ctid} failed: {cleanup_error}")
        finally:
            self.handle = None
        return False
