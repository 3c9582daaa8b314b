#!/usr/bin/env python3
"""
src/portainer_lxc/provisioner.py

Provision an Alpine LXC container on Proxmox, install Docker and Portainer in it.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from proxmoxer.core import ResourceException
from rich.console import Console

from portainer_lxc.cleanup import Cleanup, RollbackGuard
from portainer_lxc.config import Config
from portainer_lxc.exceptions import ProvisioningError, ReadinessTimeout
from portainer_lxc.guest_setup import GuestConfigurator, GuestSetupScript
from portainer_lxc.models import (
    ContainerHandle,
    DeploymentResult,
    NetworkMode,
    ProvisionRequest,
    ReadinessResult,
)
from portainer_lxc.preflight import Preflight, StorageChooser
from portainer_lxc.readiness import ContainerProbe, wait_for_ready
from portainer_lxc.reporter import Reporter
from portainer_lxc.tasks import track
from portainer_lxc.template_manager import TemplateResolver

logger = logging.getLogger(__name__)

# Fixed policy: unprivileged, nesting + keyctl so Docker runs inside, no swap, start on boot
CONTAINER_POLICY = {
    "unprivileged": 1,
    "features": "nesting=1,keyctl=1",
    "swap": 0,
    "onboot": 1,
}


class Provisioner:
    """Runs preflight, template, create, readiness, guest setup and report in order."""

    def __init__(
        self,
        client: Any,
        config: Optional[Config] = None,
        console: Optional[Console] = None,
        chooser: Optional[StorageChooser] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.config = config or Config()
        self.console = console or Console()
        self.chooser = chooser
        self.sleep = sleep

    @staticmethod
    def build_create_params(request: ProvisionRequest, ctid: int, storage: str, ostemplate: str) -> Dict[str, Any]:
        """Options for the container create call."""
        params: Dict[str, Any] = {
            "vmid": ctid,
            "ostemplate": ostemplate,
            "hostname": request.hostname,
            "cores": request.resources.cores,
            "memory": request.resources.memory_mb,
            "rootfs": f"{storage}:{request.resources.disk_gb}",
            "net0": request.network.net0,
            **CONTAINER_POLICY,
        }
        if request.network.mode == NetworkMode.STATIC and request.network.nameservers:
            params["nameserver"] = " ".join(request.network.nameservers)
        if request.domain:
            params["searchdomain"] = request.domain
        if request.password:
            params["password"] = request.password
        return params

    def create(self, request: ProvisionRequest, handle: ContainerHandle, storage: str, ostemplate: str) -> None:
        """Create and start the container.

        Raises:
            ProvisioningError: If the host rejects or fails either step
        """
        params = self.build_create_params(request, handle.ctid, storage, ostemplate)
        print(
            f"🆕 Creating container {request.hostname!r} on {handle.node!r}: "
            f"{request.resources.cores} CPUs, {request.resources.memory_mb}MB RAM (ctid={handle.ctid})"
        )
        try:
            upid = self.client.create_container(**params)
        except ResourceException as e:
            raise ProvisioningError(f"Creating container {handle.ctid} failed: {e}") from e
        track(self.client.task(upid, "Creating container"), self.console)

        try:
            upid = self.client.start_container(handle.ctid)
        except ResourceException as e:
            raise ProvisioningError(f"Starting container {handle.ctid} failed: {e}") from e
        track(self.client.task(upid, "Starting LXC container"), self.console)

    def wait_until_ready(self, handle: ContainerHandle) -> None:
        """Block until the container is running and can reach the network.

        Raises:
            ReadinessTimeout: If the container is not ready after the configured attempts
        """
        probe = ContainerProbe(self.client, handle, self.config.probe_address)
        result = wait_for_ready(
            probe.check,
            max_attempts=self.config.ready_max_attempts,
            interval=self.config.ready_interval,
            sleep=self.sleep,
        )
        if result == ReadinessResult.TIMED_OUT:
            raise ReadinessTimeout(
                f"Container {handle.ctid} not ready after {self.config.ready_max_attempts} attempts "
                f"(last state: {probe.last_state.value if probe.last_state else 'unknown'})"
            )
        print(f"✅ Container {handle.ctid} is running and online")

    def setup_script(self, request: ProvisionRequest) -> GuestSetupScript:
        return GuestSetupScript(
            deployment=request.deployment,
            domain=request.domain,
            reverse_proxy=request.reverse_proxy,
            runtime_attempts=self.config.runtime_max_attempts,
            runtime_interval=self.config.runtime_interval,
        )

    def run(self, request: ProvisionRequest, check_endpoints: bool = False) -> DeploymentResult:
        """Provision the container end to end.

        Any failure after the container id is committed destroys the container
        before the error propagates.
        """
        request.validate()

        preflight = Preflight(self.client, chooser=self.chooser).run(request)
        template = TemplateResolver(self.client, self.console).resolve(
            preflight.template_storage, request.template_filter
        )

        handle = ContainerHandle(ctid=preflight.ctid, node=self.client.node, hostname=request.hostname)

        with RollbackGuard(Cleanup(self.client)) as guard:
            guard.track(handle)
            self.create(request, handle, preflight.storage, template)
            self.wait_until_ready(handle)
            GuestConfigurator(self.client, self.console).configure(handle, self.setup_script(request))
            guard.disarm()

        return Reporter(self.client, self.console).report(
            handle, request, template=template, check_endpoints=check_endpoints
        )
