from typing import Any, Dict, List, Optional, Set, Type
import logging
import os
import shlex

from proxmoxer import ProxmoxAPI
from proxmoxer.core import ResourceException

from portainer_lxc.config import Config
from portainer_lxc.exceptions import ProvisionError, ProvisioningError
from portainer_lxc.shell import CommandResult, HostShell, LocalShell, SSHShell
from portainer_lxc.tasks import HostTask

logger = logging.getLogger(__name__)

PVE_MARKER = "/etc/pve/local/pve-ssl.key"


def is_missing_error(error: Exception) -> bool:
    """True if a Proxmox error means the container does not exist."""
    if isinstance(error, ResourceException) and getattr(error, "status_code", None) == 404:
        return True
    message = str(error).lower()
    return "does not exist" in message or "not found" in message


class ProxmoxClient:
    """Proxmox API plus host shell for the node that will run the container.

    With no host the API is reached through the local ``pvesh`` backend and
    commands run via subprocess; with a host both go over SSH.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        ssh_user: str = "root",
        ssh_key_path: str = "~/.ssh/id_rsa",
        shell: Optional[HostShell] = None,
        task_timeout: float = 600,
    ) -> None:
        self.host = host or None
        self.task_timeout = task_timeout
        self._node: Optional[str] = None

        if self.host:
            key_file = os.path.expanduser(ssh_key_path)
            self.proxmox = ProxmoxAPI(self.host, user=ssh_user, backend="ssh_paramiko", private_key_file=key_file)
            self.shell = shell or SSHShell(self.host, user=ssh_user, key_path=key_file)
        else:
            self.proxmox = ProxmoxAPI(backend="local")
            self.shell = shell or LocalShell()

    @classmethod
    def from_config(cls, config: Config, host: Optional[str] = None) -> "ProxmoxClient":
        return cls(
            host=host or config.pve_host,
            ssh_user=config.ssh_user,
            ssh_key_path=config.ssh_key_path,
            task_timeout=config.task_timeout,
        )

    @property
    def node(self) -> str:
        """Name of the node we are talking to."""
        if self._node is None:
            self._node = self._resolve_node()
        return self._node

    def _resolve_node(self) -> str:
        for entry in self.proxmox.cluster.status.get():
            if entry.get("type") == "node" and entry.get("local"):
                return str(entry["name"])
        nodes = self.proxmox.nodes.get()
        if not nodes:
            raise ProvisioningError("Proxmox host reported no nodes")
        return str(nodes[0]["node"])

    def close(self) -> None:
        self.shell.close()

    # === HOST ===

    def is_proxmox_host(self) -> bool:
        """Check for the PVE node certificate that only Proxmox VE hosts carry."""
        return self.shell.run(f"test -f {PVE_MARKER}").ok

    def next_free_id(self) -> int:
        """Ask the cluster for the next free VM/CT id."""
        return int(self.proxmox.cluster.nextid.get())

    def used_ids(self) -> Set[int]:
        """All VM and container ids in the cluster, including offline nodes."""
        return {int(resource["vmid"]) for resource in self.proxmox.cluster.resources.get(type="vm")}

    def list_storages(self, content: str) -> List[Dict[str, Any]]:
        """Enabled storages on the node that accept the given content type."""
        storages = self.proxmox.nodes(self.node).storage.get(content=content, enabled=1)
        return [storage for storage in storages if storage.get("active", 1)]

    def storage_content(self, storage: str, content: str = "vztmpl") -> List[Dict[str, Any]]:
        return self.proxmox.nodes(self.node).storage(storage).content.get(content=content)  # type: ignore[no-any-return]

    # === TEMPLATES ===

    def refresh_templates(self) -> CommandResult:
        """Refresh the appliance catalog (``pveam update``)."""
        return self.shell.run("pveam update")

    def available_templates(self) -> List[Dict[str, Any]]:
        return self.proxmox.nodes(self.node).aplinfo.get()  # type: ignore[no-any-return]

    def download_template(self, storage: str, template: str) -> str:
        """Start a template download; returns the task UPID."""
        return str(self.proxmox.nodes(self.node).aplinfo.post(storage=storage, template=template))

    # === CONTAINERS ===

    def create_container(self, **params: Any) -> str:
        return str(self.proxmox.nodes(self.node).lxc.create(**params))

    def start_container(self, ctid: int) -> str:
        return str(self.proxmox.nodes(self.node).lxc(ctid).status.start.post())

    def stop_container(self, ctid: int) -> str:
        return str(self.proxmox.nodes(self.node).lxc(ctid).status.stop.post())

    def destroy_container(self, ctid: int) -> str:
        return str(self.proxmox.nodes(self.node).lxc(ctid).delete(purge=1))

    def container_status(self, ctid: int) -> Optional[str]:
        """Runtime status ("running", "stopped", ...) or None if the container does not exist."""
        try:
            status = self.proxmox.nodes(self.node).lxc(ctid).status.current.get()
        except ResourceException as e:
            if is_missing_error(e):
                return None
            raise
        return status.get("status", "unknown")  # type: ignore[no-any-return]

    def task_status(self, upid: str) -> Dict[str, Any]:
        return self.proxmox.nodes(self.node).tasks(upid).status.get()  # type: ignore[no-any-return]

    def task(self, upid: str, description: str, error_cls: Type[ProvisionError] = ProvisioningError) -> HostTask:
        return HostTask(self, upid, description, timeout=self.task_timeout, error_cls=error_cls)

    def wait_for_task(
        self, upid: str, description: str, error_cls: Type[ProvisionError] = ProvisioningError
    ) -> Dict[str, Any]:
        return self.task(upid, description, error_cls).join()

    # === GUEST ===

    def push_file(self, ctid: int, content: str, dest: str, perms: str = "755") -> None:
        """Copy content into the container filesystem via a staging file on the host."""
        # mktemp creates a fresh 0600 file; never write to a guessable path
        staging = self.shell.check(f"mktemp /tmp/portainer-lxc-{ctid}-XXXXXXXX").stdout.strip()
        try:
            self.shell.write_file(staging, content)
            self.shell.check(f"pct push {ctid} {shlex.quote(staging)} {shlex.quote(dest)} --perms {perms}")
        finally:
            self.shell.run(f"rm -f {shlex.quote(staging)}")

    def exec_in_container(self, ctid: int, command: str, timeout: Optional[float] = None) -> CommandResult:
        """Run a command inside the container namespace (``pct exec``)."""
        return self.shell.run(f"pct exec {ctid} -- {command}", timeout=timeout)
