"""Shared test fixtures and configuration for portainer-lxc tests."""

from typing import Any, Callable, Dict, List, Optional, Set
from unittest import mock

import pytest
from proxmoxer.core import ResourceException
from rich.console import Console

from portainer_lxc.exceptions import ProvisioningError
from portainer_lxc.shell import CommandResult
from portainer_lxc.tasks import HostTask


class FakeProxmoxClient:
    """In-memory Proxmox node recording every call made against it."""

    def __init__(self) -> None:
        self.node = "pve"
        self.is_host = True
        self.containers: Dict[int, str] = {}
        self.other_ids: Set[int] = {100, 101}
        self.nextid = 105
        self.storages: Dict[str, List[Dict[str, Any]]] = {
            "rootdir": [{"storage": "local-lvm", "type": "lvmthin", "avail": 100 * 1024**3}],
            "vztmpl": [{"storage": "local", "type": "dir", "avail": 50 * 1024**3}],
        }
        self.catalog = [
            {"template": "alpine-3.18-default_20230607_amd64.tar.xz"},
            {"template": "alpine-3.19-default_20240207_amd64.tar.xz"},
            {"template": "debian-12-standard_12.2-1_amd64.tar.zst"},
        ]
        self.cached: List[str] = []
        self.failing_tasks: Set[str] = set()
        self.refresh_result = CommandResult("pveam update", "", "", 0)
        self.exec_handler: Optional[Callable[[int, str], CommandResult]] = None
        self.pushed: Dict[str, str] = {}
        self.calls: List[tuple] = []

    # host

    def is_proxmox_host(self) -> bool:
        return self.is_host

    def next_free_id(self) -> int:
        return self.nextid

    def used_ids(self) -> Set[int]:
        return set(self.containers) | self.other_ids

    def list_storages(self, content: str) -> List[Dict[str, Any]]:
        return self.storages.get(content, [])

    def storage_content(self, storage: str, content: str = "vztmpl") -> List[Dict[str, Any]]:
        return [{"volid": volid} for volid in self.cached if volid.startswith(f"{storage}:")]

    # templates

    def refresh_templates(self) -> CommandResult:
        self.calls.append(("refresh_templates",))
        return self.refresh_result

    def available_templates(self) -> List[Dict[str, Any]]:
        return self.catalog

    def download_template(self, storage: str, template: str) -> str:
        self.calls.append(("download_template", storage, template))
        self.cached.append(f"{storage}:vztmpl/{template}")
        return "UPID:download"

    # containers

    def create_container(self, **params: Any) -> str:
        self.calls.append(("create_container", params))
        self.containers[params["vmid"]] = "stopped"
        return "UPID:create"

    def start_container(self, ctid: int) -> str:
        self.calls.append(("start_container", ctid))
        self._require(ctid)
        self.containers[ctid] = "running"
        return "UPID:start"

    def stop_container(self, ctid: int) -> str:
        self.calls.append(("stop_container", ctid))
        self._require(ctid)
        self.containers[ctid] = "stopped"
        return "UPID:stop"

    def destroy_container(self, ctid: int) -> str:
        self.calls.append(("destroy_container", ctid))
        self._require(ctid)
        del self.containers[ctid]
        return "UPID:destroy"

    def container_status(self, ctid: int) -> Optional[str]:
        return self.containers.get(ctid)

    def _require(self, ctid: int) -> None:
        if ctid not in self.containers:
            raise ResourceException(404, "Not Found", f"Configuration file 'nodes/pve/lxc/{ctid}.conf' does not exist")

    # tasks

    def task_status(self, upid: str) -> Dict[str, Any]:
        if upid in self.failing_tasks:
            return {"status": "stopped", "exitstatus": "command failed"}
        return {"status": "stopped", "exitstatus": "OK"}

    def task(self, upid: str, description: str, error_cls: Any = ProvisioningError) -> HostTask:
        return HostTask(self, upid, description, timeout=5, interval=0, error_cls=error_cls, sleep=lambda s: None)

    def wait_for_task(self, upid: str, description: str, error_cls: Any = ProvisioningError) -> Dict[str, Any]:
        return self.task(upid, description, error_cls).join()

    # guest

    def push_file(self, ctid: int, content: str, dest: str, perms: str = "755") -> None:
        self.calls.append(("push_file", ctid, dest, perms))
        self.pushed[dest] = content

    def exec_in_container(self, ctid: int, command: str, timeout: Optional[float] = None) -> CommandResult:
        self.calls.append(("exec_in_container", ctid, command))
        if self.exec_handler is not None:
            return self.exec_handler(ctid, command)
        if command.startswith("ip -4 addr"):
            return CommandResult(command, "    inet 192.168.1.50/24 brd 192.168.1.255 scope global eth0", "", 0)
        return CommandResult(command, "", "", 0)

    def close(self) -> None:
        pass

    def called(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def fake_client() -> FakeProxmoxClient:
    """In-memory Proxmox node with one rootdir and one template storage."""
    return FakeProxmoxClient()


@pytest.fixture
def quiet_console() -> Console:
    """Console that swallows output so spinners do not clutter test logs."""
    return Console(quiet=True)


@pytest.fixture
def mock_proxmox():
    """Mock Proxmox API client for testing."""
    with mock.patch('portainer_lxc.proxmox_api.ProxmoxAPI') as mock_api:
        proxmox = mock.MagicMock()
        mock_api.return_value = proxmox

        proxmox.cluster.status.get.return_value = [
            {"type": "cluster", "name": "homelab"},
            {"type": "node", "name": "pve", "local": 1},
            {"type": "node", "name": "still-fawn", "local": 0},
        ]
        proxmox.nodes.get.return_value = [{"node": "pve"}, {"node": "still-fawn"}]

        yield proxmox


@pytest.fixture
def mock_shell():
    """Host shell whose commands all succeed."""
    shell = mock.MagicMock()
    shell.run.side_effect = lambda command, timeout=None: CommandResult(command, "", "", 0)
    shell.check.side_effect = lambda command, timeout=None: CommandResult(command, "", "", 0)
    return shell


@pytest.fixture
def mock_env(monkeypatch):
    """Set up test environment variables."""
    # Keep a developer's .env from leaking into tests
    monkeypatch.setattr("portainer_lxc.config.load_dotenv", lambda *args, **kwargs: None)

    env_vars = {
        "CT_HOSTNAME": "portainer-test",
        "CT_DISK_SIZE": "16G",
        "CT_MEMORY": "2048",
        "CT_CORES": "4",
        "CT_BRIDGE": "vmbr25gbe",
        "TEMPLATE_FILTER": "alpine",
        "READY_MAX_ATTEMPTS": "5",
        "READY_INTERVAL": "0",
        "TASK_TIMEOUT": "120",
    }
    for key in ("CT_DOMAIN", "CT_PASSWORD", "CT_STORAGE", "CT_TEMPLATE_STORAGE", "CT_NETWORK",
                "CT_IP", "CT_GATEWAY", "CT_NAMESERVERS", "CT_MODE", "PVE_HOST"):
        monkeypatch.delenv(key, raising=False)
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    return env_vars


@pytest.fixture
def mock_ssh_client():
    """Mock SSH client for testing remote operations."""
    with mock.patch('paramiko.SSHClient') as mock_ssh, \
         mock.patch('socket.gethostbyname', return_value="192.168.4.122"):
        client = mock.MagicMock()
        mock_ssh.return_value = client

        stdout = mock.MagicMock()
        stderr = mock.MagicMock()
        stdout.read.return_value = b"command output\n"
        stdout.channel.recv_exit_status.return_value = 0
        stderr.read.return_value = b""

        client.exec_command.return_value = (None, stdout, stderr)

        yield client

