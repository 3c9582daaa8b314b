"""Tests for proxmox_api module."""

from unittest import mock

import pytest
from proxmoxer.core import ResourceException

from portainer_lxc.config import Config
from portainer_lxc.exceptions import CommandError, ProvisioningError, TemplateError
from portainer_lxc.proxmox_api import ProxmoxClient, is_missing_error
from portainer_lxc.shell import CommandResult
from portainer_lxc.tasks import HostTask


@pytest.fixture
def client(mock_proxmox, mock_shell):
    return ProxmoxClient(shell=mock_shell)


def test_local_backend():
    with mock.patch("portainer_lxc.proxmox_api.ProxmoxAPI") as mock_api, \
         mock.patch("portainer_lxc.proxmox_api.LocalShell") as mock_local:
        client = ProxmoxClient()

    mock_api.assert_called_once_with(backend="local")
    assert client.shell is mock_local.return_value


def test_ssh_backend(monkeypatch):
    monkeypatch.setenv("HOME", "/home/tester")
    with mock.patch("portainer_lxc.proxmox_api.ProxmoxAPI") as mock_api, \
         mock.patch("portainer_lxc.proxmox_api.SSHShell") as mock_ssh:
        client = ProxmoxClient("pve.maas", ssh_user="root", ssh_key_path="~/.ssh/id_rsa")

    mock_api.assert_called_once_with(
        "pve.maas", user="root", backend="ssh_paramiko", private_key_file="/home/tester/.ssh/id_rsa"
    )
    mock_ssh.assert_called_once_with("pve.maas", user="root", key_path="/home/tester/.ssh/id_rsa")
    assert client.shell is mock_ssh.return_value


def test_from_config_uses_pve_host():
    config = Config(pve_host="pve.maas", ssh_user="admin", ssh_key_path="/keys/pve", task_timeout=90)
    with mock.patch.object(ProxmoxClient, "__init__", return_value=None) as mock_init:
        ProxmoxClient.from_config(config)

    mock_init.assert_called_once_with(host="pve.maas", ssh_user="admin", ssh_key_path="/keys/pve", task_timeout=90)


def test_node_from_cluster_status(client, mock_proxmox):
    assert client.node == "pve"
    assert client.node == "pve"
    mock_proxmox.cluster.status.get.assert_called_once()


def test_node_falls_back_to_first_node(client, mock_proxmox):
    mock_proxmox.cluster.status.get.return_value = [{"type": "node", "name": "solo", "local": 0}]
    mock_proxmox.nodes.get.return_value = [{"node": "still-fawn"}]

    assert client.node == "still-fawn"


def test_is_proxmox_host(client, mock_shell):
    assert client.is_proxmox_host()
    mock_shell.run.assert_called_once_with("test -f /etc/pve/local/pve-ssl.key")

    mock_shell.run.side_effect = lambda command, timeout=None: CommandResult(command, "", "", 1)
    assert not client.is_proxmox_host()


def test_next_free_id_and_used_ids(client, mock_proxmox):
    mock_proxmox.cluster.nextid.get.return_value = "107"
    mock_proxmox.cluster.resources.get.return_value = [{"vmid": 100}, {"vmid": "105"}]

    assert client.next_free_id() == 107
    assert client.used_ids() == {100, 105}
    mock_proxmox.cluster.resources.get.assert_called_once_with(type="vm")


def test_list_storages_skips_inactive(client, mock_proxmox):
    mock_proxmox.nodes.return_value.storage.get.return_value = [
        {"storage": "local-lvm", "active": 1},
        {"storage": "nfs-backup", "active": 0},
        {"storage": "local-zfs"},
    ]

    names = [storage["storage"] for storage in client.list_storages("rootdir")]

    assert names == ["local-lvm", "local-zfs"]
    mock_proxmox.nodes.return_value.storage.get.assert_called_once_with(content="rootdir", enabled=1)


def test_download_template(client, mock_proxmox):
    mock_proxmox.nodes.return_value.aplinfo.post.return_value = "UPID:pve:download"

    upid = client.download_template("local", "alpine-3.19-default_20240207_amd64.tar.xz")

    assert upid == "UPID:pve:download"
    mock_proxmox.nodes.return_value.aplinfo.post.assert_called_once_with(
        storage="local", template="alpine-3.19-default_20240207_amd64.tar.xz"
    )


def test_refresh_templates_uses_pveam(client, mock_shell):
    assert client.refresh_templates().ok
    mock_shell.run.assert_called_once_with("pveam update")


def test_container_lifecycle_calls(client, mock_proxmox):
    lxc = mock_proxmox.nodes.return_value.lxc
    lxc.create.return_value = "UPID:create"

    assert client.create_container(vmid=105, hostname="portainer") == "UPID:create"
    lxc.create.assert_called_once_with(vmid=105, hostname="portainer")

    client.start_container(105)
    lxc.return_value.status.start.post.assert_called_once()

    client.stop_container(105)
    lxc.return_value.status.stop.post.assert_called_once()

    client.destroy_container(105)
    lxc.return_value.delete.assert_called_once_with(purge=1)


def test_container_status(client, mock_proxmox):
    current = mock_proxmox.nodes.return_value.lxc.return_value.status.current
    current.get.return_value = {"status": "running", "vmid": 105}

    assert client.container_status(105) == "running"


def test_container_status_missing(client, mock_proxmox):
    current = mock_proxmox.nodes.return_value.lxc.return_value.status.current
    current.get.side_effect = ResourceException(500, "Internal Server Error", "CT 105 does not exist")

    assert client.container_status(105) is None


def test_container_status_other_error(client, mock_proxmox):
    current = mock_proxmox.nodes.return_value.lxc.return_value.status.current
    current.get.side_effect = ResourceException(403, "Forbidden", "Permission check failed")

    with pytest.raises(ResourceException):
        client.container_status(105)


def test_task_handle(client, mock_proxmox):
    task = client.task("UPID:x", "Downloading", error_cls=TemplateError)

    assert isinstance(task, HostTask)
    assert task.error_cls is TemplateError
    assert task.timeout == 600


def test_wait_for_task(client, mock_proxmox):
    mock_proxmox.nodes.return_value.tasks.return_value.status.get.return_value = {
        "status": "stopped", "exitstatus": "OK"
    }

    assert client.wait_for_task("UPID:x", "Stopping")["exitstatus"] == "OK"

    mock_proxmox.nodes.return_value.tasks.return_value.status.get.return_value = {
        "status": "stopped", "exitstatus": "can't lock file"
    }
    with pytest.raises(ProvisioningError, match="can't lock file"):
        client.wait_for_task("UPID:y", "Stopping")


STAGING = "/tmp/portainer-lxc-105-Xa81kQ2z"


def staging_check(command, timeout=None):
    stdout = STAGING + "\n" if command.startswith("mktemp") else ""
    return CommandResult(command, stdout, "", 0)


def test_push_file_stages_and_cleans_up(client, mock_shell):
    mock_shell.check.side_effect = staging_check

    client.push_file(105, "#!/bin/sh\n", "/setup.sh")

    assert mock_shell.check.call_args_list == [
        mock.call("mktemp /tmp/portainer-lxc-105-XXXXXXXX"),
        mock.call(f"pct push 105 {STAGING} /setup.sh --perms 755"),
    ]
    mock_shell.write_file.assert_called_once_with(STAGING, "#!/bin/sh\n")
    mock_shell.run.assert_called_once_with(f"rm -f {STAGING}")


def test_push_file_never_writes_fixed_path(client, mock_shell):
    """The staging file comes from mktemp, so it cannot be pre-planted."""
    mock_shell.check.side_effect = staging_check

    client.push_file(105, "echo", "/setup.sh")

    written_path = mock_shell.write_file.call_args.args[0]
    assert written_path == STAGING
    assert written_path != "/tmp/portainer-lxc-105-setup.sh"


def test_push_file_cleans_up_on_failure(client, mock_shell):
    def failing_push(command, timeout=None):
        if command.startswith("pct push"):
            raise CommandError(command, CommandResult(command, "", "CT is locked", 255))
        return staging_check(command, timeout)

    mock_shell.check.side_effect = failing_push

    with pytest.raises(CommandError):
        client.push_file(105, "echo", "/setup.sh")

    mock_shell.run.assert_called_once_with(f"rm -f {STAGING}")


def test_push_file_mktemp_failure(client, mock_shell):
    mock_shell.check.side_effect = CommandError("mktemp", CommandResult("mktemp", "", "No space left on device", 1))

    with pytest.raises(CommandError, match="No space left"):
        client.push_file(105, "echo", "/setup.sh")

    mock_shell.write_file.assert_not_called()
    mock_shell.run.assert_not_called()


def test_exec_in_container(client, mock_shell):
    result = client.exec_in_container(105, "docker ps", timeout=10)

    assert result.ok
    mock_shell.run.assert_called_once_with("pct exec 105 -- docker ps", timeout=10)


@pytest.mark.parametrize("error,expected", [
    (ResourceException(404, "Not Found", ""), True),
    (ResourceException(500, "Internal Server Error", "Configuration file 'nodes/pve/lxc/105.conf' does not exist"), True),
    (ResourceException(500, "Internal Server Error", "CT is locked (create)"), False),
    (ProvisioningError("Destroying container failed: CT 105 not found"), True),
    (RuntimeError("boom"), False),
])
def test_is_missing_error(error, expected):
    assert is_missing_error(error) is expected
