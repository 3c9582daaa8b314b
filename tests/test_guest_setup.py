"""Tests for guest_setup module."""

import pytest

from portainer_lxc.exceptions import GuestConfigurationError
from portainer_lxc.guest_setup import GUEST_SCRIPT_PATH, GuestConfigurator, GuestSetupScript
from portainer_lxc.models import ContainerHandle, DeploymentMode
from portainer_lxc.shell import CommandResult

HANDLE = ContainerHandle(ctid=105, node="pve", hostname="portainer")


def test_standalone_script():
    script = GuestSetupScript().render()

    assert script.startswith("#!/bin/sh\nset -e\n")
    assert "apk add --no-cache docker docker-cli-compose curl bash shadow tzdata\n" in script
    assert "rc-update add docker default" in script
    assert "docker network create portainer_agent_network || true" in script
    assert "docker volume create portainer_data" in script
    assert "-p 9443:9443 -p 8000:8000" in script
    assert "portainer/portainer-ce:latest" in script
    assert "portainer/agent" not in script
    assert "nginx" not in script
    assert "/root/.env" not in script


def test_docker_wait_loop_is_bounded():
    script = GuestSetupScript(runtime_attempts=12, runtime_interval=0.5).render()

    assert "until docker info >/dev/null 2>&1; do" in script
    assert '[ "$attempt" -ge 12 ]' in script
    assert "sleep 0.5" in script
    assert "exit 1" in script


def test_script_order():
    """Docker must be up before anything is run on it."""
    script = GuestSetupScript(domain="portainer.example.com", reverse_proxy=True).render()

    positions = [
        script.index("apk add"),
        script.index("service docker start"),
        script.index("until docker info"),
        script.index("docker network create"),
        script.index("docker run"),
        script.index("service nginx start"),
        script.index("/etc/localtime"),
        script.index("/root/.env"),
    ]
    assert positions == sorted(positions)


def test_agent_script():
    script = GuestSetupScript(deployment=DeploymentMode.AGENT).render()

    assert "portainer/agent:latest" in script
    assert "-p 9001:9001" in script
    assert "AGENT_CLUSTER_ADDR=tasks.portainer_agent" in script
    assert "portainer-ce" not in script
    assert "docker volume create" not in script


def test_reverse_proxy_script():
    script = GuestSetupScript(domain="portainer.example.com", reverse_proxy=True)

    assert script.packages[-1] == "nginx"
    rendered = script.render()
    assert "server_name portainer.example.com;" in rendered
    assert "proxy_pass https://localhost:9443;" in rendered
    assert "echo DOMAIN=portainer.example.com > /root/.env" in rendered


def test_domain_without_reverse_proxy():
    rendered = GuestSetupScript(domain="portainer.example.com").render()

    assert "nginx" not in rendered
    assert "DOMAIN=portainer.example.com" in rendered


def test_configure_pushes_and_runs(fake_client, quiet_console):
    script = GuestSetupScript()

    GuestConfigurator(fake_client, quiet_console).configure(HANDLE, script)

    assert fake_client.called("push_file") == [("push_file", 105, GUEST_SCRIPT_PATH, "755")]
    assert fake_client.pushed[GUEST_SCRIPT_PATH] == script.render()
    assert ("exec_in_container", 105, "sh /setup.sh") in fake_client.calls


def test_configure_failure_reports_tail(fake_client, quiet_console):
    output = "\n".join(f"line {n}" for n in range(30))
    fake_client.exec_handler = lambda ctid, command: CommandResult(command, "", output, 1)

    with pytest.raises(GuestConfigurationError, match="exited with 1") as exc_info:
        GuestConfigurator(fake_client, quiet_console).configure(HANDLE, GuestSetupScript())

    message = str(exc_info.value)
    assert "line 29" in message
    assert "line 19" not in message


def test_configure_push_failure(fake_client, quiet_console):
    def broken_push(*args, **kwargs):
        raise OSError("No space left on device")

    fake_client.push_file = broken_push

    with pytest.raises(GuestConfigurationError, match="No space left"):
        GuestConfigurator(fake_client, quiet_console).configure(HANDLE, GuestSetupScript())
    assert not fake_client.called("exec_in_container")
