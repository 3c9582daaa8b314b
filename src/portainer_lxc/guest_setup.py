#!/usr/bin/env python3
"""
src/portainer_lxc/guest_setup.py

Setup payload run inside the Alpine container: installs Docker, waits for the
engine and launches Portainer (server or agent), optionally fronted by nginx.
"""

import logging
import shlex
from dataclasses import dataclass
from typing import Any, List, Optional

from rich.console import Console

from portainer_lxc.exceptions import GuestConfigurationError
from portainer_lxc.models import ContainerHandle, DeploymentMode
from portainer_lxc.tasks import ThreadTask, track

logger = logging.getLogger(__name__)

GUEST_SCRIPT_PATH = "/setup.sh"

BASE_PACKAGES = ["docker", "docker-cli-compose", "curl", "bash", "shadow", "tzdata"]

PORTAINER_CONFIG = {
    "image": "portainer/portainer-ce:latest",
    "name": "portainer",
    "volume": "portainer_data",
    "ports": [9443, 8000],
}

AGENT_CONFIG = {
    "image": "portainer/agent:latest",
    "name": "portainer_agent",
    "ports": [9001],
    "cluster_addr": "tasks.portainer_agent",
}

DOCKER_NETWORK = "portainer_agent_network"

NGINX_SITE = """cat > /etc/nginx/http.d/default.conf <<'NGINX_CONF'
server {{
    listen 80;
    server_name {domain};

    location / {{
        proxy_pass https://localhost:9443;
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";
        proxy_set_header Host $host;
    }}
}}
NGINX_CONF"""


@dataclass(frozen=True)
class GuestSetupScript:
    """Templated setup script for the guest."""

    deployment: DeploymentMode = DeploymentMode.STANDALONE
    domain: Optional[str] = None
    reverse_proxy: bool = False
    runtime_attempts: int = 30
    runtime_interval: float = 2.0

    @property
    def packages(self) -> List[str]:
        return BASE_PACKAGES + (["nginx"] if self.reverse_proxy else [])

    def render(self) -> str:
        sections = [
            ["#!/bin/sh", "set -e"],
            self._install_packages(),
            self._start_docker(),
            self._wait_for_docker(),
            [f"docker network create {DOCKER_NETWORK} || true"],
            self._run_agent() if self.deployment == DeploymentMode.AGENT else self._run_portainer(),
            self._reverse_proxy() if self.reverse_proxy else [],
            ["cp /usr/share/zoneinfo/UTC /etc/localtime"],
            [f"echo {shlex.quote('DOMAIN=' + self.domain)} > /root/.env"] if self.domain else [],
        ]
        return "\n\n".join("\n".join(lines) for lines in sections if lines) + "\n"

    def _install_packages(self) -> List[str]:
        return ["apk update", "apk add --no-cache " + " ".join(self.packages)]

    def _start_docker(self) -> List[str]:
        return ["rc-update add docker default", "service docker start"]

    def _wait_for_docker(self) -> List[str]:
        interval = f"{self.runtime_interval:g}"
        return [
            "attempt=1",
            "until docker info >/dev/null 2>&1; do",
            f'    if [ "$attempt" -ge {self.runtime_attempts} ]; then',
            f'        echo "Docker did not become ready after {self.runtime_attempts} attempts" >&2',
            "        exit 1",
            "    fi",
            "    attempt=$((attempt + 1))",
            f"    sleep {interval}",
            "done",
        ]

    def _run_portainer(self) -> List[str]:
        config = PORTAINER_CONFIG
        ports = " ".join(f"-p {port}:{port}" for port in config["ports"])  # type: ignore[attr-defined]
        return [
            f"docker volume create {config['volume']}",
            (
                f"docker run -d --name {config['name']} --restart always "
                f"--network {DOCKER_NETWORK} {ports} "
                f"-v /var/run/docker.sock:/var/run/docker.sock "
                f"-v {config['volume']}:/data "
                f"{config['image']}"
            ),
        ]

    def _run_agent(self) -> List[str]:
        config = AGENT_CONFIG
        ports = " ".join(f"-p {port}:{port}" for port in config["ports"])  # type: ignore[attr-defined]
        return [
            (
                f"docker run -d --name {config['name']} --restart always "
                f"--network {DOCKER_NETWORK} "
                f"-v /var/run/docker.sock:/var/run/docker.sock "
                f"-v /var/lib/docker/volumes:/var/lib/docker/volumes "
                f"-e AGENT_CLUSTER_ADDR={config['cluster_addr']} "
                f"{ports} {config['image']}"
            ),
        ]

    def _reverse_proxy(self) -> List[str]:
        return [
            NGINX_SITE.format(domain=self.domain),
            "rc-update add nginx default",
            "service nginx start",
        ]


class GuestConfigurator:
    """Pushes the setup script into a container and runs it."""

    def __init__(self, client: Any, console: Optional[Console] = None) -> None:
        self.client = client
        self.console = console or Console()

    def configure(self, handle: ContainerHandle, script: GuestSetupScript) -> None:
        """Run the setup script synchronously inside the container.

        Raises:
            GuestConfigurationError: If the push fails or the script exits non-zero
        """
        logger.info(f"Pushing setup script into container {handle.ctid}")
        try:
            self.client.push_file(handle.ctid, script.render(), GUEST_SCRIPT_PATH, perms="755")
        except Exception as e:
            raise GuestConfigurationError(f"Could not copy setup script into container {handle.ctid}: {e}") from e

        description = (
            "Setting up Docker and Portainer agent"
            if script.deployment == DeploymentMode.AGENT
            else "Setting up Docker and Portainer"
        )
        task = ThreadTask(self.client.exec_in_container, handle.ctid, f"sh {GUEST_SCRIPT_PATH}", description=description)
        result = track(task, self.console)

        if not result.ok:
            tail = "\n".join((result.stderr or result.stdout).splitlines()[-10:])
            logger.error(f"Setup script failed in container {handle.ctid} (exit {result.exit_code})")
            raise GuestConfigurationError(
                f"Setup script exited with {result.exit_code} in container {handle.ctid}: {tail}"
            )

        logger.info(f"Guest setup finished in container {handle.ctid}")
