"""Post-deployment summary of the container and its Portainer endpoints."""

import logging
import re
import warnings
from typing import Any, List, Optional

import requests
from rich.console import Console
from rich.table import Table

from portainer_lxc.models import (
    ContainerHandle,
    DeploymentMode,
    DeploymentResult,
    Endpoint,
    ProvisionRequest,
)

logger = logging.getLogger(__name__)

INET_PATTERN = re.compile(r"inet\s+(\d{1,3}(?:\.\d{1,3}){3})")


class Reporter:
    """Resolves the container IP and prints access information. Never fails the run."""

    def __init__(self, client: Any, console: Optional[Console] = None, probe_timeout: float = 5.0) -> None:
        self.client = client
        self.console = console or Console()
        self.probe_timeout = probe_timeout

    def container_ip(self, handle: ContainerHandle, request: ProvisionRequest) -> Optional[str]:
        """IPv4 of eth0: from the static config, else read from inside the container."""
        if request.network.host_address:
            return request.network.host_address
        try:
            result = self.client.exec_in_container(handle.ctid, "ip -4 addr show eth0", timeout=15)
        except Exception as e:
            logger.warning(f"Could not get container IP: {e}")
            return None
        if not result.ok:
            logger.warning(f"Could not get container IP: {result.stderr}")
            return None
        match = INET_PATTERN.search(result.stdout)
        return match.group(1) if match else None

    @staticmethod
    def endpoints(ip: Optional[str], request: ProvisionRequest) -> List[Endpoint]:
        endpoints: List[Endpoint] = []
        if ip:
            if request.deployment == DeploymentMode.AGENT:
                endpoints.append(Endpoint("Portainer Agent", f"{ip}:9001"))
            else:
                endpoints.append(Endpoint("Web Interface", f"https://{ip}:9443"))
                endpoints.append(Endpoint("API Endpoint", f"http://{ip}:8000"))
        if request.reverse_proxy and request.domain:
            endpoints.append(Endpoint("Domain Access", f"http://{request.domain}"))
        return endpoints

    def probe(self, endpoint: Endpoint) -> Optional[bool]:
        """Best-effort HTTP check; None for endpoints that are not HTTP URLs."""
        if not endpoint.url.startswith(("http://", "https://")):
            return None
        try:
            with warnings.catch_warnings():
                # Portainer serves a self-signed certificate
                warnings.simplefilter("ignore")
                response = requests.get(endpoint.url, timeout=self.probe_timeout, verify=False)
            return response.status_code < 500
        except requests.RequestException as e:
            logger.debug(f"{endpoint.url} not responding: {e}")
            return False

    def report(
        self,
        handle: ContainerHandle,
        request: ProvisionRequest,
        template: Optional[str] = None,
        check_endpoints: bool = False,
    ) -> DeploymentResult:
        ip = self.container_ip(handle, request)
        endpoints = self.endpoints(ip, request)
        if check_endpoints:
            for endpoint in endpoints:
                endpoint.reachable = self.probe(endpoint)

        result = DeploymentResult(handle=handle, ip_address=ip, endpoints=endpoints, template=template)
        try:
            self.render(result, request)
        except Exception as e:
            logger.warning(f"Could not render summary: {e}")
        return result

    def render(self, result: DeploymentResult, request: ProvisionRequest) -> None:
        handle = result.handle
        self.console.print("\n[bold green]=== Setup Complete! ===[/bold green]\n")

        table = Table(title="Container Information")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("ID", str(handle.ctid))
        table.add_row("Node", handle.node)
        table.add_row("Hostname", handle.hostname)
        table.add_row("IP Address", result.ip_address or "unknown")
        if request.domain:
            table.add_row("Domain", request.domain)
        if result.template:
            table.add_row("Template", result.template)
        self.console.print(table)

        if result.endpoints:
            endpoint_table = Table(title="Portainer Access")
            endpoint_table.add_column("Endpoint", style="cyan")
            endpoint_table.add_column("URL", style="blue")
            endpoint_table.add_column("Status", style="yellow")
            for endpoint in result.endpoints:
                if endpoint.reachable is None:
                    status = "-"
                else:
                    status = "🟢 Reachable" if endpoint.reachable else "🔴 Not responding"
                endpoint_table.add_row(endpoint.name, endpoint.url, status)
            self.console.print(endpoint_table)

        if request.deployment == DeploymentMode.AGENT:
            self.console.print("\nAdd this agent endpoint to your Portainer server.")
        elif result.ip_address:
            self.console.print("\n[yellow]Initial Setup:[/yellow]")
            self.console.print(f"1. Access Portainer at https://{result.ip_address}:9443")
            self.console.print("2. Create your admin account")
            self.console.print("3. Choose your environment type")

        self.console.print("\n[blue]Docker Commands (inside container):[/blue]")
        self.console.print(f"  pct enter {handle.ctid}")
        self.console.print("  docker ps")
        self.console.print("  docker-compose up -d")

        if request.domain and not request.reverse_proxy:
            self.console.print(f"\nTo use {request.domain}, configure DNS records and a reverse proxy for it.")
