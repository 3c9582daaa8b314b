"""
Command-line interface for provisioning Portainer LXC containers on Proxmox.

    portainer-lxc deploy --hostname portainer --cores 2 --memory 1024
    portainer-lxc deploy --interactive
    portainer-lxc destroy 105
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from portainer_lxc.cleanup import Cleanup
from portainer_lxc.config import Config, load_request_file, merge_request_values
from portainer_lxc.exceptions import ProvisionError, ValidationError
from portainer_lxc.models import ContainerHandle, DeploymentMode, NetworkMode, ProvisionRequest
from portainer_lxc.provisioner import Provisioner
from portainer_lxc.proxmox_api import ProxmoxClient
from portainer_lxc.template_manager import TemplateResolver
from portainer_lxc.validation import (
    parse_container_id,
    parse_disk_size,
    parse_nameservers,
    parse_positive_int,
    validate_cidr,
    validate_domain,
    validate_hostname,
    validate_ipv4,
)

# Initialize CLI app and console
app = typer.Typer(
    name="portainer-lxc",
    help="Provision a Docker + Portainer LXC container on Proxmox VE",
    add_completion=False
)
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


def load_config() -> Config:
    """Load settings from the environment, exiting on bad values."""
    try:
        config = Config.from_environment()
        config.validate()
    except ProvisionError as e:
        console.print(f"❌ {e}")
        raise typer.Exit(1)
    return config


def get_client(config: Config, host: Optional[str]) -> ProxmoxClient:
    """Connect to the target node (local when no host is given)."""
    try:
        return ProxmoxClient.from_config(config, host=host)
    except Exception as e:
        console.print(f"❌ Failed to connect to Proxmox: {e}")
        raise typer.Exit(1)


def prompt_until_valid(label: str, parse: Callable[[str], Any], default: Optional[Any] = None) -> Any:
    """Prompt until the parser accepts the answer."""
    while True:
        answer = typer.prompt(label, default=default, show_default=bool(default))
        try:
            return parse(str(answer))
        except ValidationError as e:
            console.print(f"[red]{e}[/red]")


def choose_storage(names: List[str]) -> str:
    """Interactive storage selection."""
    console.print("Available storage locations:")
    for index, name in enumerate(names, start=1):
        console.print(f"  {index}) {name}")

    def parse(answer: str) -> str:
        if answer in names:
            return answer
        if answer.isdigit() and 1 <= int(answer) <= len(names):
            return names[int(answer) - 1]
        raise ValidationError(f"Invalid choice {answer!r}")

    return prompt_until_valid("Storage", parse)  # type: ignore[no-any-return]


def prompt_request_values(values: Dict[str, Any]) -> Dict[str, Any]:
    """Collect request values interactively, re-prompting each field until valid."""
    console.print("=== Proxmox LXC Container Setup ===")
    console.print("Please provide the following information:\n")

    answers = dict(values)
    answers["ctid"] = prompt_until_valid(
        "Container ID (blank for next free)", lambda v: parse_container_id(v) if v.strip() else None, default=""
    )
    answers["hostname"] = prompt_until_valid("Container hostname", validate_hostname, values.get("hostname"))
    answers["domain"] = prompt_until_valid(
        "Domain name (e.g., myapp.example.com, blank for none)",
        lambda v: validate_domain(v) if v.strip() else None,
        values.get("domain") or "",
    )

    network = prompt_until_valid("Network mode (dhcp/static)", parse_network_mode, values.get("network", "dhcp"))
    answers["network"] = network
    if network == NetworkMode.STATIC.value:
        answers["ip"] = prompt_until_valid("Container static IP (e.g., 192.168.1.100/24)", validate_cidr, values.get("ip"))
        answers["gateway"] = prompt_until_valid("Gateway IP", lambda v: validate_ipv4(v, "gateway"), values.get("gateway"))
        dns_default = values.get("nameservers") or ""
        if not isinstance(dns_default, str):
            dns_default = ",".join(dns_default)
        answers["nameservers"] = prompt_until_valid(
            "DNS servers (comma-separated)", lambda v: ",".join(parse_nameservers(v)), dns_default
        )

    answers["cores"] = prompt_until_valid("CPU cores", lambda v: parse_positive_int(v, "CPU cores"), values.get("cores"))
    answers["memory"] = prompt_until_valid("RAM in MB", lambda v: parse_positive_int(v, "memory"), values.get("memory"))
    answers["disk"] = prompt_until_valid("Disk size in GB", parse_disk_size, values.get("disk"))
    return answers


def parse_network_mode(value: str) -> str:
    try:
        return NetworkMode(value.strip().lower()).value
    except ValueError:
        raise ValidationError(f"Invalid network mode {value!r}: use dhcp or static")


def print_summary(request: ProvisionRequest) -> None:
    table = Table(title="Configuration Summary")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Container ID", str(request.ctid) if request.ctid else "next free")
    table.add_row("Hostname", request.hostname)
    table.add_row("Deployment", request.deployment.value)
    table.add_row("Domain", request.domain or "-")
    table.add_row("Reverse Proxy", "yes" if request.reverse_proxy else "no")
    if request.network.mode == NetworkMode.STATIC:
        table.add_row("IP Address", request.network.address or "")
        table.add_row("Gateway", request.network.gateway or "")
        table.add_row("DNS", ", ".join(request.network.nameservers) or "-")
    else:
        table.add_row("IP Address", "dhcp")
    table.add_row("Bridge", request.network.bridge)
    table.add_row("Storage", request.storage or "auto")
    table.add_row("CPU Cores", str(request.resources.cores))
    table.add_row("RAM", f"{request.resources.memory_mb}MB")
    table.add_row("Disk", f"{request.resources.disk_gb}GB")
    table.add_row("Template", f"latest {request.template_filter}")

    console.print(table)


@app.command("deploy")
def deploy(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML request file"),
    host: Optional[str] = typer.Option(None, "--host", help="Proxmox node to reach over SSH (default: local)"),
    ctid: Optional[int] = typer.Option(None, "--ctid", help="Container ID (default: next free)"),
    hostname: Optional[str] = typer.Option(None, "--hostname", help="Container hostname"),
    cores: Optional[int] = typer.Option(None, "--cores", help="CPU cores"),
    memory: Optional[int] = typer.Option(None, "--memory", help="RAM in MB"),
    disk: Optional[str] = typer.Option(None, "--disk", help="Root disk size, e.g. 8G"),
    storage: Optional[str] = typer.Option(None, "--storage", help="Storage for the root filesystem"),
    template_storage: Optional[str] = typer.Option(None, "--template-storage", help="Storage for OS templates"),
    bridge: Optional[str] = typer.Option(None, "--bridge", help="Network bridge"),
    network: Optional[NetworkMode] = typer.Option(None, "--network", help="dhcp or static"),
    ip: Optional[str] = typer.Option(None, "--ip", help="Static IP in CIDR notation"),
    gateway: Optional[str] = typer.Option(None, "--gateway", help="Gateway for static IP"),
    nameservers: Optional[str] = typer.Option(None, "--dns", help="Comma-separated DNS servers"),
    domain: Optional[str] = typer.Option(None, "--domain", help="Domain name for Portainer"),
    password: Optional[str] = typer.Option(None, "--password", help="Root password for the container"),
    mode: Optional[DeploymentMode] = typer.Option(None, "--mode", help="standalone (Portainer CE) or agent"),
    reverse_proxy: Optional[bool] = typer.Option(
        None, "--reverse-proxy/--no-reverse-proxy", help="nginx in front of Portainer (default: on when a domain is set)"
    ),
    template_filter: Optional[str] = typer.Option(None, "--template", help="Template name filter"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Prompt for every setting"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    check_endpoints: bool = typer.Option(False, "--check-endpoints", help="Probe Portainer URLs after setup"),
) -> None:
    """Create the container, install Docker and deploy Portainer."""
    try:
        config = Config.from_environment()
        config.validate()

        file_values = load_request_file(config_file) if config_file else {}
        cli_values = {
            "ctid": ctid,
            "hostname": hostname,
            "cores": cores,
            "memory": memory,
            "disk": disk,
            "storage": storage,
            "template_storage": template_storage,
            "bridge": bridge,
            "network": network.value if network else None,
            "ip": ip,
            "gateway": gateway,
            "nameservers": nameservers,
            "domain": domain,
            "password": password,
            "mode": mode.value if mode else None,
            "reverse_proxy": reverse_proxy,
            "template_filter": template_filter,
        }
        values = merge_request_values(config.request_defaults(), file_values, cli_values)

        if interactive:
            values = prompt_request_values(values)

        request = ProvisionRequest.from_dict(values)
    except (ProvisionError, FileNotFoundError) as e:
        console.print(f"❌ {e}")
        raise typer.Exit(1)

    print_summary(request)
    if not yes and not typer.confirm("Continue with installation?", default=False):
        console.print("Aborted.")
        raise typer.Exit(1)

    client = get_client(config, host)
    try:
        provisioner = Provisioner(client, config, console, chooser=choose_storage if interactive else None)
        provisioner.run(request, check_endpoints=check_endpoints)
    except ProvisionError as e:
        console.print(f"\n❌ {e}")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"\n❌ Provisioning failed: {e}")
        logger.exception("Provisioning error")
        raise typer.Exit(1)
    finally:
        client.close()


@app.command("destroy")
def destroy(
    ctid: int = typer.Argument(..., help="Container ID to destroy"),
    host: Optional[str] = typer.Option(None, "--host", help="Proxmox node to reach over SSH (default: local)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
) -> None:
    """Stop and destroy a container."""
    config = load_config()
    if not yes and not typer.confirm(f"Destroy container {ctid}?", default=False):
        console.print("Aborted.")
        raise typer.Exit(1)

    client = get_client(config, host)
    try:
        handle = ContainerHandle(ctid=ctid, node=client.node, hostname="")
        if Cleanup(client).run(handle):
            console.print(f"✅ Container {ctid} destroyed")
        else:
            console.print(f"ℹ️  Container {ctid} does not exist")
    except Exception as e:
        console.print(f"❌ Failed to destroy container {ctid}: {e}")
        logger.exception("Destroy error")
        raise typer.Exit(1)
    finally:
        client.close()


@app.command("templates")
def list_templates(
    template_filter: Optional[str] = typer.Option(None, "--template", help="Template name filter"),
    host: Optional[str] = typer.Option(None, "--host", help="Proxmox node to reach over SSH (default: local)"),
) -> None:
    """List catalog templates matching the filter, newest first."""
    config = load_config()
    name_filter = template_filter or config.template_filter
    client = get_client(config, host)
    try:
        templates = TemplateResolver(client, console).list_matching(name_filter)
    except Exception as e:
        console.print(f"❌ Failed to list templates: {e}")
        raise typer.Exit(1)
    finally:
        client.close()

    if not templates:
        console.print(f"No templates matching {name_filter!r}.")
        return

    table = Table(title=f"Templates matching {name_filter!r}")
    table.add_column("Template", style="cyan")
    for template in templates:
        table.add_row(template)
    console.print(table)


@app.command("storages")
def list_storages(
    host: Optional[str] = typer.Option(None, "--host", help="Proxmox node to reach over SSH (default: local)"),
) -> None:
    """List storages usable for container volumes and templates."""
    config = load_config()
    client = get_client(config, host)
    try:
        rootdir = {s["storage"]: s for s in client.list_storages("rootdir")}
        vztmpl = {s["storage"] for s in client.list_storages("vztmpl")}
    except Exception as e:
        console.print(f"❌ Failed to list storages: {e}")
        raise typer.Exit(1)
    finally:
        client.close()

    table = Table(title=f"Storages on {client.node}")
    table.add_column("Storage", style="cyan")
    table.add_column("Type", style="blue")
    table.add_column("Containers", style="green")
    table.add_column("Templates", style="green")
    table.add_column("Free", style="yellow")

    for name in sorted(set(rootdir) | vztmpl):
        info = rootdir.get(name, {})
        free_gb = info.get("avail", 0) / (1024**3) if info else 0
        table.add_row(
            name,
            str(info.get("type", "-")),
            "✅" if name in rootdir else "-",
            "✅" if name in vztmpl else "-",
            f"{free_gb:.1f} GB" if info else "-",
        )
    console.print(table)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging")
) -> None:
    """
    Portainer LXC provisioning for Proxmox VE

    Creates an unprivileged Alpine container with nesting enabled, installs
    Docker and runs Portainer (server or agent) inside it. Any failure after
    the container is created destroys it again.
    """
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose:
        logging.getLogger().setLevel(logging.INFO)


if __name__ == "__main__":
    app()
