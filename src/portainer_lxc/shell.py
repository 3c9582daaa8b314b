"""Command execution on the Proxmox host, locally or over SSH."""

import logging
import os
import socket
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import paramiko

from portainer_lxc.exceptions import CommandError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a host command."""

    command: str
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class HostShell:
    """Runs shell commands on the Proxmox host."""

    def run(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        raise NotImplementedError

    def write_file(self, path: str, content: str) -> None:
        raise NotImplementedError

    def check(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """Run a command and raise CommandError on a non-zero exit."""
        result = self.run(command, timeout=timeout)
        if not result.ok:
            raise CommandError(command, result)
        return result

    def close(self) -> None:
        pass

    def __enter__(self) -> "HostShell":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class LocalShell(HostShell):
    """Runs commands on this machine (the tool is running on the Proxmox node)."""

    def run(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        logger.debug(f"Running locally: {command}")
        try:
            proc = subprocess.run(command, shell=True, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out after {timeout}s: {command}")
            return CommandResult(command, "", f"timed out after {timeout}s", 124)
        return CommandResult(command, proc.stdout.strip(), proc.stderr.strip(), proc.returncode)

    def write_file(self, path: str, content: str) -> None:
        Path(path).write_text(content)


class SSHShell(HostShell):
    """Runs commands on a remote Proxmox node over SSH."""

    def __init__(self, host: str, user: str = "root", key_path: str = "~/.ssh/id_rsa", port: int = 22) -> None:
        self.host = host
        self.user = user
        self.key_path = os.path.expanduser(key_path)
        self.port = port
        self.ssh_client: Optional[paramiko.SSHClient] = None

    def _get_ssh_client(self) -> paramiko.SSHClient:
        """Get (and cache) the SSH connection to the node."""
        if not self.ssh_client:
            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

            # Resolve hostname to IP for better paramiko compatibility
            resolved_ip = socket.gethostbyname(self.host)
            logger.debug(f"Resolved {self.host} -> {resolved_ip}")
            client.connect(
                hostname=resolved_ip,
                port=self.port,
                username=self.user,
                key_filename=self.key_path,
                timeout=10,
            )
            self.ssh_client = client

        return self.ssh_client

    def run(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        logger.debug(f"Running on {self.host}: {command}")
        ssh = self._get_ssh_client()
        stdin, stdout, stderr = ssh.exec_command(command, timeout=timeout)
        exit_code = stdout.channel.recv_exit_status()
        return CommandResult(
            command,
            stdout.read().decode().strip(),
            stderr.read().decode().strip(),
            exit_code,
        )

    def write_file(self, path: str, content: str) -> None:
        sftp = self._get_ssh_client().open_sftp()
        try:
            with sftp.open(path, "w") as remote_file:
                remote_file.write(content)
        finally:
            sftp.close()

    def close(self) -> None:
        """Clean up the SSH connection."""
        if self.ssh_client:
            self.ssh_client.close()
            self.ssh_client = None
