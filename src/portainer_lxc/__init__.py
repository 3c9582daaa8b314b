"""Provision Docker + Portainer in an Alpine LXC container on Proxmox VE."""

__version__ = "0.1.0"
