"""
Hetzner Proxmox Setup - host provisioning tooling for Proxmox VE.

This package provides a CLI for preparing bare-metal Proxmox hosts (drives,
RAID/ZFS storage, bridge networking, pfSense and Caddy) on Hetzner servers.
"""

__version__ = "0.1.0"
__all__ = ["cli"]
