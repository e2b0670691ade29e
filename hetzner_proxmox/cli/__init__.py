"""Command-line interface for hetzner-proxmox."""
