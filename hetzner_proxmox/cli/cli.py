#!/usr/bin/env python3
"""
Main CLI entry point using Typer.
"""

import sys
from pathlib import Path
from typing import Optional

import typer

from hetzner_proxmox.cli.commands import (
    caddy,
    drives,
    firewall_admin,
    host,
    mirrors,
    network,
    pfsense,
    raid,
    system,
    zfs,
)
from hetzner_proxmox.cli.lib.config import load_config, set_config_path
from hetzner_proxmox.cli.lib.log import setup_logging

app = typer.Typer(
    name="hetzner-proxmox",
    help="Proxmox VE setup for Hetzner dedicated servers",
    add_completion=False,
)


@app.callback()
def callback(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to setup.conf"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    set_config_path(config)
    cfg = load_config()
    setup_logging(cfg.log_file, "DEBUG" if verbose else cfg.log_level)


# Add command groups
app.add_typer(drives.app, name="drives", help="Drive inventory and formatting commands")
app.add_typer(raid.app, name="raid", help="Software RAID management commands")
app.add_typer(mirrors.app, name="mirrors", help="RAID1 mirror storage commands")
app.add_typer(zfs.app, name="zfs", help="ZFS pool storage commands")
app.add_typer(network.app, name="network", help="Network configuration commands")
app.add_typer(pfsense.app, name="pfsense", help="pfSense firewall VM commands")
app.add_typer(firewall_admin.app, name="firewall-admin", help="Firewall admin VM commands")
app.add_typer(caddy.app, name="caddy", help="Caddy reverse proxy commands")
app.add_typer(system.app, name="system", help="Host system commands")

app.command("validate")(host.validate)
app.command("status")(host.status)
app.command("restart")(host.restart)
app.command("check-mac")(host.check_mac)


def main() -> int:
    """Main entry point."""
    try:
        app()
        return 0
    except KeyboardInterrupt:
        typer.echo("\nOperation cancelled by user", err=True)
        return 130
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
