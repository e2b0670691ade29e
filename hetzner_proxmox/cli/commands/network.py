"""
Network commands: bridge layout for pfSense (WAN vmbr0, LAN vmbr1, DMZ vmbr2).
"""

from pathlib import Path

import typer

from hetzner_proxmox.cli.lib import network, state
from hetzner_proxmox.cli.lib.config import load_config
from hetzner_proxmox.cli.lib.validators import validate_ip_cidr

app = typer.Typer(help="Network configuration commands")


@app.command()
def configure(
    reset: bool = typer.Option(False, "--reset", help="Only the base vmbr0/vmbr1 layout, without additional IPs"),
    no_dmz: bool = typer.Option(False, "--no-dmz", help="Do not create the vmbr2 DMZ bridge"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the generated file and stop"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """
    Generate and apply /etc/network/interfaces.

    The current file is backed up and an emergency restore script is written
    before anything changes.
    """
    try:
        cfg = load_config()
        validate_ip_cidr(cfg.private_cidr)
        if not no_dmz:
            validate_ip_cidr(cfg.dmz_cidr)
        host = network.detect_host_network()
        typer.echo(f"Uplink: {host.interface} ({host.physical}) {host.cidr} via {host.gateway}, MAC {host.mac}")

        additional_ips = [] if reset else network.load_additional_ips(cfg.additional_ips_file)
        if additional_ips:
            errors, warnings = network.validate_hetzner(additional_ips, host.gateway)
            for warning in warnings:
                typer.echo(f"Warning: {warning}", err=True)
            if errors:
                raise ValueError("Invalid additional IP configuration:\n  " + "\n  ".join(errors))
            typer.echo(f"Additional IPs: {', '.join(ip.ip for ip in additional_ips)}")

        content = network.render_interfaces(
            host,
            additional_ips,
            private_cidr=cfg.private_cidr,
            dmz_cidr=None if no_dmz else cfg.dmz_cidr,
            reset=reset,
        )
        errors = network.validate_interfaces(content, host.address, host.physical)
        if errors:
            raise ValueError("Generated configuration failed validation:\n  " + "\n  ".join(errors))
        for warning in network.lint_interfaces(content):
            typer.echo(f"Warning: {warning}", err=True)

        if dry_run:
            typer.echo(content)
            return

        if not yes:
            typer.confirm(f"Replace {cfg.interfaces_file} and restart networking?", abort=True)

        backup = network.backup_network_state(cfg.interfaces_file, cfg.network_backup_dir)
        typer.echo(f"  Backed up {cfg.interfaces_file} to {backup}")
        script = network.write_restore_script(cfg.restore_script, backup, cfg.interfaces_file)
        typer.echo(f"  Emergency restore script: {script}")

        network.install_interfaces(content, cfg.interfaces_file, backup, host.address)
        typer.echo(f"  Installed {cfg.interfaces_file}")

        network.restart_networking()
        typer.echo("  Restarted networking")

        if not network.check_connectivity():
            typer.echo(f"Warning: no internet connectivity; run {script} to restore", err=True)

        missing = network.missing_addresses(additional_ips)
        for ip in missing:
            typer.echo(f"Warning: {ip} is not configured on vmbr0", err=True)

        for key, reason in network.enable_forwarding():
            typer.echo(f"Warning: {key}: {reason}", err=True)
        typer.echo("  Enabled IP forwarding")

        state.record_network_change(
            {
                "backup": str(backup),
                "interfaces_file": cfg.interfaces_file,
                "reset": reset,
                "dmz": not no_dmz and not reset,
                "additional_ips": [ip.ip for ip in additional_ips],
            }
        )
        typer.echo("Network configured successfully")

    except (typer.Exit, typer.Abort):
        raise
    except Exception as e:
        typer.echo(f"Error configuring network: {e}", err=True)
        raise typer.Exit(1)


@app.command("generate-config")
def generate_config(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
):
    """
    Write a commented additional-ips.conf template.
    """
    try:
        cfg = load_config()
        path = network.write_additional_ips_template(cfg.additional_ips_file, force=force)
        typer.echo(f"Wrote {path}; add one line per additional IP from the Hetzner Robot panel")

    except Exception as e:
        typer.echo(f"Error writing additional IP template: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def status():
    """
    Show addresses, routes and DNS servers.
    """
    try:
        typer.echo(network.status_report())

    except Exception as e:
        typer.echo(f"Error reading network status: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def validate(
    file: Path = typer.Argument(..., help="Interfaces file to check"),
):
    """
    Check an interfaces file against the current uplink.
    """
    try:
        text = file.read_text(encoding="utf-8")
        host = network.detect_host_network()

        errors = network.validate_interfaces(text, host.address, host.physical)
        for warning in network.lint_interfaces(text):
            typer.echo(f"Warning: {warning}")
        for error in errors:
            typer.echo(f"Error: {error}")

        if errors:
            raise typer.Exit(1)
        typer.echo(f"{file} is valid")

    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error validating {file}: {e}", err=True)
        raise typer.Exit(1)
