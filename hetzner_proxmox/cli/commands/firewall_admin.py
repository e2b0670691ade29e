"""
Firewall admin VM: a small desktop on the LAN bridge used to reach the pfSense web UI.
"""

import typer

from hetzner_proxmox.cli.lib import download, network, qm, state, systemd, vms
from hetzner_proxmox.cli.lib.config import load_config
from hetzner_proxmox.cli.lib.models import AdminVMSpec

app = typer.Typer(help="Firewall admin VM commands")


@app.command()
def create(
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without creating anything"),
):
    """
    Create the firewall admin VM (LAN on vmbr1, WAN on vmbr0).
    """
    try:
        cfg = load_config()

        additional_ips = network.load_additional_ips(cfg.additional_ips_file)
        wan_mac = additional_ips[1].mac if len(additional_ips) > 1 else None

        spec = AdminVMSpec(
            vm_id=cfg.admin_vm_id,
            hostname=cfg.admin_hostname,
            cores=cfg.admin_cores,
            memory=cfg.admin_memory,
            disk_size=cfg.admin_disk_size,
            iso_name=vms.iso_name(cfg.admin_iso_path),
            wan_mac=wan_mac,
        )

        if dry_run:
            typer.echo(f"[dry-run] download {cfg.admin_iso_url} -> {cfg.admin_iso_path}")
            typer.echo(f"[dry-run] qm create {spec.vm_id} {' '.join(vms.admin_create_options(spec))}")
            typer.echo(f"[dry-run] qm set {spec.vm_id} {' '.join(vms.admin_network_options(spec))}")
            return

        if not systemd.is_active("pveproxy"):
            raise RuntimeError("pveproxy is not running; is this a Proxmox VE host?")
        if qm.vm_exists(spec.vm_id):
            raise RuntimeError(f"VM {spec.vm_id} already exists")
        for bridge in ("vmbr0", "vmbr1"):
            if not network.interface_exists(bridge):
                raise RuntimeError(f"Bridge {bridge} does not exist (run 'network configure' first)")

        typer.echo("Preparing admin ISO...")
        iso = download.ensure_iso(cfg.admin_iso_url, cfg.admin_iso_path)
        typer.echo(f"  ISO: {iso}")

        typer.echo(f"Creating firewall admin VM {spec.vm_id}...")
        qm.create_vm(spec.vm_id, vms.admin_create_options(spec))
        qm.set_vm(spec.vm_id, vms.admin_network_options(spec))
        typer.echo("  Configured network (net0: vmbr1, net1: vmbr0)")

        state.record_vm({"vm_id": spec.vm_id, "role": "firewall-admin", "name": spec.hostname})
        typer.echo(f"Firewall admin VM {spec.vm_id} created successfully")
        typer.echo(f"Start it and browse to https://{cfg.pfsense_lan_ip} to manage pfSense")

    except Exception as e:
        typer.echo(f"Error creating firewall admin VM: {e}", err=True)
        raise typer.Exit(1)
