"""
pfSense firewall VM commands.
"""

from typing import Optional

import typer

from hetzner_proxmox.cli.lib import download, network, qm, state, systemd, vms
from hetzner_proxmox.cli.lib.config import load_config
from hetzner_proxmox.cli.lib.models import PfSenseSpec
from hetzner_proxmox.cli.lib.validators import validate_vm_id

app = typer.Typer(help="pfSense firewall VM commands")

QUICK_START = """
Next steps:
  1. Open the VM console in the Proxmox UI and start the VM ({vm_id}).
  2. Install pfSense and assign interfaces: vtnet0 = WAN, vtnet1 = LAN{dmz_hint}.
  3. WAN: static {wan_ip} (gateway from the Hetzner Robot panel).
  4. LAN: {lan_ip}/24, then open https://{lan_ip} from a VM on vmbr1.
  5. Default login: admin / pfsense (change it immediately).
"""


@app.command()
def create(
    vm_id: Optional[int] = typer.Option(None, "--vm-id", help="VM ID (default from config)"),
    wan_ip: Optional[str] = typer.Option(None, "--wan-ip", help="WAN IP (default: first additional IP)"),
    memory: Optional[int] = typer.Option(None, "--memory", help="Memory in MiB"),
    cores: Optional[int] = typer.Option(None, "--cores", help="CPU cores"),
    disk_size: Optional[int] = typer.Option(None, "--disk-size", help="Disk size in GiB"),
    force: bool = typer.Option(False, "--force", help="Destroy an existing VM with the same ID"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the qm commands without running them"),
):
    """
    Create the pfSense VM with WAN on vmbr0, LAN on vmbr1 and DMZ on vmbr2.
    """
    try:
        cfg = load_config()
        vm_id = vm_id if vm_id is not None else cfg.pfsense_vm_id
        validate_vm_id(vm_id)

        if not systemd.is_active("pveproxy"):
            raise RuntimeError("pveproxy is not running; is this a Proxmox VE host?")
        for bridge in ("vmbr0", "vmbr1"):
            if not network.interface_exists(bridge):
                raise RuntimeError(f"Bridge {bridge} does not exist (run 'network configure' first)")
        with_dmz = network.interface_exists("vmbr2")
        if not with_dmz:
            typer.echo("Warning: vmbr2 does not exist; creating pfSense without a DMZ interface", err=True)

        if network.interface_ipv4("vmbr1") != cfg.pfsense_lan_ip:
            raise RuntimeError(f"vmbr1 does not have {cfg.pfsense_lan_ip}")
        if with_dmz and network.interface_ipv4("vmbr2") != cfg.pfsense_dmz_ip:
            typer.echo(f"Warning: vmbr2 does not have {cfg.pfsense_dmz_ip}", err=True)

        additional_ips = network.load_additional_ips(cfg.additional_ips_file)
        wan_mac = None
        if wan_ip is None:
            wan_ip = cfg.pfsense_wan_ip or None
        if wan_ip is None:
            if not additional_ips:
                raise RuntimeError("No WAN IP given and no additional IPs configured")
            wan_ip = additional_ips[0].ip
        for extra in additional_ips:
            if extra.ip == wan_ip:
                wan_mac = extra.mac
        if wan_mac is None:
            typer.echo(f"Warning: no virtual MAC known for {wan_ip}; Proxmox will generate one", err=True)

        spec = PfSenseSpec(
            vm_id=vm_id,
            cores=cores or cfg.pfsense_cores,
            memory=memory or cfg.pfsense_memory,
            disk_size=disk_size or cfg.pfsense_disk_size,
            storage=cfg.pfsense_storage,
            iso_path=cfg.pfsense_iso_path,
            wan_ip=wan_ip,
            wan_mac=wan_mac,
            lan_ip=cfg.pfsense_lan_ip,
            dmz_ip=cfg.pfsense_dmz_ip,
            with_dmz=with_dmz,
        )

        if qm.vm_exists(vm_id) and not force:
            raise RuntimeError(f"VM {vm_id} already exists (use --force to replace it)")

        if dry_run:
            typer.echo(f"[dry-run] qm create {vm_id} {' '.join(vms.pfsense_create_options(spec))}")
            for _, options in vms.pfsense_set_steps(spec):
                typer.echo(f"[dry-run] qm set {vm_id} {' '.join(options)}")
            return

        typer.echo("Preparing pfSense ISO...")
        iso = download.ensure_iso(cfg.pfsense_iso_url, cfg.pfsense_iso_path)
        typer.echo(f"  ISO: {iso}")

        if qm.vm_exists(vm_id):
            qm.destroy_vm(vm_id)
            typer.echo(f"  Destroyed existing VM {vm_id}")

        typer.echo(f"Creating pfSense VM {vm_id}...")
        qm.create_vm(vm_id, vms.pfsense_create_options(spec))
        for description, options in vms.pfsense_set_steps(spec):
            qm.set_vm(vm_id, options)
            typer.echo(f"  Configured {description}")

        state.record_vm({"vm_id": vm_id, "role": "pfsense", "name": spec.name, "wan_ip": wan_ip})
        typer.echo(f"pfSense VM {vm_id} created successfully")
        typer.echo(QUICK_START.format(
            vm_id=vm_id,
            wan_ip=wan_ip,
            lan_ip=spec.lan_ip,
            dmz_hint=", vtnet2 = DMZ" if with_dmz else "",
        ))

    except Exception as e:
        typer.echo(f"Error creating pfSense VM: {e}", err=True)
        raise typer.Exit(1)
