"""
Definitions of the pfSense firewall VM and the firewall admin VM as qm options.
"""

from pathlib import Path
from typing import List, Optional, Tuple

from hetzner_proxmox.cli.lib.models import AdminVMSpec, PfSenseSpec


def _net(bridge: str, mac: Optional[str] = None, firewall: Optional[int] = None) -> str:
    value = f"virtio,bridge={bridge}"
    if firewall is not None:
        value += f",firewall={firewall}"
    if mac:
        value += f",macaddr={mac}"
    return value


def pfsense_create_options(spec: PfSenseSpec) -> List[str]:
    """`qm create` options for the pfSense VM."""
    description = f"pfSense Firewall VM - WAN: {spec.wan_ip} | LAN: {spec.lan_ip}"
    if spec.with_dmz:
        description += f" | DMZ: {spec.dmz_ip}"
    return [
        "--name", spec.name,
        "--description", description,
        "--ostype", "other",
        "--memory", str(spec.memory),
        "--cores", str(spec.cores),
        "--cpu", "host",
        "--onboot", "1",
        "--tablet", "0",
        "--boot", "order=ide2",
        "--cdrom", f"local:iso/{iso_name(spec.iso_path)}",
        "--machine", "q35",
    ]


def pfsense_set_steps(spec: PfSenseSpec) -> List[Tuple[str, List[str]]]:
    """
    `qm set` calls applied after creation, as (description, options) pairs.
    """
    steps = [
        ("disk", [
            "--scsihw", "virtio-scsi-single",
            "--scsi0", f"{spec.storage}:{spec.disk_size},cache=writeback,discard=on,iothread=1",
        ]),
        ("WAN interface (vmbr0)", ["--net0", _net("vmbr0", spec.wan_mac, firewall=0)]),
        ("LAN interface (vmbr1)", ["--net1", _net("vmbr1", firewall=0)]),
    ]
    if spec.with_dmz:
        steps.append(("DMZ interface (vmbr2)", ["--net2", _net("vmbr2", firewall=0)]))
    steps.append(("console and watchdog", [
        "--vga", "std",
        "--serial0", "socket",
        "--watchdog", "i6300esb,action=reset",
    ]))
    return steps


def admin_create_options(spec: AdminVMSpec) -> List[str]:
    """`qm create` options for the firewall admin VM."""
    return [
        "--name", spec.hostname,
        "--memory", str(spec.memory),
        "--cores", str(spec.cores),
        "--scsihw", "virtio-scsi-pci",
        "--scsi0", f"local:{spec.disk_size}",
        "--ide2", f"local:iso/{spec.iso_name},media=cdrom",
        "--ostype", "l26",
        "--boot", "order=ide2",
        "--onboot", "0",
        "--agent", "enabled=1",
        "--vga", "qxl",
        "--tablet", "1",
    ]


def admin_network_options(spec: AdminVMSpec) -> List[str]:
    """LAN first (reaches pfSense on vmbr1), WAN second with the Hetzner virtual MAC."""
    return [
        "--net0", _net("vmbr1"),
        "--net1", _net("vmbr0", spec.wan_mac),
    ]


def iso_name(iso_path: str) -> str:
    return Path(iso_path).name
