"""
Prerequisite checks run before each setup step.
"""

import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from hetzner_proxmox.cli.lib import apt, network, qm
from hetzner_proxmox.cli.lib.config import HostConfig
from hetzner_proxmox.cli.lib.validators import validate_domain, validate_email

OS_RELEASE = Path("/etc/os-release")

COMMAND_TOOLS: Dict[str, List[str]] = {
    "caddy": ["systemctl"],
    "format-drives": ["lsblk", "parted", "wipefs"],
    "setup-mirrors": ["lsblk", "mdadm", "blkid"],
    "setup-zfs": ["lsblk"],
    "remove-mirrors": ["findmnt", "mdadm"],
    "raid": ["lsblk", "mdadm", "wipefs"],
    "network": ["ip"],
    "pfsense": ["qm", "ip"],
    "firewall-admin": ["qm", "ip"],
    "system": ["apt-get", "sysctl"],
}


def is_root() -> bool:
    return os.geteuid() == 0


def is_debian(path: Path = OS_RELEASE) -> bool:
    if not path.exists():
        return False
    return "debian" in path.read_text(encoding="utf-8").lower()


def check_common() -> List[str]:
    """
    Checks shared by every command.

    Returns:
        Problems found (empty if the host looks like a Proxmox VE node)
    """
    problems = []
    if shutil.which("pvesh") is None:
        problems.append("Proxmox VE is not installed (pvesh not found)")
    if not is_debian():
        problems.append("Host is not running Debian")
    if not network.check_connectivity():
        problems.append("No internet connectivity (ping 8.8.8.8 failed)")
    return problems


def check_command(command: str, cfg: HostConfig) -> List[str]:
    """
    Checks specific to one setup step.

    Args:
        command: Step name (see COMMAND_TOOLS)
        cfg: Loaded configuration

    Returns:
        Problems found

    Raises:
        ValueError: If the step name is unknown
    """
    if command not in COMMAND_TOOLS:
        raise ValueError(f"Unknown command: {command} (valid: {', '.join(sorted(COMMAND_TOOLS))})")

    problems = [f"Required tool not found: {tool}" for tool in apt.missing_commands(COMMAND_TOOLS[command])]

    if command == "caddy":
        for check, value, label in ((validate_domain, cfg.domain, "domain"), (validate_email, cfg.email, "email")):
            try:
                check(value)
            except ValueError as e:
                problems.append(f"{label}: {e}")

    if command in ("pfsense", "firewall-admin"):
        for bridge in ("vmbr0", "vmbr1"):
            if not network.interface_exists(bridge):
                problems.append(f"Bridge {bridge} does not exist (run 'network configure' first)")

    if command == "firewall-admin" and not qm.vm_exists(cfg.pfsense_vm_id):
        problems.append(f"pfSense VM {cfg.pfsense_vm_id} does not exist (run 'pfsense create' first)")

    return problems


def validate(command: Optional[str], cfg: HostConfig) -> List[str]:
    problems = check_common()
    if command:
        problems.extend(check_command(command, cfg))
    return problems
