"""
Kernel parameter (sysctl) profiles and their application.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Tuple

from hetzner_proxmox.cli.lib.files import atomic_write_text

logger = logging.getLogger(__name__)

SYSCTL_DIR = Path("/etc/sysctl.d")
PROC_SYS = Path("/proc/sys")

# file name -> settings
PROFILES: Dict[str, Dict[str, str]] = {
    "99-proxmox-swappiness.conf": {
        "vm.swappiness": "10",
    },
    "99-proxmox-io.conf": {
        "vm.dirty_background_ratio": "5",
        "vm.dirty_ratio": "10",
        "vm.dirty_expire_centisecs": "3000",
        "vm.dirty_writeback_centisecs": "500",
    },
    "99-proxmox-network.conf": {
        "net.core.rmem_default": "262144",
        "net.core.rmem_max": "16777216",
        "net.core.wmem_default": "262144",
        "net.core.wmem_max": "16777216",
        "net.ipv4.tcp_rmem": "4096 87380 16777216",
        "net.ipv4.tcp_wmem": "4096 65536 16777216",
        "net.core.netdev_max_backlog": "5000",
        "net.ipv4.tcp_congestion_control": "bbr",
    },
    "99-proxmox-virt.conf": {
        "kernel.sched_autogroup_enabled": "0",
        "kernel.numa_balancing": "0",
    },
}

FORWARDING_FILE = "99-proxmox-pfsense.conf"
FORWARDING_SETTINGS: Dict[str, str] = {
    "net.ipv4.ip_forward": "1",
    "net.ipv6.conf.all.forwarding": "1",
    "net.core.netdev_max_backlog": "5000",
    "net.core.rmem_max": "16777216",
    "net.core.wmem_max": "16777216",
    "net.ipv4.tcp_rmem": "4096 65536 16777216",
    "net.ipv4.tcp_wmem": "4096 65536 16777216",
    "net.ipv4.conf.all.rp_filter": "1",
    "net.ipv4.conf.default.rp_filter": "1",
    "net.ipv4.conf.all.accept_redirects": "0",
    "net.ipv4.conf.default.accept_redirects": "0",
    "net.ipv4.conf.all.send_redirects": "0",
    "net.ipv6.conf.all.accept_redirects": "0",
    "net.bridge.bridge-nf-call-iptables": "0",
    "net.bridge.bridge-nf-call-ip6tables": "0",
    "net.bridge.bridge-nf-call-arptables": "0",
}


def render(settings: Dict[str, str], comment: str = "") -> str:
    lines = [f"# {comment}"] if comment else []
    lines += [f"{key} = {value}" for key, value in settings.items()]
    return "\n".join(lines) + "\n"


def proc_path(key: str) -> Path:
    return PROC_SYS / key.replace(".", "/")


def apply_settings(settings: Dict[str, str]) -> List[Tuple[str, str]]:
    """
    Apply settings one key at a time so that one unsupported key does not
    stop the rest.

    Returns:
        List of (key, reason) for settings that could not be applied
    """
    failures = []
    for key, value in settings.items():
        if not os.path.exists(proc_path(key)):
            failures.append((key, "not available"))
            continue
        result = subprocess.run(
            ["sysctl", "-w", f"{key}={value}"],
            capture_output=True,
            text=True,
            check=False
        )
        if result.returncode != 0:
            failures.append((key, result.stderr.strip() or "sysctl -w failed"))
    for key, reason in failures:
        logger.warning("sysctl %s: %s", key, reason)
    return failures


def write_profile(name: str, settings: Dict[str, str], directory: Path = SYSCTL_DIR) -> Path:
    path = directory / name
    atomic_write_text(path, render(settings, comment=f"Managed by hetzner-proxmox ({name})"))
    logger.info("Wrote %s", path)
    return path


def install_profiles(directory: Path = SYSCTL_DIR) -> List[Tuple[str, str]]:
    """
    Write every tuning profile and apply it.

    Returns:
        Settings that failed to apply
    """
    failures = []
    for name, settings in PROFILES.items():
        write_profile(name, settings, directory)
        failures.extend(apply_settings(settings))
    return failures
