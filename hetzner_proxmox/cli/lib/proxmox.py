"""
Proxmox VE host settings: package repositories, datacenter defaults and
health of the web UI services.
"""

import logging
import re
import subprocess
from pathlib import Path
from typing import Dict, List

from hetzner_proxmox.cli.lib import systemd
from hetzner_proxmox.cli.lib.files import atomic_write_text, backup_file

logger = logging.getLogger(__name__)

APT_SOURCES_DIR = Path("/etc/apt/sources.list.d")
APT_SOURCES_FILE = Path("/etc/apt/sources.list")
ENTERPRISE_LIST = APT_SOURCES_DIR / "pve-enterprise.list"
NO_SUBSCRIPTION_LIST = APT_SOURCES_DIR / "pve-no-subscription.list"
NO_SUBSCRIPTION_REPO = "deb http://download.proxmox.com/debian/pve bookworm pve-no-subscription"
DATACENTER_CFG = Path("/etc/pve/datacenter.cfg")

PVE_SERVICES = ("pveproxy", "pvedaemon")
EXTRA_PACKAGES = ["curl", "wget", "unzip", "htop", "iotop", "netstat-nat", "ufw"]


def disable_enterprise_repo(path: Path = ENTERPRISE_LIST) -> bool:
    """
    Comment out the enterprise repository (it needs a subscription key).

    Returns:
        True if the file changed
    """
    if not path.exists():
        return False
    text = path.read_text(encoding="utf-8")
    updated = re.sub(r"^deb", "#deb", text, flags=re.MULTILINE)
    if updated == text:
        return False
    backup_file(path)
    atomic_write_text(path, updated)
    return True


def has_no_subscription_repo(sources: List[Path]) -> bool:
    pattern = re.compile(r"^\s*deb\s.*pve.*bookworm.*pve-no-subscription", re.MULTILINE)
    for source in sources:
        if source.is_file() and pattern.search(source.read_text(encoding="utf-8")):
            return True
    return False


def enable_no_subscription_repo(
    list_path: Path = NO_SUBSCRIPTION_LIST,
    sources_dir: Path = APT_SOURCES_DIR,
    sources_file: Path = APT_SOURCES_FILE,
) -> bool:
    """
    Add the no-subscription repository unless any apt source already has it.

    Returns:
        True if the repository was added
    """
    sources = [sources_file] + (sorted(sources_dir.glob("*.list")) if sources_dir.is_dir() else [])
    if has_no_subscription_repo(sources):
        return False
    atomic_write_text(list_path, NO_SUBSCRIPTION_REPO + "\n")
    logger.info("Added no-subscription repository")
    return True


def ensure_html5_console(path: Path = DATACENTER_CFG) -> bool:
    """
    Default the VM console to the HTML5 (noVNC) viewer.

    Returns:
        True if datacenter.cfg changed
    """
    text = path.read_text(encoding="utf-8") if path.exists() else ""
    if re.search(r"^console:", text, re.MULTILINE):
        return False
    backup_file(path)
    if text and not text.endswith("\n"):
        text += "\n"
    # /etc/pve is a FUSE filesystem without rename support
    with open(path, "w", encoding="utf-8") as file:
        file.write(text + "console: html5\n")
    return True


def restart_services() -> None:
    for service in PVE_SERVICES:
        systemd.restart_unit(service)


def service_states() -> Dict[str, bool]:
    return {service: systemd.is_active(service) for service in PVE_SERVICES}


def port_listening(port: int) -> bool:
    result = subprocess.run(
        ["ss", "-tuln"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        return False
    return re.search(rf":{port}\b", result.stdout) is not None
