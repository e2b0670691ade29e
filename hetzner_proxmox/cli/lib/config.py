"""
Configuration loader for hetzner-proxmox.

Host specific values (domain, VM sizing, bridge subnets, file locations) are
read from a single INI file so that none of them need to be hardcoded.
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_CONFIG_PATH = Path("/etc/hetzner-proxmox/setup.conf")
DEFAULT_LOG_FILE = "/var/log/hetzner-proxmox-setup.log"

PFSENSE_ISO_URL = "https://atxfiles.netgate.com/mirror/downloads/pfSense-CE-2.7.2-RELEASE-amd64.iso.gz"
PFSENSE_ISO_PATH = "/var/lib/vz/template/iso/pfSense-CE-2.7.2-RELEASE-amd64.iso"
ADMIN_ISO_URL = (
    "https://distro.ibiblio.org/puppylinux/puppy-bookwormpup/BookwormPup64/10.0.11/BookwormPup64_10.0.11.iso"
)
ADMIN_ISO_PATH = "/var/lib/vz/template/iso/BookwormPup64_10.0.11.iso"

# Set from the CLI --config option; takes precedence over the environment.
_config_path_override: Optional[Path] = None


@dataclass(frozen=True)
class HostConfig:
    # [host]
    log_file: str = DEFAULT_LOG_FILE
    log_level: str = "INFO"
    domain: str = ""
    email: str = ""
    acme_email: str = ""
    enable_staging: bool = False
    proxmox_port: int = 8006
    internal_ip: str = "127.0.0.1"
    public_ip: str = ""
    caddy_config_dir: str = "/etc/caddy"
    caddy_log_file: str = "/var/log/caddy/proxmox.log"
    state_dir: Optional[Path] = None
    # [network]
    interfaces_file: str = "/etc/network/interfaces"
    network_backup_dir: str = "/root/network-backups"
    restore_script: str = "/root/restore-network.sh"
    additional_ips_file: str = "/etc/hetzner-proxmox/additional-ips.conf"
    private_cidr: str = "192.168.1.1/24"
    dmz_cidr: str = "10.0.2.1/24"
    # [pfsense]
    pfsense_vm_id: int = 100
    pfsense_cores: int = 2
    pfsense_memory: int = 2048
    pfsense_disk_size: int = 8
    pfsense_storage: str = "local-zfs"
    pfsense_wan_ip: str = ""
    pfsense_lan_ip: str = "192.168.1.1"
    pfsense_lan_subnet: str = "192.168.1.0/24"
    pfsense_dmz_ip: str = "10.0.2.1"
    pfsense_dmz_subnet: str = "10.0.2.0/24"
    pfsense_iso_url: str = PFSENSE_ISO_URL
    pfsense_iso_path: str = PFSENSE_ISO_PATH
    # [firewall_admin]
    admin_vm_id: int = 200
    admin_hostname: str = "firewall-admin"
    admin_memory: int = 1024
    admin_cores: int = 1
    admin_disk_size: int = 8
    admin_iso_url: str = ADMIN_ISO_URL
    admin_iso_path: str = ADMIN_ISO_PATH


def set_config_path(path: Optional[Path]) -> None:
    """Override the config file location for the rest of the process."""
    global _config_path_override
    _config_path_override = Path(path) if path else None


def config_path() -> Path:
    if _config_path_override is not None:
        return _config_path_override
    env = os.environ.get("HPX_CONFIG_PATH")
    if env:
        return Path(env)
    return DEFAULT_CONFIG_PATH


def _read_ini(path: Path) -> configparser.ConfigParser:
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path, encoding="utf-8")
    return parser


def load_config() -> HostConfig:
    """
    Load config from `--config`, `HPX_CONFIG_PATH` or `/etc/hetzner-proxmox/setup.conf`.

    Missing files and sections are not an error; defaults are returned.
    """
    parser = _read_ini(config_path())

    def _section(name: str) -> object:
        return parser[name] if parser.has_section(name) else {}

    host = _section("host")
    network = _section("network")
    pfsense = _section("pfsense")
    admin = _section("firewall_admin")

    def _get(section: object, key: str, default: str) -> str:
        if isinstance(section, dict):
            return str(section.get(key, default)).strip()
        return str(section.get(key, fallback=default)).strip()

    def _get_int(section: object, key: str, default: int) -> int:
        raw = _get(section, key, str(default))
        try:
            return int(raw)
        except Exception:
            return default

    def _get_bool(section: object, key: str, default: bool) -> bool:
        raw = _get(section, key, "true" if default else "false").lower()
        if raw in ("1", "yes", "true", "on"):
            return True
        if raw in ("0", "no", "false", "off"):
            return False
        return default

    email = _get(host, "email", "")
    state_dir_raw = _get(host, "state_dir", "")

    return HostConfig(
        log_file=_get(host, "log_file", DEFAULT_LOG_FILE),
        log_level=_get(host, "log_level", "INFO").upper(),
        domain=_get(host, "domain", ""),
        email=email,
        acme_email=_get(host, "acme_email", "") or email,
        enable_staging=_get_bool(host, "enable_staging", False),
        proxmox_port=_get_int(host, "proxmox_port", 8006),
        internal_ip=_get(host, "internal_ip", "127.0.0.1"),
        public_ip=_get(host, "public_ip", ""),
        caddy_config_dir=_get(host, "caddy_config_dir", "/etc/caddy"),
        caddy_log_file=_get(host, "caddy_log_file", "/var/log/caddy/proxmox.log"),
        state_dir=Path(state_dir_raw) if state_dir_raw else None,
        interfaces_file=_get(network, "interfaces_file", "/etc/network/interfaces"),
        network_backup_dir=_get(network, "backup_dir", "/root/network-backups"),
        restore_script=_get(network, "restore_script", "/root/restore-network.sh"),
        additional_ips_file=_get(network, "additional_ips_file", "/etc/hetzner-proxmox/additional-ips.conf"),
        private_cidr=_get(network, "private_cidr", "192.168.1.1/24"),
        dmz_cidr=_get(network, "dmz_cidr", "10.0.2.1/24"),
        pfsense_vm_id=_get_int(pfsense, "vm_id", 100),
        pfsense_cores=_get_int(pfsense, "cores", 2),
        pfsense_memory=_get_int(pfsense, "memory", 2048),
        pfsense_disk_size=_get_int(pfsense, "disk_size", 8),
        pfsense_storage=_get(pfsense, "storage", "local-zfs"),
        pfsense_wan_ip=_get(pfsense, "wan_ip", ""),
        pfsense_lan_ip=_get(pfsense, "lan_ip", "192.168.1.1"),
        pfsense_lan_subnet=_get(pfsense, "lan_subnet", "192.168.1.0/24"),
        pfsense_dmz_ip=_get(pfsense, "dmz_ip", "10.0.2.1"),
        pfsense_dmz_subnet=_get(pfsense, "dmz_subnet", "10.0.2.0/24"),
        pfsense_iso_url=_get(pfsense, "iso_url", PFSENSE_ISO_URL),
        pfsense_iso_path=_get(pfsense, "iso_path", PFSENSE_ISO_PATH),
        admin_vm_id=_get_int(admin, "vm_id", 200),
        admin_hostname=_get(admin, "hostname", "firewall-admin"),
        admin_memory=_get_int(admin, "memory", 1024),
        admin_cores=_get_int(admin, "cores", 1),
        admin_disk_size=_get_int(admin, "disk_size", 8),
        admin_iso_url=_get(admin, "iso_url", ADMIN_ISO_URL),
        admin_iso_path=_get(admin, "iso_path", ADMIN_ISO_PATH),
    )
