"""
Host tuning for a virtualization workload: CPU governor, journald limits,
log rotation and tuned profiles.
"""

import logging
import subprocess
from pathlib import Path
from typing import List

from jinja2 import Template

from hetzner_proxmox.cli.lib import systemd
from hetzner_proxmox.cli.lib.files import atomic_write_text

logger = logging.getLogger(__name__)

SYSTEM_PACKAGES = [
    "htop", "iotop", "sysstat", "smartmontools", "lm-sensors", "ethtool",
    "tuned", "irqbalance", "chrony", "rsyslog", "logrotate",
]

GOVERNOR_PATH = Path("/sys/devices/system/cpu/cpu0/cpufreq/scaling_governor")
CPU_UNIT_PATH = Path("/etc/systemd/system/cpu-performance.service")
LOGROTATE_PATH = Path("/etc/logrotate.d/proxmox-custom")
JOURNALD_DROPIN = Path("/etc/systemd/journald.conf.d/99-proxmox.conf")
TUNED_PROFILES = ("virtual-host", "throughput-performance")

CPU_UNIT = """[Unit]
Description=Set CPU governor to performance
After=multi-user.target

[Service]
Type=oneshot
ExecStart=/bin/bash -c 'for i in /sys/devices/system/cpu/cpu*/cpufreq/scaling_governor; do echo performance > $i 2>/dev/null || true; done'
RemainAfterExit=yes

[Install]
WantedBy=multi-user.target
"""

LOGROTATE_TEMPLATE = """/var/log/pve/*.log {
    daily
    missingok
    rotate 7
    compress
    delaycompress
    notifempty
    create 640 root adm
}

{{ setup_log }} {
    daily
    missingok
    rotate 30
    compress
    delaycompress
    notifempty
    create 644 root root
}
"""

JOURNALD_CONF = """[Journal]
SystemMaxUse=100M
SystemMaxFileSize=10M
RuntimeMaxUse=50M
RuntimeMaxFileSize=5M
MaxRetentionSec=1week
"""


def set_performance_governor(governor_path: Path = GOVERNOR_PATH, unit_path: Path = CPU_UNIT_PATH) -> bool:
    """
    Switch the CPU governor to performance and persist it with a oneshot unit.

    Returns:
        False if frequency scaling is not available (typical inside VMs)
    """
    if not governor_path.exists():
        logger.info("CPU frequency scaling not available")
        return False
    try:
        governor_path.write_text("performance", encoding="utf-8")
    except OSError as e:
        logger.warning("Could not set CPU governor: %s", e)
        return False

    atomic_write_text(unit_path, CPU_UNIT)
    systemd.daemon_reload()
    systemd.enable_unit(unit_path.name)
    return True


def enable_services(services: List[str]) -> List[str]:
    """
    Enable and start services.

    Returns:
        Services that could not be enabled
    """
    failed = []
    for service in services:
        try:
            systemd.enable_unit(service)
        except RuntimeError as e:
            logger.warning("%s", e)
            failed.append(service)
    return failed


def write_logrotate(setup_log: str, path: Path = LOGROTATE_PATH) -> Path:
    atomic_write_text(path, Template(LOGROTATE_TEMPLATE).render(setup_log=setup_log))
    return path


def configure_journald(path: Path = JOURNALD_DROPIN) -> Path:
    atomic_write_text(path, JOURNALD_CONF)
    systemd.restart_unit("systemd-journald")
    return path


def apply_tuned_profile() -> str:
    """
    Activate the first supported tuned profile.

    Returns:
        Name of the active profile

    Raises:
        RuntimeError: If no profile could be applied
    """
    systemd.enable_unit("tuned")
    for profile in TUNED_PROFILES:
        result = subprocess.run(
            ["tuned-adm", "profile", profile],
            capture_output=True,
            text=True,
            check=False
        )
        if result.returncode == 0:
            return profile
        logger.warning("tuned profile %s failed: %s", profile, result.stderr.strip())
    raise RuntimeError("Failed to apply any tuned profile")
