"""
Host firewall (ufw) rules.
"""

import logging
import subprocess
from typing import List

logger = logging.getLogger(__name__)

BASE_RULES: List[List[str]] = [
    ["--force", "reset"],
    ["default", "deny", "incoming"],
    ["default", "allow", "outgoing"],
    ["allow", "ssh"],
    ["allow", "80/tcp"],
    ["allow", "443/tcp"],
    ["--force", "enable"],
]


def _ufw(args: List[str]) -> str:
    result = subprocess.run(
        ["ufw"] + args,
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to run ufw {' '.join(args)}: {result.stderr}")
    return result.stdout


def allow(rule: str) -> None:
    _ufw(["allow", rule])


def apply_base_rules() -> None:
    """
    Reset ufw to deny-incoming with SSH, HTTP and HTTPS open, then enable it.

    The Proxmox UI (8006) stays closed and is only reachable through Caddy.
    """
    for rule in BASE_RULES:
        _ufw(rule)
    logger.info("Applied base firewall rules")


def status() -> str:
    return _ufw(["status", "verbose"])
