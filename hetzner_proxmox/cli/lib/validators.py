"""
Input validation functions.
"""

import ipaddress
import logging
import re
from typing import Tuple

logger = logging.getLogger(__name__)

DOMAIN_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?)*\.[a-zA-Z]{2,}$")
MAC_RE = re.compile(r"^([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_domain(domain: str) -> None:
    """
    Validate a fully qualified domain name.

    Args:
        domain: Domain to validate (e.g., "proxmox.example.com")

    Raises:
        ValueError: If domain is empty or malformed
    """
    if not domain:
        raise ValueError("Domain cannot be empty")
    if not DOMAIN_RE.match(domain):
        raise ValueError(f"Invalid domain format: {domain}")


def validate_email(email: str) -> None:
    if not email:
        raise ValueError("Email cannot be empty")
    if not EMAIL_RE.match(email):
        raise ValueError(f"Invalid email address: {email}")


def is_valid_mac(mac: str) -> bool:
    return bool(mac) and bool(MAC_RE.match(mac))


def validate_ipv4(ip: str) -> None:
    """
    Validate an IPv4 address.

    Raises:
        ValueError: If the address is not a valid IPv4 address
    """
    try:
        ipaddress.IPv4Address(ip)
    except ValueError:
        raise ValueError(f"Invalid IPv4 address: {ip}")


def validate_ip_cidr(cidr: str) -> Tuple[str, int]:
    """
    Validate an IP address with CIDR notation.

    Args:
        cidr: IP address with CIDR (e.g., "192.168.1.1/24")

    Returns:
        Tuple of (ip_address, prefix_length)

    Raises:
        ValueError: If CIDR is invalid
    """
    parts = cidr.split("/")
    if len(parts) != 2:
        raise ValueError(f"CIDR must be in format IP/PREFIX (e.g., 192.168.1.1/24): {cidr}")

    validate_ipv4(parts[0])
    try:
        prefix = int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid prefix length: {parts[1]}")
    if prefix < 0 or prefix > 32:
        raise ValueError("Prefix length must be between 0 and 32")
    return parts[0], prefix


def netmask_to_cidr(netmask: str) -> int:
    """
    Convert a dotted netmask to a prefix length.

    Invalid or non-contiguous masks fall back to /24, which is what Hetzner
    setups historically assumed.

    Args:
        netmask: Netmask (e.g., "255.255.255.192")

    Returns:
        Prefix length (e.g., 26)
    """
    try:
        network = ipaddress.IPv4Network(f"0.0.0.0/{netmask}")
    except ValueError:
        network = None
    # ipaddress also accepts hostmasks (0.0.0.63); only real, non-zero netmasks count
    if network is None or str(network.netmask) != netmask.strip() or network.prefixlen == 0:
        logger.warning("Unknown netmask %s, defaulting to /24", netmask)
        return 24
    return network.prefixlen


def validate_vm_id(vm_id: int) -> None:
    """
    Validate a Proxmox VM ID.

    Raises:
        ValueError: If VM ID is outside the range Proxmox accepts
    """
    if vm_id < 100 or vm_id > 999999999:
        raise ValueError("VM ID must be between 100 and 999999999")
