"""
Bridge network configuration for Proxmox hosts on Hetzner.

Covers discovery of the current uplink, loading of additional IPs,
rendering/validation of /etc/network/interfaces and a guarded apply with
automatic restore.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from jinja2 import Template
from pydantic import ValidationError

from hetzner_proxmox.cli.lib import sysctl, systemd
from hetzner_proxmox.cli.lib.files import append_line_once, atomic_write_text, backup_file, timestamp
from hetzner_proxmox.cli.lib.models import AdditionalIP

logger = logging.getLogger(__name__)

FALLBACK_PHYSICAL = ("eth0", "ens3", "ens18", "enp0s3")
ROUTE_LOOKUP_TARGET = "8.8.8.8"
# Hetzner main IPs usually sit in a /26
FALLBACK_PREFIX = 26
MODULES_FILE = Path("/etc/modules")

KNOWN_OPTIONS = {
    "address", "netmask", "gateway", "broadcast", "network", "mtu", "hwaddress", "pointopoint",
    "bridge-ports", "bridge-stp", "bridge-fd", "bridge-vlan-aware", "bridge-vids", "bridge-maxwait",
    "up", "down", "pre-up", "pre-down", "post-up", "post-down",
    "dns-nameservers", "dns-search", "metric", "scope",
}

INTERFACES_TEMPLATE = """# network interface settings; autogenerated
# Please do NOT modify this file directly, unless you know what
# you're doing.
#
# If you want to manage parts of the network configuration manually,
# please utilize the 'source' or 'source-directory' directives to do
# so.
# PVE will preserve these directives, but will NOT read its network
# configuration from sourced files, so do not attempt to move any of
# the PVE managed interfaces into external files!

source /etc/network/interfaces.d/*

auto lo
iface lo inet loopback

iface lo inet6 loopback

auto {{ host.physical }}
iface {{ host.physical }} inet manual

auto vmbr0
iface vmbr0 inet static
    address {{ host.cidr }}
    gateway {{ host.gateway }}
    bridge-ports {{ host.physical }}
    bridge-stp off
    bridge-fd 1
    bridge-vlan-aware yes
    bridge-vids 2-4094
    hwaddress {{ host.mac }}
    pointopoint {{ host.gateway }}
    up sysctl -p
{% if additional_ips %}

    # Additional IP addresses
{% for extra in additional_ips %}
    post-up ip addr add {{ extra.ip }}/{{ extra.cidr }} dev vmbr0
    post-down ip addr del {{ extra.ip }}/{{ extra.cidr }} dev vmbr0
{% if extra.gateway != host.gateway %}
    post-up ip route add {{ extra.ip }} via {{ extra.gateway }} dev vmbr0
    post-down ip route del {{ extra.ip }} via {{ extra.gateway }} dev vmbr0
{% endif %}
{% if extra.mac %}
    # MAC for {{ extra.ip }}: {{ extra.mac }} (configured via Hetzner panel)
{% endif %}
{% endfor %}
{% endif %}
{% if host.ipv6 %}

iface vmbr0 inet6 static
    address {{ host.ipv6 }}
    gateway fe80::1
{% endif %}

auto vmbr1
iface vmbr1 inet static
    address {{ private_cidr }}
    bridge-ports none
    bridge-stp off
    bridge-fd 0
    post-up   iptables -t nat -A POSTROUTING -s '{{ private_subnet }}' -o vmbr0 -j MASQUERADE
    post-down iptables -t nat -D POSTROUTING -s '{{ private_subnet }}' -o vmbr0 -j MASQUERADE
    post-up   iptables -t raw -I PREROUTING -i fwbr+ -j CT --zone 1
    post-down iptables -t raw -D PREROUTING -i fwbr+ -j CT --zone 1
{% if lan_ipv6 %}

iface vmbr1 inet6 static
    address {{ lan_ipv6 }}
{% endif %}
{% if dmz_cidr %}

auto vmbr2
iface vmbr2 inet static
    address {{ dmz_cidr }}
    bridge-ports none
    bridge-stp off
    bridge-fd 0
    post-up   iptables -t nat -A POSTROUTING -s '{{ dmz_subnet }}' -o vmbr0 -j MASQUERADE
    post-down iptables -t nat -D POSTROUTING -s '{{ dmz_subnet }}' -o vmbr0 -j MASQUERADE
{% endif %}
"""

ADDITIONAL_IPS_TEMPLATE = """# Additional IP addresses for hetzner-proxmox
#
# One address per line:
#   IP=<address> MAC=<virtual mac> GATEWAY=<gateway> NETMASK=<netmask>
#
# IP, GATEWAY and NETMASK are required. MAC is the virtual MAC assigned to the
# address in the Hetzner Robot panel (Server -> IPs -> request separate MAC);
# without it Hetzner drops traffic for the address.
#
# The first address is used as the pfSense WAN IP, the second for the
# firewall-admin VM.
#
# Example:
# IP=203.0.113.10 MAC=00:50:56:00:01:02 GATEWAY=203.0.113.1 NETMASK=255.255.255.192
# IP=203.0.113.11 MAC=00:50:56:00:01:03 GATEWAY=203.0.113.1 NETMASK=255.255.255.192
"""

RESTORE_SCRIPT_TEMPLATE = """#!/bin/bash
# Emergency network restore generated by hetzner-proxmox on {{ created }}
# Run from the Hetzner console (KVM/rescue) if the host lost connectivity.
set -e
cp {{ backup }} {{ interfaces_file }}
systemctl restart networking
echo "Network configuration restored from {{ backup }}"
"""


@dataclass
class HostNetwork:
    """Current uplink of the host."""

    interface: str  # interface carrying the default route (may be vmbr0)
    physical: str  # NIC to enslave to vmbr0
    address: str
    cidr: str  # address with prefix, e.g. 203.0.113.5/26
    gateway: str
    mac: str
    ipv6: Optional[str] = None


def parse_additional_ips_text(text: str) -> List[AdditionalIP]:
    """
    Parse `IP=.. MAC=.. GATEWAY=.. NETMASK=..` lines.

    Blank lines and comments are ignored. Lines lacking IP, GATEWAY or
    NETMASK, or carrying an invalid address, are skipped with a warning.
    """
    ips = []
    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        fields: Dict[str, str] = {}
        for token in stripped.split():
            if "=" in token:
                key, value = token.split("=", 1)
                fields[key.upper()] = value.strip("'\"")
        if not all(fields.get(k) for k in ("IP", "GATEWAY", "NETMASK")):
            logger.warning("Line %d: missing IP, GATEWAY or NETMASK: %s", number, stripped)
            continue
        try:
            ips.append(AdditionalIP(
                ip=fields["IP"],
                gateway=fields["GATEWAY"],
                netmask=fields["NETMASK"],
                mac=fields.get("MAC"),
            ))
        except ValidationError as e:
            logger.warning("Line %d: %s", number, e)
    return ips


def parse_additional_ips_env(environ: Mapping[str, str]) -> List[AdditionalIP]:
    """
    Read ADDITIONAL_IP_n / ADDITIONAL_MAC_n / ADDITIONAL_GATEWAY_n /
    ADDITIONAL_NETMASK_n for n = 1, 2, ... up to the first missing IP.
    """
    ips = []
    n = 1
    while environ.get(f"ADDITIONAL_IP_{n}"):
        ip = environ[f"ADDITIONAL_IP_{n}"]
        gateway = environ.get(f"ADDITIONAL_GATEWAY_{n}", "")
        netmask = environ.get(f"ADDITIONAL_NETMASK_{n}", "")
        if gateway and netmask:
            try:
                ips.append(AdditionalIP(
                    ip=ip,
                    gateway=gateway,
                    netmask=netmask,
                    mac=environ.get(f"ADDITIONAL_MAC_{n}"),
                ))
            except ValidationError as e:
                logger.warning("ADDITIONAL_IP_%d: %s", n, e)
        else:
            logger.warning("ADDITIONAL_IP_%d: missing gateway or netmask", n)
        n += 1
    return ips


def load_additional_ips(path: str, environ: Optional[Mapping[str, str]] = None) -> List[AdditionalIP]:
    """
    Load additional IPs from the config file, or from the environment when
    the file does not exist.
    """
    file_path = Path(path)
    if file_path.exists():
        return parse_additional_ips_text(file_path.read_text(encoding="utf-8"))
    return parse_additional_ips_env(os.environ if environ is None else environ)


def write_additional_ips_template(path: str, force: bool = False) -> Path:
    """
    Write a commented additional-ips.conf skeleton.

    Raises:
        RuntimeError: If the file exists and `force` is not set
    """
    file_path = Path(path)
    if file_path.exists() and not force:
        raise RuntimeError(f"{file_path} already exists (use --force to overwrite)")
    atomic_write_text(file_path, ADDITIONAL_IPS_TEMPLATE)
    return file_path


def _ip(*args: str) -> str:
    result = subprocess.run(
        ["ip", *args],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to run ip {' '.join(args)}: {result.stderr}")
    return result.stdout


def parse_default_route(text: str) -> Tuple[str, str]:
    """
    Extract (interface, gateway) from `ip route` output.

    Raises:
        RuntimeError: If there is no default route
    """
    for line in text.splitlines():
        match = re.match(r"^default via (\S+) dev (\S+)", line.strip())
        if match:
            return match.group(2), match.group(1)
    raise RuntimeError("Could not determine default route")


def parse_route_source(text: str) -> Optional[str]:
    """Return the `src` address from `ip route get` output."""
    match = re.search(r"\bsrc (\d+\.\d+\.\d+\.\d+)", text)
    return match.group(1) if match else None


def parse_inet(text: str) -> List[str]:
    """Return IPv4 `address/prefix` entries from `ip addr show` output."""
    return re.findall(r"^\s*inet (\d+\.\d+\.\d+\.\d+/\d+)", text, re.MULTILINE)


def parse_inet6_global(text: str) -> Optional[str]:
    match = re.search(r"^\s*inet6 ([0-9a-fA-F:]+/\d+) scope global", text, re.MULTILINE)
    return match.group(1) if match else None


def parse_link_mac(text: str) -> Optional[str]:
    match = re.search(r"link/ether ([0-9a-fA-F:]{17})", text)
    return match.group(1).lower() if match else None


def interface_exists(name: str) -> bool:
    result = subprocess.run(
        ["ip", "link", "show", name],
        capture_output=True,
        text=True,
        check=False
    )
    return result.returncode == 0


def interface_ipv4(name: str) -> Optional[str]:
    """Return the first IPv4 address (without prefix) of an interface."""
    if not interface_exists(name):
        return None
    addresses = parse_inet(_ip("addr", "show", name))
    return addresses[0].split("/")[0] if addresses else None


def bridge_ports(bridge: str) -> List[str]:
    brif = Path(f"/sys/class/net/{bridge}/brif")
    if not brif.is_dir():
        return []
    return sorted(os.listdir(brif))


def detect_physical_interface(interface: str) -> str:
    """
    Return the NIC behind the uplink. When the host already runs on vmbr0
    the bridge port is used, otherwise the first existing common NIC name.
    """
    if interface != "vmbr0":
        return interface
    ports = bridge_ports("vmbr0")
    if ports:
        return ports[0]
    for candidate in FALLBACK_PHYSICAL:
        if Path(f"/sys/class/net/{candidate}").exists():
            return candidate
    raise RuntimeError("Could not determine the physical interface behind vmbr0")


def detect_host_network() -> HostNetwork:
    """
    Inspect the live uplink (default route, addresses, MAC, IPv6).

    The current IP is the source address the kernel picks for outbound
    traffic; the uplink entry carrying it supplies the prefix. When no entry
    matches, the address is assumed to sit in a /26.

    Raises:
        RuntimeError: If interface, address, gateway or MAC cannot be found
    """
    interface, gateway = parse_default_route(_ip("route"))
    physical = detect_physical_interface(interface)

    address = parse_route_source(_ip("route", "get", ROUTE_LOOKUP_TARGET))
    if not address:
        raise RuntimeError("Could not determine the current IP address")

    addr_text = _ip("addr", "show", interface)
    cidr = next((c for c in parse_inet(addr_text) if c.split("/")[0] == address), None)
    if not cidr:
        cidr = f"{address}/{FALLBACK_PREFIX}"
        logger.warning("No address on %s matches %s, assuming %s", interface, address, cidr)

    mac = parse_link_mac(_ip("link", "show", physical))
    if not mac:
        raise RuntimeError(f"Could not determine MAC address of {physical}")

    return HostNetwork(
        interface=interface,
        physical=physical,
        address=address,
        cidr=cidr,
        gateway=gateway,
        mac=mac,
        ipv6=parse_inet6_global(addr_text),
    )


def lan_ipv6(host_ipv6: Optional[str]) -> Optional[str]:
    """
    Derive the vmbr1 IPv6 address `<first 4 groups>:1::1/80` from the host /64.
    """
    if not host_ipv6:
        return None
    try:
        groups = ipaddress.IPv6Interface(host_ipv6).ip.exploded.split(":")[:4]
    except ValueError:
        return None
    prefix = ":".join(g.lstrip("0") or "0" for g in groups)
    return f"{ipaddress.IPv6Address(prefix + ':1::1')}/80"


def render_interfaces(
    host: HostNetwork,
    additional_ips: List[AdditionalIP],
    private_cidr: str = "192.168.1.1/24",
    dmz_cidr: Optional[str] = "10.0.2.1/24",
    reset: bool = False,
) -> str:
    """
    Render /etc/network/interfaces.

    Args:
        host: Current uplink
        additional_ips: Addresses to bind on vmbr0
        private_cidr: vmbr1 (pfSense LAN) address with prefix
        dmz_cidr: vmbr2 address with prefix, or None to omit the DMZ bridge
        reset: Produce only the base vmbr0/vmbr1 layout

    Returns:
        File content
    """
    if reset:
        additional_ips = []
        dmz_cidr = None

    template = Template(INTERFACES_TEMPLATE, trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)
    return template.render(
        host=host,
        additional_ips=additional_ips,
        private_cidr=private_cidr,
        private_subnet=str(ipaddress.IPv4Interface(private_cidr).network),
        lan_ipv6=lan_ipv6(host.ipv6),
        dmz_cidr=dmz_cidr,
        dmz_subnet=str(ipaddress.IPv4Interface(dmz_cidr).network) if dmz_cidr else None,
    )


def validate_interfaces(text: str, current_ip: str, physical: str) -> List[str]:
    """
    Check that a rendered file keeps the host reachable.

    Returns:
        Error messages (empty if the file is acceptable)
    """
    errors = []
    required = [
        (r"^auto lo$", "missing 'auto lo'"),
        (r"^iface lo inet loopback$", "missing loopback interface"),
        (rf"^auto {re.escape(physical)}$", f"missing 'auto {physical}'"),
        (r"^auto vmbr0$", "missing 'auto vmbr0'"),
        (r"^iface vmbr0 inet static$", "missing static vmbr0 definition"),
        (rf"^\s+address\s+{re.escape(current_ip)}(/\d+)?\s*$", f"current IP {current_ip} is not configured"),
        (r"^\s+gateway\s+\S+", "missing gateway"),
    ]
    for pattern, message in required:
        if not re.search(pattern, text, re.MULTILINE):
            errors.append(message)

    post_up = 0
    post_down = 0
    for number, line in enumerate(text.splitlines(), start=1):
        match = re.match(r"^(\s*)(post-up|post-down)\b", line)
        if not match:
            continue
        if match.group(2) == "post-up":
            post_up += 1
        else:
            post_down += 1
        if match.group(1) != "    ":
            errors.append(f"line {number}: {match.group(2)} must be indented with 4 spaces")

    if post_up != post_down:
        errors.append(f"unbalanced post-up ({post_up}) and post-down ({post_down}) commands")
    return errors


def lint_interfaces(text: str) -> List[str]:
    """
    Report structural oddities the ifupdown parser would trip over.

    Returns:
        Warning messages
    """
    warnings = []
    in_iface = False
    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if line[0].isspace():
            option = stripped.split()[0]
            if not in_iface:
                warnings.append(f"line {number}: option '{option}' outside an iface block")
            elif option not in KNOWN_OPTIONS:
                warnings.append(f"line {number}: unknown option '{option}'")
            continue
        keyword = stripped.split()[0]
        if keyword == "iface":
            in_iface = True
        elif keyword in ("auto", "allow-hotplug", "source", "source-directory", "mapping"):
            in_iface = False
        else:
            warnings.append(f"line {number}: unexpected line '{stripped}'")
            in_iface = False
    return warnings


def validate_hetzner(additional_ips: List[AdditionalIP], main_gateway: str) -> Tuple[List[str], List[str]]:
    """
    Check additional IPs against Hetzner's routing requirements.

    Returns:
        (errors, warnings)
    """
    errors = []
    warnings = []
    for extra in additional_ips:
        if not extra.mac:
            errors.append(f"{extra.ip}: virtual MAC address is required")
        elif not extra.mac_valid:
            errors.append(f"{extra.ip}: invalid MAC address {extra.mac}")
        if extra.gateway != main_gateway:
            warnings.append(f"{extra.ip}: gateway {extra.gateway} differs from main gateway {main_gateway}")
        if not 26 <= extra.cidr <= 30:
            warnings.append(f"{extra.ip}: /{extra.cidr} is unusual for a Hetzner additional IP")
    return errors, warnings


def backup_network_state(interfaces_file: str, backup_dir: str) -> Path:
    """
    Save the interfaces file and snapshots of `ip route` / `ip addr`.

    Returns:
        Path of the interfaces backup

    Raises:
        RuntimeError: If the interfaces file does not exist
    """
    backup = backup_file(interfaces_file, backup_dir)
    if backup is None:
        raise RuntimeError(f"{interfaces_file} does not exist")
    stamp = timestamp()
    atomic_write_text(Path(backup_dir) / f"ip-route.{stamp}", _ip("route"))
    atomic_write_text(Path(backup_dir) / f"ip-addr.{stamp}", _ip("addr"))
    return backup


def write_restore_script(path: str, backup: Path, interfaces_file: str) -> Path:
    content = Template(RESTORE_SCRIPT_TEMPLATE).render(
        created=timestamp(),
        backup=backup,
        interfaces_file=interfaces_file,
    )
    atomic_write_text(path, content, mode=0o755)
    return Path(path)


def dry_run_interfaces(path: str) -> None:
    """
    Dry-run ifupdown against a candidate file when ifup is installed.

    Raises:
        RuntimeError: If ifup rejects the file
    """
    if shutil.which("ifup") is None:
        logger.info("ifup not available, skipping dry-run")
        return
    result = subprocess.run(
        ["ifup", "--no-act", "--all", f"--interfaces={path}"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Network configuration test failed: {result.stderr}")


def install_interfaces(content: str, interfaces_file: str, backup: Path, current_ip: str) -> None:
    """
    Replace the interfaces file after safety checks; restore the backup if
    ifupdown rejects the new file.

    Raises:
        RuntimeError: If a safety check or the ifupdown test fails
    """
    if current_ip not in content:
        raise RuntimeError(f"Refusing to install: configuration does not contain current IP {current_ip}")
    if not re.search(r"^auto vmbr0$", content, re.MULTILINE):
        raise RuntimeError("Refusing to install: configuration has no vmbr0 bridge")

    atomic_write_text(interfaces_file, content)
    try:
        dry_run_interfaces(interfaces_file)
    except RuntimeError:
        shutil.copy2(backup, interfaces_file)
        logger.error("Restored %s from %s", interfaces_file, backup)
        raise


def restart_networking() -> None:
    systemd.restart_unit("networking")


def check_connectivity(target: str = "8.8.8.8") -> bool:
    result = subprocess.run(
        ["ping", "-c", "1", "-W", "5", target],
        capture_output=True,
        text=True,
        check=False
    )
    return result.returncode == 0


def missing_addresses(additional_ips: List[AdditionalIP], bridge: str = "vmbr0") -> List[str]:
    """Return additional IPs not (yet) configured on the bridge."""
    configured = {a.split("/")[0] for a in parse_inet(_ip("addr", "show", bridge))}
    return [extra.ip for extra in additional_ips if extra.ip not in configured]


def enable_forwarding() -> List[Tuple[str, str]]:
    """
    Persist and apply IP forwarding for the pfSense bridges and load br_netfilter.

    Returns:
        Settings that failed to apply
    """
    result = subprocess.run(
        ["modprobe", "br_netfilter"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        logger.warning("Failed to load br_netfilter: %s", result.stderr.strip())
    append_line_once(MODULES_FILE, "br_netfilter")

    sysctl.write_profile(sysctl.FORWARDING_FILE, sysctl.FORWARDING_SETTINGS)
    return sysctl.apply_settings(sysctl.FORWARDING_SETTINGS)


def status_report() -> str:
    """Human readable summary of addresses, routes and resolvers."""
    sections = [
        ("Addresses", _ip("-brief", "addr")),
        ("Routes", _ip("route")),
    ]
    resolv = Path("/etc/resolv.conf")
    if resolv.exists():
        servers = [line for line in resolv.read_text(encoding="utf-8").splitlines() if line.startswith("nameserver")]
        sections.append(("DNS", "\n".join(servers) + "\n"))
    return "\n".join(f"== {title} ==\n{body}" for title, body in sections)
