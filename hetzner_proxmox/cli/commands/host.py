"""
Host-level commands: prerequisite checks, status overview, service restart
and virtual MAC verification.
"""

from typing import Optional

import typer

from hetzner_proxmox.cli.lib import host, network, qm, state, systemd, ufw
from hetzner_proxmox.cli.lib.config import load_config

SERVICES = ("caddy", "pveproxy", "pvedaemon")

MAC_GUIDANCE = """
Virtual MACs are assigned in the Hetzner Robot panel:
  Server -> IPs -> click the MAC icon next to each additional IP -> "Request separate MAC".
Add them to the additional IPs file, e.g.:
  IP=203.0.113.10 MAC=00:50:56:00:12:34 GATEWAY=203.0.113.1 NETMASK=255.255.255.192
"""


def validate(
    command: Optional[str] = typer.Argument(None, help=f"Step to check ({', '.join(sorted(host.COMMAND_TOOLS))})"),
):
    """
    Check that the host is ready for a setup step.
    """
    try:
        problems = host.validate(command, load_config())
        if not host.is_root():
            problems.insert(0, "Not running as root")

        if problems:
            for problem in problems:
                typer.echo(f"  FAIL  {problem}")
            typer.echo(f"{len(problems)} problem(s) found")
            raise typer.Exit(1)
        typer.echo(f"All checks passed{' for ' + command if command else ''}")

    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error validating host: {e}", err=True)
        raise typer.Exit(1)


def status():
    """
    Show service states, firewall rules and what this tool has set up.
    """
    try:
        typer.echo("Services:")
        for service in SERVICES:
            typer.echo(f"  {service:<12} {systemd.unit_state(service)}")

        typer.echo("\nFirewall:")
        try:
            typer.echo(ufw.status())
        except RuntimeError as e:
            typer.echo(f"  unavailable: {e}")

        typer.echo("Storage:")
        for item in state.list_storage():
            typer.echo(f"  {item.get('name')}: {item.get('kind')} on {item.get('device')} at {item.get('path')}")

        typer.echo("VMs:")
        for vm in state.list_vms():
            typer.echo(f"  {vm.get('vm_id')}: {vm.get('name')} ({vm.get('role')})")

        typer.echo("Network changes:")
        for change in state.list_network_changes():
            typer.echo(f"  {change.get('applied_at')}: backup {change.get('backup')}")

    except Exception as e:
        typer.echo(f"Error reading status: {e}", err=True)
        raise typer.Exit(1)


def restart():
    """
    Restart Caddy and the Proxmox web services.
    """
    try:
        for service in SERVICES:
            systemd.restart_unit(service)
            typer.echo(f"  Restarted {service}")

    except Exception as e:
        typer.echo(f"Error restarting services: {e}", err=True)
        raise typer.Exit(1)


def _vm_mac(vm_id: int, nic: str) -> Optional[str]:
    if not qm.vm_exists(vm_id):
        return None
    return qm.macaddr_of(qm.get_config(vm_id).get(nic, ""))


def check_mac():
    """
    Verify the virtual MACs of the additional IPs and of the VM interfaces using them.
    """
    try:
        cfg = load_config()
        additional_ips = network.load_additional_ips(cfg.additional_ips_file)
        if not additional_ips:
            typer.echo(f"No additional IPs configured ({cfg.additional_ips_file})")
            typer.echo(MAC_GUIDANCE)
            raise typer.Exit(1)

        bad = 0
        for number, extra in enumerate(additional_ips, start=1):
            if not extra.mac:
                verdict = "missing"
                bad += 1
            elif not extra.mac_valid:
                verdict = "invalid"
                bad += 1
            else:
                verdict = "valid"
            typer.echo(f"#{number} {extra.ip}: MAC {extra.mac or '-'} ({verdict})")

        checks = [(cfg.pfsense_vm_id, "net0", 0, "pfSense WAN"), (cfg.admin_vm_id, "net1", 1, "admin VM WAN")]
        for vm_id, nic, index, label in checks:
            if index >= len(additional_ips):
                continue
            actual = _vm_mac(vm_id, nic)
            if actual is None:
                continue
            expected = additional_ips[index].mac
            if not expected:
                result = "auto-generated"
            elif actual == expected.upper():
                result = "MATCHES"
            else:
                result = "MISMATCH"
            typer.echo(f"VM {vm_id} {nic} ({label}): {actual} {result}")

        if bad:
            typer.echo(MAC_GUIDANCE)
            raise typer.Exit(1)

    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error checking MAC addresses: {e}", err=True)
        raise typer.Exit(1)
