"""
Proxmox VM (qm) management functions.
"""

import logging
import re
import subprocess
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


def vm_status(vm_id: int) -> Optional[str]:
    """
    Return the VM state ("running", "stopped", ...) or None if it does not exist.
    """
    result = subprocess.run(
        ["qm", "status", str(vm_id)],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        return None
    match = re.search(r"status:\s*(\S+)", result.stdout)
    return match.group(1) if match else "unknown"


def vm_exists(vm_id: int) -> bool:
    return vm_status(vm_id) is not None


def _qm(action: str, vm_id: int, options: Optional[List[str]] = None) -> None:
    cmd = ["qm", action, str(vm_id)] + (options or [])
    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to {action} VM {vm_id}: {result.stderr}")
    logger.info("qm %s %s %s", action, vm_id, " ".join(options or []))


def create_vm(vm_id: int, options: List[str]) -> None:
    """
    Create a VM.

    Args:
        vm_id: VM ID
        options: `qm create` options (e.g., ["--name", "pfSense", "--memory", "2048"])

    Raises:
        RuntimeError: If the VM already exists or qm create fails
    """
    if vm_exists(vm_id):
        raise RuntimeError(f"VM {vm_id} already exists")
    _qm("create", vm_id, options)


def set_vm(vm_id: int, options: List[str]) -> None:
    _qm("set", vm_id, options)


def stop_vm(vm_id: int) -> None:
    _qm("stop", vm_id)


def destroy_vm(vm_id: int) -> None:
    """
    Stop (if running) and destroy a VM. Missing VMs are ignored.
    """
    status = vm_status(vm_id)
    if status is None:
        return
    if status == "running":
        stop_vm(vm_id)
    _qm("destroy", vm_id, ["--purge"])


def parse_config(text: str) -> Dict[str, str]:
    """Parse `qm config` output (`key: value` per line)."""
    config = {}
    for line in text.splitlines():
        if ":" not in line or line.startswith("#"):
            continue
        key, value = line.split(":", 1)
        config[key.strip()] = value.strip()
    return config


def get_config(vm_id: int) -> Dict[str, str]:
    """
    Return the VM configuration.

    Raises:
        RuntimeError: If qm config fails
    """
    result = subprocess.run(
        ["qm", "config", str(vm_id)],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to read config of VM {vm_id}: {result.stderr}")
    return parse_config(result.stdout)


def macaddr_of(netcfg: str) -> Optional[str]:
    """
    Extract the MAC from a netX value.

    Accepts both `macaddr=..` and the `virtio=<mac>` model shorthand that
    Proxmox writes back once a MAC is assigned.
    """
    for part in netcfg.split(","):
        key, _, value = part.partition("=")
        if key == "macaddr" or (key in ("virtio", "e1000", "vmxnet3", "rtl8139") and value):
            return value.upper()
    return None


def list_vms() -> List[Dict[str, str]]:
    result = subprocess.run(
        ["qm", "list"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to list VMs: {result.stderr}")

    vms = []
    for line in result.stdout.splitlines()[1:]:
        fields = line.split()
        if len(fields) >= 3:
            vms.append({"vm_id": fields[0], "name": fields[1], "status": fields[2]})
    return vms
