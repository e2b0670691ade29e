"""
LVM helpers used to carve the /data volume out of free volume group space.
"""

import subprocess
from typing import Dict, List

from hetzner_proxmox.cli.lib.blockdev import belongs_to


def lv_exists(vg_name: str, lv_name: str) -> bool:
    result = subprocess.run(
        ["lvdisplay", f"/dev/{vg_name}/{lv_name}"],
        capture_output=True,
        text=True,
        check=False
    )
    return result.returncode == 0


def physical_volumes() -> Dict[str, str]:
    """
    Map physical volume paths to their volume group.

    Returns:
        Dict of PV path -> VG name (PVs outside any VG map to "")
    """
    result = subprocess.run(
        ["pvs", "--noheadings", "--separator", "|", "-o", "pv_name,vg_name"],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        return {}

    pvs = {}
    for line in result.stdout.splitlines():
        parts = [p.strip() for p in line.split("|")]
        if len(parts) >= 2 and parts[0]:
            pvs[parts[0]] = parts[1]
    return pvs


def vgs_on_disk(disk: str) -> List[str]:
    """
    Return the volume groups that have a physical volume on `disk`.

    Args:
        disk: Disk name or path (e.g., "sda", "/dev/nvme0n1")
    """
    disk_name = disk.rsplit("/", 1)[-1]
    vgs: List[str] = []
    for pv, vg in physical_volumes().items():
        if vg and belongs_to(pv, disk_name) and vg not in vgs:
            vgs.append(vg)
    return vgs


def vg_free_bytes(vg_name: str) -> int:
    """
    Return the unallocated space of a volume group in bytes.

    Raises:
        RuntimeError: If vgs fails
    """
    result = subprocess.run(
        ["vgs", "--noheadings", "--nosuffix", "--units", "B", "-o", "vg_free", vg_name],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to query volume group {vg_name}: {result.stderr}")

    raw = result.stdout.strip().rstrip("B")
    try:
        return int(float(raw))
    except ValueError:
        return 0


def create_lv_all_free(vg_name: str, lv_name: str) -> str:
    """
    Create a logical volume using all free extents of the volume group.

    Args:
        vg_name: Volume group name
        lv_name: Logical volume name

    Returns:
        Path to the logical volume (e.g., "/dev/pve/data")

    Raises:
        RuntimeError: If the LV already exists or creation fails
    """
    lv_path = f"/dev/{vg_name}/{lv_name}"

    if lv_exists(vg_name, lv_name):
        raise RuntimeError(f"Logical volume {lv_path} already exists")

    result = subprocess.run(
        ["lvcreate", "-y", "-l", "100%FREE", "-n", lv_name, vg_name],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to create logical volume: {result.stderr}")

    return lv_path


def extend_lv_all_free(vg_name: str, lv_name: str) -> str:
    """
    Grow a logical volume and its ext4 filesystem into all free VG space.

    Raises:
        RuntimeError: If the LV does not exist or resizing fails
    """
    lv_path = f"/dev/{vg_name}/{lv_name}"

    if not lv_exists(vg_name, lv_name):
        raise RuntimeError(f"Logical volume {lv_path} does not exist")

    result = subprocess.run(
        ["lvextend", "-l", "+100%FREE", lv_path],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to extend logical volume: {result.stderr}")

    result = subprocess.run(
        ["resize2fs", lv_path],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to resize filesystem: {result.stderr}")

    return lv_path


def delete_lv(vg_name: str, lv_name: str) -> None:
    """
    Delete a logical volume; a missing LV is skipped.

    Raises:
        RuntimeError: If lvremove fails
    """
    if not lv_exists(vg_name, lv_name):
        return

    result = subprocess.run(
        ["lvremove", "-f", f"/dev/{vg_name}/{lv_name}"],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to delete logical volume: {result.stderr}")
