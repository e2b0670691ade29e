"""
Block device discovery, classification and low-level device actions.

Drives are read from `lsblk -J` so that partitions, md arrays and LVM
volumes stacked on a disk show up as its children.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Set

logger = logging.getLogger(__name__)

LSBLK_COLUMNS = "NAME,PATH,SIZE,TYPE,MOUNTPOINT,FSTYPE,MODEL,LABEL,SERIAL"
SYSTEM_MOUNTPOINTS = ("/", "/boot", "/boot/efi", "/var", "/usr", "/home")
EXCLUDED_PREFIXES = ("loop", "ram", "sr", "zram", "dm-")
WIPE_CONFIRM_FSTYPES = ("ext2", "ext3", "ext4", "xfs", "btrfs", "ntfs")


class DriveStatus(str, Enum):
    """Classification of a physical drive."""

    SYSTEM = "SYSTEM"
    IN_ZFS_POOL = "IN_ZFS_POOL"
    IN_RAID = "IN_RAID"
    MOUNTED = "MOUNTED"
    AVAILABLE = "AVAILABLE"


@dataclass
class BlockDevice:
    name: str
    path: str
    size: int
    type: str
    mountpoint: Optional[str] = None
    fstype: Optional[str] = None
    model: Optional[str] = None
    label: Optional[str] = None
    serial: Optional[str] = None
    children: List["BlockDevice"] = field(default_factory=list)

    def walk(self) -> Iterable["BlockDevice"]:
        yield self
        for child in self.children:
            yield from child.walk()

    @property
    def mountpoints(self) -> List[str]:
        return [d.mountpoint for d in self.walk() if d.mountpoint]

    @property
    def fstypes(self) -> Set[str]:
        return {d.fstype for d in self.walk() if d.fstype}

    @property
    def is_system(self) -> bool:
        for dev in self.walk():
            if dev.mountpoint in SYSTEM_MOUNTPOINTS:
                return True
            label = (dev.label or "").lower()
            if "pve" in label or "proxmox" in label:
                return True
        return False

    @property
    def has_mounts(self) -> bool:
        return any(mp.startswith("/") for mp in self.mountpoints)

    @property
    def size_human(self) -> str:
        return human_size(self.size)


@dataclass
class DriveGroup:
    """Drives of identical size grouped for a mirror, or a leftover single drive."""

    kind: str  # "mirror" or "single"
    drives: List[BlockDevice]

    @property
    def size(self) -> int:
        return self.drives[0].size


def human_size(size: int) -> str:
    """
    Format a byte count the way lsblk does (e.g., 931.5G, 1.8T).
    """
    value = float(size)
    for unit in ("B", "K", "M", "G", "T", "P"):
        if value < 1024 or unit == "P":
            if unit == "B":
                return f"{int(value)}B"
            text = f"{value:.1f}".rstrip("0").rstrip(".")
            return f"{text}{unit}"
        value /= 1024
    return f"{size}B"


def _device_from_json(node: dict) -> BlockDevice:
    raw_size = node.get("size") or 0
    try:
        size = int(raw_size)
    except (TypeError, ValueError):
        size = 0
    return BlockDevice(
        name=node.get("name", ""),
        path=node.get("path") or f"/dev/{node.get('name', '')}",
        size=size,
        type=node.get("type", ""),
        mountpoint=node.get("mountpoint"),
        fstype=node.get("fstype"),
        model=(node.get("model") or "").strip() or None,
        label=node.get("label"),
        serial=node.get("serial"),
        children=[_device_from_json(child) for child in node.get("children", []) or []],
    )


def parse_lsblk_json(text: str) -> List[BlockDevice]:
    """
    Parse the output of `lsblk -J -b`.

    Args:
        text: JSON document printed by lsblk

    Returns:
        Top-level block devices with their children
    """
    data = json.loads(text or "{}")
    return [_device_from_json(node) for node in data.get("blockdevices", [])]


def list_block_devices() -> List[BlockDevice]:
    """
    Run lsblk and return every top-level block device.

    Raises:
        RuntimeError: If lsblk fails
    """
    result = subprocess.run(
        ["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to list block devices: {result.stderr}")

    return parse_lsblk_json(result.stdout)


def is_physical_disk(dev: BlockDevice) -> bool:
    return dev.type == "disk" and not dev.name.startswith(EXCLUDED_PREFIXES)


def list_disks() -> List[BlockDevice]:
    """Return physical disks only (no loop, ram, optical or device-mapper nodes)."""
    return [dev for dev in list_block_devices() if is_physical_disk(dev)]


def strip_partition(name: str) -> str:
    """
    Return the parent disk name of a partition name.

    Examples:
        sda1 -> sda, nvme0n1p2 -> nvme0n1, mmcblk0p1 -> mmcblk0, md0 -> md0
    """
    name = name.rsplit("/", 1)[-1]
    match = re.match(r"^(nvme\d+n\d+|mmcblk\d+)p\d+$", name)
    if match:
        return match.group(1)
    if name.startswith("md"):
        return re.sub(r"p\d+$", "", name)
    match = re.match(r"^((?:sd|vd|hd|xvd)[a-z]+)\d+$", name)
    if match:
        return match.group(1)
    return name


def partition_path(disk: str, number: int) -> str:
    """
    Device path of partition `number` on `disk`.

    Names ending in a digit (nvme0n1, mmcblk0, md0) take a "p" separator.

    Examples:
        sda, 3 -> /dev/sda3; nvme0n1, 3 -> /dev/nvme0n1p3
    """
    name = disk.rsplit("/", 1)[-1]
    separator = "p" if name[-1].isdigit() else ""
    return f"/dev/{name}{separator}{number}"


def belongs_to(member: str, disk_name: str) -> bool:
    """True if `member` is the disk itself or one of its partitions."""
    member = member.rsplit("/", 1)[-1]
    return member == disk_name or strip_partition(member) == disk_name


def classify(disk: BlockDevice, raid_members: Iterable[str], zfs_members: Iterable[str]) -> DriveStatus:
    """
    Classify a disk for storage setup.

    Args:
        disk: Disk to classify
        raid_members: Device names (disks or partitions) used by md arrays
        zfs_members: Device names referenced by `zpool status`

    Returns:
        The first matching status of SYSTEM, IN_ZFS_POOL, IN_RAID, MOUNTED, AVAILABLE
    """
    if disk.is_system:
        return DriveStatus.SYSTEM
    if any(belongs_to(m, disk.name) for m in zfs_members):
        return DriveStatus.IN_ZFS_POOL
    if any(belongs_to(m, disk.name) for m in raid_members):
        return DriveStatus.IN_RAID
    if disk.has_mounts:
        return DriveStatus.MOUNTED
    return DriveStatus.AVAILABLE


def group_by_size(drives: List[BlockDevice]) -> List[DriveGroup]:
    """
    Pair drives of identical size into mirrors.

    Sizes are visited in first-seen order. Every bucket yields `count // 2`
    mirror pairs; an odd leftover (or a lone drive) becomes a single group.
    """
    buckets: dict = {}
    for drive in drives:
        buckets.setdefault(drive.size, []).append(drive)

    groups: List[DriveGroup] = []
    for members in buckets.values():
        for i in range(0, len(members) - 1, 2):
            groups.append(DriveGroup(kind="mirror", drives=[members[i], members[i + 1]]))
        if len(members) % 2 == 1:
            groups.append(DriveGroup(kind="single", drives=[members[-1]]))
    return groups


def root_source() -> str:
    """Return the device mounted on / (e.g., /dev/md2 or /dev/mapper/vg0-root)."""
    result = subprocess.run(
        ["findmnt", "-n", "-o", "SOURCE", "/"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to find root filesystem source: {result.stderr}")
    return result.stdout.strip()


def parent_disk(device: str) -> str:
    """
    Resolve the disk a partition lives on.

    Uses `lsblk -no PKNAME` and falls back to stripping the partition suffix.
    """
    result = subprocess.run(
        ["lsblk", "-no", "PKNAME", device],
        capture_output=True,
        text=True,
        check=False
    )
    pkname = result.stdout.strip().splitlines()[0].strip() if result.stdout.strip() else ""
    if result.returncode == 0 and pkname:
        # md and LVM devices report their member partitions
        return strip_partition(pkname)
    return strip_partition(device)


def lvm_vg_of(device: str) -> Optional[str]:
    """Return the volume group of an LV device path, or None if it is not an LV."""
    result = subprocess.run(
        ["lvs", "--noheadings", "-o", "vg_name", device],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def system_disk() -> str:
    """
    Find the physical disk holding the root filesystem.

    LVM roots are resolved through the physical volumes of their volume group.

    Returns:
        Disk name (e.g., "nvme0n1")
    """
    source = root_source()
    # /dev/mapper/<vg>-<lv> and /dev/<vg>/<lv> forms
    vg = lvm_vg_of(source) if source.count("/") > 2 else None
    if vg:
        result = subprocess.run(
            ["pvs", "--noheadings", "-o", "pv_name", "-S", f"vg_name={vg}"],
            capture_output=True,
            text=True,
            check=False
        )
        pvs = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if result.returncode == 0 and pvs:
            return parent_disk(pvs[0])
    return parent_disk(source)


def wipe_signatures(device: str, force: bool = False) -> None:
    """
    Remove filesystem, RAID and partition-table signatures from a device.

    Raises:
        RuntimeError: If wipefs fails
    """
    cmd = ["wipefs", "-fa" if force else "-a", device]
    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to wipe {device}: {result.stderr}")
    logger.info("Wiped signatures on %s", device)


def zero_head(device: str, mib: int = 100) -> None:
    """Overwrite the first `mib` MiB of a device with zeros."""
    result = subprocess.run(
        ["dd", "if=/dev/zero", f"of={device}", "bs=1M", f"count={mib}", "status=none"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to zero {device}: {result.stderr}")


def partprobe(device: Optional[str] = None) -> None:
    """Ask the kernel to re-read partition tables. Failures are only logged."""
    cmd = ["partprobe"] + ([device] if device else [])
    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        logger.warning("partprobe %s failed: %s", device or "", result.stderr.strip())


def get_uuid(device: str) -> str:
    """
    Return the filesystem UUID of a device.

    Raises:
        RuntimeError: If the device has no UUID
    """
    result = subprocess.run(
        ["blkid", "-s", "UUID", "-o", "value", device],
        capture_output=True,
        text=True,
        check=False
    )
    uuid = result.stdout.strip()
    if result.returncode != 0 or not uuid:
        raise RuntimeError(f"Failed to get UUID of {device}: {result.stderr}")
    return uuid


def get_fstype(device: str) -> Optional[str]:
    result = subprocess.run(
        ["blkid", "-s", "TYPE", "-o", "value", device],
        capture_output=True,
        text=True,
        check=False
    )
    return result.stdout.strip() or None


def make_ext4(device: str, label: Optional[str] = None) -> None:
    """
    Create an ext4 filesystem, overwriting anything on the device.

    Raises:
        RuntimeError: If mkfs.ext4 fails
    """
    cmd = ["mkfs.ext4", "-F"]
    if label:
        cmd.extend(["-L", label])
    cmd.append(device)
    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to create ext4 filesystem on {device}: {result.stderr}")
    logger.info("Created ext4 filesystem on %s", device)


def mount_targets(device: str) -> List[str]:
    """Return every mount target of a device (empty if not mounted)."""
    result = subprocess.run(
        ["findmnt", "-n", "-o", "TARGET", "-S", device],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        return []
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def is_mountpoint(path: str) -> bool:
    result = subprocess.run(
        ["mountpoint", "-q", path],
        capture_output=True,
        text=True,
        check=False
    )
    return result.returncode == 0


def mount(target: str, device: Optional[str] = None) -> None:
    """
    Mount a device (or the fstab entry for `target` when no device is given).

    Raises:
        RuntimeError: If mount fails
    """
    cmd = ["mount"] + ([device] if device else []) + [target]
    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to mount {target}: {result.stderr}")


def unmount(target: str, force: bool = False) -> None:
    """
    Unmount a path. With `force`, retry with `umount -f` and then a lazy unmount.

    Raises:
        RuntimeError: If the path could not be unmounted
    """
    attempts = [["umount", target]]
    if force:
        attempts += [["umount", "-f", target], ["umount", "-l", target]]

    stderr = ""
    for cmd in attempts:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False
        )
        if result.returncode == 0:
            logger.info("Unmounted %s", target)
            return
        stderr = result.stderr

    raise RuntimeError(f"Failed to unmount {target}: {stderr}")
