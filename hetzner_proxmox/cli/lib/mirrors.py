"""
Planning and building RAID1 mirrors (ext4 on mdadm) as Proxmox directory storage.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from hetzner_proxmox.cli.lib import blockdev, fstab, mdadm, pvesm
from hetzner_proxmox.cli.lib.blockdev import BlockDevice, belongs_to, group_by_size

logger = logging.getLogger(__name__)

STORAGE_ROOT = "/mnt/pve"


@dataclass
class MirrorPlan:
    """One unit of work produced by `plan_mirrors`."""

    kind: str  # create | existing | single | conflict
    drives: List[BlockDevice]
    storage_name: str = ""
    array: Optional[str] = None
    reason: str = ""
    fstypes: List[str] = field(default_factory=list)

    @property
    def drive_paths(self) -> List[str]:
        return [d.path for d in self.drives]


def array_of(disk: BlockDevice, arrays: List[mdadm.MdArray]) -> Optional[str]:
    """Return the name of the array using `disk` (or one of its partitions)."""
    for array in arrays:
        if any(belongs_to(m, disk.name) for m in array.members):
            return array.name
    return None


def candidate_disks(disks: List[BlockDevice], zfs_members: List[str]) -> List[BlockDevice]:
    """Disks eligible for mirror setup: not system, not mounted, not used by ZFS."""
    result = []
    for disk in disks:
        if disk.is_system or disk.has_mounts:
            continue
        if any(belongs_to(m, disk.name) for m in zfs_members):
            continue
        result.append(disk)
    return result


def plan_mirrors(
    disks: List[BlockDevice],
    arrays: List[mdadm.MdArray],
    taken_names: Iterable[str] = (),
) -> List[MirrorPlan]:
    """
    Turn candidate disks into mirror/single-drive work items.

    Drives of identical size are paired. A pair already forming one array is
    reused; a pair where only one side (or two different arrays) is in use is
    reported as a conflict and left alone.

    Args:
        disks: Candidate disks (see `candidate_disks`)
        arrays: Arrays parsed from /proc/mdstat
        taken_names: Storage IDs already in use; new names skip them

    Returns:
        Work items in the order they should be applied
    """
    plans: List[MirrorPlan] = []
    taken = set(taken_names)

    def claim(prefix: str) -> str:
        name = pvesm.next_storage_name(prefix, taken)
        taken.add(name)
        return name

    for group in group_by_size(disks):
        owners = [array_of(d, arrays) for d in group.drives]
        fstypes = sorted({t for d in group.drives for t in d.fstypes})

        if group.kind == "mirror":
            if owners[0] and owners[0] == owners[1]:
                plans.append(MirrorPlan(
                    kind="existing",
                    drives=group.drives,
                    storage_name=claim("raid-mirror"),
                    array=owners[0],
                    fstypes=fstypes,
                ))
            elif any(owners):
                used = ", ".join(sorted({o for o in owners if o}))
                plans.append(MirrorPlan(
                    kind="conflict",
                    drives=group.drives,
                    reason=f"drive already in array {used}",
                ))
            else:
                plans.append(MirrorPlan(
                    kind="create",
                    drives=group.drives,
                    storage_name=claim("raid-mirror"),
                    fstypes=fstypes,
                ))
        else:
            if owners[0]:
                plans.append(MirrorPlan(
                    kind="conflict",
                    drives=group.drives,
                    reason=f"drive already in array {owners[0]}",
                ))
            else:
                plans.append(MirrorPlan(
                    kind="single",
                    drives=group.drives,
                    storage_name=claim("single-drive"),
                    fstypes=fstypes,
                ))
    return plans


def build(plan: MirrorPlan, md_device: Optional[str] = None) -> str:
    """
    Create the block device and filesystem for a work item.

    Args:
        plan: Work item of kind create, existing or single
        md_device: Array device to create (kind "create" only)

    Returns:
        Device carrying the new ext4 filesystem

    Raises:
        ValueError: If the plan is a conflict
        RuntimeError: If any step fails
    """
    if plan.kind == "conflict":
        raise ValueError(f"Cannot build conflicting drives: {plan.reason}")

    if plan.kind == "existing":
        device = f"/dev/{plan.array}"
        if blockdev.get_fstype(device) != "ext4":
            blockdev.make_ext4(device)
        return device

    if plan.kind == "single":
        device = plan.drives[0].path
        if plan.fstypes:
            blockdev.wipe_signatures(device)
        blockdev.make_ext4(device)
        return device

    device = md_device or mdadm.next_md_device()
    for path in plan.drive_paths:
        blockdev.wipe_signatures(path)
    mdadm.create_array(device, "1", plan.drive_paths, assume_clean=True)
    mdadm.wait_array(device)
    blockdev.make_ext4(device)
    return device


def register_storage(device: str, name: str) -> str:
    """
    Mount a filesystem under /mnt/pve/<name>, persist it and add it to Proxmox.

    Args:
        device: Device with an ext4 filesystem
        name: Proxmox storage ID

    Returns:
        Mount path

    Raises:
        RuntimeError: If the storage ID is already defined in Proxmox
    """
    if pvesm.storage_exists(name):
        raise RuntimeError(f"Proxmox storage {name} already exists")

    mount_path = f"{STORAGE_ROOT}/{name}"
    os.makedirs(mount_path, exist_ok=True)

    # md numbers are not stable across boots; mount by filesystem UUID
    uuid = blockdev.get_uuid(device)
    fstab.replace_source(device, f"UUID={uuid}")
    fstab.ensure_entry(f"UUID={uuid}", mount_path, "ext4", "defaults", 2)

    if not blockdev.is_mountpoint(mount_path):
        blockdev.mount(mount_path)

    pvesm.add_dir_storage(name, mount_path)
    return mount_path
