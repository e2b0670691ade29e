"""
/data volume provisioning from the free space of the system drive.
"""

import logging
import os
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from hetzner_proxmox.cli.lib import blockdev, fstab, lvm
from hetzner_proxmox.cli.lib.blockdev import BlockDevice, partition_path

logger = logging.getLogger(__name__)

DATA_MOUNT = Path("/data")
DATA_SUBDIRS = ("containers", "backups", "templates", "logs")
DATA_LV_NAME = "data"
GIB = 1024 ** 3
MIN_FREE_BYTES = 10 * GIB
PARTITION_BUFFER_BYTES = GIB


@dataclass
class DataPlan:
    disk: str
    free_bytes: int
    vg: Optional[str] = None
    existing_lv: bool = False

    @property
    def method(self) -> str:
        if self.vg and self.existing_lv:
            return "lvm"
        if not self.free_bytes:
            return "none"
        return "lvm" if self.vg else "partition"


def usable(free_bytes: int) -> int:
    """Free space below 10 GiB is not worth a separate volume."""
    return free_bytes if free_bytes >= MIN_FREE_BYTES else 0


def partition_free_bytes(disk: BlockDevice) -> int:
    """Unpartitioned space on a disk, minus a 1 GiB safety buffer."""
    used = sum(child.size for child in disk.children if child.type == "part")
    return max(disk.size - used - PARTITION_BUFFER_BYTES, 0)


def lvm_free_bytes(vgs: List[str]) -> int:
    """Sum free space across volume groups, counting each group once."""
    return sum(lvm.vg_free_bytes(vg) for vg in dict.fromkeys(vgs))


def plan(disk: BlockDevice, vgs: List[str]) -> DataPlan:
    """
    Decide how /data can be created on the system disk.

    Args:
        disk: System disk
        vgs: Volume groups with physical volumes on that disk

    Returns:
        DataPlan; `free_bytes` is 0 when there is not enough room
    """
    if vgs:
        vg = vgs[0]
        return DataPlan(
            disk=disk.name,
            free_bytes=usable(lvm_free_bytes(vgs)),
            vg=vg,
            existing_lv=lvm.lv_exists(vg, DATA_LV_NAME),
        )
    return DataPlan(disk=disk.name, free_bytes=usable(partition_free_bytes(disk)))


def ensure_subdirs(root: Path = DATA_MOUNT) -> None:
    for name in DATA_SUBDIRS:
        (root / name).mkdir(parents=True, exist_ok=True)
    os.chmod(root, 0o755)


def partition_numbers(disk: str) -> List[int]:
    """Partition numbers in the table of /dev/<disk> (`parted -m print`)."""
    result = subprocess.run(
        ["parted", "-m", "-s", f"/dev/{disk}", "unit", "B", "print"],
        capture_output=True,
        text=True,
        check=False
    )
    numbers = []
    for line in result.stdout.splitlines():
        field = line.split(":", 1)[0]
        if field.isdigit():
            numbers.append(int(field))
    return numbers


def create_partition(
    disk: str,
    size_bytes: int,
    timeout: int = 10,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """
    Create a partition in the free space at the end of a disk.

    Returns:
        Device path of the new partition

    Raises:
        RuntimeError: If parted fails or the partition does not appear
    """
    before = set(partition_numbers(disk))
    result = subprocess.run(
        ["parted", f"/dev/{disk}", "--script", "mkpart", "primary", "ext4", "--", f"-{size_bytes}B", "-1"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to create partition on /dev/{disk}: {result.stderr}")

    blockdev.partprobe(f"/dev/{disk}")
    for _ in range(timeout):
        new = sorted(set(partition_numbers(disk)) - before)
        if new:
            device = partition_path(disk, new[-1])
            if os.path.exists(device):
                return device
        sleep(1)
    raise RuntimeError(f"New partition on /dev/{disk} did not appear")


def _clear_dir(path: Path) -> None:
    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()


def mount_data(device: str, mount_point: Path = DATA_MOUNT) -> None:
    """
    Put a fresh ext4 filesystem on `device` and mount it at /data, carrying
    over anything already stored in the directory.

    The old contents are moved rather than copied, so nothing is left hidden
    under the new mount. If mounting fails they are put back in place.
    """
    blockdev.make_ext4(device, label="data")

    uuid = blockdev.get_uuid(device)
    fstab.replace_target(f"UUID={uuid}", str(mount_point), "ext4", "defaults,noatime", 2)
    mount_point.mkdir(parents=True, exist_ok=True)

    saved: Optional[str] = None
    if any(mount_point.iterdir()):
        saved = tempfile.mkdtemp(prefix="data-backup-")
        shutil.copytree(mount_point, saved, dirs_exist_ok=True, symlinks=True)
        logger.info("Saved existing %s contents to %s", mount_point, saved)
        _clear_dir(mount_point)

    try:
        blockdev.mount(str(mount_point))
    finally:
        if saved:
            shutil.copytree(saved, mount_point, dirs_exist_ok=True, symlinks=True)
            shutil.rmtree(saved)

    ensure_subdirs(mount_point)


def provision(data_plan: DataPlan, extend: bool = False) -> str:
    """
    Carry out a DataPlan.

    A logical volume created here is removed again if the filesystem cannot
    be set up on it.

    Returns:
        Short description of what was done

    Raises:
        RuntimeError: If there is no usable free space or a step fails
    """
    if data_plan.method == "none":
        raise RuntimeError("Not enough free space on the system drive (need at least 10 GiB)")

    if not data_plan.vg:
        device = create_partition(data_plan.disk, data_plan.free_bytes)
        mount_data(device)
        return f"Created {device} and mounted it at {DATA_MOUNT}"

    if data_plan.existing_lv:
        if not extend:
            return f"/dev/{data_plan.vg}/{DATA_LV_NAME} already exists (use --extend to grow it)"
        path = lvm.extend_lv_all_free(data_plan.vg, DATA_LV_NAME)
        return f"Extended {path}"

    device = lvm.create_lv_all_free(data_plan.vg, DATA_LV_NAME)
    try:
        mount_data(device)
    except (RuntimeError, OSError):
        logger.warning("Setting up %s failed, removing it", device)
        fstab.remove_target(str(DATA_MOUNT))
        lvm.delete_lv(data_plan.vg, DATA_LV_NAME)
        raise
    return f"Created {device} and mounted it at {DATA_MOUNT}"
