"""
ZFS pool management functions.
"""

import logging
import shutil
import subprocess
from typing import List

logger = logging.getLogger(__name__)

POOL_OPTIONS = ["-o", "ashift=12"]
FS_OPTIONS = [
    "compression=lz4",
    "atime=off",
    "relatime=on",
    "xattr=sa",
    "dnodesize=auto",
    "normalization=formD",
    "mountpoint=none",
    "canmount=off",
]


def zfs_available() -> bool:
    return shutil.which("zpool") is not None and shutil.which("zfs") is not None


def install_zfs() -> None:
    """
    Install the ZFS userland and load the kernel module.

    Raises:
        RuntimeError: If installation or module loading fails
    """
    result = subprocess.run(
        ["apt-get", "install", "-y", "zfsutils-linux"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to install zfsutils-linux: {result.stderr}")

    result = subprocess.run(
        ["modprobe", "zfs"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to load zfs kernel module: {result.stderr}")


def list_pools() -> List[str]:
    result = subprocess.run(
        ["zpool", "list", "-H", "-o", "name"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        return []
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def parse_pool_members(status_text: str) -> List[str]:
    """
    Extract vdev member names from `zpool status` output.

    Only rows of the `config:` table are considered; pool names and vdev
    group names (mirror-0, raidz1-0, ...) are skipped.
    """
    members = []
    pools = set()
    in_config = False
    for line in status_text.splitlines():
        stripped = line.strip()
        if stripped.startswith("pool:"):
            pools.add(stripped.split(":", 1)[1].strip())
            in_config = False
            continue
        if stripped.startswith("config:"):
            in_config = True
            continue
        if stripped.startswith("errors:"):
            in_config = False
            continue
        if not in_config or not stripped or stripped.startswith("NAME"):
            continue
        name = stripped.split()[0]
        if name in pools or name in ("logs", "cache", "spares", "special", "dedup"):
            continue
        if name.startswith(("mirror-", "raidz", "draid", "spare-", "replacing-")):
            continue
        members.append(name)
    return members


def pool_members() -> List[str]:
    """Return device names used by any imported pool (empty if ZFS is missing)."""
    if not zfs_available():
        return []
    result = subprocess.run(
        ["zpool", "status"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        return []
    return parse_pool_members(result.stdout)


def next_pool_name(existing: List[str], prefix: str = "zpool", start: int = 1) -> str:
    """Return the first `<prefix>N` (N >= start) not already in `existing`."""
    n = start
    while f"{prefix}{n}" in existing:
        n += 1
    return f"{prefix}{n}"


def create_pool(name: str, drives: List[str]) -> None:
    """
    Create a pool from one drive or a two-way mirror.

    Args:
        name: Pool name
        drives: One drive (single vdev) or two or more (mirror vdev)

    Raises:
        RuntimeError: If the pool exists or zpool create fails
    """
    if name in list_pools():
        raise RuntimeError(f"ZFS pool {name} already exists")

    cmd = ["zpool", "create", "-f"] + POOL_OPTIONS
    for opt in FS_OPTIONS:
        cmd.extend(["-O", opt])
    cmd.append(name)
    if len(drives) > 1:
        cmd.append("mirror")
    cmd.extend(drives)

    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to create ZFS pool {name}: {result.stderr}")
    logger.info("Created ZFS pool %s on %s", name, " ".join(drives))


def create_dataset(pool: str, dataset: str, mountpoint: str) -> bool:
    """
    Create a mounted dataset on a pool.

    Returns:
        True on success; failures are logged since the pool itself is usable
    """
    result = subprocess.run(
        ["zfs", "create", "-o", f"mountpoint={mountpoint}", "-o", "canmount=on", f"{pool}/{dataset}"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        logger.warning("Failed to create dataset %s/%s: %s", pool, dataset, result.stderr.strip())
        return False
    return True


def pool_healthy(name: str) -> bool:
    result = subprocess.run(
        ["zpool", "list", "-H", "-o", "health", name],
        capture_output=True,
        text=True,
        check=False
    )
    return result.returncode == 0 and result.stdout.strip() == "ONLINE"
