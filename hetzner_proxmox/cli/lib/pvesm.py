"""
Proxmox storage manager (pvesm) functions.
"""

import logging
import subprocess
from typing import Iterable, List

logger = logging.getLogger(__name__)

DEFAULT_CONTENT = "images,vztmpl,iso,snippets,backup"


def storage_exists(name: str) -> bool:
    result = subprocess.run(
        ["pvesm", "status", "-storage", name],
        capture_output=True,
        text=True,
        check=False
    )
    return result.returncode == 0


def add_dir_storage(name: str, path: str, content: str = DEFAULT_CONTENT) -> bool:
    """
    Register a directory as Proxmox storage.

    Args:
        name: Storage ID
        path: Directory backing the storage
        content: Content types offered by the storage

    Returns:
        True if the storage was added, False if it already existed

    Raises:
        RuntimeError: If pvesm add fails
    """
    if storage_exists(name):
        return False

    result = subprocess.run(
        ["pvesm", "add", "dir", name, "--path", path, "--content", content],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to add Proxmox storage {name}: {result.stderr}")
    logger.info("Added Proxmox storage %s at %s", name, path)
    return True


def remove_storage(name: str) -> bool:
    """
    Remove a Proxmox storage definition (data on disk is untouched).

    Returns:
        True if the storage was removed, False if it did not exist
    """
    if not storage_exists(name):
        return False

    result = subprocess.run(
        ["pvesm", "remove", name],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to remove Proxmox storage {name}: {result.stderr}")
    return True


def status() -> str:
    result = subprocess.run(
        ["pvesm", "status"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to get Proxmox storage status: {result.stderr}")
    return result.stdout


def storage_ids() -> List[str]:
    """Storage IDs currently defined in Proxmox (first column of `pvesm status`)."""
    ids = []
    for line in status().splitlines()[1:]:
        fields = line.split()
        if fields:
            ids.append(fields[0])
    return ids


def next_storage_name(prefix: str, taken: Iterable[str]) -> str:
    """
    Return the first `<prefix>-N` (N >= 1) not in `taken`.

    Examples:
        next_storage_name("raid-mirror", ["raid-mirror-1"]) -> "raid-mirror-2"
    """
    taken = set(taken)
    index = 1
    while f"{prefix}-{index}" in taken:
        index += 1
    return f"{prefix}-{index}"
