"""
/etc/fstab editing.
"""

import logging
from pathlib import Path
from typing import List

from hetzner_proxmox.cli.lib.files import atomic_write_text, backup_file

logger = logging.getLogger(__name__)

FSTAB_PATH = Path("/etc/fstab")


def _entries(text: str) -> List[List[str]]:
    rows = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        rows.append(stripped.split())
    return rows


def has_spec(text: str, spec: str) -> bool:
    return any(row[0] == spec for row in _entries(text))


def has_target(text: str, target: str) -> bool:
    return any(len(row) > 1 and row[1] == target for row in _entries(text))


def without_target(text: str, target: str) -> str:
    """Return fstab text with every line mounting `target` removed."""
    kept = []
    for line in text.splitlines():
        fields = line.split()
        if fields and not line.lstrip().startswith("#") and len(fields) > 1 and fields[1] == target:
            continue
        kept.append(line)
    return "\n".join(kept) + ("\n" if kept else "")


def ensure_entry(
    spec: str,
    target: str,
    fstype: str = "ext4",
    options: str = "defaults",
    passno: int = 2,
    path: Path = FSTAB_PATH,
) -> bool:
    """
    Add an fstab line unless the same source is already listed.

    Args:
        spec: Source (e.g., "UUID=...")
        target: Mount point
        fstype: Filesystem type
        options: Mount options
        passno: fsck pass number
        path: fstab location

    Returns:
        True if a line was added
    """
    text = path.read_text(encoding="utf-8") if path.exists() else ""
    if has_spec(text, spec):
        return False

    backup_file(path)
    if text and not text.endswith("\n"):
        text += "\n"
    text += f"{spec} {target} {fstype} {options} 0 {passno}\n"
    atomic_write_text(path, text)
    logger.info("Added fstab entry %s -> %s", spec, target)
    return True


def remove_target(target: str, path: Path = FSTAB_PATH) -> bool:
    """
    Drop every fstab line that mounts `target`.

    Returns:
        True if the file changed
    """
    if not path.exists():
        return False
    text = path.read_text(encoding="utf-8")
    if not has_target(text, target):
        return False

    backup_file(path)
    atomic_write_text(path, without_target(text, target))
    logger.info("Removed fstab entries for %s", target)
    return True


def replace_target(spec: str, target: str, fstype: str, options: str, passno: int = 2, path: Path = FSTAB_PATH) -> None:
    """Replace whatever mounts `target` with a single new line."""
    text = path.read_text(encoding="utf-8") if path.exists() else ""
    backup_file(path)
    text = without_target(text, target) if text else ""
    text += f"{spec} {target} {fstype} {options} 0 {passno}\n"
    atomic_write_text(path, text)


def replace_source(old: str, new: str, path: Path = FSTAB_PATH) -> bool:
    """
    Point every fstab line whose source is `old` at `new` instead.

    Args:
        old: Current source (e.g., "/dev/md1")
        new: Replacement source (e.g., "UUID=...")
        path: fstab location

    Returns:
        True if the file changed
    """
    if not path.exists():
        return False
    text = path.read_text(encoding="utf-8")
    if not has_spec(text, old):
        return False

    lines = []
    for line in text.splitlines():
        fields = line.split()
        if fields and not line.lstrip().startswith("#") and fields[0] == old:
            line = " ".join([new] + fields[1:])
        lines.append(line)

    backup_file(path)
    atomic_write_text(path, "\n".join(lines) + "\n")
    logger.info("Replaced fstab source %s with %s", old, new)
    return True
