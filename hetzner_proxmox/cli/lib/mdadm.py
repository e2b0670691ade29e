"""
Linux software RAID (mdadm) management functions.
"""

import glob
import logging
import os
import re
import stat
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from hetzner_proxmox.cli.lib.blockdev import belongs_to, mount_targets, root_source
from hetzner_proxmox.cli.lib.files import atomic_write_text, backup_file, timestamp

logger = logging.getLogger(__name__)

MDSTAT_PATH = Path("/proc/mdstat")
MDADM_CONF_PATH = Path("/etc/mdadm/mdadm.conf")

RAID_LEVELS = ("0", "1", "5", "6", "10", "linear")
MIN_DRIVES: Dict[str, int] = {"0": 2, "1": 2, "linear": 2, "5": 3, "6": 4, "10": 4}
SYSTEM_ARRAY_MOUNTS = ("/", "/boot", "/var", "/usr", "/home", "/opt", "/tmp")

_LEVEL_RE = re.compile(r"^(raid\d+|linear|multipath|faulty)$")
_MD_NAME_RE = re.compile(r"^md\d+$")


@dataclass
class MdArray:
    name: str
    state: str
    level: Optional[str] = None
    members: List[str] = field(default_factory=list)

    @property
    def device(self) -> str:
        return f"/dev/{self.name}"


def parse_mdstat(text: str) -> List[MdArray]:
    """
    Parse /proc/mdstat.

    Args:
        text: Content of /proc/mdstat

    Returns:
        One MdArray per `mdN : ...` line; member names have their `[n]` slot
        and `(F)`/`(S)` flags stripped
    """
    arrays = []
    for line in text.splitlines():
        match = re.match(r"^(md\w+)\s*:\s*(\S+)\s*(.*)$", line)
        if not match:
            continue
        name, state, rest = match.groups()
        level = None
        members = []
        for token in rest.split():
            if token.startswith("("):
                continue
            if level is None and _LEVEL_RE.match(token):
                level = token
                continue
            member = re.match(r"^([^\[\s]+)\[\d+\]", token)
            if member:
                members.append(member.group(1))
        arrays.append(MdArray(name=name, state=state, level=level, members=members))
    return arrays


def read_mdstat(path: Path = MDSTAT_PATH) -> List[MdArray]:
    if not path.exists():
        return []
    return parse_mdstat(path.read_text(encoding="utf-8"))


def raid_members(arrays: Iterable[MdArray]) -> List[str]:
    """Flatten member device names of all arrays."""
    return [m for array in arrays for m in array.members]


def validate_raid(level: str, drives: List[str]) -> None:
    """
    Validate a RAID level against the drives requested for it.

    Args:
        level: RAID level ("0", "1", "5", "6", "10" or "linear")
        drives: Member devices

    Raises:
        ValueError: If the level is unknown, too few drives were given,
            RAID 10 has an odd drive count, or a drive is listed twice
    """
    if level not in RAID_LEVELS:
        raise ValueError(f"Invalid RAID level: {level} (valid: {', '.join(RAID_LEVELS)})")

    minimum = MIN_DRIVES[level]
    if len(drives) < minimum:
        raise ValueError(f"RAID {level} requires at least {minimum} drives, got {len(drives)}")

    if level == "10" and len(drives) % 2 != 0:
        raise ValueError("RAID 10 requires an even number of drives")

    if len(set(drives)) != len(drives):
        raise ValueError("Each drive may only be listed once")


def busy_reason(drive: str, mounted: bool, arrays: Iterable[MdArray], lvm_pvs: Iterable[str]) -> Optional[str]:
    """
    Explain why a drive cannot be used for a new array.

    Returns:
        "MOUNTED", "IN RAID", "IN LVM" or None if the drive is free
    """
    name = drive.rsplit("/", 1)[-1]
    if mounted:
        return "MOUNTED"
    if any(belongs_to(m, name) for m in raid_members(arrays)):
        return "IN RAID"
    if any(belongs_to(pv, name) for pv in lvm_pvs):
        return "IN LVM"
    return None


def next_md_device(arrays: Optional[List[MdArray]] = None) -> str:
    """
    Return the first /dev/mdN that is neither a device node nor listed in mdstat.
    """
    if arrays is None:
        arrays = read_mdstat()
    taken = {a.name for a in arrays}
    n = 0
    while f"md{n}" in taken or os.path.exists(f"/dev/md{n}"):
        n += 1
    return f"/dev/md{n}"


def create_array(device: str, level: str, drives: List[str], assume_clean: bool = False) -> None:
    """
    Create an md array.

    Args:
        device: Array device (e.g., "/dev/md0")
        level: RAID level
        drives: Member devices
        assume_clean: Skip the initial resync (only safe for fresh mirrors)

    Raises:
        ValueError: If the level/drive combination is invalid
        RuntimeError: If the array already exists or mdadm fails
    """
    validate_raid(level, drives)

    name = device.rsplit("/", 1)[-1]
    if any(a.name == name for a in read_mdstat()):
        raise RuntimeError(f"RAID array {device} already exists")

    cmd = [
        "mdadm", "--create", device,
        "--run",
        f"--level={level}",
        f"--raid-devices={len(drives)}",
    ] + list(drives)
    if assume_clean:
        cmd.append("--assume-clean")

    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to create RAID array {device}: {result.stderr}")
    logger.info("Created RAID %s array %s from %s", level, device, " ".join(drives))


def wait_array(device: str) -> None:
    """Wait for resync/recovery of an array. Failure only logs a warning."""
    result = subprocess.run(
        ["mdadm", "--wait", device],
        capture_output=True,
        text=True,
        check=False
    )
    # mdadm --wait exits 1 when there was nothing to wait for
    if result.returncode not in (0, 1):
        logger.warning("mdadm --wait %s failed: %s", device, result.stderr.strip())


def detail(device: str) -> str:
    """
    Return `mdadm --detail` output.

    Raises:
        RuntimeError: If mdadm cannot describe the array
    """
    result = subprocess.run(
        ["mdadm", "--detail", device],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to get details of {device}: {result.stderr}")
    return result.stdout


def parse_detail_members(text: str) -> List[str]:
    """Extract member device paths from the device table of `mdadm --detail`."""
    members = []
    in_table = False
    for line in text.splitlines():
        if re.match(r"^\s*Number\s+Major\s+Minor", line):
            in_table = True
            continue
        if not in_table:
            continue
        fields = line.split()
        if fields and fields[-1].startswith("/dev/") and "removed" not in fields:
            members.append(fields[-1])
    return members


def array_members(name: str) -> List[str]:
    """
    Return member device paths of an array.

    Falls back to /proc/mdstat when `mdadm --detail` is unavailable.
    """
    try:
        members = parse_detail_members(detail(f"/dev/{name}"))
        if members:
            return members
    except RuntimeError as e:
        logger.debug("Falling back to mdstat for %s: %s", name, e)
    for array in read_mdstat():
        if array.name == name:
            return [f"/dev/{m}" for m in array.members]
    return []


def stop_array(device: str, force: bool = False) -> None:
    """
    Stop an md array, retrying with --force when requested.

    Raises:
        RuntimeError: If the array could not be stopped
    """
    attempts = [["mdadm", "--stop", device]]
    if force:
        attempts.append(["mdadm", "--stop", "--force", device])

    stderr = ""
    for cmd in attempts:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False
        )
        if result.returncode == 0:
            logger.info("Stopped RAID array %s", device)
            return
        stderr = result.stderr

    raise RuntimeError(f"Failed to stop RAID array {device}: {stderr}")


def zero_superblock(member: str) -> None:
    """
    Erase the md superblock of a former array member.

    Raises:
        RuntimeError: If mdadm fails
    """
    result = subprocess.run(
        ["mdadm", "--zero-superblock", member],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to zero superblock on {member}: {result.stderr}")


def scan() -> str:
    result = subprocess.run(
        ["mdadm", "--detail", "--scan"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to scan RAID arrays: {result.stderr}")
    return result.stdout


def save_config(conf: Path = MDADM_CONF_PATH, overwrite: bool = False) -> None:
    """
    Persist the current arrays to mdadm.conf.

    Args:
        conf: mdadm.conf location
        overwrite: Replace the file (after a backup) instead of appending
    """
    arrays = scan()
    if overwrite:
        backup_file(conf)
        atomic_write_text(conf, arrays)
    else:
        existing = conf.read_text(encoding="utf-8") if conf.exists() else ""
        if existing and not existing.endswith("\n"):
            existing += "\n"
        atomic_write_text(conf, existing + arrays)
    logger.info("Saved RAID configuration to %s", conf)


def remove_from_config(device: str, conf: Path = MDADM_CONF_PATH) -> bool:
    """
    Drop every mdadm.conf line that references `device`.

    Returns:
        True if the file changed
    """
    if not conf.exists():
        return False
    lines = conf.read_text(encoding="utf-8").splitlines()
    pattern = re.compile(rf"(^|\s){re.escape(device)}(\s|$)")
    kept = [line for line in lines if not pattern.search(line)]
    if len(kept) == len(lines):
        return False
    atomic_write_text(conf, "\n".join(kept) + "\n")
    return True


def reset_config(conf: Path = MDADM_CONF_PATH) -> None:
    """Replace mdadm.conf with a note that all arrays were removed."""
    backup_file(conf)
    atomic_write_text(conf, f"# All RAID arrays have been removed on {timestamp()}\n")


def update_initramfs() -> None:
    result = subprocess.run(
        ["update-initramfs", "-u"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to update initramfs: {result.stderr}")


def is_system_array(name: str, root: Optional[str] = None) -> bool:
    """
    Decide whether an array carries a system filesystem.

    Args:
        name: Array name (e.g., "md2")
        root: Source of / (looked up when omitted)
    """
    for target in mount_targets(f"/dev/{name}"):
        if target in SYSTEM_ARRAY_MOUNTS:
            return True

    if root is None:
        try:
            root = root_source()
        except RuntimeError:
            root = ""
    return root == f"/dev/{name}" or bool(re.match(rf"^/dev/{name}p\d+$", root))


def _natural_key(name: str) -> int:
    return int(name[2:])


def list_arrays() -> List[str]:
    """
    Collect md array names from lsblk, /proc/mdstat and /dev/md* nodes.

    Returns:
        De-duplicated names in numeric order (e.g., ["md0", "md1", "md10"])
    """
    names = set()

    result = subprocess.run(
        ["lsblk", "-rn", "-o", "NAME,TYPE"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode == 0:
        for line in result.stdout.splitlines():
            fields = line.split()
            if len(fields) == 2 and _MD_NAME_RE.match(fields[0]) and fields[1].startswith("raid"):
                names.add(fields[0])

    names.update(a.name for a in read_mdstat() if _MD_NAME_RE.match(a.name))

    for node in glob.glob("/dev/md*"):
        base = os.path.basename(node)
        if _MD_NAME_RE.match(base) and stat.S_ISBLK(os.stat(node).st_mode):
            names.add(base)

    return sorted(names, key=_natural_key)
