"""
Helpers for editing system configuration files in place.
"""

import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def timestamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def backup_file(path: PathLike, backup_dir: Optional[PathLike] = None) -> Optional[Path]:
    """
    Copy a file to `<name>.backup.<timestamp>` before it is modified.

    Args:
        path: File to back up
        backup_dir: Directory for the copy (default: next to the file)

    Returns:
        Path of the backup, or None if the file does not exist
    """
    src = Path(path)
    if not src.exists():
        return None

    target_dir = Path(backup_dir) if backup_dir else src.parent
    target_dir.mkdir(parents=True, exist_ok=True)
    dst = target_dir / f"{src.name}.backup.{timestamp()}"
    shutil.copy2(src, dst)
    logger.info("Backed up %s to %s", src, dst)
    return dst


def atomic_write_text(path: PathLike, content: str, mode: Optional[int] = None) -> None:
    """
    Write a text file via a temp file in the same directory and rename it into place.

    Args:
        path: Destination file
        content: New file content
        mode: Permission bits for the new file (default: keep existing, else 0644)
    """
    dst = Path(path)
    dst.parent.mkdir(parents=True, exist_ok=True)
    if mode is None:
        mode = dst.stat().st_mode & 0o7777 if dst.exists() else 0o644
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=f".{dst.name}.", dir=str(dst.parent))
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as file:
            file.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, dst)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def append_line_once(path: PathLike, line: str) -> bool:
    """
    Append a line to a file unless an identical line is already present.

    Returns:
        True if the line was appended
    """
    dst = Path(path)
    existing = dst.read_text(encoding="utf-8") if dst.exists() else ""
    if line in existing.splitlines():
        return False
    if existing and not existing.endswith("\n"):
        existing += "\n"
    atomic_write_text(dst, existing + line + "\n")
    return True
