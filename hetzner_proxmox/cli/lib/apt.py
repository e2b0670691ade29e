"""
Debian package management (apt) functions.
"""

import logging
import os
import shutil
import subprocess
from typing import List

logger = logging.getLogger(__name__)


def _apt_env() -> dict:
    env = dict(os.environ)
    env["DEBIAN_FRONTEND"] = "noninteractive"
    return env


def _apt(args: List[str], action: str) -> None:
    result = subprocess.run(
        ["apt-get"] + args,
        capture_output=True,
        text=True,
        check=False,
        env=_apt_env(),
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to {action}: {result.stderr}")


def update() -> None:
    _apt(["update"], "update package lists")


def upgrade() -> None:
    _apt(["-y", "upgrade"], "upgrade packages")


def install(packages: List[str]) -> None:
    """
    Install packages non-interactively.

    Raises:
        RuntimeError: If apt-get install fails
    """
    if not packages:
        return
    _apt(["install", "-y"] + list(packages), f"install {' '.join(packages)}")
    logger.info("Installed packages: %s", " ".join(packages))


def missing_commands(commands: List[str]) -> List[str]:
    return [cmd for cmd in commands if shutil.which(cmd) is None]
