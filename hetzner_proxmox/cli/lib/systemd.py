"""
systemd unit management functions.
"""

import logging
import subprocess

logger = logging.getLogger(__name__)


def _systemctl(action: str, unit_name: str) -> None:
    result = subprocess.run(
        ["systemctl", action, unit_name],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise RuntimeError(f"Failed to {action} unit {unit_name}: {result.stderr}")
    logger.info("systemctl %s %s", action, unit_name)


def stop_unit(unit_name: str) -> None:
    _systemctl("stop", unit_name)


def restart_unit(unit_name: str) -> None:
    _systemctl("restart", unit_name)


def disable_unit(unit_name: str) -> None:
    _systemctl("disable", unit_name)


def enable_unit(unit_name: str, now: bool = True) -> None:
    """
    Enable a unit and (by default) start it, then confirm it is running.

    Args:
        unit_name: Unit name
        now: Also start the unit

    Raises:
        RuntimeError: If enabling/starting fails or the unit is not active afterwards
    """
    _systemctl("enable", unit_name)
    if not now:
        return
    _systemctl("start", unit_name)
    if not is_active(unit_name):
        raise RuntimeError(f"Unit {unit_name} failed to start")


def reload_or_restart(unit_name: str) -> None:
    """Reload a unit, falling back to a restart if it does not support reload."""
    result = subprocess.run(
        ["systemctl", "reload", unit_name],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        logger.warning("Reload of %s failed, restarting instead", unit_name)
        restart_unit(unit_name)


def daemon_reload() -> None:
    result = subprocess.run(
        ["systemctl", "daemon-reload"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Failed to reload systemd: {result.stderr}")


def is_active(unit_name: str) -> bool:
    """
    Check if a systemd unit is active.

    Args:
        unit_name: Unit name

    Returns:
        True if unit is active, False otherwise
    """
    result = subprocess.run(
        ["systemctl", "is-active", unit_name],
        capture_output=True,
        text=True,
        check=False
    )

    return result.returncode == 0


def unit_state(unit_name: str) -> str:
    """Return the `systemctl is-active` word for a unit (active, inactive, failed, ...)."""
    result = subprocess.run(
        ["systemctl", "is-active", unit_name],
        capture_output=True,
        text=True,
        check=False
    )
    return result.stdout.strip() or "unknown"
