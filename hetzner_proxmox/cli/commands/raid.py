"""
Software RAID (mdadm) commands.
"""

from typing import List

import typer

from hetzner_proxmox.cli.lib import blockdev, lvm, mdadm

app = typer.Typer(help="Software RAID management commands")


def _confirm_yes(message: str) -> None:
    answer = typer.prompt(f"{message} Type 'YES' to continue")
    if answer != "YES":
        typer.echo("Aborted")
        raise typer.Exit(1)


@app.command("list")
def list_drives():
    """
    List block devices, RAID arrays and drives available for a new array.
    """
    try:
        disks = blockdev.list_disks()
        arrays = mdadm.read_mdstat()
        pvs = list(lvm.physical_volumes())

        typer.echo("Block devices:")
        for disk in disks:
            typer.echo(f"  {disk.path:<16} {disk.size_human:>10}  {disk.model or ''}")

        typer.echo("\nRAID arrays:")
        if not arrays:
            typer.echo("  (none)")
        for array in arrays:
            typer.echo(f"  {array.name}: {array.state} {array.level} [{', '.join(array.members)}]")

        typer.echo("\nDrives:")
        for disk in disks:
            reason = mdadm.busy_reason(disk.path, disk.has_mounts, arrays, pvs)
            typer.echo(f"  {disk.path:<16} {reason or 'AVAILABLE'}")

    except Exception as e:
        typer.echo(f"Error listing drives: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def create(
    level: str = typer.Argument(..., help="RAID level (0, 1, 5, 6, 10, linear)"),
    drives: List[str] = typer.Argument(..., help="Member drives (e.g., /dev/sdb /dev/sdc)"),
    force: bool = typer.Option(False, "--force", help="Skip the confirmation prompt"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be done"),
):
    """
    Create a RAID array from whole drives.

    All data on the drives is destroyed.
    """
    try:
        mdadm.validate_raid(level, drives)

        disks = {d.path: d for d in blockdev.list_disks()}
        arrays = mdadm.read_mdstat()
        pvs = list(lvm.physical_volumes())
        for drive in drives:
            if drive not in disks:
                raise ValueError(f"{drive} is not a disk")
            reason = mdadm.busy_reason(drive, disks[drive].has_mounts, arrays, pvs)
            if reason:
                raise ValueError(f"{drive} is not available ({reason})")

        device = mdadm.next_md_device(arrays)
        typer.echo(f"Creating RAID {level} array {device} from: {' '.join(drives)}")

        if dry_run:
            for drive in drives:
                typer.echo(f"  [dry-run] wipefs -fa {drive}")
            typer.echo(f"  [dry-run] mdadm --create {device} --level={level} --raid-devices={len(drives)} {' '.join(drives)}")
            return

        if not force:
            _confirm_yes(f"ALL DATA on {', '.join(drives)} will be destroyed.")

        for drive in drives:
            blockdev.wipe_signatures(drive, force=True)
            typer.echo(f"  Wiped {drive}")

        mdadm.create_array(device, level, drives)
        typer.echo(f"  Created {device}")
        typer.echo(mdadm.detail(device))

        if mdadm.MDADM_CONF_PATH.exists():
            mdadm.save_config()
            typer.echo(f"  Saved configuration to {mdadm.MDADM_CONF_PATH}")

        typer.echo(f"RAID array {device} created successfully")

    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error creating RAID array: {e}", err=True)
        raise typer.Exit(1)


def _clear(name: str) -> None:
    device = f"/dev/{name}"
    try:
        mdadm.stop_array(device)
        typer.echo(f"  Stopped {device}")
    except RuntimeError as e:
        typer.echo(f"  Warning: {e}", err=True)
    if mdadm.remove_from_config(device):
        typer.echo(f"  Removed {device} from {mdadm.MDADM_CONF_PATH}")


@app.command()
def clear(
    array: str = typer.Argument(..., help="Array name (e.g., md0)"),
):
    """
    Stop a RAID array and remove it from mdadm.conf.
    """
    try:
        name = array.rsplit("/", 1)[-1]
        if name not in {a.name for a in mdadm.read_mdstat()}:
            raise ValueError(f"Array {name} not found in {mdadm.MDSTAT_PATH}")

        typer.echo(f"Clearing array: {name}")
        _clear(name)
        typer.echo(f"Array {name} cleared")

    except Exception as e:
        typer.echo(f"Error clearing array: {e}", err=True)
        raise typer.Exit(1)


@app.command("clear-all")
def clear_all(
    force: bool = typer.Option(False, "--force", help="Skip the confirmation prompt"),
):
    """
    Stop every RAID array listed in /proc/mdstat.
    """
    try:
        arrays = mdadm.read_mdstat()
        if not arrays:
            typer.echo("No RAID arrays found")
            return

        if not force:
            _confirm_yes(f"This stops {len(arrays)} array(s): {', '.join(a.name for a in arrays)}.")

        for array in arrays:
            typer.echo(f"Clearing array: {array.name}")
            _clear(array.name)

        typer.echo("All RAID arrays cleared")

    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error clearing arrays: {e}", err=True)
        raise typer.Exit(1)
